"""Indicator library unit tests"""

import math

import numpy as np
import pytest

from stratopt import indicators


class TestAsPeriod:

    def test_rounds_half_up(self):
        assert indicators.as_period(2.5) == 3
        assert indicators.as_period(2.49) == 2

    def test_floor_of_one(self):
        assert indicators.as_period(0) == 1
        assert indicators.as_period(-4) == 1

    def test_garbage_uses_default(self):
        assert indicators.as_period("abc") == 14
        assert indicators.as_period(float("nan"), default=20) == 20
        assert indicators.as_period(None, default=9) == 9

    def test_numeric_string(self):
        assert indicators.as_period("21") == 21


class TestMovingAverages:

    @pytest.mark.parametrize("period", [1, 2, 5, 13])
    def test_sma_is_window_mean(self, random_closes, period):
        out = indicators.sma(random_closes, period)
        assert len(out) == len(random_closes)
        assert np.all(np.isnan(out[:period - 1]))
        for i in range(period - 1, len(random_closes)):
            assert out[i] == pytest.approx(np.mean(random_closes[i - period + 1:i + 1]), rel=1e-12)

    def test_sma_period_longer_than_series(self):
        assert np.all(np.isnan(indicators.sma([1.0, 2.0, 3.0], 5)))

    def test_constant_series_is_exact(self):
        x = np.full(200, 7.3)
        for fn in (indicators.sma, indicators.wma, indicators.ema, indicators.rma):
            out = fn(x, 9)
            defined = out[~np.isnan(out)]
            assert len(defined) > 0
            assert np.all(defined == 7.3), fn.__name__

    def test_wma_weights_recent_bars(self):
        out = indicators.wma([1.0, 2.0, 3.0], 3)
        assert np.isnan(out[1])
        assert out[2] == pytest.approx(14 / 6)

    def test_ema_seeded_with_first_value(self):
        out = indicators.ema([1.0, 2.0, 3.0], 2)
        assert out[0] == 1.0
        assert out[1] == pytest.approx(1 + 2 / 3)
        assert out[2] == pytest.approx(out[1] + 2 / 3 * (3 - out[1]))

    def test_ema_skips_leading_nan(self):
        out = indicators.ema([np.nan, np.nan, 4.0, 6.0], 3)
        assert np.isnan(out[0]) and np.isnan(out[1])
        assert out[2] == 4.0
        assert out[3] == pytest.approx(5.0)

    def test_rma_uses_wilder_alpha(self):
        out = indicators.rma([10.0, 20.0], 4)
        assert out[1] == pytest.approx(10.0 + (20.0 - 10.0) / 4)

    def test_get_ma_dispatch(self, random_closes):
        np.testing.assert_array_equal(indicators.get_ma(random_closes, 5, "ema"), indicators.ema(random_closes, 5))
        np.testing.assert_array_equal(indicators.get_ma(random_closes, 5, "WMA"), indicators.wma(random_closes, 5))
        np.testing.assert_array_equal(indicators.get_ma(random_closes, 5, "HMA"), indicators.sma(random_closes, 5))

    def test_input_not_mutated(self, random_closes):
        before = random_closes.copy()
        indicators.sma(random_closes, 5)
        indicators.ema(random_closes, 5)
        indicators.bollinger(random_closes, 20, 2.0)
        np.testing.assert_array_equal(random_closes, before)


class TestRSI:

    def test_bounded(self, random_closes):
        out = indicators.rsi(random_closes, 14)
        defined = out[~np.isnan(out)]
        assert len(defined) == len(random_closes) - 14
        assert np.all((defined >= 0) & (defined <= 100))

    def test_warmup_length(self, random_closes):
        out = indicators.rsi(random_closes, 14)
        assert np.all(np.isnan(out[:14]))
        assert not np.isnan(out[14])

    def test_only_gains_is_100(self):
        out = indicators.rsi(np.arange(30, dtype=float), 14)
        assert np.all(out[14:] == 100.0)

    def test_only_losses_is_0(self):
        out = indicators.rsi(np.arange(30, 0, -1, dtype=float), 14)
        assert np.all(out[14:] == 0.0)

    def test_flat_is_100(self):
        out = indicators.rsi(np.full(40, 5.0), 14)
        assert np.all(out[14:] == 100.0)

    def test_too_short(self):
        assert np.all(np.isnan(indicators.rsi([1.0, 2.0, 3.0], 14)))


class TestMACD:

    def test_components(self, random_closes):
        res = indicators.macd(random_closes, 12, 26, 9)
        line = indicators.ema(random_closes, 12) - indicators.ema(random_closes, 26)
        np.testing.assert_allclose(res.macd, line)
        np.testing.assert_allclose(res.signal, indicators.ema(line, 9))
        np.testing.assert_allclose(res.hist, res.macd - res.signal)

    def test_unpacks_as_tuple(self, random_closes):
        line, signal, hist = indicators.macd(random_closes)
        assert len(line) == len(signal) == len(hist) == len(random_closes)


class TestBands:

    def test_constant_series_collapses(self):
        upper, basis, lower = indicators.bollinger(np.full(50, 3.0), 20, 2.0)
        assert np.all(np.isnan(basis[:19]))
        assert np.all(upper[19:] == 3.0)
        assert np.all(basis[19:] == 3.0)
        assert np.all(lower[19:] == 3.0)

    def test_population_std(self, random_closes):
        res = indicators.bollinger(random_closes, 20, 2.0)
        window = random_closes[-20:]
        assert res.basis[-1] == pytest.approx(window.mean())
        assert res.upper[-1] == pytest.approx(window.mean() + 2 * window.std(ddof=0))
        assert res.lower[-1] == pytest.approx(window.mean() - 2 * window.std(ddof=0))

    def test_atr_starts_at_bar_range(self):
        high = np.array([11.0, 12.0, 13.0])
        low = np.array([9.0, 10.0, 11.5])
        close = np.array([10.0, 11.0, 12.0])
        tr = indicators.true_range(high, low, close)
        np.testing.assert_allclose(tr, [2.0, 2.0, 2.0])
        out = indicators.atr(high, low, close, 14)
        assert out[0] == 2.0


class TestStochAndExtremes:

    def test_stoch_flat_window_is_100(self):
        x = np.full(10, 4.0)
        assert np.all(indicators.stoch(x, x, x, 5) == 100.0)

    def test_stoch_position_in_range(self):
        close = np.array([1.0, 2.0, 3.0])
        high = np.array([2.0, 3.0, 4.0])
        low = np.array([0.0, 1.0, 2.0])
        out = indicators.stoch(close, high, low, 3)
        assert out[2] == pytest.approx((3.0 - 0.0) / (4.0 - 0.0) * 100)

    def test_highest_lowest_partial_windows(self):
        x = [1.0, 3.0, 2.0, 5.0, 4.0]
        np.testing.assert_array_equal(indicators.highest(x, 2), [1, 3, 3, 5, 5])
        np.testing.assert_array_equal(indicators.lowest(x, 2), [1, 1, 2, 2, 4])

    def test_highest_ignores_nan(self):
        out = indicators.highest([np.nan, 2.0, np.nan], 2)
        assert math.isnan(out[0])
        assert out[1] == 2.0 and out[2] == 2.0


class TestSeriesHelpers:

    def test_crossover(self):
        out = indicators.crossover([1.0, 2.0, 3.0, 1.0, 2.0], [2.0] * 5)
        assert out.tolist() == [False, True, False, False, True]

    def test_crossunder(self):
        out = indicators.crossunder([3.0, 2.0, 1.0, 3.0, 2.0], [2.0] * 5)
        assert out.tolist() == [False, True, False, False, True]

    def test_cross_with_nan_is_false(self):
        out = indicators.crossover([np.nan, 3.0], [2.0, 2.0])
        assert not out.any()

    def test_shift(self):
        out = indicators.shift(np.array([1.0, 2.0, 3.0]), 1)
        assert math.isnan(out[0])
        assert out[1:].tolist() == [1.0, 2.0]

    def test_shift_bool_fills_false(self):
        out = indicators.shift(np.array([True, True, True]), 2)
        assert out.tolist() == [False, False, True]

    def test_shift_past_end(self):
        assert np.all(np.isnan(indicators.shift(np.array([1.0, 2.0]), 5)))
