"""Expression evaluator unit tests"""

import math

import numpy as np
import pytest

from stratopt import indicators
from stratopt.expressions import (Evaluator, UnresolvedExpression, parse_call, split_args,
                                  split_binary)
from stratopt.script import seed_environment


@pytest.fixture
def ev(make_prices):
    prices = make_prices([float(c) for c in range(1, 21)])
    env = seed_environment(prices, {"fastLength": 3, "maType": "EMA", "useFilter": True})
    return Evaluator(env, len(prices))


class TestSplitting:

    def test_single_char_op_skips_compound(self):
        assert split_binary("a >= b", ">") is None
        assert split_binary("a == b", "=") is None
        assert split_binary("a != b", "=") is None
        assert split_binary("a >= b", ">=") == ("a", "b")

    def test_respects_nesting(self):
        assert split_binary("f(a, b + c)", "+") is None
        assert split_binary("x[1] + y", "+") == ("x[1]", "y")

    def test_respects_quotes(self):
        assert split_binary("s == 'a + b'", "+") is None

    def test_last_split(self):
        assert split_binary("a - b - c", "-", last=True) == ("a - b", "c")
        assert split_binary("a - b - c", "-") == ("a", "b - c")

    def test_split_args(self):
        assert split_args("ta.sma(close, 3), 'a,b', [1, 2]") == ["ta.sma(close, 3)", "'a,b'", "[1, 2]"]
        assert split_args("") == []

    def test_parse_call(self):
        assert parse_call("ta.ema(close, 9)") == ("ta.ema", ["close", "9"])
        assert parse_call("f(a)(b)") is None
        assert parse_call("(a + b)") is None
        assert parse_call("f(a) + g(b)") is None


class TestArithmetic:

    def test_precedence(self, ev):
        np.testing.assert_array_equal(ev.evaluate("1 + 2 * 3"), np.full(20, 7.0))

    def test_left_associative(self, ev):
        np.testing.assert_array_equal(ev.evaluate("10 - 4 - 3"), np.full(20, 3.0))
        np.testing.assert_array_equal(ev.evaluate("12 / 3 / 2"), np.full(20, 2.0))

    def test_unary_minus_operand(self, ev):
        np.testing.assert_array_equal(ev.evaluate("2 * -3"), np.full(20, -6.0))

    def test_parentheses(self, ev):
        np.testing.assert_array_equal(ev.evaluate("(1 + 2) * 3"), np.full(20, 9.0))

    def test_broadcast_with_series(self, ev):
        out = ev.evaluate("close * 2")
        np.testing.assert_array_equal(out, np.arange(1, 21) * 2.0)

    def test_division_by_zero_is_nan(self, ev):
        out = ev.evaluate("close / 0")
        assert np.all(np.isnan(out))

    def test_derived_sources(self, ev):
        env = ev.env
        np.testing.assert_allclose(ev.evaluate("hl2"), (env["high"] + env["low"]) / 2)


class TestLogicAndComparison:

    def test_comparison(self, ev):
        out = ev.evaluate("close > 10")
        assert out.dtype == bool
        assert out.sum() == 10

    def test_string_equality(self, ev):
        assert ev.evaluate('maType == "EMA"').all()
        assert not ev.evaluate('maType == "SMA"').any()
        assert ev.evaluate("maType != 'SMA'").all()

    def test_series_compared_to_bool_literal_is_false(self, ev):
        assert not ev.evaluate("(close > 10) == true").any()
        assert ev.evaluate("close > 10").any()

    def test_and_or_not(self, ev):
        assert not ev.evaluate("true and false").any()
        assert ev.evaluate("true or false").all()
        assert ev.evaluate("close > 5 && close < 8").sum() == 2
        assert ev.evaluate("not (close > 5)").sum() == 5
        assert ev.evaluate("!useFilter").sum() == 0

    def test_ternary_numeric(self, ev):
        out = ev.evaluate("close > 10 ? 1 : -1")
        assert out[:10].tolist() == [-1.0] * 10
        assert out[10:].tolist() == [1.0] * 10

    def test_ternary_boolean_branches(self, ev):
        out = ev.evaluate("useFilter ? close > 15 : true")
        assert out.dtype == bool
        assert out.sum() == 5

    def test_nested_ternary_on_string(self, ev):
        out = ev.evaluate('maType == "SMA" ? ta.sma(close, 3) : maType == "EMA" ? ta.ema(close, 3) : ta.wma(close, 3)')
        np.testing.assert_allclose(out, indicators.ema(ev.env["close"], 3))


class TestLookupsAndCalls:

    def test_history(self, ev):
        out = ev.evaluate("close[2]")
        assert math.isnan(out[0]) and math.isnan(out[1])
        assert out[2] == 1.0

    def test_indicator_with_param_period(self, ev):
        np.testing.assert_array_equal(
            ev.evaluate("ta.sma(close, fastLength)"), indicators.sma(ev.env["close"], 3)
        )

    def test_crossover_call(self, ev):
        out = ev.evaluate("ta.crossover(close, 10.5)")
        assert out.tolist().index(True) == 10
        assert out.sum() == 1

    def test_nz(self, ev):
        out = ev.evaluate("nz(close[1], 0)")
        assert out[0] == 0.0
        assert out[1] == 1.0

    def test_math_helpers(self, ev):
        assert ev.evaluate("math.max(close, 5)")[0] == 5.0
        assert ev.evaluate("math.min(close, 5)")[-1] == 5.0
        assert ev.evaluate("math.abs(close - 30)")[0] == 29.0

    def test_stoch_two_args_uses_bar_range(self, ev):
        env = ev.env
        expected = indicators.stoch(env["close"], env["high"], env["low"], 5)
        np.testing.assert_array_equal(ev.evaluate("ta.stoch(close, 5)"), expected)

    def test_single_value_of_multi_output(self, ev):
        close = ev.env["close"]
        np.testing.assert_allclose(ev.evaluate("ta.bb(close, 5, 2)"), indicators.bollinger(close, 5, 2.0).basis)
        np.testing.assert_allclose(ev.evaluate("ta.macd(close, 3, 6, 2)"), indicators.macd(close, 3, 6, 2).macd)

    def test_call_multi(self, ev):
        res = ev.call_multi("ta.bb", ["close", "5", "2"])
        assert len(res) == 3
        with pytest.raises(UnresolvedExpression):
            ev.call_multi("ta.sma", ["close", "5"])


class TestUnresolved:

    def test_unknown_identifier(self, ev):
        assert ev.try_evaluate("nosuchseries") is None
        with pytest.raises(UnresolvedExpression):
            ev.evaluate("nosuchseries + 1")

    def test_unknown_function(self, ev):
        assert ev.try_evaluate("ta.hma(close, 9)") is None

    def test_nan_and_inf_are_not_literals(self, ev):
        assert ev.try_evaluate("nan") is None
        assert ev.try_evaluate("inf") is None

    def test_malformed(self, ev):
        assert ev.try_evaluate("close >") is None
        assert ev.try_evaluate("(close") is None
        assert ev.try_evaluate("") is None

    def test_is_a_value_error(self):
        assert issubclass(UnresolvedExpression, ValueError)
