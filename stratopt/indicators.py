"""Indicator library: pure Numba kernels over aligned float64 series.

Every function returns a new array of the same length as its input and
never mutates the input.  Values that do not exist yet (warm-up) are NaN.

Seeding rules:
    sma, wma, bollinger: defined from index ``period-1``
    ema, rma: seeded with the first defined input, not an SMA
    rsi: Wilder averages, 100 when average loss is exactly 0
    highest, lowest: partial windows at the start, NaNs ignored
    stoch: partial windows, 100 when the window range is 0

Window sums are taken relative to the window's last value, so a constant
series produces exactly that constant (no rounding drift between two
periods that could fake a cross).  The kernels agree with TA-Lib's SMA, WMA,
BBANDS and RSI on ordinary data; the test suite checks that.
"""

import math
from typing import NamedTuple

import numba as nb
import numpy as np


class MACDResult(NamedTuple):
    macd: np.ndarray
    signal: np.ndarray
    hist: np.ndarray


class BandsResult(NamedTuple):
    upper: np.ndarray
    basis: np.ndarray
    lower: np.ndarray


def as_period(value, default=14):
    """Coerce a period argument to an int >= 1 (half-up rounding)."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(v) or math.isinf(v):
        return default
    return max(1, int(math.floor(v + 0.5)))


def _f64(x):
    return np.ascontiguousarray(x, dtype=np.float64)


# ---------------------------------------------------------------------------
# Moving averages
# ---------------------------------------------------------------------------

@nb.njit(cache=True)
def _sma_kernel(x, period):
    n = len(x)
    out = np.full(n, np.nan)
    for i in range(period - 1, n):
        pivot = x[i]
        acc = 0.0
        for j in range(i - period + 1, i + 1):
            acc += x[j] - pivot
        out[i] = pivot + acc / period
    return out


@nb.njit(cache=True)
def _wma_kernel(x, period):
    n = len(x)
    out = np.full(n, np.nan)
    denom = period * (period + 1) / 2.0
    for i in range(period - 1, n):
        pivot = x[i]
        acc = 0.0
        for j in range(period):
            acc += (x[i - j] - pivot) * (period - j)
        out[i] = pivot + acc / denom
    return out


@nb.njit(cache=True)
def _smooth(x, k):
    n = len(x)
    out = np.full(n, np.nan)
    start = -1
    for i in range(n):
        if not np.isnan(x[i]):
            start = i
            break
    if start < 0:
        return out
    prev = x[start]
    out[start] = prev
    for i in range(start + 1, n):
        # x*k + prev*(1-k), written so a constant input stays exact
        prev = prev + k * (x[i] - prev)
        out[i] = prev
    return out


def sma(x, period):
    return _sma_kernel(_f64(x), as_period(period))


def wma(x, period):
    return _wma_kernel(_f64(x), as_period(period))


def ema(x, period):
    period = as_period(period)
    return _smooth(_f64(x), 2.0 / (period + 1))


def rma(x, period):
    """Wilder smoothing: EMA recurrence with alpha = 1/period."""
    period = as_period(period)
    return _smooth(_f64(x), 1.0 / period)


def get_ma(x, period, ma_type="SMA"):
    ma_type = str(ma_type).upper()
    if ma_type == "EMA":
        return ema(x, period)
    if ma_type == "WMA":
        return wma(x, period)
    return sma(x, period)


# ---------------------------------------------------------------------------
# Oscillators
# ---------------------------------------------------------------------------

@nb.njit(cache=True)
def _rsi_kernel(x, period):
    n = len(x)
    out = np.full(n, np.nan)
    if n <= period:
        return out
    avg_gain = 0.0
    avg_loss = 0.0
    for i in range(1, period + 1):
        diff = x[i] - x[i - 1]
        if diff > 0.0:
            avg_gain += diff
        else:
            avg_loss -= diff
    avg_gain /= period
    avg_loss /= period
    out[period] = 100.0 if avg_loss == 0.0 else 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    for i in range(period + 1, n):
        diff = x[i] - x[i - 1]
        gain = diff if diff > 0.0 else 0.0
        loss = -diff if diff < 0.0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        out[i] = 100.0 if avg_loss == 0.0 else 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    return out


def rsi(x, period):
    return _rsi_kernel(_f64(x), as_period(period))


def macd(x, fast=12, slow=26, signal=9):
    """MACD line, signal line and histogram.

    The signal EMA is seeded at the first defined MACD value so a leading
    NaN run never leaks into its smoothing window.
    """
    x = _f64(x)
    line = ema(x, fast) - ema(x, slow)
    sig = np.full(len(x), np.nan)
    valid = np.flatnonzero(~np.isnan(line))
    if len(valid):
        first = valid[0]
        sig[first:] = ema(line[first:], signal)
    return MACDResult(line, sig, line - sig)


@nb.njit(cache=True)
def _stoch_kernel(src, high, low, period):
    n = len(src)
    out = np.empty(n)
    for i in range(n):
        hh = -np.inf
        ll = np.inf
        for j in range(max(0, i - period + 1), i + 1):
            if high[j] > hh:
                hh = high[j]
            if low[j] < ll:
                ll = low[j]
        if hh == ll:
            out[i] = 100.0
        else:
            out[i] = (src[i] - ll) / (hh - ll) * 100.0
    return out


def stoch(src, high, low, period):
    """Stochastic %K of ``src`` against the trailing high/low window."""
    return _stoch_kernel(_f64(src), _f64(high), _f64(low), as_period(period))


# ---------------------------------------------------------------------------
# Bands / volatility
# ---------------------------------------------------------------------------

@nb.njit(cache=True)
def _bands_kernel(x, period, mult):
    n = len(x)
    upper = np.full(n, np.nan)
    basis = np.full(n, np.nan)
    lower = np.full(n, np.nan)
    for i in range(period - 1, n):
        pivot = x[i]
        acc = 0.0
        for j in range(i - period + 1, i + 1):
            acc += x[j] - pivot
        mean_dev = acc / period
        ss = 0.0
        for j in range(i - period + 1, i + 1):
            d = x[j] - pivot - mean_dev
            ss += d * d
        std = math.sqrt(ss / period)
        basis[i] = pivot + mean_dev
        upper[i] = basis[i] + mult * std
        lower[i] = basis[i] - mult * std
    return upper, basis, lower


def bollinger(x, period=20, mult=2.0):
    """Bollinger bands over the SMA basis, population standard deviation."""
    upper, basis, lower = _bands_kernel(_f64(x), as_period(period, default=20), float(mult))
    return BandsResult(upper, basis, lower)


def true_range(high, low, close):
    high, low, close = _f64(high), _f64(low), _f64(close)
    tr = high - low
    if len(tr) > 1:
        prev_close = close[:-1]
        tr[1:] = np.maximum(
            high[1:] - low[1:],
            np.maximum(np.abs(high[1:] - prev_close), np.abs(low[1:] - prev_close)),
        )
    return tr


def atr(high, low, close, period=14):
    """Average true range: EMA of the true range (bar 0 uses high-low)."""
    return ema(true_range(high, low, close), period)


# ---------------------------------------------------------------------------
# Rolling extrema
# ---------------------------------------------------------------------------

@nb.njit(cache=True)
def _rolling_extreme(x, period, want_max):
    n = len(x)
    out = np.full(n, np.nan)
    for i in range(n):
        found = False
        best = 0.0
        for j in range(max(0, i - period + 1), i + 1):
            v = x[j]
            if np.isnan(v):
                continue
            if not found or (want_max and v > best) or (not want_max and v < best):
                best = v
                found = True
        if found:
            out[i] = best
    return out


def highest(x, period):
    return _rolling_extreme(_f64(x), as_period(period), True)


def lowest(x, period):
    return _rolling_extreme(_f64(x), as_period(period), False)


# ---------------------------------------------------------------------------
# Series helpers
# ---------------------------------------------------------------------------

def crossover(a, b):
    """True where ``a`` moves from below ``b`` to at-or-above it."""
    a, b = _f64(a), _f64(b)
    out = np.zeros(len(a), dtype=bool)
    out[1:] = (a[:-1] < b[:-1]) & (a[1:] >= b[1:])
    return out


def crossunder(a, b):
    a, b = _f64(a), _f64(b)
    out = np.zeros(len(a), dtype=bool)
    out[1:] = (a[:-1] > b[:-1]) & (a[1:] <= b[1:])
    return out


def shift(x, n):
    """Right-shift by ``n`` bars; the first ``n`` slots become NaN (False for bools)."""
    x = np.asarray(x)
    if x.dtype == bool:
        out = np.zeros(len(x), dtype=bool)
    else:
        out = np.full(len(x), np.nan)
    if n == 0:
        out[:] = x
    elif n < len(x):
        out[n:] = x[:-n]
    return out
