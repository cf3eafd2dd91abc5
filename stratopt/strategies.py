"""Preset strategies: five fixed rule sets over the close series.

Each preset turns (prices, params) into a ``Rules`` object: an ordered list
of (SignalKind, bool series) pairs, the same shape the script executor
produces, so one simulator drives both.  A bar where any indicator the
preset needs is NaN at ``i`` or ``i-1`` carries no signal.

    dual_ma    long while fast > slow, short while fast < slow
    triple_ma  long on fast > mid > slow, short on fast < mid < slow,
               otherwise flat
    rsi        long when RSI crosses up through oversold,
               short when it crosses down through overbought
    macd       long while macd > signal, short while macd < signal
    bollinger  from flat: long below the lower band, short above the upper
               band; exit when price returns to the basis

The trend presets enter on the first ready bar in the prevailing direction
and reverse on every cross.
"""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from stratopt import indicators
from stratopt.script import SignalKind


class StrategyKind(str, Enum):
    DUAL_MA = "dual_ma"
    TRIPLE_MA = "triple_ma"
    RSI = "rsi"
    MACD = "macd"
    BOLLINGER = "bollinger"


@dataclass
class Rules:
    signals: list = field(default_factory=list)  # [(SignalKind, bool ndarray)]
    entries_when_flat: bool = False


@dataclass(frozen=True)
class Preset:
    kind: StrategyKind
    defaults: dict
    build: object  # (PriceData, dict) -> Rules

    def resolve(self, params=None):
        """Defaults overlaid with ``params``; unknown names are kept as given."""
        return {**self.defaults, **(params or {})}


def ready(*series):
    """True at ``i`` when every series is defined at ``i`` and ``i-1``."""
    n = len(series[0])
    ok = np.ones(n, dtype=bool)
    for s in series:
        defined = ~np.isnan(s)
        ok &= defined
        ok[1:] &= defined[:-1]
    if n:
        ok[0] = False
    return ok


def _period(params, name):
    return indicators.as_period(params[name])


def _dual_ma(prices, params):
    ma_type = params["maType"]
    fast = indicators.get_ma(prices.close, _period(params, "fastLength"), ma_type)
    slow = indicators.get_ma(prices.close, _period(params, "slowLength"), ma_type)
    ok = ready(fast, slow)
    return Rules([
        (SignalKind.OPEN_LONG, ok & (fast > slow)),
        (SignalKind.OPEN_SHORT, ok & (fast < slow)),
    ])


def _triple_ma(prices, params):
    ma_type = params["maType"]
    fast = indicators.get_ma(prices.close, _period(params, "fastLength"), ma_type)
    mid = indicators.get_ma(prices.close, _period(params, "midLength"), ma_type)
    slow = indicators.get_ma(prices.close, _period(params, "slowLength"), ma_type)
    ok = ready(fast, mid, slow)
    bull = ok & (fast > mid) & (mid > slow)
    bear = ok & (fast < mid) & (mid < slow)
    neutral = ok & ~bull & ~bear
    return Rules([
        (SignalKind.OPEN_LONG, bull),
        (SignalKind.OPEN_SHORT, bear),
        (SignalKind.CLOSE_ANY, neutral),
    ])


def _rsi(prices, params):
    rsi = indicators.rsi(prices.close, _period(params, "rsiPeriod"))
    oversold = np.full(len(rsi), float(params["oversold"]))
    overbought = np.full(len(rsi), float(params["overbought"]))
    ok = ready(rsi)
    return Rules([
        (SignalKind.OPEN_LONG, ok & indicators.crossover(rsi, oversold)),
        (SignalKind.OPEN_SHORT, ok & indicators.crossunder(rsi, overbought)),
    ])


def _macd(prices, params):
    line, signal, _ = indicators.macd(
        prices.close,
        _period(params, "fastLength"),
        _period(params, "slowLength"),
        _period(params, "signalLength"),
    )
    ok = ready(line, signal)
    return Rules([
        (SignalKind.OPEN_LONG, ok & (line > signal)),
        (SignalKind.OPEN_SHORT, ok & (line < signal)),
    ])


def _bollinger(prices, params):
    close = prices.close
    upper, basis, lower = indicators.bollinger(
        close, indicators.as_period(params["bbLength"], default=20), float(params["bbMult"])
    )
    ok = ready(upper, basis, lower)
    return Rules(
        [
            (SignalKind.OPEN_LONG, ok & (close < lower)),
            (SignalKind.OPEN_SHORT, ok & (close > upper)),
            (SignalKind.CLOSE_LONG, ok & (close >= basis)),
            (SignalKind.CLOSE_SHORT, ok & (close <= basis)),
        ],
        entries_when_flat=True,
    )


PRESETS = {
    StrategyKind.DUAL_MA: Preset(
        StrategyKind.DUAL_MA, {"fastLength": 9, "slowLength": 21, "maType": "EMA"}, _dual_ma),
    StrategyKind.TRIPLE_MA: Preset(
        StrategyKind.TRIPLE_MA,
        {"fastLength": 5, "midLength": 13, "slowLength": 34, "maType": "EMA"}, _triple_ma),
    StrategyKind.RSI: Preset(
        StrategyKind.RSI, {"rsiPeriod": 14, "oversold": 30, "overbought": 70}, _rsi),
    StrategyKind.MACD: Preset(
        StrategyKind.MACD, {"fastLength": 12, "slowLength": 26, "signalLength": 9}, _macd),
    StrategyKind.BOLLINGER: Preset(
        StrategyKind.BOLLINGER, {"bbLength": 20, "bbMult": 2.0}, _bollinger),
}


def get_preset(strategy):
    """StrategyKind or its string value → Preset; ValueError when unknown."""
    return PRESETS[StrategyKind(strategy)]
