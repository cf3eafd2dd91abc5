"""Backtest simulator: one Numba state machine for presets and scripts.

Execution convention:
  bar loop i = 1 .. n-1, every fill at close[i]
  signals are applied in their declared order; a later signal in the same
  bar may override an earlier one and every closed leg is its own Trade
  an open position is force-closed at the last close

Position model: at most one position, long or short, no pyramiding.
Opening against an open position closes it first (one Trade), then opens.

Equity starts at 100 and is multiplied by (1 + pnl_pct/100) at every
exit; the curve holds one value per bar, so its length equals the bar count.
"""

import numba as nb
import numpy as np

from stratopt.data import validate_bars
from stratopt.metrics import calc_metrics, calc_monthly_pnl
from stratopt.models import AssetConfig, AssetKind, BacktestResult, Direction, Position, Trade
from stratopt.params import parse_inputs
from stratopt.script import SignalKind, execute, parse_script
from stratopt.strategies import get_preset

_LONG = 1
_SHORT = -1

# kernel codes, by SignalKind declaration order
_OPEN_LONG, _OPEN_SHORT, _CLOSE_LONG, _CLOSE_SHORT, _CLOSE_ANY = range(5)
_KIND_CODES = {kind: code for code, kind in enumerate(SignalKind)}


@nb.njit(cache=True)
def _simulate(n, kinds, conds, entries_when_flat):
    """Walk the bars; returns (entry_idx, exit_idx, direction) of every closed leg."""
    k = len(kinds)
    cap = n * max(k, 1) + 1
    entry_idx = np.empty(cap, dtype=np.int64)
    exit_idx = np.empty(cap, dtype=np.int64)
    direction = np.empty(cap, dtype=np.int64)
    count = 0
    pos = 0
    entry = 0

    for i in range(1, n):
        flat_at_open = pos == 0
        for j in range(k):
            if not conds[j, i]:
                continue
            kind = kinds[j]
            if kind == _OPEN_LONG or kind == _OPEN_SHORT:
                want = _LONG if kind == _OPEN_LONG else _SHORT
                if pos == want or (entries_when_flat and not flat_at_open):
                    continue
                if pos != 0:
                    entry_idx[count] = entry
                    exit_idx[count] = i
                    direction[count] = pos
                    count += 1
                pos = want
                entry = i
            elif ((kind == _CLOSE_LONG and pos == _LONG)
                  or (kind == _CLOSE_SHORT and pos == _SHORT)
                  or (kind == _CLOSE_ANY and pos != 0)):
                entry_idx[count] = entry
                exit_idx[count] = i
                direction[count] = pos
                count += 1
                pos = 0

    if pos != 0:
        entry_idx[count] = entry
        exit_idx[count] = n - 1
        direction[count] = pos
        count += 1

    return entry_idx[:count], exit_idx[:count], direction[:count]


def make_trade(prices, position, exit_index, asset=None):
    """Close ``position`` at ``close[exit_index]``."""
    asset = asset or AssetConfig()
    entry_price = float(position.entry_price)
    exit_price = float(prices.close[exit_index])
    if position.direction is Direction.LONG:
        points = exit_price - entry_price
    else:
        points = entry_price - exit_price
    pnl_pct = points / entry_price * 100
    dollars = points * asset.point_value if asset.kind is AssetKind.POINT_VALUE else 0.0
    return Trade(
        entry_index=position.entry_index,
        exit_index=exit_index,
        entry_timestamp=int(prices.timestamp[position.entry_index]),
        exit_timestamp=int(prices.timestamp[exit_index]),
        entry_price=entry_price,
        exit_price=exit_price,
        direction=position.direction,
        pnl_pct=pnl_pct,
        points_move=points,
        pnl_dollars=dollars,
    )


def equity_curve(n, trades):
    """100 at bar 0, compounded by every trade at its exit bar."""
    factor = np.ones(n)
    for t in trades:
        factor[t.exit_index] *= 1 + t.pnl_pct / 100
    return 100.0 * np.cumprod(factor)


def simulate_signals(prices, signals, asset=None, entries_when_flat=False):
    """Run ordered ``(SignalKind, bool series)`` pairs over the bars.

    Returns ``(trades, equity_curve)``.  With ``entries_when_flat`` an open
    signal only acts when the bar started without a position.
    """
    n = len(prices)
    kinds = np.array([_KIND_CODES[kind] for kind, _ in signals], dtype=np.int64)
    conds = np.zeros((len(signals), n), dtype=np.bool_)
    for row, (_, cond) in enumerate(signals):
        conds[row] = cond
    entries, exits, dirs = _simulate(n, kinds, conds, entries_when_flat)
    trades = []
    for e, x, d in zip(entries, exits, dirs):
        direction = Direction.LONG if d == _LONG else Direction.SHORT
        position = Position(int(e), float(prices.close[e]), direction)
        trades.append(make_trade(prices, position, int(x), asset))
    return trades, equity_curve(n, trades)


def _result(prices, trades, equity, params):
    return BacktestResult(
        metrics=calc_metrics(trades, equity, prices.timestamp),
        params=dict(params),
        trades=trades,
        equity_curve=equity,
        monthly_pnl=calc_monthly_pnl(trades),
    )


def run_preset(prices, preset, params=None, asset=None) -> BacktestResult:
    """Backtest a Preset; ``prices`` must be validated."""
    used = preset.resolve(params)
    rules = preset.build(prices, used)
    trades, equity = simulate_signals(prices, rules.signals, asset, rules.entries_when_flat)
    return _result(prices, trades, equity, used)


def run_backtest(bars, strategy, params=None, asset=None) -> BacktestResult:
    """Backtest a preset strategy (StrategyKind or its name) over ``bars``."""
    preset = get_preset(strategy)
    return run_preset(validate_bars(bars), preset, params, asset)


def script_defaults(code):
    """Input-declaration defaults of a script, source inputs excluded."""
    return {p.var_name: p.default for p in parse_inputs(code) if p.type != "source"}


def run_statements(prices, statements, params, asset=None) -> BacktestResult:
    """Backtest already-parsed script statements; ``prices`` must be validated."""
    run = execute(statements, prices, params)
    signals = [(sig.kind, run.conditions[sig.condition]) for sig in run.signals]
    trades, equity = simulate_signals(prices, signals, asset)
    return _result(prices, trades, equity, params)


def run_script_backtest(bars, script, params=None, asset=None) -> BacktestResult:
    """Backtest script text; parameters it declares but ``params`` omits use their defaults."""
    prices = validate_bars(bars)
    used = {**script_defaults(script), **(params or {})}
    return run_statements(prices, parse_script(script), used, asset)
