"""Parameter search: grid or random sample, ranked, under a deadline.

Each enabled ParamRange becomes an axis of discrete values.  When the full
grid fits in ``max_combinations`` it is walked exhaustively (first axis
slowest); otherwise ``max_combinations`` distinct combinations are drawn at
random.  Combinations whose periods are out of order (fast >= slow, ...) are
skipped without running.  Zero-trade results are dropped before ranking.
"""

import itertools
import math
import time
import warnings

import numpy as np

from stratopt.data import validate_bars
from stratopt.engine import run_preset, run_statements, script_defaults
from stratopt.models import METRIC_FIELDS, OptimizationSummary, RankedResult
from stratopt.params import parse_strategy
from stratopt.script import parse_script
from stratopt.strategies import get_preset

DEADLINE_CHECK_INTERVAL = 50
EPSILON = 1e-10

FAST_KEYS = ("fastLength", "fast_len", "fast", "fastPeriod", "macdFast")
MID_KEYS = ("midLength", "mid_len", "mid", "midPeriod")
SLOW_KEYS = ("slowLength", "slow_len", "slow", "slowPeriod", "macdSlow")

# kinds whose fast/slow (or fast/mid/slow) periods must increase
_PAIR_KINDS = ("dual_ma", "macd", "custom")


def _step(r):
    return r.step if r.step > 0 else 1.0


def expand_range(r) -> list:
    """``min, min+step, ... <= max`` (8-decimal rounding; ints for int ranges)."""
    if r.min > r.max:
        raise ValueError(f"range {r.var_name!r}: min {r.min} > max {r.max}")
    step = _step(r)
    values = []
    k = 0
    while True:
        v = r.min + k * step
        if v > r.max + EPSILON:
            break
        v = round(v, 8)
        values.append(int(v) if r.type == "int" and float(v).is_integer() else v)
        k += 1
    return values


def estimate_combinations(ranges) -> int:
    """Grid size of the enabled ranges (1 when none are enabled)."""
    total = 1
    for r in ranges:
        if r.enabled:
            total *= max(0, math.floor((r.max - r.min) / _step(r) + EPSILON) + 1)
    return total


def iterate_combinations(axes, max_combinations, rng=None):
    """Yield combination dicts over ``axes`` (a list of ``(name, values)``).

    Exhaustive lexicographic product when it has at most ``max_combinations``
    entries, otherwise ``max_combinations`` distinct uniform random draws.
    """
    names = [name for name, _ in axes]
    total = math.prod(len(values) for _, values in axes)
    if total <= max_combinations:
        for combo in itertools.product(*(values for _, values in axes)):
            yield dict(zip(names, combo))
        return

    rng = rng if rng is not None else np.random.default_rng()
    seen = set()
    while len(seen) < max_combinations:
        combo = {name: values[int(rng.integers(len(values)))] for name, values in axes}
        key = tuple(sorted(combo.items()))
        if key in seen:
            continue
        seen.add(key)
        yield combo


def _lookup(params, keys):
    for key in keys:
        if key in params:
            try:
                return float(params[key])
            except (TypeError, ValueError):
                return None
    return None


def is_valid_combination(kind, params) -> bool:
    """False when the period parameters of ``params`` are out of order for ``kind``."""
    fast = _lookup(params, FAST_KEYS)
    slow = _lookup(params, SLOW_KEYS)
    if kind == "triple_ma":
        mid = _lookup(params, MID_KEYS)
        if fast is not None and mid is not None and fast >= mid:
            return False
        if mid is not None and slow is not None and mid >= slow:
            return False
        return True
    if kind in _PAIR_KINDS:
        return not (fast is not None and slow is not None and fast >= slow)
    return True


def rank_results(results, sort_by="total_return_pct"):
    """Sort results by a metric, descending; ties keep their order."""
    return sorted(results, key=lambda r: getattr(r.metrics, sort_by), reverse=True)


def _runner(prices, config):
    if config.script:
        statements = parse_script(config.script)
        defaults = script_defaults(config.script)
        return lambda params: run_statements(prices, statements, {**defaults, **params}, config.asset)
    preset = get_preset(config.strategy)
    return lambda params: run_preset(prices, preset, params, config.asset)


def _filter_kind(config):
    if config.strategy:
        return str(getattr(config.strategy, "value", config.strategy))
    if config.script:
        return parse_strategy(config.script).detected_logic
    return "custom"


def optimize(bars, config) -> OptimizationSummary:
    """Run every (or a sample of every) combination and return the ranked top N.

    Raises ValueError before any backtest for bad bars, a range with
    ``min > max``, an unknown ``sort_by`` or an unknown preset.
    """
    if config.sort_by not in METRIC_FIELDS:
        raise ValueError(f"unknown sort key {config.sort_by!r}; expected one of {', '.join(METRIC_FIELDS)}")
    prices = validate_bars(bars)
    axes = [(r.var_name, expand_range(r)) for r in config.param_ranges if r.enabled]
    run_one = _runner(prices, config)
    kind = _filter_kind(config)

    total = math.prod(len(values) for _, values in axes)
    if total > config.max_combinations:
        warnings.warn(
            f"grid has {total} combinations (> {config.max_combinations}); "
            f"sampling {config.max_combinations} at random",
            stacklevel=2,
        )

    rng = np.random.default_rng(config.seed)
    results = []
    tested = 0
    timed_out = False
    for i, combo in enumerate(iterate_combinations(axes, config.max_combinations, rng)):
        if (config.deadline_ms is not None and i % DEADLINE_CHECK_INTERVAL == 0
                and time.time() * 1000 > config.deadline_ms):
            timed_out = True
            break
        params = {**config.fixed_params, **combo}
        if not is_valid_combination(kind, params):
            continue
        result = run_one(params)
        tested += 1
        if result.metrics.total_trades > 0:
            results.append(result)

    ranked = rank_results(results, config.sort_by)[:config.top_n]
    return OptimizationSummary(
        results=[
            RankedResult(rank=i, result=r, score=getattr(r.metrics, config.sort_by))
            for i, r in enumerate(ranked, 1)
        ],
        tested_count=tested,
        timed_out=timed_out,
    )
