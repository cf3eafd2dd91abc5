"""Example 3: Script Strategy Optimization (Intermediate)
========================================================
Optimize a strategy written in the script language, with a wall-clock
budget, then write the winning parameters back into the script text.

Concepts introduced:
  - parse_strategy() to discover input declarations
  - build_param_ranges() for default search axes
  - deadline_ms: the search stops early and reports timed_out
  - generate_updated_code() to rewrite input defaults

Run:
    python examples/03_script_optimize.py
"""

import time

from stratopt.data import bars_from_frame, generate_sample
from stratopt.models import OptimizationConfig
from stratopt.optimize import optimize
from stratopt.params import build_param_ranges, generate_updated_code, parse_strategy

SCRIPT = """\
//@version=5
strategy("RSI Trend Pullback", overlay=true)

trendLen = input.int(50, "Trend EMA", minval=20, maxval=100, step=10)
rsiLen = input.int(14, "RSI Period", minval=7, maxval=21, step=7)
entryLevel = input.int(40, "Pullback RSI", minval=30, maxval=45, step=5)

trend = ta.ema(close, trendLen)
r = ta.rsi(close, rsiLen)

if close > trend and ta.crossover(r, entryLevel)
    strategy.entry("Long", strategy.long)
else if close < trend and ta.crossunder(r, 100 - entryLevel)
    strategy.entry("Short", strategy.short)

if ta.crossunder(close, trend)
    strategy.close("Long")
if ta.crossover(close, trend)
    strategy.close("Short")
"""

parsed = parse_strategy(SCRIPT)
bars = bars_from_frame(generate_sample(n=5000, seed=3))

if __name__ == "__main__":
    print(f"{parsed.title}: {[p.var_name for p in parsed.params]} ({parsed.detected_logic})")
    config = OptimizationConfig(
        script=SCRIPT,
        param_ranges=tuple(build_param_ranges(parsed.params)),
        sort_by="total_return_pct",
        top_n=3,
        deadline_ms=time.time() * 1000 + 30_000,
    )
    summary = optimize(bars, config)
    print(f"tested {summary.tested_count}, timed out: {summary.timed_out}")
    if summary.results:
        best = summary.results[0].result
        print(f"best: {best.params} -> {best.total_return_pct:+.2f}%")
        print(generate_updated_code(SCRIPT, parsed.params, best.params))
