"""Example 2: Preset Grid Search (Easy)
=======================================
Sweep the RSI preset over period and threshold ranges, rank by Sharpe
ratio and keep the five best combinations.

Concepts introduced:
  - ParamRange axes (min, max, step)
  - OptimizationConfig with sort_by / top_n
  - Grid: 3 × 3 × 3 = 27 combinations

Run:
    python examples/02_preset_grid.py
"""

from stratopt.data import bars_from_frame, generate_sample
from stratopt.models import OptimizationConfig, ParamRange
from stratopt.optimize import optimize

bars = bars_from_frame(generate_sample(n=4000, seed=7))

# ── Search space ──────────────────────────────────────────────────────────────
CONFIG = OptimizationConfig(
    strategy="rsi",
    param_ranges=(
        ParamRange("rsiPeriod", 7, 21, 7),
        ParamRange("oversold", 20, 30, 5),
        ParamRange("overbought", 70, 80, 5),
    ),
    sort_by="sharpe_ratio",
    top_n=5,
)

if __name__ == "__main__":
    summary = optimize(bars, CONFIG)
    print(f"tested {summary.tested_count} combinations")
    for ranked in summary.results:
        r = ranked.result
        print(f"#{ranked.rank}  sharpe={r.sharpe_ratio:6.3f}  return={r.total_return_pct:+7.2f}%  {r.params}")
