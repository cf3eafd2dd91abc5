"""Example 1: Preset Backtest (Beginner)
========================================
Run the dual moving-average preset once on synthetic data and print the
headline metrics and the monthly P&L breakdown.

Concepts introduced:
  - generate_sample() + bars_from_frame() for demo data
  - run_backtest() with a preset name and parameter overrides
  - BacktestResult metrics read straight off the result

Run:
    python examples/01_preset_backtest.py
"""

from stratopt.data import bars_from_frame, generate_sample
from stratopt.engine import run_backtest

# ── Data ──────────────────────────────────────────────────────────────────────
bars = bars_from_frame(generate_sample(n=3000, seed=42))

# ── Backtest ──────────────────────────────────────────────────────────────────
# Anything not passed falls back to the preset defaults (maType=EMA here).
result = run_backtest(bars, "dual_ma", {"fastLength": 12, "slowLength": 34})

if __name__ == "__main__":
    print(f"params:   {result.params}")
    print(f"trades:   {result.total_trades}")
    print(f"return:   {result.total_return_pct:+.2f}%")
    print(f"sharpe:   {result.sharpe_ratio:.3f}")
    print(f"max DD:   {result.max_drawdown_pct:.2f}%")
    print(f"win rate: {result.win_rate:.2f}%")
    for month in result.monthly_pnl:
        print(f"  {month.year}-{month.month:02d}  {month.trades:>3} trades  {month.pnl_pct:+7.2f}%")
