"""CLI entry point for stratopt."""

import argparse
import os
import sys
import time
from pathlib import Path

from stratopt.data import bars_from_frame, generate_sample, load_csv
from stratopt.engine import run_backtest, run_script_backtest
from stratopt.models import METRIC_FIELDS, AssetConfig, AssetKind, OptimizationConfig, ParamRange
from stratopt.optimize import estimate_combinations, optimize
from stratopt.params import ScriptParam, build_param_ranges, generate_updated_code, parse_strategy
from stratopt.strategies import PRESETS, StrategyKind

SEED_ENV = "STRATOPT_SEED"


def _load_data(args):
    """Load bars based on CLI args. Returns a list of Bars."""
    if args.demo:
        print(f"\n[*] Generating synthetic data ({args.bars} {args.timeframe} candles)...")
        df = generate_sample(n=args.bars, seed=args.data_seed, timeframe=args.timeframe)
        print(f"    Simulated price from {df['close'][0]:.2f} to {df['close'][-1]:.2f}")
    else:
        print(f"\n[*] Loading data from {args.csv}...")
        df = load_csv(args.csv, start=args.start, end=args.end, timeframe=args.timeframe)
    return bars_from_frame(df)


def parse_value(text):
    """``9`` → 9, ``2.5`` → 2.5, ``true`` → True, anything else stays a string."""
    lowered = text.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text.strip()


def parse_assignment(text):
    name, sep, value = text.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected name=value, got {text!r}")
    return name.strip(), parse_value(value)


def parse_range(text):
    """``fastLength=5:20[:step]`` → ParamRange (int when every bound is integral)."""
    name, sep, bounds_text = text.partition("=")
    parts = bounds_text.split(":")
    if not sep or not name.strip() or len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError(f"expected name=min:max[:step], got {text!r}")
    try:
        bounds = [float(p) for p in parts]
    except ValueError:
        raise argparse.ArgumentTypeError(f"non-numeric bound in {text!r}") from None
    step = bounds[2] if len(bounds) == 3 else 1.0
    kind = "int" if all(b.is_integer() for b in bounds) else "float"
    return ParamRange(var_name=name.strip(), min=bounds[0], max=bounds[1], step=step, type=kind)


def _preset_ranges(kind):
    params = [
        ScriptParam(var_name=name, title=name, type="int" if isinstance(v, int) else "float", default=v)
        for name, v in PRESETS[StrategyKind(kind)].defaults.items()
        if isinstance(v, (int, float)) and not isinstance(v, bool)
    ]
    return build_param_ranges(params)


def _asset(args):
    return AssetConfig(kind=AssetKind(args.asset), point_value=args.point_value)


def _format_params(params):
    return ", ".join(f"{k}={v}" for k, v in params.items())


def _display_result(result, label):
    m = result.metrics
    print(f"\n{'=' * 70}")
    print(f"  {label}")
    print(f"  Params: {_format_params(result.params)}")
    print(f"  Return: {m.total_return_pct:+.2f}% | Annualized: {m.annualized_return_pct:+.2f}% "
          f"| Sharpe: {m.sharpe_ratio:.3f} | MaxDD: {m.max_drawdown_pct:.2f}%")
    print(f"  Win Rate: {m.win_rate:.2f}% | Trades: {m.total_trades} | Profit Factor: {m.profit_factor:.3f} "
          f"| Avg Trade: {m.avg_trade_pct:+.3f}%")
    if m.total_pnl_dollars or m.total_points:
        print(f"  P&L: ${m.total_pnl_dollars:,.2f} | Points: {m.total_points:+.2f}")
    print(f"{'=' * 70}")


def _display_monthly(result):
    if not result.monthly_pnl:
        return
    print(f"\n  {'Month':<8} {'Trades':>7} {'Wins':>5} {'P&L%':>9} {'P&L$':>12}")
    for row in result.monthly_pnl:
        print(f"  {row.year:04d}-{row.month:02d} {row.trades:>7} {row.wins:>5} "
              f"{row.pnl_pct:>+8.2f}% {row.pnl_dollars:>12,.2f}")


def _display_ranked(summary, top, sort):
    """Print the ranked results table and best strategy summary."""
    print(f"\n{'=' * 70}")
    print(f"  TOP {top} COMBINATIONS (sorted by {sort})")
    print(f"{'=' * 70}")

    header = f"{'#':>3} {'Return%':>9} {'Sharpe':>8} {'MaxDD%':>8} {'WinRate%':>9} {'Trades':>7} {'PF':>7}  Params"
    print(header)
    print("-" * len(header) + "-" * 30)

    for ranked in summary.results:
        m = ranked.result.metrics
        print(
            f"{ranked.rank:>3} {m.total_return_pct:>+8.2f}% "
            f"{m.sharpe_ratio:>8.3f} {m.max_drawdown_pct:>8.2f} "
            f"{m.win_rate:>8.2f}% {m.total_trades:>7} {m.profit_factor:>7.3f}  "
            f"{_format_params(ranked.result.params)}"
        )

    _display_result(summary.results[0].result, "BEST COMBINATION")


def _cmd_backtest(args, bars):
    t0 = time.perf_counter()
    if args.script:
        code = Path(args.script).read_text()
        result = run_script_backtest(bars, code, dict(args.param), _asset(args))
        label = f"SCRIPT: {parse_strategy(code).title}"
    else:
        result = run_backtest(bars, args.preset, dict(args.param), _asset(args))
        label = f"PRESET: {args.preset}"
    print(f"    Backtest done in {time.perf_counter() - t0:.4f}s")
    _display_result(result, label)
    _display_monthly(result)
    return 0


def _cmd_optimize(args, bars):
    code = Path(args.script).read_text() if args.script else None
    ranges = list(args.range)
    if not ranges:
        if code is not None:
            parsed = parse_strategy(code)
            ranges = [r for r in build_param_ranges(parsed.params) if r.var_name not in dict(args.param)]
        else:
            ranges = [r for r in _preset_ranges(args.preset) if r.var_name not in dict(args.param)]

    deadline = time.time() * 1000 + args.timeout * 1000 if args.timeout else None
    config = OptimizationConfig(
        strategy=args.preset or "",
        script=code,
        param_ranges=tuple(ranges),
        fixed_params=dict(args.param),
        max_combinations=args.max_combos,
        sort_by=args.sort,
        top_n=args.top,
        asset=_asset(args),
        deadline_ms=deadline,
        seed=args.seed,
    )

    grid = estimate_combinations(ranges)
    print(f"\n[*] Searching {min(grid, args.max_combos)} of {grid} combinations...")
    for r in ranges:
        print(f"    {r.var_name}: {r.min:g} .. {r.max:g} step {r.step:g}")

    t1 = time.perf_counter()
    summary = optimize(bars, config)
    elapsed = time.perf_counter() - t1
    print(f"    Done in {elapsed:.4f}s ({summary.tested_count / max(elapsed, 0.0001):.0f} backtests/sec)"
          f"{' [TIMED OUT]' if summary.timed_out else ''}")
    print(f"    Tested {summary.tested_count}, {len(summary.results)} ranked")

    if not summary.results:
        print("\n    No combination produced a trade.")
        return 0

    _display_ranked(summary, args.top, args.sort)
    if code is not None:
        best = summary.results[0].result.params
        print("\n  Script with best parameters:\n")
        print(generate_updated_code(code, parse_strategy(code).params, best))
    return 0


def _add_common(p):
    src = p.add_mutually_exclusive_group(required=True)
    src.add_argument("--preset", choices=[k.value for k in StrategyKind], help="Preset strategy")
    src.add_argument("--script", metavar="FILE", help="Strategy script file")
    p.add_argument("-p", "--param", action="append", type=parse_assignment, default=[],
                   metavar="NAME=VALUE", help="Fixed parameter (repeatable)")

    data = p.add_mutually_exclusive_group(required=True)
    data.add_argument("--demo", action="store_true", help="Use synthetic data")
    data.add_argument("--csv", help="Load OHLCV from CSV file")
    p.add_argument("-n", "--bars", type=int, default=2000, help="Synthetic candles (default: 2000)")
    p.add_argument("--data-seed", type=int, default=42, help="Synthetic data seed (default: 42)")
    p.add_argument("-t", "--timeframe", default="1h", help="Candle timeframe (default: 1h)")
    p.add_argument("--start", metavar="DATE", help="Start date YYYY-MM-DD (inclusive)")
    p.add_argument("--end", metavar="DATE", help="End date YYYY-MM-DD (inclusive)")
    p.add_argument("--asset", choices=[k.value for k in AssetKind], default=AssetKind.PERCENTAGE.value,
                   help="P&L model (default: crypto)")
    p.add_argument("--point-value", type=float, default=1.0, help="USD per point per contract (default: 1)")


def build_parser():
    parser = argparse.ArgumentParser(
        description="stratopt - strategy backtester and parameter optimizer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stratopt backtest --preset dual_ma -p fastLength=9 -p slowLength=21 --demo
  stratopt optimize --preset rsi -r rsiPeriod=7:21 -r oversold=20:35:5 --demo
  stratopt optimize --script strategy.pine --csv data.csv --sort sharpe_ratio --timeout 10
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    bt = sub.add_parser("backtest", help="Run one backtest")
    _add_common(bt)

    opt = sub.add_parser("optimize", help="Search a parameter grid")
    _add_common(opt)
    opt.add_argument("-r", "--range", action="append", type=parse_range, default=[],
                     metavar="NAME=MIN:MAX[:STEP]", help="Swept parameter (repeatable)")
    opt.add_argument("--max-combos", type=int, default=1000, help="Combination cap (default: 1000)")
    opt.add_argument("--sort", choices=METRIC_FIELDS, default="total_return_pct",
                     help="Ranking metric (default: total_return_pct)")
    opt.add_argument("--top", type=int, default=20, help="Results to keep (default: 20)")
    opt.add_argument("--timeout", type=float, help="Wall-clock budget in seconds")
    seed = os.environ.get(SEED_ENV)
    opt.add_argument("--seed", type=int, default=int(seed) if seed else None,
                     help=f"Sampling seed (default: ${SEED_ENV} or random)")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    print("=" * 70)
    print("  STRATOPT - Strategy Backtester & Optimizer")
    print("=" * 70)

    t0 = time.perf_counter()
    try:
        bars = _load_data(args)
        print(f"    {len(bars)} candles loaded in {time.perf_counter() - t0:.2f}s")
        if args.command == "backtest":
            code = _cmd_backtest(args, bars)
        else:
            code = _cmd_optimize(args, bars)
    except (ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"\nTotal time: {time.perf_counter() - t0:.2f}s")
    return code


if __name__ == "__main__":
    sys.exit(main())
