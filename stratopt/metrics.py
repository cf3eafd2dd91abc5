"""Performance metrics and the monthly P&L breakdown of one backtest."""

import math

import numpy as np
import polars as pl

from stratopt.models import BacktestMetrics, MonthlyPnL

MS_PER_DAY = 86_400_000
TRADING_DAYS = 252
MIN_YEARS = 0.01
PROFIT_FACTOR_CAP = 999.0


def max_drawdown_pct(equity):
    """Largest decline from a running equity peak, in percent."""
    equity = np.asarray(equity, dtype=np.float64)
    if len(equity) == 0:
        return 0.0
    peak = np.maximum.accumulate(equity)
    return float(np.max((peak - equity) / peak * 100))


def sharpe_ratio(equity):
    """Mean/std of bar-to-bar equity returns, scaled by sqrt(252); 0 when std is 0."""
    equity = np.asarray(equity, dtype=np.float64)
    if len(equity) < 2:
        return 0.0
    returns = np.diff(equity) / equity[:-1]
    std = returns.std()
    if std == 0 or not np.isfinite(std):
        return 0.0
    return float(returns.mean() / std * math.sqrt(TRADING_DAYS))


def calc_metrics(trades, equity_curve, timestamps):
    """Summary statistics for one run.

    ``timestamps`` are the bar timestamps (ms); only the first and last are
    used, for the annualization span.  Percentages are rounded to 2 decimals,
    Sharpe, profit factor and average trade to 3.
    """
    if not trades:
        return BacktestMetrics()

    last = float(equity_curve[-1])
    days = (int(timestamps[-1]) - int(timestamps[0])) / MS_PER_DAY
    years = max(days / 365, MIN_YEARS)
    if last > 0:
        with np.errstate(over="ignore"):
            annualized = float(np.power(last / 100, 1 / years) - 1) * 100
    else:
        annualized = -100.0

    pnl = np.array([t.pnl_pct for t in trades], dtype=np.float64)
    wins = pnl > 0
    gross_profit = float(pnl[wins].sum())
    gross_loss = float(np.abs(pnl[~wins]).sum())
    if gross_loss == 0:
        profit_factor = PROFIT_FACTOR_CAP if gross_profit > 0 else 0.0
    else:
        profit_factor = gross_profit / gross_loss

    return BacktestMetrics(
        total_return_pct=round(last - 100, 2),
        annualized_return_pct=round(annualized, 2),
        max_drawdown_pct=round(max_drawdown_pct(equity_curve), 2),
        sharpe_ratio=round(sharpe_ratio(equity_curve), 3),
        win_rate=round(float(wins.sum()) / len(trades) * 100, 2),
        total_trades=len(trades),
        profit_factor=round(profit_factor, 3),
        avg_trade_pct=round(float(pnl.mean()), 3),
        total_pnl_dollars=round(sum(t.pnl_dollars for t in trades), 2),
        total_points=round(sum(t.points_move for t in trades), 2),
    )


def calc_monthly_pnl(trades):
    """Aggregate trades by the UTC calendar month of their exit, oldest first."""
    if not trades:
        return []
    df = pl.DataFrame(
        {
            "exit_ts": [t.exit_timestamp for t in trades],
            "pnl_pct": [t.pnl_pct for t in trades],
            "pnl_dollars": [t.pnl_dollars for t in trades],
            "points_move": [t.points_move for t in trades],
        },
        schema={"exit_ts": pl.Int64, "pnl_pct": pl.Float64,
                "pnl_dollars": pl.Float64, "points_move": pl.Float64},
    )
    exit_dt = pl.from_epoch("exit_ts", time_unit="ms")
    monthly = (
        df.group_by(exit_dt.dt.year().alias("year"), exit_dt.dt.month().alias("month"))
        .agg(
            pl.len().alias("trades"),
            (pl.col("pnl_pct") > 0).sum().alias("wins"),
            pl.col("pnl_pct").sum(),
            pl.col("pnl_dollars").sum(),
            pl.col("points_move").sum(),
        )
        .sort("year", "month")
    )
    return [
        MonthlyPnL(
            year=int(row["year"]),
            month=int(row["month"]),
            trades=int(row["trades"]),
            wins=int(row["wins"]),
            pnl_pct=row["pnl_pct"],
            pnl_dollars=row["pnl_dollars"],
            points_move=row["points_move"],
        )
        for row in monthly.iter_rows(named=True)
    ]
