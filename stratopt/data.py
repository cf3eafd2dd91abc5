"""Bar sources: validation, CSV files and a synthetic GARCH generator.

The core only ever sees a validated ``PriceData``; frames from either
loader go through ``bars_from_frame`` first.
"""

import warnings
from datetime import date, datetime, timezone

import numba as nb
import numpy as np
import polars as pl

from stratopt.models import Bar, PriceData

TIMEFRAME_MS = {
    tf: seconds * 1000
    for tf, seconds in (
        ("1m", 60), ("3m", 180), ("5m", 300), ("15m", 900), ("30m", 1800),
        ("1h", 3600), ("2h", 7200), ("4h", 14400), ("6h", 21600), ("8h", 28800),
        ("12h", 43200), ("1d", 86400), ("3d", 259200), ("1w", 604800),
    )
}

COLUMNS = ("timestamp", "open", "high", "low", "close", "volume")
SCHEMA = {c: (pl.Int64 if c == "timestamp" else pl.Float64) for c in COLUMNS}

SAMPLE_START_MS = 1_704_067_200_000  # 2024-01-01 UTC
GAP_FACTOR = 2.5

# GARCH(1,1) variance: omega + alpha * r[t-1]^2 + beta * h[t-1]
GARCH_OMEGA = 4e-6
GARCH_ALPHA = 0.10
GARCH_BETA = 0.85
GARCH_H0 = 0.015 ** 2
STUDENT_T_DF = 5


def _timeframe_ms(timeframe):
    return TIMEFRAME_MS.get(timeframe, TIMEFRAME_MS["1h"])


def day_start_ms(day: str) -> int:
    """``YYYY-MM-DD`` → epoch ms of that UTC midnight."""
    d = date.fromisoformat(day)
    return int(datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp()) * 1000


def validate_bars(bars) -> PriceData:
    """Check a bar list (or PriceData) and return its column view.

    Raises ValueError for an empty list, timestamps that are not strictly
    increasing, or non-finite prices.
    """
    prices = bars if isinstance(bars, PriceData) else PriceData.from_bars(bars)
    if len(prices) == 0:
        raise ValueError("bar list is empty")
    steps = np.diff(prices.timestamp)
    if np.any(steps <= 0):
        idx = int(np.argmax(steps <= 0)) + 1
        raise ValueError(f"timestamps must be strictly increasing (bar {idx})")
    for name in ("open", "high", "low", "close"):
        finite = np.isfinite(getattr(prices, name))
        if not finite.all():
            raise ValueError(f"non-finite {name} price at bar {int(np.argmin(finite))}")
    return prices


def warn_on_quality(df: pl.DataFrame, timeframe: str = "1h") -> None:
    """Emit a warning for missing bars and for rows whose OHLCV is inconsistent."""
    if df.height < 2:
        return
    bar_ms = _timeframe_ms(timeframe)
    steps = df["timestamp"].diff().drop_nulls()
    gaps = steps.filter(steps > bar_ms * GAP_FACTOR)
    if gaps.len():
        warnings.warn(
            f"{gaps.len()} gap(s) longer than {GAP_FACTOR}x the {timeframe} bar "
            f"(largest {gaps.max() / bar_ms:.1f} bars); metrics may be skewed",
            stacklevel=3,
        )
    broken = df.filter(
        (pl.col("high") < pl.col("low"))
        | (pl.col("close") > pl.col("high"))
        | (pl.col("close") < pl.col("low"))
        | (pl.col("volume") < 0)
    )
    if broken.height:
        warnings.warn(
            f"OHLCV sanity check: {broken.height} row(s) with high < low, "
            f"close outside [low, high] or negative volume",
            stacklevel=3,
        )


def bars_from_frame(df: pl.DataFrame) -> list[Bar]:
    """Polars frame with the six OHLCV columns → list of Bars."""
    missing = [c for c in COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"missing column(s): {', '.join(missing)}")
    typed = df.select([pl.col(c).cast(t) for c, t in SCHEMA.items()])
    return [Bar(*row) for row in typed.iter_rows()]


def load_csv(path: str, start: str | None = None, end: str | None = None,
             timeframe: str = "1h") -> pl.DataFrame:
    """Read ``timestamp,open,high,low,close,volume`` rows, oldest first.

    ``start`` and ``end`` are inclusive UTC days.
    """
    df = pl.read_csv(path).sort("timestamp")
    if start:
        df = df.filter(pl.col("timestamp") >= day_start_ms(start))
    if end:
        df = df.filter(pl.col("timestamp") < day_start_ms(end) + TIMEFRAME_MS["1d"])
    warn_on_quality(df, timeframe)
    return df


@nb.njit(cache=True)
def _garch_returns(shocks, omega, alpha, beta, h0):
    n = len(shocks)
    out = np.empty(n)
    h = h0
    out[0] = np.sqrt(h) * shocks[0]
    for t in range(1, n):
        h = omega + alpha * out[t - 1] ** 2 + beta * h
        out[t] = np.sqrt(h) * shocks[t]
    return out


def generate_sample(n: int = 2000, seed: int = 42, timeframe: str = "1h",
                    start_ms: int = SAMPLE_START_MS) -> pl.DataFrame:
    """Synthetic OHLCV starting at 100: GARCH(1,1) volatility, Student-t shocks.

    Volume rises with the size of the bar's move.
    """
    if n == 0:
        return pl.DataFrame(schema=SCHEMA)

    rng = np.random.default_rng(seed)
    log_ret = _garch_returns(
        rng.standard_t(STUDENT_T_DF, n), GARCH_OMEGA, GARCH_ALPHA, GARCH_BETA, GARCH_H0
    )
    close = 100.0 * np.exp(np.cumsum(log_ret))

    # each bar opens near the previous close
    prev_close = np.concatenate(([100.0], close[:-1]))
    open_ = prev_close * (1 + rng.normal(0, 0.002, n))
    body_hi = np.maximum(open_, close)
    body_lo = np.minimum(open_, close)
    wicks = rng.uniform(0, 0.008, (2, n))

    move = np.abs(np.expm1(log_ret))
    volume = rng.lognormal(6.0, 1.0, n) * (1 + move / 0.004)

    return pl.DataFrame({
        "timestamp": start_ms + np.arange(n, dtype=np.int64) * _timeframe_ms(timeframe),
        "open": open_,
        "high": body_hi * (1 + wicks[0]),
        "low": body_lo * (1 - wicks[1]),
        "close": close,
        "volume": volume,
    })
