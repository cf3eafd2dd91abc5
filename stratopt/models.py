"""Core data model: bars, trades, results and optimizer configuration.

Everything here is plain data.  Bars and configuration are frozen; results
are built once by the engine/optimizer and handed back to the caller.
"""

from dataclasses import dataclass, field, fields
from enum import Enum

import numpy as np


@dataclass(frozen=True)
class Bar:
    timestamp: int  # ms epoch
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class PriceData:
    """Column view of a bar list, built once per run and shared read-only."""
    timestamp: np.ndarray
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    volume: np.ndarray

    @classmethod
    def from_bars(cls, bars):
        return cls(
            timestamp=np.array([b.timestamp for b in bars], dtype=np.int64),
            open=np.array([b.open for b in bars], dtype=np.float64),
            high=np.array([b.high for b in bars], dtype=np.float64),
            low=np.array([b.low for b in bars], dtype=np.float64),
            close=np.array([b.close for b in bars], dtype=np.float64),
            volume=np.array([b.volume for b in bars], dtype=np.float64),
        )

    def __len__(self):
        return len(self.close)


class AssetKind(str, Enum):
    PERCENTAGE = "crypto"
    POINT_VALUE = "futures"


@dataclass(frozen=True)
class AssetConfig:
    kind: AssetKind = AssetKind.PERCENTAGE
    point_value: float = 1.0


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"


@dataclass
class Position:
    entry_index: int
    entry_price: float
    direction: Direction


@dataclass(frozen=True)
class Trade:
    entry_index: int
    exit_index: int
    entry_timestamp: int
    exit_timestamp: int
    entry_price: float
    exit_price: float
    direction: Direction
    pnl_pct: float
    points_move: float
    pnl_dollars: float


@dataclass
class MonthlyPnL:
    year: int
    month: int
    trades: int = 0
    wins: int = 0
    pnl_pct: float = 0.0
    pnl_dollars: float = 0.0
    points_move: float = 0.0


@dataclass(frozen=True)
class BacktestMetrics:
    total_return_pct: float = 0.0
    annualized_return_pct: float = 0.0
    max_drawdown_pct: float = 0.0
    sharpe_ratio: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    profit_factor: float = 0.0
    avg_trade_pct: float = 0.0
    total_pnl_dollars: float = 0.0
    total_points: float = 0.0


METRIC_FIELDS = tuple(f.name for f in fields(BacktestMetrics))


@dataclass
class BacktestResult:
    metrics: BacktestMetrics
    params: dict
    trades: list[Trade]
    equity_curve: np.ndarray
    monthly_pnl: list[MonthlyPnL] = field(default_factory=list)

    def __getattr__(self, name):
        # result.sharpe_ratio etc. read straight through to the metrics
        if name in METRIC_FIELDS:
            return getattr(self.metrics, name)
        raise AttributeError(name)


@dataclass(frozen=True)
class ParamRange:
    var_name: str
    min: float
    max: float
    step: float = 1.0
    type: str = "int"
    title: str = ""
    enabled: bool = True


@dataclass(frozen=True)
class OptimizationConfig:
    """Everything one optimizer call needs besides the bars.

    ``strategy`` selects a preset (or, with ``script`` set, only drives the
    period-ordering filter).  ``deadline_ms`` is an absolute epoch in ms.
    """
    strategy: str = ""
    script: str | None = None
    param_ranges: tuple = ()
    fixed_params: dict = field(default_factory=dict)
    max_combinations: int = 1000
    sort_by: str = "total_return_pct"
    top_n: int = 20
    asset: AssetConfig = AssetConfig()
    deadline_ms: float | None = None
    seed: int | None = None


@dataclass
class RankedResult:
    rank: int
    result: BacktestResult
    score: float


@dataclass
class OptimizationSummary:
    results: list[RankedResult]
    tested_count: int
    timed_out: bool
