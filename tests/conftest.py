"""Shared bar builders."""

import numpy as np
import pytest

from stratopt.models import Bar, PriceData

HOUR_MS = 3_600_000
START_MS = 1_704_067_200_000  # 2024-01-01 UTC


def build_bars(closes, start_ms=START_MS, step_ms=HOUR_MS, spread=0.5):
    """Bars whose close follows ``closes``; open is the previous close."""
    bars = []
    prev = float(closes[0])
    for i, c in enumerate(closes):
        c = float(c)
        bars.append(Bar(
            timestamp=start_ms + i * step_ms,
            open=prev,
            high=max(prev, c) + spread,
            low=min(prev, c) - spread,
            close=c,
            volume=1000.0,
        ))
        prev = c
    return bars


@pytest.fixture
def make_bars():
    return build_bars


@pytest.fixture
def make_prices():
    return lambda closes, **kw: PriceData.from_bars(build_bars(closes, **kw))


@pytest.fixture
def rising_bars():
    return build_bars([100.0 + i for i in range(30)])


@pytest.fixture
def flat_bars():
    return build_bars([50.0] * 120, spread=0.0)


@pytest.fixture
def random_closes():
    rng = np.random.default_rng(7)
    return 100.0 * np.exp(np.cumsum(rng.normal(0, 0.01, 500)))
