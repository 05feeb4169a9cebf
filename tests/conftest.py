"""
Pytest Configuration and Fixtures
=================================

Synthetic, seeded price histories shared by the portfolio engine tests.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence

import numpy as np
import pandas as pd
import pytest

from portfolio_engine.correlation import AssetStatistics, CorrelationMatrix


# =============================================================================
# HELPERS
# =============================================================================

def make_ohlcv(
    closes: Sequence[float],
    index: Optional[pd.DatetimeIndex] = None,
    start: str = "2021-01-04",
    volume: float = 2_000_000.0,
) -> pd.DataFrame:
    """OHLCV frame around a close path with consistent high/low."""
    closes = np.asarray(closes, dtype=float)
    if index is None:
        index = pd.bdate_range(start=start, periods=len(closes))
    opens = np.concatenate([[closes[0]], closes[:-1]])
    return pd.DataFrame({
        "Open": opens,
        "High": np.maximum(opens, closes) * 1.005,
        "Low": np.minimum(opens, closes) * 0.995,
        "Close": closes,
        "Volume": np.full(len(closes), volume),
    }, index=index)


# =============================================================================
# DATA FIXTURES
# =============================================================================

@pytest.fixture
def ohlcv_factory() -> Callable[..., pd.DataFrame]:
    """Build OHLCV frames from close paths."""
    return make_ohlcv


@pytest.fixture
def sample_universe() -> Dict[str, pd.DataFrame]:
    """Four correlated random walks over 300 business days."""
    rng = np.random.default_rng(42)
    n = 300
    index = pd.bdate_range(start="2021-01-04", periods=n)
    market = rng.normal(0.0004, 0.01, n)

    specs = {
        "SPY": (1.0, 0.005, 400.0),
        "QQQ": (1.3, 0.008, 300.0),
        "TLT": (-0.3, 0.007, 150.0),
        "GLD": (0.1, 0.008, 170.0),
    }
    frames = {}
    for ticker, (beta, idio, start_price) in specs.items():
        returns = beta * market + rng.normal(0.0, idio, n)
        closes = start_price * np.cumprod(1 + returns)
        frames[ticker] = make_ohlcv(closes, index=index)
    return frames


@pytest.fixture
def sample_closes(sample_universe) -> pd.DataFrame:
    """Aligned close prices of the sample universe."""
    return pd.concat({t: df["Close"] for t, df in sample_universe.items()}, axis=1)


@pytest.fixture
def sample_returns() -> pd.Series:
    """Seeded daily returns."""
    rng = np.random.default_rng(7)
    return pd.Series(
        rng.normal(0.0005, 0.012, 500),
        index=pd.bdate_range(start="2020-01-01", periods=500),
    )


@pytest.fixture
def three_asset_stats() -> Dict[str, AssetStatistics]:
    return {
        "SPY": AssetStatistics("SPY", volatility=0.18, avg_return=0.10),
        "TLT": AssetStatistics("TLT", volatility=0.12, avg_return=0.04),
        "GLD": AssetStatistics("GLD", volatility=0.15, avg_return=0.06),
    }


@pytest.fixture
def three_asset_correlation() -> CorrelationMatrix:
    return CorrelationMatrix(
        ["SPY", "TLT", "GLD"],
        np.array([
            [1.0, -0.3, 0.1],
            [-0.3, 1.0, 0.2],
            [0.1, 0.2, 1.0],
        ]),
    )
