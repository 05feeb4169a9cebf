"""
Configuration Module for the Regime-Aware Portfolio Engine

This module centralizes the enumerations, parameter sets, asset
classifications and exception types used throughout the portfolio
construction and backtesting pipeline.

All "magic numbers" and configuration values are defined here to ensure:
1. Single source of truth for all constants
2. Easy modification without touching analysis code
3. Transparency in assumptions and thresholds
4. Consistency across all modules
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Tuple


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Regime(Enum):
    """Market volatility regime as classified by the turbulence index."""
    LOW_VOL = "low_vol"
    NORMAL = "normal"
    HIGH_VOL = "high_vol"
    CRISIS = "crisis"


class RebalanceFrequency(Enum):
    """Rebalance cadence for the backtest engine."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    NONE = "none"          # Buy-and-hold, initial allocation only


class DataQuality(Enum):
    """Per-ticker data quality tier."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BacktestStatus(Enum):
    """Backtest execution status."""
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"                  # Completed with dropped tickers or warnings
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


# =============================================================================
# EXCEPTIONS
# =============================================================================

class PortfolioEngineError(Exception):
    """Base class for all portfolio engine errors."""


class ConfigurationError(PortfolioEngineError):
    """Invalid run configuration (empty universe, bad capital, no usable data)."""


class ExternalFetchError(PortfolioEngineError):
    """A price-history provider failed for a ticker."""

    def __init__(self, ticker: str, message: str):
        super().__init__(f"{ticker}: {message}")
        self.ticker = ticker


class DataQualityError(PortfolioEngineError):
    """Price data failed validation badly enough to be unusable."""


class BacktestCancelledError(PortfolioEngineError):
    """The run was cancelled through its cancellation token."""


# =============================================================================
# TRADING CALENDAR
# =============================================================================

TRADING_DAYS_YEAR: int = 252
TRADING_DAYS_MONTH: int = 21
DAYS_PER_YEAR: float = 365.25       # Calendar-year length used for CAGR


# =============================================================================
# ASSET CLASSIFICATION
# =============================================================================

# Tickers that gain weight as the regime worsens
DEFENSIVE_ASSETS: FrozenSet[str] = frozenset({
    "GLD", "IAU", "TLT", "TIP", "VNQ", "XLRE",
    "DBC", "SCHP", "BND", "AGG", "SHY", "IEF",
})

# Tickers that lose weight as the regime worsens
GROWTH_ASSETS: FrozenSet[str] = frozenset({
    "QQQ", "XLK", "VGT", "IGV", "ARKK", "SMH",
    "SOXX", "XLY", "IWM", "VBK", "MTUM",
})

# Liquidity score 0-100 for well-known tickers; anything else scores 50
LIQUIDITY_SCORES: Dict[str, int] = {
    "SPY": 100, "QQQ": 99, "IWM": 95, "DIA": 94,
    "AAPL": 98, "MSFT": 98, "GOOGL": 97, "AMZN": 97, "NVDA": 96,
    "BND": 90, "AGG": 90, "TLT": 88, "GLD": 85, "VNQ": 80,
    "BITO": 60, "GBTC": 55,
}
DEFAULT_LIQUIDITY_SCORE: int = 50


# =============================================================================
# PARAMETER SETS
# =============================================================================

@dataclass(frozen=True)
class TaxRates:
    """Capital gains tax rates applied to realized gains."""
    short_term: float = 0.35      # Held < 365 days
    long_term: float = 0.15       # Held >= 365 days

    def __post_init__(self):
        for name, rate in (("short_term", self.short_term), ("long_term", self.long_term)):
            if not 0.0 <= rate <= 1.0:
                raise ValueError(f"{name} tax rate must be within [0, 1], got {rate}")

    def to_dict(self) -> Dict[str, float]:
        return {"short_term": self.short_term, "long_term": self.long_term}


@dataclass(frozen=True)
class RiskParameters:
    """Risk-free rates and tail-risk settings."""
    backtest_risk_free: float = 0.05       # Sharpe/Sortino in backtest metrics
    optimizer_risk_free: float = 0.04      # Sharpe of the regime-aware allocator
    frontier_risk_free_pct: float = 5.0    # Frontier Sharpe, in percent
    min_tail_observations: int = 20        # Tail ratio needs this many returns
    ratio_cap: float = 10.0                # Sentinel when a ratio's denominator is zero
    max_volume_participation: float = 0.10 # Max 10% of daily volume when liquidating
    default_daily_volume: float = 1_000_000
    default_price: float = 100.0


@dataclass(frozen=True)
class FrontierParameters:
    """Monte-Carlo efficient frontier settings."""
    num_simulations: int = 5000
    bucket_width: float = 0.5              # Risk bucket width, in percent
    target_points: int = 50
    default_return: float = 0.08
    default_volatility: float = 0.20


@dataclass(frozen=True)
class BlackLittermanParameters:
    """Equilibrium and view-blending constants."""
    risk_aversion: float = 2.5             # Delta
    market_risk_premium: float = 0.05
    tau: float = 0.05
    default_volatility: float = 0.20


@dataclass(frozen=True)
class RegimeThresholds:
    """Turbulence thresholds and window lengths for the regime detector."""
    crisis: float = 25.0
    high_vol: float = 15.0
    normal: float = 8.0
    lookback: int = 60
    recent_window: int = 5
    min_observations: int = 10
    volatility_floor: float = 1.0
    default_turbulence: float = 10.0
    default_volatility: float = 15.0


@dataclass(frozen=True)
class BacktestParameters:
    """Backtest engine windows and minimums."""
    correlation_lookback: int = 252
    regime_lookback: int = 60
    min_bars_for_stats: int = 10
    min_returns_for_stats: int = 5
    min_correlation_observations: int = 5
    initial_capital: float = 100_000.0


# Global instances
RISK = RiskParameters()
FRONTIER = FrontierParameters()
BLACK_LITTERMAN = BlackLittermanParameters()
REGIME = RegimeThresholds()
BACKTEST = BacktestParameters()
DEFAULT_TAX_RATES = TaxRates()

# Growth / defensive weight multipliers per regime
REGIME_TILTS: Dict[Regime, Tuple[float, float]] = {
    Regime.LOW_VOL: (1.2, 0.8),
    Regime.NORMAL: (1.0, 1.0),
    Regime.HIGH_VOL: (0.7, 1.3),
    Regime.CRISIS: (0.4, 1.6),
}

# Minimum calendar days between rebalances
REBALANCE_INTERVAL_DAYS: Dict[RebalanceFrequency, int] = {
    RebalanceFrequency.DAILY: 1,
    RebalanceFrequency.WEEKLY: 7,
    RebalanceFrequency.MONTHLY: 21,
}
