"""
Market Regime Detection
=======================

Classifies the current market environment of a ticker universe into one
of four volatility regimes using a short-versus-long volatility ratio
("turbulence index"). The detected regime tilts the HRP allocation toward
or away from defensive assets on every rebalance of the backtest.

METHOD
------
    1. Equal-weighted average daily log return across the universe,
       computed per date over the assets that have a valid price pair.
    2. Window volatility: population standard deviation of that series,
       annualized and expressed in percent.
    3. Recent volatility: the same statistic over the last 5 observations,
       with deviations measured from the full-window mean.
    4. turbulence = recent / max(volatility, 1) * 10

    Turbulence      Regime
    ----------      ------
    > 25            crisis
    > 15            high_vol
    > 8             normal
    otherwise       low_vol

Fewer than 10 usable observations yield the neutral default
``normal / turbulence 10 / volatility 15``.

Reference:
    Kritzman, M. & Li, Y. (2010). "Skulls, Financial Turbulence, and
    Risk Management." Financial Analysts Journal, 66(5).

Version: 1.0.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from portfolio_engine.config import REGIME, Regime, RegimeThresholds, TRADING_DAYS_YEAR

logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class RegimeSignal:
    """Regime classification as of a date."""
    regime: Regime
    turbulence_index: float       # Rounded to 2 dp
    volatility: float             # Annualized window volatility, %, 2 dp
    as_of: Optional[date] = None

    @classmethod
    def default(cls, as_of: Optional[date] = None) -> "RegimeSignal":
        return cls(
            regime=Regime.NORMAL,
            turbulence_index=REGIME.default_turbulence,
            volatility=REGIME.default_volatility,
            as_of=as_of,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regime": self.regime.value,
            "turbulence_index": self.turbulence_index,
            "volatility": self.volatility,
            "as_of": self.as_of.isoformat() if self.as_of else None,
        }


@dataclass(frozen=True)
class RegimeSummary:
    """Performance of the days spent in one regime."""
    regime: Regime
    days: int
    avg_return: float             # Annualized mean daily return (decimal)
    volatility: float             # Annualized population volatility (decimal)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regime": self.regime.value,
            "days": self.days,
            "avg_return": self.avg_return,
            "volatility": self.volatility,
        }


# =============================================================================
# SECTION 2: UTILITY FUNCTIONS
# =============================================================================

def classify_turbulence(turbulence: float, thresholds: RegimeThresholds = REGIME) -> Regime:
    """Map a turbulence index onto a regime using strict thresholds."""
    if turbulence > thresholds.crisis:
        return Regime.CRISIS
    elif turbulence > thresholds.high_vol:
        return Regime.HIGH_VOL
    elif turbulence > thresholds.normal:
        return Regime.NORMAL
    else:
        return Regime.LOW_VOL


def equal_weight_returns(prices: Union[pd.DataFrame, pd.Series]) -> pd.Series:
    """
    Equal-weighted average daily log return across columns.

    A date contributes only the assets with a valid positive price on both
    it and the previous row; dates with no valid asset are dropped.

    Args:
        prices: Close prices, one column per asset, oldest first

    Returns:
        Series indexed by date (first row excluded)
    """
    if isinstance(prices, pd.Series):
        prices = prices.to_frame()
    frame = prices.astype(float)
    prev = frame.shift(1)
    valid = (prev > 0) & (frame > 0)
    with np.errstate(divide="ignore", invalid="ignore"):
        log_ret = np.log(frame.where(valid) / prev.where(valid))
    return log_ret.iloc[1:].mean(axis=1, skipna=True).dropna()


def _annualized_pct(deviations: np.ndarray) -> float:
    return float(np.sqrt(np.mean(deviations ** 2)) * np.sqrt(TRADING_DAYS_YEAR) * 100.0)


# =============================================================================
# SECTION 3: TURBULENCE REGIME DETECTOR
# =============================================================================

class TurbulenceRegimeDetector:
    """
    Short-vs-long volatility regime classifier.

    Usage:
        detector = TurbulenceRegimeDetector()
        signal = detector.detect(close_prices)
    """

    def __init__(self, thresholds: RegimeThresholds = REGIME):
        self.thresholds = thresholds

    def detect(
        self,
        prices: Union[pd.DataFrame, pd.Series],
        lookback: Optional[int] = None,
        as_of: Optional[date] = None
    ) -> RegimeSignal:
        """
        Classify the regime over the trailing ``lookback`` price rows.

        Args:
            prices: Aligned close prices (one column per asset) or a single series
            lookback: Number of trailing rows to use (default 60)
            as_of: Label for the signal; defaults to the last index date

        Returns:
            RegimeSignal
        """
        lookback = lookback or self.thresholds.lookback
        window = prices.iloc[-lookback:] if len(prices) > lookback else prices
        if as_of is None and len(window) > 0 and isinstance(window.index, pd.DatetimeIndex):
            as_of = window.index[-1].date()

        returns = equal_weight_returns(window).to_numpy()
        return self.classify_returns(returns, as_of)

    def classify_returns(self, returns: Sequence[float], as_of: Optional[date] = None) -> RegimeSignal:
        """Classify an already-averaged daily log-return series."""
        arr = np.asarray(returns, dtype=float)
        if arr.size < self.thresholds.min_observations:
            logger.debug(f"Only {arr.size} observations, using default regime")
            return RegimeSignal.default(as_of)

        mean = arr.mean()
        volatility = _annualized_pct(arr - mean)
        recent = arr[-self.thresholds.recent_window:]
        recent_volatility = _annualized_pct(recent - mean)

        turbulence = recent_volatility / max(volatility, self.thresholds.volatility_floor) * 10.0
        regime = classify_turbulence(turbulence, self.thresholds)

        logger.debug(
            f"Regime {regime.value}: turbulence={turbulence:.2f}, "
            f"vol={volatility:.2f}%, recent={recent_volatility:.2f}%"
        )
        return RegimeSignal(
            regime=regime,
            turbulence_index=round(turbulence, 2),
            volatility=round(volatility, 2),
            as_of=as_of,
        )


# =============================================================================
# SECTION 4: REGIME-CONDITIONAL SUMMARY
# =============================================================================

def summarize_by_regime(observations: Iterable[Tuple[Regime, float]]) -> List[RegimeSummary]:
    """
    Bucket daily returns by the regime active on each day.

    Args:
        observations: (regime, daily_return) pairs

    Returns:
        One RegimeSummary per regime that occurs, in first-seen order.
        Volatility is the population deviation around the regime's mean.
    """
    buckets: Dict[Regime, List[float]] = {}
    for regime, daily_return in observations:
        buckets.setdefault(regime, []).append(daily_return)

    summaries = []
    for regime, values in buckets.items():
        arr = np.asarray(values, dtype=float)
        daily_mean = float(arr.mean())
        vol = float(np.sqrt(np.mean((arr - daily_mean) ** 2)) * np.sqrt(TRADING_DAYS_YEAR))
        summaries.append(RegimeSummary(
            regime=regime,
            days=int(arr.size),
            avg_return=daily_mean * TRADING_DAYS_YEAR,
            volatility=vol,
        ))
    return summaries


# =============================================================================
# SECTION 5: CONVENIENCE FUNCTIONS
# =============================================================================

def detect_regime(
    prices: Union[pd.DataFrame, pd.Series],
    lookback: int = REGIME.lookback
) -> RegimeSignal:
    """
    Convenience function for regime detection.

    Example:
        >>> signal = detect_regime(close_prices[['SPY', 'TLT']])
        >>> print(signal.regime.value, signal.turbulence_index)
    """
    return TurbulenceRegimeDetector().detect(prices, lookback)


def format_regime_signal(signal: RegimeSignal) -> str:
    """One-line human-readable regime description."""
    as_of = signal.as_of.isoformat() if signal.as_of else "n/a"
    return (
        f"Regime: {signal.regime.value.upper()} | Turbulence: {signal.turbulence_index:.2f} "
        f"| Volatility: {signal.volatility:.2f}% | As of: {as_of}"
    )


# =============================================================================
# SECTION 6: MODULE EXPORTS
# =============================================================================

__all__ = [
    'RegimeSignal',
    'RegimeSummary',
    'classify_turbulence',
    'equal_weight_returns',
    'TurbulenceRegimeDetector',
    'summarize_by_regime',
    'detect_regime',
    'format_regime_signal',
]
