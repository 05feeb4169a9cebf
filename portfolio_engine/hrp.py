"""
Hierarchical Risk Parity with Regime Tilt
=========================================

Risk-parity style allocation that avoids inverting the covariance matrix,
followed by a regime-dependent tilt between growth and defensive assets.

ALGORITHM
---------
    1. Distance     d_ij = sqrt(2 * (1 - rho_ij))
    2. Ordering     "average_distance" (default): assets sorted by their mean
                    distance to the universe, ascending; universes of one or
                    two assets keep their input order.
                    "single_linkage": dendrogram leaf order of a
                    single-linkage clustering on the distance matrix.
    3. Bisection    Split the ordered list at floor(len/2); each half gets
                    allocation in proportion to the OTHER half's summed
                    variance (sum of sigma^2). Pairs split by inverse
                    volatility; singletons take the whole allocation.

    Regime tilt (growth / defensive multipliers, then renormalize):
        low_vol  1.2 / 0.8      normal  1.0 / 1.0
        high_vol 0.7 / 1.3      crisis  0.4 / 1.6

Outputs are non-negative and sum to one.

References:
    Lopez de Prado, M. (2016). "Building Diversified Portfolios that
    Outperform Out of Sample." Journal of Portfolio Management, 42(4).

Version: 1.0.0
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from scipy.cluster.hierarchy import dendrogram, linkage
from scipy.spatial.distance import squareform

from portfolio_engine.config import (
    DEFENSIVE_ASSETS,
    GROWTH_ASSETS,
    REGIME_TILTS,
    RISK,
    Regime,
)
from portfolio_engine.correlation import AssetStatistics, CorrelationMatrix
from portfolio_engine.regime_detector import RegimeSignal

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

class Config:
    """HRP defaults."""
    DEFAULT_VOLATILITY: float = 0.20
    ORDERINGS = ("average_distance", "single_linkage")
    CENTRALITY_THRESHOLD: float = 0.3    # |rho| above this links two assets
    CENTRAL_ASSETS: int = 5


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class OptimalPortfolio:
    """Regime-aware allocation with its expected risk profile (in percent)."""
    weights: Dict[str, float]
    regime: Regime
    expected_return: float
    expected_volatility: float
    sharpe_ratio: float
    base_weights: Dict[str, float] = field(default_factory=dict)
    central_assets: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weights": dict(self.weights),
            "regime": self.regime.value,
            "expected_return": self.expected_return,
            "expected_volatility": self.expected_volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "base_weights": dict(self.base_weights),
            "central_assets": list(self.central_assets),
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# HIERARCHICAL RISK PARITY
# =============================================================================

class HierarchicalRiskParity:
    """
    HRP allocator over a correlation matrix and per-asset volatilities.

    Usage:
        hrp = HierarchicalRiskParity()
        weights = hrp.compute_weights(correlation, asset_stats)
    """

    def __init__(self, ordering: str = "average_distance", default_volatility: float = Config.DEFAULT_VOLATILITY):
        if ordering not in Config.ORDERINGS:
            raise ValueError(f"Unknown HRP ordering '{ordering}', expected one of {Config.ORDERINGS}")
        self.ordering = ordering
        self.default_volatility = default_volatility

    @staticmethod
    def distance_matrix(correlation: np.ndarray) -> np.ndarray:
        return np.sqrt(np.clip(2.0 * (1.0 - np.asarray(correlation, dtype=float)), 0.0, None))

    def compute_weights(
        self,
        correlation: CorrelationMatrix,
        asset_stats: Mapping[str, AssetStatistics]
    ) -> Dict[str, float]:
        """
        Compute HRP weights for every symbol of ``correlation``.

        Args:
            correlation: Correlation matrix of the universe
            asset_stats: Per-asset statistics; missing or non-positive
                volatility falls back to 20%

        Returns:
            Weights keyed by symbol, non-negative, summing to one
        """
        symbols = correlation.symbols
        n = len(symbols)
        if n == 0:
            return {}
        if n == 1:
            return {symbols[0]: 1.0}

        distances = self.distance_matrix(correlation.matrix)
        order = self._order(distances, symbols)
        vols = {s: self._volatility(s, asset_stats) for s in symbols}

        weights = {s: 0.0 for s in order}
        self._bisect(order, 1.0, vols, weights)
        logger.debug(f"HRP ({self.ordering}) order: {order}")
        return {s: weights[s] for s in symbols}

    def _volatility(self, symbol: str, asset_stats: Mapping[str, AssetStatistics]) -> float:
        stats = asset_stats.get(symbol)
        if stats is None or not stats.volatility > 0:
            return self.default_volatility
        return stats.volatility

    def _order(self, distances: np.ndarray, symbols: List[str]) -> List[str]:
        n = len(symbols)
        if n <= 2:
            return list(symbols)
        if self.ordering == "single_linkage":
            link = linkage(squareform(distances, checks=False), method="single")
            leaves = dendrogram(link, no_plot=True)["leaves"]
            return [symbols[i] for i in leaves]
        avg = distances.sum(axis=1) / n
        return [symbols[i] for i in sorted(range(n), key=lambda i: avg[i])]

    def _bisect(
        self,
        items: List[str],
        allocation: float,
        vols: Mapping[str, float],
        weights: Dict[str, float]
    ) -> None:
        if len(items) == 1:
            weights[items[0]] = allocation
            return
        if len(items) == 2:
            inv_a, inv_b = 1.0 / vols[items[0]], 1.0 / vols[items[1]]
            total = inv_a + inv_b
            weights[items[0]] = allocation * inv_a / total
            weights[items[1]] = allocation * inv_b / total
            return

        mid = len(items) // 2
        left, right = items[:mid], items[mid:]
        left_var = sum(vols[s] ** 2 for s in left)
        right_var = sum(vols[s] ** 2 for s in right)
        total_var = left_var + right_var
        self._bisect(left, allocation * right_var / total_var, vols, weights)
        self._bisect(right, allocation * left_var / total_var, vols, weights)


# =============================================================================
# REGIME TILT
# =============================================================================

def adjust_for_regime(
    weights: Mapping[str, float],
    regime: Regime,
    asset_stats: Optional[Mapping[str, AssetStatistics]] = None
) -> Dict[str, float]:
    """
    Scale growth and defensive weights by the regime multipliers and renormalize.

    Assets in neither class keep multiplier 1. ``asset_stats`` is accepted
    for signature compatibility with callers that hold it; the tilt
    depends only on asset classification.
    """
    if isinstance(regime, RegimeSignal):
        regime = regime.regime
    growth_mult, defensive_mult = REGIME_TILTS.get(regime, REGIME_TILTS[Regime.NORMAL])

    adjusted: Dict[str, float] = {}
    for ticker, weight in weights.items():
        if ticker in DEFENSIVE_ASSETS:
            multiplier = defensive_mult
        elif ticker in GROWTH_ASSETS:
            multiplier = growth_mult
        else:
            multiplier = 1.0
        adjusted[ticker] = weight * multiplier

    total = sum(adjusted.values())
    if total <= 0:
        return dict(weights)
    return {t: w / total for t, w in adjusted.items()}


def central_assets(
    correlation: CorrelationMatrix,
    top_n: int = Config.CENTRAL_ASSETS,
    threshold: float = Config.CENTRALITY_THRESHOLD
) -> List[str]:
    """Symbols with the highest mean absolute correlation to strongly linked peers."""
    n = len(correlation)
    if n == 0:
        return []
    linked = np.abs(correlation.matrix).copy()
    np.fill_diagonal(linked, 0.0)
    linked[linked <= threshold] = 0.0
    centrality = linked.sum(axis=1) / n
    order = sorted(range(n), key=lambda i: -centrality[i])
    return [correlation.symbols[i] for i in order[:top_n]]


# =============================================================================
# REGIME-AWARE ALLOCATOR
# =============================================================================

class RegimeAwareAllocator:
    """
    HRP base weights tilted by the current regime, with a summary of the
    expected return and volatility of the result.

    The volatility estimate ignores cross-correlations:
    ``sqrt(sum((w_i * sigma_i)^2))``.
    """

    def __init__(self, hrp: Optional[HierarchicalRiskParity] = None, risk_free_rate: float = RISK.optimizer_risk_free):
        self.hrp = hrp or HierarchicalRiskParity()
        self.risk_free_rate = risk_free_rate

    def compute_optimal_weights(
        self,
        asset_stats: Mapping[str, AssetStatistics],
        correlation: CorrelationMatrix,
        regime: RegimeSignal
    ) -> OptimalPortfolio:
        base = self.hrp.compute_weights(correlation, asset_stats)
        weights = adjust_for_regime(base, regime.regime, asset_stats)

        expected_return = 0.0
        variance = 0.0
        for ticker, weight in weights.items():
            stats = asset_stats.get(ticker)
            if stats is not None:
                expected_return += weight * stats.avg_return
                variance += (weight * stats.volatility) ** 2
        expected_vol = math.sqrt(variance)
        sharpe = (expected_return - self.risk_free_rate) / expected_vol if expected_vol > 0 else 0.0

        return OptimalPortfolio(
            weights=weights,
            regime=regime.regime,
            expected_return=expected_return * 100.0,
            expected_volatility=expected_vol * 100.0,
            sharpe_ratio=sharpe,
            base_weights=base,
            central_assets=central_assets(correlation),
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def compute_hrp_weights(
    correlation: CorrelationMatrix,
    asset_stats: Mapping[str, AssetStatistics],
    ordering: str = "average_distance"
) -> Dict[str, float]:
    """
    Convenience function for a single HRP allocation.

    Example:
        >>> weights = compute_hrp_weights(corr, stats)
        >>> tilted = adjust_for_regime(weights, Regime.CRISIS)
    """
    return HierarchicalRiskParity(ordering=ordering).compute_weights(correlation, asset_stats)


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    'Config',
    'OptimalPortfolio',
    'HierarchicalRiskParity',
    'adjust_for_regime',
    'central_assets',
    'RegimeAwareAllocator',
    'compute_hrp_weights',
]
