"""
Monte-Carlo Efficient Frontier
==============================

Approximates the Markowitz efficient frontier of a universe by sampling
random long-only portfolios and keeping the best-returning portfolio in
each risk bucket.

ALGORITHM
---------
    1. Draw ``num_simulations`` weight vectors, each coordinate U(0, 1),
       normalized to sum to one.
    2. Portfolio return (%) = sum(w_i * r_i), r_i = annual avg return * 100
       (8% when an asset has no statistics).
       Portfolio risk (%) = sqrt(max(0, w' Sigma w)) * 100.
       Sharpe = (return - 5) / risk, 0 when risk is 0.
    3. Sort by risk, bucket by ``round_half_up(risk / width) * width``,
       keep the highest-return portfolio per bucket, and keep a bucket
       only when its best return strictly exceeds the running maximum.
    4. When more than ``target_points`` remain, keep every
       ``floor(len / target_points)``-th point plus the first and last.

Randomness comes from an injected ``numpy.random.Generator`` (or seed)
so frontiers are reproducible.

Reference:
    Markowitz, H. (1952). "Portfolio Selection." Journal of Finance, 7(1).

Version: 1.0.0
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np

from portfolio_engine.config import FRONTIER, RISK, FrontierParameters
from portfolio_engine.correlation import (
    AssetStatistics,
    CorrelationMatrix,
    correlation_to_covariance,
)

logger = logging.getLogger(__name__)

SeedLike = Union[None, int, np.random.Generator]


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class EfficientFrontierPoint:
    """One portfolio on the frontier; risk and return in percent."""
    risk: float
    expected_return: float
    sharpe: float
    weights: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "risk": self.risk,
            "return": self.expected_return,
            "sharpe": self.sharpe,
            "weights": dict(self.weights),
        }


# =============================================================================
# GENERATOR
# =============================================================================

class EfficientFrontierGenerator:
    """
    Random-portfolio frontier builder.

    Usage:
        generator = EfficientFrontierGenerator(num_simulations=5000, seed=42)
        frontier = generator.generate(correlation, asset_stats)
    """

    def __init__(
        self,
        num_simulations: int = FRONTIER.num_simulations,
        bucket_width: float = FRONTIER.bucket_width,
        target_points: int = FRONTIER.target_points,
        risk_free_pct: float = RISK.frontier_risk_free_pct,
        seed: SeedLike = None,
        params: FrontierParameters = FRONTIER
    ):
        """
        Args:
            num_simulations: Number of random portfolios to draw
            bucket_width: Width of a risk bucket in percentage points
            target_points: Maximum frontier size before down-sampling
            risk_free_pct: Risk-free rate used in the Sharpe column, in %
            seed: Integer seed or an existing numpy Generator
            params: Default return / volatility for assets without statistics
        """
        if num_simulations < 1:
            raise ValueError("num_simulations must be at least 1")
        if bucket_width <= 0:
            raise ValueError("bucket_width must be positive")
        if target_points < 2:
            raise ValueError("target_points must be at least 2")
        self.num_simulations = num_simulations
        self.bucket_width = bucket_width
        self.target_points = target_points
        self.risk_free_pct = risk_free_pct
        self.params = params
        self.rng = seed if isinstance(seed, np.random.Generator) else np.random.default_rng(seed)

    def generate(
        self,
        correlation: CorrelationMatrix,
        asset_stats: Mapping[str, AssetStatistics]
    ) -> List[EfficientFrontierPoint]:
        """
        Build the frontier for the universe of ``correlation``.

        Args:
            correlation: Correlation matrix; its symbol order is the universe
            asset_stats: Per-symbol statistics (missing symbols use defaults)

        Returns:
            Frontier points sorted by ascending risk; empty for zero assets
        """
        symbols = correlation.symbols
        n = len(symbols)
        if n == 0:
            return []

        logger.info(f"Generating efficient frontier for {n} assets ({self.num_simulations:,} portfolios)")

        expected = np.array([
            (asset_stats[s].avg_return if s in asset_stats else self.params.default_return) * 100.0
            for s in symbols
        ])
        covariance = correlation_to_covariance(correlation, asset_stats, self.params.default_volatility)

        raw = self.rng.random((self.num_simulations, n))
        totals = raw.sum(axis=1, keepdims=True)
        totals[totals == 0] = 1.0
        weights = raw / totals

        returns = weights @ expected
        variance = np.einsum("ij,jk,ik->i", weights, covariance, weights)
        risks = np.sqrt(np.maximum(variance, 0.0)) * 100.0
        with np.errstate(divide="ignore", invalid="ignore"):
            sharpes = np.where(risks > 0, (returns - self.risk_free_pct) / risks, 0.0)

        frontier = self._select_frontier(symbols, weights, risks, returns, sharpes)
        frontier = self._downsample(frontier)
        logger.info(f"Efficient frontier has {len(frontier)} points")
        return frontier

    def _bucket(self, risk: float) -> float:
        """Round half-up to the nearest bucket boundary."""
        return math.floor(risk / self.bucket_width + 0.5) * self.bucket_width

    def _select_frontier(
        self,
        symbols: List[str],
        weights: np.ndarray,
        risks: np.ndarray,
        returns: np.ndarray,
        sharpes: np.ndarray
    ) -> List[EfficientFrontierPoint]:
        order = np.argsort(risks, kind="stable")

        best_per_bucket: Dict[float, int] = {}
        for idx in order:
            bucket = self._bucket(float(risks[idx]))
            current = best_per_bucket.get(bucket)
            # Later portfolios win ties
            if current is None or returns[idx] >= returns[current]:
                best_per_bucket[bucket] = int(idx)

        frontier: List[EfficientFrontierPoint] = []
        running_max = -math.inf
        for bucket in sorted(best_per_bucket):
            idx = best_per_bucket[bucket]
            if returns[idx] > running_max:
                running_max = float(returns[idx])
                frontier.append(EfficientFrontierPoint(
                    risk=float(risks[idx]),
                    expected_return=float(returns[idx]),
                    sharpe=float(sharpes[idx]),
                    weights={s: float(w) for s, w in zip(symbols, weights[idx])},
                ))
        return frontier

    def _downsample(self, frontier: List[EfficientFrontierPoint]) -> List[EfficientFrontierPoint]:
        if len(frontier) <= self.target_points:
            return frontier
        step = len(frontier) // self.target_points
        sampled = [p for i, p in enumerate(frontier) if i % step == 0]
        # First point always survives i % step == 0
        if sampled[-1] is not frontier[-1]:
            sampled.append(frontier[-1])
        return sampled


# =============================================================================
# FRONTIER QUERIES
# =============================================================================

def find_optimal_portfolio(
    frontier: List[EfficientFrontierPoint],
    risk_tolerance: float
) -> Optional[EfficientFrontierPoint]:
    """Map a 0-100 risk tolerance linearly onto the frontier index."""
    if not frontier:
        return None
    index = math.floor(risk_tolerance / 100.0 * (len(frontier) - 1))
    return frontier[max(0, min(index, len(frontier) - 1))]


def find_max_sharpe_portfolio(frontier: List[EfficientFrontierPoint]) -> Optional[EfficientFrontierPoint]:
    if not frontier:
        return None
    return max(frontier, key=lambda p: p.sharpe)


def find_min_vol_portfolio(frontier: List[EfficientFrontierPoint]) -> Optional[EfficientFrontierPoint]:
    if not frontier:
        return None
    return min(frontier, key=lambda p: p.risk)


def get_portfolio_at_risk(
    frontier: List[EfficientFrontierPoint],
    target_risk: float
) -> Optional[EfficientFrontierPoint]:
    """Frontier point whose risk is closest to ``target_risk`` (%)."""
    if not frontier:
        return None
    return min(frontier, key=lambda p: abs(p.risk - target_risk))


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def generate_efficient_frontier(
    correlation: CorrelationMatrix,
    asset_stats: Mapping[str, AssetStatistics],
    num_simulations: int = FRONTIER.num_simulations,
    seed: SeedLike = None,
    bucket_width: float = FRONTIER.bucket_width,
    target_points: int = FRONTIER.target_points
) -> List[EfficientFrontierPoint]:
    """
    Convenience function for frontier generation.

    Example:
        >>> frontier = generate_efficient_frontier(corr, stats, seed=7)
        >>> best = find_max_sharpe_portfolio(frontier)
        >>> print(f"{best.expected_return:.2f}% at {best.risk:.2f}% risk")
    """
    generator = EfficientFrontierGenerator(
        num_simulations=num_simulations,
        bucket_width=bucket_width,
        target_points=target_points,
        seed=seed,
    )
    return generator.generate(correlation, asset_stats)


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    'EfficientFrontierPoint',
    'EfficientFrontierGenerator',
    'find_optimal_portfolio',
    'find_max_sharpe_portfolio',
    'find_min_vol_portfolio',
    'get_portfolio_at_risk',
    'generate_efficient_frontier',
]
