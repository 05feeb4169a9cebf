"""
Black-Litterman Allocation
==========================

Blends market-equilibrium expected returns with investor views expressed
as target weights with a confidence level.

MODEL
-----
    Sigma            = rho_ij * sigma_i * sigma_j     (annualized)
    pi (equilibrium) = delta * Sigma * w_mkt          delta = 2.5

    For an asset with a view (target t, confidence c):
        view return      q  = 0.05 * t * n
        posterior return    = (1 - c*tau) * pi + c*tau * q        tau = 0.05
        posterior weight    = c * t + (1 - c) * w_mkt
        view contribution   = q - pi

    Assets without a view keep their equilibrium return and market weight.
    Posterior weights are normalized to sum to one; blended risk is
    sqrt(w' Sigma w) and blended return sum(w * posterior).

This is a confidence-weighted linear blend of prior and view, not the
full Bayesian master formula with a view-uncertainty matrix Omega.

References:
    Black, F. & Litterman, R. (1992). "Global Portfolio Optimization."
    Financial Analysts Journal, 48(5).
    He, G. & Litterman, R. (1999). "The Intuition Behind Black-Litterman
    Model Portfolios." Goldman Sachs.

Version: 1.0.0
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from portfolio_engine.config import BLACK_LITTERMAN, BlackLittermanParameters
from portfolio_engine.correlation import (
    AssetStatistics,
    CorrelationMatrix,
    correlation_to_covariance,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class InvestorView:
    """Desired weight for one asset with a 0-1 confidence."""
    symbol: str
    target_weight: float
    confidence: float

    def __post_init__(self):
        if not 0.0 <= self.target_weight <= 1.0:
            raise ValueError(f"target_weight for {self.symbol} must be within [0, 1]")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence for {self.symbol} must be within [0, 1]")


@dataclass
class BlackLittermanResult:
    """Posterior allocation; returns are annualized decimals."""
    posterior_returns: Dict[str, float]
    posterior_weights: Dict[str, float]
    implied_returns: Dict[str, float]
    view_contribution: Dict[str, float] = field(default_factory=dict)
    blended_risk: float = 0.0
    blended_return: float = 0.0
    applied_views: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "posterior_returns": dict(self.posterior_returns),
            "posterior_weights": dict(self.posterior_weights),
            "implied_returns": dict(self.implied_returns),
            "view_contribution": dict(self.view_contribution),
            "blended_risk": self.blended_risk,
            "blended_return": self.blended_return,
            "applied_views": list(self.applied_views),
        }


@dataclass
class UserWeightAnalysis:
    """Risk profile of a user-chosen allocation against equal weight."""
    user_risk: float
    user_expected_return: float
    implied_views: Dict[str, float]         # user weight - 1/n
    risk_contribution: Dict[str, float]     # % of total variance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_risk": self.user_risk,
            "user_expected_return": self.user_expected_return,
            "implied_views": dict(self.implied_views),
            "risk_contribution": dict(self.risk_contribution),
        }


# =============================================================================
# OPTIMIZER
# =============================================================================

class BlackLittermanOptimizer:
    """
    Equilibrium-plus-views allocator.

    Usage:
        optimizer = BlackLittermanOptimizer()
        result = optimizer.optimize(correlation, asset_stats, views)
    """

    def __init__(self, params: BlackLittermanParameters = BLACK_LITTERMAN):
        self.params = params

    def covariance(
        self,
        correlation: CorrelationMatrix,
        asset_stats: Mapping[str, AssetStatistics]
    ) -> np.ndarray:
        return correlation_to_covariance(correlation, asset_stats, self.params.default_volatility)

    def implied_returns(
        self,
        market_weights: Mapping[str, float],
        covariance: np.ndarray,
        symbols: Sequence[str]
    ) -> Dict[str, float]:
        """Reverse-optimized equilibrium returns ``pi = delta * Sigma * w``."""
        w = np.array([market_weights.get(s, 0.0) for s in symbols], dtype=float)
        pi = self.params.risk_aversion * covariance @ w
        return {s: float(v) for s, v in zip(symbols, pi)}

    @staticmethod
    def portfolio_risk(weights: Mapping[str, float], covariance: np.ndarray, symbols: Sequence[str]) -> float:
        w = np.array([weights.get(s, 0.0) for s in symbols], dtype=float)
        return math.sqrt(max(0.0, float(w @ covariance @ w)))

    @staticmethod
    def portfolio_return(weights: Mapping[str, float], returns: Mapping[str, float]) -> float:
        return float(sum(w * returns.get(s, 0.0) for s, w in weights.items()))

    def optimize(
        self,
        correlation: CorrelationMatrix,
        asset_stats: Mapping[str, AssetStatistics],
        views: Sequence[InvestorView],
        market_weights: Optional[Mapping[str, float]] = None
    ) -> BlackLittermanResult:
        """
        Blend equilibrium returns with investor views.

        Args:
            correlation: Correlation matrix of the universe
            asset_stats: Per-asset statistics (volatility used for Sigma)
            views: Investor views; views on unknown symbols are ignored
            market_weights: Prior weights, equal weight when omitted

        Returns:
            BlackLittermanResult. With no applicable view the posterior
            weights are the market weights, unchanged.
        """
        symbols = correlation.symbols
        n = len(symbols)
        if market_weights is None:
            market_weights = {s: 1.0 / n for s in symbols} if n else {}
        market_weights = dict(market_weights)

        covariance = self.covariance(correlation, asset_stats)
        implied = self.implied_returns(market_weights, covariance, symbols)

        views_by_symbol: Dict[str, InvestorView] = {}
        for view in views:
            if view.symbol not in symbols:
                logger.warning(f"Ignoring view on {view.symbol}: not in universe")
                continue
            views_by_symbol.setdefault(view.symbol, view)

        if not views_by_symbol:
            logger.debug("No applicable views, returning equilibrium allocation")
            return BlackLittermanResult(
                posterior_returns=dict(implied),
                posterior_weights=market_weights,
                implied_returns=implied,
                blended_risk=self.portfolio_risk(market_weights, covariance, symbols),
                blended_return=self.portfolio_return(market_weights, implied),
            )

        tau = self.params.tau
        posterior_returns: Dict[str, float] = {}
        raw_weights: Dict[str, float] = {}
        view_contribution: Dict[str, float] = {}

        for symbol in symbols:
            equilibrium = implied[symbol]
            view = views_by_symbol.get(symbol)
            if view is not None:
                c = view.confidence
                view_return = self.params.market_risk_premium * view.target_weight * n
                posterior_returns[symbol] = (1 - c * tau) * equilibrium + c * tau * view_return
                raw_weights[symbol] = view.target_weight * c + market_weights.get(symbol, 0.0) * (1 - c)
                view_contribution[symbol] = view_return - equilibrium
            else:
                posterior_returns[symbol] = equilibrium
                raw_weights[symbol] = market_weights.get(symbol, 0.0)

        total = sum(raw_weights.values())
        if total > 0:
            posterior_weights = {s: w / total for s, w in raw_weights.items()}
        else:
            posterior_weights = {s: 1.0 / n for s in symbols}

        result = BlackLittermanResult(
            posterior_returns=posterior_returns,
            posterior_weights=posterior_weights,
            implied_returns=implied,
            view_contribution=view_contribution,
            blended_risk=self.portfolio_risk(posterior_weights, covariance, symbols),
            blended_return=self.portfolio_return(posterior_weights, posterior_returns),
            applied_views=list(views_by_symbol),
        )
        logger.info(
            f"Black-Litterman: {len(views_by_symbol)} view(s), "
            f"return={result.blended_return:.2%}, risk={result.blended_risk:.2%}"
        )
        return result

    def analyze_user_weights(
        self,
        user_weights: Mapping[str, float],
        correlation: CorrelationMatrix,
        asset_stats: Mapping[str, AssetStatistics]
    ) -> UserWeightAnalysis:
        """
        Risk decomposition of a user allocation.

        Expected return is measured against equal-weight equilibrium
        returns; risk contribution is ``w_i * (Sigma w)_i / variance * 100``.
        """
        symbols = correlation.symbols
        n = len(symbols)
        covariance = self.covariance(correlation, asset_stats)
        equal = {s: 1.0 / n for s in symbols} if n else {}
        implied = self.implied_returns(equal, covariance, symbols)

        user_risk = self.portfolio_risk(user_weights, covariance, symbols)
        w = np.array([user_weights.get(s, 0.0) for s in symbols], dtype=float)
        marginal = covariance @ w
        variance = user_risk ** 2

        return UserWeightAnalysis(
            user_risk=user_risk,
            user_expected_return=self.portfolio_return(
                {s: user_weights.get(s, 0.0) for s in symbols}, implied
            ),
            implied_views={s: user_weights.get(s, 0.0) - equal[s] for s in symbols},
            risk_contribution={
                s: (float(w[i] * marginal[i] / variance * 100.0) if variance > 0 else 0.0)
                for i, s in enumerate(symbols)
            },
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def black_litterman_optimize(
    correlation: CorrelationMatrix,
    asset_stats: Mapping[str, AssetStatistics],
    views: Sequence[InvestorView],
    market_weights: Optional[Mapping[str, float]] = None
) -> BlackLittermanResult:
    """
    Convenience function for a single Black-Litterman run.

    Example:
        >>> views = [InvestorView("QQQ", target_weight=0.5, confidence=0.8)]
        >>> result = black_litterman_optimize(corr, stats, views)
        >>> print(result.posterior_weights)
    """
    return BlackLittermanOptimizer().optimize(correlation, asset_stats, views, market_weights)


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    'InvestorView',
    'BlackLittermanResult',
    'UserWeightAnalysis',
    'BlackLittermanOptimizer',
    'black_litterman_optimize',
]
