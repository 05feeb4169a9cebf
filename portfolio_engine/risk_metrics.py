"""
================================================================================
PORTFOLIO STATISTICS & RISK METRICS LIBRARY
================================================================================

Pure functions over daily return series and portfolio value series. Every
function accepts any one-dimensional sequence (list, numpy array, pandas
Series) and returns a plain float or a small dataclass. Below a function's
documented minimum length the documented default is returned instead of
raising.

Components:
-----------
1. BASIC STATISTICS
   - Arithmetic / geometric mean, sample standard deviation
   - Simple and log returns, annualization helpers, CAGR

2. RISK-ADJUSTED RETURNS
   - Sharpe, Sortino, Calmar, Treynor, Information Ratio
   - CAPM beta / alpha against a benchmark

3. TAIL RISK
   - Historical and parametric VaR, CVaR (expected shortfall)
   - Skewness, excess kurtosis, Omega, tail ratio

4. DRAWDOWN
   - Maximum drawdown with peak / trough / recovery attribution
   - Ulcer index

5. LIQUIDITY
   - Weighted liquidity score, days-to-liquidate estimate

Conventions:
------------
- Returns are decimal daily returns (0.01 = 1%).
- VaR / CVaR / drawdown percentages are reported as positive percentages.
- Ratios whose denominator is exactly zero return a capped sentinel (10)
  when the numerator is favourable, a neutral value otherwise.

Academic References:
-------------------
- Sharpe (1994): "The Sharpe Ratio"
- Sortino & van der Meer (1991): "Downside Risk"
- Young (1991): "Calmar Ratio: A Smoother Tool"
- Keating & Shadwick (2002): "A Universal Performance Measure" (Omega)
- Martin & McCann (1989): "The Investor's Guide to Fidelity Funds" (Ulcer)

Version: 1.0.0
================================================================================
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from portfolio_engine.config import (
    DAYS_PER_YEAR,
    DEFAULT_LIQUIDITY_SCORE,
    LIQUIDITY_SCORES,
    RISK,
    TRADING_DAYS_YEAR,
)

logger = logging.getLogger(__name__)

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]
DateLike = Union[str, date, datetime, pd.Timestamp]

SQRT_252: float = math.sqrt(TRADING_DAYS_YEAR)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class DrawdownResult:
    """
    Maximum drawdown attribution for a value series.

    Attributes
    ----------
    max_drawdown : float
        Largest peak-to-trough decline in value units
    max_drawdown_percent : float
        Same decline as a positive percentage of the peak
    drawdown_length : int
        Observations from peak to trough
    recovery_length : int
        Observations from trough until the peak value is regained
        (measured to the end of the series when never regained)
    peak_index : int
        Index of the peak that precedes the maximum drawdown
    trough_index : int
        Index of the trough of the maximum drawdown
    drawdown_series : List[float]
        Running drawdown per observation, as negative percentages
    """
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    drawdown_length: int = 0
    recovery_length: int = 0
    peak_index: int = 0
    trough_index: int = 0
    drawdown_series: List[float] = field(default_factory=list)

    @property
    def recovered(self) -> bool:
        """True when the series regained its pre-drawdown peak."""
        return self.trough_index + self.recovery_length < len(self.drawdown_series)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_drawdown": self.max_drawdown,
            "max_drawdown_percent": self.max_drawdown_percent,
            "drawdown_length": self.drawdown_length,
            "recovery_length": self.recovery_length,
            "peak_index": self.peak_index,
            "trough_index": self.trough_index,
            "drawdown_series": list(self.drawdown_series),
        }


@dataclass(frozen=True)
class AdvancedRiskMetrics:
    """Aggregate tail, drawdown and liquidity metrics for a finished portfolio."""
    var_95: float                 # Historical 1-day VaR, %
    var_99: float
    cvar_95: float                # Expected shortfall, %
    cvar_99: float
    sortino_ratio: float
    calmar_ratio: float
    treynor_ratio: float
    information_ratio: float      # 0 when no benchmark supplied
    omega_ratio: float
    tail_ratio: float
    skewness: float
    kurtosis: float               # Excess kurtosis
    max_drawdown: float           # As supplied by the caller, %
    avg_drawdown: float           # Mean depth of underwater observations, %
    ulcer_index: float
    liquidity_score: float        # Weighted 0-100
    days_to_liquidate: int

    def to_dict(self) -> Dict[str, float]:
        return {
            "var_95": self.var_95,
            "var_99": self.var_99,
            "cvar_95": self.cvar_95,
            "cvar_99": self.cvar_99,
            "sortino_ratio": self.sortino_ratio,
            "calmar_ratio": self.calmar_ratio,
            "treynor_ratio": self.treynor_ratio,
            "information_ratio": self.information_ratio,
            "omega_ratio": self.omega_ratio,
            "tail_ratio": self.tail_ratio,
            "skewness": self.skewness,
            "kurtosis": self.kurtosis,
            "max_drawdown": self.max_drawdown,
            "avg_drawdown": self.avg_drawdown,
            "ulcer_index": self.ulcer_index,
            "liquidity_score": self.liquidity_score,
            "days_to_liquidate": self.days_to_liquidate,
        }


@dataclass(frozen=True)
class PortfolioMetrics:
    """Core performance summary; benchmark fields are None without a benchmark."""
    total_return: float           # Value units
    total_return_percent: float
    cagr: float                   # %
    volatility: float             # Annualized, %
    max_drawdown: float           # %
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    var_95: float
    cvar_95: float
    skewness: float
    kurtosis: float
    ulcer_index: float
    beta: Optional[float] = None
    alpha: Optional[float] = None              # Annualized, percentage points
    information_ratio: Optional[float] = None

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            "total_return": self.total_return,
            "total_return_percent": self.total_return_percent,
            "cagr": self.cagr,
            "volatility": self.volatility,
            "max_drawdown": self.max_drawdown,
            "sharpe_ratio": self.sharpe_ratio,
            "sortino_ratio": self.sortino_ratio,
            "calmar_ratio": self.calmar_ratio,
            "var_95": self.var_95,
            "cvar_95": self.cvar_95,
            "skewness": self.skewness,
            "kurtosis": self.kurtosis,
            "ulcer_index": self.ulcer_index,
            "beta": self.beta,
            "alpha": self.alpha,
            "information_ratio": self.information_ratio,
        }


# =============================================================================
# BASIC STATISTICS
# =============================================================================

def _as_array(values: ArrayLike) -> np.ndarray:
    """Convert any 1-D sequence into a float ndarray."""
    if isinstance(values, pd.Series):
        return values.to_numpy(dtype=float)
    return np.asarray(values, dtype=float).ravel()


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Division returning ``default`` on a zero or non-finite denominator."""
    if denominator == 0 or not np.isfinite(denominator):
        return default
    return numerator / denominator


def arithmetic_mean(values: ArrayLike) -> float:
    arr = _as_array(values)
    if arr.size == 0:
        return 0.0
    return float(arr.mean())


def standard_deviation(values: ArrayLike) -> float:
    """Sample standard deviation (n-1 denominator); 0 for fewer than 2 values."""
    arr = _as_array(values)
    if arr.size < 2:
        return 0.0
    return float(arr.std(ddof=1))


def geometric_mean(returns: ArrayLike) -> float:
    """
    Time-weighted mean return: ``prod(1 + r)^(1/n) - 1``.

    Returns -1 once the compounded value reaches zero or below.
    """
    arr = _as_array(returns)
    if arr.size == 0:
        return 0.0
    growth = np.cumprod(1.0 + arr)
    if np.any(growth <= 0):
        return -1.0
    return float(growth[-1] ** (1.0 / arr.size) - 1.0)


def simple_returns(prices: ArrayLike) -> np.ndarray:
    """Period-over-period simple returns; a non-positive prior price yields 0."""
    arr = _as_array(prices)
    if arr.size < 2:
        return np.array([], dtype=float)
    prev, curr = arr[:-1], arr[1:]
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.where(prev > 0, (curr - prev) / prev, 0.0)
    return out


def log_returns(prices: ArrayLike) -> np.ndarray:
    """Period-over-period log returns; any non-positive price in a pair yields 0."""
    arr = _as_array(prices)
    if arr.size < 2:
        return np.array([], dtype=float)
    prev, curr = arr[:-1], arr[1:]
    valid = (prev > 0) & (curr > 0)
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.where(valid, np.log(curr / prev), 0.0)
    return out


def annualized_return(cumulative_return: float, years: float) -> float:
    """Annualize a cumulative return over ``years``; -1 once everything is lost."""
    if years <= 0:
        return 0.0
    if cumulative_return <= -1:
        return -1.0
    return (1.0 + cumulative_return) ** (1.0 / years) - 1.0


def annualized_volatility(daily_returns: ArrayLike, periods_per_year: int = TRADING_DAYS_YEAR) -> float:
    return standard_deviation(daily_returns) * math.sqrt(periods_per_year)


def calculate_cagr(start_value: float, end_value: float, years: float) -> float:
    """Compound annual growth rate as a decimal."""
    if years <= 0 or start_value <= 0:
        return 0.0
    return (end_value / start_value) ** (1.0 / years) - 1.0


def years_between(start: DateLike, end: DateLike) -> float:
    """Calendar years between two dates using 365.25-day years."""
    delta = pd.Timestamp(end) - pd.Timestamp(start)
    return delta.total_seconds() / (DAYS_PER_YEAR * 24 * 60 * 60)


# =============================================================================
# RISK-ADJUSTED RETURNS
# =============================================================================

def calculate_sharpe_ratio(daily_returns: ArrayLike, risk_free_rate: float = RISK.backtest_risk_free) -> float:
    """
    Annualized Sharpe ratio of daily returns.

    Parameters
    ----------
    daily_returns : ArrayLike
        Daily decimal returns
    risk_free_rate : float
        Annual risk-free rate, de-annualized over 252 days

    Returns
    -------
    float
        ``mean(excess) / std(excess) * sqrt(252)``; 0 when fewer than two
        returns or zero dispersion
    """
    arr = _as_array(daily_returns)
    if arr.size < 2:
        return 0.0
    excess = arr - risk_free_rate / TRADING_DAYS_YEAR
    std = standard_deviation(excess)
    if std == 0:
        return 0.0
    return float(excess.mean() / std * SQRT_252)


def calculate_sortino_ratio(daily_returns: ArrayLike, annual_mar: float = RISK.backtest_risk_free) -> float:
    """
    Annualized Sortino ratio against a minimum acceptable return.

    Downside deviation is ``sqrt(mean(min(0, r - MAR)^2))`` over all
    observations. With no downside at all the ratio is capped at 10 when
    the mean beats the MAR and 0 otherwise.
    """
    arr = _as_array(daily_returns)
    if arr.size < 2:
        return 0.0
    daily_mar = annual_mar / TRADING_DAYS_YEAR
    downside = np.minimum(0.0, arr - daily_mar)
    downside_dev = math.sqrt(float(np.mean(downside ** 2)))
    mean = float(arr.mean())
    if downside_dev == 0:
        return RISK.ratio_cap if mean > daily_mar else 0.0
    return (mean - daily_mar) / downside_dev * SQRT_252


def calculate_calmar_ratio(cagr: float, max_drawdown_percent: float) -> float:
    """``cagr`` is a decimal, ``max_drawdown_percent`` a positive percentage."""
    if max_drawdown_percent == 0:
        return 0.0
    return cagr * 100.0 / max_drawdown_percent


def calculate_treynor_ratio(annual_return: float, beta: float, risk_free_rate: float = RISK.backtest_risk_free) -> float:
    if beta == 0:
        return 0.0
    return (annual_return - risk_free_rate) / beta


def calculate_beta_alpha(
    portfolio_returns: ArrayLike,
    benchmark_returns: ArrayLike,
    risk_free_rate: float = RISK.backtest_risk_free,
) -> Dict[str, float]:
    """
    CAPM beta and annualized Jensen's alpha.

    Both series are truncated to their common length. Beta uses the sample
    covariance and defaults to 1 when the benchmark has no variance. Alpha
    is reported in percentage points.
    """
    p = _as_array(portfolio_returns)
    b = _as_array(benchmark_returns)
    n = min(p.size, b.size)
    if n < 2:
        return {"beta": 1.0, "alpha": 0.0}
    p, b = p[:n], b[:n]

    covariance = float(np.cov(p, b, ddof=1)[0, 1])
    bench_var = float(b.var(ddof=1))
    beta = covariance / bench_var if bench_var > 0 else 1.0

    annual_p = float(p.mean()) * TRADING_DAYS_YEAR
    annual_b = float(b.mean()) * TRADING_DAYS_YEAR
    alpha = annual_p - (risk_free_rate + beta * (annual_b - risk_free_rate))
    return {"beta": beta, "alpha": alpha * 100.0}


def calculate_information_ratio(portfolio_returns: ArrayLike, benchmark_returns: ArrayLike) -> float:
    p = _as_array(portfolio_returns)
    b = _as_array(benchmark_returns)
    n = min(p.size, b.size)
    if n < 2:
        return 0.0
    active = p[:n] - b[:n]
    tracking_error = standard_deviation(active)
    if tracking_error == 0:
        return 0.0
    return float(active.mean() / tracking_error * SQRT_252)


# =============================================================================
# TAIL RISK
# =============================================================================

def calculate_var(returns: ArrayLike, confidence: float = 0.95) -> float:
    """
    Historical Value-at-Risk as a positive percentage.

    The loss is read from the ascending-sorted returns at index
    ``floor(n * (1 - confidence))``.
    """
    arr = _as_array(returns)
    if arr.size == 0:
        return 0.0
    ordered = np.sort(arr)
    index = min(int(math.floor(arr.size * (1.0 - confidence))), arr.size - 1)
    return abs(float(ordered[index])) * 100.0


def calculate_parametric_var(daily_returns: ArrayLike, confidence: float = 0.95) -> float:
    """Gaussian VaR ``|min(0, mu - z*sigma)| * 100`` with ``z`` from the normal quantile."""
    arr = _as_array(daily_returns)
    if arr.size < 2:
        return 0.0
    z = float(stats.norm.ppf(confidence))
    value = float(arr.mean()) - z * standard_deviation(arr)
    return abs(min(0.0, value)) * 100.0


def calculate_cvar(returns: ArrayLike, confidence: float = 0.95) -> float:
    """Expected shortfall: mean of the worst ``max(1, floor(n*(1-c)))`` returns, in %."""
    arr = _as_array(returns)
    if arr.size == 0:
        return 0.0
    ordered = np.sort(arr)
    cutoff = max(1, int(math.floor(arr.size * (1.0 - confidence))))
    return abs(float(ordered[:cutoff].mean())) * 100.0


def calculate_skewness(values: ArrayLike) -> float:
    """Adjusted Fisher-Pearson sample skewness; 0 below 3 observations."""
    arr = _as_array(values)
    n = arr.size
    if n < 3:
        return 0.0
    sd = standard_deviation(arr)
    if sd == 0:
        return 0.0
    z = (arr - arr.mean()) / sd
    return float(n / ((n - 1) * (n - 2)) * np.sum(z ** 3))


def calculate_kurtosis(values: ArrayLike) -> float:
    """Small-sample corrected excess kurtosis; 0 below 4 observations."""
    arr = _as_array(values)
    n = arr.size
    if n < 4:
        return 0.0
    sd = standard_deviation(arr)
    if sd == 0:
        return 0.0
    z = (arr - arr.mean()) / sd
    first = n * (n + 1) / ((n - 1) * (n - 2) * (n - 3)) * np.sum(z ** 4)
    correction = 3 * (n - 1) ** 2 / ((n - 2) * (n - 3))
    return float(first - correction)


def calculate_omega(returns: ArrayLike, threshold: float = 0.0) -> float:
    arr = _as_array(returns)
    if arr.size == 0:
        return 1.0
    gains = float(np.sum(np.maximum(arr - threshold, 0.0)))
    losses = float(np.sum(np.maximum(threshold - arr, 0.0)))
    if losses == 0:
        return RISK.ratio_cap if gains > 0 else 1.0
    return 1.0 + gains / losses


def calculate_tail_ratio(returns: ArrayLike) -> float:
    """Mean of the top 5% over the absolute mean of the bottom 5%; 1 below 20 returns."""
    arr = _as_array(returns)
    if arr.size < RISK.min_tail_observations:
        return 1.0
    ordered = np.sort(arr)
    cutoff = max(1, int(math.floor(arr.size * 0.05)))
    avg_loss = abs(float(ordered[:cutoff].mean()))
    avg_gain = float(ordered[-cutoff:].mean())
    if avg_loss == 0:
        return RISK.ratio_cap if avg_gain > 0 else 1.0
    return avg_gain / avg_loss


# =============================================================================
# DRAWDOWN
# =============================================================================

def calculate_max_drawdown(values: ArrayLike) -> DrawdownResult:
    """
    Maximum peak-to-trough decline of a value series.

    Parameters
    ----------
    values : ArrayLike
        Portfolio values (not returns)

    Returns
    -------
    DrawdownResult
        Amount and percent of the largest decline, its peak / trough
        indices, the peak-to-trough length, the trough-to-recovery length
        and the running drawdown series
    """
    arr = _as_array(values)
    if arr.size == 0:
        return DrawdownResult()

    running_peak = np.maximum.accumulate(arr)
    drawdown = running_peak - arr
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdown_pct = np.where(running_peak > 0, drawdown / running_peak * 100.0, 0.0)

    trough = int(np.argmax(drawdown))
    if drawdown[trough] <= 0:
        return DrawdownResult(drawdown_series=[-float(x) for x in drawdown_pct])

    # Peak is the first index reaching the running max at the trough
    peak = int(np.argmax(arr[: trough + 1] >= running_peak[trough]))
    peak_value = arr[peak]

    recovered = np.nonzero(arr[trough:] >= peak_value)[0]
    recovery_index = trough + int(recovered[0]) if recovered.size else arr.size

    return DrawdownResult(
        max_drawdown=float(drawdown[trough]),
        max_drawdown_percent=float(drawdown_pct[trough]),
        drawdown_length=trough - peak,
        recovery_length=recovery_index - trough,
        peak_index=peak,
        trough_index=trough,
        drawdown_series=[-float(x) for x in drawdown_pct],
    )


def calculate_ulcer_index(values: ArrayLike) -> float:
    """Root-mean-square of percentage drawdowns from the running peak."""
    result = calculate_max_drawdown(values)
    if not result.drawdown_series:
        return 0.0
    series = np.asarray(result.drawdown_series)
    return float(np.sqrt(np.mean(series ** 2)))


# =============================================================================
# LIQUIDITY
# =============================================================================

def calculate_liquidity_score(
    weights: Mapping[str, float],
    custom_scores: Optional[Mapping[str, float]] = None,
) -> float:
    """Weight-averaged liquidity score on a 0-100 scale."""
    custom_scores = custom_scores or {}
    total_score = 0.0
    total_weight = 0.0
    for symbol, weight in weights.items():
        score = custom_scores.get(symbol, LIQUIDITY_SCORES.get(symbol, DEFAULT_LIQUIDITY_SCORE))
        total_score += weight * score
        total_weight += weight
    return total_score / total_weight if total_weight > 0 else float(DEFAULT_LIQUIDITY_SCORE)


def estimate_liquidation_days(
    portfolio_value: float,
    weights: Mapping[str, float],
    avg_daily_volumes: Optional[Mapping[str, float]] = None,
    prices: Optional[Mapping[str, float]] = None,
    max_daily_participation: float = RISK.max_volume_participation,
) -> int:
    """Days needed to exit the slowest position trading at most a fraction of daily volume."""
    avg_daily_volumes = avg_daily_volumes or {}
    prices = prices or {}
    max_days = 0.0
    for symbol, weight in weights.items():
        volume = avg_daily_volumes.get(symbol) or RISK.default_daily_volume
        price = prices.get(symbol) or RISK.default_price
        daily_capacity = volume * price * max_daily_participation
        max_days = max(max_days, portfolio_value * weight / daily_capacity)
    return int(math.ceil(max_days))


# =============================================================================
# AGGREGATES
# =============================================================================

def calculate_all_advanced_metrics(
    daily_returns: ArrayLike,
    portfolio_values: ArrayLike,
    weights: Mapping[str, float],
    annualized_return: float,
    max_drawdown: float,
    beta: float = 1.0,
    benchmark_returns: Optional[ArrayLike] = None,
    avg_daily_volumes: Optional[Mapping[str, float]] = None,
    prices: Optional[Mapping[str, float]] = None,
) -> AdvancedRiskMetrics:
    """
    Compute the full advanced metric set for a finished portfolio.

    Parameters
    ----------
    daily_returns : ArrayLike
        Daily decimal returns of the portfolio
    portfolio_values : ArrayLike
        Portfolio value series
    weights : Mapping[str, float]
        Final weights, used for liquidity
    annualized_return : float
        Annualized return in percent
    max_drawdown : float
        Maximum drawdown in percent
    beta : float
        Portfolio beta for the Treynor ratio
    benchmark_returns : ArrayLike, optional
        Benchmark daily returns for the Information Ratio

    Returns
    -------
    AdvancedRiskMetrics
    """
    values = _as_array(portfolio_values)
    drawdown = calculate_max_drawdown(values)
    underwater = [-d for d in drawdown.drawdown_series if d < 0]
    avg_drawdown = float(np.mean(underwater)) if underwater else 0.0
    final_value = float(values[-1]) if values.size else 0.0

    return AdvancedRiskMetrics(
        var_95=calculate_var(daily_returns, 0.95),
        var_99=calculate_var(daily_returns, 0.99),
        cvar_95=calculate_cvar(daily_returns, 0.95),
        cvar_99=calculate_cvar(daily_returns, 0.99),
        sortino_ratio=calculate_sortino_ratio(daily_returns),
        calmar_ratio=calculate_calmar_ratio(annualized_return / 100.0, max_drawdown),
        treynor_ratio=calculate_treynor_ratio(annualized_return / 100.0, beta),
        information_ratio=(
            calculate_information_ratio(daily_returns, benchmark_returns)
            if benchmark_returns is not None else 0.0
        ),
        omega_ratio=calculate_omega(daily_returns),
        tail_ratio=calculate_tail_ratio(daily_returns),
        skewness=calculate_skewness(daily_returns),
        kurtosis=calculate_kurtosis(daily_returns),
        max_drawdown=max_drawdown,
        avg_drawdown=avg_drawdown,
        ulcer_index=calculate_ulcer_index(values),
        liquidity_score=calculate_liquidity_score(weights),
        days_to_liquidate=estimate_liquidation_days(final_value, weights, avg_daily_volumes, prices),
    )


def calculate_all_metrics(
    daily_returns: ArrayLike,
    portfolio_values: ArrayLike,
    start_date: DateLike,
    end_date: DateLike,
    benchmark_returns: Optional[ArrayLike] = None,
    risk_free_rate: float = RISK.backtest_risk_free,
) -> PortfolioMetrics:
    """Core performance summary over a dated value series; percentages throughout."""
    values = _as_array(portfolio_values)
    years = years_between(start_date, end_date)

    start_value = float(values[0]) if values.size and values[0] else 100_000.0
    end_value = float(values[-1]) if values.size and values[-1] else start_value

    cagr = calculate_cagr(start_value, end_value, years) * 100.0
    max_dd_pct = calculate_max_drawdown(values).max_drawdown_percent

    beta = alpha = information_ratio = None
    if benchmark_returns is not None and len(benchmark_returns) > 0:
        capm = calculate_beta_alpha(daily_returns, benchmark_returns, risk_free_rate)
        beta, alpha = capm["beta"], capm["alpha"]
        information_ratio = calculate_information_ratio(daily_returns, benchmark_returns)

    return PortfolioMetrics(
        total_return=end_value - start_value,
        total_return_percent=(end_value - start_value) / start_value * 100.0,
        cagr=cagr,
        volatility=annualized_volatility(daily_returns) * 100.0,
        max_drawdown=max_dd_pct,
        sharpe_ratio=calculate_sharpe_ratio(daily_returns, risk_free_rate),
        sortino_ratio=calculate_sortino_ratio(daily_returns, risk_free_rate),
        calmar_ratio=calculate_calmar_ratio(cagr / 100.0, max_dd_pct),
        var_95=calculate_var(daily_returns, 0.95),
        cvar_95=calculate_cvar(daily_returns, 0.95),
        skewness=calculate_skewness(daily_returns),
        kurtosis=calculate_kurtosis(daily_returns),
        ulcer_index=calculate_ulcer_index(values),
        beta=beta,
        alpha=alpha,
        information_ratio=information_ratio,
    )


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    # Data structures
    'DrawdownResult',
    'AdvancedRiskMetrics',
    'PortfolioMetrics',

    # Basic statistics
    'safe_divide',
    'arithmetic_mean',
    'standard_deviation',
    'geometric_mean',
    'simple_returns',
    'log_returns',
    'annualized_return',
    'annualized_volatility',
    'calculate_cagr',
    'years_between',

    # Risk-adjusted
    'calculate_sharpe_ratio',
    'calculate_sortino_ratio',
    'calculate_calmar_ratio',
    'calculate_treynor_ratio',
    'calculate_beta_alpha',
    'calculate_information_ratio',

    # Tail risk
    'calculate_var',
    'calculate_parametric_var',
    'calculate_cvar',
    'calculate_skewness',
    'calculate_kurtosis',
    'calculate_omega',
    'calculate_tail_ratio',

    # Drawdown
    'calculate_max_drawdown',
    'calculate_ulcer_index',

    # Liquidity
    'calculate_liquidity_score',
    'estimate_liquidation_days',

    # Aggregates
    'calculate_all_advanced_metrics',
    'calculate_all_metrics',
]
