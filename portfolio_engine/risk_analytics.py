"""
Historical Stress Testing
=========================

Replays known market crises against a backtest's value series, or against
a static allocation over any window.

SCENARIOS
---------
    COVID Crash            2020-02-19 -> 2020-03-23
    COVID Recovery         2020-03-23 -> 2020-08-31
    2022 Bear Market       2022-01-03 -> 2022-10-12
    2022 Recovery          2022-10-12 -> 2023-07-31
    2018 Q4 Selloff        2018-10-01 -> 2018-12-24
    2018 Recovery          2018-12-24 -> 2019-04-30
    Aug 2015 Flash Crash   2015-08-17 -> 2015-08-25
    Post-Flash Recovery    2015-08-25 -> 2015-11-30

A scenario is evaluated only when the series fully covers its window with
at least five observations inside it.

Per scenario:
    - Compounded strategy return, and benchmark return / outperformance
      when a benchmark is supplied
    - Maximum drawdown inside the window
    - Beta to the benchmark (needs more than 10 observations)
    - Calendar days after the window until the loss is recovered

Reference:
    Ang, A. (2014). "Asset Management: A Systematic Approach to Factor
    Investing." Oxford University Press.

Version: 1.0.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

class Config:
    MIN_SCENARIO_OBSERVATIONS: int = 5
    MIN_BETA_OBSERVATIONS: int = 10


@dataclass(frozen=True)
class StressScenario:
    """A named historical stress window."""
    name: str
    start: str
    end: str
    description: str = ""


STRESS_SCENARIOS: List[StressScenario] = [
    StressScenario("COVID Crash", "2020-02-19", "2020-03-23",
                   "Rapid pandemic selloff from the S&P 500 peak to trough"),
    StressScenario("COVID Recovery", "2020-03-23", "2020-08-31",
                   "V-shaped rebound after the March 2020 trough"),
    StressScenario("2022 Bear Market", "2022-01-03", "2022-10-12",
                   "Rate hikes drove a prolonged decline in growth assets"),
    StressScenario("2022 Recovery", "2022-10-12", "2023-07-31"),
    StressScenario("2018 Q4 Selloff", "2018-10-01", "2018-12-24",
                   "Tightening and trade-war fears"),
    StressScenario("2018 Recovery", "2018-12-24", "2019-04-30"),
    StressScenario("Aug 2015 Flash Crash", "2015-08-17", "2015-08-25",
                   "China devaluation shock"),
    StressScenario("Post-Flash Recovery", "2015-08-25", "2015-11-30"),
]


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class StressTestResult:
    """
    Results from a single stress test scenario.

    Attributes
    ----------
    scenario_name : str
        Name of the stress scenario
    period_start : str
        Start date of scenario
    period_end : str
        End date of scenario
    strategy_return : float
        Compounded strategy return during the scenario (decimal)
    max_drawdown : float
        Maximum drawdown during the scenario (positive decimal)
    benchmark_return : float, optional
        Benchmark return during the scenario
    outperformance : float, optional
        Strategy return minus benchmark return
    days_to_recovery : int, optional
        Calendar days after the scenario until the loss was recovered
    beta_during_stress : float, optional
        Beta to the benchmark during the scenario
    """
    scenario_name: str
    period_start: str
    period_end: str
    strategy_return: float
    max_drawdown: float
    benchmark_return: Optional[float] = None
    outperformance: Optional[float] = None
    days_to_recovery: Optional[int] = None
    beta_during_stress: Optional[float] = None

    @property
    def protected_downside(self) -> bool:
        """Strategy lost less than the benchmark."""
        return self.outperformance is not None and self.outperformance > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario_name": self.scenario_name,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "strategy_return": self.strategy_return,
            "max_drawdown": self.max_drawdown,
            "benchmark_return": self.benchmark_return,
            "outperformance": self.outperformance,
            "days_to_recovery": self.days_to_recovery,
            "beta_during_stress": self.beta_during_stress,
        }


@dataclass
class AllocationStressResult:
    """Static allocation replayed over one window; percentages and currency."""
    scenario_name: str
    period_start: str
    period_end: str
    portfolio_return: float             # %
    portfolio_drawdown: float           # %, negative or zero
    dollar_loss: float
    asset_breakdown: Dict[str, Dict[str, float]] = field(default_factory=dict)
    missing_tickers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario_name": self.scenario_name,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "portfolio_return": self.portfolio_return,
            "portfolio_drawdown": self.portfolio_drawdown,
            "dollar_loss": self.dollar_loss,
            "asset_breakdown": {k: dict(v) for k, v in self.asset_breakdown.items()},
            "missing_tickers": list(self.missing_tickers),
        }


# =============================================================================
# HELPERS
# =============================================================================

def _drawdown_from_equity(equity: pd.Series) -> float:
    """Deepest decline from the running peak, as a negative decimal."""
    if len(equity) == 0:
        return 0.0
    running_max = equity.cummax()
    drawdown = ((equity - running_max) / running_max).min()
    return float(drawdown) if pd.notna(drawdown) else 0.0


def _price_drawdown_pct(prices: pd.Series) -> float:
    if len(prices) < 2:
        return 0.0
    return _drawdown_from_equity(prices) * 100.0


def _price_return_pct(prices: pd.Series) -> float:
    if len(prices) < 2:
        return 0.0
    return float((prices.iloc[-1] - prices.iloc[0]) / prices.iloc[0] * 100.0)


# =============================================================================
# STRESS TESTER
# =============================================================================

class StressTester:
    """
    Evaluates a value or return series against historical scenarios.

    Usage:
        tester = StressTester()
        results = tester.run(portfolio_values, benchmark_values)
    """

    def __init__(self, scenarios: Sequence[StressScenario] = STRESS_SCENARIOS):
        self.scenarios = list(scenarios)

    def run(
        self,
        portfolio_values: pd.Series,
        benchmark_values: Optional[pd.Series] = None
    ) -> List[StressTestResult]:
        """
        Run every scenario that the series covers.

        Args:
            portfolio_values: Portfolio value indexed by date
            benchmark_values: Optional benchmark price/value indexed by date

        Returns:
            One StressTestResult per covered scenario
        """
        strategy_returns = portfolio_values.sort_index().pct_change().dropna()
        benchmark_returns = None
        if benchmark_values is not None:
            benchmark_returns = (
                benchmark_values.sort_index().pct_change()
                .reindex(strategy_returns.index).fillna(0.0)
            )
        return self.run_returns(strategy_returns, benchmark_returns)

    def run_returns(
        self,
        strategy_returns: pd.Series,
        benchmark_returns: Optional[pd.Series] = None
    ) -> List[StressTestResult]:
        """Same as ``run`` for daily return series."""
        if len(strategy_returns) == 0:
            return []

        results = []
        for scenario in self.scenarios:
            result = self._run_scenario(scenario, strategy_returns, benchmark_returns)
            if result is not None:
                results.append(result)
        logger.info(f"Stress tests: {len(results)}/{len(self.scenarios)} scenarios covered by data")
        return results

    def _run_scenario(
        self,
        scenario: StressScenario,
        strategy_returns: pd.Series,
        benchmark_returns: Optional[pd.Series]
    ) -> Optional[StressTestResult]:
        start_dt = pd.Timestamp(scenario.start)
        end_dt = pd.Timestamp(scenario.end)

        if start_dt < strategy_returns.index[0] or end_dt > strategy_returns.index[-1]:
            return None

        mask = (strategy_returns.index >= start_dt) & (strategy_returns.index <= end_dt)
        if mask.sum() < Config.MIN_SCENARIO_OBSERVATIONS:
            return None

        period_strat = strategy_returns[mask]
        strat_return = float((1 + period_strat).prod() - 1)
        max_dd = abs(_drawdown_from_equity((1 + period_strat).cumprod()))

        bench_return = outperformance = stress_beta = None
        if benchmark_returns is not None:
            period_bench = benchmark_returns[mask]
            bench_return = float((1 + period_bench).prod() - 1)
            outperformance = strat_return - bench_return
            stress_beta = 1.0
            if len(period_strat) > Config.MIN_BETA_OBSERVATIONS:
                cov = np.cov(period_strat, period_bench)[0, 1]
                var = np.var(period_bench, ddof=1)
                stress_beta = float(cov / var) if var > 0 else 1.0

        recovery_days = None
        if strat_return < 0:
            post = strategy_returns[strategy_returns.index > end_dt]
            if len(post) > 0:
                post_equity = (1 + post).cumprod()
                recovered = post_equity >= 1 / (1 + strat_return)
                if recovered.any():
                    recovery_days = (recovered.idxmax() - end_dt).days

        logger.debug(f"{scenario.name}: return={strat_return:.2%}, max_dd={max_dd:.2%}")
        return StressTestResult(
            scenario_name=scenario.name,
            period_start=scenario.start,
            period_end=scenario.end,
            strategy_return=strat_return,
            max_drawdown=max_dd,
            benchmark_return=bench_return,
            outperformance=outperformance,
            days_to_recovery=recovery_days,
            beta_during_stress=stress_beta,
        )


# =============================================================================
# STATIC ALLOCATION STRESS TEST
# =============================================================================

def run_allocation_stress_test(
    weights: Mapping[str, float],
    prices: pd.DataFrame,
    capital: float,
    start: str,
    end: str,
    scenario_name: str = "Custom"
) -> AllocationStressResult:
    """
    Replay a buy-and-hold allocation over ``[start, end]``.

    Each asset contributes ``price_t / price_0 * weight * capital``; the
    portfolio path is the sum over dates where all held assets trade.

    Args:
        weights: Target weights per ticker
        prices: Close prices, one column per ticker
        capital: Amount invested at ``start``
        start: First date of the window
        end: Last date of the window
        scenario_name: Label for the result

    Returns:
        AllocationStressResult; tickers without prices in the window are
        listed in ``missing_tickers`` and contribute nothing
    """
    window = prices.loc[(prices.index >= pd.Timestamp(start)) & (prices.index <= pd.Timestamp(end))]

    breakdown: Dict[str, Dict[str, float]] = {}
    missing: List[str] = []
    held: List[str] = []
    for ticker in weights:
        series = window[ticker].dropna() if ticker in window.columns else pd.Series(dtype=float)
        if len(series) == 0:
            logger.warning(f"No data for {ticker} during {scenario_name}")
            breakdown[ticker] = {"drawdown": 0.0, "return": 0.0}
            missing.append(ticker)
            continue
        breakdown[ticker] = {
            "drawdown": _price_drawdown_pct(series),
            "return": _price_return_pct(series),
        }
        held.append(ticker)

    if not held:
        return AllocationStressResult(scenario_name, start, end, 0.0, 0.0, 0.0, breakdown, missing)

    aligned = window[held].dropna()
    if len(aligned) == 0:
        return AllocationStressResult(scenario_name, start, end, 0.0, 0.0, 0.0, breakdown, missing)

    allocation = pd.Series({t: weights[t] * capital for t in held})
    portfolio = (aligned / aligned.iloc[0] * allocation).sum(axis=1)

    drawdown = _price_drawdown_pct(portfolio)
    return AllocationStressResult(
        scenario_name=scenario_name,
        period_start=start,
        period_end=end,
        portfolio_return=_price_return_pct(portfolio),
        portfolio_drawdown=drawdown,
        dollar_loss=abs(capital * drawdown / 100.0),
        asset_breakdown=breakdown,
        missing_tickers=missing,
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def run_stress_tests(
    portfolio_values: pd.Series,
    benchmark_values: Optional[pd.Series] = None
) -> List[StressTestResult]:
    """
    Convenience function for the standard scenario set.

    Example:
        >>> results = run_stress_tests(result.value_series())
        >>> print(format_stress_test_report(results))
    """
    return StressTester().run(portfolio_values, benchmark_values)


def format_stress_test_report(results: List[StressTestResult]) -> str:
    """Format stress test results as a text table."""
    lines = [
        "=" * 70,
        "HISTORICAL STRESS TESTS",
        "=" * 70,
    ]
    if not results:
        lines.append("  No scenario falls inside the tested period.")
        lines.append("=" * 70)
        return "\n".join(lines)

    lines.append(f"  {'Scenario':<24}{'Return':>10}{'Max DD':>10}{'vs Bench':>10}{'Recovery':>12}")
    lines.append("-" * 70)
    for r in results:
        vs_bench = f"{r.outperformance:>+10.2%}" if r.outperformance is not None else f"{'n/a':>10}"
        recovery = f"{r.days_to_recovery}d" if r.days_to_recovery is not None else "-"
        lines.append(
            f"  {r.scenario_name:<24}{r.strategy_return:>+10.2%}{-r.max_drawdown:>10.2%}"
            f"{vs_bench}{recovery:>12}"
        )
    lines.append("=" * 70)
    return "\n".join(lines)


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    'Config',
    'StressScenario',
    'STRESS_SCENARIOS',
    'StressTestResult',
    'AllocationStressResult',
    'StressTester',
    'run_allocation_stress_test',
    'run_stress_tests',
    'format_stress_test_report',
]
