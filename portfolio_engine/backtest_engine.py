#!/usr/bin/env python3
"""
Regime-Aware Tax-Aware Backtest Engine
======================================

Simulates a multi-asset portfolio day by day: regime detection,
hierarchical risk parity with a regime tilt, whole-share rebalancing and
FIFO tax-lot accounting.

DAILY STATE MACHINE
-------------------
    INITIALIZE
        Calendar = dates on which every active ticker has a bar.
        Day 0: equal weights, floor(capital * w / price) shares per asset,
        one tax lot per position, leftover cash held.

    For each following day:
        UPDATE_PRICES       value = cash + sum(shares * close)
        (rebalance due?)    calendar days since last rebalance >= cadence
                            daily 1, weekly 7, monthly 21, none never
            RECOMPUTE_REGIME        trailing 60 rows before the day
            RECOMPUTE_CORRELATION   trailing 252 rows before the day
            COMPUTE_TARGET_WEIGHTS  HRP + regime tilt
            EXECUTE_REBALANCE       whole shares in ticker order, sells
                                    through the FIFO ledger, buys as new lots
        RECORD_SNAPSHOT

    FINALIZE
        Performance metrics, regime breakdown, advanced risk metrics,
        historical stress tests.

Taxes are accumulated, not deducted from cash; they are reflected in the
after-tax return. Turnover on a rebalance is sum(|shares traded| * price)
divided by portfolio value.

METRICS (decimals)
------------------
    total_return      (final - initial) / initial
    cagr              over 365.25-day years between first and last snapshot
    volatility        sample stdev of daily returns * sqrt(252)
    sharpe / sortino  risk-free 5%
    max_drawdown      fraction of peak
    calmar            cagr / max drawdown
    after_tax_return  (final - initial - tax) / initial

ERRORS
------
    ConfigurationError       empty ticker list, invalid capital or dates,
                             no ticker with usable data
    BacktestCancelledError   the cancellation token fired
    Soft failures (dropped tickers, data-quality issues, invalid
    correlation estimates) are reported in ``BacktestResult.warnings``.

Version: 1.0.0
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from portfolio_engine.config import (
    BACKTEST,
    DEFAULT_TAX_RATES,
    REBALANCE_INTERVAL_DAYS,
    RISK,
    BacktestStatus,
    ConfigurationError,
    RebalanceFrequency,
    Regime,
    TaxRates,
)
from portfolio_engine.correlation import (
    compute_universe_statistics,
    correlation_from_prices,
    validate_correlation_matrix,
)
from portfolio_engine.data_collector import (
    CancellationToken,
    PriceHistoryProvider,
    ProgressCallback,
    TickerDiagnostic,
    YahooFinanceProvider,
)
from portfolio_engine.hrp import HierarchicalRiskParity, RegimeAwareAllocator
from portfolio_engine.regime_detector import (
    RegimeSignal,
    RegimeSummary,
    TurbulenceRegimeDetector,
    summarize_by_regime,
)
from portfolio_engine.risk_analytics import StressTestResult, format_stress_test_report, run_stress_tests
from portfolio_engine.risk_metrics import (
    AdvancedRiskMetrics,
    calculate_all_advanced_metrics,
    calculate_cagr,
    calculate_calmar_ratio,
    calculate_max_drawdown,
    calculate_sharpe_ratio,
    calculate_sortino_ratio,
    annualized_volatility,
    years_between,
)
from portfolio_engine.tax_lots import TaxLotLedger

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

DateLike = Union[str, date, datetime, pd.Timestamp]


# =============================================================================
# SECTION 1: CONFIGURATION
# =============================================================================

class Config:
    """Progress milestones and engine defaults."""
    PROGRESS_FETCH: float = 5.0
    PROGRESS_PROCESS: float = 40.0
    PROGRESS_PROCESS_SPAN: float = 50.0
    PROGRESS_METRICS: float = 95.0
    PROGRESS_DONE: float = 100.0
    PROGRESS_EVERY_N_DAYS: int = 20

    MAX_PARALLEL_RUNS: int = 4


@dataclass
class BacktestConfig:
    """Parameters of one backtest run."""
    tickers: List[str]
    start_date: DateLike
    end_date: DateLike
    initial_capital: float = BACKTEST.initial_capital
    rebalance_frequency: RebalanceFrequency = RebalanceFrequency.MONTHLY
    tax_rates: TaxRates = DEFAULT_TAX_RATES
    regime_lookback: int = BACKTEST.regime_lookback
    correlation_lookback: int = BACKTEST.correlation_lookback
    hrp_ordering: str = "average_distance"
    include_stress_tests: bool = True

    def validate(self) -> "BacktestConfig":
        """Normalize inputs and raise ConfigurationError on invalid values."""
        seen = []
        for ticker in self.tickers or []:
            symbol = str(ticker).strip().upper()
            if symbol and symbol not in seen:
                seen.append(symbol)
        if not seen:
            raise ConfigurationError("At least one ticker is required")
        self.tickers = seen

        if not self.initial_capital > 0:
            raise ConfigurationError(f"Initial capital must be positive, got {self.initial_capital}")

        if not isinstance(self.rebalance_frequency, RebalanceFrequency):
            try:
                self.rebalance_frequency = RebalanceFrequency(str(self.rebalance_frequency).lower())
            except ValueError:
                raise ConfigurationError(
                    f"Unknown rebalance frequency '{self.rebalance_frequency}'"
                ) from None

        try:
            start, end = pd.Timestamp(self.start_date), pd.Timestamp(self.end_date)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid date range: {e}") from e
        if end <= start:
            raise ConfigurationError(f"End date {end.date()} must be after start date {start.date()}")

        if self.regime_lookback < 2 or self.correlation_lookback < 2:
            raise ConfigurationError("Lookback windows must cover at least two observations")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tickers": list(self.tickers),
            "start_date": pd.Timestamp(self.start_date).date().isoformat(),
            "end_date": pd.Timestamp(self.end_date).date().isoformat(),
            "initial_capital": self.initial_capital,
            "rebalance_frequency": (
                self.rebalance_frequency.value
                if isinstance(self.rebalance_frequency, RebalanceFrequency)
                else str(self.rebalance_frequency)
            ),
            "tax_rates": self.tax_rates.to_dict(),
            "regime_lookback": self.regime_lookback,
            "correlation_lookback": self.correlation_lookback,
            "hrp_ordering": self.hrp_ordering,
        }


# =============================================================================
# SECTION 2: RESULT STRUCTURES
# =============================================================================

@dataclass
class BacktestSnapshot:
    """Portfolio state at the close of one trading day."""
    date: date
    portfolio_value: float
    daily_return: float
    regime: Regime
    turbulence_index: float
    weights: Dict[str, float]
    cash: float = 0.0
    turnover: float = 0.0             # This day's rebalance, 0 otherwise
    tax_paid: float = 0.0
    rebalanced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "portfolio_value": self.portfolio_value,
            "daily_return": self.daily_return,
            "regime": self.regime.value,
            "turbulence_index": self.turbulence_index,
            "weights": dict(self.weights),
            "cash": self.cash,
            "turnover": self.turnover,
            "tax_paid": self.tax_paid,
            "rebalanced": self.rebalanced,
        }


@dataclass(frozen=True)
class PerformanceMetrics:
    """Headline run metrics, all decimals except the ratios."""
    total_return: float = 0.0
    cagr: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    calmar_ratio: float = 0.0
    total_turnover: float = 0.0
    total_tax_paid: float = 0.0
    after_tax_return: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "total_return": self.total_return,
            "cagr": self.cagr,
            "volatility": self.volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "sortino_ratio": self.sortino_ratio,
            "max_drawdown": self.max_drawdown,
            "calmar_ratio": self.calmar_ratio,
            "total_turnover": self.total_turnover,
            "total_tax_paid": self.total_tax_paid,
            "after_tax_return": self.after_tax_return,
        }


@dataclass
class BacktestResult:
    """Complete backtest result container."""
    status: BacktestStatus
    config: BacktestConfig
    snapshots: List[BacktestSnapshot] = field(default_factory=list)
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    regime_breakdown: List[RegimeSummary] = field(default_factory=list)
    advanced_metrics: Optional[AdvancedRiskMetrics] = None
    stress_tests: List[StressTestResult] = field(default_factory=list)
    final_weights: Dict[str, float] = field(default_factory=dict)
    active_tickers: List[str] = field(default_factory=list)
    diagnostics: List[TickerDiagnostic] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    rebalance_count: int = 0
    execution_time_ms: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    version: str = VERSION

    @property
    def final_value(self) -> float:
        if not self.snapshots:
            return self.config.initial_capital
        return self.snapshots[-1].portfolio_value

    def value_series(self) -> pd.Series:
        """Portfolio value per snapshot date."""
        return pd.Series(
            [s.portfolio_value for s in self.snapshots],
            index=pd.DatetimeIndex([pd.Timestamp(s.date) for s in self.snapshots]),
            name="portfolio_value",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "config": self.config.to_dict(),
            "final_value": self.final_value,
            "metrics": self.metrics.to_dict(),
            "regime_breakdown": [r.to_dict() for r in self.regime_breakdown],
            "advanced_metrics": self.advanced_metrics.to_dict() if self.advanced_metrics else None,
            "stress_tests": [s.to_dict() for s in self.stress_tests],
            "final_weights": dict(self.final_weights),
            "active_tickers": list(self.active_tickers),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "warnings": list(self.warnings),
            "rebalance_count": self.rebalance_count,
            "snapshots": [s.to_dict() for s in self.snapshots],
            "execution_time_ms": self.execution_time_ms,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
        }


# =============================================================================
# SECTION 3: METRICS
# =============================================================================

def compute_performance_metrics(
    snapshots: Sequence[BacktestSnapshot],
    initial_capital: float,
    total_tax_paid: float = 0.0,
    risk_free_rate: float = RISK.backtest_risk_free
) -> PerformanceMetrics:
    """
    Aggregate a run's snapshots into PerformanceMetrics.

    Fewer than two snapshots yield all zeros.
    """
    if len(snapshots) < 2:
        return PerformanceMetrics()

    values = np.array([s.portfolio_value for s in snapshots], dtype=float)
    returns = np.array([s.daily_return for s in snapshots], dtype=float)
    final_value = float(values[-1])

    years = years_between(snapshots[0].date, snapshots[-1].date)
    cagr = calculate_cagr(initial_capital, final_value, years)
    max_dd_pct = calculate_max_drawdown(values).max_drawdown_percent

    return PerformanceMetrics(
        total_return=(final_value - initial_capital) / initial_capital,
        cagr=cagr,
        volatility=annualized_volatility(returns),
        sharpe_ratio=calculate_sharpe_ratio(returns, risk_free_rate),
        sortino_ratio=calculate_sortino_ratio(returns, risk_free_rate),
        max_drawdown=max_dd_pct / 100.0,
        calmar_ratio=calculate_calmar_ratio(cagr, max_dd_pct),
        total_turnover=float(sum(s.turnover for s in snapshots)),
        total_tax_paid=total_tax_paid,
        after_tax_return=(final_value - initial_capital - total_tax_paid) / initial_capital,
    )


# =============================================================================
# SECTION 4: BACKTEST ENGINE
# =============================================================================

class BacktestEngine:
    """
    Day-by-day portfolio simulator.

    One instance owns the ledger, share counts and cash of the run in
    progress; use one engine per concurrent run.

    Usage:
        engine = BacktestEngine(YahooFinanceProvider())
        result = engine.run(BacktestConfig(["SPY", "TLT", "GLD"], "2019-01-01", "2023-12-31"))
    """

    def __init__(
        self,
        provider: Optional[PriceHistoryProvider] = None,
        detector: Optional[TurbulenceRegimeDetector] = None
    ):
        self.provider = provider or YahooFinanceProvider()
        self.detector = detector or TurbulenceRegimeDetector()
        self._reset(DEFAULT_TAX_RATES)

    def _reset(self, tax_rates: TaxRates) -> None:
        self.ledger = TaxLotLedger(tax_rates)
        self.cash = 0.0
        self.shares: Dict[str, int] = {}
        self.total_tax = 0.0

    def run(
        self,
        config: BacktestConfig,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> BacktestResult:
        """
        Run a backtest.

        Args:
            config: Run parameters, validated here
            on_progress: ``(message, percent)`` callback
            cancel_token: Checked before each fetch and each trading day

        Returns:
            BacktestResult

        Raises:
            ConfigurationError: Invalid config or no usable ticker
            BacktestCancelledError: Cancelled through ``cancel_token``
        """
        started = time.time()
        config.validate()
        self._reset(config.tax_rates)

        def report(message: str, percent: float) -> None:
            if on_progress is not None:
                on_progress(message, percent)

        logger.info(
            f"Backtest {config.tickers} {pd.Timestamp(config.start_date).date()} -> "
            f"{pd.Timestamp(config.end_date).date()}, {config.rebalance_frequency.value} rebalancing"
        )

        # --- Fetch ---
        report("Fetching historical data...", Config.PROGRESS_FETCH)
        fetched = self.provider.fetch(
            config.tickers, config.start_date, config.end_date,
            on_progress=on_progress, cancel_token=cancel_token,
        )

        warnings: List[str] = []
        for diag in fetched.diagnostics:
            if not diag.success:
                warnings.append(f"Dropped {diag.ticker}: {diag.error}")
            for issue in diag.validation_issues:
                warnings.append(f"{diag.ticker}: {issue}")

        active = [t for t in config.tickers if t in fetched.asset_data]
        if not active:
            raise ConfigurationError("No valid data for any tickers")

        closes = pd.concat({t: fetched.asset_data[t].close for t in active}, axis=1)
        non_positive = (closes <= 0).sum()
        for ticker, count in non_positive[non_positive > 0].items():
            warnings.append(f"{ticker}: excluded {int(count)} day(s) with non-positive close")
            logger.warning(f"{ticker}: {int(count)} non-positive close(s) excluded from simulation")
        closes = closes.where(closes > 0).dropna()
        volumes = pd.concat({t: fetched.asset_data[t].volume for t in active}, axis=1).reindex(closes.index)

        if len(closes) < 2:
            warnings.append(f"Only {len(closes)} common trading day(s) across {active}")
            logger.warning(f"Insufficient common history for {active}")
            return BacktestResult(
                status=BacktestStatus.INSUFFICIENT_DATA,
                config=config,
                active_tickers=active,
                diagnostics=fetched.diagnostics,
                warnings=warnings,
                execution_time_ms=(time.time() - started) * 1000,
            )

        # --- Simulate ---
        report("Processing trading days...", Config.PROGRESS_PROCESS)
        snapshots, rebalance_count = self._simulate(
            config, active, closes, volumes, warnings, report, cancel_token
        )

        # --- Finalize ---
        report("Calculating metrics...", Config.PROGRESS_METRICS)
        metrics = compute_performance_metrics(snapshots, config.initial_capital, self.total_tax)
        regime_breakdown = summarize_by_regime((s.regime, s.daily_return) for s in snapshots)

        last_prices = closes.iloc[-1]
        final_weights = snapshots[-1].weights if snapshots else {}
        advanced = None
        stress_tests: List[StressTestResult] = []
        if len(snapshots) >= 2:
            daily_returns = [s.daily_return for s in snapshots]
            values = [s.portfolio_value for s in snapshots]
            avg_volumes = {
                t: float(volumes[t][volumes[t] > 0].mean()) for t in active
                if (volumes[t] > 0).any()
            }
            advanced = calculate_all_advanced_metrics(
                daily_returns,
                values,
                final_weights,
                annualized_return=metrics.cagr * 100.0,
                max_drawdown=metrics.max_drawdown * 100.0,
                avg_daily_volumes=avg_volumes,
                prices={t: float(last_prices[t]) for t in active},
            )
            if config.include_stress_tests:
                series = pd.Series(values, index=pd.DatetimeIndex([pd.Timestamp(s.date) for s in snapshots]))
                stress_tests = run_stress_tests(series)

        status = BacktestStatus.PARTIAL if warnings else BacktestStatus.SUCCESS
        report("Complete!", Config.PROGRESS_DONE)
        elapsed = (time.time() - started) * 1000
        logger.info(
            f"Backtest complete: final value ${snapshots[-1].portfolio_value:,.2f}, "
            f"{rebalance_count} rebalance(s), tax ${self.total_tax:,.2f} ({elapsed:.0f}ms)"
        )

        return BacktestResult(
            status=status,
            config=config,
            snapshots=snapshots,
            metrics=metrics,
            regime_breakdown=regime_breakdown,
            advanced_metrics=advanced,
            stress_tests=stress_tests,
            final_weights=final_weights,
            active_tickers=active,
            diagnostics=fetched.diagnostics,
            warnings=warnings,
            rebalance_count=rebalance_count,
            execution_time_ms=elapsed,
        )

    def _simulate(
        self,
        config: BacktestConfig,
        tickers: List[str],
        closes: pd.DataFrame,
        volumes: pd.DataFrame,
        warnings: List[str],
        report,
        cancel_token: Optional[CancellationToken]
    ):
        dates = [ts.date() for ts in closes.index]
        prices = closes.to_numpy(dtype=float)
        n_days = len(dates)

        allocator = RegimeAwareAllocator(HierarchicalRiskParity(ordering=config.hrp_ordering))
        interval = REBALANCE_INTERVAL_DAYS.get(config.rebalance_frequency)

        # INITIALIZE
        self.cash = float(config.initial_capital)
        equal = 1.0 / len(tickers)
        for j, ticker in enumerate(tickers):
            price = prices[0, j]
            count = int(math.floor(config.initial_capital * equal / price)) if price > 0 else 0
            self.shares[ticker] = count
            if count > 0:
                self.cash -= count * price
                self.ledger.buy(ticker, count, price, dates[0])
        logger.debug(f"Initial allocation on {dates[0]}: {self.shares}, cash ${self.cash:,.2f}")

        regime = RegimeSignal.default(dates[0])
        last_rebalance = dates[0]
        previous_value = float(config.initial_capital)
        snapshots: List[BacktestSnapshot] = []
        rebalance_count = 0
        invalid_correlation_reported = False

        for i in range(1, n_days):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(f"trading day {dates[i]}")
            if i % Config.PROGRESS_EVERY_N_DAYS == 0:
                report(
                    f"Processing {dates[i].isoformat()}",
                    Config.PROGRESS_PROCESS + i / n_days * Config.PROGRESS_PROCESS_SPAN,
                )

            today = dict(zip(tickers, prices[i]))
            value = self._portfolio_value(today)
            daily_return = (value - previous_value) / previous_value if previous_value > 0 else 0.0

            turnover = tax = 0.0
            rebalanced = False
            if interval is not None and (dates[i] - last_rebalance).days >= interval:
                corr_window = closes.iloc[max(0, i - config.correlation_lookback):i]
                correlation = correlation_from_prices(corr_window)
                validation = validate_correlation_matrix(correlation)
                if not validation.is_valid and not invalid_correlation_reported:
                    warnings.append(f"Correlation estimate invalid on {dates[i]}: {'; '.join(validation.issues)}")
                    invalid_correlation_reported = True

                regime = self.detector.detect(
                    closes.iloc[max(0, i - config.regime_lookback):i], as_of=dates[i]
                )
                stats = compute_universe_statistics(corr_window, volumes.iloc[max(0, i - config.correlation_lookback):i])
                target = allocator.compute_optimal_weights(stats, correlation, regime).weights

                turnover, tax = self._execute_rebalance(tickers, target, today, value, dates[i])
                last_rebalance = dates[i]
                rebalanced = True
                rebalance_count += 1
                logger.debug(
                    f"{dates[i]} rebalance ({regime.regime.value}): turnover={turnover:.2%}, tax=${tax:,.2f}"
                )

            snapshots.append(BacktestSnapshot(
                date=dates[i],
                portfolio_value=value,
                daily_return=daily_return,
                regime=regime.regime,
                turbulence_index=regime.turbulence_index,
                weights=self._current_weights(today, value),
                cash=self.cash,
                turnover=turnover,
                tax_paid=tax,
                rebalanced=rebalanced,
            ))
            previous_value = value

        return snapshots, rebalance_count

    def _portfolio_value(self, prices: Dict[str, float]) -> float:
        return self.cash + sum(self.shares[t] * prices[t] for t in self.shares)

    def _current_weights(self, prices: Dict[str, float], value: float) -> Dict[str, float]:
        if value <= 0:
            return {t: 0.0 for t in self.shares}
        return {t: self.shares[t] * prices[t] / value for t in self.shares}

    def _execute_rebalance(
        self,
        tickers: List[str],
        target_weights: Dict[str, float],
        prices: Dict[str, float],
        total_value: float,
        trade_date: date
    ) -> Tuple[float, float]:
        """Trade to whole-share targets; returns (turnover, tax)."""
        turnover = 0.0
        tax = 0.0
        for ticker in tickers:
            price = prices[ticker]
            if not price > 0:
                continue
            target_shares = int(math.floor(total_value * target_weights.get(ticker, 0.0) / price))
            diff = target_shares - self.shares[ticker]
            if diff == 0:
                continue
            turnover += abs(diff) * price / total_value

            if diff < 0:
                sale = self.ledger.sell(ticker, -diff, price, trade_date)
                tax += sale.tax
                self.cash += -diff * price
            else:
                self.cash -= diff * price
                self.ledger.buy(ticker, diff, price, trade_date)
            self.shares[ticker] = target_shares

        self.total_tax += tax
        return turnover, tax


# =============================================================================
# SECTION 5: REPORTING
# =============================================================================

def format_backtest_report(result: BacktestResult) -> str:
    """
    Format backtest result as human-readable text report.

    Args:
        result: BacktestResult from the engine

    Returns:
        Formatted string report
    """
    config = result.config
    m = result.metrics
    period = (
        f"{result.snapshots[0].date.isoformat()} to {result.snapshots[-1].date.isoformat()}"
        if result.snapshots else "n/a"
    )
    lines = [
        "=" * 70,
        "REGIME-AWARE BACKTEST REPORT",
        "=" * 70,
        f"Tickers: {', '.join(result.active_tickers) or 'none'}",
        f"Period: {period}",
        f"Trading Days: {len(result.snapshots):,}",
        f"Rebalancing: {config.rebalance_frequency.value} ({result.rebalance_count} rebalances)",
        f"Status: {result.status.value}",
        "",
        "-" * 70,
        "CAPITAL",
        "-" * 70,
        f"Initial Capital: ${config.initial_capital:,.2f}",
        f"Final Value:     ${result.final_value:,.2f}",
        f"Total Return:    {m.total_return:+.2%}",
        f"After-Tax:       {m.after_tax_return:+.2%}",
        "",
        "-" * 70,
        "PERFORMANCE",
        "-" * 70,
        f"  CAGR:              {m.cagr:+.2%}",
        f"  Volatility:        {m.volatility:.2%}",
        f"  Sharpe Ratio:      {m.sharpe_ratio:.3f}",
        f"  Sortino Ratio:     {m.sortino_ratio:.3f}",
        f"  Maximum Drawdown:  {m.max_drawdown:.2%}",
        f"  Calmar Ratio:      {m.calmar_ratio:.3f}",
        "",
        "-" * 70,
        "TRADING & TAX",
        "-" * 70,
        f"Total Turnover:      {m.total_turnover:.2%}",
        f"Total Tax Paid:      ${m.total_tax_paid:,.2f}",
        f"Tax Rates:           {config.tax_rates.short_term:.0%} short / {config.tax_rates.long_term:.0%} long",
    ]

    if result.regime_breakdown:
        lines.extend([
            "",
            "-" * 70,
            "REGIME BREAKDOWN",
            "-" * 70,
            f"  {'Regime':<12}{'Days':>8}{'Ann. Return':>14}{'Ann. Vol':>12}",
        ])
        for r in result.regime_breakdown:
            lines.append(f"  {r.regime.value:<12}{r.days:>8}{r.avg_return:>+14.2%}{r.volatility:>12.2%}")

    if result.advanced_metrics is not None:
        a = result.advanced_metrics
        lines.extend([
            "",
            "-" * 70,
            "RISK ANALYSIS",
            "-" * 70,
            f"VaR (95% / 99%):     {a.var_95:.2f}% / {a.var_99:.2f}%",
            f"CVaR (95% / 99%):    {a.cvar_95:.2f}% / {a.cvar_99:.2f}%",
            f"Omega Ratio:         {a.omega_ratio:.3f}",
            f"Tail Ratio:          {a.tail_ratio:.3f}",
            f"Skewness:            {a.skewness:+.3f}",
            f"Excess Kurtosis:     {a.kurtosis:.3f}",
            f"Ulcer Index:         {a.ulcer_index:.3f}",
            f"Liquidity Score:     {a.liquidity_score:.0f}/100 ({a.days_to_liquidate} day(s) to liquidate)",
        ])

    if result.final_weights:
        lines.extend(["", "-" * 70, "FINAL WEIGHTS", "-" * 70])
        for ticker, weight in sorted(result.final_weights.items(), key=lambda kv: -kv[1]):
            lines.append(f"  {ticker:<8}{weight:>8.2%}")

    if result.stress_tests:
        lines.extend(["", format_stress_test_report(result.stress_tests)])

    if result.warnings:
        lines.extend(["", "-" * 70, "WARNINGS", "-" * 70])
        lines.extend(f"  - {w}" for w in result.warnings)

    lines.extend([
        "",
        "=" * 70,
        f"Processing Time: {result.execution_time_ms:.0f}ms | Version: {result.version}",
        "=" * 70,
    ])
    return "\n".join(lines)


# =============================================================================
# SECTION 6: CONVENIENCE FUNCTIONS
# =============================================================================

def run_backtest(
    tickers: Sequence[str],
    start_date: DateLike,
    end_date: DateLike,
    initial_capital: float = BACKTEST.initial_capital,
    rebalance_frequency: Union[RebalanceFrequency, str] = RebalanceFrequency.MONTHLY,
    tax_rates: TaxRates = DEFAULT_TAX_RATES,
    on_progress: Optional[ProgressCallback] = None,
    provider: Optional[PriceHistoryProvider] = None,
    cancel_token: Optional[CancellationToken] = None
) -> BacktestResult:
    """
    Convenience function for running a complete backtest.

    Example:
        >>> result = run_backtest(["SPY", "TLT", "GLD"], "2019-01-01", "2023-12-31")
        >>> print(f"CAGR: {result.metrics.cagr:.2%}")
        >>> print(format_backtest_report(result))
    """
    config = BacktestConfig(
        tickers=list(tickers),
        start_date=start_date,
        end_date=end_date,
        initial_capital=initial_capital,
        rebalance_frequency=rebalance_frequency,
        tax_rates=tax_rates,
    )
    return BacktestEngine(provider).run(config, on_progress=on_progress, cancel_token=cancel_token)


def run_backtests_parallel(
    configs: Sequence[BacktestConfig],
    provider: Optional[PriceHistoryProvider] = None,
    max_workers: int = Config.MAX_PARALLEL_RUNS,
    cancel_token: Optional[CancellationToken] = None
) -> List[BacktestResult]:
    """
    Run independent backtests concurrently, one engine per run.

    Results are returned in the order of ``configs``; the first fatal
    error of any run is re-raised.
    """
    if not configs:
        return []
    provider = provider or YahooFinanceProvider()
    logger.info(f"Running {len(configs)} backtests on {max_workers} worker(s)")
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(BacktestEngine(provider).run, config, None, cancel_token)
            for config in configs
        ]
        return [future.result() for future in futures]


# =============================================================================
# SECTION 7: MODULE EXPORTS
# =============================================================================

__all__ = [
    'Config',
    'VERSION',
    'BacktestConfig',
    'BacktestSnapshot',
    'PerformanceMetrics',
    'BacktestResult',
    'compute_performance_metrics',
    'BacktestEngine',
    'format_backtest_report',
    'run_backtest',
    'run_backtests_parallel',
]
