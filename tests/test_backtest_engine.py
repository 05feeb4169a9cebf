"""
Integration tests for the regime-aware backtest engine.
"""

import json

import numpy as np
import pytest

from conftest import make_ohlcv
from portfolio_engine.backtest_engine import (
    BacktestConfig,
    BacktestEngine,
    compute_performance_metrics,
    format_backtest_report,
    run_backtest,
    run_backtests_parallel,
)
from portfolio_engine.config import (
    BacktestCancelledError,
    BacktestStatus,
    ConfigurationError,
    RebalanceFrequency,
    Regime,
)
from portfolio_engine.data_collector import CancellationToken, InMemoryPriceProvider


@pytest.fixture
def universe_provider(sample_universe):
    return InMemoryPriceProvider(sample_universe)


@pytest.fixture
def universe_range(sample_universe):
    index = sample_universe["SPY"].index
    return index[0].date().isoformat(), index[-1].date().isoformat()


class TestBacktestConfig:
    """Tests for run parameter validation."""

    def test_normalizes_tickers_and_frequency(self):
        config = BacktestConfig([" spy", "SPY", "tlt"], "2021-01-01", "2021-12-31",
                                rebalance_frequency="weekly").validate()
        assert config.tickers == ["SPY", "TLT"]
        assert config.rebalance_frequency == RebalanceFrequency.WEEKLY

    @pytest.mark.parametrize("kwargs", [
        {"tickers": []},
        {"tickers": ["  "]},
        {"initial_capital": 0},
        {"initial_capital": -5_000},
        {"rebalance_frequency": "hourly"},
        {"end_date": "2020-06-01"},
        {"start_date": "not a date"},
        {"regime_lookback": 1},
    ])
    def test_invalid(self, kwargs):
        params = {"tickers": ["SPY"], "start_date": "2021-01-01", "end_date": "2021-12-31"}
        params.update(kwargs)
        with pytest.raises(ConfigurationError):
            BacktestConfig(**params).validate()


class TestBuyAndHold:
    """Tests for runs without rebalancing."""

    def test_single_ticker_exact_value(self):
        bars = make_ohlcv(np.linspace(100.0, 150.0, 30))
        provider = InMemoryPriceProvider({"ABC": bars})
        end = bars.index[-1].date().isoformat()

        result = run_backtest(["ABC"], "2021-01-04", end, initial_capital=10_050,
                              rebalance_frequency="none", provider=provider)

        assert result.status == BacktestStatus.SUCCESS
        assert result.rebalance_count == 0
        assert len(result.snapshots) == 29
        # floor(10,050 / 100) = 100 shares, $50 cash
        assert result.final_value == pytest.approx(100 * 150.0 + 50.0)
        assert result.snapshots[-1].cash == pytest.approx(50.0)
        assert result.metrics.total_return == pytest.approx(5_000 / 10_050)
        assert result.metrics.total_tax_paid == 0.0
        assert result.metrics.max_drawdown == 0.0
        assert result.final_weights["ABC"] == pytest.approx(15_000 / 15_050)

    def test_initial_regime_is_default(self):
        bars = make_ohlcv(np.linspace(100.0, 110.0, 15))
        result = run_backtest(["ABC"], "2021-01-04", bars.index[-1].date(),
                              rebalance_frequency=RebalanceFrequency.NONE,
                              provider=InMemoryPriceProvider({"ABC": bars}))
        assert all(s.regime == Regime.NORMAL for s in result.snapshots)
        assert all(s.turbulence_index == 10.0 for s in result.snapshots)


class TestRebalancing:
    """Tests for regime-aware rebalancing over the sample universe."""

    def test_monthly_run(self, universe_provider, universe_range):
        start, end = universe_range
        result = run_backtest(["SPY", "QQQ", "TLT", "GLD"], start, end,
                              initial_capital=100_000, provider=universe_provider)

        assert result.status == BacktestStatus.SUCCESS
        assert len(result.snapshots) == 299
        assert result.rebalance_count > 5
        assert sum(s.rebalanced for s in result.snapshots) == result.rebalance_count
        assert set(result.final_weights) == {"SPY", "QQQ", "TLT", "GLD"}

        for snap in result.snapshots:
            assert snap.portfolio_value > 0
            assert snap.cash >= -1e-6
            invested = sum(snap.weights.values())
            assert invested + snap.cash / snap.portfolio_value == pytest.approx(1.0)

        m = result.metrics
        assert m.total_return == pytest.approx(result.final_value / 100_000 - 1)
        assert m.total_tax_paid == pytest.approx(sum(s.tax_paid for s in result.snapshots))
        assert m.after_tax_return == pytest.approx(m.total_return - m.total_tax_paid / 100_000)
        assert m.total_turnover > 0
        assert sum(r.days for r in result.regime_breakdown) == 299
        assert result.advanced_metrics is not None
        assert result.stress_tests == []

    def test_weekly_rebalances_more_often(self, universe_provider, universe_range):
        start, end = universe_range
        tickers = ["SPY", "TLT", "GLD"]
        weekly = run_backtest(tickers, start, end, rebalance_frequency="weekly", provider=universe_provider)
        monthly = run_backtest(tickers, start, end, rebalance_frequency="monthly", provider=universe_provider)
        assert weekly.rebalance_count > monthly.rebalance_count

    def test_progress_is_monotonic(self, universe_provider, universe_range):
        start, end = universe_range
        progress = []
        run_backtest(["SPY", "TLT"], start, end, provider=universe_provider,
                     on_progress=lambda msg, pct: progress.append((msg, pct)))

        messages = [msg for msg, _ in progress]
        percents = [pct for _, pct in progress]
        assert messages[0] == "Fetching historical data..."
        assert "Processing trading days..." in messages
        assert messages[-1] == "Complete!"
        assert percents[-1] == 100.0
        assert percents == sorted(percents)

    def test_report_and_serialization(self, universe_provider, universe_range):
        start, end = universe_range
        result = run_backtest(["SPY", "TLT"], start, end, provider=universe_provider)
        text = format_backtest_report(result)
        assert "REGIME-AWARE BACKTEST REPORT" in text
        assert "FINAL WEIGHTS" in text
        payload = json.loads(json.dumps(result.to_dict(), default=str))
        assert payload["status"] == "SUCCESS"
        assert len(payload["snapshots"]) == len(result.snapshots)


class TestFailures:
    """Tests for error handling, partial data and cancellation."""

    def test_no_usable_ticker(self):
        with pytest.raises(ConfigurationError, match="No valid data"):
            run_backtest(["ZZZ"], "2021-01-01", "2021-12-31", provider=InMemoryPriceProvider({}))

    def test_dropped_ticker_is_partial(self, universe_provider, universe_range):
        start, end = universe_range
        result = run_backtest(["SPY", "BAD"], start, end, provider=universe_provider)
        assert result.status == BacktestStatus.PARTIAL
        assert result.active_tickers == ["SPY"]
        assert "Dropped BAD: BAD: ticker not available" in result.warnings

    def test_no_common_history(self):
        a = make_ohlcv(np.linspace(100, 110, 10), start="2021-01-04")
        b = make_ohlcv(np.linspace(50, 60, 10), start="2021-03-01")
        result = run_backtest(["A", "B"], "2021-01-01", "2021-03-31",
                              provider=InMemoryPriceProvider({"A": a, "B": b}))
        assert result.status == BacktestStatus.INSUFFICIENT_DATA
        assert result.snapshots == []
        assert result.final_value == 100_000

    def test_cancelled_before_fetch(self, universe_provider, universe_range):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(BacktestCancelledError):
            run_backtest(["SPY"], *universe_range, provider=universe_provider, cancel_token=token)

    def test_cancelled_during_simulation(self, universe_provider, universe_range):
        token = CancellationToken()

        def on_progress(message, percent):
            if message == "Processing trading days...":
                token.cancel()

        with pytest.raises(BacktestCancelledError):
            BacktestEngine(universe_provider).run(
                BacktestConfig(["SPY", "TLT"], *universe_range), on_progress, token
            )


class TestBadBars:
    """Tests for data-quality problems that must not abort a run."""

    @pytest.mark.parametrize("bad_close", [0.0, -5.0])
    def test_non_positive_first_close(self, bad_close):
        aaa = make_ohlcv(np.concatenate([[bad_close], np.linspace(10.0, 12.0, 29)]))
        bbb = make_ohlcv(np.linspace(50.0, 55.0, 30))
        result = run_backtest(["AAA", "BBB"], "2021-01-04", bbb.index[-1].date(),
                              provider=InMemoryPriceProvider({"AAA": aaa, "BBB": bbb}))

        assert result.status == BacktestStatus.PARTIAL
        assert "AAA: excluded 1 day(s) with non-positive close" in result.warnings
        assert any("non-positive prices" in w for w in result.warnings)
        assert len(result.snapshots) == 28
        assert result.snapshots[0].date == bbb.index[2].date()
        assert all(s.portfolio_value > 0 for s in result.snapshots)
        assert all(w >= 0 for w in result.final_weights.values())

    def test_zero_close_mid_run_with_daily_rebalancing(self):
        closes = np.linspace(10.0, 12.0, 60)
        closes[30] = 0.0
        aaa = make_ohlcv(closes)
        bbb = make_ohlcv(np.linspace(50.0, 55.0, 60))
        result = run_backtest(["AAA", "BBB"], "2021-01-04", bbb.index[-1].date(),
                              rebalance_frequency="daily",
                              provider=InMemoryPriceProvider({"AAA": aaa, "BBB": bbb}))

        assert result.status == BacktestStatus.PARTIAL
        assert len(result.snapshots) == 58
        assert aaa.index[30].date() not in {s.date for s in result.snapshots}
        assert result.rebalance_count == 58
        for snap in result.snapshots:
            assert snap.cash >= -1e-6
            assert all(w >= 0 for w in snap.weights.values())

    def test_inverted_ohlc(self):
        bars = make_ohlcv(np.linspace(100.0, 120.0, 30))
        high, low = bars["High"].copy(), bars["Low"].copy()
        bars.iloc[5:8, bars.columns.get_loc("High")] = low.iloc[5:8]
        bars.iloc[5:8, bars.columns.get_loc("Low")] = high.iloc[5:8]
        result = run_backtest(["ABC"], "2021-01-04", bars.index[-1].date(),
                              provider=InMemoryPriceProvider({"ABC": bars}))

        assert result.status == BacktestStatus.PARTIAL
        assert "ABC: 3 bars with invalid OHLC relationships" in result.warnings
        assert len(result.snapshots) == 29
        assert result.final_value > 0

    def test_out_of_order_timestamps(self):
        bars = make_ohlcv(np.linspace(100.0, 130.0, 30))
        end = bars.index[-1].date()
        result = run_backtest(["ABC"], "2021-01-04", end, rebalance_frequency="none",
                              provider=InMemoryPriceProvider({"ABC": bars.iloc[::-1]}))

        assert result.status == BacktestStatus.PARTIAL
        assert "ABC: 29 timestamps out of order" in result.warnings
        dates = [s.date for s in result.snapshots]
        assert dates == sorted(dates)
        assert result.snapshots[-1].date == end
        assert result.final_value > 100_000


class TestParallelRuns:
    """Tests for concurrent independent runs."""

    def test_results_in_config_order(self, universe_provider, universe_range):
        configs = [
            BacktestConfig(["SPY", "TLT"], *universe_range),
            BacktestConfig(["QQQ", "GLD"], *universe_range, rebalance_frequency="weekly"),
            BacktestConfig(["GLD"], *universe_range, rebalance_frequency="none"),
        ]
        results = run_backtests_parallel(configs, provider=universe_provider, max_workers=3)
        assert [r.active_tickers for r in results] == [["SPY", "TLT"], ["QQQ", "GLD"], ["GLD"]]

        sequential = BacktestEngine(universe_provider).run(
            BacktestConfig(["SPY", "TLT"], *universe_range)
        )
        assert results[0].final_value == pytest.approx(sequential.final_value)

    def test_empty(self):
        assert run_backtests_parallel([]) == []


class TestPerformanceMetrics:
    """Tests for metric aggregation edge cases."""

    def test_too_few_snapshots(self):
        metrics = compute_performance_metrics([], 100_000)
        assert metrics.total_return == 0.0
        assert metrics.sharpe_ratio == 0.0
