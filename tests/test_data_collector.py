"""
Unit tests for price-history providers, validation and the data audit.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from conftest import make_ohlcv
from portfolio_engine.config import (
    BacktestCancelledError,
    DataQuality,
    DataQualityError,
    ExternalFetchError,
)
from portfolio_engine.correlation import CorrelationMatrix
from portfolio_engine.data_collector import (
    AssetSeries,
    CancellationToken,
    DataValidator,
    InMemoryPriceProvider,
    YahooFinanceProvider,
    generate_data_audit_report,
    normalize_bars,
    score_to_quality,
    validate_portfolio_metrics,
)


def rising_bars(n=20):
    return make_ohlcv(np.linspace(100, 120, n))


class TestDataValidator:
    """Tests for the penalty-based quality score."""

    def test_clean_bars(self):
        result = DataValidator().validate(rising_bars(), "SPY")
        assert result.is_valid
        assert result.score == 100.0
        assert result.data_quality == DataQuality.HIGH

    def test_empty(self):
        result = DataValidator().validate(pd.DataFrame(), "SPY")
        assert result.issues == ["No data provided"]
        assert result.data_quality == DataQuality.LOW

    def test_negative_volume(self):
        bars = rising_bars()
        bars.iloc[:2, bars.columns.get_loc("Volume")] = -1
        result = DataValidator().validate(bars, "SPY")
        assert result.issues == ["2 bars with negative volume"]
        assert result.score == pytest.approx(98.0)

    def test_non_positive_price_breaks_ohlc(self):
        bars = rising_bars()
        bars.iloc[0, bars.columns.get_loc("Close")] = 0.0
        result = DataValidator().validate(bars, "SPY")
        assert "1 bars with non-positive prices" in result.issues
        assert "1 bars with invalid OHLC relationships" in result.issues
        assert result.score == pytest.approx(100 - 30 / 20 - 25 / 20)

    def test_out_of_order(self):
        bars = rising_bars().iloc[::-1]
        result = DataValidator().validate(bars, "SPY")
        assert result.issues == ["19 timestamps out of order"]
        assert result.data_quality == DataQuality.MEDIUM

    def test_stale_prices(self):
        result = DataValidator().validate(make_ohlcv([100.0] * 20), "SPY")
        assert result.issues == ["Suspiciously low price variation - possible stale data"]
        assert result.score == pytest.approx(80.0)

    def test_low_coverage_and_range(self):
        bars = rising_bars()
        result = DataValidator().validate(bars, "SPY", expected_range=("2021-01-04", "2021-12-31"))
        assert result.score == pytest.approx(90.0)
        assert result.issues[0].startswith("Low data coverage:")

    def test_range_overrun(self):
        result = DataValidator().validate(rising_bars(), "SPY", expected_range=("2021-01-05", "2021-01-28"))
        assert any(i.startswith("Data starts before expected range") for i in result.issues)
        assert any(i.startswith("Data ends after expected range") for i in result.issues)

    def test_require_usable(self):
        stale_reversed = make_ohlcv([100.0] * 20).iloc[::-1]
        with pytest.raises(DataQualityError):
            DataValidator().require_usable(stale_reversed, "SPY")

    @pytest.mark.parametrize("score,tier", [
        (95, DataQuality.HIGH), (90, DataQuality.HIGH),
        (75, DataQuality.MEDIUM), (69.9, DataQuality.LOW),
    ])
    def test_tiers(self, score, tier):
        assert score_to_quality(score) == tier


class TestNormalizeBars:
    """Tests for provider output normalization."""

    def test_multiindex_and_timezone(self):
        bars = rising_bars(5)
        bars.columns = pd.MultiIndex.from_product([bars.columns, ["SPY"]])
        bars.index = bars.index.tz_localize("America/New_York")
        normalized = normalize_bars(bars)
        assert list(normalized.columns) == ["Open", "High", "Low", "Close", "Volume"]
        assert normalized.index.tz is None

    def test_missing_columns(self):
        assert normalize_bars(rising_bars(5).drop(columns=["Volume"])) is None
        assert normalize_bars(None) is None


class TestInMemoryProvider:
    """Tests for the shared fetch pipeline through the in-memory source."""

    def test_failed_ticker_is_isolated(self, sample_universe):
        provider = InMemoryPriceProvider(sample_universe)
        progress = []
        result = provider.fetch(
            ["SPY", "BAD", "TLT"], "2021-01-04", "2022-03-01",
            on_progress=lambda msg, pct: progress.append((msg, pct)),
        )
        assert result.active_tickers == ["SPY", "TLT"]
        assert result.failed_tickers == ["BAD"]
        failed = [d for d in result.diagnostics if not d.success][0]
        assert failed.error == "BAD: ticker not available"
        assert progress[0][0] == "Loaded SPY"
        assert progress[-1][1] == pytest.approx(35.0)
        assert result.asset_data["SPY"].source == "in_memory"

    def test_window_slicing(self, sample_universe):
        result = InMemoryPriceProvider(sample_universe).fetch(["GLD"], "2021-02-01", "2021-02-26")
        assert len(result.asset_data["GLD"]) == 20

    def test_series_expanded_to_bars(self):
        closes = pd.Series(np.linspace(50, 60, 30), index=pd.bdate_range("2021-01-04", periods=30))
        result = InMemoryPriceProvider({"ABC": closes}).fetch(["ABC"], "2021-01-01", "2021-12-31")
        series = result.asset_data["ABC"]
        assert (series.volume == 0).all()
        assert series.close.iloc[-1] == pytest.approx(60.0)

    def test_cancellation(self, sample_universe):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(BacktestCancelledError):
            InMemoryPriceProvider(sample_universe).fetch(["SPY"], "2021-01-04", "2021-12-31", cancel_token=token)

    def test_duplicates_dropped(self):
        bars = rising_bars(5)
        doubled = pd.concat([bars, bars.iloc[[2]]])
        result = InMemoryPriceProvider({"SPY": doubled}).fetch(["SPY"], "2021-01-01", "2021-12-31")
        assert len(result.asset_data["SPY"]) == 5
        assert result.asset_data["SPY"].bars.index.is_monotonic_increasing


class TestYahooFinanceProvider:
    """Tests for retry handling around yfinance."""

    def test_retries_then_fails(self, monkeypatch):
        calls = []

        def download(*args, **kwargs):
            calls.append(kwargs)
            raise ConnectionError("rate limited")

        monkeypatch.setattr("portfolio_engine.data_collector.time.sleep", lambda s: None)
        provider = YahooFinanceProvider(max_retries=3)
        provider._yf = SimpleNamespace(download=download)

        with pytest.raises(ExternalFetchError):
            provider.fetch_ticker("SPY", "2021-01-04", "2021-12-31")
        assert len(calls) == 3
        assert calls[0]["end"] == "2022-01-01"
        assert calls[0]["auto_adjust"] is True

    def test_fetch_success(self):
        bars = rising_bars(10)
        bars.columns = pd.MultiIndex.from_product([bars.columns, ["SPY"]])
        provider = YahooFinanceProvider()
        provider._yf = SimpleNamespace(download=lambda *a, **k: bars)

        result = provider.fetch(["SPY"], "2021-01-04", "2021-01-15")
        assert result.active_tickers == ["SPY"]
        assert result.asset_data["SPY"].source == "yahoo_finance"

    def test_concurrent_downloads_are_serialized(self):
        state = {"active": 0, "peak": 0}
        guard = threading.Lock()

        def download(*args, **kwargs):
            with guard:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            threading.Event().wait(0.02)
            with guard:
                state["active"] -= 1
            return rising_bars(10)

        providers = [YahooFinanceProvider() for _ in range(4)]
        for provider in providers:
            provider._yf = SimpleNamespace(download=download)

        with ThreadPoolExecutor(max_workers=4) as executor:
            frames = list(executor.map(
                lambda p: p.fetch_ticker("SPY", "2021-01-04", "2021-01-15"), providers
            ))
        assert all(len(frame) == 10 for frame in frames)
        assert state["peak"] == 1


class TestAssetSeries:
    """Tests for per-ticker series helpers."""

    def test_hash_is_stable(self):
        a = AssetSeries("SPY", rising_bars())
        b = AssetSeries("SPY", rising_bars())
        assert a.data_hash == b.data_hash
        assert len(a.data_hash) == 16

    def test_window_and_returns(self):
        series = AssetSeries("SPY", rising_bars())
        sub = series.window("2021-01-05", "2021-01-08")
        assert len(sub) == 4
        assert len(series.log_returns) == 19
        assert series.annualized_return > 0


class TestMetricValidation:
    """Tests for headline metric plausibility checks."""

    def test_in_range(self):
        result = validate_portfolio_metrics({"annual_return": 0.08, "sharpe_ratio": 0.9})
        assert result.is_valid
        assert result.metrics_in_range == {"annual_return": True, "sharpe_ratio": True}

    def test_out_of_range(self):
        result = validate_portfolio_metrics({"sharpe_ratio": 5.0})
        assert not result.is_valid
        assert result.issues[0].startswith("sharpe_ratio")

    def test_weighted_return_mismatch(self):
        result = validate_portfolio_metrics(
            {"annual_return": 0.10}, asset_returns=[(0.5, 0.08), (0.5, 0.04)]
        )
        assert not result.weighted_return_match
        assert result.discrepancy == pytest.approx(0.04)


class TestAuditReport:
    """Tests for the data audit report."""

    def test_report(self):
        report = generate_data_audit_report(
            {
                "SPY": AssetSeries("SPY", rising_bars(), "in_memory"),
                "GLD": make_ohlcv([100.0] * 20),
            },
            correlation=CorrelationMatrix(["SPY", "GLD"], [[1.0, 0.3], [0.2, 1.0]]),
        )
        assert report.overall_data_quality == DataQuality.MEDIUM
        assert report.total_issues == 2
        assert report.summary == (
            "Audit of 2 tickers with 40 total bars. Data quality: medium. 2 issue(s) found."
        )
        assert report.ticker_audits[0]["source"] == "in_memory"
        assert report.ticker_audits[1]["data_hash"] is None
        assert report.to_dict()["overall_data_quality"] == "medium"
