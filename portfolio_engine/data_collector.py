"""
Price History Acquisition and Validation
========================================

Supplies the backtest engine with daily OHLCV histories through a small
provider contract, validates every ticker's bars before use, and produces
a data audit report.

PIPELINE
    Stage 1 - ACQUIRE
        One request per ticker with retry and exponential backoff.
        A failing ticker is isolated: it is recorded as a diagnostic and
        the remaining tickers continue.

    Stage 2 - VALIDATE
        Penalty-based quality score starting at 100:
        - Non-positive prices         -30 x share of affected bars
        - Negative volume             -20 x share of affected bars
        - Inconsistent OHLC           -25 x share of affected bars
        - Timestamps out of order     -15
        - Coverage < 80% of expected trading days (weekdays)   -10
        - Stale data (unique closes < 10% of bars, > 10 bars)  -20
        Tier: >= 90 high, >= 70 medium, otherwise low.

    Stage 3 - NORMALIZE
        Timezone-naive DatetimeIndex, sorted, duplicate dates dropped.

PROVIDERS
    YahooFinanceProvider   yfinance download (lazy import)
    InMemoryPriceProvider  caller-supplied DataFrames / Series

Progress is reported through an ``on_progress(message, percent)``
callback; a CancellationToken is checked before each ticker request.

Version: 1.0.0
"""

from __future__ import annotations

import hashlib
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from portfolio_engine.config import (
    TRADING_DAYS_YEAR,
    BacktestCancelledError,
    DataQuality,
    DataQualityError,
    ExternalFetchError,
)
from portfolio_engine.correlation import CorrelationMatrix, validate_correlation_matrix

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime, pd.Timestamp]
ProgressCallback = Callable[[str, float], None]

REQUIRED_COLUMNS: Tuple[str, ...] = ("Open", "High", "Low", "Close", "Volume")

# yf.download keeps module-global result state
_YF_DOWNLOAD_LOCK = threading.Lock()


# =============================================================================
# CONSTANTS
# =============================================================================

class Config:
    """Validation penalties, tiers and fetch settings."""
    PENALTY_NON_POSITIVE_PRICE: float = 30.0
    PENALTY_NEGATIVE_VOLUME: float = 20.0
    PENALTY_INVALID_OHLC: float = 25.0
    PENALTY_OUT_OF_ORDER: float = 15.0
    PENALTY_LOW_COVERAGE: float = 10.0
    PENALTY_STALE: float = 20.0

    MIN_COVERAGE: float = 0.80
    STALE_UNIQUE_RATIO: float = 0.10
    STALE_MIN_BARS: int = 10

    TIER_HIGH: float = 90.0
    TIER_MEDIUM: float = 70.0

    MAX_RETRIES: int = 3
    TIMEOUT_SECONDS: int = 30

    # Fraction of the overall run spent fetching
    PROGRESS_START: float = 5.0
    PROGRESS_SPAN: float = 30.0

    # Plausible ranges for headline portfolio metrics (decimals)
    METRIC_RANGES: Dict[str, Tuple[float, float]] = {
        "annual_return": (-0.9, 5.0),
        "annual_volatility": (0.05, 1.0),
        "sharpe_ratio": (-2.0, 4.0),
        "sortino_ratio": (-3.0, 6.0),
        "max_drawdown": (0.0, 1.0),
        "calmar_ratio": (-5.0, 10.0),
        "beta": (-2.0, 3.0),
        "alpha": (-0.5, 0.5),
    }
    WEIGHTED_RETURN_TOLERANCE: float = 0.001


# =============================================================================
# CANCELLATION
# =============================================================================

class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a running job."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, context: str = "") -> None:
        if self._event.is_set():
            suffix = f" during {context}" if context else ""
            raise BacktestCancelledError(f"Run cancelled{suffix}")


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class AssetSeries:
    """Validated daily bars for one ticker."""
    ticker: str
    bars: pd.DataFrame
    source: str = "unknown"

    def __len__(self) -> int:
        return len(self.bars)

    @property
    def close(self) -> pd.Series:
        return self.bars["Close"].rename(self.ticker)

    @property
    def volume(self) -> pd.Series:
        return self.bars["Volume"].rename(self.ticker)

    @property
    def log_returns(self) -> pd.Series:
        close = self.close
        prev = close.shift(1)
        valid = (prev > 0) & (close > 0)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.log(close[valid] / prev[valid])

    @property
    def simple_returns(self) -> pd.Series:
        return self.close.pct_change().dropna()

    @property
    def data_hash(self) -> str:
        """Short SHA-256 fingerprint of the close series for provenance."""
        return hashlib.sha256(
            pd.util.hash_pandas_object(self.bars["Close"]).values.tobytes()
        ).hexdigest()[:16]

    @property
    def annualized_volatility(self) -> float:
        returns = self.log_returns
        if len(returns) < 2:
            return 0.0
        return float(returns.std(ddof=1) * math.sqrt(TRADING_DAYS_YEAR))

    @property
    def annualized_return(self) -> float:
        returns = self.log_returns
        if len(returns) == 0:
            return 0.0
        return float(returns.mean() * TRADING_DAYS_YEAR)

    def window(self, start: Optional[DateLike] = None, end: Optional[DateLike] = None) -> "AssetSeries":
        bars = self.bars
        if start is not None:
            bars = bars[bars.index >= pd.Timestamp(start)]
        if end is not None:
            bars = bars[bars.index <= pd.Timestamp(end)]
        return AssetSeries(self.ticker, bars, self.source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "source": self.source,
            "bars": len(self.bars),
            "data_hash": self.data_hash,
            "start": self.bars.index[0].date().isoformat() if len(self.bars) else None,
            "end": self.bars.index[-1].date().isoformat() if len(self.bars) else None,
            "annualized_volatility": self.annualized_volatility,
            "annualized_return": self.annualized_return,
        }


@dataclass
class TickerValidation:
    """Quality assessment of one ticker's bars."""
    ticker: str
    is_valid: bool
    score: float
    data_quality: DataQuality
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "is_valid": self.is_valid,
            "score": self.score,
            "data_quality": self.data_quality.value,
            "issues": list(self.issues),
        }


@dataclass
class TickerDiagnostic:
    """Outcome of fetching one ticker."""
    ticker: str
    success: bool
    bars: int = 0
    data_quality: Optional[DataQuality] = None
    validation_issues: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "success": self.success,
            "bars": self.bars,
            "data_quality": self.data_quality.value if self.data_quality else None,
            "validation_issues": list(self.validation_issues),
            "error": self.error,
        }


@dataclass
class FetchResult:
    """Fetched series for the tickers that succeeded plus a diagnostic per ticker."""
    asset_data: Dict[str, AssetSeries] = field(default_factory=dict)
    diagnostics: List[TickerDiagnostic] = field(default_factory=list)

    @property
    def active_tickers(self) -> List[str]:
        return [d.ticker for d in self.diagnostics if d.success and d.ticker in self.asset_data]

    @property
    def failed_tickers(self) -> List[str]:
        return [d.ticker for d in self.diagnostics if not d.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_tickers": self.active_tickers,
            "failed_tickers": self.failed_tickers,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


@dataclass
class MetricsValidationResult:
    """Plausibility check of headline portfolio metrics."""
    is_valid: bool
    issues: List[str] = field(default_factory=list)
    metrics_in_range: Dict[str, bool] = field(default_factory=dict)
    weighted_return_match: bool = True
    discrepancy: Optional[float] = None


@dataclass
class DataAuditReport:
    """Aggregated data-quality audit across a universe."""
    generated_at: datetime
    ticker_audits: List[Dict[str, Any]]
    overall_data_quality: DataQuality
    total_issues: int
    summary: str
    correlation_issues: List[str] = field(default_factory=list)
    metric_issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "ticker_audits": self.ticker_audits,
            "overall_data_quality": self.overall_data_quality.value,
            "total_issues": self.total_issues,
            "summary": self.summary,
            "correlation_issues": list(self.correlation_issues),
            "metric_issues": list(self.metric_issues),
        }


# =============================================================================
# DATA VALIDATION
# =============================================================================

def score_to_quality(score: float) -> DataQuality:
    """Convert a 0-100 quality score to a tier."""
    if score >= Config.TIER_HIGH:
        return DataQuality.HIGH
    elif score >= Config.TIER_MEDIUM:
        return DataQuality.MEDIUM
    else:
        return DataQuality.LOW


class DataValidator:
    """
    Penalty-based OHLCV quality assessment.

    Checks are counted over the raw bars before any normalization so that
    ordering problems are visible.
    """

    def validate(
        self,
        bars: pd.DataFrame,
        ticker: str,
        expected_range: Optional[Tuple[DateLike, DateLike]] = None
    ) -> TickerValidation:
        """
        Run every check on a ticker's bars.

        Args:
            bars: OHLCV DataFrame indexed by date
            ticker: Ticker symbol (for messages)
            expected_range: Requested (start, end), enables the coverage check

        Returns:
            TickerValidation with score, tier and issues
        """
        if bars is None or len(bars) == 0:
            return TickerValidation(ticker, False, 0.0, DataQuality.LOW, ["No data provided"])

        issues: List[str] = []
        score = 100.0
        n = len(bars)

        o, h, l, c = (bars[col].to_numpy(dtype=float) for col in ("Open", "High", "Low", "Close"))
        v = bars["Volume"].to_numpy(dtype=float)

        invalid_prices = int(np.sum((o <= 0) | (h <= 0) | (l <= 0) | (c <= 0)))
        if invalid_prices:
            issues.append(f"{invalid_prices} bars with non-positive prices")
            score -= invalid_prices / n * Config.PENALTY_NON_POSITIVE_PRICE

        invalid_volumes = int(np.sum(v < 0))
        if invalid_volumes:
            issues.append(f"{invalid_volumes} bars with negative volume")
            score -= invalid_volumes / n * Config.PENALTY_NEGATIVE_VOLUME

        invalid_ohlc = int(np.sum((h < l) | (h < o) | (h < c) | (l > o) | (l > c)))
        if invalid_ohlc:
            issues.append(f"{invalid_ohlc} bars with invalid OHLC relationships")
            score -= invalid_ohlc / n * Config.PENALTY_INVALID_OHLC

        stamps = pd.DatetimeIndex(bars.index).asi8
        out_of_order = int(np.sum(np.diff(stamps) <= 0)) if n > 1 else 0
        if out_of_order:
            issues.append(f"{out_of_order} timestamps out of order")
            score -= Config.PENALTY_OUT_OF_ORDER

        if expected_range is not None:
            start, end = (pd.Timestamp(x) for x in expected_range)
            first, last = pd.Timestamp(bars.index.min()), pd.Timestamp(bars.index.max())
            if first < start:
                issues.append(f"Data starts before expected range: {first.date().isoformat()}")
            if last > end:
                issues.append(f"Data ends after expected range: {last.date().isoformat()}")
            expected_trading_days = math.floor((end - start).days * 5 / 7)
            if expected_trading_days > 0:
                coverage = n / expected_trading_days
                if coverage < Config.MIN_COVERAGE:
                    issues.append(f"Low data coverage: {coverage:.1%} of expected trading days")
                    score -= Config.PENALTY_LOW_COVERAGE

        unique_closes = len(pd.unique(c))
        if n > Config.STALE_MIN_BARS and unique_closes < n * Config.STALE_UNIQUE_RATIO:
            issues.append("Suspiciously low price variation - possible stale data")
            score -= Config.PENALTY_STALE

        quality = score_to_quality(score)
        if issues:
            logger.debug(f"{ticker}: quality {quality.value} ({score:.1f}), issues: {issues}")
        return TickerValidation(
            ticker=ticker,
            is_valid=not issues,
            score=score,
            data_quality=quality,
            issues=issues,
        )

    def require_usable(self, bars: pd.DataFrame, ticker: str) -> TickerValidation:
        """Validate and raise DataQualityError when the tier is LOW."""
        result = self.validate(bars, ticker)
        if result.data_quality == DataQuality.LOW:
            raise DataQualityError(f"{ticker}: unusable data ({'; '.join(result.issues)})")
        return result


def validate_portfolio_metrics(
    metrics: Mapping[str, float],
    asset_returns: Optional[Sequence[Tuple[float, float]]] = None
) -> MetricsValidationResult:
    """
    Check headline metrics (decimals) against plausible ranges.

    Args:
        metrics: Any of the keys in ``Config.METRIC_RANGES``
        asset_returns: Optional (weight, annual return) pairs; their weighted
            sum must match ``metrics['annual_return']`` within 0.1%
    """
    issues: List[str] = []
    in_range: Dict[str, bool] = {}
    for name, (low, high) in Config.METRIC_RANGES.items():
        value = metrics.get(name)
        if value is None:
            continue
        ok = low <= value <= high
        in_range[name] = ok
        if not ok:
            issues.append(f"{name} ({value:.4f}) outside realistic range [{low}, {high}]")

    match = True
    discrepancy = None
    annual_return = metrics.get("annual_return")
    if asset_returns and annual_return is not None:
        weighted = sum(w * r for w, r in asset_returns)
        discrepancy = abs(weighted - annual_return)
        if discrepancy > Config.WEIGHTED_RETURN_TOLERANCE:
            match = False
            issues.append(
                f"Portfolio return ({annual_return:.2%}) doesn't match weighted sum "
                f"({weighted:.2%}), discrepancy: {discrepancy:.4%}"
            )

    return MetricsValidationResult(
        is_valid=not issues,
        issues=issues,
        metrics_in_range=in_range,
        weighted_return_match=match,
        discrepancy=discrepancy,
    )


def generate_data_audit_report(
    asset_data: Mapping[str, Union[AssetSeries, pd.DataFrame]],
    correlation: Optional[CorrelationMatrix] = None,
    metrics: Optional[Mapping[str, float]] = None
) -> DataAuditReport:
    """Audit every ticker, the correlation matrix and headline metrics."""
    validator = DataValidator()
    audits: List[Dict[str, Any]] = []
    total_issues = 0
    overall = DataQuality.HIGH

    for ticker, data in asset_data.items():
        if isinstance(data, AssetSeries):
            bars, source, data_hash = data.bars, data.source, data.data_hash
        else:
            bars, source, data_hash = data, "unknown", None
        result = validator.validate(bars, ticker)
        audits.append({
            "ticker": ticker,
            "source": source,
            "data_hash": data_hash,
            "bar_count": len(bars),
            "start": bars.index.min().date().isoformat() if len(bars) else None,
            "end": bars.index.max().date().isoformat() if len(bars) else None,
            "data_quality": result.data_quality.value,
            "issues": result.issues,
        })
        total_issues += len(result.issues)
        if result.data_quality == DataQuality.LOW:
            overall = DataQuality.LOW
        elif result.data_quality == DataQuality.MEDIUM and overall == DataQuality.HIGH:
            overall = DataQuality.MEDIUM

    correlation_issues: List[str] = []
    if correlation is not None:
        correlation_issues = validate_correlation_matrix(correlation).issues
        total_issues += len(correlation_issues)

    metric_issues: List[str] = []
    if metrics:
        metric_issues = validate_portfolio_metrics(metrics).issues
        total_issues += len(metric_issues)

    total_bars = sum(a["bar_count"] for a in audits)
    summary = (
        f"Audit of {len(audits)} tickers with {total_bars:,} total bars. "
        f"Data quality: {overall.value}. {total_issues} issue(s) found."
    )
    return DataAuditReport(
        generated_at=datetime.now(),
        ticker_audits=audits,
        overall_data_quality=overall,
        total_issues=total_issues,
        summary=summary,
        correlation_issues=correlation_issues,
        metric_issues=metric_issues,
    )


# =============================================================================
# PROVIDERS
# =============================================================================

def normalize_bars(df: Optional[pd.DataFrame]) -> Optional[pd.DataFrame]:
    """Flatten columns, drop timezone, ensure a DatetimeIndex and required columns."""
    if df is None or len(df) == 0:
        return None
    df = df.copy()

    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)

    if not isinstance(df.index, pd.DatetimeIndex):
        df.index = pd.to_datetime(df.index)
    if df.index.tz is not None:
        df.index = df.index.tz_localize(None)

    df = df.dropna(how="all")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        logger.warning(f"Missing required columns: {missing}")
        return None
    return df[list(REQUIRED_COLUMNS)]


class PriceHistoryProvider(ABC):
    """
    Contract for daily price-history sources.

    Subclasses implement ``fetch_ticker``; ``fetch`` handles per-ticker
    isolation, validation, progress and cancellation.
    """

    SOURCE: str = "unknown"

    def __init__(self, validator: Optional[DataValidator] = None):
        self.validator = validator or DataValidator()

    @abstractmethod
    def fetch_ticker(self, ticker: str, start: DateLike, end: DateLike) -> pd.DataFrame:
        """Return raw OHLCV bars or raise ExternalFetchError."""

    def fetch(
        self,
        tickers: Sequence[str],
        start: DateLike,
        end: DateLike,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> FetchResult:
        """
        Fetch and validate every ticker independently.

        Args:
            tickers: Symbols to fetch
            start: First date (inclusive)
            end: Last date (inclusive)
            on_progress: ``(message, percent)`` callback
            cancel_token: Checked before each request

        Returns:
            FetchResult with series for successful tickers and one
            diagnostic per requested ticker
        """
        result = FetchResult()
        total = len(tickers)

        for i, ticker in enumerate(tickers):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(f"fetch of {ticker}")

            try:
                raw = normalize_bars(self.fetch_ticker(ticker, start, end))
                if raw is None or len(raw) == 0:
                    raise ExternalFetchError(ticker, "no usable bars returned")
            except ExternalFetchError as e:
                logger.warning(f"Failed to fetch {ticker}: {e}")
                result.diagnostics.append(TickerDiagnostic(ticker=ticker, success=False, error=str(e)))
                continue

            validation = self.validator.validate(raw, ticker, expected_range=(start, end))
            bars = raw[~raw.index.duplicated(keep="last")].sort_index()
            result.asset_data[ticker] = AssetSeries(ticker, bars, self.SOURCE)
            result.diagnostics.append(TickerDiagnostic(
                ticker=ticker,
                success=True,
                bars=len(bars),
                data_quality=validation.data_quality,
                validation_issues=validation.issues,
            ))

            if on_progress is not None:
                on_progress(f"Loaded {ticker}", Config.PROGRESS_START + (i + 1) / total * Config.PROGRESS_SPAN)

        logger.info(f"Fetched {len(result.asset_data)}/{total} tickers: {result.active_tickers}")
        return result


class YahooFinanceProvider(PriceHistoryProvider):
    """
    Daily bars from Yahoo Finance via yfinance.

    The yfinance import is deferred until the first request.
    """

    SOURCE = "yahoo_finance"

    def __init__(
        self,
        max_retries: int = Config.MAX_RETRIES,
        timeout: int = Config.TIMEOUT_SECONDS,
        validator: Optional[DataValidator] = None
    ):
        super().__init__(validator)
        self.max_retries = max_retries
        self.timeout = timeout
        self._yf = None

    def _get_yf(self):
        """Lazy load yfinance to avoid import overhead."""
        if self._yf is None:
            import yfinance as yf
            self._yf = yf
        return self._yf

    def fetch_ticker(self, ticker: str, start: DateLike, end: DateLike) -> pd.DataFrame:
        yf = self._get_yf()
        # yfinance treats ``end`` as exclusive
        end_exclusive = (pd.Timestamp(end) + pd.Timedelta(days=1)).strftime("%Y-%m-%d")
        start_str = pd.Timestamp(start).strftime("%Y-%m-%d")
        logger.info(f"Fetching OHLCV: {ticker} ({start_str} to {pd.Timestamp(end).date()})")

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                with _YF_DOWNLOAD_LOCK:
                    data = yf.download(
                        ticker,
                        start=start_str,
                        end=end_exclusive,
                        auto_adjust=True,
                        progress=False,
                        timeout=self.timeout,
                    )
                if data is not None and len(data) > 0:
                    return data
                last_error = ValueError(f"No data returned for {ticker}")
            except Exception as e:
                last_error = e

            if attempt < self.max_retries - 1:
                wait_time = 2 ** attempt
                logger.warning(f"Fetch of {ticker} failed: {last_error}, retrying in {wait_time}s...")
                time.sleep(wait_time)

        raise ExternalFetchError(ticker, str(last_error))


class InMemoryPriceProvider(PriceHistoryProvider):
    """
    Serves caller-supplied histories.

    Accepts OHLCV DataFrames, or close-price Series which are expanded to
    flat bars (open = high = low = close, zero volume).
    """

    SOURCE = "in_memory"

    def __init__(
        self,
        frames: Mapping[str, Union[pd.DataFrame, pd.Series]],
        validator: Optional[DataValidator] = None
    ):
        super().__init__(validator)
        self.frames: Dict[str, pd.DataFrame] = {
            ticker: self._as_bars(data) for ticker, data in frames.items()
        }

    @staticmethod
    def _as_bars(data: Union[pd.DataFrame, pd.Series]) -> pd.DataFrame:
        if isinstance(data, pd.Series):
            close = data.astype(float)
            return pd.DataFrame({
                "Open": close, "High": close, "Low": close, "Close": close,
                "Volume": 0.0,
            }, index=pd.to_datetime(data.index))
        return data

    def fetch_ticker(self, ticker: str, start: DateLike, end: DateLike) -> pd.DataFrame:
        frame = self.frames.get(ticker)
        if frame is None:
            raise ExternalFetchError(ticker, "ticker not available")
        index = pd.to_datetime(frame.index)
        mask = (index >= pd.Timestamp(start)) & (index <= pd.Timestamp(end))
        return frame.loc[mask]


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    'Config',
    'REQUIRED_COLUMNS',
    'ProgressCallback',
    'CancellationToken',
    'AssetSeries',
    'TickerValidation',
    'TickerDiagnostic',
    'FetchResult',
    'MetricsValidationResult',
    'DataAuditReport',
    'score_to_quality',
    'DataValidator',
    'validate_portfolio_metrics',
    'generate_data_audit_report',
    'normalize_bars',
    'PriceHistoryProvider',
    'YahooFinanceProvider',
    'InMemoryPriceProvider',
]
