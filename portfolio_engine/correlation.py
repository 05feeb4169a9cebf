"""
Correlation & Covariance Construction
=====================================

Builds the pairwise correlation matrix that every optimizer in the engine
consumes, converts it to an annualized covariance matrix, validates a
matrix against its structural invariants, and summarizes trailing price
windows into per-asset statistics.

ARCHITECTURE
------------
    CorrelationMatrix           Ordered symbols + square ndarray
    build_correlation_matrix    Pairwise Pearson over return series
    correlation_from_prices     Log returns of a close-price frame -> matrix
    correlation_to_covariance   rho_ij * sigma_i * sigma_j
    validate_correlation_matrix Diagonal / symmetry / range diagnostics
    compute_asset_statistics    Annualized return, volatility, moments

Invariants of every built matrix:
    - diagonal exactly 1.0
    - symmetric
    - entries within [-1, 1]
    - pairs with fewer than 5 common observations, or a constant member,
      have correlation 0

Version: 1.0.0
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from portfolio_engine.config import BACKTEST, TRADING_DAYS_YEAR

logger = logging.getLogger(__name__)

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]


# =============================================================================
# CONFIGURATION
# =============================================================================

class Config:
    """Tolerances and defaults for matrix construction and validation."""
    MIN_OBSERVATIONS: int = BACKTEST.min_correlation_observations
    DIAGONAL_TOLERANCE: float = 1e-4
    SYMMETRY_TOLERANCE: float = 1e-4
    DEFAULT_VOLATILITY: float = 0.20     # Annualized, when an asset has no stats
    DEFAULT_VOLUME: float = 1_000_000.0
    DEFAULT_KURTOSIS: float = 3.0        # Raw kurtosis of a normal distribution


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class CorrelationMatrix:
    """
    Ordered symbol list with its square correlation matrix.

    Row / column ``i`` of ``matrix`` belongs to ``symbols[i]``.
    """
    symbols: List[str]
    matrix: np.ndarray

    def __post_init__(self):
        self.matrix = np.asarray(self.matrix, dtype=float)
        n = len(self.symbols)
        if self.matrix.shape != (n, n):
            raise ValueError(
                f"Correlation matrix shape {self.matrix.shape} does not match {n} symbols"
            )

    def __len__(self) -> int:
        return len(self.symbols)

    def index_of(self, symbol: str) -> Optional[int]:
        try:
            return self.symbols.index(symbol)
        except ValueError:
            return None

    def get(self, symbol_a: str, symbol_b: str) -> Optional[float]:
        """Correlation between two symbols, or None if either is unknown."""
        i, j = self.index_of(symbol_a), self.index_of(symbol_b)
        if i is None or j is None:
            return None
        return float(self.matrix[i, j])

    def subset(self, symbols: Sequence[str]) -> "CorrelationMatrix":
        """Matrix restricted to ``symbols``, in the given order."""
        idx = [self.symbols.index(s) for s in symbols]
        return CorrelationMatrix(list(symbols), self.matrix[np.ix_(idx, idx)])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.matrix, index=self.symbols, columns=self.symbols)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "CorrelationMatrix":
        return cls(list(frame.columns), frame.loc[list(frame.columns), list(frame.columns)].to_numpy())

    @classmethod
    def identity(cls, symbols: Sequence[str]) -> "CorrelationMatrix":
        return cls(list(symbols), np.eye(len(symbols)))

    def to_dict(self) -> Dict[str, Any]:
        return {"symbols": list(self.symbols), "matrix": self.matrix.tolist()}


@dataclass(frozen=True)
class AssetStatistics:
    """Trailing-window statistics for one asset (annualized decimals)."""
    ticker: str
    volatility: float
    avg_return: float
    skewness: float = 0.0
    kurtosis: float = Config.DEFAULT_KURTOSIS
    volume: float = Config.DEFAULT_VOLUME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "volatility": self.volatility,
            "avg_return": self.avg_return,
            "skewness": self.skewness,
            "kurtosis": self.kurtosis,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class MatrixViolation:
    """A single failed matrix check, labelled with ticker symbols."""
    symbol_a: str
    symbol_b: str
    value: float
    kind: str                     # "diagonal", "symmetry" or "range"


@dataclass
class CorrelationValidationResult:
    """Structural checks on a correlation matrix."""
    is_valid: bool
    diagonal_valid: bool
    symmetry_valid: bool
    range_valid: bool
    issues: List[str] = field(default_factory=list)
    violations: List[MatrixViolation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "diagonal_valid": self.diagonal_valid,
            "symmetry_valid": self.symmetry_valid,
            "range_valid": self.range_valid,
            "issues": list(self.issues),
            "violations": [
                {"symbol_a": v.symbol_a, "symbol_b": v.symbol_b, "value": v.value, "kind": v.kind}
                for v in self.violations
            ],
        }


# =============================================================================
# CORRELATION
# =============================================================================

def pearson_correlation(
    x: ArrayLike,
    y: ArrayLike,
    min_observations: int = Config.MIN_OBSERVATIONS
) -> float:
    """
    Pearson correlation of two series over their common prefix.

    Args:
        x: First return series
        y: Second return series
        min_observations: Below this many common points the result is 0

    Returns:
        Correlation clipped to [-1, 1]; 0 if either series is constant
    """
    a = np.asarray(x, dtype=float)
    b = np.asarray(y, dtype=float)
    n = min(a.size, b.size)
    if n < min_observations:
        return 0.0
    a = a[:n] - a[:n].mean()
    b = b[:n] - b[:n].mean()
    var_a = float(np.dot(a, a))
    var_b = float(np.dot(b, b))
    if var_a <= 0 or var_b <= 0:
        return 0.0
    rho = float(np.dot(a, b)) / math.sqrt(var_a * var_b)
    return max(-1.0, min(1.0, rho))


def build_correlation_matrix(
    returns_by_symbol: Union[Mapping[str, ArrayLike], pd.DataFrame],
    symbols: Optional[Sequence[str]] = None,
    min_observations: int = Config.MIN_OBSERVATIONS
) -> CorrelationMatrix:
    """
    Build a correlation matrix from per-symbol return series.

    Args:
        returns_by_symbol: Mapping of symbol -> returns, or a DataFrame with
            one column per symbol (NaNs are dropped per column)
        symbols: Output order; defaults to the mapping / column order.
            Symbols with no series get zero correlation to everything else.
        min_observations: Minimum common observations per pair

    Returns:
        CorrelationMatrix satisfying the module invariants
    """
    if isinstance(returns_by_symbol, pd.DataFrame):
        series = {col: returns_by_symbol[col].dropna().to_numpy(dtype=float)
                  for col in returns_by_symbol.columns}
    else:
        series = {k: np.asarray(v, dtype=float) for k, v in returns_by_symbol.items()}

    order = list(symbols) if symbols is not None else list(series.keys())
    n = len(order)
    matrix = np.eye(n)
    empty = np.array([], dtype=float)

    for i in range(n):
        for j in range(i + 1, n):
            rho = pearson_correlation(
                series.get(order[i], empty),
                series.get(order[j], empty),
                min_observations
            )
            matrix[i, j] = matrix[j, i] = rho

    logger.debug(f"Built {n}x{n} correlation matrix")
    return CorrelationMatrix(order, matrix)


def correlation_from_prices(prices: pd.DataFrame, min_observations: int = Config.MIN_OBSERVATIONS) -> CorrelationMatrix:
    """Correlation of daily log returns of a close-price frame (one column per ticker)."""
    returns = {}
    for ticker in prices.columns:
        col = prices[ticker].astype(float)
        prev = col.shift(1)
        valid = (prev > 0) & (col > 0)
        with np.errstate(divide="ignore", invalid="ignore"):
            returns[ticker] = np.log(col[valid] / prev[valid]).to_numpy()
    return build_correlation_matrix(returns, list(prices.columns), min_observations)


def correlation_to_covariance(
    correlation: CorrelationMatrix,
    asset_stats: Mapping[str, AssetStatistics],
    default_volatility: float = Config.DEFAULT_VOLATILITY
) -> np.ndarray:
    """Annualized covariance ``rho_ij * sigma_i * sigma_j`` in the matrix's symbol order."""
    vols = volatility_vector(correlation.symbols, asset_stats, default_volatility)
    return correlation.matrix * np.outer(vols, vols)


def volatility_vector(
    symbols: Sequence[str],
    asset_stats: Mapping[str, AssetStatistics],
    default_volatility: float = Config.DEFAULT_VOLATILITY
) -> np.ndarray:
    return np.array([
        asset_stats[s].volatility if s in asset_stats else default_volatility
        for s in symbols
    ], dtype=float)


# =============================================================================
# VALIDATION
# =============================================================================

def validate_correlation_matrix(
    matrix: Union[CorrelationMatrix, np.ndarray, Sequence[Sequence[float]]],
    symbols: Optional[Sequence[str]] = None
) -> CorrelationValidationResult:
    """
    Check a correlation matrix for unit diagonal, symmetry and range.

    Never raises; every failed check is reported in ``issues`` and
    ``violations`` with ticker labels where symbols are known.
    """
    if isinstance(matrix, CorrelationMatrix):
        symbols = symbols or matrix.symbols
        data = matrix.matrix
    else:
        try:
            data = np.asarray(matrix, dtype=float)
        except ValueError:
            return CorrelationValidationResult(False, False, False, False, ["Matrix is not square"])

    if data.size == 0:
        return CorrelationValidationResult(False, False, False, False, ["Empty correlation matrix"])
    if data.ndim != 2 or data.shape[0] != data.shape[1]:
        return CorrelationValidationResult(False, False, False, False, ["Matrix is not square"])

    n = data.shape[0]
    labels = list(symbols) if symbols is not None and len(symbols) == n else [str(i) for i in range(n)]
    issues: List[str] = []
    violations: List[MatrixViolation] = []

    diagonal_valid = True
    for i in range(n):
        if abs(data[i, i] - 1.0) > Config.DIAGONAL_TOLERANCE:
            diagonal_valid = False
            issues.append(f"Diagonal value at {labels[i]} is {data[i, i]:.4f}, expected 1.0")
            violations.append(MatrixViolation(labels[i], labels[i], float(data[i, i]), "diagonal"))

    symmetry_valid = True
    range_valid = True
    for i in range(n):
        for j in range(i + 1, n):
            if abs(data[i, j] - data[j, i]) > Config.SYMMETRY_TOLERANCE:
                symmetry_valid = False
                issues.append(
                    f"Matrix not symmetric at ({labels[i]},{labels[j]}): "
                    f"{data[i, j]:.4f} vs {data[j, i]:.4f}"
                )
                violations.append(MatrixViolation(labels[i], labels[j], float(data[i, j]), "symmetry"))
            for a, b in ((i, j), (j, i)):
                if not -1.0 <= data[a, b] <= 1.0:
                    range_valid = False
                    issues.append(f"Correlation at ({labels[a]},{labels[b]}) = {data[a, b]:.4f} outside [-1, 1]")
                    violations.append(MatrixViolation(labels[a], labels[b], float(data[a, b]), "range"))

    is_valid = diagonal_valid and symmetry_valid and range_valid
    if not is_valid:
        logger.warning(f"Correlation matrix failed validation with {len(issues)} issue(s)")
    return CorrelationValidationResult(
        is_valid=is_valid,
        diagonal_valid=diagonal_valid,
        symmetry_valid=symmetry_valid,
        range_valid=range_valid,
        issues=issues,
        violations=violations,
    )


# =============================================================================
# ASSET STATISTICS
# =============================================================================

def compute_asset_statistics(
    ticker: str,
    prices: ArrayLike,
    volumes: Optional[ArrayLike] = None,
    min_bars: int = BACKTEST.min_bars_for_stats,
    min_returns: int = BACKTEST.min_returns_for_stats
) -> Optional[AssetStatistics]:
    """
    Summarize a trailing close-price window into AssetStatistics.

    Uses daily log returns with population moments around the daily mean:
    ``avg_return = mean * 252``, ``volatility = std * sqrt(252)``; skewness
    and kurtosis are raw population moments (kurtosis 3 when constant).

    Args:
        ticker: Asset symbol
        prices: Close prices, oldest first
        volumes: Optional daily volumes; zeros and NaNs are ignored
        min_bars: Fewer price bars than this -> None
        min_returns: Fewer valid returns than this -> None

    Returns:
        AssetStatistics, or None when the window is too short
    """
    arr = np.asarray(prices, dtype=float)
    if arr.size < min_bars:
        return None
    prev, curr = arr[:-1], arr[1:]
    valid = (prev > 0) & (curr > 0) & np.isfinite(prev) & np.isfinite(curr)
    with np.errstate(divide="ignore", invalid="ignore"):
        returns = np.log(curr[valid] / prev[valid])
    if returns.size < min_returns:
        return None

    daily_mean = float(returns.mean())
    std = float(returns.std(ddof=0))
    if std > 0:
        z = (returns - daily_mean) / std
        skewness = float(np.mean(z ** 3))
        kurtosis = float(np.mean(z ** 4))
    else:
        skewness, kurtosis = 0.0, Config.DEFAULT_KURTOSIS

    avg_volume = Config.DEFAULT_VOLUME
    if volumes is not None:
        vol_arr = np.asarray(volumes, dtype=float)
        vol_arr = vol_arr[np.isfinite(vol_arr) & (vol_arr > 0)]
        if vol_arr.size:
            avg_volume = float(vol_arr.mean())

    return AssetStatistics(
        ticker=ticker,
        volatility=std * math.sqrt(TRADING_DAYS_YEAR),
        avg_return=daily_mean * TRADING_DAYS_YEAR,
        skewness=skewness,
        kurtosis=kurtosis,
        volume=avg_volume,
    )


def compute_universe_statistics(
    prices: pd.DataFrame,
    volumes: Optional[pd.DataFrame] = None
) -> Dict[str, AssetStatistics]:
    """AssetStatistics per column of a close-price frame; short histories are skipped."""
    result: Dict[str, AssetStatistics] = {}
    for ticker in prices.columns:
        vol = volumes[ticker] if volumes is not None and ticker in volumes.columns else None
        asset = compute_asset_statistics(ticker, prices[ticker].dropna(), vol)
        if asset is None:
            logger.debug(f"{ticker}: insufficient history for statistics")
            continue
        result[ticker] = asset
    return result


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    'Config',
    'CorrelationMatrix',
    'AssetStatistics',
    'MatrixViolation',
    'CorrelationValidationResult',
    'pearson_correlation',
    'build_correlation_matrix',
    'correlation_from_prices',
    'correlation_to_covariance',
    'volatility_vector',
    'validate_correlation_matrix',
    'compute_asset_statistics',
    'compute_universe_statistics',
]
