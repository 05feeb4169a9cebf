"""
Unit tests for correlation building, validation and asset statistics.
"""

import math

import numpy as np
import pandas as pd
import pytest

from portfolio_engine.correlation import (
    AssetStatistics,
    CorrelationMatrix,
    build_correlation_matrix,
    compute_asset_statistics,
    compute_universe_statistics,
    correlation_from_prices,
    correlation_to_covariance,
    pearson_correlation,
    validate_correlation_matrix,
)


class TestPearson:
    """Tests for pairwise correlation."""

    def test_perfect_correlation(self):
        x = [0.01, -0.02, 0.03, 0.00, 0.015, -0.01]
        assert pearson_correlation(x, [2 * v for v in x]) == pytest.approx(1.0)
        assert pearson_correlation(x, [-v for v in x]) == pytest.approx(-1.0)

    def test_too_few_observations(self):
        assert pearson_correlation([0.1, 0.2, 0.3, 0.4], [0.1, 0.2, 0.3, 0.4]) == 0.0

    def test_constant_series(self):
        assert pearson_correlation([0.01] * 10, np.linspace(0, 1, 10)) == 0.0

    def test_common_prefix(self):
        x = [0.01, -0.02, 0.03, 0.00, 0.015, -0.01, 0.5, -0.5]
        y = x[:6]
        assert pearson_correlation(x, y) == pytest.approx(1.0)


class TestBuildMatrix:
    """Tests for matrix construction invariants."""

    def test_invariants_on_random_returns(self, sample_closes):
        corr = correlation_from_prices(sample_closes)
        m = corr.matrix
        assert corr.symbols == list(sample_closes.columns)
        assert np.allclose(np.diag(m), 1.0, atol=1e-4)
        assert np.allclose(m, m.T, atol=1e-4)
        assert (m >= -1).all() and (m <= 1).all()
        assert validate_correlation_matrix(corr).is_valid

    def test_structure_of_sample_universe(self, sample_closes):
        corr = correlation_from_prices(sample_closes)
        assert corr.get("SPY", "QQQ") > 0.5
        assert corr.get("SPY", "TLT") < 0

    def test_missing_symbol_gets_zero_correlation(self):
        corr = build_correlation_matrix(
            {"A": [0.01, 0.02, -0.01, 0.0, 0.03, -0.02]}, symbols=["A", "B"]
        )
        assert corr.matrix.tolist() == [[1.0, 0.0], [0.0, 1.0]]

    def test_dataframe_input(self):
        frame = pd.DataFrame({"A": [0.01, 0.02, -0.01, 0.0, 0.03], "B": [0.02, 0.04, -0.02, 0.0, 0.06]})
        corr = build_correlation_matrix(frame)
        assert corr.get("A", "B") == pytest.approx(1.0)

    def test_shape_mismatch_rejected(self):
        with pytest.raises(ValueError):
            CorrelationMatrix(["A", "B"], np.eye(3))

    def test_subset_and_frame_round_trip(self, three_asset_correlation):
        sub = three_asset_correlation.subset(["GLD", "SPY"])
        assert sub.get("GLD", "SPY") == pytest.approx(0.1)
        again = CorrelationMatrix.from_frame(sub.to_frame())
        assert again.symbols == ["GLD", "SPY"]


class TestValidation:
    """Tests for structural validation."""

    def test_valid_identity(self):
        result = validate_correlation_matrix(CorrelationMatrix.identity(["A", "B"]))
        assert result.is_valid
        assert result.issues == []

    def test_bad_diagonal(self):
        result = validate_correlation_matrix([[1.0, 0.2], [0.2, 0.9]], ["A", "B"])
        assert not result.diagonal_valid
        assert result.violations[0].symbol_a == "B"
        assert "B" in result.issues[0]

    def test_asymmetric(self):
        result = validate_correlation_matrix([[1.0, 0.5], [0.2, 1.0]])
        assert not result.symmetry_valid
        assert result.range_valid

    def test_out_of_range_in_both_triangles(self):
        result = validate_correlation_matrix([[1.0, 1.5], [1.5, 1.0]], ["A", "B"])
        assert not result.range_valid
        assert len([v for v in result.violations if v.kind == "range"]) == 2

    def test_empty_and_non_square(self):
        assert validate_correlation_matrix([]).issues == ["Empty correlation matrix"]
        assert not validate_correlation_matrix([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]).is_valid


class TestCovariance:
    """Tests for covariance conversion."""

    def test_covariance_scaling(self, three_asset_correlation, three_asset_stats):
        cov = correlation_to_covariance(three_asset_correlation, three_asset_stats)
        assert cov[0, 0] == pytest.approx(0.18 ** 2)
        assert cov[0, 1] == pytest.approx(-0.3 * 0.18 * 0.12)

    def test_missing_stats_use_default_volatility(self, three_asset_correlation):
        cov = correlation_to_covariance(three_asset_correlation, {})
        assert cov[1, 1] == pytest.approx(0.04)


class TestAssetStatistics:
    """Tests for trailing-window statistics."""

    def test_constant_growth(self):
        prices = 100 * np.exp(0.001 * np.arange(30))
        stats = compute_asset_statistics("ABC", prices)
        assert stats.avg_return == pytest.approx(0.001 * 252)
        assert stats.volatility == pytest.approx(0.0, abs=1e-12)
        assert stats.volume == 1_000_000

    def test_flat_prices_use_normal_kurtosis(self):
        stats = compute_asset_statistics("ABC", [50.0] * 15)
        assert stats.volatility == 0.0
        assert stats.skewness == 0.0
        assert stats.kurtosis == 3.0

    def test_short_window(self):
        assert compute_asset_statistics("ABC", [100, 101, 102]) is None

    def test_volumes_ignore_zeros(self):
        prices = np.linspace(100, 110, 20)
        volumes = [0] * 10 + [500] * 10
        assert compute_asset_statistics("ABC", prices, volumes).volume == 500

    def test_population_volatility(self, sample_closes):
        stats = compute_asset_statistics("SPY", sample_closes["SPY"])
        log_ret = np.log(sample_closes["SPY"] / sample_closes["SPY"].shift(1)).dropna()
        assert stats.volatility == pytest.approx(log_ret.std(ddof=0) * math.sqrt(252))

    def test_universe(self, sample_closes):
        stats = compute_universe_statistics(sample_closes)
        assert set(stats) == set(sample_closes.columns)
        assert all(isinstance(s, AssetStatistics) for s in stats.values())
