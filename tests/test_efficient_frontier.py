"""
Unit tests for the Monte-Carlo efficient frontier.
"""

import numpy as np
import pytest

from portfolio_engine.correlation import AssetStatistics, CorrelationMatrix
from portfolio_engine.efficient_frontier import (
    EfficientFrontierGenerator,
    EfficientFrontierPoint,
    find_max_sharpe_portfolio,
    find_min_vol_portfolio,
    find_optimal_portfolio,
    generate_efficient_frontier,
    get_portfolio_at_risk,
)


def point(risk, ret, sharpe=0.0):
    return EfficientFrontierPoint(risk=risk, expected_return=ret, sharpe=sharpe)


class TestGenerator:
    """Tests for frontier generation."""

    def test_single_asset(self):
        corr = CorrelationMatrix.identity(["SPY"])
        stats = {"SPY": AssetStatistics("SPY", volatility=0.18, avg_return=0.10)}
        frontier = generate_efficient_frontier(corr, stats, num_simulations=200, seed=1)
        assert len(frontier) == 1
        assert frontier[0].risk == pytest.approx(18.0)
        assert frontier[0].expected_return == pytest.approx(10.0)
        assert frontier[0].sharpe == pytest.approx((10.0 - 5.0) / 18.0)
        assert frontier[0].weights == {"SPY": pytest.approx(1.0)}

    def test_empty_universe(self):
        assert generate_efficient_frontier(CorrelationMatrix.identity([]), {}, seed=1) == []

    def test_seed_is_reproducible(self, three_asset_correlation, three_asset_stats):
        a = generate_efficient_frontier(three_asset_correlation, three_asset_stats, 2000, seed=11)
        b = generate_efficient_frontier(three_asset_correlation, three_asset_stats, 2000, seed=11)
        assert [p.to_dict() for p in a] == [p.to_dict() for p in b]

    def test_frontier_is_monotonic(self, three_asset_correlation, three_asset_stats):
        frontier = generate_efficient_frontier(three_asset_correlation, three_asset_stats, 5000, seed=3)
        assert len(frontier) >= 2
        risks = [p.risk for p in frontier]
        returns = [p.expected_return for p in frontier]
        assert risks == sorted(risks)
        assert all(b > a for a, b in zip(returns, returns[1:]))
        for p in frontier:
            assert sum(p.weights.values()) == pytest.approx(1.0)
            assert all(w >= 0 for w in p.weights.values())

    def test_downsampling_keeps_endpoints(self, three_asset_correlation, three_asset_stats):
        full = EfficientFrontierGenerator(5000, bucket_width=0.05, target_points=1000, seed=5)
        sparse = EfficientFrontierGenerator(5000, bucket_width=0.05, target_points=3, seed=5)
        dense = full.generate(three_asset_correlation, three_asset_stats)
        thin = sparse.generate(three_asset_correlation, three_asset_stats)
        assert len(thin) < len(dense)
        assert thin[0] == dense[0]
        assert thin[-1] == dense[-1]

    def test_missing_stats_use_defaults(self):
        corr = CorrelationMatrix.identity(["XYZ"])
        frontier = EfficientFrontierGenerator(50, seed=0).generate(corr, {})
        assert frontier[0].expected_return == pytest.approx(8.0)
        assert frontier[0].risk == pytest.approx(20.0)

    def test_accepts_generator(self, three_asset_correlation, three_asset_stats):
        rng = np.random.default_rng(9)
        frontier = EfficientFrontierGenerator(500, seed=rng).generate(
            three_asset_correlation, three_asset_stats
        )
        assert frontier

    @pytest.mark.parametrize("kwargs", [
        {"num_simulations": 0},
        {"bucket_width": 0.0},
        {"target_points": 1},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            EfficientFrontierGenerator(**kwargs)


class TestQueries:
    """Tests for frontier lookups."""

    @pytest.fixture
    def frontier(self):
        return [point(5.0, 4.0, 0.1), point(10.0, 8.0, 0.4), point(15.0, 9.0, 0.3), point(20.0, 10.0, 0.25)]

    def test_optimal_by_tolerance(self, frontier):
        assert find_optimal_portfolio(frontier, 0) == frontier[0]
        assert find_optimal_portfolio(frontier, 50) == frontier[1]
        assert find_optimal_portfolio(frontier, 100) == frontier[3]
        assert find_optimal_portfolio(frontier, 250) == frontier[3]

    def test_max_sharpe(self, frontier):
        assert find_max_sharpe_portfolio(frontier) == frontier[1]

    def test_min_vol(self, frontier):
        assert find_min_vol_portfolio(frontier) == frontier[0]

    def test_at_risk(self, frontier):
        assert get_portfolio_at_risk(frontier, 14.0) == frontier[2]

    def test_empty_frontier(self):
        assert find_optimal_portfolio([], 50) is None
        assert find_max_sharpe_portfolio([]) is None
        assert find_min_vol_portfolio([]) is None
        assert get_portfolio_at_risk([], 10) is None
