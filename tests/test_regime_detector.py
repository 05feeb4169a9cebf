"""
Unit tests for turbulence-based regime detection.
"""

from datetime import date

import numpy as np
import pandas as pd
import pytest

from portfolio_engine.config import Regime, RegimeThresholds
from portfolio_engine.regime_detector import (
    RegimeSignal,
    TurbulenceRegimeDetector,
    classify_turbulence,
    detect_regime,
    equal_weight_returns,
    format_regime_signal,
    summarize_by_regime,
)


def calm_then_alternating(n: int = 61) -> pd.Series:
    """Flat prices followed by five +/-10% log moves."""
    moves = np.zeros(n - 1)
    moves[-5:] = [0.1, -0.1, 0.1, -0.1, 0.1]
    prices = 100.0 * np.exp(np.concatenate([[0.0], np.cumsum(moves)]))
    return pd.Series(prices, index=pd.bdate_range("2022-01-03", periods=n))


class TestClassification:
    """Tests for threshold mapping."""

    @pytest.mark.parametrize("turbulence,expected", [
        (30.0, Regime.CRISIS),
        (25.0, Regime.HIGH_VOL),
        (20.0, Regime.HIGH_VOL),
        (15.0, Regime.NORMAL),
        (10.0, Regime.NORMAL),
        (8.0, Regime.LOW_VOL),
        (0.0, Regime.LOW_VOL),
    ])
    def test_strict_thresholds(self, turbulence, expected):
        assert classify_turbulence(turbulence) == expected

    def test_custom_thresholds(self):
        thresholds = RegimeThresholds(crisis=5.0, high_vol=3.0, normal=1.0)
        assert classify_turbulence(6.0, thresholds) == Regime.CRISIS


class TestDetector:
    """Tests for TurbulenceRegimeDetector."""

    def test_zero_variance_is_low_vol(self):
        prices = pd.Series(100.0, index=pd.bdate_range("2022-01-03", periods=60))
        signal = detect_regime(prices)
        assert signal.regime == Regime.LOW_VOL
        assert signal.turbulence_index == 0.0
        assert signal.volatility == 0.0

    def test_alternating_shock_after_calm_is_crisis(self):
        signal = detect_regime(calm_then_alternating())
        assert signal.regime == Regime.CRISIS
        assert signal.turbulence_index > 25

    def test_classify_returns_matches_formula(self):
        returns = np.array([0.0] * 55 + [0.1, -0.1, 0.1, -0.1, 0.1])
        mean = returns.mean()
        vol = np.sqrt(np.mean((returns - mean) ** 2)) * np.sqrt(252) * 100
        recent = np.sqrt(np.mean((returns[-5:] - mean) ** 2)) * np.sqrt(252) * 100
        signal = TurbulenceRegimeDetector().classify_returns(returns)
        assert signal.turbulence_index == pytest.approx(round(recent / vol * 10, 2))
        assert signal.volatility == pytest.approx(round(vol, 2))

    def test_short_history_returns_default(self):
        prices = pd.Series([100, 101, 102, 101], index=pd.bdate_range("2022-01-03", periods=4))
        signal = detect_regime(prices)
        assert signal == RegimeSignal.default(date(2022, 1, 6))
        assert signal.regime == Regime.NORMAL
        assert signal.turbulence_index == 10.0

    def test_lookback_limits_window(self):
        """Only the trailing rows are used."""
        prices = calm_then_alternating(200)
        full = TurbulenceRegimeDetector().detect(prices, lookback=200)
        short = TurbulenceRegimeDetector().detect(prices, lookback=60)
        assert short.volatility > full.volatility

    def test_as_of_defaults_to_last_date(self):
        prices = calm_then_alternating()
        assert detect_regime(prices).as_of == prices.index[-1].date()

    def test_multi_asset_equal_weighting(self, sample_closes):
        returns = equal_weight_returns(sample_closes)
        expected = np.log(sample_closes / sample_closes.shift(1)).iloc[1:].mean(axis=1)
        assert np.allclose(returns.to_numpy(), expected.to_numpy())
        signal = detect_regime(sample_closes)
        assert isinstance(signal.regime, Regime)


class TestRegimeSummary:
    """Tests for per-regime performance buckets."""

    def test_buckets_in_first_seen_order(self):
        observations = [
            (Regime.NORMAL, 0.01), (Regime.CRISIS, -0.02),
            (Regime.NORMAL, -0.01), (Regime.CRISIS, -0.04),
        ]
        summaries = summarize_by_regime(observations)
        assert [s.regime for s in summaries] == [Regime.NORMAL, Regime.CRISIS]
        assert summaries[0].days == 2
        assert summaries[0].avg_return == pytest.approx(0.0)
        assert summaries[1].avg_return == pytest.approx(-0.03 * 252)
        assert summaries[1].volatility == pytest.approx(0.01 * np.sqrt(252))

    def test_empty(self):
        assert summarize_by_regime([]) == []

    def test_format(self):
        text = format_regime_signal(RegimeSignal(Regime.CRISIS, 30.0, 45.0, date(2020, 3, 16)))
        assert "CRISIS" in text
        assert "2020-03-16" in text
