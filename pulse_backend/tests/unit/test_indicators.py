# pulse_backend/tests/unit/test_indicators.py
"""Unit tests for technical indicators."""
import pytest

from pulse_backend.market_data.indicators import calculate_ema, calculate_rsi, calculate_sma


class TestIndicators:
    """Test SMA, EMA and RSI."""

    def test_sma(self):
        assert calculate_sma([1, 2, 3, 4, 5], 3) == [2.0, 3.0, 4.0]

    def test_sma_not_enough_data(self):
        assert calculate_sma([1, 2], 3) == []

    def test_ema_seeded_with_sma(self):
        ema = calculate_ema([1, 2, 3, 4], 3)
        assert ema[0] == pytest.approx(2.0)
        assert ema[1] == pytest.approx(3.0)

    def test_ema_not_enough_data(self):
        assert calculate_ema([1.0], 2) == []

    def test_rsi_all_gains(self):
        assert calculate_rsi([float(i) for i in range(20)], 14)[-1] == 100.0

    def test_rsi_balanced_moves(self):
        prices = [10.0, 11.0] * 8
        rsi = calculate_rsi(prices, 14)
        assert len(rsi) == len(prices) - 14
        assert rsi[0] == pytest.approx(50.0)

    def test_rsi_needs_period_plus_one_prices(self):
        assert calculate_rsi([1.0] * 14, 14) == []
