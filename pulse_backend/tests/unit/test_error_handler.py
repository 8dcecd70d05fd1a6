# pulse_backend/tests/unit/test_error_handler.py
"""Unit tests for error handler utilities."""
import stripe
from fastapi import HTTPException, status

from pulse_backend.market_data.types import MarketDataError, ProviderRateLimitError, SymbolNotFoundError
from pulse_backend.utils.circuit_breaker import CircuitOpenError
from pulse_backend.utils.error_handler import (
    handle_market_data_error,
    handle_not_found_error,
    handle_stripe_error,
    handle_validation_error,
)


class TestErrorHandler:
    """Test error handler utilities."""

    def test_handle_validation_error(self):
        """Test handling validation error."""
        result = handle_validation_error("priceId", "price ID is required")
        assert isinstance(result, HTTPException)
        assert result.status_code == status.HTTP_400_BAD_REQUEST
        assert "priceid" in result.detail.lower()

    def test_handle_not_found_error_with_id(self):
        """Test handling not found error with ID."""
        result = handle_not_found_error("Provider", "weather")
        assert result.status_code == status.HTTP_404_NOT_FOUND
        assert "weather" in result.detail

    def test_handle_not_found_error_without_id(self):
        """Test handling not found error without ID."""
        result = handle_not_found_error("Provider")
        assert result.status_code == status.HTTP_404_NOT_FOUND

    def test_handle_market_data_error_provider_rate_limit(self):
        """Upstream 429s keep their reset time as Retry-After."""
        result = handle_market_data_error(ProviderRateLimitError("slow down", reset_in_ms=2_500), "AAPL")
        assert result.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert result.headers == {"Retry-After": "3"}

    def test_handle_market_data_error_circuit_open(self):
        """Test handling an open circuit."""
        result = handle_market_data_error(CircuitOpenError("market-data"))
        assert result.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    def test_handle_market_data_error_rate_limit_message(self):
        """Test handling market data rate limit error."""
        result = handle_market_data_error(Exception("rate limit exceeded"), "AAPL")
        assert result.status_code == status.HTTP_429_TOO_MANY_REQUESTS

    def test_handle_market_data_error_not_found(self):
        """Test handling market data not found error."""
        result = handle_market_data_error(MarketDataError("Finnhub: no data for ZZZZ"), "ZZZZ")
        assert result.status_code == status.HTTP_404_NOT_FOUND
        assert "ZZZZ" in result.detail

    def test_handle_symbol_not_found(self):
        """The symbol carried by the error is used when none is passed."""
        result = handle_market_data_error(SymbolNotFoundError("Finnhub: no data for ZZZZ", "ZZZZ"))
        assert result.status_code == status.HTTP_404_NOT_FOUND
        assert "ZZZZ" in result.detail

    def test_handle_market_data_error_authentication(self):
        """Test handling market data authentication error."""
        result = handle_market_data_error(MarketDataError("Finnhub authentication failed (401)"))
        assert result.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert "authentication" in result.detail.lower()

    def test_handle_market_data_error_generic(self):
        """Test handling generic market data error."""
        result = handle_market_data_error(Exception("something broke"))
        assert result.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    def test_handle_stripe_invalid_request(self):
        """Invalid billing requests are the caller's fault."""
        error = stripe.InvalidRequestError("No such price: 'price_bad'", "price")
        result = handle_stripe_error(error, "checkout")
        assert result.status_code == status.HTTP_400_BAD_REQUEST
        assert "price_bad" in result.detail

    def test_handle_stripe_missing_configuration(self):
        result = handle_stripe_error(ValueError("STRIPE_SECRET_KEY is not configured"))
        assert result.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    def test_handle_stripe_other_errors(self):
        result = handle_stripe_error(RuntimeError("stripe is down"))
        assert result.status_code == status.HTTP_502_BAD_GATEWAY
