# pulse_backend/tests/conftest.py
"""
Pytest configuration and fixtures for Pulse backend tests.
"""
import pytest
from fastapi.testclient import TestClient

from pulse_backend.main import create_app
from pulse_backend.market_data.cache import MarketDataCache
from pulse_backend.market_data.provider_health import ProviderHealthTracker
from pulse_backend.middleware.rate_limiter import FixedWindowRateLimiter
from pulse_backend.tests.fakes import FakeClock, FakeMarketClient
from pulse_backend.utils.config import Settings


@pytest.fixture(scope="function")
def clock():
    """Deterministic millisecond clock."""
    return FakeClock()


@pytest.fixture(scope="function")
def tracker(clock):
    """Tracker without the background sweep; tests call recalculate() directly."""
    health = ProviderHealthTracker(clock=clock, auto_sweep=False)
    yield health
    health.close()


@pytest.fixture(scope="function")
def market_cache(clock):
    return MarketDataCache(quotes_ttl_ms=30_000, candles_ttl_ms=300_000,
                           technical_ttl_ms=300_000, clock=clock)


@pytest.fixture(scope="function")
def limiter(clock):
    return FixedWindowRateLimiter(max_requests=3, window_ms=60_000, clock=clock, name="test")


@pytest.fixture(scope="function")
def market_client():
    return FakeMarketClient()


@pytest.fixture(scope="function")
def test_settings():
    """Settings for the app under test; no env or config file involved."""
    return Settings(
        environment="test",
        health_auto_sweep=False,
        upstream_max_retries=0,
        jwt_secret_key="test-secret-key",
        stripe_secret_key="sk_test_123",
        stripe_product_tiers={"prod_pro": "pro", "prod_elite": "elite"},
        app_origin="http://localhost:5173",
    )


@pytest.fixture(scope="function")
def app(test_settings, market_client, clock):
    application = create_app(test_settings, market_client=market_client, clock=clock)
    yield application
    application.state.health_tracker.close()


@pytest.fixture(scope="function")
def client(app):
    """Create test client."""
    return TestClient(app)


@pytest.fixture(scope="function")
def make_token(app):
    """Build a bearer token signed with the app's JWT secret."""
    def _make(user_id: str = "test-user-123", email: str = "test@example.com") -> str:
        claims = {"sub": user_id}
        if email:
            claims["email"] = email
        return app.state.jwt_service.create_access_token(claims)
    return _make


@pytest.fixture(scope="function")
def auth_headers(make_token):
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture(scope="function")
def mock_env_vars(monkeypatch):
    """Set up mock environment variables for testing."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("JWT_SECRET_KEY", "test-secret-key")
    monkeypatch.setenv("FINNHUB_API_KEY", "test-finnhub-key")
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
