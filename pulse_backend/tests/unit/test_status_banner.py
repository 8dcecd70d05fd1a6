# pulse_backend/tests/unit/test_status_banner.py
"""Unit tests for the degraded-service banner."""
from pulse_backend.market_data.provider_health import ProviderName
from pulse_backend.services.status_banner import build_status_banner


def degrade(tracker, provider, errors):
    for _ in range(errors):
        tracker.record_error(provider, "boom")


class TestStatusBanner:
    """Test banner content for each global status."""

    def test_hidden_when_healthy(self, tracker):
        banner = build_status_banner(tracker.snapshot())
        assert banner.visible is False
        assert banner.affected_providers == []

    def test_degraded(self, tracker):
        degrade(tracker, ProviderName.MARKET_DATA, 2)
        banner = build_status_banner(tracker.snapshot())
        assert banner.visible is True
        assert banner.variant == "degraded"
        assert banner.title == "Some services degraded"
        assert banner.message == "Affected: Market Data"
        assert banner.affected_providers == ["market-data"]
        assert banner.show_refresh is True

    def test_unhealthy_lists_every_affected_provider(self, tracker):
        degrade(tracker, ProviderName.MARKET_DATA, 5)
        degrade(tracker, ProviderName.FUNDAMENTALS, 2)
        banner = build_status_banner(tracker.snapshot())
        assert banner.variant == "unhealthy"
        assert banner.title == "Service issues detected"
        assert banner.message == "Affected: Market Data, Company Data"
        assert banner.show_refresh is True

    def test_rate_limit_takes_precedence(self, tracker):
        degrade(tracker, ProviderName.MARKET_DATA, 2)
        tracker.record_rate_limit(ProviderName.NEWS, 30_000)
        banner = build_status_banner(tracker.snapshot())
        assert banner.variant == "rate_limited"
        assert banner.title == "Rate limit reached"
        assert banner.message == "Please wait before making more requests to: News Feed"
        assert banner.affected_providers == ["news"]
        assert banner.show_refresh is False
