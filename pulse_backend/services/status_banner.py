# pulse_backend/services/status_banner.py
"""
Degraded-service banner derived from provider health.
"""
from typing import List, Optional

from pydantic import BaseModel

from ..market_data.provider_health import HealthSnapshot, HealthStatus, ProviderName

PROVIDER_DISPLAY_NAMES = {
    ProviderName.MARKET_DATA: "Market Data",
    ProviderName.AI_FEATURES: "AI Features",
    ProviderName.NEWS: "News Feed",
    ProviderName.FUNDAMENTALS: "Company Data",
}


class StatusBanner(BaseModel):
    visible: bool
    variant: Optional[str] = None  # "rate_limited" | "unhealthy" | "degraded"
    title: Optional[str] = None
    message: Optional[str] = None
    affected_providers: List[str] = []
    show_refresh: bool = False


def _display(providers: List[ProviderName]) -> str:
    return ", ".join(PROVIDER_DISPLAY_NAMES.get(p, p.value) for p in providers)


def build_status_banner(snapshot: HealthSnapshot) -> StatusBanner:
    """
    Hidden while everything is healthy. Rate limiting takes precedence over
    the generic degraded/unhealthy copy and offers no refresh action.
    """
    if snapshot.global_status == HealthStatus.HEALTHY:
        return StatusBanner(visible=False)

    rate_limited = snapshot.rate_limited_providers()
    if rate_limited:
        return StatusBanner(
            visible=True,
            variant="rate_limited",
            title="Rate limit reached",
            message=f"Please wait before making more requests to: {_display(rate_limited)}",
            affected_providers=[p.value for p in rate_limited],
            show_refresh=False,
        )

    degraded = snapshot.degraded_providers()
    unhealthy = snapshot.global_status == HealthStatus.UNHEALTHY
    return StatusBanner(
        visible=True,
        variant="unhealthy" if unhealthy else "degraded",
        title="Service issues detected" if unhealthy else "Some services degraded",
        message=f"Affected: {_display(degraded)}",
        affected_providers=[p.value for p in degraded],
        show_refresh=True,
    )
