# pulse_backend/api/system_health.py
"""
Provider health endpoints.

GET  /system/providers                    current snapshot plus the status banner
POST /system/providers/{provider}/events  report a call outcome observed elsewhere
                                          (e.g. by the frontend for AI or news calls)
"""
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from ..market_data.provider_health import HealthSnapshot, UnknownProviderError
from ..services.status_banner import build_status_banner
from ..utils.error_handler import handle_not_found_error

router = APIRouter(prefix="/system", tags=["system"])


class ProviderEvent(BaseModel):
    event: Literal["success", "error", "rate_limit"]
    message: Optional[str] = None
    resetInMs: int = Field(default=60_000, ge=0)


def serialize_snapshot(snapshot: HealthSnapshot) -> Dict[str, Any]:
    return {
        "globalStatus": snapshot.global_status.value,
        "providers": {name.value: health.to_dict() for name, health in snapshot.providers.items()},
        "degradedProviders": [name.value for name in snapshot.degraded_providers()],
        "rateLimitedProviders": [name.value for name in snapshot.rate_limited_providers()],
        "banner": build_status_banner(snapshot).model_dump(),
    }


@router.get("/providers")
def get_provider_health(request: Request) -> Dict[str, Any]:
    """Never fails; always returns the current health snapshot."""
    return serialize_snapshot(request.app.state.health_tracker.snapshot())


@router.post("/providers/{provider}/events")
def record_provider_event(provider: str, body: ProviderEvent, request: Request) -> Dict[str, Any]:
    tracker = request.app.state.health_tracker
    try:
        if body.event == "success":
            tracker.record_success(provider)
        elif body.event == "error":
            tracker.record_error(provider, body.message or "Unknown error")
        else:
            tracker.record_rate_limit(provider, body.resetInMs)
    except UnknownProviderError:
        raise handle_not_found_error("Provider", provider)

    return serialize_snapshot(tracker.snapshot())
