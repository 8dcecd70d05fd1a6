# pulse_backend/api/subscriptions.py
"""
Billing endpoints: subscription status and checkout.

Both are rate limited per caller by their own limiters, separate from the
category middleware budgets.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from ..middleware.rate_limiter import (
    get_rate_limit_key,
    rate_limit_exceeded_response,
    rate_limit_headers,
)
from ..utils.error_handler import handle_stripe_error, handle_validation_error
from ..utils.jwt_deps import AuthenticatedUser, get_current_user_dep
from ..utils.logger import log_structured

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


class CheckoutRequest(BaseModel):
    priceId: Optional[str] = None


def _require_email(user: AuthenticatedUser) -> str:
    if not user.email:
        raise handle_validation_error("email", "authenticated user has no email address")
    return user.email


@router.get("/status")
def get_subscription_status(
    request: Request,
    response: Response,
    user: AuthenticatedUser = Depends(get_current_user_dep),
):
    """
    Current subscription tier for the caller.

    Returns:
        {"subscribed": bool, "tier": str, "subscriptionEnd": str | None, "customerId": str | None}
    """
    limiter = request.app.state.limiters["subscription_status"]
    result = limiter.check_rate_limit(get_rate_limit_key(request, user.id))
    if not result.allowed:
        log_structured("subscription_status_rate_limited", {"userId": user.id}, level="WARNING")
        return rate_limit_exceeded_response(result)

    email = _require_email(user)
    try:
        status_info: Dict[str, Any] = request.app.state.billing.get_subscription_status(email)
    except Exception as e:
        raise handle_stripe_error(e, "subscription status")

    response.headers.update(rate_limit_headers(result))
    return status_info


@router.post("/checkout")
def create_checkout(
    request: Request,
    response: Response,
    body: CheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user_dep),
):
    """
    Start a Stripe checkout for priceId.
    Callers that already have an active subscription get a billing portal URL instead.
    """
    limiter = request.app.state.limiters["checkout"]
    result = limiter.check_rate_limit(get_rate_limit_key(request, user.id))
    if not result.allowed:
        log_structured("checkout_rate_limited", {"userId": user.id}, level="WARNING")
        return rate_limit_exceeded_response(
            result, "Too many checkout attempts. Please try again later."
        )

    if not body.priceId:
        raise handle_validation_error("priceId", "price ID is required")
    email = _require_email(user)

    origin = request.headers.get("origin") or request.app.state.settings.app_origin
    try:
        session = request.app.state.billing.create_checkout(body.priceId, user.id, email, origin)
    except Exception as e:
        raise handle_stripe_error(e, "checkout")

    response.headers.update(rate_limit_headers(result))
    return session
