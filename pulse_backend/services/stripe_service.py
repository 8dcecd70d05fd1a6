# pulse_backend/services/stripe_service.py
"""
Stripe billing service: subscription status lookup and checkout sessions.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import stripe

from ..utils.logger import log_structured

FREE_TIER = "free"
DEFAULT_PAID_TIER = "pro"


def _log_step(step: str, details: Optional[Dict[str, Any]] = None) -> None:
    log_structured(f"billing:{step}", details)


class StripeBillingService:
    """
    Thin wrapper over the Stripe API.

    Stripe objects are read by subscript so plain dicts work as well.
    """

    def __init__(self, secret_key: Optional[str], product_tiers: Optional[Mapping[str, str]] = None):
        self.secret_key = secret_key
        self.product_tiers = dict(product_tiers or {})

    def _require_key(self) -> str:
        if not self.secret_key:
            raise ValueError("STRIPE_SECRET_KEY is not configured. Please add it to config/.env")
        return self.secret_key

    def _find_customer_id(self, email: str) -> Optional[str]:
        customers = stripe.Customer.list(email=email, limit=1, api_key=self._require_key())
        if not customers["data"]:
            return None
        return customers["data"][0]["id"]

    def _active_subscription(self, customer_id: str) -> Optional[Any]:
        subscriptions = stripe.Subscription.list(
            customer=customer_id, status="active", limit=1, api_key=self._require_key()
        )
        if not subscriptions["data"]:
            return None
        return subscriptions["data"][0]

    def tier_for_product(self, product_id: Optional[str]) -> str:
        """Unknown products are treated as the default paid tier."""
        return self.product_tiers.get(product_id or "", DEFAULT_PAID_TIER)

    def get_subscription_status(self, email: str) -> Dict[str, Any]:
        """
        Returns:
            {"subscribed", "tier", "subscriptionEnd", "customerId"}
        """
        customer_id = self._find_customer_id(email)
        if customer_id is None:
            _log_step("no_customer")
            return {"subscribed": False, "tier": FREE_TIER, "subscriptionEnd": None, "customerId": None}

        _log_step("customer_found", {"customerId": customer_id})
        subscription = self._active_subscription(customer_id)
        if subscription is None:
            _log_step("no_active_subscription", {"customerId": customer_id})
            return {"subscribed": False, "tier": FREE_TIER, "subscriptionEnd": None, "customerId": customer_id}

        item = subscription["items"]["data"][0]
        product_id = item["price"]["product"]
        # Newer API versions carry the period on the item rather than the subscription
        period_end = subscription.get("current_period_end") or item.get("current_period_end")
        subscription_end = (
            datetime.fromtimestamp(period_end, tz=timezone.utc).isoformat() if period_end else None
        )
        tier = self.tier_for_product(product_id)
        _log_step("active_subscription", {"customerId": customer_id, "tier": tier})
        return {
            "subscribed": True,
            "tier": tier,
            "subscriptionEnd": subscription_end,
            "customerId": customer_id,
        }

    def create_checkout(self, price_id: str, user_id: str, email: str, origin: str) -> Dict[str, Any]:
        """
        Start a subscription checkout, or send existing subscribers to the
        billing portal instead.

        Returns:
            {"url", "isPortal"} plus "sessionId" for new checkouts
        """
        api_key = self._require_key()
        customer_id = self._find_customer_id(email)

        if customer_id is not None and self._active_subscription(customer_id) is not None:
            portal = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=f"{origin}/dashboard/settings",
                api_key=api_key,
            )
            _log_step("portal_redirect", {"customerId": customer_id})
            return {"url": portal["url"], "isPortal": True}

        params: Dict[str, Any] = {
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": f"{origin}/dashboard?checkout=success",
            "cancel_url": f"{origin}/pricing?checkout=cancelled",
            "metadata": {"user_id": user_id},
        }
        if customer_id is not None:
            params["customer"] = customer_id
        else:
            params["customer_email"] = email

        session = stripe.checkout.Session.create(api_key=api_key, **params)
        _log_step("checkout_created", {"sessionId": session["id"]})
        return {"url": session["url"], "sessionId": session["id"], "isPortal": False}
