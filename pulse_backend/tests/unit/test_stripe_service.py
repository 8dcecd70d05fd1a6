# pulse_backend/tests/unit/test_stripe_service.py
"""Unit tests for the Stripe billing service with the Stripe API stubbed out."""
import pytest
import stripe

from pulse_backend.services.stripe_service import StripeBillingService


class StripeStub:
    """Records calls and returns canned list/create payloads."""

    def __init__(self, monkeypatch, customers=(), subscriptions=()):
        self.calls = []
        self.customers = list(customers)
        self.subscriptions = list(subscriptions)
        monkeypatch.setattr(stripe.Customer, "list", self._record("customer.list", lambda: {"data": self.customers}))
        monkeypatch.setattr(stripe.Subscription, "list",
                            self._record("subscription.list", lambda: {"data": self.subscriptions}))
        monkeypatch.setattr(stripe.checkout.Session, "create",
                            self._record("checkout.create", lambda: {"id": "cs_123", "url": "https://checkout.test/cs_123"}))
        monkeypatch.setattr(stripe.billing_portal.Session, "create",
                            self._record("portal.create", lambda: {"url": "https://billing.test/portal"}))

    def _record(self, name, result):
        def call(**kwargs):
            self.calls.append((name, kwargs))
            return result()
        return call

    def kwargs(self, name):
        return next(kwargs for call, kwargs in self.calls if call == name)


def subscription(product="prod_elite", period_end=1_767_225_600):
    return {
        "id": "sub_1",
        "current_period_end": period_end,
        "items": {"data": [{"price": {"product": product}}]},
    }


@pytest.fixture
def billing():
    return StripeBillingService("sk_test_123", {"prod_pro": "pro", "prod_elite": "elite"})


class TestSubscriptionStatus:
    """Test subscription lookup."""

    def test_no_customer(self, billing, monkeypatch):
        stub = StripeStub(monkeypatch)
        status = billing.get_subscription_status("new@example.com")
        assert status == {"subscribed": False, "tier": "free", "subscriptionEnd": None, "customerId": None}
        assert stub.kwargs("customer.list")["email"] == "new@example.com"

    def test_customer_without_subscription(self, billing, monkeypatch):
        StripeStub(monkeypatch, customers=[{"id": "cus_1"}])
        status = billing.get_subscription_status("user@example.com")
        assert status["subscribed"] is False
        assert status["tier"] == "free"
        assert status["customerId"] == "cus_1"

    def test_active_subscription(self, billing, monkeypatch):
        stub = StripeStub(monkeypatch, customers=[{"id": "cus_1"}], subscriptions=[subscription()])
        status = billing.get_subscription_status("user@example.com")
        assert status["subscribed"] is True
        assert status["tier"] == "elite"
        assert status["subscriptionEnd"] == "2026-01-01T00:00:00+00:00"
        assert stub.kwargs("subscription.list")["status"] == "active"

    def test_unknown_product_is_pro(self, billing, monkeypatch):
        StripeStub(monkeypatch, customers=[{"id": "cus_1"}], subscriptions=[subscription("prod_legacy")])
        assert billing.get_subscription_status("user@example.com")["tier"] == "pro"

    def test_missing_secret_key(self):
        with pytest.raises(ValueError):
            StripeBillingService(None).get_subscription_status("user@example.com")


class TestCheckout:
    """Test checkout and portal sessions."""

    def test_new_customer_checkout(self, billing, monkeypatch):
        stub = StripeStub(monkeypatch)
        result = billing.create_checkout("price_123", "user-1", "new@example.com", "https://app.test")
        assert result == {"url": "https://checkout.test/cs_123", "sessionId": "cs_123", "isPortal": False}
        params = stub.kwargs("checkout.create")
        assert params["customer_email"] == "new@example.com"
        assert "customer" not in params
        assert params["line_items"] == [{"price": "price_123", "quantity": 1}]
        assert params["mode"] == "subscription"
        assert params["success_url"] == "https://app.test/dashboard?checkout=success"
        assert params["cancel_url"] == "https://app.test/pricing?checkout=cancelled"
        assert params["metadata"] == {"user_id": "user-1"}

    def test_existing_customer_reused(self, billing, monkeypatch):
        stub = StripeStub(monkeypatch, customers=[{"id": "cus_1"}])
        billing.create_checkout("price_123", "user-1", "user@example.com", "https://app.test")
        params = stub.kwargs("checkout.create")
        assert params["customer"] == "cus_1"
        assert "customer_email" not in params

    def test_subscriber_gets_portal(self, billing, monkeypatch):
        stub = StripeStub(monkeypatch, customers=[{"id": "cus_1"}], subscriptions=[subscription()])
        result = billing.create_checkout("price_123", "user-1", "user@example.com", "https://app.test")
        assert result == {"url": "https://billing.test/portal", "isPortal": True}
        assert stub.kwargs("portal.create")["return_url"] == "https://app.test/dashboard/settings"
        assert not any(name == "checkout.create" for name, _ in stub.calls)
