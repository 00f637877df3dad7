from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import pytest
from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.cache import cache
from rest_framework.test import APIClient

from modules.catalog.models import Gem
from modules.core.identity import SELLER_GROUP, actor_from_user
from modules.orders.constants import PaymentMethod
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO, ShippingAddressDTO
from modules.orders.services import build_order_service
from modules.payments.exceptions import ProviderNotConfigured, ProviderRejected
from modules.payments.services import build_payment_service
from modules.payments.signatures import sign
from modules.tax.constants import TaxCategory
from modules.tax.engine import TaxableItem, summarize

User = get_user_model()

SHIPPING_ADDRESS: Dict[str, str] = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "address_line2": "Near Metro",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560001",
    "country": "India",
}


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_cache():
    """Throttle counters live in the cache; start every test from zero."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


# ---------------------------------------------------------------------------
# Users and actors
# ---------------------------------------------------------------------------


@pytest.fixture()
def seller_group():
    group, _ = Group.objects.get_or_create(name=SELLER_GROUP)
    return group


@pytest.fixture()
def buyer():
    return User.objects.create_user(username="buyer", password="testpass123")


@pytest.fixture()
def other_buyer():
    return User.objects.create_user(username="other-buyer", password="testpass123")


@pytest.fixture()
def seller(seller_group):
    user = User.objects.create_user(username="seller", password="testpass123")
    user.groups.add(seller_group)
    return user


@pytest.fixture()
def other_seller(seller_group):
    user = User.objects.create_user(username="other-seller", password="testpass123")
    user.groups.add(seller_group)
    return user


@pytest.fixture()
def admin_user():
    return User.objects.create_user(
        username="admin", password="testpass123", is_staff=True
    )


@pytest.fixture()
def buyer_actor(buyer):
    return actor_from_user(buyer)


@pytest.fixture()
def seller_actor(seller):
    return actor_from_user(seller)


@pytest.fixture()
def admin_actor(admin_user):
    return actor_from_user(admin_user)


@pytest.fixture()
def client_for():
    """Build an APIClient force-authenticated as the given user."""

    def _client(user) -> APIClient:
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    return _client


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_gem(seller):
    def _make(
        name: str = "Burmese Ruby",
        price: Optional[str] = "1000.00",
        stock: int = 5,
        category: Optional[str] = TaxCategory.CUT_POLISHED,
        owner=None,
        contact_for_price: bool = False,
    ) -> Gem:
        return Gem.objects.create(
            name=name,
            seller=owner or seller,
            price=Decimal(price) if price is not None else None,
            gst_category=category,
            stock=stock,
            contact_for_price=contact_for_price,
        )

    return _make


@pytest.fixture()
def ruby(make_gem):
    """Cut and polished (2% GST), listed at 1000.00, five in stock."""
    return make_gem()


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def expected_total(lines) -> Decimal:
    """Server-side total for ``[(gem, quantity), ...]``."""
    return summarize(
        TaxableItem(gem.price, quantity, gem.gst_category) for gem, quantity in lines
    ).total_with_tax


def checkout_payload(
    lines, payment_method=PaymentMethod.CASH_ON_DELIVERY, total=None
) -> Dict[str, Any]:
    """JSON body for the checkout endpoints."""
    return {
        "items": [{"gem_id": str(gem.id), "quantity": qty} for gem, qty in lines],
        "shipping_address": dict(SHIPPING_ADDRESS),
        "payment_method": payment_method,
        "total_price": str(total if total is not None else expected_total(lines)),
    }


@pytest.fixture()
def order_dto():
    def _build(lines, payment_method=PaymentMethod.CASH_ON_DELIVERY, total=None):
        return CreateOrderDTO(
            items=[CreateOrderItemDTO(gem_id=gem.id, quantity=qty) for gem, qty in lines],
            shipping_address=ShippingAddressDTO(**SHIPPING_ADDRESS),
            payment_method=payment_method,
            total_price=total if total is not None else expected_total(lines),
        )

    return _build


@pytest.fixture()
def order_service():
    return build_order_service()


# ---------------------------------------------------------------------------
# Payment provider
# ---------------------------------------------------------------------------


class FakeRazorpay:
    """In-memory stand-in for ``RazorpayClient`` with the same public surface."""

    def __init__(self, key_id: str = "rzp_test_key") -> None:
        self.key_id = key_id
        self.configured = True
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.payments: Dict[str, Dict[str, Any]] = {}
        self.create_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None

    @property
    def is_configured(self) -> bool:
        return self.configured

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ProviderNotConfigured()

    def create_order(self, amount, currency, receipt, notes=None):
        self.ensure_configured()
        if self.create_error is not None:
            raise self.create_error
        provider_order = {
            "id": f"order_test{len(self.orders) + 1}",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
            "notes": notes or {},
        }
        self.orders[provider_order["id"]] = provider_order
        return dict(provider_order)

    def fetch_payment(self, payment_id):
        self.ensure_configured()
        if self.fetch_error is not None:
            raise self.fetch_error
        if payment_id not in self.payments:
            raise ProviderRejected(
                "The id provided does not exist", code="BAD_REQUEST_ERROR"
            )
        return dict(self.payments[payment_id])

    def pay(
        self, provider_order_id, payment_id="pay_test1", status="captured", amount=None
    ):
        """Simulate the buyer paying at the provider; returns the payment entity."""
        provider_order = self.orders[provider_order_id]
        payment = {
            "id": payment_id,
            "entity": "payment",
            "order_id": provider_order_id,
            "amount": provider_order["amount"] if amount is None else amount,
            "currency": provider_order["currency"],
            "status": status,
            "notes": dict(provider_order["notes"]),
        }
        self.payments[payment_id] = payment
        return dict(payment)


@pytest.fixture()
def fake_provider(monkeypatch):
    provider = FakeRazorpay()
    monkeypatch.setattr(
        "modules.payments.gateway.RazorpayClient", lambda **kwargs: provider
    )
    return provider


@pytest.fixture()
def payment_service(fake_provider):
    return build_payment_service()


def callback_signature(provider_order_id: str, payment_id: str) -> str:
    return sign(f"{provider_order_id}|{payment_id}", settings.RAZORPAY_KEY_SECRET)


def webhook_delivery(event: str, **entities: Dict[str, Any]) -> Tuple[bytes, str]:
    """Signed webhook body: ``webhook_delivery("payment.captured", payment={...})``."""
    body = json.dumps(
        {
            "entity": "event",
            "event": event,
            "payload": {name: {"entity": entity} for name, entity in entities.items()},
        }
    ).encode("utf-8")
    return body, sign(body, settings.RAZORPAY_WEBHOOK_SECRET)
