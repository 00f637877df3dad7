"""Integration tests for the checkout endpoint (COD orders).

Covers:
- Success 201: totals, GST snapshot, stock debit, cart cleared.
- Auth 401 / role 403.
- Validation 400: empty items, zero quantity, declared total mismatch.
- Business 409: unknown gem, out of stock, contact-for-price gem.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest

from modules.carts.models import Cart, CartItem
from modules.orders.constants import OrderStatus, PaymentMethod, PaymentStatus
from modules.orders.models import Order
from modules.tax.constants import TaxCategory
from tests.conftest import checkout_payload

pytestmark = pytest.mark.integration

URL = "/api/v1/orders/"


@pytest.fixture()
def buyer_client(client_for, buyer):
    return client_for(buyer)


def _errors(response):
    return {(error["attr"], error["code"]) for error in response.json()["errors"]}


# ---------------------------------------------------------------------------
# Success
# ---------------------------------------------------------------------------


class TestCreateOrderSuccess:
    def test_create_cod_order_returns_201(self, buyer_client, ruby, make_gem):
        rough = make_gem(name="Rough Garnet", price="500.00", category=TaxCategory.ROUGH_UNWORKED)
        response = buyer_client.post(
            URL, checkout_payload([(ruby, 2), (rough, 1)]), format="json"
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == OrderStatus.PENDING
        assert data["payment_status"] == PaymentStatus.PENDING
        assert data["payment_method"] == PaymentMethod.CASH_ON_DELIVERY
        assert Decimal(data["total_price"]) == Decimal("2500.00")
        assert Decimal(data["total_tax"]) == Decimal("39.22")
        assert data["order_number"].startswith("ORD-")

    def test_line_snapshot_and_breakdown_are_stored(self, buyer_client, ruby):
        response = buyer_client.post(URL, checkout_payload([(ruby, 3)]), format="json")
        order = Order.objects.get(id=response.json()["id"])

        item = order.items.get()
        assert item.gem_name == "Burmese Ruby"
        assert item.unit_price == Decimal("1000.00")
        assert item.tax_rate == Decimal("2")
        assert item.unit_price_before_tax == Decimal("980.39")
        assert item.unit_tax_amount == Decimal("19.61")
        assert item.line_total == Decimal("3000.00")
        assert order.tax_breakdown == [{"rate": "2", "amount": "58.83"}]
        assert order.shipping_address["city"] == "Bengaluru"

    def test_cod_order_debits_stock(self, buyer_client, ruby):
        buyer_client.post(URL, checkout_payload([(ruby, 2)]), format="json")
        ruby.refresh_from_db()
        assert ruby.stock == 3
        assert ruby.sales == 2

    def test_cod_order_clears_cart(self, buyer_client, buyer, ruby):
        cart = Cart.objects.create(user=buyer)
        CartItem.objects.create(cart=cart, gem=ruby, quantity=1)

        buyer_client.post(URL, checkout_payload([(ruby, 1)]), format="json")
        assert not CartItem.objects.filter(cart=cart).exists()

    def test_total_within_rounding_tolerance_is_accepted(self, buyer_client, ruby):
        response = buyer_client.post(
            URL, checkout_payload([(ruby, 2)], total="1999.99"), format="json"
        )
        assert response.status_code == 201
        assert Decimal(response.json()["total_price"]) == Decimal("2000.00")

    def test_address_line2_is_optional(self, buyer_client, ruby):
        payload = checkout_payload([(ruby, 1)])
        del payload["shipping_address"]["address_line2"]
        response = buyer_client.post(URL, payload, format="json")
        assert response.status_code == 201


# ---------------------------------------------------------------------------
# Authentication and roles
# ---------------------------------------------------------------------------


class TestCreateOrderAccess:
    def test_anonymous_gets_401(self, api_client, ruby):
        response = api_client.post(URL, checkout_payload([(ruby, 1)]), format="json")
        assert response.status_code == 401
        assert response.json()["type"] == "client_error"
        assert response.json()["errors"][0]["code"] == "not_authenticated"

    def test_seller_cannot_checkout(self, client_for, seller, ruby):
        response = client_for(seller).post(URL, checkout_payload([(ruby, 1)]), format="json")
        assert response.status_code == 403
        assert response.json()["errors"][0]["code"] == "permission_denied"
        assert Order.objects.count() == 0


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestCreateOrderValidation:
    def test_empty_items(self, buyer_client, ruby):
        payload = checkout_payload([(ruby, 1)])
        payload["items"] = []
        response = buyer_client.post(URL, payload, format="json")
        assert response.status_code == 400
        assert response.json()["type"] == "validation_error"
        assert "items" in {attr for attr, _ in _errors(response)}

    def test_zero_quantity(self, buyer_client, ruby):
        payload = checkout_payload([(ruby, 1)])
        payload["items"][0]["quantity"] = 0
        response = buyer_client.post(URL, payload, format="json")
        assert response.status_code == 400
        assert "items.0.quantity" in {attr for attr, _ in _errors(response)}

    def test_missing_shipping_field(self, buyer_client, ruby):
        payload = checkout_payload([(ruby, 1)])
        del payload["shipping_address"]["city"]
        response = buyer_client.post(URL, payload, format="json")
        assert response.status_code == 400
        assert ("shipping_address.city", "required") in _errors(response)

    def test_declared_total_mismatch(self, buyer_client, ruby):
        response = buyer_client.post(
            URL, checkout_payload([(ruby, 1)], total="900.00"), format="json"
        )
        assert response.status_code == 400
        assert ("total_price", "total_mismatch") in _errors(response)
        ruby.refresh_from_db()
        assert ruby.stock == 5

    def test_malformed_json(self, buyer_client):
        response = buyer_client.post(URL, data="{", content_type="application/json")
        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "parse_error"


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class TestCreateOrderAvailability:
    def test_unknown_gem(self, buyer_client, ruby):
        payload = checkout_payload([(ruby, 1)])
        payload["items"][0]["gem_id"] = str(uuid4())
        response = buyer_client.post(URL, payload, format="json")
        assert response.status_code == 409
        assert ("items", "item_unavailable") in _errors(response)

    def test_quantity_above_stock(self, buyer_client, ruby):
        response = buyer_client.post(URL, checkout_payload([(ruby, 6)]), format="json")
        assert response.status_code == 409
        assert response.json()["errors"][0]["code"] == "item_unavailable"
        assert Order.objects.count() == 0

    def test_contact_for_price_gem(self, buyer_client, make_gem, ruby):
        on_request = make_gem(name="Padparadscha", price=None, contact_for_price=True)
        payload = checkout_payload([(ruby, 1)])
        payload["items"].append({"gem_id": str(on_request.id), "quantity": 1})
        response = buyer_client.post(URL, payload, format="json")
        assert response.status_code == 409
        ruby.refresh_from_db()
        assert ruby.stock == 5
