"""Unit tests for RazorpayClient with a mocked ``requests`` session."""

from __future__ import annotations

from unittest import mock

import pytest
import requests

from modules.payments.exceptions import (
    ProviderNotConfigured,
    ProviderRejected,
    ProviderUnavailable,
)
from modules.payments.gateway import RazorpayClient

pytestmark = pytest.mark.unit


def _response(status_code=200, body=None, json_error=False):
    response = mock.Mock(status_code=status_code)
    if json_error:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = body if body is not None else {}
    return response


@pytest.fixture()
def session():
    return mock.Mock(spec=requests.Session)


@pytest.fixture()
def client(session):
    return RazorpayClient(
        "rzp_test_key", "secret", base_url="https://api.test/v1/", timeout=3, session=session
    )


class TestCreateOrder:
    def test_posts_order(self, client, session):
        session.request.return_value = _response(200, {"id": "order_1", "status": "created"})
        result = client.create_order(100000, "INR", "ORD-2026-000001", {"order_id": "x"})
        assert result["id"] == "order_1"
        session.request.assert_called_once_with(
            "POST",
            "https://api.test/v1/orders",
            auth=("rzp_test_key", "secret"),
            timeout=3,
            json={
                "amount": 100000,
                "currency": "INR",
                "receipt": "ORD-2026-000001",
                "notes": {"order_id": "x"},
            },
        )

    def test_not_configured_never_calls_provider(self, session):
        client = RazorpayClient("", "", session=session)
        assert not client.is_configured
        with pytest.raises(ProviderNotConfigured):
            client.create_order(100, "INR", "r")
        session.request.assert_not_called()


class TestFetchPayment:
    def test_quotes_payment_id(self, client, session):
        session.request.return_value = _response(200, {"id": "pay/1"})
        client.fetch_payment("pay/1")
        assert session.request.call_args.args == ("GET", "https://api.test/v1/payments/pay%2F1")


class TestErrorMapping:
    def test_connection_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("down")
        with pytest.raises(ProviderUnavailable):
            client.fetch_payment("pay_1")

    def test_timeout(self, client, session):
        session.request.side_effect = requests.Timeout("slow")
        with pytest.raises(ProviderUnavailable):
            client.fetch_payment("pay_1")

    def test_server_error(self, client, session):
        session.request.return_value = _response(502)
        with pytest.raises(ProviderUnavailable):
            client.fetch_payment("pay_1")

    def test_client_error_carries_provider_code(self, client, session):
        session.request.return_value = _response(
            400,
            {"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}},
        )
        with pytest.raises(ProviderRejected) as excinfo:
            client.fetch_payment("pay_1")
        assert excinfo.value.code == "BAD_REQUEST_ERROR"
        assert excinfo.value.detail == "The id provided does not exist"

    def test_client_error_without_body(self, client, session):
        session.request.return_value = _response(401, json_error=True)
        with pytest.raises(ProviderRejected) as excinfo:
            client.fetch_payment("pay_1")
        assert excinfo.value.code == "provider_rejected"

    def test_unreadable_success_body(self, client, session):
        session.request.return_value = _response(200, json_error=True)
        with pytest.raises(ProviderUnavailable):
            client.fetch_payment("pay_1")

    def test_non_object_success_body(self, client, session):
        session.request.return_value = _response(200, ["unexpected"])
        with pytest.raises(ProviderUnavailable):
            client.fetch_payment("pay_1")
