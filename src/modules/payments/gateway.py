"""HTTP client for the payment provider (Razorpay REST API).

Only the two calls the order flow needs are implemented: creating a
provider order for a checkout and fetching a payment for the
authoritative verification step.

Error mapping:
- missing credentials -> ``ProviderNotConfigured``
- connection errors, timeouts, 5xx, unreadable bodies -> ``ProviderUnavailable``
- 4xx -> ``ProviderRejected`` carrying the provider's error code/description
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

import requests
import structlog

from modules.payments.exceptions import (
    ProviderNotConfigured,
    ProviderRejected,
    ProviderUnavailable,
)

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.razorpay.com/v1"
DEFAULT_TIMEOUT_SECONDS = 10.0


class RazorpayClient:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.key_id = key_id
        self._key_secret = key_secret
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self._key_secret)

    def ensure_configured(self) -> None:
        if not self.is_configured:
            logger.error("payment.provider_not_configured")
            raise ProviderNotConfigured()

    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a provider order for *amount* minor units."""
        return self._request(
            "POST",
            "/orders",
            json={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
            },
        )

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{quote(payment_id, safe='')}")

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        self.ensure_configured()
        log = logger.bind(method=method, path=path)
        try:
            response = self._session.request(
                method,
                f"{self._base_url}{path}",
                auth=(self.key_id, self._key_secret),
                timeout=self._timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            log.error("payment.provider_unreachable", error=str(exc))
            raise ProviderUnavailable() from exc

        if response.status_code >= 500:
            log.error("payment.provider_error", status_code=response.status_code)
            raise ProviderUnavailable()

        if response.status_code >= 400:
            code, description = _error_details(response)
            log.warning(
                "payment.provider_rejected",
                status_code=response.status_code,
                code=code,
            )
            raise ProviderRejected(description, code=code)

        try:
            body = response.json()
        except ValueError as exc:
            log.error("payment.provider_malformed_response")
            raise ProviderUnavailable() from exc
        if not isinstance(body, dict):
            log.error("payment.provider_malformed_response")
            raise ProviderUnavailable()
        return body


def _error_details(response: requests.Response) -> tuple[str, Optional[str]]:
    try:
        error = response.json().get("error") or {}
    except (ValueError, AttributeError):
        error = {}
    if not isinstance(error, dict):
        error = {}
    code = error.get("code") or ProviderRejected.default_code
    return code, error.get("description")
