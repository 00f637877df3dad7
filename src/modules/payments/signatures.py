"""HMAC-SHA256 signatures used by the payment provider.

- Client callback: ``hex(hmac(key_secret, "<order_id>|<payment_id>"))``.
- Webhook: ``hex(hmac(webhook_secret, raw_body))``.

Comparisons are constant-time.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Union


def sign(message: Union[bytes, str], secret: str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, received: Optional[str]) -> bool:
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def verify_payment_signature(
    provider_order_id: str,
    provider_payment_id: str,
    signature: Optional[str],
    secret: str,
) -> bool:
    expected = sign(f"{provider_order_id}|{provider_payment_id}", secret)
    return _matches(expected, signature)


def verify_webhook_signature(
    body: bytes, signature: Optional[str], secret: str
) -> bool:
    return _matches(sign(body, secret), signature)
