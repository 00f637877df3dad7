"""Payment domain exceptions.

Raised by ``PaymentService`` and the provider client; the API layer
renders them through ``modules.core.exceptions.error_response``.
"""

from __future__ import annotations

from rest_framework import status

from modules.core.exceptions import DomainError


class PaymentVerificationFailed(DomainError):
    """Signature mismatch or a provider-reported non-success."""

    default_code = "payment_verification_failed"
    default_detail = "Payment verification failed."


class WebhookSignatureInvalid(DomainError):
    default_code = "invalid_signature"
    default_detail = "Invalid webhook signature."


class ProviderRejected(DomainError):
    """The provider answered with a 4xx error; ``code`` carries its error code."""

    default_code = "provider_rejected"
    default_detail = "Payment provider rejected the request."


class ProviderUnavailable(DomainError):
    """Network error, timeout or 5xx from the provider.  Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "provider_unavailable"
    default_detail = "Payment provider is unavailable, please retry."


class ProviderNotConfigured(DomainError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "provider_not_configured"
    default_detail = "Online payments are not configured."
