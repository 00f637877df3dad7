"""Payment API views.

Thin adapters over ``PaymentService``.  Domain exceptions are caught
explicitly and rendered through ``error_response``.
"""

from __future__ import annotations

import pydantic
import structlog
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from modules.catalog.exceptions import InsufficientStock, ItemUnavailable
from modules.core.exceptions import (
    Forbidden,
    ValidationError,
    error_response,
    pydantic_error_response,
)
from modules.core.identity import actor_from_request
from modules.core.permissions import IsBuyer
from modules.orders.exceptions import DuplicateOrderNumber, OrderNotFound
from modules.orders.serializers import OrderListSerializer
from modules.payments.dtos import CreatePaymentIntentDTO, VerifyPaymentDTO
from modules.payments.exceptions import (
    PaymentVerificationFailed,
    ProviderNotConfigured,
    ProviderRejected,
    ProviderUnavailable,
    WebhookSignatureInvalid,
)
from modules.payments.serializers import (
    CreatePaymentIntentSerializer,
    PaymentStatusSerializer,
    VerifyPaymentSerializer,
)
from modules.payments.services import build_payment_service

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"


class _PaymentView(APIView):
    permission_classes = [IsBuyer]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_payment_service()


class CreatePaymentOrderView(_PaymentView):
    """POST /api/v1/payments/create-order/"""

    throttle_scope = "payment"

    def post(self, request: Request) -> Response:
        serializer = CreatePaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            dto = CreatePaymentIntentDTO.model_validate(serializer.validated_data)
        except pydantic.ValidationError as exc:
            return pydantic_error_response(exc)

        try:
            intent = self._service.create_payment_intent(
                dto, actor_from_request(request)
            )
        except (
            Forbidden,
            ValidationError,
            ItemUnavailable,
            InsufficientStock,
            DuplicateOrderNumber,
            ProviderNotConfigured,
            ProviderRejected,
            ProviderUnavailable,
        ) as exc:
            return error_response(exc)

        return Response(
            {
                "order": OrderListSerializer(intent.order).data,
                "provider_order": intent.provider_order,
                "key_id": intent.key_id,
            },
            status=status.HTTP_201_CREATED,
        )


class VerifyPaymentView(_PaymentView):
    """POST /api/v1/payments/verify/"""

    throttle_scope = "payment"

    def post(self, request: Request) -> Response:
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dto = VerifyPaymentDTO.model_validate(serializer.validated_data)

        try:
            order = self._service.verify_client_callback(
                dto, actor_from_request(request)
            )
        except (
            OrderNotFound,
            Forbidden,
            ValidationError,
            PaymentVerificationFailed,
            ProviderNotConfigured,
            ProviderUnavailable,
        ) as exc:
            return error_response(exc)

        return Response({"verified": True, "order": OrderListSerializer(order).data})


class PaymentWebhookView(APIView):
    """POST /api/v1/payments/webhook/

    Called by the provider, authenticated by the body signature only.
    The raw body is read before DRF parses anything so the signature is
    checked over the exact bytes received.
    """

    authentication_classes: list = []
    permission_classes = [AllowAny]
    throttle_classes: list = []

    def post(self, request: Request) -> Response:
        service = build_payment_service()
        try:
            result = service.apply_webhook_event(
                request.body, request.headers.get(SIGNATURE_HEADER)
            )
        except (
            WebhookSignatureInvalid,
            ValidationError,
            ProviderNotConfigured,
        ) as exc:
            return error_response(exc)
        return Response(result)


class PaymentOrderStatusView(_PaymentView):
    """GET /api/v1/payments/order-status/{order_id}/"""

    def get(self, request: Request, order_id: str) -> Response:
        try:
            order = self._service.payment_status(order_id, actor_from_request(request))
        except (OrderNotFound, Forbidden) as exc:
            return error_response(exc)
        return Response(PaymentStatusSerializer(order).data)


class DiscardPendingOrdersView(_PaymentView):
    """DELETE /api/v1/payments/pending/

    Deletes every unpaid ONLINE order of the buyer.
    """

    def delete(self, request: Request) -> Response:
        deleted = self._service.discard_pending(actor_from_request(request))
        logger.info(
            "payment.pending_discarded",
            user_id=request.user.pk,
            deleted=deleted,
        )
        return Response({"deleted_count": deleted})
