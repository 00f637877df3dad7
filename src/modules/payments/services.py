"""Payment reconciliation service.

Bridges checkout to the payment provider and converges both payment
confirmation channels (the buyer's client callback and the provider
webhook) on ``OrderService.mark_paid``, which applies the paid effect
exactly once.

No method here opens a transaction around a provider call: the order is
committed before the provider is contacted, and every state change after
a provider response is its own short transaction in ``OrderService``.
"""

from __future__ import annotations

import json
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import structlog
from django.conf import settings
from django.utils import timezone

from modules.core.exceptions import Forbidden, ValidationError
from modules.orders.constants import PaymentStatus
from modules.orders.exceptions import OrderNotFound
from modules.payments.dtos import PaymentIntentDTO
from modules.payments.exceptions import (
    PaymentVerificationFailed,
    ProviderNotConfigured,
    ProviderRejected,
    ProviderUnavailable,
    WebhookSignatureInvalid,
)
from modules.payments.signatures import (
    verify_payment_signature,
    verify_webhook_signature,
)

if TYPE_CHECKING:
    from modules.core.identity import Actor
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.services import OrderService
    from modules.payments.dtos import CreatePaymentIntentDTO, VerifyPaymentDTO
    from modules.payments.gateway import RazorpayClient

logger = structlog.get_logger(__name__)

MIN_AMOUNT_MINOR = 100
SUCCESSFUL_PAYMENT_STATES = frozenset({"captured", "authorized"})

WebhookHandler = Callable[[Dict[str, Any]], bool]


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentService:
    """Application service for online payments.

    Receives its collaborators via constructor injection (DIP).
    """

    def __init__(
        self,
        order_service: OrderService,
        order_repository: IOrderRepository,
        client: RazorpayClient,
        *,
        key_secret: str,
        webhook_secret: str = "",
        currency: str = "INR",
        retention_minutes: int = 60,
    ) -> None:
        self._orders = order_service
        self._order_repo = order_repository
        self._client = client
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret or key_secret
        self._currency = currency
        self._retention = timedelta(minutes=retention_minutes)
        self._webhook_handlers: Dict[str, WebhookHandler] = {
            "payment.captured": self._on_payment_captured,
            "payment.failed": self._on_payment_failed,
            "refund.processed": self._on_refund_processed,
        }

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def create_payment_intent(
        self, dto: CreatePaymentIntentDTO, actor: Actor
    ) -> PaymentIntentDTO:
        """Create an ONLINE order and the matching provider order.

        Stock is not debited here; it is debited when the payment is
        confirmed.  If the provider cannot be reached the order stays
        PENDING without a provider id and the buyer can retry checkout.

        Raises:
            ValidationError: amount below the provider minimum (100 paise).
            ProviderNotConfigured: credentials are missing.
            ProviderUnavailable / ProviderRejected: provider order failed.
            plus everything ``OrderService.create_order`` raises.
        """
        if to_minor_units(dto.total_price) < MIN_AMOUNT_MINOR:
            raise ValidationError(
                "Order amount must be at least ₹1.00.",
                attr="total_price",
                code="min_amount",
            )
        self._client.ensure_configured()

        self.purge_stale(user_id=actor.user_id)
        order = self._orders.create_order(dto.to_order_dto(), actor)
        log = logger.bind(order_id=str(order.id), order_number=order.order_number)

        try:
            provider_order = self._client.create_order(
                amount=order.amount_minor,
                currency=self._currency,
                receipt=order.order_number,
                notes={
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "user_id": str(actor.user_id),
                },
            )
        except (ProviderUnavailable, ProviderRejected) as exc:
            log.warning("payment.intent_failed", error=exc.code)
            raise

        self._order_repo.update_payment_fields(
            order.id, provider_order_id=provider_order["id"]
        )
        order.provider_order_id = provider_order["id"]
        log.info("payment.intent_created", provider_order_id=provider_order["id"])

        return PaymentIntentDTO(
            order=order,
            provider_order={
                "id": provider_order["id"],
                "amount": provider_order.get("amount", order.amount_minor),
                "currency": provider_order.get("currency", self._currency),
                "receipt": provider_order.get("receipt", order.order_number),
                "status": provider_order.get("status", "created"),
            },
            key_id=self._client.key_id,
        )

    # ------------------------------------------------------------------
    # Client callback
    # ------------------------------------------------------------------

    def verify_client_callback(self, dto: VerifyPaymentDTO, actor: Actor) -> Order:
        """Verify the buyer's payment callback and apply the paid effect.

        An already completed order is returned as-is.  Any verification
        failure marks the payment FAILED (unless it has completed in the
        meantime) before raising.

        Raises:
            OrderNotFound, Forbidden, PaymentVerificationFailed,
            ProviderUnavailable, ProviderNotConfigured.
        """
        order = self._order_repo.get_by_id(dto.order_id)
        if not order:
            raise OrderNotFound(f"Order {dto.order_id} not found.")
        if order.user_id != actor.user_id:
            raise Forbidden("Not authorized to verify this payment.")

        log = logger.bind(
            order_id=str(order.id),
            provider_order_id=dto.provider_order_id,
            provider_payment_id=dto.provider_payment_id,
        )

        if order.payment_status == PaymentStatus.COMPLETED:
            log.info("payment.already_verified")
            return order
        if not order.is_online:
            raise ValidationError(
                "Order is not an online payment order.", attr="order_id"
            )
        if order.payment_status == PaymentStatus.REFUNDED:
            raise PaymentVerificationFailed("Payment was already refunded.")

        if not order.provider_order_id or order.provider_order_id != dto.provider_order_id:
            log.warning("payment.provider_order_mismatch")
            self._fail(order, "Provider order id does not match")
            raise PaymentVerificationFailed(
                "Payment verification failed - order mismatch."
            )
        if not verify_payment_signature(
            dto.provider_order_id,
            dto.provider_payment_id,
            dto.signature,
            self._key_secret,
        ):
            log.warning("payment.signature_mismatch")
            self._fail(order, "Invalid payment signature")
            raise PaymentVerificationFailed(
                "Payment verification failed - invalid signature."
            )

        try:
            payment = self._client.fetch_payment(dto.provider_payment_id)
        except ProviderUnavailable:
            log.error("payment.verification_provider_unavailable")
            self._fail(order, "Provider unavailable during verification")
            raise
        except ProviderRejected as exc:
            self._fail(order, f"Provider rejected payment lookup: {exc.code}")
            raise PaymentVerificationFailed(
                "Payment could not be found at the provider."
            ) from exc

        payment_status = payment.get("status")
        if payment_status not in SUCCESSFUL_PAYMENT_STATES:
            log.warning("payment.not_captured", payment_status=payment_status)
            self._fail(order, f"Payment status is {payment_status}")
            raise PaymentVerificationFailed(
                f"Payment not captured (status: {payment_status})."
            )
        if payment.get("order_id") != order.provider_order_id:
            log.warning("payment.belongs_to_other_order")
            self._fail(order, "Payment belongs to another provider order")
            raise PaymentVerificationFailed(
                "Payment verification failed - order mismatch."
            )
        if payment.get("amount") != order.amount_minor:
            log.warning(
                "payment.amount_mismatch",
                paid=payment.get("amount"),
                expected=order.amount_minor,
            )
            self._fail(order, "Paid amount does not match order total")
            raise PaymentVerificationFailed(
                "Payment verification failed - amount mismatch."
            )

        order, applied = self._orders.mark_paid(
            order.id, dto.provider_payment_id, dto.signature
        )
        log.info("payment.verified", applied=applied)
        return order

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def apply_webhook_event(
        self, raw_body: bytes, signature: Optional[str]
    ) -> Dict[str, Any]:
        """Verify and apply a provider webhook delivery.

        Deliveries are at-least-once; every handler is idempotent.  Events
        for unknown orders and unhandled event types are acknowledged so
        the provider stops redelivering them.

        Raises:
            ProviderNotConfigured: no secret to verify against.
            WebhookSignatureInvalid: missing or wrong signature.
            ValidationError: body is not a JSON object.
        """
        if not self._webhook_secret:
            raise ProviderNotConfigured()
        if not verify_webhook_signature(raw_body, signature, self._webhook_secret):
            logger.warning("payment.webhook_signature_invalid")
            raise WebhookSignatureInvalid()

        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValidationError("Malformed webhook payload.", attr="body") from exc
        if not isinstance(event, dict):
            raise ValidationError("Malformed webhook payload.", attr="body")

        event_type = event.get("event")
        log = logger.bind(webhook_event=event_type)
        handler = self._webhook_handlers.get(event_type)
        if handler is None:
            log.info("payment.webhook_ignored")
            return {"accepted": True, "event": event_type, "applied": False}

        payload = event.get("payload")
        applied = handler(payload if isinstance(payload, dict) else {})
        log.info("payment.webhook_processed", applied=applied)
        return {"accepted": True, "event": event_type, "applied": applied}

    def _on_payment_captured(self, payload: Dict[str, Any]) -> bool:
        payment = _entity(payload, "payment")
        order = self._resolve_order(payment)
        if order is None:
            return False
        if payment.get("amount") != order.amount_minor:
            logger.error(
                "payment.webhook_amount_mismatch",
                order_id=str(order.id),
                paid=payment.get("amount"),
                expected=order.amount_minor,
            )
            return False
        _, applied = self._orders.mark_paid(order.id, payment.get("id") or "")
        return applied

    def _on_payment_failed(self, payload: Dict[str, Any]) -> bool:
        payment = _entity(payload, "payment")
        order = self._resolve_order(payment)
        if order is None:
            return False
        reason = payment.get("error_description") or "Payment failed at provider"
        _, applied = self._orders.mark_payment_failed(order.id, reason=reason)
        return applied

    def _on_refund_processed(self, payload: Dict[str, Any]) -> bool:
        order = self._resolve_order(_entity(payload, "payment"))
        if order is None:
            order = self._resolve_order(_entity(payload, "refund"))
        if order is None:
            return False
        _, applied = self._orders.mark_refunded(order.id)
        return applied

    def _resolve_order(self, entity: Dict[str, Any]) -> Optional[Order]:
        """Find the order from the notes set at checkout, else the provider order id."""
        if not entity:
            return None
        notes = entity.get("notes")
        order = None
        if isinstance(notes, dict) and notes.get("order_id"):
            order = self._order_repo.get_by_id(notes["order_id"])
        if order is None:
            order = self._order_repo.find_by_provider_order_id(entity.get("order_id") or "")
        if order is None:
            logger.warning(
                "payment.webhook_unknown_order",
                provider_entity_id=entity.get("id"),
            )
        return order

    # ------------------------------------------------------------------
    # Buyer queries / housekeeping
    # ------------------------------------------------------------------

    def payment_status(self, order_id: Any, actor: Actor) -> Order:
        order = self._order_repo.get_by_id(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        if order.user_id != actor.user_id:
            raise Forbidden("Not authorized to view this order.")
        return order

    def discard_pending(self, actor: Actor) -> int:
        """Delete all of the buyer's unpaid ONLINE orders."""
        return self._order_repo.purge_stale_online(None, user_id=actor.user_id)

    def purge_stale(self, user_id: Any = None) -> int:
        """Delete unpaid ONLINE orders older than the retention window."""
        cutoff = timezone.now() - self._retention
        return self._order_repo.purge_stale_online(cutoff, user_id=user_id)

    def _fail(self, order: Order, reason: str) -> None:
        self._orders.mark_payment_failed(order.id, reason=reason)


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    wrapper = payload.get(name)
    if not isinstance(wrapper, dict):
        return {}
    entity = wrapper.get("entity")
    return entity if isinstance(entity, dict) else {}


def build_payment_service() -> PaymentService:
    from modules.orders.repositories import OrderDjangoRepository
    from modules.orders.services import build_order_service
    from modules.payments.gateway import RazorpayClient

    return PaymentService(
        order_service=build_order_service(),
        order_repository=OrderDjangoRepository(),
        client=RazorpayClient(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            base_url=settings.RAZORPAY_API_URL,
            timeout=settings.RAZORPAY_TIMEOUT_SECONDS,
        ),
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
        currency=settings.PAYMENT_CURRENCY,
        retention_minutes=settings.PENDING_PAYMENT_RETENTION_MINUTES,
    )
