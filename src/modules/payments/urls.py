"""Payment URL configuration."""

from django.urls import path

from modules.payments.views import (
    CreatePaymentOrderView,
    DiscardPendingOrdersView,
    PaymentOrderStatusView,
    PaymentWebhookView,
    VerifyPaymentView,
)

urlpatterns = [
    path(
        "payments/create-order/",
        CreatePaymentOrderView.as_view(),
        name="payment-create-order",
    ),
    path("payments/verify/", VerifyPaymentView.as_view(), name="payment-verify"),
    path("payments/webhook/", PaymentWebhookView.as_view(), name="payment-webhook"),
    path(
        "payments/order-status/<str:order_id>/",
        PaymentOrderStatusView.as_view(),
        name="payment-order-status",
    ),
    path(
        "payments/pending/",
        DiscardPendingOrdersView.as_view(),
        name="payment-discard-pending",
    ),
]
