"""Order API views.

Exposes the ``OrderService`` via HTTP using DRF ViewSets.
Domain exceptions are caught explicitly and rendered through
``error_response``; the view never swallows generic exceptions.
"""

from __future__ import annotations

import pydantic
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.catalog.exceptions import InsufficientStock, ItemUnavailable
from modules.core.exceptions import (
    Forbidden,
    ValidationError,
    error_response,
    pydantic_error_response,
)
from modules.core.identity import actor_from_request
from modules.core.pagination import StandardResultsSetPagination
from modules.core.permissions import IsBuyer, IsSeller, IsSellerOrAdmin
from modules.orders.dtos import CreateOrderDTO, UpdateOrderStatusDTO
from modules.orders.exceptions import (
    DuplicateOrderNumber,
    InvalidTransition,
    OrderNotFound,
)
from modules.orders.filters import OrderFilter
from modules.orders.models import Order
from modules.orders.serializers import (
    CancelOrderSerializer,
    CreateOrderSerializer,
    OrderListSerializer,
    OrderSerializer,
    SellerOrderDetailSerializer,
    SellerOrderSerializer,
    UpdateOrderStatusSerializer,
)
from modules.orders.services import build_order_service


class OrderViewSet(GenericViewSet):
    """ViewSet for Order operations.

    Uses ``OrderService`` with injected repositories (DIP).
    Does **not** extend ``ModelViewSet``: all ORM access goes through
    the service/repository layer.
    """

    queryset = Order.objects.none()
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    filterset_class = OrderFilter
    ordering_fields = ["created_at", "total_price", "status"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_order_service()

    def get_permissions(self):
        if self.action in {"create", "list", "cancel"}:
            return [IsBuyer()]
        if self.action in {"seller", "seller_stats"}:
            return [IsSeller()]
        if self.action == "update_status":
            return [IsSellerOrAdmin()]
        return [IsAuthenticated()]

    def get_throttles(self) -> list[BaseThrottle]:
        """Scoped throttling per action."""
        throttle_scope: str | None
        if self.action == "create":
            throttle_scope = "order_creation"
        elif self.action in {"list", "retrieve", "seller"}:
            throttle_scope = "order_listing"
        else:
            throttle_scope = None
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    def get_queryset(self):
        if getattr(self, "swagger_fake_view", False):
            return Order.objects.none()
        actor = actor_from_request(self.request)
        if self.action == "seller":
            return self._service.list_orders_for_seller(actor)
        return self._service.list_orders_for_buyer(actor)

    def _paginated(self, request: Request, queryset, serializer_class) -> Response:
        queryset = self.filter_queryset(queryset)
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = serializer_class(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def _detail_response(self, order: Order, actor) -> Response:
        """Full order for its buyer and admins; sellers see only their lines."""
        if self._service.sees_whole_order(order, actor):
            return Response(OrderSerializer(order).data)
        return Response(SellerOrderDetailSerializer(order).data)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/orders/"""
        create_serializer = CreateOrderSerializer(data=request.data)
        create_serializer.is_valid(raise_exception=True)

        try:
            dto = CreateOrderDTO.model_validate(create_serializer.validated_data)
        except pydantic.ValidationError as exc:
            return pydantic_error_response(exc)

        try:
            order = self._service.create_order(dto, actor_from_request(request))
        except (
            Forbidden,
            ItemUnavailable,
            InsufficientStock,
            ValidationError,
            DuplicateOrderNumber,
        ) as exc:
            return error_response(exc)

        out = OrderListSerializer(order)
        return Response(out.data, status=status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/

        The buyer's own orders.  Filtering (status, payment status, date
        range) is handled by ``OrderFilter``; results are paginated.
        """
        return self._paginated(request, self.get_queryset(), OrderListSerializer)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        actor = actor_from_request(request)
        try:
            order = self._service.get_order(pk, actor)
        except (OrderNotFound, Forbidden) as exc:
            return error_response(exc)
        return self._detail_response(order, actor)

    # ------------------------------------------------------------------
    # Status Update
    # ------------------------------------------------------------------

    @action(detail=True, methods=["put", "patch"], url_path="status")
    def update_status(self, request: Request, pk: str | None = None) -> Response:
        """PUT /api/v1/orders/{pk}/status/

        Sellers move their orders along the fulfilment state machine;
        admins may also mark orders delivered.
        """
        input_serializer = UpdateOrderStatusSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        dto = UpdateOrderStatusDTO.model_validate(input_serializer.validated_data)
        actor = actor_from_request(request)

        try:
            order = self._service.update_status(
                order_id=pk,
                new_status=dto.status,
                actor=actor,
                tracking_number=dto.tracking_number or None,
                reason=dto.reason or None,
            )
        except (OrderNotFound, Forbidden, InvalidTransition, ValidationError) as exc:
            return error_response(exc)

        if not self._service.sees_whole_order(order, actor):
            order = self._service.get_order(order.id, actor)
        return self._detail_response(order, actor)

    # ------------------------------------------------------------------
    # Cancel (dedicated action)
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post", "put"])
    def cancel(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/cancel/

        Cancels the buyer's order and restores any debited stock.
        """
        input_serializer = CancelOrderSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)

        try:
            order = self._service.cancel_order(
                order_id=pk,
                actor=actor_from_request(request),
                reason=input_serializer.validated_data["reason"] or None,
            )
        except (OrderNotFound, Forbidden, InvalidTransition) as exc:
            return error_response(exc)

        serializer = OrderSerializer(order)
        return Response(serializer.data)

    # ------------------------------------------------------------------
    # Seller views
    # ------------------------------------------------------------------

    @action(detail=False, methods=["get"])
    def seller(self, request: Request) -> Response:
        """GET /api/v1/orders/seller/

        Orders containing the seller's items, showing only those items.
        """
        return self._paginated(request, self.get_queryset(), SellerOrderSerializer)

    @action(detail=False, methods=["get"], url_path="seller/stats")
    def seller_stats(self, request: Request) -> Response:
        """GET /api/v1/orders/seller/stats/"""
        stats = self._service.seller_stats(actor_from_request(request).user_id)
        return Response(stats.model_dump(mode="json"))
