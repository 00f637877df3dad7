"""Read-only GST reference endpoints."""

from __future__ import annotations

from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from modules.tax.engine import format_rate, list_categories


class TaxCategoryListView(APIView):
    """GET /api/v1/tax/categories/: GST categories with their rates."""

    permission_classes = [AllowAny]

    def get(self, request: Request) -> Response:
        categories = [
            {
                "value": category["value"],
                "label": category["label"],
                "rate": str(category["rate"]),
                "display_rate": format_rate(category["rate"]),
            }
            for category in list_categories()
        ]
        return Response({"categories": categories})
