"""Shared error taxonomy and the API error format.

Every error body produced by the API has the same shape::

    {"type": "validation_error" | "client_error" | "server_error",
     "errors": [{"code": "...", "detail": "...", "attr": "<field>|null"}]}

Domain exceptions carry their HTTP status and error code so views can
catch them explicitly and hand them to :func:`error_response`.  Anything
DRF raises on its own (authentication, parsing, throttling, serializer
validation) is normalised by :func:`api_exception_handler`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.settings import api_settings
from rest_framework.views import exception_handler

logger = structlog.get_logger(__name__)


class DomainError(Exception):
    """Base class for errors raised by the service layer."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "error"
    default_detail: str = "Request could not be processed."

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        attr: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        self.detail = detail or self.default_detail
        self.attr = attr
        self.code = code or self.default_code
        super().__init__(self.detail)


class ValidationError(DomainError):
    """Malformed input, reported with the offending field in ``attr``."""

    default_code = "invalid"
    default_detail = "Invalid input."


class Unauthorized(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "not_authenticated"
    default_detail = "Authentication credentials were not provided."


class Forbidden(DomainError):
    """Role or ownership mismatch."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "permission_denied"
    default_detail = "You do not have permission to perform this action."


class ServiceUnavailable(DomainError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "service_unavailable"
    default_detail = "Service temporarily unavailable, try again later."


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def _error_type(status_code: int, is_validation: bool = False) -> str:
    if is_validation:
        return "validation_error"
    if status_code >= 500:
        return "server_error"
    return "client_error"


def build_error_body(
    errors: List[Dict[str, Any]], status_code: int, is_validation: bool = False
) -> Dict[str, Any]:
    return {"type": _error_type(status_code, is_validation), "errors": errors}


def error_response(exc: DomainError) -> Response:
    """Translate a caught domain exception into the standard error body."""
    body = build_error_body(
        [{"code": exc.code, "detail": exc.detail, "attr": exc.attr}],
        exc.status_code,
        is_validation=isinstance(exc, ValidationError),
    )
    return Response(body, status=exc.status_code)


def pydantic_error_response(exc: Any) -> Response:
    """Translate a ``pydantic.ValidationError`` raised while building a DTO."""
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "__root__"]
        errors.append(
            {
                "code": error.get("type", "invalid"),
                "detail": error.get("msg", "Invalid input."),
                "attr": ".".join(loc) or None,
            }
        )
    return Response(
        build_error_body(errors, status.HTTP_400_BAD_REQUEST, is_validation=True),
        status=status.HTTP_400_BAD_REQUEST,
    )


def _flatten_validation_detail(
    detail: Any, prefix: Optional[str] = None
) -> List[Dict[str, Any]]:
    if isinstance(detail, dict):
        errors: List[Dict[str, Any]] = []
        for key, value in detail.items():
            if key == api_settings.NON_FIELD_ERRORS_KEY:
                attr = prefix
            else:
                attr = f"{prefix}.{key}" if prefix else str(key)
            errors.extend(_flatten_validation_detail(value, attr))
        return errors
    if isinstance(detail, list):
        errors = []
        for index, value in enumerate(detail):
            if isinstance(value, (dict, list)):
                errors.extend(
                    _flatten_validation_detail(
                        value, f"{prefix}.{index}" if prefix else str(index)
                    )
                )
            else:
                errors.extend(_flatten_validation_detail(value, prefix))
        return errors
    code = getattr(detail, "code", None) or "invalid"
    return [{"code": code, "detail": str(detail), "attr": prefix}]


def api_exception_handler(exc: Exception, context: Dict[str, Any]) -> Optional[Response]:
    """DRF ``EXCEPTION_HANDLER`` producing the standard error body."""
    if isinstance(exc, DomainError):
        logger.info(
            "api.domain_error",
            error=exc.__class__.__name__,
            code=exc.code,
            status_code=exc.status_code,
        )
        return error_response(exc)

    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, drf_exceptions.ValidationError):
        errors = _flatten_validation_detail(exc.detail)
        response.data = build_error_body(
            errors, response.status_code, is_validation=True
        )
        return response

    if isinstance(exc, drf_exceptions.APIException):
        detail = exc.detail
        if isinstance(detail, (dict, list)):
            errors = _flatten_validation_detail(detail)
        else:
            errors = [
                {
                    "code": getattr(detail, "code", None) or exc.default_code,
                    "detail": str(detail),
                    "attr": None,
                }
            ]
        response.data = build_error_body(errors, response.status_code)
        return response

    # Django's Http404 / PermissionDenied, already converted by DRF.
    detail = response.data.get("detail", "") if isinstance(response.data, dict) else ""
    code = "not_found" if response.status_code == 404 else "permission_denied"
    response.data = build_error_body(
        [{"code": code, "detail": str(detail), "attr": None}], response.status_code
    )
    return response
