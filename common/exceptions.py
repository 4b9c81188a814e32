from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from django.db import IntegrityError
from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    NotAuthenticated,
    NotFound,
    PermissionDenied,
    Throttled,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."

# PostgreSQL SQLSTATE codes for constraint violations.
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"


class BadRequest(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request."
    default_code = "bad_request"


class Conflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Resource already exists."
    default_code = "conflict"


# Stable envelope codes for DRF exceptions whose default_code clients should not depend on.
EXCEPTION_CODE_MAP: dict[type[Exception], str] = {
    ValidationError: "validation_error",
    NotAuthenticated: "not_authenticated",
    AuthenticationFailed: "authentication_failed",
    PermissionDenied: "permission_denied",
    NotFound: "not_found",
    Throttled: "throttled",
}


def build_error_envelope(*, code: str, message: str, errors: Any = None, status_code: int) -> dict[str, Any]:
    return {"code": code, "message": message, "errors": errors, "status": status_code}


def translate_integrity_error(exc: IntegrityError) -> APIException:
    """Map a database constraint violation onto the API error it represents.

    PostgreSQL reports a SQLSTATE on the driver exception; other backends only
    describe the violation in the message text.
    """
    cause = exc.__cause__
    sqlstate = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    text = str(exc).lower()

    if sqlstate == UNIQUE_VIOLATION or "unique" in text:
        return Conflict("Duplicate entry")
    if sqlstate == FOREIGN_KEY_VIOLATION or "foreign key" in text:
        return BadRequest("Foreign key constraint violation")
    if sqlstate == CHECK_VIOLATION or "check constraint" in text:
        return BadRequest("Check constraint violation")
    return BadRequest("Database constraint violation")


@contextmanager
def translate_integrity_errors():
    try:
        yield
    except IntegrityError as exc:
        raise translate_integrity_error(exc) from exc


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    """Render every API error as ``{code, message, errors, status}``."""
    if isinstance(exc, IntegrityError):
        exc = translate_integrity_error(exc)

    response = drf_exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception("unhandled_api_exception view=%s", view.__class__.__name__ if view else "unknown")
        return Response(
            build_error_envelope(
                code="internal_server_error",
                message=GENERIC_SERVER_ERROR_MESSAGE,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    response.data = build_error_envelope(
        code=_error_code(exc),
        message=_error_message(exc, response.data),
        errors=_error_details(response.data),
        status_code=response.status_code,
    )
    return response


def _error_code(exc: Exception) -> str:
    for exception_type, code in EXCEPTION_CODE_MAP.items():
        if isinstance(exc, exception_type):
            return code
    return str(getattr(exc, "default_code", "api_error"))


def _error_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = data.get("detail") if isinstance(data, Mapping) else data if isinstance(data, str) else None
    if detail:
        return str(detail)
    if isinstance(exc, Throttled):
        return "Request was throttled."
    return str(getattr(exc, "detail", "Request failed."))


def _error_details(data: Any) -> Any:
    """Field-level errors, or ``None`` when the response only carried a detail string."""
    if isinstance(data, Mapping):
        return None if set(data.keys()) == {"detail"} else data
    if isinstance(data, Sequence) and not isinstance(data, str):
        return data
    return None
