from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone

REQUEST_ID_HEADER = "X-Request-ID"

# Attributes passed through `extra=` that are copied into the JSON payload.
STRUCTURED_FIELDS = (
    "request_id",
    "path",
    "method",
    "status_code",
    "duration_ms",
    "remote_addr",
    "user_id",
    "role",
    "caller",
    "vendor_id",
    "vendor_code",
    "purchase_order_id",
    "old_status",
    "new_status",
    "line_items",
    "users_activated",
    "reason",
)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, carrying any known structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {key: getattr(record, key) for key in STRUCTURED_FIELDS if getattr(record, key, None) is not None}
        )

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def _caller_fields(request) -> dict[str, str | None]:
    user = getattr(request, "user", None)
    if user is None or not getattr(user, "is_authenticated", False):
        return {"user_id": None, "role": None, "vendor_id": None}
    vendor_id = getattr(user, "vendor_id", None)
    return {
        "user_id": str(user.id),
        "role": getattr(user, "role", None),
        "vendor_id": str(vendor_id) if vendor_id else None,
    }


class RequestLogMiddleware:
    """Tag each request with an ID and emit one access log line per response.

    Client errors log at WARNING and server errors at ERROR so denied or
    failing calls stand out from normal traffic.
    """

    def __init__(self, get_response):
        self.get_response = get_response
        self.logger = logging.getLogger("api.request")

    def __call__(self, request):
        started_at = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.request_id = request_id

        response = self.get_response(request)

        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        self.logger.log(
            level,
            "request_completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started_at) * 1000, 2),
                "remote_addr": request.META.get("REMOTE_ADDR"),
                "caller": "erp" if "HTTP_X_ERP_API_KEY" in request.META else None,
                **_caller_fields(request),
            },
        )
        response[REQUEST_ID_HEADER] = request_id
        return response
