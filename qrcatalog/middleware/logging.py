from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

ACCESS_LOGGER_NAME = "qrcatalog.access"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one JSON access-log line per request."""

    def __init__(self, app, logger: logging.Logger | None = None) -> None:
        super().__init__(app)
        self.logger = logger if logger is not None else logging.getLogger(ACCESS_LOGGER_NAME)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        request.state.request_id = request_id
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self._log(self._payload(request, request_id, 500, start, event="http_request_error"), level=logging.ERROR)
            raise

        response.headers.setdefault("x-request-id", request_id)
        self._log(self._payload(request, request_id, response.status_code, start))
        return response

    @staticmethod
    def _payload(request: Request, request_id: str, status: int, start: float, event: str = "http_request") -> dict[str, object]:
        payload: dict[str, object] = {
            "event": event,
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "duration_ms": int((time.perf_counter() - start) * 1000),
        }
        owner_id = getattr(request.state, "owner_id", None)
        if owner_id:
            payload["owner_id"] = owner_id
        return payload

    def _log(self, payload: dict[str, object], level: int = logging.INFO) -> None:
        self.logger.log(level, json.dumps(payload, separators=(",", ":")))
