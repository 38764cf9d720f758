"""Middleware de logging por request."""

from __future__ import annotations

import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from lead_gateway.core.config import settings
from lead_gateway.core.logging import get_logger, resolve_log_level

logger = get_logger("lead_gateway.request")


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Propaga `x-request-id` y registra inicio y fin de cada request.

    Los prefijos de `request_log_skip_prefixes` (por defecto `/health`) no se
    registran. Respuestas 401 suben a WARNING para detectar secretos mal
    configurados en los portales o en la instancia.
    """

    def __init__(self, app, *, skip_prefixes: tuple[str, ...] | None = None, level: int | None = None):
        super().__init__(app)
        if skip_prefixes is None:
            skip_prefixes = settings.request_log_skip_prefixes
        self._skip_prefixes = tuple(skip_prefixes)
        self._level = level if level is not None else resolve_log_level(settings.request_log_level)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid4().hex
        quiet = request.url.path.startswith(self._skip_prefixes)
        fields: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": _client_ip(request),
        }
        if "source" in request.query_params:
            fields["source"] = request.query_params["source"]
        start = time.perf_counter()

        if not quiet:
            logger.log(self._level, "request.started", extra=fields)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request.failed", extra={**fields, "duration_ms": _elapsed(start)})
            raise

        response.headers["x-request-id"] = request_id
        if not quiet:
            status = response.status_code
            if status >= 500:
                level = logging.ERROR
            elif status == 401:
                level = logging.WARNING
            else:
                level = self._level
            logger.log(
                level,
                "request.completed",
                extra={**fields, "status_code": status, "duration_ms": _elapsed(start)},
            )
        return response


def _elapsed(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
