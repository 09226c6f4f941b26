"""Middlewares personalizados del inbox."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.logging import get_logger
from app.core.security import mask_phone

logger = get_logger("app.request")

_CONVERSATION_SEGMENT = "conversations"


def _loggable_path(path: str) -> str:
    """Ruta con el handle del contacto enmascarado (`/inbox/conversations/{id}/...`)."""
    parts = path.split("/")
    for index, part in enumerate(parts[:-1]):
        if part == _CONVERSATION_SEGMENT:
            parts[index + 1] = mask_phone(parts[index + 1]) or ""
    return "/".join(parts)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Registra cada request del panel con un id de correlación."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid4().hex
        raw_path = request.url.path
        quiet = raw_path.startswith(settings.request_log_skip_prefixes)
        path = _loggable_path(raw_path)
        start = time.perf_counter()

        if not quiet:
            logger.debug(
                "request.started",
                extra={"request_id": request_id, "method": request.method, "path": path},
            )

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request.failed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
            raise

        response.headers["x-request-id"] = request_id
        if not quiet:
            operator = "token" if request.headers.get("authorization") else "anonymous"
            logger.info(
                "request.completed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                    "operator": operator,
                },
            )
        return response
