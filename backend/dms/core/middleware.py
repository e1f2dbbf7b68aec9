"""HTTP middleware: request correlation, access logging and body size limits."""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from dms.core.config import settings
from dms.core.logging import request_id_ctx_var

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Tags every log line of a request with its request id and logs the outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_ctx_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.bind(
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            ).exception("request_failed")
            raise
        else:
            logger.bind(
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            ).info("request_completed")
            response.headers.setdefault(REQUEST_ID_HEADER, request_id)
            return response
        finally:
            request_id_ctx_var.reset(token)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests whose declared Content-Length exceeds MAX_UPLOAD_BYTES."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > settings.MAX_UPLOAD_BYTES:
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content={"detail": "Request entity too large", "code": "payload_too_large"},
            )
        return await call_next(request)
