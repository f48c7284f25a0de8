"""
Global middleware: per-request id and timing.
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

_QUIET_PATHS = {"/api/v1/health"}


def register_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        response.headers["X-Request-ID"] = request_id
        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "[%s] %s %s -> %d (%.3fs)",
                request_id, request.method, request.url.path, response.status_code, elapsed,
            )
        return response
