"""
Exception handlers translating domain errors into HTTP responses.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from connectors.oauth_state import InvalidStateError
from core.errors import (
    ConfigurationError,
    DecryptionError,
    EmptyResult,
    InvalidSourceError,
    NotConnectedError,
    RemoteApiError,
)

logger = logging.getLogger(__name__)

_PASSTHROUGH_STATUSES = {400, 403, 404}


def remote_status(exc: RemoteApiError) -> int:
    if exc.status_code in _PASSTHROUGH_STATUSES:
        return exc.status_code
    return status.HTTP_502_BAD_GATEWAY


def empty_result(outcome: EmptyResult) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=outcome.reason)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConfigurationError)
    async def _configuration(request: Request, exc: ConfigurationError):
        logger.error("Configuration error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"error": str(exc)})

    @app.exception_handler(NotConnectedError)
    async def _not_connected(request: Request, exc: NotConnectedError):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Not connected to SharePoint. Please connect first.", "requiresAuth": True},
        )

    @app.exception_handler(DecryptionError)
    async def _decryption(request: Request, exc: DecryptionError):
        logger.error("Stored token unreadable on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Stored credentials are unreadable. Please reconnect.", "requiresAuth": True},
        )

    @app.exception_handler(RemoteApiError)
    async def _remote(request: Request, exc: RemoteApiError):
        return JSONResponse(status_code=remote_status(exc), content={"error": exc.message})

    @app.exception_handler(InvalidSourceError)
    async def _invalid_source(request: Request, exc: InvalidSourceError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(InvalidStateError)
    async def _invalid_state(request: Request, exc: InvalidStateError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(FileNotFoundError)
    async def _not_found(request: Request, exc: FileNotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})
