"""Middleware: API key authentication and pipeline error translation."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from classifyx.errors import ClassificationError

if TYPE_CHECKING:
    from fastapi import FastAPI

    from classifyx.config import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def _get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against the configured API key.

    If no API key is configured (CLASSIFYX_API_KEY not set), all requests pass.
    If configured, requests must include 'Authorization: Bearer <key>'.
    """
    settings = _get_settings_from_request(request)
    if settings.api_key is None:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def classification_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map a pipeline failure to its HTTP status with the failing stage attached."""
    if not isinstance(exc, ClassificationError):
        raise exc
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Classification failed at %s: %s", exc.stage, exc.detail)
    else:
        logger.info("Rejected request at %s: %s", exc.stage, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "stage": exc.stage},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the pipeline error handler on the application."""
    app.add_exception_handler(ClassificationError, classification_error_handler)
