import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PortalError(Exception):
    """Base exception for messaging and announcement operations"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(PortalError):
    """Malformed or missing fields; the caller has to correct the request"""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class AuthenticationError(PortalError):
    """Missing, invalid or expired credential, or the identity is gone"""
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(PortalError):
    status_code = status.HTTP_404_NOT_FOUND


class StorageError(PortalError):
    """The message store failed an operation. Never retried internally."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    if isinstance(exc, StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc.detail}")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers,
    )


__all__ = [
    "PortalError",
    "ValidationError",
    "AuthenticationError",
    "NotFoundError",
    "StorageError",
    "portal_error_handler",
]
