"""Typed errors raised by the core; routers map them to HTTP status codes."""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse


class NeedledropError(Exception):
    """Base class for domain errors."""

    reason: str = "error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class ValidationFailed(NeedledropError):
    reason = "validation_failed"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFound(NeedledropError):
    reason = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(NeedledropError):
    reason = "conflict"
    status_code = status.HTTP_409_CONFLICT


class Forbidden(NeedledropError):
    reason = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


async def handle_domain_error(request: Request, exc: NeedledropError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.reason})
