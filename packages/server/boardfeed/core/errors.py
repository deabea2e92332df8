"""
Caller-visible domain errors.

Every error is an ``HTTPException`` with a stable machine-readable code, so
services can raise them directly and the API renders them uniformly as
``{"error": {"code", "message", "status"}}``.
"""

from __future__ import annotations

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class BoardfeedError(HTTPException):
    status_code = 400
    code = "BAD_REQUEST"
    default_message = "Bad request"

    def __init__(self, message: str | None = None):
        super().__init__(status_code=self.status_code, detail=message or self.default_message)

    @property
    def message(self) -> str:
        return self.detail


class NotAuthenticated(BoardfeedError):
    status_code = 401
    code = "NOT_AUTHENTICATED"
    default_message = "Authentication required"


class NotAuthorized(BoardfeedError):
    status_code = 403
    code = "NOT_AUTHORIZED"
    default_message = "Role insufficient for the requested change"


class TenantMismatch(BoardfeedError):
    status_code = 403
    code = "TENANT_MISMATCH"
    default_message = "Resource belongs to another organization"


class InvalidCursor(BoardfeedError):
    status_code = 400
    code = "INVALID_CURSOR"
    default_message = "Malformed pagination cursor"


class NotFound(BoardfeedError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class LastOwnerViolation(BoardfeedError):
    status_code = 409
    code = "LAST_OWNER_VIOLATION"
    default_message = "Cannot remove the last owner"


class SelfRemovalViolation(BoardfeedError):
    status_code = 409
    code = "SELF_REMOVAL_VIOLATION"
    default_message = "Owners cannot remove themselves"


def error_body(code: str, message: str, status: int) -> dict:
    return {"error": {"code": code, "message": message, "status": status}}


async def boardfeed_error_handler(request: Request, exc: BoardfeedError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.status_code),
    )
