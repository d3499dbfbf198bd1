"""
User-facing error taxonomy.

Every failing check raises `OrgError`; the handlers registered in `main`
render it as `{"error": {"code", "message", "status", ...}}`.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tenantgate_shared.schemas.common import ERROR_MESSAGES, ErrorCode

ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.NOT_AUTHENTICATED: 401,
    ErrorCode.NOT_ORG_MEMBER: 403,
    ErrorCode.INSUFFICIENT_ORG_ROLE: 403,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.CANNOT_MODIFY_OWNER: 403,
    ErrorCode.CANNOT_MODIFY_ADMIN: 403,
    ErrorCode.MUST_TRANSFER_OWNERSHIP: 409,
    ErrorCode.TARGET_MUST_BE_ADMIN: 409,
    ErrorCode.ALREADY_ORG_MEMBER: 409,
    ErrorCode.JOIN_REQUEST_EXISTS: 409,
    ErrorCode.INVITE_EXPIRED: 410,
    ErrorCode.INVALID_INVITE: 404,
    ErrorCode.ORG_SLUG_TAKEN: 409,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.CONFLICT: 409,
    ErrorCode.VALIDATION_FAILED: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.LIMIT_EXCEEDED: 422,
}


class OrgError(HTTPException):
    """A recoverable, user-facing failure with a stable machine-readable code."""

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        *,
        headers: Optional[dict[str, str]] = None,
        **extra: Any,
    ):
        self.code = code
        self.message = message or ERROR_MESSAGES[code]
        self.extra = extra
        super().__init__(
            status_code=ERROR_STATUS[code],
            detail={"code": code.value, "message": self.message, **extra},
            headers=headers,
        )

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


def field_errors(exc: ValidationError | RequestValidationError) -> dict[str, str]:
    """First message per field, keyed by dotted location."""
    result: dict[str, str] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        key = ".".join(loc) or "__root__"
        result.setdefault(key, error.get("msg", "Invalid value"))
    return result


def validation_failed(exc: ValidationError | RequestValidationError) -> OrgError:
    errors = field_errors(exc)
    message = f"Invalid: {', '.join(errors)}" if errors else None
    return OrgError(ErrorCode.VALIDATION_FAILED, message, field_errors=errors)


def _render(exc: OrgError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code.value,
                "message": exc.message,
                "status": exc.status_code,
                **exc.extra,
            }
        },
        headers=exc.headers,
    )


async def org_error_handler(request: Request, exc: OrgError) -> JSONResponse:
    return _render(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _render(validation_failed(exc))
