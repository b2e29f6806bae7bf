"""
Authorization errors and the FastAPI handlers that render them.

Every gate error carries a status code and a flat JSON payload
({"error": ..., "message": ...}). Messages stay generic: unresolved
variable paths and stack traces are only logged.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import IntegrityError, NoResultFound
from starlette.exceptions import HTTPException as StarletteHTTPException

from security.policy.abac import ForbiddenAbility


class AuthorizationError(Exception):
    """Base class for gate rejections"""
    status_code = 500
    error = "Authorization error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(message or self.error)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error}
        if self.message:
            payload["message"] = self.message
        payload.update(self.extra)
        return payload


class Unauthorized(AuthorizationError):
    status_code = 401
    error = "Unauthorized"


class NoRoleAssigned(AuthorizationError):
    status_code = 403
    error = "NoRoleAssigned"

    def __init__(self, message: str = "User has no role assigned"):
        super().__init__(message)


class Forbidden(AuthorizationError):
    status_code = 403
    error = "Forbidden"

    def __init__(self, action: str, subject: str, message: Optional[str] = None):
        super().__init__(
            message or f"You don't have permission to {action} {subject}",
            action=action,
            subject=subject,
        )


class AbilityNotInitialized(AuthorizationError):
    status_code = 500
    error = "Authorization not initialized"


class AuthorizationFailure(AuthorizationError):
    """Ability construction failed. The cause is logged, never returned."""
    status_code = 500
    error = "Authorization error"

    def __init__(self):
        super().__init__()


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthorizationError)
    async def _handle_authorization_error(request: Request, exc: AuthorizationError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"[GATE] {exc.error} on {request.method} {request.url.path}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(ForbiddenAbility)
    async def _handle_forbidden_ability(request: Request, exc: ForbiddenAbility) -> JSONResponse:
        denial = Forbidden(exc.action, exc.subject_type)
        logger.warning(
            f"[GATE] Forbidden {exc.action} {exc.subject_type} on {request.url.path} "
            f"from {_client_ip(request)}"
        )
        return JSONResponse(status_code=denial.status_code, content=denial.to_payload())

    @app.exception_handler(StarletteHTTPException)
    async def _handle_http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        logger.info(f"Validation error: {details}")
        return JSONResponse(status_code=400, content={"error": "Validation error", "details": details})

    @app.exception_handler(NoResultFound)
    async def _handle_not_found(_: Request, exc: NoResultFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "Not found"})

    @app.exception_handler(IntegrityError)
    async def _handle_integrity_error(_: Request, exc: IntegrityError) -> JSONResponse:
        logger.warning(f"Integrity error: {exc.orig}")
        return JSONResponse(status_code=409, content={"error": "Conflict"})

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
