"""Billing error types and the FastAPI handlers that render them.

Every error leaves the API in one envelope:

    {"error": {"code": "DOCUMENT_LOCKED", "message": "...", "details": {...}}}

``details`` is omitted when empty.  Services raise the BillingException
subclasses below; the handlers also translate framework, validation and
SQLAlchemy errors so callers never see a bare traceback.
"""

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("konsul.errors")


class BillingException(Exception):
    """Base class: carries the HTTP status and a stable error code."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details


class BusinessLogicError(BillingException):
    """A request that is well-formed but not allowed for this document."""

    def __init__(self, message: str, error_code: str = "BUSINESS_LOGIC_ERROR"):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, error_code)


class InvalidTransitionError(BusinessLogicError):
    """A status change not present in the transition table."""

    def __init__(self, current: str, target: str, doc_type: str):
        super().__init__(
            f"{doc_type} cannot move from {current} to {target}",
            error_code="INVALID_STATUS_TRANSITION",
        )
        self.current = current
        self.target = target


class DocumentLockedError(BillingException):
    """Edit touches fields frozen by the document's status."""

    def __init__(self, message: str, locked_fields: list[str]):
        super().__init__(
            message,
            status.HTTP_409_CONFLICT,
            "DOCUMENT_LOCKED",
            details={"locked_fields": locked_fields},
        )


class ResourceNotFoundError(BillingException):

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource} not found: {identifier}",
            status.HTTP_404_NOT_FOUND,
            "RESOURCE_NOT_FOUND",
        )


class ConfigurationError(BillingException):
    """A feature is unavailable until something is configured."""

    def __init__(self, message: str, error_code: str = "FEATURE_NOT_CONFIGURED"):
        super().__init__(message, status.HTTP_403_FORBIDDEN, error_code)


class AIFeatureLockedError(ConfigurationError):
    """No AI provider key is available for the account."""

    def __init__(self):
        super().__init__(
            "AI features are locked. Configure a Gemini or OpenAI API key.",
            error_code="AI_FEATURE_LOCKED",
        )


class AIUnavailableError(BillingException):
    """Every configured AI provider failed or answered with unusable output."""

    def __init__(self):
        super().__init__(
            "The AI assistant could not answer. Please try again.",
            status.HTTP_502_BAD_GATEWAY,
            "AI_UNAVAILABLE",
        )


class PersistenceUnavailableError(BillingException):
    """The document store could not be reached."""

    def __init__(self, message: str = "Database temporarily unavailable. Please try again."):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, "DATABASE_UNAVAILABLE")


# ── Rendering ────────────────────────────────────────────────

def error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict | None = None,
) -> JSONResponse:
    body: dict = {"code": code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


def _where(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


# ── Handlers ─────────────────────────────────────────────────

async def billing_exception_handler(request: Request, exc: BillingException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log("%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message,
        extra=_where(request))
    return error_response(exc.status_code, exc.error_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %d on %s: %s", exc.status_code, request.url.path, exc.detail,
                     extra=_where(request))
    return error_response(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError | ValidationError,
) -> JSONResponse:
    """422 listing each invalid field as ``body -> items -> 0 -> price``."""
    errors = [
        {
            "field": " -> ".join(str(part) for part in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    logger.info("Validation failed on %s (%d errors)", request.url.path, len(errors),
                extra=_where(request))
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        "Validation error",
        {"errors": errors},
    )


async def integrity_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Constraint violations that escaped the gateway (direct ORM use)."""
    logger.error("Integrity error on %s: %s", request.url.path, exc.orig, extra=_where(request))
    reason = str(exc.orig).lower()
    if "unique" in reason or "duplicate" in reason:
        code, message = "DUPLICATE_RECORD", "A record with this id already exists"
    elif "not null" in reason:
        code, message = "NULL_VALUE_NOT_ALLOWED", "Required field is missing"
    else:
        code, message = "INTEGRITY_ERROR", "Database constraint violation"
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, code, message)


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("Database unavailable on %s: %s", request.url.path, exc, extra=_where(request))
    return await billing_exception_handler(request, PersistenceUnavailableError())


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled %s on %s", type(exc).__name__, request.url.path,
                     extra=_where(request))
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred. Please try again later.",
    )


def register_exception_handlers(app):
    app.add_exception_handler(BillingException, billing_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
