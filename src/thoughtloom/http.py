"""HTTP utilities shared by the Thoughtloom routers and middleware."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any, Final
from uuid import UUID, uuid4

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .classifier import ClassifiedError, ErrorContext, ErrorKind, classify
from .errors import ThoughtloomError, error_definition
from .models.errors import ErrorResponse

LOGGER = logging.getLogger(__name__)

TRACE_ID_HEADER: Final[str] = "x-trace-id"
_TRACE_ID_CONTEXT: ContextVar[str] = ContextVar("thoughtloom_trace_id", default="")

DEFAULT_ERROR_RESPONSES: Final[dict[int | str, dict[str, Any]]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}


def default_error_responses() -> dict[int | str, dict[str, Any]]:
    """Return a copy of the default error response mapping for routers."""

    return {status_code: dict(schema) for status_code, schema in DEFAULT_ERROR_RESPONSES.items()}


def resolve_trace_id(candidate: str | None) -> str:
    """Return a valid UUID string, preferring the provided candidate."""

    if candidate:
        try:
            UUID(candidate)
            return candidate
        except ValueError:
            LOGGER.debug("Ignoring invalid trace identifier: %s", candidate)
    return str(uuid4())


def ensure_trace_id() -> str:
    """Return the active trace identifier, creating one if absent."""

    trace_id = _TRACE_ID_CONTEXT.get()
    if not trace_id:
        trace_id = str(uuid4())
        _TRACE_ID_CONTEXT.set(trace_id)
    return trace_id


def get_trace_context() -> ContextVar[str]:
    return _TRACE_ID_CONTEXT


def build_error_payload(classified: ClassifiedError, trace_id: str) -> ErrorResponse:
    return ErrorResponse(
        code=classified.code,
        kind=classified.kind.value,
        title=classified.title,
        message=classified.message,
        remediation=classified.remediation,
        retryable=classified.retryable,
        details=jsonable_encoder(classified.details),
        trace_id=trace_id,
    )


def _json(payload: ErrorResponse, status_code: int, headers: dict[str, str] | None = None) -> JSONResponse:
    merged = dict(headers or {})
    merged.setdefault(TRACE_ID_HEADER, payload.trace_id)
    return JSONResponse(status_code=status_code, content=payload.model_dump(), headers=merged)


def error_response(
    exc: BaseException,
    trace_id: str,
    *,
    context: ErrorContext | None = None,
) -> JSONResponse:
    """Classify ``exc`` and render it with the status code of its error code."""

    classified = classify(exc, context)
    if isinstance(exc, ThoughtloomError):
        status_code = exc.status_code
    else:
        status_code = error_definition(classified.code).status_code
    return _json(build_error_payload(classified, trace_id), status_code)


def http_exception_to_response(exc: HTTPException, trace_id: str) -> JSONResponse:
    """Translate an ``HTTPException`` into the shared error model."""

    code = "NOT_FOUND" if exc.status_code == status.HTTP_404_NOT_FOUND else "HTTP_ERROR"
    payload = ErrorResponse(
        code=code,
        kind=ErrorKind.VALIDATION.value if exc.status_code < 500 else ErrorKind.UNKNOWN.value,
        title="Request failed",
        message=str(exc.detail) or "Request failed.",
        details={"status": exc.status_code},
        trace_id=trace_id,
    )
    return _json(payload, exc.status_code, dict(exc.headers or {}))


def request_validation_response(exc: RequestValidationError, trace_id: str) -> JSONResponse:
    """Render request validation failures using the shared error model."""

    payload = ErrorResponse(
        code="VALIDATION",
        kind=ErrorKind.VALIDATION.value,
        title="Invalid request",
        message="Request validation failed.",
        remediation="Correct the reported field and try again.",
        details={"errors": jsonable_encoder(exc.errors())},
        trace_id=trace_id,
    )
    return _json(payload, status.HTTP_400_BAD_REQUEST)


def internal_error_response(trace_id: str) -> JSONResponse:
    """Generate a generic internal error response with trace context."""

    definition = error_definition("UNEXPECTED_ERROR")
    payload = ErrorResponse(
        code=definition.code,
        kind=ErrorKind.UNKNOWN.value,
        title="Something went wrong",
        message=definition.message,
        details={},
        trace_id=trace_id,
    )
    return _json(payload, definition.status_code)


__all__: list[str] = [
    "DEFAULT_ERROR_RESPONSES",
    "TRACE_ID_HEADER",
    "build_error_payload",
    "default_error_responses",
    "ensure_trace_id",
    "error_response",
    "get_trace_context",
    "http_exception_to_response",
    "internal_error_response",
    "request_validation_response",
    "resolve_trace_id",
]
