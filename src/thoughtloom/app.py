"""FastAPI application factory for the Thoughtloom backup service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from starlette.datastructures import MutableHeaders
from starlette.exceptions import HTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from . import __version__
from .backup_service import BackupService
from .classifier import ErrorContext
from .config import ServiceSettings
from .errors import ThoughtloomError
from .http import (
    TRACE_ID_HEADER,
    default_error_responses,
    ensure_trace_id,
    error_response,
    get_trace_context,
    http_exception_to_response,
    internal_error_response,
    request_validation_response,
    resolve_trace_id,
)
from .routers import api_router
from .routers.health import router as health_router
from .stores import KeyValueStore, RemoteBackend

LOGGER = logging.getLogger(__name__)


class TraceMiddleware:
    """ASGI middleware that applies trace IDs and unified error handling."""

    def __init__(self, app: ASGIApp, *, trace_context: ContextVar[str]) -> None:
        self.app = app
        self._trace_context = trace_context

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        trace_id = resolve_trace_id(request.headers.get(TRACE_ID_HEADER))
        token = self._trace_context.set(trace_id)
        scope.setdefault("state", {})
        scope["state"]["trace_id"] = trace_id  # type: ignore[index]

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers.setdefault(TRACE_ID_HEADER, trace_id)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except HTTPException as exc:
            await http_exception_to_response(exc, trace_id)(scope, receive, send)
        except RequestValidationError as exc:
            await request_validation_response(exc, trace_id)(scope, receive, send)
        except ThoughtloomError as exc:
            LOGGER.info(
                "http.request_failed",
                extra={
                    "extra_payload": {
                        "code": exc.code,
                        "operation": exc.operation,
                        "path": request.url.path,
                        "trace_id": trace_id,
                    }
                },
            )
            context = ErrorContext(operation=exc.operation or request.url.path, component="api")
            await error_response(exc, trace_id, context=context)(scope, receive, send)
        except Exception as exc:
            LOGGER.exception(
                "Unhandled error processing %s %s",
                request.method,
                request.url.path,
                exc_info=exc,
            )
            await internal_error_response(trace_id)(scope, receive, send)
        finally:
            self._trace_context.reset(token)


def create_app(
    settings: ServiceSettings | None = None,
    *,
    local_store: KeyValueStore | None = None,
    backend: RemoteBackend | None = None,
) -> FastAPI:
    """Construct the FastAPI application.

    ``local_store`` and ``backend`` replace the directory-backed stores the
    service opens from ``settings`` by default.
    """

    service_settings = settings or ServiceSettings.from_environment()

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        service = await BackupService.open(
            service_settings,
            local_store=local_store,
            backend=backend,
        )
        application.state.backup_service = service
        LOGGER.info(
            "app.started",
            extra={"extra_payload": {"remote_connected": service.connected}},
        )
        yield

    application = FastAPI(
        title="Thoughtloom Backup Service",
        version=__version__,
        responses=default_error_responses(),
        lifespan=lifespan,
    )
    application.state.settings = service_settings
    application.state.service_version = __version__

    async def http_exception_handler(_: Request, exc: Exception) -> Response:
        trace_id = ensure_trace_id()
        if isinstance(exc, HTTPException):
            return http_exception_to_response(exc, trace_id)
        return internal_error_response(trace_id)

    async def validation_exception_handler(_: Request, exc: Exception) -> Response:
        trace_id = ensure_trace_id()
        if isinstance(exc, RequestValidationError):
            return request_validation_response(exc, trace_id)
        return internal_error_response(trace_id)

    application.add_exception_handler(HTTPException, http_exception_handler)
    application.add_exception_handler(RequestValidationError, validation_exception_handler)

    application.add_middleware(TraceMiddleware, trace_context=get_trace_context())

    application.include_router(health_router)
    application.include_router(api_router)

    @application.get("/", include_in_schema=False)
    async def service_index(request: Request) -> dict[str, str]:
        """Return a lightweight service manifest for manual probes."""

        return {
            "service": "thoughtloom",
            "version": request.app.state.service_version,
            "api_base": "/api/v1",
        }

    @application.get("/favicon.ico", include_in_schema=False)
    async def favicon_placeholder() -> Response:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return application


__all__ = ["TraceMiddleware", "create_app"]
