import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Iterable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from flag_service.api.error_envelope import (
    ERROR_TYPE_HTTP,
    ERROR_TYPE_INTERNAL,
    ERROR_TYPE_NOT_FOUND,
    ERROR_TYPE_VALIDATION,
    application_error_response,
    error_response,
    validation_details,
)
from flag_service.api.routes_feature_flags import router as feature_flags_router
from flag_service.api.routes_health import router as health_router
from flag_service.api.routes_overrides import router as overrides_router
from flag_service.domain.errors import ApplicationError
from flag_service.infra.db import dispose_engine, get_engine, get_session_factory
from flag_service.infra.logging import clear_log_context, configure_logging, update_log_context
from flag_service.infra.metrics import configure_metrics
from flag_service.infra.tracing import configure_tracing, instrument_fastapi, instrument_sqlalchemy
from flag_service.services import build_app_services
from flag_service.settings import settings

logger = logging.getLogger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        logger = logging.getLogger("flag_service.request")
        start = time.time()
        request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
        if not request_id:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)
        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_attribute("request_id", request_id)

        response = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = int((time.time() - start) * 1000)
            update_log_context(status_code=status_code, latency_ms=latency_ms)
            logger.info("request", extra={"latency_ms": latency_ms})
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            clear_log_context()


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, metrics_client) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        route_label = "unmatched"
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            route = request.scope.get("route")
            route_label = getattr(route, "path", route_label)
            duration = time.perf_counter() - start
            self.metrics.record_http_latency(request.method, route_label, status_code, duration)
            self.metrics.record_http_request(request.method, route_label, status_code)
            if status_code >= 500:
                self.metrics.record_http_5xx(request.method, route_label)
        return response


def _resolve_cors_origins(app_settings) -> Iterable[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.app_env == "dev":
        return ["http://localhost:3000"]
    return []


def create_app(app_settings, *, tracer_provider=None) -> FastAPI:
    if tracer_provider is None:
        configure_tracing(service_name=app_settings.app_name, testing=app_settings.testing)
    configure_logging()
    metrics_client = configure_metrics(app_settings.metrics_enabled)

    services = build_app_services(app_settings, metrics=metrics_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state_services = getattr(app.state, "services", None) or services
        app.state.services = state_services
        app.state.metrics = getattr(app.state, "metrics", None) or state_services.metrics
        app.state.app_settings = getattr(app.state, "app_settings", app_settings)
        app.state.db_session_factory = getattr(app.state, "db_session_factory", None) or get_session_factory()
        engine = get_engine()
        if engine is not None:
            instrument_sqlalchemy(engine.sync_engine)
        yield
        await state_services.result_cache.close()
        await dispose_engine()

    app = FastAPI(title="Feature Flag Service", version="1.0.0", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware, metrics_client=metrics_client)
    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(_resolve_cors_origins(app_settings)),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # OTel instrumentation must be added last so it wraps all middleware.
    instrument_fastapi(app, tracer_provider=tracer_provider)

    @app.exception_handler(ApplicationError)
    async def application_error_handler(request: Request, exc: ApplicationError):
        if exc.status_code >= 500:
            logger.error(
                "application_error",
                extra={"extra": {"type": exc.type, "path": request.url.path}},
            )
        return application_error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = validation_details(list(exc.errors()))
        return error_response(
            request,
            status=422,
            type_=ERROR_TYPE_VALIDATION,
            message=", ".join(details) or "Request validation failed",
            details=details,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(
            request,
            status=exc.status_code,
            type_=ERROR_TYPE_NOT_FOUND if exc.status_code == 404 else ERROR_TYPE_HTTP,
            message=message,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None)
        error_type = type(exc).__name__
        update_log_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=500,
            error_type=error_type,
        )
        logger.exception(
            "unhandled_exception",
            extra={"request_id": request_id, "path": request.url.path, "error_type": error_type},
        )
        return error_response(
            request,
            status=500,
            type_=ERROR_TYPE_INTERNAL,
            message="Internal server error",
        )

    app.include_router(health_router)
    app.include_router(feature_flags_router, prefix=app_settings.api_prefix)
    app.include_router(overrides_router, prefix=app_settings.api_prefix)
    if app_settings.metrics_enabled:
        from flag_service.api.routes_metrics import router as metrics_router

        app.include_router(metrics_router)
    return app


app = create_app(settings)
