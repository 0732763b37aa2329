import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware

from cleanbook.api.problem_details import (
    domain_problem,
    http_problem,
    request_validation_problem,
    server_problem,
)
from cleanbook.api.routes_admin import router as admin_router
from cleanbook.api.routes_bookings import router as bookings_router
from cleanbook.api.routes_estimate import router as estimate_router
from cleanbook.api.routes_health import router as health_router
from cleanbook.api.routes_metrics import router as metrics_router
from cleanbook.api.routes_payouts import router as payouts_router
from cleanbook.api.routes_tasks import router as tasks_router
from cleanbook.api.routes_tiers import router as tiers_router
from cleanbook.domain.errors import DomainError
from cleanbook.domain.pricing.config_loader import load_pricing_config
from cleanbook.domain.settings_store.service import ensure_default_settings
from cleanbook.infra.db import dispose_engine, get_engine, get_session_factory
from cleanbook.infra.logging import clear_log_context, configure_logging, update_log_context
from cleanbook.infra.metrics import configure_metrics
from cleanbook.infra.notifications import resolve_notification_adapter
from cleanbook.infra.tracing import configure_tracing, instrument_fastapi, instrument_sqlalchemy
from cleanbook.settings import settings

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
        request_logger = logging.getLogger("cleanbook.request")
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
            request_logger.info("request", extra={"latency_ms": latency_ms})
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


def create_app(app_settings, *, session_factory=None) -> FastAPI:
    configure_logging()
    if app_settings.tracing_enabled:
        configure_tracing(service_name=app_settings.app_name, testing=app_settings.testing)
    metrics_client = configure_metrics(app_settings.metrics_enabled)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.app_settings = getattr(app.state, "app_settings", app_settings)
        app.state.metrics = getattr(app.state, "metrics", None) or metrics_client
        app.state.notifier = getattr(app.state, "notifier", None) or resolve_notification_adapter(app_settings)
        app.state.db_session_factory = (
            getattr(app.state, "db_session_factory", None) or session_factory or get_session_factory()
        )
        if app_settings.tracing_enabled:
            instrument_sqlalchemy(get_engine())
        if app_settings.preload_pricing_config:
            async with app.state.db_session_factory() as session:
                created = await ensure_default_settings(session)
                config = await load_pricing_config(session)
            logger.info(
                "pricing_config_loaded",
                extra={"extra": {"config_hash": config.config_hash, "defaults_created": created}},
            )
        yield
        await dispose_engine()

    app = FastAPI(title="Cleanbook", version="1.0.0", lifespan=lifespan)

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware, metrics_client=metrics_client)
    app.add_middleware(RequestIdMiddleware)

    if app_settings.tracing_enabled:
        # Added last so it wraps all middleware.
        instrument_fastapi(app)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return request_validation_problem(request, exc)

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        return domain_problem(request, exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return http_problem(request, exc)

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
        return server_problem(request)

    app.include_router(health_router)
    app.include_router(estimate_router)
    app.include_router(tasks_router)
    app.include_router(bookings_router)
    app.include_router(admin_router)
    app.include_router(payouts_router)
    app.include_router(tiers_router)
    if app_settings.metrics_enabled:
        app.include_router(metrics_router)
    return app


app = create_app(settings)
