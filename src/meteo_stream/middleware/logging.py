"""Logging configuration and request middleware."""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

from meteo_stream.config import Settings

# Map log level names to logging module constants
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Paths polled by probes and scrapers, not worth a log line each
QUIET_PATHS = ("/metrics", "/health/live", "/health/ready")

# Metrics
http_requests = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
http_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on settings."""
    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    log_level = LOG_LEVELS.get(settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Tags each HTTP request with an id, logs it and records metrics."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        path = request.url.path

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        ):
            logger = structlog.get_logger()
            start_time = time.perf_counter()

            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "Request failed with exception",
                    duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                http_requests.labels(method=request.method, path=path, status="500").inc()
                raise

            duration = time.perf_counter() - start_time
            http_requests.labels(
                method=request.method,
                path=path,
                status=str(response.status_code),
            ).inc()
            http_duration.labels(method=request.method, path=path).observe(duration)

            if path not in QUIET_PATHS:
                logger.info(
                    "Request completed",
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2),
                )

        response.headers["X-Request-ID"] = request_id
        return response
