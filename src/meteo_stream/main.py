"""Application entry point."""

import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from meteo_stream import __version__
from meteo_stream.api.routes import api_router, health_router, ws_router
from meteo_stream.config import ConfigurationError, Settings, get_settings
from meteo_stream.lifecycle import ServiceRuntime
from meteo_stream.middleware.logging import LoggingMiddleware, configure_logging

logger = structlog.get_logger()


def create_app(
    settings: Settings | None = None,
    runtime: ServiceRuntime | None = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    The runtime is started when the app starts serving and shut down when
    the server receives a termination signal.
    """
    settings = settings or (runtime.settings if runtime else get_settings())

    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        service = runtime or ServiceRuntime.from_settings(settings)
        app.state.runtime = service
        await service.start()
        try:
            yield
        finally:
            await service.shutdown()

    app = FastAPI(
        title="Meteo Stream API",
        description="Polled weather observations with live WebSocket updates",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    app.include_router(api_router)
    app.include_router(health_router)
    app.include_router(ws_router)

    # Mount Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app())

    return app


def run() -> None:
    """Validate configuration, then run the application with uvicorn."""
    try:
        settings = get_settings()
    except ConfigurationError as e:
        logger.critical("Refusing to start", error=str(e))
        sys.exit(1)

    uvicorn.run(
        create_app(settings),
        host=settings.app_host,
        port=settings.app_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
