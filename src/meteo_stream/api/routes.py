"""API route definitions."""

from typing import Annotated

import anyio
import structlog
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from meteo_stream.api.dependencies import HubDep, RuntimeDep, StoreDep, WeatherServiceDep
from meteo_stream.api.schemas import (
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    IngestResponse,
    Observation,
    ObservationIn,
    ReadinessResponse,
    ServiceHealth,
)
from meteo_stream.services.hub import SHUTDOWN_EVENT, HubClosedError
from meteo_stream.services.store import MAX_QUERY_LIMIT, StoreError

logger = structlog.get_logger()

# API router for weather endpoints
api_router = APIRouter(prefix="/api/v1", tags=["weather"])

# Health router for health checks
health_router = APIRouter(prefix="/health", tags=["health"])

# Live updates
ws_router = APIRouter(tags=["live"])


def _store_unavailable(e: StoreError) -> HTTPException:
    logger.error("Observation store unavailable", error=str(e))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=ErrorResponse(
            error=ErrorDetail(code="STORE_UNAVAILABLE", message=str(e))
        ).model_dump(),
    )


@api_router.get("/health", response_model=ServiceHealth)
async def health(weather_service: WeatherServiceDep) -> ServiceHealth:
    """Report whether the service can reach its store."""
    return await weather_service.health()


@api_router.get(
    "/weather/latest",
    response_model=Observation | None,
    responses={503: {"model": ErrorResponse, "description": "Store unavailable"}},
)
async def latest(
    weather_service: WeatherServiceDep,
    location: Annotated[str | None, Query(description="Location key")] = None,
) -> Observation | None:
    """Most recent observation, or null when nothing has been stored yet."""
    try:
        return await weather_service.latest(location)
    except StoreError as e:
        raise _store_unavailable(e) from e


@api_router.get(
    "/weather/history",
    response_model=list[Observation],
    responses={503: {"model": ErrorResponse, "description": "Store unavailable"}},
)
async def history(
    weather_service: WeatherServiceDep,
    location: Annotated[str | None, Query(description="Location key")] = None,
    limit: Annotated[int, Query(ge=1, le=MAX_QUERY_LIMIT, description="Maximum records")] = 100,
) -> list[Observation]:
    """Stored observations, newest first."""
    try:
        return await weather_service.history(location, limit)
    except StoreError as e:
        raise _store_unavailable(e) from e


@api_router.post(
    "/observations",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def ingest(reading: ObservationIn, weather_service: WeatherServiceDep) -> IngestResponse:
    """Accept a reading pushed by a sensor and broadcast it to live subscribers."""
    observation, persisted = await weather_service.ingest(reading)
    return IngestResponse(persisted=persisted, observation=observation)


@health_router.get("/live", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    """Liveness probe - checks if the service is running."""
    return HealthResponse(status="ok")


@health_router.get("/ready", response_model=ReadinessResponse)
async def readiness(store: StoreDep, runtime: RuntimeDep) -> ReadinessResponse:
    """Readiness probe - store reachable and scheduler running."""
    store_status = "ok" if await store.ping() else "unhealthy"
    scheduler_status = runtime.scheduler.state.value

    overall_status = "ok" if store_status == "ok" and scheduler_status == "running" else "unhealthy"

    response = ReadinessResponse(
        status=overall_status,
        checks={"store": store_status, "scheduler": scheduler_status},
    )

    if overall_status != "ok":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=response.model_dump(),
        )

    return response


@ws_router.websocket("/ws")
async def live_updates(websocket: WebSocket, hub: HubDep) -> None:
    """Stream hub events to one client until either side goes away."""
    try:
        subscriber = hub.subscribe()
    except HubClosedError:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    await websocket.accept()
    log = logger.bind(subscriber_id=subscriber.id)
    drained = False

    async def send_events(scope: anyio.CancelScope) -> None:
        nonlocal drained
        try:
            while (event := await subscriber.receive()) is not None:
                await websocket.send_json(event.model_dump(mode="json"))
                if event.event == SHUTDOWN_EVENT:
                    break
        except WebSocketDisconnect:
            log.debug("Client went away while sending")
        except (RuntimeError, OSError) as e:
            log.warning("Live connection failed", error=str(e))
        else:
            drained = True
        scope.cancel()

    async def watch_disconnect(scope: anyio.CancelScope) -> None:
        # Incoming messages are ignored; only the close matters
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
        scope.cancel()

    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(send_events, tg.cancel_scope)
            tg.start_soon(watch_disconnect, tg.cancel_scope)
    finally:
        hub.unsubscribe(subscriber)

    if drained:
        try:
            await websocket.close()
        except RuntimeError:
            log.debug("WebSocket already closed")
