"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request, WebSocket

from meteo_stream.lifecycle import ServiceRuntime
from meteo_stream.services.hub import BroadcastHub
from meteo_stream.services.store import ObservationStore
from meteo_stream.services.weather import WeatherService


def get_runtime(request: Request) -> ServiceRuntime:
    """Get the runtime created by the application lifespan."""
    runtime: ServiceRuntime = request.app.state.runtime
    return runtime


def get_weather_service(runtime: Annotated[ServiceRuntime, Depends(get_runtime)]) -> WeatherService:
    """Get weather service instance."""
    return runtime.weather


def get_store(runtime: Annotated[ServiceRuntime, Depends(get_runtime)]) -> ObservationStore:
    """Get observation store instance."""
    return runtime.store


def get_hub(websocket: WebSocket) -> BroadcastHub:
    """Get broadcast hub for a WebSocket connection."""
    runtime: ServiceRuntime = websocket.app.state.runtime
    return runtime.hub


# Type aliases for dependency injection
RuntimeDep = Annotated[ServiceRuntime, Depends(get_runtime)]
WeatherServiceDep = Annotated[WeatherService, Depends(get_weather_service)]
StoreDep = Annotated[ObservationStore, Depends(get_store)]
HubDep = Annotated[BroadcastHub, Depends(get_hub)]
