"""Weather observation poller with live WebSocket fan-out."""

__version__ = "0.1.0"
