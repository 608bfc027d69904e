from __future__ import annotations

import asyncio
from collections.abc import Callable

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from jugadwake.orchestrator.event_bus import EventBus
from jugadwake.telemetry.logging import get_logger


class EventStreamBridge:
    """Streams every published event to connected websocket clients as JSON."""

    def __init__(self, bus_provider: Callable[[], EventBus | None]) -> None:
        self._bus_provider = bus_provider
        self._clients: set[WebSocket] = set()
        self._router = APIRouter()
        self._router.add_api_websocket_route("/ws/events", self._websocket_handler)
        self._logger = get_logger(__name__)

    @property
    def router(self) -> APIRouter:
        return self._router

    async def _websocket_handler(self, websocket: WebSocket) -> None:
        bus = self._bus_provider()
        if bus is None:
            await websocket.close(code=1013)
            return
        await websocket.accept()
        self._clients.add(websocket)
        self._logger.info("ui.client.connected", count=len(self._clients))
        pump = asyncio.create_task(self._pump(websocket, bus), name="ws-events")
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            self._clients.discard(websocket)
            self._logger.info("ui.client.disconnected", count=len(self._clients))

    async def _pump(self, websocket: WebSocket, bus: EventBus) -> None:
        async for event in bus.stream():
            await websocket.send_json(event.to_dict())


__all__ = ["EventStreamBridge"]
