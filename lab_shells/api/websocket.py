import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..gateway import SessionGateway
from ..relay import WebSocketTransport

logger = logging.getLogger(__name__)

router = APIRouter()


def _gateway(websocket: WebSocket) -> SessionGateway:
    return websocket.app.state.gateway


async def terminal_ws(websocket: WebSocket):
    """Attach one browser terminal to one lab node session.

    Mounted at the configured `ws_path` by `create_app`.
    """
    await websocket.accept()
    await _gateway(websocket).handle(WebSocketTransport(websocket))


@router.websocket("/ws/events")
async def session_events_ws(websocket: WebSocket):
    """Stream all session lifecycle events."""
    await websocket.accept()
    bus = _gateway(websocket).event_bus
    q = bus.subscribe()

    async def _watch_disconnect() -> None:
        while True:
            msg = await websocket.receive()
            if msg["type"] == "websocket.disconnect":
                return

    watcher = asyncio.create_task(_watch_disconnect())
    try:
        while not watcher.done():
            getter = asyncio.create_task(q.get())
            done, _ = await asyncio.wait({getter, watcher}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            await websocket.send_json(getter.result().to_dict())
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Event stream closed: %s", exc)
    finally:
        watcher.cancel()
        bus.unsubscribe(q)
