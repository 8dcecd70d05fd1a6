# pulse_backend/api/health_stream.py
"""
WebSocket push of provider health.

Sends the current snapshot on connect and a new one after every change.
Tracker listeners run on whichever thread recorded the outcome, so
snapshots are handed to the connection's event loop through a queue.
"""
import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .system_health import serialize_snapshot
from ..market_data.provider_health import HealthSnapshot
from ..utils.logger import log, log_error

router = APIRouter(prefix="/system", tags=["system"])


async def _push_changes(websocket: WebSocket, queue: "asyncio.Queue[HealthSnapshot]") -> None:
    while True:
        snapshot = await queue.get()
        await websocket.send_json(serialize_snapshot(snapshot))


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Client messages (pings) are ignored; receive raises on disconnect
    while True:
        await websocket.receive_text()


@router.websocket("/providers/stream")
async def provider_health_stream(websocket: WebSocket):
    await websocket.accept()
    tracker = websocket.app.state.health_tracker
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[HealthSnapshot]" = asyncio.Queue()

    def on_change(snapshot: HealthSnapshot) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, snapshot)

    unsubscribe = tracker.subscribe(on_change)
    log(f"Health stream connected ({tracker.observer_count} observers)", "DEBUG")
    tasks = []
    try:
        await websocket.send_json(serialize_snapshot(tracker.snapshot()))
        tasks = [
            asyncio.create_task(_push_changes(websocket, queue)),
            asyncio.create_task(_wait_for_disconnect(websocket)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                log_error(f"❌ Health stream error: {error}")
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        unsubscribe()
        log("Health stream disconnected", "DEBUG")
