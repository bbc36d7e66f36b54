"""WebSocket endpoint for live trip progress (student viewers)."""

import asyncio
import logging

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from buspass.api.trips import progress_info

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py on startup
broadcaster = None
engine = None

# Seconds between checks that the subscription is still alive
IDLE_CHECK_SECONDS = 30.0


@router.websocket("/ws/trips/{trip_id}")
async def trip_ws(websocket: WebSocket, trip_id: str) -> None:
    """Send the current progress, then stream stop transitions."""
    await websocket.accept()

    if broadcaster is None or engine is None:
        await websocket.close(code=1011, reason="Service not ready")
        return

    # Subscribe before the snapshot so no transition falls in between
    sub = broadcaster.subscribe(trip_id)
    try:
        progress = await engine.get_progress(trip_id)
        if progress is None:
            await websocket.close(code=4404, reason="Trip not found")
            return
        snapshot = progress_info(progress).model_dump(mode="json")
        snapshot["type"] = "snapshot"
        await websocket.send_bytes(orjson.dumps(snapshot))

        await _stream(websocket, sub)
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("WebSocket error")
    finally:
        sub.cancel()


async def _stream(websocket: WebSocket, sub) -> None:
    """Forward updates until the viewer leaves or the subscription is dropped."""
    receiver = asyncio.ensure_future(websocket.receive())
    getter = None
    try:
        while not sub.cancelled:
            getter = asyncio.ensure_future(sub.get())
            done, _ = await asyncio.wait(
                {receiver, getter},
                timeout=IDLE_CHECK_SECONDS,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if receiver in done:
                if receiver.result()["type"] == "websocket.disconnect":
                    return
                # viewers only listen; anything they send is dropped
                receiver = asyncio.ensure_future(websocket.receive())
            if getter in done:
                await websocket.send_bytes(getter.result())
            else:
                getter.cancel()
    finally:
        receiver.cancel()
        if getter is not None:
            getter.cancel()
