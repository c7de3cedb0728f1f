"""WebSocket endpoint pushing session snapshots to presenters."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from engine.session import WATCHED_COLLECTIONS, SessionHub
from store.base import StoreUnavailableError, Subscription

logger = logging.getLogger(__name__)

router = APIRouter()


def snapshot_message(collection: str, documents: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """The message sent to presenters whenever a watched collection changes."""
    return {
        "type": "snapshot",
        "collection": collection,
        "documents": documents,
    }


def subscribe_all(hub: SessionHub, queue: asyncio.Queue, loop: asyncio.AbstractEventLoop) -> list[Subscription]:
    """Subscribe a connection's queue to every watched collection.

    Store callbacks may run on worker threads, so each snapshot is handed
    to the event loop rather than put on the queue directly.
    """
    def _on_snapshot(collection: str, documents: dict[str, dict[str, Any]]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, snapshot_message(collection, documents))

    subscriptions = []
    try:
        for collection in WATCHED_COLLECTIONS:
            subscriptions.append(hub.subscribe(collection, _on_snapshot))
    except StoreUnavailableError:
        for subscription in subscriptions:
            subscription.unsubscribe()
        raise
    return subscriptions


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    crawler_id: str | None = Query(None),
) -> None:
    """Real-time session feed.

    Sends a ``connected`` message, then a ``snapshot`` message with the full
    document set of each watched collection, now and after every change.
    """
    hub: SessionHub = websocket.app.state.hub
    await websocket.accept()

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    try:
        subscriptions = subscribe_all(hub, queue, loop)
    except StoreUnavailableError:
        await websocket.close(code=1011, reason="Store unavailable")
        return

    async def _receive() -> None:
        # Client messages are ignored; this only notices disconnects.
        while True:
            await websocket.receive_text()

    receiver = asyncio.create_task(_receive())
    try:
        await websocket.send_json({"type": "connected", "crawler_id": crawler_id})
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                getter.cancel()
                # Retrieve the disconnect so the finished task is not reported.
                receiver.exception()
                break
            await websocket.send_json(getter.result())
    except WebSocketDisconnect:
        pass
    finally:
        receiver.cancel()
        for subscription in subscriptions:
            subscription.unsubscribe()
        logger.info(f"Presenter {crawler_id!r} disconnected")
