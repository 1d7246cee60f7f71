from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from dalcoffee.services.change_feed import WATCHED_TABLES, ChangeEvent, change_feed

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/realtime', tags=['realtime'])


async def forward_events(queue: asyncio.Queue[ChangeEvent], send: Callable[[dict], Awaitable[None]]) -> None:
    """Drain the queue into the socket until the client goes away."""
    while True:
        event = await queue.get()
        try:
            await send(event.as_dict())
        except (WebSocketDisconnect, RuntimeError) as exc:
            # The client dropped before the receive loop noticed.
            logger.info('Realtime forwarder stopped for %s: %s', event.table, exc)
            return


@router.websocket('/{table}')
async def realtime_table(websocket: WebSocket, table: str):
    """Forward change events for one table; the client refetches on each message."""
    if table not in WATCHED_TABLES:
        await websocket.close(code=1008)
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()

    def _enqueue(event: ChangeEvent) -> None:
        # Publishers run in the request threadpool.
        loop.call_soon_threadsafe(queue.put_nowait, event)

    token = change_feed.subscribe(table, _enqueue)
    await websocket.accept()
    logger.info('Realtime subscriber joined %s', table)
    forwarder = asyncio.create_task(forward_events(queue, websocket.send_json))
    try:
        while True:
            # Incoming messages are ignored; receiving only detects the disconnect.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info('Realtime subscriber left %s', table)
    finally:
        change_feed.unsubscribe(table, token)
        forwarder.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await forwarder
