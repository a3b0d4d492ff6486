"""WebSocket fan-out of job messages.

Job listeners run on worker threads; :meth:`ProgressHub.publish` hands each
message to the event loop through a queue so that a single pump task sends
them to every socket in publication order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ProgressHub:
    def __init__(self) -> None:
        self._sockets: Set[WebSocket] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._pump: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._pump = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
        self._pump = None
        self._loop = None
        for ws in list(self._sockets):
            try:
                await ws.close()
            except RuntimeError:
                pass
        self._sockets.clear()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._sockets.add(websocket)
        logger.info("WebSocket client connected (%d open)", len(self._sockets))

    def disconnect(self, websocket: WebSocket) -> None:
        self._sockets.discard(websocket)
        logger.info("WebSocket client disconnected (%d open)", len(self._sockets))

    def publish(self, message: Dict[str, Any]) -> None:
        """Thread-safe; messages published before :meth:`start` are dropped."""
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(queue.put_nowait, message)

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            for ws in list(self._sockets):
                try:
                    await ws.send_json(message)
                except Exception as exc:
                    logger.warning("Dropping WebSocket client after send failure: %s", exc)
                    self._sockets.discard(ws)


__all__ = ["ProgressHub"]
