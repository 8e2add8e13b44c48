from __future__ import annotations

import asyncio
import logging
from threading import Lock
from typing import Dict, Optional, Protocol

from starlette.websockets import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class Pushable(Protocol):
    def push(self, frame: dict) -> None: ...


class Connection:
    """
    One client socket.

    ``push`` may be called from any thread (sync routes run in the worker
    pool); frames are handed to the socket's own loop and written by a single
    writer task, so each connection sees frames in emission order. Delivery is
    best effort: once a write fails, or a slow client lets ``max_pending``
    frames pile up, the connection goes quiet and the socket is closed.
    """

    def __init__(
        self,
        websocket: WebSocket,
        loop: asyncio.AbstractEventLoop | None = None,
        max_pending: int = 256,
    ):
        self.websocket = websocket
        self.loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._closed = False
        self._close_socket = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _enqueue(self, item: dict | None) -> None:
        # runs on the socket's loop
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Send queue full (%d frames), dropping slow client", self._queue.maxsize)
            self._closed = True
            self._close_socket = True
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(None)

    def push(self, frame: dict) -> None:
        if self._closed:
            return
        try:
            self.loop.call_soon_threadsafe(self._enqueue, frame)
        except RuntimeError:
            # loop already shut down
            self._closed = True

    def close(self, close_socket: bool = True) -> None:
        """
        Stop accepting frames. Queued frames are still written, then the
        socket itself is closed unless the client already went away.
        """
        if self._closed:
            return
        self._closed = True
        self._close_socket = close_socket
        try:
            self.loop.call_soon_threadsafe(self._enqueue, None)
        except RuntimeError:
            pass

    async def run_writer(self) -> None:
        while True:
            frame = await self._queue.get()
            if frame is None:
                break
            try:
                await self.websocket.send_json(frame)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.debug("Dropping frames for closed socket: %s", exc)
                self._closed = True
                return

        if self._close_socket:
            try:
                await self.websocket.close()
            except (RuntimeError, OSError) as exc:
                logger.debug("Socket already closed: %s", exc)


class PresenceRegistry:
    """
    Process-local map of user id -> active connection.

    Guarded by a lock because connects happen on the event loop while
    lookups come from worker threads. Nothing is persisted; a restart starts
    empty and clients reconnect.
    """

    def __init__(self) -> None:
        self._connections: Dict[int, Pushable] = {}
        self._lock = Lock()

    def register(self, user_id: int, connection: Pushable) -> Optional[Pushable]:
        """Register ``connection``; returns the connection it replaced, if any."""
        with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = connection
        return previous if previous is not connection else None

    def unregister(self, user_id: int, connection: Pushable | None = None) -> bool:
        """
        Drop the user's entry. With ``connection`` given, only drop it if it is
        still the registered one, so a stale socket closing late cannot evict a
        newer one.
        """
        with self._lock:
            current = self._connections.get(user_id)
            if current is None:
                return False
            if connection is not None and current is not connection:
                return False
            del self._connections[user_id]
            return True

    def lookup(self, user_id: int) -> Optional[Pushable]:
        with self._lock:
            return self._connections.get(user_id)

    def online_user_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._connections)

    def snapshot(self) -> list[Pushable]:
        with self._lock:
            return list(self._connections.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
