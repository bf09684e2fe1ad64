"""
Live fan-out over WebSockets.

Writers call `broadcast` from whatever thread they run on. Each viewer
has its own bounded asyncio queue on the event loop that owns its socket;
`broadcast` only enqueues (thread-safe, never waits), and a per-viewer
pump task drains the queue onto the socket. Viewers that are gone or too
slow to keep up are dropped.
"""

import asyncio
import threading
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger

from agent_relay.models import Agent, Message

# Close code for viewers dropped because their queue overflowed
TRY_AGAIN_LATER = 1013


def new_message_event(msg: Message) -> Dict[str, Any]:
    return {"type": "new_message", "message": msg.as_dict()}


def agent_joined_event(agent: Agent) -> Dict[str, Any]:
    return {"type": "agent_joined", "agent": agent.as_dict()}


class Viewer:
    """One connected live viewer."""

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop, queue_size: int):
        self.websocket = websocket
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.overflowed = False

    def offer(self, event: Dict[str, Any]) -> None:
        """Hand an event to the viewer's loop. Raises RuntimeError if that loop is gone."""
        self.loop.call_soon_threadsafe(self._enqueue, event)

    def _enqueue(self, event: Optional[Dict[str, Any]]) -> None:
        if self.overflowed:
            return
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.overflowed = True
            # make room for the stop marker
            while not self.queue.empty():
                self.queue.get_nowait()
            self.queue.put_nowait(None)

    async def pump(self) -> None:
        """Send queued events until the viewer disconnects or is dropped."""
        sender = asyncio.create_task(self._send_loop())
        receiver = asyncio.create_task(self._receive_loop())
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.debug(f"Live viewer ended with {type(exc).__name__}: {exc}")

    async def _send_loop(self) -> None:
        while True:
            event = await self.queue.get()
            if event is None:
                await self.websocket.close(code=TRY_AGAIN_LATER)
                return
            await self.websocket.send_json(event)

    async def _receive_loop(self) -> None:
        # viewers have nothing to say; reading only detects the disconnect
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                return


class LiveChannel:
    """Registry of connected viewers plus best-effort broadcast."""

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._viewers: Set[Viewer] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._viewers)

    async def connect(self, websocket: WebSocket) -> Viewer:
        # registered before the handshake completes, so nothing committed after accept is missed
        viewer = Viewer(websocket, asyncio.get_running_loop(), self.queue_size)
        with self._lock:
            self._viewers.add(viewer)
            count = len(self._viewers)
        try:
            await websocket.accept()
        except Exception:
            self.disconnect(viewer)
            raise
        logger.info(f"Live viewer connected ({count} open)")
        return viewer

    def disconnect(self, viewer: Viewer) -> None:
        with self._lock:
            if viewer not in self._viewers:
                return
            self._viewers.discard(viewer)
            count = len(self._viewers)
        logger.info(f"Live viewer disconnected ({count} open)")

    def broadcast(self, event: Dict[str, Any]) -> None:
        """Queue `event` for every open viewer. Never blocks, never raises."""
        with self._lock:
            viewers: List[Viewer] = list(self._viewers)
        for viewer in viewers:
            if viewer.overflowed:
                self._drop(viewer, "too slow")
                continue
            try:
                viewer.offer(event)
            except RuntimeError:
                self._drop(viewer, "event loop closed")

    def publish_message(self, msg: Message) -> None:
        self.broadcast(new_message_event(msg))

    def publish_agent_joined(self, agent: Agent) -> None:
        self.broadcast(agent_joined_event(agent))

    async def serve(self, websocket: WebSocket) -> None:
        """Run one viewer connection to completion."""
        viewer = await self.connect(websocket)
        try:
            await viewer.pump()
        finally:
            self.disconnect(viewer)

    def _drop(self, viewer: Viewer, reason: str) -> None:
        with self._lock:
            self._viewers.discard(viewer)
            count = len(self._viewers)
        logger.warning(f"Dropped live viewer: {reason} ({count} open)")
