"""In-process fan-out of dashboard notifications.

Every subscriber owns a bounded queue living on its own event loop. Publishing
is synchronous and thread-safe so both sync route handlers (running in the
threadpool) and async code can call it. There is no backlog: a subscriber only
sees messages published while it is registered.

`/realtime` is a plain WebSocket, not Socket.IO. Each frame is one JSON object
`{"event": "sensor:update", "data": {...}}`; Socket.IO clients cannot connect
to it directly.
"""
import asyncio
import itertools
import logging
import threading
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

SENSOR_UPDATE = "sensor:update"


class Subscription:
    def __init__(self, broadcaster: "Broadcaster", sid: int, loop: asyncio.AbstractEventLoop, maxsize: int):
        self._broadcaster = broadcaster
        self.sid = sid
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, message: Dict[str, Any]) -> None:
        # runs on self.loop
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Subscriber %s is lagging, dropped %s message(s)", self.sid, self.dropped)

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class Broadcaster:
    def __init__(self, maxsize: int = 256):
        self._maxsize = maxsize
        self._subscribers: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscription:
        loop = loop or asyncio.get_running_loop()
        with self._lock:
            sub = Subscription(self, next(self._ids), loop, self._maxsize)
            self._subscribers[sub.sid] = sub
        logger.info("Realtime subscriber %s connected (%s total)", sub.sid, self.subscriber_count)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            removed = self._subscribers.pop(sub.sid, None)
        if removed is not None:
            logger.info("Realtime subscriber %s disconnected (%s total)", sub.sid, self.subscriber_count)

    def publish(self, event: str, data: Dict[str, Any]) -> int:
        """Queue ``data`` for every current subscriber; returns how many were reached."""
        message = {"event": event, "data": data}
        delivered = 0
        # one critical section per message keeps publish order identical for all subscribers
        with self._lock:
            for sid, sub in list(self._subscribers.items()):
                try:
                    sub.loop.call_soon_threadsafe(sub.offer, message)
                    delivered += 1
                except RuntimeError:
                    # loop already closed, client is gone
                    self._subscribers.pop(sid, None)
        return delivered


router = APIRouter()


async def _forward(websocket: WebSocket, sub: Subscription) -> None:
    while True:
        message = await sub.get()
        await websocket.send_json(message)


@router.websocket("/realtime")
async def realtime(websocket: WebSocket):
    broadcaster: Broadcaster = websocket.app.state.broadcaster
    # register before accept so nothing published after the handshake is missed
    with broadcaster.subscribe() as sub:
        await websocket.accept()
        sender = asyncio.create_task(_forward(websocket, sub))
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
