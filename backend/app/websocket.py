# backend/app/websocket.py
from fastapi import Request, WebSocket
from typing import Any, Dict, List, Set
import asyncio
import logging
from collections import defaultdict

from .errors import BroadcastUnavailable

logger = logging.getLogger(__name__)

ALL_TOPICS = "*"
_CLOSED = object()


class Subscription:
    """
    In-process consumer of one topic. Registered on creation, so nothing
    published afterwards is missed; nothing published before is replayed.
    """

    def __init__(self, channel: "BroadcastChannel", topic: str):
        self.channel = channel
        self.topic = topic
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        message = await self.queue.get()
        if message is _CLOSED:
            self.closed = True
            raise StopAsyncIteration
        return message

    def close(self):
        if not self.closed:
            self.closed = True
            self.channel._unsubscribe(self)
            self.queue.put_nowait(_CLOSED)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.close()


class BroadcastChannel:
    """
    Fan-out of tracking events to WebSocket dashboards and in-process
    subscribers. Best-effort, at-most-once, no replay buffer.
    """

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self.subscribers: Dict[str, Set[Subscription]] = defaultdict(set)
        self.closed = False

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket connected. Total: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(f"WebSocket disconnected. Total: {len(self.active_connections)}")

    def subscribe(self, topic: str = ALL_TOPICS) -> Subscription:
        if self.closed:
            raise BroadcastUnavailable("Broadcast channel is closed")
        subscription = Subscription(self, topic)
        self.subscribers[topic].add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription):
        self.subscribers[subscription.topic].discard(subscription)

    async def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """Deliver to every current subscriber; returns how many received it."""
        if self.closed:
            raise BroadcastUnavailable("Broadcast channel is closed")

        message = {"type": topic, "data": payload}
        delivered = 0

        for subscription in list(self.subscribers[topic]) + list(self.subscribers[ALL_TOPICS]):
            subscription.queue.put_nowait(message)
            delivered += 1

        delivered += await self._send_to_all(message)
        return delivered

    async def _send_to_all(self, message: dict) -> int:
        disconnected = []
        sent = 0
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
                sent += 1
            except Exception as e:
                logger.error(f"WS send error: {e}")
                disconnected.append(connection)

        # Drop connections whose send failed
        for conn in disconnected:
            self.disconnect(conn)
        return sent

    async def close(self):
        self.closed = True
        for topic_subs in list(self.subscribers.values()):
            for subscription in list(topic_subs):
                subscription.close()
        for connection in list(self.active_connections):
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"WS close error: {e}")
        self.active_connections.clear()


def get_channel(request: Request) -> BroadcastChannel:
    return request.app.state.channel
