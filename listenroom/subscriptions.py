"""
Topic based fan-out for real-time updates

Subscribers are async callbacks (usually a WebSocket's send_str). Each
subscribe() returns a Subscription handle; use it as a context manager so the
callback is always removed when the connection goes away.
"""
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger("listenroom.subscriptions")

Callback = Callable[[str], Awaitable[None]]

ROOMS_TOPIC = "rooms"


def room_topic(room_id: str) -> str:
    return f"room:{room_id}"


class Subscription:
    """Cancellation handle returned by Hub.subscribe"""

    def __init__(self, hub: "Hub", topic: str, callback: Callback):
        self.hub = hub
        self.topic = topic
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self.hub._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()


class Hub:
    def __init__(self):
        self._subscribers: Dict[str, list] = defaultdict(list)

    def subscribe(self, topic: str, callback: Callback) -> Subscription:
        sub = Subscription(self, topic, callback)
        self._subscribers[topic].append(sub)
        logger.debug("Subscribed to %s (total: %d)", topic, len(self._subscribers[topic]))
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.topic)
        if not subs:
            return
        if sub in subs:
            subs.remove(sub)
        if not subs:
            del self._subscribers[sub.topic]

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        if topic is not None:
            return len(self._subscribers.get(topic, ()))
        return sum(len(subs) for subs in self._subscribers.values())

    async def publish(self, topic: str, message: str) -> int:
        """Deliver to every subscriber of `topic`; failing subscribers are dropped"""
        subs = list(self._subscribers.get(topic, ()))
        delivered = 0
        for sub in subs:
            try:
                await sub.callback(message)
                delivered += 1
            except Exception as e:
                logger.debug("Dropping subscriber on %s: %s", topic, e)
                sub.cancel()
        return delivered
