"""
In-process publish/subscribe for realtime listeners.

Every listener is registered through a SubscriptionManager and gets a
Subscription handle back. A SubscriptionScope collects the handles a
consumer (a WebSocket, a test) opened and detaches all of them on exit.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], None]


class Subscription:
    def __init__(self, manager: "SubscriptionManager", topic: str, callback: Listener):
        self.manager = manager
        self.topic = topic
        self.callback = callback
        self.active = True

    def close(self):
        if self.active:
            self.manager._detach(self)
            self.active = False


class SubscriptionScope:
    def __init__(self, manager: "SubscriptionManager"):
        self.manager = manager
        self.subscriptions: List[Subscription] = []

    def subscribe(self, topic: str, callback: Listener) -> Subscription:
        sub = self.manager.subscribe(topic, callback)
        self.subscriptions.append(sub)
        return sub

    def close(self):
        for sub in self.subscriptions:
            sub.close()
        self.subscriptions.clear()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class SubscriptionManager:
    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Subscription]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Listener) -> Subscription:
        sub = Subscription(self, topic, callback)
        with self._lock:
            self._listeners[topic].append(sub)
        return sub

    def scope(self) -> SubscriptionScope:
        return SubscriptionScope(self)

    def publish(self, topic: str, payload: Any) -> int:
        with self._lock:
            listeners = list(self._listeners.get(topic, ()))
        for sub in listeners:
            try:
                sub.callback(topic, payload)
            except Exception:
                # one broken listener must not starve the others
                logger.exception("listener for %s failed", topic)
        return len(listeners)

    def listener_count(self, topic: str = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._listeners.get(topic, ()))
            return sum(len(v) for v in self._listeners.values())

    def _detach(self, sub: Subscription):
        with self._lock:
            listeners = self._listeners.get(sub.topic)
            if not listeners:
                return
            try:
                listeners.remove(sub)
            except ValueError:
                pass
            if not listeners:
                del self._listeners[sub.topic]
