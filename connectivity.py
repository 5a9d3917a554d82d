"""
Backend connectivity state.

Holds whether the database answered its last ping and tells subscribers
when that changes.
"""

import asyncio
import logging
import os
from typing import Callable, Optional

from realtime import Subscription, SubscriptionManager

logger = logging.getLogger(__name__)

CONNECTIVITY_POLL_SECONDS = float(os.getenv("CONNECTIVITY_POLL_SECONDS", "30"))
TOPIC = "connectivity"


class ConnectivityMonitor:
    def __init__(self, ping: Callable[[], object], subscriptions: SubscriptionManager):
        self.ping = ping
        self.subscriptions = subscriptions
        self._connected: Optional[bool] = None
        self.last_error: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return bool(self._connected)

    def subscribe(self, callback: Callable[[bool], None]) -> Subscription:
        return self.subscriptions.subscribe(TOPIC, lambda _topic, state: callback(state))

    def check(self) -> bool:
        try:
            self.ping()
            connected = True
            self.last_error = None
        except Exception as e:
            connected = False
            self.last_error = str(e)[:80]
        if connected != self._connected:
            previous = self._connected
            self._connected = connected
            if previous is not None:
                logger.warning("database connectivity changed: %s", "online" if connected else "offline")
            self.subscriptions.publish(TOPIC, connected)
        return connected

    async def run(self, interval: float = CONNECTIVITY_POLL_SECONDS):
        while True:
            await asyncio.to_thread(self.check)
            await asyncio.sleep(interval)
