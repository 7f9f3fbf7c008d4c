# Overview: In-process publish/subscribe hub for real-time client notifications.

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Callable

from flask import current_app

OWNERS_TOPIC = "owners"


def branch_topic(branch_id: int) -> str:
    return f"branch:{branch_id}"


class RealtimeNotifier:
    """
    Topic fan-out. A websocket/SSE layer subscribes per connected client;
    services publish after commit. Subscriber failures are logged and never
    reach the publisher.
    """

    def __init__(self, app=None):
        self._subscribers: dict[str, list[Callable[[str, dict], None]]] = defaultdict(list)
        self._lock = threading.Lock()
        self._logger = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self._logger = app.logger
        app.extensions["fiscalpos.notifier"] = self

    def subscribe(self, topic: str, callback: Callable[[str, dict], None]) -> None:
        with self._lock:
            self._subscribers[topic].append(callback)

    def unsubscribe(self, topic: str, callback: Callable[[str, dict], None]) -> None:
        with self._lock:
            if callback in self._subscribers.get(topic, []):
                self._subscribers[topic].remove(callback)

    def publish(self, topic: str, event: dict) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            try:
                callback(topic, event)
            except Exception:
                (self._logger or current_app.logger).exception("Subscriber failed for topic %s", topic)

    def publish_branch(self, branch_id: int, event: dict, *, owners: bool = True) -> None:
        """Publish to the branch room and, by default, to the owners room."""
        self.publish(branch_topic(branch_id), event)
        if owners:
            self.publish(OWNERS_TOPIC, event)


def get_notifier() -> RealtimeNotifier:
    return current_app.extensions["fiscalpos.notifier"]
