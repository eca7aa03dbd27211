from __future__ import annotations

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from markdrop.models import utcnow

ITEM_SENT = "item_sent"
ITEM_FAILED = "item_failed"

EVENT_KINDS = {ITEM_SENT, ITEM_FAILED}


@dataclass(frozen=True)
class QueueEvent:
    kind: str
    item_id: int
    emitted_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "item_id": self.item_id,
            "emitted_at": self.emitted_at.isoformat(),
        }


class Subscription:
    def __init__(self, notifier: "EventNotifier", maxsize: int):
        self._notifier = notifier
        self._queue: queue.Queue[QueueEvent] = queue.Queue(maxsize=maxsize)
        self.closed = False

    def offer(self, event: QueueEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            return False
        return True

    def get(self, timeout: float | None = None) -> QueueEvent | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._notifier.unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class EventNotifier:
    def __init__(self, logger, max_workers: int = 2):
        self.logger = logger
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []
        self._listeners: list[Callable[[QueueEvent], None]] = []
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="markdrop-events"
        )

    def subscribe(self, maxsize: int = 100) -> Subscription:
        subscription = Subscription(self, maxsize=maxsize)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def add_listener(self, callback: Callable[[QueueEvent], None]) -> None:
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[QueueEvent], None]) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def publish(self, kind: str, item_id: int) -> QueueEvent:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown queue event kind: {kind}")
        event = QueueEvent(kind=kind, item_id=item_id)
        with self._lock:
            subscriptions = list(self._subscriptions)
            listeners = list(self._listeners)

        for subscription in subscriptions:
            if not subscription.offer(event):
                self.logger.warning(
                    "Dropped %s event for queue item %s: subscriber is full",
                    kind,
                    item_id,
                )
        for callback in listeners:
            self._executor.submit(self._deliver, callback, event)
        return event

    def item_sent(self, item_id: int) -> QueueEvent:
        return self.publish(ITEM_SENT, item_id)

    def item_failed(self, item_id: int) -> QueueEvent:
        return self.publish(ITEM_FAILED, item_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _deliver(self, callback, event: QueueEvent) -> None:
        try:
            callback(event)
        except Exception:
            self.logger.exception("Queue event listener failed for %s", event.kind)
