"""In-process publish/subscribe for store events."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

MODEL_LIST_CHANGED = "model-list-changed"
MODEL_SIZE_UPDATED = "model-size-updated"
MODEL_UNLOADED = "model-unloaded"
MODEL_BACKEND_CHANGED = "model-backend-changed"
EMERGENCY_STOP_TRIGGERED = "emergency-stop-triggered"
TRANSFER_UPDATED = "transfer-updated"

Subscriber = Callable[[str, Dict[str, Any]], None]


class EventBus:
    """Fan events out to subscribers; a failing subscriber never breaks a publisher."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: str, **payload: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event, payload)
            except Exception:  # noqa: BLE001
                logger.exception("Subscriber %r failed handling %s", callback, event)


__all__ = [
    "EventBus",
    "MODEL_LIST_CHANGED",
    "MODEL_SIZE_UPDATED",
    "MODEL_UNLOADED",
    "MODEL_BACKEND_CHANGED",
    "EMERGENCY_STOP_TRIGGERED",
    "TRANSFER_UPDATED",
]
