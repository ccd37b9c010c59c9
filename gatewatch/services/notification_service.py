# =======================================================================================
# gatewatch/services/notification_service.py - Notification Channel
# =======================================================================================
import logging
import threading
from collections import deque
from typing import Callable, Deque, List
from ..config import config
from ..models.schemas import AlertPayload
from ..utils.exceptions import DependencyUnavailableError

logger = logging.getLogger(__name__)

Subscriber = Callable[[AlertPayload], None]


class NotificationService:
    """
    Fan-out of high/critical alert payloads to the dashboard layer.

    Subscribers are plain callables; the most recent payloads are also kept in a
    bounded buffer so the dashboard can poll for them.
    """

    def __init__(self, buffer_size: int = config.NOTIFICATION_BUFFER_SIZE):
        self._subscribers: List[Subscriber] = []
        self._recent: Deque[AlertPayload] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber):
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber):
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, payload: AlertPayload):
        """Deliver to every subscriber; raises DependencyUnavailableError if any fails."""
        with self._lock:
            self._recent.append(payload)
            subscribers = list(self._subscribers)

        failures = 0
        for callback in subscribers:
            try:
                callback(payload)
            except Exception as e:
                failures += 1
                logger.warning("Notification subscriber %r failed: %s", callback, e)

        if failures:
            raise DependencyUnavailableError(
                f"{failures} of {len(subscribers)} notification subscribers failed"
            )

    def recent(self, limit: int = 50) -> List[AlertPayload]:
        with self._lock:
            items = list(self._recent)
        return items[-limit:][::-1]

    def clear(self):
        with self._lock:
            self._recent.clear()


# Global instance
notification_service = NotificationService()
