"""Live backup notifications pushed to /ws/live subscribers.

Every message is a JSON object::

    {"type": "backup_created", "seq": 7, "timestamp": "...", "data": {...}}

``seq`` increases by one per published event so a client can tell when it
missed something and should refetch /api/backups.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class BackupEvent(Enum):
    BACKUP_CREATED = "backup_created"
    BACKUP_DELETED = "backup_deleted"
    RESTORE = "restore"
    SETTINGS_UPDATED = "settings_updated"


class LiveEventHub:
    """Fan-out of backup events to connected WebSocket clients."""

    def __init__(self):
        self._subscribers: set = set()
        self._lock = threading.Lock()
        self._seq = 0

    def subscribe(self, ws):
        with self._lock:
            self._subscribers.add(ws)
        logger.debug("Live subscriber connected")

    def unsubscribe(self, ws):
        with self._lock:
            self._subscribers.discard(ws)
        logger.debug("Live subscriber disconnected")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: BackupEvent, data: dict) -> int:
        """Send ``event`` to every subscriber. Returns how many received it.

        Sends happen outside the lock; a subscriber whose send fails is
        dropped.
        """
        with self._lock:
            self._seq += 1
            message = json.dumps({
                "type": event.value,
                "seq": self._seq,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "data": data,
            })
            subscribers = list(self._subscribers)

        failed = []
        for ws in subscribers:
            try:
                ws.send(message)
            except Exception as exc:
                logger.debug("Dropping live subscriber after %s: %s", event.value, exc)
                failed.append(ws)

        if failed:
            with self._lock:
                self._subscribers.difference_update(failed)
        return len(subscribers) - len(failed)
