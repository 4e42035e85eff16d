import threading
import time
from collections.abc import Callable


class WebhookReplayGuard:
    """In-memory first-line filter for redelivered provider events.

    Volatile by nature: the durable ``processed_events`` table stays
    authoritative across restarts. One instance is owned by the running
    application and handed to the webhook route as a dependency.
    """

    def __init__(self, ttl_seconds: int = 24 * 60 * 60, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._seen: dict[str, int] = {}
        self._lock = threading.Lock()

    def check_and_record(self, event_id: str | None) -> bool:
        """Return True when ``event_id`` was already recorded, else record it."""
        if event_id is None or not event_id.strip():
            return False
        now = int(self._clock())
        with self._lock:
            self._sweep(now)
            if event_id in self._seen:
                return True
            self._seen[event_id] = now
            return False

    def forget(self, event_id: str | None) -> None:
        if not event_id:
            return
        with self._lock:
            self._seen.pop(event_id, None)

    def _sweep(self, now: int) -> None:
        cutoff = now - self.ttl_seconds
        expired = [event_id for event_id, seen_at in self._seen.items() if seen_at < cutoff]
        for event_id in expired:
            del self._seen[event_id]

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
