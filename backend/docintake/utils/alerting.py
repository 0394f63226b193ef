import logging
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)

ALERT_WINDOW_SECONDS = 3600
ALERT_THRESHOLDS = {
    "EXTRACTION_PROVIDERS_EXHAUSTED": 5,
    "ACTION_CARD_EXECUTION_FAILED": 3,
    "PERMISSION_DENIED": 10,
    "DOCUMENT_INPUT_REJECTED": 20,
}


class AuditAlertTracker:
    """Per-action sliding window; logs an ALERT whenever the count reaches a threshold multiple."""

    def __init__(self, window_seconds: int, thresholds: dict[str, int]) -> None:
        self.window_seconds = window_seconds
        self.thresholds = dict(thresholds)
        self._events: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def _prune(self, events: deque[float], now: float) -> None:
        while events and now - events[0] >= self.window_seconds:
            events.popleft()

    def record(self, action: str, metadata: Optional[dict] = None) -> bool:
        """Count one *action*; True when this occurrence raised an alert."""
        threshold = self.thresholds.get(action, 0)
        if threshold <= 0:
            return False
        with self._lock:
            now = time.monotonic()
            events = self._events[action]
            self._prune(events, now)
            events.append(now)
            seen = len(events)
        if seen % threshold:
            return False
        logger.warning(
            "ALERT audit_action=%s count=%s window_seconds=%s metadata=%s",
            action,
            seen,
            self.window_seconds,
            metadata or {},
        )
        return True

    def count(self, action: str) -> int:
        with self._lock:
            return len(self._events.get(action, ()))

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


alert_tracker = AuditAlertTracker(ALERT_WINDOW_SECONDS, ALERT_THRESHOLDS)
