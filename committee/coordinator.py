"""Per-subject gate: at most one deliberation in flight, plus a cooldown after each run."""

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_MS = 15000


class DecisionCoordinator:
    """Process-local in-flight set and cooldown map.

    All reads and writes happen under one lock, so try_start is an atomic
    check-and-set even when called from several threads or event loops.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._cooldown_until: dict[str, float] = {}

    def try_start(self, subject_id: str) -> bool:
        with self._lock:
            if subject_id in self._in_flight:
                logger.info("Deliberation for %s already in flight", subject_id)
                return False
            until = self._cooldown_until.get(subject_id)
            now = self._clock()
            if until is not None and now < until:
                logger.info("Deliberation for %s cooling down for %.1fs", subject_id, until - now)
                return False
            self._cooldown_until.pop(subject_id, None)
            self._in_flight.add(subject_id)
            return True

    def finish(self, subject_id: str, cooldown_ms: int = DEFAULT_COOLDOWN_MS) -> None:
        with self._lock:
            self._in_flight.discard(subject_id)
            self._cooldown_until[subject_id] = self._clock() + cooldown_ms / 1000
        logger.debug("Deliberation for %s finished, cooldown %dms", subject_id, cooldown_ms)

    def set_cooldown(self, subject_id: str, cooldown_ms: int) -> None:
        """Release the subject (if in flight) and block it for cooldown_ms."""
        with self._lock:
            self._in_flight.discard(subject_id)
            self._cooldown_until[subject_id] = self._clock() + cooldown_ms / 1000
        logger.debug("Cooldown for %s set to %dms", subject_id, cooldown_ms)

    def is_in_flight(self, subject_id: str) -> bool:
        with self._lock:
            return subject_id in self._in_flight
