import os
import time
from typing import Callable, Dict
from loguru import logger

class Idem:
    """In-memory idempotency ledger to prevent relaying the same submission twice."""

    def __init__(self, ttl: float = None, clock: Callable[[], float] = time.time):
        self.ttl = ttl if ttl is not None else float(os.getenv("DEDUP_TTL_SECONDS", "300"))
        self._clock = clock
        self._seen: Dict[str, float] = {}

    def check_and_set(self, key: str) -> bool:
        """
        Check if key was already seen and record it if it wasn't.

        Args:
            key: Caller-supplied submission identifier

        Returns:
            True if key was recorded (new submission), False if already seen
        """
        self.purge()

        if key in self._seen:
            return False

        self._seen[key] = self._clock()
        return True

    def purge(self) -> int:
        """Forget keys older than the retention window."""
        cutoff = self._clock() - self.ttl
        stale = [key for key, seen_at in self._seen.items() if seen_at <= cutoff]
        for key in stale:
            self._seen.pop(key, None)

        if stale:
            logger.debug(f"Idempotency purge removed {len(stale)} keys")
        return len(stale)

    def __len__(self) -> int:
        return len(self._seen)
