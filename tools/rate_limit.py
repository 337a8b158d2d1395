import os
import time
from typing import Callable, Dict, Any
from loguru import logger

class RateLimiter:
    """In-memory fixed-window rate limiter keyed by client identifier.

    State is per process and unsynchronized, so limits are best effort when
    several instances serve traffic.
    """

    def __init__(self, limit: int = None, window: float = None, clock: Callable[[], float] = time.time):
        self.limit = limit if limit is not None else int(os.getenv("RATE_LIMIT_MAX", "10"))
        self.window = window if window is not None else float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
        self._clock = clock
        self._ledger: Dict[str, Dict[str, Any]] = {}

    def check(self, client_id: str) -> bool:
        """
        Count a request from client_id and decide whether to admit it.

        Args:
            client_id: Best-effort client identifier (usually an IP string)

        Returns:
            True if the request is within the limit, False otherwise
        """
        now = self._clock()
        entry = self._ledger.get(client_id)

        if entry is None or now > entry["reset_at"]:
            self._ledger[client_id] = {"count": 1, "reset_at": now + self.window}
            return True

        # Keep counting after the limit so the window stays denied
        entry["count"] += 1
        return entry["count"] <= self.limit

    def sweep(self) -> int:
        """Drop entries whose window has expired. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._ledger.items() if now > entry["reset_at"]]
        for key in expired:
            self._ledger.pop(key, None)

        if expired:
            logger.debug(f"Rate limit sweep removed {len(expired)} entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._ledger)
