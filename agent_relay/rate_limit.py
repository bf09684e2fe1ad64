"""
Per-agent send cooldown.

Stops reply loops (A answers B answers A ...) and floods by admitting at
most one message per agent per cooldown window.
"""

import math
import threading
import time
from typing import Callable, Dict


class RateLimiter:
    """
    Cooldown-based admission gate, safe under concurrent callers.

    Entries for agents that have been quiet for `idle_factor` windows are
    swept out during `admit`, at most once per window.
    """

    def __init__(self, cooldown: float = 30.0, idle_factor: float = 10.0,
                 clock: Callable[[], float] = time.monotonic):
        self.cooldown = cooldown
        self.idle_ttl = max(cooldown, cooldown * idle_factor)
        self.clock = clock
        self._last_admitted: Dict[str, float] = {}
        self._last_sweep = None
        self._lock = threading.Lock()

    def admit(self, agent_id: str) -> bool:
        """Admit and start a new window, or refuse if the current one is still open."""
        with self._lock:
            now = self.clock()
            self._maybe_sweep(now)
            last = self._last_admitted.get(agent_id)
            if last is not None and now - last < self.cooldown:
                return False
            self._last_admitted[agent_id] = now
            return True

    def blocked(self, agent_id: str) -> bool:
        """True if `admit` would refuse right now. Does not record anything."""
        return self.retry_after(agent_id) > 0

    def retry_after(self, agent_id: str) -> float:
        """Seconds left in the agent's window, 0 if it may send."""
        with self._lock:
            last = self._last_admitted.get(agent_id)
            if last is None:
                return 0.0
            return max(0.0, self.cooldown - (self.clock() - last))

    def retry_after_seconds(self, agent_id: str) -> int:
        return int(math.ceil(self.retry_after(agent_id)))

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_admitted)

    def _maybe_sweep(self, now: float) -> None:
        if self._last_sweep is not None and now - self._last_sweep < self.cooldown:
            return
        self._last_sweep = now
        stale = [a for a, t in self._last_admitted.items() if now - t > self.idle_ttl]
        for agent_id in stale:
            del self._last_admitted[agent_id]
