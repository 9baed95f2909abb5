from dataclasses import dataclass, field
import logging
import time
from typing import Callable

_LOGGER = logging.getLogger(__name__)


@dataclass
class _Window:
    started_at: float
    count: int = 0


@dataclass
class RateLimiter:
    """Fixed window rate limiter keyed by an identity (client ip, jid...)"""

    max_requests: int
    window_seconds: float = 60
    clock: Callable[[], float] = time.monotonic
    _windows: dict[str, _Window] = field(default_factory=dict, init=False)

    def is_allowed(self, key: str) -> bool:
        """Record a request for the key and return False if the window is exhausted"""
        now = self.clock()
        window = self._windows.get(key)
        if window is None or now - window.started_at >= self.window_seconds:
            window = _Window(started_at=now)
            self._windows[key] = window
        if window.count >= self.max_requests:
            _LOGGER.debug(f"Rate limit reached for {key}")
            return False
        window.count += 1
        return True

    def get_reset_time(self, key: str) -> float:
        """Seconds until the window for the key resets (0 if there is none)"""
        window = self._windows.get(key)
        if window is None:
            return 0
        return max(0.0, window.started_at + self.window_seconds - self.clock())

    def cleanup(self) -> int:
        now = self.clock()
        expired = [
            key
            for key, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
        return len(expired)
