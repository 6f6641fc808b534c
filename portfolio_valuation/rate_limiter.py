"""Fixed-interval request pacing for rate-limited price providers."""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforces a minimum delay between consecutive requests to one provider.

    Each provider gets its own limiter, so requests to different providers
    never wait on each other.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "provider",
    ):
        """Initialize the limiter.

        Args:
            min_interval: Minimum seconds between two permits (0 disables pacing)
            clock: Monotonic clock returning seconds
            sleep: Function used to block for a number of seconds
            name: Provider name used in log messages
        """
        self.min_interval = max(min_interval, 0.0)
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._last_request_time: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Block until the next request may be sent.

        Returns:
            Seconds spent waiting
        """
        with self._lock:
            waited = 0.0
            if self._last_request_time is not None and self.min_interval > 0:
                elapsed = self._clock() - self._last_request_time
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    logger.debug(f"Pacing {self.name}: sleeping {waited:.2f}s")
                    self._sleep(waited)
            self._last_request_time = self._clock()
            return waited
