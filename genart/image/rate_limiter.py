"""Per-endpoint request spacing.

Behavior:
    Keeps the last send time for each `EndpointConfig.key`. Before a request,
    `acquire` claims the slot if at least `interval` seconds have passed since
    the last send for that key (compare-and-set under a lock), otherwise it
    sleeps for the rest of the window and checks again.

Guarantees:
    - Requests for the same endpoint key are at least `interval` apart.
    - Different endpoint keys never wait on each other; only the tiny claim
      section is shared.
    - Cooperative and advisory: concurrent waiters race on the claim and one
      of them wins each window. No fairness/ordering between waiters.

Scope:
    `DEFAULT_RATE_LIMITER` is the process-wide instance every `JobClient`
    uses unless it is given its own.

Determinism:
    `clock` and `sleep` are injectable so spacing can be tested without real
    waiting.
"""

import logging
import threading
import time

from genart.image.provider_config import RATE_LIMIT_SECONDS


logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval throttle keyed by endpoint identity."""

    def __init__(self, interval: float = RATE_LIMIT_SECONDS, clock=time.monotonic, sleep=time.sleep):
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last_sent = {}
        self._lock = threading.Lock()

    def _try_claim(self, key) -> float:
        """Claim the slot for `key`; return 0 on success or the seconds left."""
        with self._lock:
            now = self._clock()
            last = self._last_sent.get(key)
            if last is None or now - last >= self.interval:
                self._last_sent[key] = now
                return 0.0
            return self.interval - (now - last)

    def acquire(self, config) -> float:
        """Block until a request to `config` may be sent.

        Returns:
            Total seconds spent waiting.
        """
        key = config.key
        waited = 0.0
        while True:
            remaining = self._try_claim(key)
            if remaining <= 0:
                if waited:
                    logger.debug("Rate limit for %s released after %.2fs", config.name, waited)
                return waited
            self._sleep(remaining)
            waited += remaining

    def last_sent(self, config) -> float | None:
        with self._lock:
            return self._last_sent.get(config.key)

    def reset(self) -> None:
        with self._lock:
            self._last_sent.clear()


# Process-wide throttle used by every client that is not given its own.
DEFAULT_RATE_LIMITER = RateLimiter()
