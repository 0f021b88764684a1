"""Fixed delay between provider batch calls."""

import time
from typing import Callable


class RateLimiter:
    """Sleeps a provider-specific delay between batches.

    Spacing only has to hold within one run, so nothing is persisted and
    there is no token bucket.
    """

    def __init__(
        self,
        default_delay_ms: int,
        provider_delays_ms: dict[str, int] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if default_delay_ms < 0:
            raise ValueError("default_delay_ms must be >= 0")
        self.default_delay_ms = default_delay_ms
        self.provider_delays_ms = dict(provider_delays_ms or {})
        self._sleep = sleep

    def delay_for(self, provider: str) -> float:
        """Delay in seconds for a provider."""
        return self.provider_delays_ms.get(provider, self.default_delay_ms) / 1000

    def wait(self, provider: str) -> None:
        delay = self.delay_for(provider)
        if delay > 0:
            self._sleep(delay)
