"""Fixed-schedule pacing between downloads.

Fastmail throttles clients that download too quickly but does not
document the limit. Pausing briefly after every download, and for longer
every hundredth, keeps a backup under it. There is no reaction to 429
responses; the schedule is purely preemptive.
"""

import time
from collections.abc import Callable


class RateLimiter:
    """Sleeps between downloads.

    Example:
        limiter = RateLimiter()
        for index, item in enumerate(items):
            download(item)
            limiter.wait(index)
    """

    def __init__(
        self,
        delay: float = 1.0,
        long_delay: float = 10.0,
        every: int = 100,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the limiter.

        Args:
            delay: Seconds to pause after an ordinary item.
            long_delay: Seconds to pause after every `every`-th item.
            every: Period of the long pause, counted in item indexes.
            sleep: Sleep function (injectable for tests).
        """
        if every < 1:
            raise ValueError("every must be at least 1")
        self._delay = delay
        self._long_delay = long_delay
        self._every = every
        self._sleep = sleep

    def delay_for(self, index: int) -> float:
        """Return how long wait(index) pauses, in seconds."""
        if index % self._every == 0:
            return self._long_delay
        return self._delay

    def wait(self, index: int) -> None:
        """Block for the delay scheduled after the item at `index`."""
        self._sleep(self.delay_for(index))
