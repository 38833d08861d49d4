import asyncio


class HealthGauge:
    """
    Readiness score fed by unexpected handler failures.

    Handlers call ``record_failure`` for exceptions outside the regular error taxonomy (a database
    that went away, a bug), not for an upstream API saying no. The background health task calls
    ``decay`` periodically, so an isolated failure is forgotten while a burst pushes the score over
    the threshold and fails the readiness check until things calm down.
    """

    def __init__(self, failures: int = 0, threshold: int = 50) -> None:
        self._failures = failures
        self._threshold = threshold
        self._lock = asyncio.Lock()

    async def record_failure(self, weight: int = 1) -> int:
        async with self._lock:
            self._failures += int(weight)
            return self._failures

    async def decay(self) -> None:
        async with self._lock:
            if self._failures > 0:
                self._failures -= 1

    async def is_healthy(self) -> bool:
        async with self._lock:
            return self._failures <= self._threshold
