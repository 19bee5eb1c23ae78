"""Time-bounded memo of a responder's availability check."""

from __future__ import annotations

import time
from typing import Awaitable, Callable, Optional

from docrag.config import settings


class AvailabilityCache:
    """Caches one backend's ``check_available`` result for ``ttl_s`` seconds.

    Concurrent refreshes are not coordinated; the last check to finish
    wins, which is harmless for a boolean.

    Parameters
    ----------
    check:
        Coroutine function returning the backend's availability.
    ttl_s:
        How long a check result stays valid.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[bool]],
        *,
        ttl_s: float = settings.availability_ttl_s,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._check = check
        self.ttl_s = ttl_s
        self._clock = clock
        self._value: Optional[bool] = None
        self._checked_at = 0.0

    @property
    def cached(self) -> Optional[bool]:
        """The last result if still fresh, else ``None``."""
        if self._value is None or self._clock() - self._checked_at >= self.ttl_s:
            return None
        return self._value

    async def get(self) -> bool:
        cached = self.cached
        if cached is not None:
            return cached
        value = bool(await self._check())
        self._value = value
        self._checked_at = self._clock()
        return value

    def invalidate(self) -> None:
        self._value = None
