"""Shared batch deadline with cooperative cancellation."""

from __future__ import annotations

import threading
import time
from typing import Callable

from ingestion.errors import IngestionTimeout


class Deadline:
    """Wall-clock limit shared by every item of a batch.

    Steps call :meth:`check` before doing work and :meth:`timeout_for` to cap
    the timeout of each network call, so nothing blocks past the deadline.
    """

    def __init__(
        self,
        seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = clock() + max(float(seconds), 0.0)
        self._cancelled = threading.Event()

    def remaining(self) -> float:
        if self._cancelled.is_set():
            return 0.0
        return max(self._expires_at - self._clock(), 0.0)

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self, step: str = "") -> None:
        if self.expired():
            message = f"timed out during {step}" if step else "timed out"
            raise IngestionTimeout(message)

    def timeout_for(self, limit: float | None = None) -> float:
        """Return the timeout to use for one call, never above ``limit``."""

        self.check()
        remaining = self.remaining()
        if limit is None or limit <= 0:
            return remaining
        return min(limit, remaining)


__all__ = ["Deadline"]
