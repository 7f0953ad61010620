"""Counter store interface.

The admission controller runs its fixed-window algorithm against this
abstraction, so the storage backend can change without touching the policy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowState:
    """Snapshot of a client's window after an increment.

    Attributes:
        count: Requests counted in the current window, including this one.
        window_start: UNIX time in seconds at which the window opened.
    """

    count: int
    window_start: float


class AbstractCounterStore(ABC):
    """Per-key fixed-window counters."""

    def __init__(self, *, window_seconds: float) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._window_seconds = window_seconds

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @abstractmethod
    def increment(self, key: str, now: float) -> WindowState:
        """Count one request for ``key`` at time ``now``.

        A window that has been open for at least ``window_seconds`` is reset
        (count back to zero, window restarted at ``now``) before counting.

        Args:
            key: Client identity (e.g. IP address).
            now: UNIX time in seconds.

        Returns:
            WindowState after the increment.
        """
        raise NotImplementedError
