"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: each key is guarded by one lock from a fixed pool (lock
  striping), so unrelated clients rarely contend.
- Entries are never evicted; they are reset in place when their window ends.
"""

from __future__ import annotations

import threading
import zlib
from dataclasses import dataclass

from gateway.adapters.rate_limit.base import AbstractCounterStore, WindowState


@dataclass
class _ClientWindow:
    window_start: float
    count: int


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping one window per key in a process-local dict."""

    def __init__(self, *, window_seconds: float, stripes: int = 64) -> None:
        """Initialize the store.

        Args:
            window_seconds: Window length in seconds.
            stripes: Number of locks keys are spread across.

        Raises:
            ValueError: If window_seconds or stripes are invalid.
        """
        super().__init__(window_seconds=window_seconds)
        if stripes < 1:
            raise ValueError("stripes must be >= 1")

        self._locks = [threading.Lock() for _ in range(stripes)]
        self._windows: dict[str, _ClientWindow] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]

    def increment(self, key: str, now: float) -> WindowState:
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock_for(key):
            window = self._windows.get(key)
            if window is None:
                window = _ClientWindow(window_start=now, count=0)
                self._windows[key] = window
            elif now - window.window_start >= self._window_seconds:
                window.window_start = now
                window.count = 0

            window.count += 1
            return WindowState(count=window.count, window_start=window.window_start)

    def __len__(self) -> int:
        return len(self._windows)
