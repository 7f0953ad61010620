"""Admission control: per-client fixed-window request ceiling."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

from gateway.adapters.rate_limit.base import AbstractCounterStore


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        remaining: Requests left in the current window (0 when rejected).
        reset_at: UNIX epoch seconds at which the client's window ends.
        retry_after_seconds: Whole seconds to wait, set only when rejected.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int | None = None

    def reset_after(self, now: float) -> int:
        """Whole seconds from ``now`` until the window resets (never negative)."""
        return max(0, int(math.ceil(self.reset_at - now)))


class AdmissionController:
    """Decides accept/reject for each request before it is routed.

    Every call counts against the client's window, rejected ones included, so
    a client hammering the gateway stays rejected until its window ends.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        max_requests: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")

        self._store = store
        self._max_requests = max_requests
        self._clock = clock

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._store.window_seconds

    def now(self) -> float:
        return self._clock()

    def admit(self, client_key: str, now: float | None = None) -> AdmissionDecision:
        """Count a request from ``client_key`` and decide whether it proceeds.

        Args:
            client_key: Stable client identity, typically the caller's address.
            now: UNIX time in seconds; defaults to the controller's clock.

        Returns:
            AdmissionDecision for this request.

        Raises:
            ValueError: If client_key is empty.
        """
        if not client_key:
            raise ValueError("client_key must be a non-empty string")

        if now is None:
            now = self._clock()

        state = self._store.increment(client_key, now)
        reset_at = state.window_start + self._store.window_seconds
        remaining = max(0, self._max_requests - state.count)

        if state.count > self._max_requests:
            return AdmissionDecision(
                allowed=False,
                limit=self._max_requests,
                remaining=0,
                reset_at=reset_at,
                retry_after_seconds=max(1, int(math.ceil(reset_at - now))),
            )

        return AdmissionDecision(
            allowed=True,
            limit=self._max_requests,
            remaining=remaining,
            reset_at=reset_at,
        )
