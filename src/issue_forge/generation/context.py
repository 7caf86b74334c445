"""Deadline and cancellation carrier for generation calls."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

MIN_TIMEOUT_SECONDS = 1.0


class GenerationCancelledError(RuntimeError):
    """Raised when the caller cancelled the operation or its deadline passed."""


@dataclass(slots=True)
class CallContext:
    """Optional monotonic deadline plus a cancel flag shared with the caller."""

    deadline: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> CallContext:
        return cls(deadline=clock() + seconds, clock=clock)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining_seconds(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - self.clock()

    def expired(self) -> bool:
        remaining = self.remaining_seconds()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        """Raise GenerationCancelledError if cancelled or past the deadline."""

        if self.cancelled:
            raise GenerationCancelledError("generation cancelled by caller")
        if self.expired():
            raise GenerationCancelledError("generation deadline exceeded")


def effective_timeout(context: CallContext | None, fallback_seconds: float) -> float:
    """Derive a call timeout from the caller deadline, clamped to the fallback."""

    fallback = max(MIN_TIMEOUT_SECONDS, fallback_seconds)
    if context is None:
        return fallback
    remaining = context.remaining_seconds()
    if remaining is None:
        return fallback
    return max(MIN_TIMEOUT_SECONDS, min(remaining, fallback))


def wait_or_cancel(seconds: float, context: CallContext | None) -> None:
    """Sleep for up to ``seconds``, waking early and raising on cancellation."""

    if seconds <= 0:
        if context is not None:
            context.check()
        return
    if context is None:
        time.sleep(seconds)
        return

    context.check()
    remaining = context.remaining_seconds()
    if remaining is not None and remaining < seconds:
        context.cancel_event.wait(max(0.0, remaining))
    else:
        context.cancel_event.wait(seconds)
    context.check()
