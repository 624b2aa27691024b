"""Retry policy and per-attempt timeouts for node execution."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple


@dataclass(frozen=True)
class RetryPolicy:
    """
    Linear retry policy.

    A node gets 1 + max_retries attempts. Before attempt n (n >= 2) the
    scheduler waits retry_delay * (n - 1) seconds.
    """
    max_retries: int = 0
    retry_delay: float = 0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_before(self, attempt: int) -> float:
        if attempt <= 1:
            return 0.0
        return self.retry_delay * (attempt - 1)


# (cancel_event, seconds) -> True when interrupted by cancellation
Sleeper = Callable[[threading.Event, float], bool]


def interruptible_sleep(cancel_event: threading.Event, seconds: float) -> bool:
    """Wait up to `seconds`, returning early (True) if the event is set."""
    if seconds <= 0:
        return cancel_event.is_set()
    return cancel_event.wait(seconds)


def run_with_timeout(
    func: Callable[..., Any],
    timeout_seconds: Optional[float],
    *args: Any,
    **kwargs: Any,
) -> Tuple[Any, bool]:
    """
    Run a function with a timeout.

    Returns: (result, timed_out)

    The worker thread cannot be killed; on timeout it keeps running as a
    daemon and its result is dropped.
    """
    if timeout_seconds is None:
        return func(*args, **kwargs), False

    result_holder = [None]
    exception_holder: list = [None]

    def target():
        try:
            result_holder[0] = func(*args, **kwargs)
        except BaseException as e:
            exception_holder[0] = e

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join(timeout=timeout_seconds)

    if thread.is_alive():
        return None, True

    if exception_holder[0] is not None:
        raise exception_holder[0]

    return result_holder[0], False


__all__ = [
    "RetryPolicy",
    "Sleeper",
    "interruptible_sleep",
    "run_with_timeout",
]
