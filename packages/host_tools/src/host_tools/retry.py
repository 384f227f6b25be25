from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")


def retry_call(
    action: Callable[[], T],
    *,
    attempts: int,
    delay_seconds: float,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> T:
    """
    Call `action` up to `attempts` times with a fixed delay between attempts.

    The last error is re-raised once attempts are exhausted. `on_retry`
    receives the 1-based number of the failed attempt before each sleep.
    """

    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return action()
        except retry_on as e:
            if attempt >= attempts:
                raise
            if on_retry is not None:
                on_retry(attempt, e)
            if delay_seconds > 0:
                sleep(delay_seconds)
    raise AssertionError("unreachable")
