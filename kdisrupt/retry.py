"""Retry a function until it reports completion or a timeout expires."""

from __future__ import annotations

import time
from typing import Callable

__all__ = ["retry"]


def retry(timeout: float, backoff: float, func: Callable[[], bool]) -> None:
    """Call ``func`` until it returns True, raises, or ``timeout`` seconds pass.

    When ``func`` returns a false value, it is called again after sleeping
    ``backoff`` seconds. Any exception raised by ``func`` propagates unchanged.
    Raises ``TimeoutError`` when the timeout expires before ``func`` succeeds.
    """
    deadline = time.monotonic() + timeout
    while True:
        if time.monotonic() >= deadline:
            raise TimeoutError("timeout expired")
        if func():
            return
        time.sleep(backoff)