# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/utils/retry.py
from __future__ import annotations

import functools
import time
from typing import Callable, Optional, TypeVar

from ravenfleet.errors import RavenFleetError

T = TypeVar("T")


class RetryError(RavenFleetError):
    pass


def call_with_retry(
    fn: Callable[[], T],
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    retry_if: Optional[Callable[[BaseException], bool]] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    reraise: bool = False,
    sleep: Optional[Callable[[float], None]] = None,
    name: Optional[str] = None,
) -> T:
    """
    Call *fn* up to *retries* times, sleeping *delay* seconds between attempts.

    Exceptions outside retry_on, or rejected by retry_if, propagate at once.
    When attempts run out the last exception is re-raised if *reraise*,
    otherwise it is chained to a RetryError.
    """
    sleeper = sleep or time.sleep
    last_exc: Optional[BaseException] = None
    for attempt in range(1, retries + 1):
        try:
            return fn()
        except retry_on as exc:
            if retry_if is not None and not retry_if(exc):
                raise
            last_exc = exc
            if on_retry:
                on_retry(attempt, exc)
            if attempt == retries:
                break
            sleeper(delay)
    if reraise and last_exc is not None:
        raise last_exc
    label = name or getattr(fn, "__name__", "operation")
    raise RetryError(f"{label} failed after {retries} retries") from last_exc


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    retry_if: Optional[Callable[[BaseException], bool]] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    reraise: bool = False,
):
    """
    Retry decorator for idempotent operations.

    retries: number of attempts
    delay: seconds between attempts
    retry_on: exception types to retry
    retry_if: extra predicate an exception must satisfy to be retried
    on_retry: callback(attempt, exception)
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            return call_with_retry(
                lambda: fn(*args, **kwargs),
                retries=retries,
                delay=delay,
                retry_on=retry_on,
                retry_if=retry_if,
                on_retry=on_retry,
                reraise=reraise,
                name=fn.__name__,
            )
        return wrapper
    return decorator


def poll_until(
    check: Callable[[], bool],
    *,
    attempts: int,
    interval: float,
    sleep: Optional[Callable[[float], None]] = None,
) -> bool:
    """
    Bounded poll. Returns True as soon as *check* passes, False when the
    attempts run out. Callers decide whether a False is fatal.
    """
    sleeper = sleep or time.sleep
    for attempt in range(1, attempts + 1):
        if check():
            return True
        if attempt < attempts:
            sleeper(interval)
    return False
