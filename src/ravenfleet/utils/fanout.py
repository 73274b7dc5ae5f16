# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/utils/fanout.py
from __future__ import annotations

import concurrent.futures
import queue
from typing import Callable, List, Optional, Sequence, TypeVar

from ravenfleet.errors import MultiError

T = TypeVar("T")


def fan_out(
    hosts: Sequence[str],
    task: Callable[[str, int], T],
    *,
    parallel: bool = True,
    on_error: Optional[Callable[[str, int, BaseException], Optional[T]]] = None,
) -> List[Optional[T]]:
    """
    Run ``task(host, index)`` once per host and wait for all of them.

    Results come back indexed by host position. Failures go into a queue
    sized to the host count and are merged into one MultiError after the
    join. *on_error* may absorb a failure by returning a substitute result
    (or None); re-raising from it sends the error to the aggregate.
    """
    results: List[Optional[T]] = [None] * len(hosts)
    errors: "queue.Queue[BaseException]" = queue.Queue(maxsize=max(len(hosts), 1))

    def run_one(host: str, index: int) -> None:
        try:
            results[index] = task(host, index)
        except Exception as exc:
            if on_error is None:
                errors.put_nowait(exc)
                return
            try:
                results[index] = on_error(host, index, exc)
            except Exception as unhandled:
                errors.put_nowait(unhandled)

    if parallel and len(hosts) > 1:
        with concurrent.futures.ThreadPoolExecutor(max_workers=len(hosts)) as pool:
            futures = [pool.submit(run_one, host, index) for index, host in enumerate(hosts)]
            concurrent.futures.wait(futures)
    else:
        for index, host in enumerate(hosts):
            run_one(host, index)

    collected: List[BaseException] = []
    while not errors.empty():
        collected.append(errors.get_nowait())
    if collected:
        raise MultiError(collected)
    return results
