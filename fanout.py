# fanout.py
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Hashable, Mapping, TypeVar

import config

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def run_concurrently(
    tasks: Mapping[K, Callable[[], V]],
    timeout: float | None,
    fallback: Callable[[K, str], V],
    max_workers: int | None = None,
) -> dict[K, V]:
    """
    Runs independent tasks on daemon threads and waits at most `timeout` seconds.

    Tasks that raise or do not finish in time are replaced by fallback(key, reason).
    Unfinished tasks are abandoned: their threads are daemons, so they never
    delay interpreter exit. At most `max_workers` tasks run at once.
    """
    if not tasks:
        return {}
    if timeout is not None and timeout <= 0:
        return {key: fallback(key, "deadline exceeded before start") for key in tasks}

    workers = max(1, min(max_workers or config.MAX_WORKERS, len(tasks)))
    slots = threading.BoundedSemaphore(workers)
    finished: queue.Queue = queue.Queue()

    def _run(key, fn):
        with slots:
            try:
                finished.put((key, True, fn()))
            except Exception as e:
                finished.put((key, False, e))

    for key, fn in tasks.items():
        threading.Thread(target=_run, args=(key, fn), name=f"fanout-{key}", daemon=True).start()

    deadline = None if timeout is None else time.monotonic() + timeout
    outcomes: dict[K, V] = {}
    pending = set(tasks)
    while pending:
        wait = None if deadline is None else deadline - time.monotonic()
        if wait is not None and wait <= 0:
            break
        try:
            key, ok, value = finished.get(timeout=wait)
        except queue.Empty:
            break
        pending.discard(key)
        if ok:
            outcomes[key] = value
        else:
            logger.warning(f"Task {key} failed: {value}")
            outcomes[key] = fallback(key, str(value))

    for key in tasks:
        if key in pending:
            logger.warning(f"Task {key} timed out after {timeout}s")
            outcomes[key] = fallback(key, f"timed out after {timeout}s")

    return {key: outcomes[key] for key in tasks}
