"""
Bounded fan-out: a producer feeds a fixed-size queue drained by N worker threads.

A full queue blocks the producer, so discovery never runs far ahead of
processing. Each worker keeps its own list of results; the caller reduces them.
"""
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional

from pgnloader.logging_utils import get_logger

logger = get_logger(__name__)

_STOP = object()
PUT_POLL_SECONDS = 0.5


def _put(work: queue.Queue, item, cancel: threading.Event) -> bool:
    while not cancel.is_set():
        try:
            work.put(item, timeout=PUT_POLL_SECONDS)
            return True
        except queue.Full:
            continue
    return False


def run_bounded(
    items: Iterable,
    handle: Callable,
    workers: int,
    queue_size: int,
    cancel: Optional[threading.Event] = None,
    thread_name_prefix: str = 'worker',
) -> List:
    """
    Run ``handle(item)`` for every item with at most ``workers`` in flight.

    Once ``cancel`` is set the producer stops feeding and workers discard
    whatever is still queued. Returns the handle results in no particular order.
    """
    cancel = cancel or threading.Event()
    workers = max(workers, 1)
    work = queue.Queue(maxsize=max(queue_size, 1))

    def worker():
        results = []
        while True:
            item = work.get()
            if item is _STOP:
                return results
            if cancel.is_set():
                continue
            try:
                results.append(handle(item))
            except Exception:
                # Keep draining; a dead worker would stall the producer
                logger.exception("Unhandled error while processing %s", item)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=thread_name_prefix) as executor:
        futures = [executor.submit(worker) for _ in range(workers)]
        try:
            for item in items:
                if not _put(work, item, cancel):
                    break
        finally:
            for _ in range(workers):
                work.put(_STOP)
        results = []
        for future in futures:
            results.extend(future.result())
    return results
