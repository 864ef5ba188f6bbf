import threading
import time

from pgnloader.ingestion.work_queue import run_bounded


def test_run_bounded_handles_every_item_once_with_tiny_queue() -> None:
    seen = []
    lock = threading.Lock()

    def handle(item):
        with lock:
            seen.append(item)
        return item * 2

    results = run_bounded(range(200), handle, workers=4, queue_size=1)
    assert sorted(seen) == list(range(200))
    assert sorted(results) == [i * 2 for i in range(200)]


def test_run_bounded_never_exceeds_worker_count() -> None:
    active = 0
    peak = 0
    lock = threading.Lock()

    def handle(item):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.005)
        with lock:
            active -= 1
        return item

    results = run_bounded(range(40), handle, workers=3, queue_size=2)
    assert len(results) == 40
    assert 1 <= peak <= 3


def test_run_bounded_stops_feeding_after_cancel() -> None:
    cancel = threading.Event()

    def handle(item):
        if item == 3:
            cancel.set()
        return item

    results = run_bounded(range(1000), handle, workers=1, queue_size=1, cancel=cancel)
    assert sorted(results) == [0, 1, 2, 3]


def test_run_bounded_survives_handler_errors() -> None:
    def handle(item):
        if item % 5 == 0:
            raise RuntimeError("boom")
        return item

    results = run_bounded(range(20), handle, workers=2, queue_size=2)
    assert sorted(results) == [i for i in range(20) if i % 5]


def test_run_bounded_empty_input() -> None:
    assert run_bounded([], lambda item: item, workers=3, queue_size=1) == []
