"""Executors used to run rasterization off the tick thread."""

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from threading import Lock


class InlineExecutor(Executor):
    """
    Executor that runs each task immediately in the submitting thread.

    Used for deterministic playback (tests, offline rendering) where the
    tick must observe rasterization results without waiting on a thread.
    """

    def __init__(self):
        self._shutdown = False
        self._lock = Lock()

    def submit(self, fn, /, *args, **kwargs) -> Future:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")
        future: Future = Future()
        if not future.set_running_or_notify_cancel():
            return future
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        with self._lock:
            self._shutdown = True


def create_executor(workers: int) -> Executor:
    """Thread pool for background rasterization."""
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="formation-raster")
