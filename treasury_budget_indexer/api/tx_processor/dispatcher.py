import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Optional

from .retry import PersistenceError
from ..metrics import IndexingMetrics

_LOGGER = logging.getLogger(__name__)

CATEGORIES = ("block", "transaction")


class EventDispatcher:
    """
    One bounded worker pool per event category.

    submit blocks while queue_size events of the category are in flight, so a
    fast chain source can not outrun the workers. Exceptions raised by a
    handler are logged and counted, the returned future then resolves to None.
    A PersistenceError is left on the future for the submitter, the handler
    has counted it already.
    """

    def __init__(
        self,
        workers: int = 4,
        queue_size: int = 1000,
        metrics: Optional[IndexingMetrics] = None,
        categories: Iterable[str] = CATEGORIES,
    ):
        self.metrics = metrics or IndexingMetrics()
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._slots: Dict[str, threading.BoundedSemaphore] = {}
        for category in categories:
            self._executors[category] = ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix=f"{category}-worker"
            )
            self._slots[category] = threading.BoundedSemaphore(queue_size)

    def submit(self, category: str, fn: Callable, *args, **kwargs) -> Future:
        if category not in self._executors:
            raise ValueError(f"Unknown event category {category}")
        slots = self._slots[category]
        slots.acquire()
        try:
            return self._executors[category].submit(
                self._run, category, fn, *args, **kwargs
            )
        except RuntimeError:
            # executor already shut down
            slots.release()
            raise

    def _run(self, category: str, fn: Callable, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PersistenceError:
            raise
        except Exception:
            _LOGGER.exception(f"Error in {category} handler {getattr(fn, '__name__', fn)}")
            self.metrics.errors.labels(stage="dispatch").inc()
            return None
        finally:
            self._slots[category].release()

    def shutdown(self, wait: bool = True):
        for executor in self._executors.values():
            executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
