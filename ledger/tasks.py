"""
Background execution of work that must not block a request, such as
rendering and uploading certificate PDFs.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, BaseException], None]


class BackgroundRunner:
    """
    Runs jobs on a thread pool.

    A failing job never propagates to the caller that submitted it. The
    failure is logged, remembered in ``failures`` and passed to the optional
    ``on_error`` callback.
    """

    def __init__(self, max_workers: int = 2, on_error: Optional[ErrorCallback] = None):
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ledger-task")
        self.on_error = on_error
        self.failures: List[Tuple[str, BaseException]] = []
        self._pending: List[Future] = []
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable, *args, **kwargs) -> Future:
        """
        Schedules a job.

        Args:
            name: Job name used in logs
            fn: Callable to run
        """
        future = self.executor.submit(self._run, name, fn, *args, **kwargs)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def _run(self, name: str, fn: Callable, *args, **kwargs):
        logger.debug(f"Job {name} started")
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            logger.error(f"Job {name} failed: {e}", exc_info=True)
            with self._lock:
                self.failures.append((name, e))
            if self.on_error:
                try:
                    self.on_error(name, e)
                except Exception as callback_error:
                    logger.error(f"Error callback of job {name} failed: {callback_error}")
            return None
        logger.debug(f"Job {name} finished")
        return result

    def join(self, timeout: Optional[float] = None):
        """Waits for all submitted jobs."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self, wait_for_jobs: bool = True):
        self.executor.shutdown(wait=wait_for_jobs)
        logger.info("Background runner stopped")
