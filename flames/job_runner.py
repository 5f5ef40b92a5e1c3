# flames/job_runner.py
"""
Background execution for job stages.

A request handler never awaits pipeline work: it hands a callable to
JobRunner.submit(...) and returns. Progress is only observable by re-reading
the job record.

Per-job single flight
---------------------
At most one unit of work (background stage OR synchronous edit) may touch a
job's working directory at a time. JobGuard tracks job ids with work in
flight; a second claim for the same id is rejected with JobBusyError rather
than queued, so two generation runs for one job can never interleave.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Set

from flames.errors import JobBusyError

logger = logging.getLogger("flames_backend")


class JobGuard:
    """
    Process-local registry of job ids with work in flight.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: Set[str] = set()

    def acquire(self, job_id: str, stage: str = "") -> None:
        with self._lock:
            if job_id in self._in_flight:
                raise JobBusyError(f"Job {job_id} already has work in progress; cannot start '{stage}'.")
            self._in_flight.add(job_id)

    def release(self, job_id: str) -> None:
        with self._lock:
            self._in_flight.discard(job_id)

    def is_busy(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._in_flight

    @contextmanager
    def hold(self, job_id: str, stage: str = ""):
        self.acquire(job_id, stage)
        try:
            yield
        finally:
            self.release(job_id)


class JobRunner:
    def __init__(self, guard: JobGuard | None = None, max_concurrent: int = 4):
        self.guard = guard or JobGuard()
        self.max_concurrent = max_concurrent
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="flames-job")

    def submit(self, job_id: str, stage: str, fn: Callable[[], object]) -> Future:
        """
        Claim `job_id` and run `fn` on the pool. The claim is released when
        `fn` finishes, however it finishes. Raises JobBusyError synchronously
        if the job already has work in flight.
        """
        self.guard.acquire(job_id, stage)

        def _run():
            try:
                return fn()
            except Exception:
                # stages record their own failure on the job; this is the last resort log
                logger.exception(f"[Runner] job={job_id} stage={stage} raised")
                raise
            finally:
                self.guard.release(job_id)

        try:
            future = self._executor.submit(_run)
        except Exception:
            self.guard.release(job_id)
            raise
        logger.info(f"[Runner] job={job_id} stage={stage} submitted")
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
