"""
=============================================================================
THREAD POOL
=============================================================================

Worker threads that serve accepted connections. One job is one
connection's whole keep-alive loop.

    accept loop ──submit()──► [ bounded queue ] ──► worker-0 .. worker-N
                                   │
                            full → submit() is False
                                 → the server answers 503 "Server overloaded"

The pool starts with ``min_workers`` threads and grows one thread at a time,
up to ``max_workers``, whenever a job is queued while every worker is busy.
It never shrinks; workers exit only on shutdown.

A job that sat in the queue longer than its ``max_wait`` is dropped
unrun; the client has most likely given up on it by then.

=============================================================================
FAULTS
=============================================================================

Route handler errors are turned into 500 responses inside the job, so an
exception reaching the worker escaped every request boundary. The worker
logs it and passes it to ``on_error``. HTTPServer points that at the
coordinator's fatal fault handler.

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional


logger = logging.getLogger(__name__)

ErrorCallback = Callable[[BaseException], None]

_STOP = object()


@dataclass
class Job:
    """A queued call with the time it entered the queue."""

    func: Callable[..., Any]
    args: tuple = ()
    label: str = ""
    max_wait: Optional[float] = None
    queued_at: float = field(default_factory=time.monotonic)

    def is_stale(self, now: float) -> bool:
        return self.max_wait is not None and now - self.queued_at > self.max_wait


class Worker(threading.Thread):
    """Pulls jobs off the shared queue until it receives the stop marker."""

    def __init__(self, jobs: queue.Queue, index: int, on_error: Optional[ErrorCallback] = None):
        super().__init__(name=f"worker-{index}", daemon=True)
        self.jobs = jobs
        self.on_error = on_error
        self.current: Optional[Job] = None
        self.completed = 0
        self.failed = 0

    @property
    def busy(self) -> bool:
        return self.current is not None

    def run(self):
        while True:
            job = self.jobs.get()
            try:
                if job is _STOP:
                    return
                self._run_job(job)
            finally:
                self.jobs.task_done()

    def _run_job(self, job: Job):
        started = time.monotonic()
        if job.is_stale(started):
            logger.warning(
                f"Dropping {job.label or 'job'}: queued {started - job.queued_at:.2f}s, "
                f"limit {job.max_wait}s"
            )
            self.failed += 1
            return

        self.current = job
        try:
            job.func(*job.args)
            self.completed += 1
        except Exception as e:
            self.failed += 1
            logger.exception(f"{self.name} failed on {job.label or 'job'}: {e}")
            if self.on_error is not None:
                self.on_error(e)
        finally:
            self.current = None


class ThreadPool:
    """
    Bounded, growing pool of worker threads.

        pool = ThreadPool(min_workers=4, max_workers=16, on_error=report)
        pool.start()
        if not pool.submit(serve, conn, label=conn.id, max_wait=30.0):
            reject(conn)
        pool.shutdown()

    Args:
        min_workers: Threads started by start().
        max_workers: Upper bound reached by growing under load.
        queue_size: Jobs that may wait for a worker; beyond it submit() fails.
        on_error: Receives any exception escaping a job.
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        queue_size: int = 100,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.on_error = on_error

        self._jobs: queue.Queue = queue.Queue(maxsize=queue_size)
        self._workers: List[Worker] = []
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def size(self) -> int:
        return len(self._workers)

    @property
    def busy(self) -> int:
        return sum(1 for w in self._workers if w.busy)

    def start(self):
        with self._lock:
            if self._running:
                return
            self._running = True
            for _ in range(self.min_workers):
                self._spawn()

        logger.debug(f"Thread pool started with {self.min_workers} workers")

    def _spawn(self) -> Worker:
        """Caller must hold ``_lock``."""
        worker = Worker(self._jobs, len(self._workers), on_error=self.on_error)
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        *args: Any,
        label: str = "",
        max_wait: Optional[float] = None,
    ) -> bool:
        """
        Queue ``func(*args)`` without blocking.

        Returns:
            False if the queue is full.

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self._running:
            raise RuntimeError("Thread pool is not running")

        try:
            self._jobs.put_nowait(Job(func, args, label=label, max_wait=max_wait))
        except queue.Full:
            return False

        with self._lock:
            if (
                self._running
                and len(self._workers) < self.max_workers
                and self.busy == len(self._workers)
            ):
                worker = self._spawn()
                logger.debug(f"All workers busy, started {worker.name}")
        return True

    def shutdown(self, wait: bool = False, timeout: float = 2.0):
        """
        Stop every worker once it finishes its current job.

        Jobs still queued behind the stop markers are never run. With
        ``wait``, join each worker for up to ``timeout`` seconds.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            workers = list(self._workers)

        for _ in workers:
            try:
                self._jobs.put_nowait(_STOP)
            except queue.Full:
                # Daemon workers; whatever is left ends with the process
                break

        if wait:
            for worker in workers:
                worker.join(timeout)

        logger.debug("Thread pool stopped")
