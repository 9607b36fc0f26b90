"""Bounded-concurrency admission of test bodies."""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional

from .exceptions import AdmissionTimeoutError
from .models.admission import AdmissionStats

logger = logging.getLogger(__name__)


@dataclass
class _Execution:
    test_id: str
    fn: Callable[[], Any]
    future: Future
    deadline: Optional[float] = None
    submitted_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    timer: Optional[threading.Timer] = None
    released: bool = False


class ConcurrencyAdmissionController:
    """
    Runs at most ``max_concurrency`` test bodies at once, queueing the rest FIFO.

    Each admitted body runs on its own worker thread. The caller always gets
    the body's eventual result or exception through a Future, however long
    it waited in the queue. A task with a deadline that overruns it is
    abandoned: its Future fails with AdmissionTimeoutError and its slot is
    handed to the next queued task, while the thread itself is left to finish.
    """

    def __init__(self, max_concurrency: int = 4, default_deadline: Optional[float] = None):
        self.max_concurrency = max(1, int(max_concurrency))
        self.default_deadline = default_deadline
        self.running: List[_Execution] = []
        self.queue: Deque[_Execution] = deque()
        self.lock = threading.RLock()
        self._idle = threading.Condition(self.lock)
        self._shutdown = False
        self.completed_count = 0
        self.abandoned_count = 0

    def submit(
        self, test_id: str, fn: Callable[[], Any], deadline: Optional[float] = None
    ) -> Future:
        """Admit ``fn`` now if a slot is free, otherwise queue it."""
        execution = _Execution(
            test_id=test_id,
            fn=fn,
            future=Future(),
            deadline=deadline if deadline is not None else self.default_deadline,
        )

        with self.lock:
            if self._shutdown:
                raise RuntimeError("Cannot submit tests after shutdown")

            if len(self.running) < self.max_concurrency:
                self._start(execution)
            else:
                self.queue.append(execution)
                logger.debug(
                    "Test %s queued (position %d)", test_id, len(self.queue)
                )

        return execution.future

    def execute_test(
        self, test_id: str, fn: Callable[[], Any], deadline: Optional[float] = None
    ) -> Any:
        """Run ``fn`` under admission control and return its result (or raise its error)."""
        return self.submit(test_id, fn, deadline).result()

    def set_max_concurrency(self, max_concurrency: int) -> None:
        """Change the limit for future admissions; running tasks are never preempted."""
        with self.lock:
            self.max_concurrency = max(1, int(max_concurrency))
            logger.info("Max concurrency set to %d", self.max_concurrency)
            self._drain()

    def get_stats(self) -> AdmissionStats:
        with self.lock:
            return AdmissionStats(
                running=len(self.running),
                queued=len(self.queue),
                max_concurrency=self.max_concurrency,
            )

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is running or queued; False on timeout."""
        with self._idle:
            return self._idle.wait_for(
                lambda: not self.running and not self.queue, timeout=timeout
            )

    def shutdown(self, wait: bool = True) -> None:
        """Refuse new submissions and optionally wait for admitted work to drain."""
        with self.lock:
            self._shutdown = True
        if wait:
            self.wait_idle()

    def _start(self, execution: _Execution) -> None:
        # Caller holds self.lock
        if not execution.future.set_running_or_notify_cancel():
            logger.debug("Test %s cancelled before admission", execution.test_id)
            return

        self.running.append(execution)
        execution.started_at = time.time()

        worker = threading.Thread(
            target=self._run,
            args=(execution,),
            name=f"admission-{execution.test_id}",
            daemon=True,
        )

        if execution.deadline is not None:
            execution.timer = threading.Timer(
                execution.deadline, self._abandon, args=(execution,)
            )
            execution.timer.daemon = True
            execution.timer.start()

        logger.debug("Test %s admitted", execution.test_id)
        worker.start()

    def _run(self, execution: _Execution) -> None:
        try:
            result = execution.fn()
        except BaseException as exc:
            self._settle(execution, exception=exc)
        else:
            self._settle(execution, result=result)
        finally:
            if execution.timer is not None:
                execution.timer.cancel()
            self._release(execution)

    def _settle(
        self,
        execution: _Execution,
        result: Any = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        with self.lock:
            if execution.future.done():
                # Already abandoned past its deadline
                return
            if exception is not None:
                execution.future.set_exception(exception)
            else:
                execution.future.set_result(result)
            self.completed_count += 1

    def _abandon(self, execution: _Execution) -> None:
        with self.lock:
            if execution.future.done():
                return
            self.abandoned_count += 1
            execution.future.set_exception(
                AdmissionTimeoutError(execution.test_id, execution.deadline)
            )
            logger.warning(
                "Test %s abandoned after %.3fs deadline",
                execution.test_id,
                execution.deadline,
            )
        self._release(execution)

    def _release(self, execution: _Execution) -> None:
        with self.lock:
            if execution.released:
                return
            execution.released = True
            self.running.remove(execution)
            self._drain()
            if not self.running and not self.queue:
                self._idle.notify_all()

    def _drain(self) -> None:
        # Caller holds self.lock
        while self.queue and len(self.running) < self.max_concurrency:
            self._start(self.queue.popleft())
