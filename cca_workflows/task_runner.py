#!/usr/bin/env python3
"""
Bounded parallel execution of independent async tasks.

A semaphore caps how many tasks run at once. Each input produces exactly one
TaskResult, returned in input order: failures and timeouts are recorded per
task, and a cancellation event stops queued work and gives in-flight work a
grace period before it is cancelled.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from .exceptions import TaskError
from .models import TaskResult, TaskStatus


class TaskRunner:
    """Runs one function over many inputs with a fixed worker limit"""

    def __init__(
        self,
        worker_limit: int,
        task_timeout: Optional[float] = None,
        grace_period: float = 10.0
    ):
        if worker_limit < 1:
            raise ValueError(f"worker_limit must be at least 1, got {worker_limit}")
        self.worker_limit = worker_limit
        self.task_timeout = task_timeout
        self.grace_period = grace_period

    @classmethod
    def from_config(cls, config) -> "TaskRunner":
        return cls(
            config.max_parallel_jobs,
            task_timeout=config.task_timeout,
            grace_period=config.shutdown_grace_period,
        )

    async def _run_one(
        self,
        index: int,
        item: Any,
        fn: Callable[[Any], Awaitable[Any]],
        semaphore: asyncio.Semaphore,
        cancel_event: asyncio.Event
    ) -> TaskResult:
        async with semaphore:
            if cancel_event.is_set():
                return TaskResult(index, item, TaskStatus.CANCELLED,
                                  error=TaskError(index, "cancelled before start"))

            started = time.monotonic()
            try:
                if self.task_timeout:
                    value = await asyncio.wait_for(fn(item), timeout=self.task_timeout)
                else:
                    value = await fn(item)
            except asyncio.TimeoutError as e:
                reason = f"timed out after {self.task_timeout:g}s" if self.task_timeout else "timed out"
                logging.warning(f"Task {index} {reason}")
                return TaskResult(index, item, TaskStatus.FAILED,
                                  error=TaskError(index, reason, e),
                                  duration_seconds=time.monotonic() - started)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logging.error(f"Task {index} failed: {e}")
                return TaskResult(index, item, TaskStatus.FAILED,
                                  error=TaskError(index, str(e) or type(e).__name__, e),
                                  duration_seconds=time.monotonic() - started)

            return TaskResult(index, item, TaskStatus.SUCCEEDED, value=value,
                              duration_seconds=time.monotonic() - started)

    async def run_all(
        self,
        inputs: Iterable[Any],
        fn: Callable[[Any], Awaitable[Any]],
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[TaskResult]:
        """Apply fn to every input; one TaskResult per input, in input order"""
        items = list(inputs)
        if not items:
            return []
        if cancel_event is None:
            cancel_event = asyncio.Event()

        semaphore = asyncio.Semaphore(self.worker_limit)
        tasks = [
            asyncio.create_task(self._run_one(i, item, fn, semaphore, cancel_event))
            for i, item in enumerate(items)
        ]
        logging.debug(f"Running {len(items)} task(s) with {self.worker_limit} worker(s)")

        cancel_waiter = asyncio.create_task(cancel_event.wait())
        try:
            pending = set(tasks)
            while pending and not cancel_event.is_set():
                _, pending = await asyncio.wait(
                    pending | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                pending.discard(cancel_waiter)

            if pending:
                logging.warning(
                    f"Cancellation requested, waiting up to {self.grace_period:g}s "
                    f"for {len(pending)} unfinished task(s)"
                )
                if self.grace_period > 0:
                    _, pending = await asyncio.wait(pending, timeout=self.grace_period)
                for task in pending:
                    task.cancel()

            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            cancel_waiter.cancel()
            unfinished = [task for task in tasks if not task.done()]
            if unfinished:
                logging.warning(f"Batch interrupted, cancelling {len(unfinished)} task(s)")
                for task in unfinished:
                    task.cancel()
                await asyncio.gather(*unfinished, return_exceptions=True)

        results: List[TaskResult] = []
        for index, (item, outcome) in enumerate(zip(items, outcomes)):
            if isinstance(outcome, TaskResult):
                results.append(outcome)
            elif isinstance(outcome, asyncio.CancelledError):
                results.append(TaskResult(index, item, TaskStatus.CANCELLED,
                                          error=TaskError(index, "cancelled while running")))
            else:
                results.append(TaskResult(index, item, TaskStatus.FAILED,
                                          error=TaskError(index, str(outcome), outcome)))

        failed = sum(1 for r in results if r.status == TaskStatus.FAILED)
        cancelled = sum(1 for r in results if r.status == TaskStatus.CANCELLED)
        if failed or cancelled:
            logging.info(
                f"Batch finished: {len(results) - failed - cancelled} succeeded, "
                f"{failed} failed, {cancelled} cancelled"
            )
        return results


async def run_all(
    inputs: Iterable[Any],
    worker_limit: int,
    fn: Callable[[Any], Awaitable[Any]],
    task_timeout: Optional[float] = None,
    grace_period: float = 10.0,
    cancel_event: Optional[asyncio.Event] = None
) -> List[TaskResult]:
    """Convenience wrapper around TaskRunner.run_all"""
    runner = TaskRunner(worker_limit, task_timeout=task_timeout, grace_period=grace_period)
    return await runner.run_all(inputs, fn, cancel_event=cancel_event)
