"""
Concurrent dispatch of tasks to external workers.

This module defines the worker dispatch interface and the executor that
runs one wave's dispatches concurrently, enforcing per-dispatch deadlines
and supporting cancellation. The executor never changes task status: it
hands results back to the orchestrator, which is the only writer.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from conductor.decomposition.assigner import WorkerRegistry
from conductor.decomposition.models import (
    Artifact,
    ResultStatus,
    Task,
    TaskResult,
    utcnow,
)

# =============================================================================
# WORKER INTERFACE
# =============================================================================


@runtime_checkable
class Worker(Protocol):
    """Out-of-process collaborator that executes a task's domain logic."""

    async def dispatch(
        self,
        task: Task,
        resolved_inputs: dict[str, Artifact],
        deadline: datetime,
    ) -> TaskResult:
        ...


ResultCallback = Callable[[TaskResult], None]
StartCallback = Callable[[str], None]


# =============================================================================
# WAVE RESULTS
# =============================================================================


class WaveExecutionResult:
    """Every dispatch attempt made while executing one wave."""

    def __init__(
        self,
        wave_number: int,
        results: list[TaskResult] | None = None,
    ):
        self.wave_number = wave_number
        self.results = results or []
        self.started_at = utcnow()
        self.completed_at: datetime | None = None

    def add(self, result: TaskResult) -> None:
        self.results.append(result)

    def finish(self) -> None:
        self.completed_at = utcnow()

    @property
    def completed_tasks(self) -> list[str]:
        """IDs of tasks whose final attempt succeeded."""
        return sorted({r.task_id for r in self.results if r.success})

    @property
    def failed_attempts(self) -> list[TaskResult]:
        return [r for r in self.results if r.status in (ResultStatus.FAILED, ResultStatus.TIMED_OUT)]

    @property
    def attempts(self) -> int:
        return len(self.results)

    @property
    def success_rate(self) -> float:
        """Share of dispatched tasks that ended up completed."""
        dispatched = {r.task_id for r in self.results}
        if not dispatched:
            return 0.0
        return len(self.completed_tasks) / len(dispatched)

    @property
    def total_duration(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "wave_number": self.wave_number,
            "results": [r.model_dump(mode="json") for r in self.results],
            "completed_tasks": self.completed_tasks,
            "attempts": self.attempts,
            "success_rate": self.success_rate,
            "total_duration": self.total_duration,
        }


# =============================================================================
# WAVE EXECUTOR
# =============================================================================


class WaveExecutor:
    """
    Run dispatches concurrently with a bounded number in flight.

    Launch as many dispatches as needed, then repeatedly await
    ``wait_next`` to collect results as they arrive. Timeouts and worker
    exceptions become failed results; they never propagate.

    Example:
        >>> executor = WaveExecutor(workers, max_concurrent=4, timeout=30)
        >>> executor.launch(task, inputs)
        >>> results = await executor.wait_next()
    """

    def __init__(
        self,
        workers: WorkerRegistry,
        max_concurrent: int = 8,
        timeout: float = 600.0,
    ):
        self.workers = workers
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._in_flight: dict[str, asyncio.Task[TaskResult]] = {}
        self._callbacks: list[ResultCallback] = []

    def add_callback(self, callback: ResultCallback) -> None:
        """Add a listener notified of every result."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: ResultCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _emit_callback(self, result: TaskResult) -> None:
        for callback in self._callbacks:
            try:
                callback(result)
            except Exception as e:
                logger.warning(f"Callback error: {e}")

    def deadline_for(self, timeout: float | None = None) -> datetime:
        return utcnow() + timedelta(seconds=timeout if timeout is not None else self.timeout)

    def launch(
        self,
        task: Task,
        resolved_inputs: dict[str, Artifact],
        deadline: datetime | None = None,
        on_start: StartCallback | None = None,
    ) -> None:
        """
        Start a dispatch of ``task`` to its assigned worker.

        The worker receives a copy of the task so it cannot write status.
        """
        if task.id in self._in_flight:
            raise RuntimeError(f"Task {task.id} is already in flight")

        deadline = deadline or self.deadline_for()
        snapshot = task.model_copy(deep=True)
        self._in_flight[task.id] = asyncio.create_task(
            self._run(snapshot, resolved_inputs, deadline, on_start),
            name=f"dispatch-{task.id}",
        )

    async def _run(
        self,
        task: Task,
        resolved_inputs: dict[str, Artifact],
        deadline: datetime,
        on_start: StartCallback | None,
    ) -> TaskResult:
        worker_name = task.assigned_worker
        worker = self.workers.get_worker(worker_name) if worker_name else None
        if worker is None:
            return TaskResult(
                task_id=task.id,
                status=ResultStatus.FAILED,
                diagnostic=f"No dispatch endpoint for worker {worker_name}",
                worker=worker_name,
            )

        async with self._semaphore:
            if on_start is not None:
                on_start(task.id)

            start_time = utcnow()
            remaining = (deadline - start_time).total_seconds()
            try:
                if remaining <= 0:
                    raise TimeoutError
                result = await asyncio.wait_for(
                    worker.dispatch(task, resolved_inputs, deadline),
                    timeout=remaining,
                )
            except TimeoutError:
                logger.warning(f"Task {task.id} exceeded its deadline on {worker_name}")
                result = TaskResult(
                    task_id=task.id,
                    status=ResultStatus.TIMED_OUT,
                    diagnostic=f"Deadline {deadline.isoformat()} exceeded",
                )
            except Exception as e:
                logger.warning(f"Worker {worker_name} raised for task {task.id}: {e}")
                result = TaskResult(
                    task_id=task.id,
                    status=ResultStatus.FAILED,
                    diagnostic=f"{type(e).__name__}: {e}",
                )

        if not isinstance(result, TaskResult):
            logger.warning(f"Worker {worker_name} returned {type(result).__name__} for task {task.id}")
            result = TaskResult(
                task_id=task.id,
                status=ResultStatus.FAILED,
                diagnostic=f"Worker returned {type(result).__name__}, not a TaskResult",
            )

        result.task_id = task.id
        result.worker = worker_name
        result.duration_seconds = (utcnow() - start_time).total_seconds()
        return result

    async def wait_next(self) -> list[TaskResult]:
        """
        Wait until at least one in-flight dispatch finishes.

        Returns:
            Results of every dispatch that finished, sorted by task id.
            Cancelled dispatches are reported with CANCELLED status.
        """
        if not self._in_flight:
            return []

        done, _ = await asyncio.wait(
            self._in_flight.values(),
            return_when=asyncio.FIRST_COMPLETED,
        )
        finished = [tid for tid, t in self._in_flight.items() if t in done]

        results: list[TaskResult] = []
        for tid in sorted(finished):
            handle = self._in_flight.pop(tid)
            if handle.cancelled():
                result = TaskResult(
                    task_id=tid,
                    status=ResultStatus.CANCELLED,
                    diagnostic="Dispatch cancelled",
                )
            else:
                result = handle.result()
            results.append(result)
            self._emit_callback(result)
        return results

    def cancel(self, task_ids: list[str]) -> list[str]:
        """Request cancellation of the given in-flight dispatches."""
        cancelled = []
        for tid in task_ids:
            handle = self._in_flight.get(tid)
            if handle is not None and not handle.done():
                handle.cancel()
                cancelled.append(tid)
        if cancelled:
            logger.info(f"Cancelling dispatches: {', '.join(cancelled)}")
        return cancelled

    async def cancel_all(self) -> None:
        """Cancel every in-flight dispatch and wait for them to unwind."""
        handles = list(self._in_flight.values())
        for handle in handles:
            handle.cancel()
        if handles:
            await asyncio.gather(*handles, return_exceptions=True)
        self._in_flight.clear()

    @property
    def in_flight(self) -> list[str]:
        return sorted(self._in_flight)


# =============================================================================
# DRY RUN WORKER
# =============================================================================


class DryRunWorker:
    """
    Worker that fabricates every declared output without doing any work.

    Useful for rehearsing a plan end to end.
    """

    def __init__(
        self,
        name: str = "dry-run",
        delay: float = 0.0,
        fail_tasks: set[str] | None = None,
    ):
        """
        Initialize dry run worker.

        Args:
            name: Worker name reported in results.
            delay: Simulated work time in seconds.
            fail_tasks: Task IDs that always fail.
        """
        self.name = name
        self.delay = delay
        self.fail_tasks = fail_tasks or set()
        self.calls: list[str] = []

    async def dispatch(
        self,
        task: Task,
        resolved_inputs: dict[str, Artifact],
        deadline: datetime,
    ) -> TaskResult:
        self.calls.append(task.id)
        if self.delay:
            await asyncio.sleep(self.delay)

        if task.id in self.fail_tasks:
            return TaskResult(
                task_id=task.id,
                status=ResultStatus.FAILED,
                diagnostic="Simulated failure",
            )

        return TaskResult(
            task_id=task.id,
            status=ResultStatus.SUCCEEDED,
            outputs={
                name: Artifact(
                    name=name,
                    producer=task.id,
                    available=True,
                    value=f"dry run output of {task.id}",
                )
                for name in task.outputs
            },
        )
