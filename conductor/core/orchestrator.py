"""Main orchestrator - plans a goal's sub-tasks and drives wave execution.

This module provides the primary interface of the engine. Planning runs
build -> validate -> schedule -> analyze -> assign and either returns a
scheduled PlanSession or raises a precise PlanningError. Execution then
dispatches one wave at a time, waits for every task in the wave to reach
a terminal state, and routes failures through the failure handler.
"""

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from conductor.core.config import Settings, get_settings
from conductor.core.exceptions import (
    CycleError,
    DuplicateProducerError,
    SchedulingError,
    SessionStateError,
)
from conductor.core.session import OrchestratorState, PlanSession
from conductor.decomposition.assigner import AgentAssigner, WorkerRegistry
from conductor.decomposition.critical_path import CriticalPathAnalyzer
from conductor.decomposition.cycle_validator import CycleValidator
from conductor.decomposition.executor import WaveExecutionResult, WaveExecutor
from conductor.decomposition.failure_handler import (
    DegradationReport,
    FailureHandler,
    RecoveryDecision,
    default_deliverables,
    mark_contingent,
)
from conductor.decomposition.graph_builder import GraphBuilder
from conductor.decomposition.models import (
    Artifact,
    DiagnosticKind,
    ResultStatus,
    Task,
    TaskDeclaration,
    TaskResult,
    TaskStatus,
    utcnow,
)
from conductor.decomposition.scheduler import WaveScheduler

CycleResolver = Callable[[CycleError, list[TaskDeclaration]], list[TaskDeclaration] | None]


# =============================================================================
# EXECUTION REPORT
# =============================================================================


class ExecutionReport(BaseModel):
    """Outcome of executing a plan session."""

    session_id: str
    state: OrchestratorState
    completed: list[str] = Field(default_factory=list)
    blocked: list[str] = Field(default_factory=list)
    contingent: list[str] = Field(default_factory=list)
    unassignable: list[str] = Field(default_factory=list)
    decisions: list[RecoveryDecision] = Field(default_factory=list)
    degradation: DegradationReport = Field(default_factory=DegradationReport)
    waves_executed: int = 0
    started_at: datetime
    completed_at: datetime

    @property
    def success(self) -> bool:
        return self.state == OrchestratorState.COMPLETED

    @property
    def partial_success(self) -> bool:
        return self.degradation.partial_success

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["success"] = self.success
        data["partial_success"] = self.partial_success
        data["duration_seconds"] = self.duration_seconds
        return data


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================


class Orchestrator:
    """
    Coordinates planning and execution for one goal at a time per session.

    Pipeline:
    1. Build the dependency graph from declarations
    2. Reject duplicate producers and cycles
    3. Partition into waves and compute the critical path
    4. Assign capability-matched workers
    5. Dispatch wave by wave behind a barrier
    6. Recover from failures; report what is still deliverable

    Example:
        >>> orchestrator = Orchestrator(workers)
        >>> session = orchestrator.plan(declarations, goal="Ship billing")
        >>> report = await orchestrator.execute(session)
        >>> report.state
        <OrchestratorState.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        workers: WorkerRegistry,
        settings: Settings | None = None,
        max_retries: int | None = None,
        max_concurrent: int | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            workers: Registry of available workers and their dispatch endpoints.
            settings: Optional settings override. Uses default if not provided.
            max_retries: Retries on the same worker before reassignment.
            max_concurrent: Maximum dispatches in flight per wave.
            timeout: Default per-dispatch deadline in seconds.
        """
        self.settings = settings or get_settings()
        self.workers = workers
        self.max_retries = (
            max_retries if max_retries is not None else self.settings.conductor_max_retries
        )
        self.max_concurrent = (
            max_concurrent
            if max_concurrent is not None
            else self.settings.conductor_max_concurrent_dispatches
        )
        self.timeout = timeout if timeout is not None else self.settings.conductor_dispatch_timeout
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {self.max_concurrent}")

        self.assigner = AgentAssigner(workers)
        self.failure_handler = FailureHandler(self.assigner, self.max_retries)
        self._executors: dict[str, WaveExecutor] = {}

    # =========================================================================
    # PLANNING
    # =========================================================================

    def plan(
        self,
        declarations: Iterable[TaskDeclaration | dict[str, Any]],
        goal: str = "",
        preexisting: Iterable[str] = (),
        deliverables: list[str] | None = None,
        cycle_resolver: CycleResolver | None = None,
    ) -> PlanSession:
        """
        Turn sub-task declarations into a scheduled plan session.

        Args:
            declarations: Sub-task declarations from the goal analyzer.
            goal: Free-text goal description, kept for reporting.
            preexisting: Artifacts available before any task runs.
            deliverables: Artifacts the goal asked for. Defaults to every
                produced artifact nothing consumes.
            cycle_resolver: Optional callback invoked with a CycleError and
                the declarations; it returns revised declarations to retry
                with, or None to give up.

        Returns:
            A PlanSession in the SCHEDULED state.

        Raises:
            DuplicateTaskError: If two declarations share an id.
            DuplicateProducerError: If two tasks produce the same artifact.
            CycleError: If the graph has a cycle nobody resolved.
            SchedulingError: If the scheduler could not place every task.
        """
        decls = [self._coerce(d) for d in declarations]
        preexisting = list(preexisting)
        rounds = 0

        while True:
            try:
                return self._plan_once(decls, goal, preexisting, deliverables)
            except CycleError as e:
                if cycle_resolver is None or rounds >= self.settings.conductor_max_replans:
                    raise
                rounds += 1
                logger.info(f"Asking cycle resolver for revised plan (round {rounds})")
                revised = cycle_resolver(e, decls)
                if not revised:
                    raise
                decls = [self._coerce(d) for d in revised]

    def _plan_once(
        self,
        declarations: list[TaskDeclaration],
        goal: str,
        preexisting: list[str],
        deliverables: list[str] | None,
    ) -> PlanSession:
        session = PlanSession(goal=goal, deliverables=deliverables)
        logger.info(f"Planning {len(declarations)} tasks for session {session.id}")

        graph = GraphBuilder(session.registry).build(declarations, preexisting)
        session.graph = graph
        session.advance(OrchestratorState.VALIDATING, "built graph", "validate graph")

        duplicates = graph.diagnostics_of(DiagnosticKind.DUPLICATE_PRODUCER)
        if duplicates:
            first = duplicates[0]
            session.advance(OrchestratorState.FAILED, "duplicate producers", "redeclare tasks")
            raise DuplicateProducerError(
                first.artifact or "",
                first.task_ids[0],
                first.task_ids[-1],
                duplicates,
            )

        try:
            CycleValidator().validate(graph)
            session.dag_valid = True
            WaveScheduler().schedule(graph)
        except (CycleError, SchedulingError):
            session.advance(OrchestratorState.FAILED, "validation failed", "resolve graph")
            raise

        critical = CriticalPathAnalyzer().analyze(graph)
        session.critical_path = critical.path
        session.critical_path_length = critical.length

        self.assigner.assign(graph)

        if not session.deliverables:
            session.deliverables = default_deliverables(graph)

        session.advance(
            OrchestratorState.SCHEDULED,
            f"scheduled {len(graph.tasks)} tasks into {graph.total_waves} waves",
            "execute wave 0" if graph.waves else "nothing to execute",
        )
        return session

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def run(
        self,
        declarations: Iterable[TaskDeclaration | dict[str, Any]],
        goal: str = "",
        preexisting: Iterable[str] = (),
        deliverables: list[str] | None = None,
        timeout: float | None = None,
    ) -> tuple[PlanSession, ExecutionReport]:
        """Plan and execute in one call."""
        session = self.plan(declarations, goal, preexisting, deliverables)
        report = await self.execute(session, timeout=timeout)
        return session, report

    async def execute(
        self,
        session: PlanSession,
        timeout: float | None = None,
    ) -> ExecutionReport:
        """
        Execute a scheduled session wave by wave.

        Task failures never abort the run: they narrow the deliverable set
        and are reported in the returned ExecutionReport.

        Args:
            session: Session in the SCHEDULED state.
            timeout: Per-dispatch deadline in seconds (default from settings).

        Raises:
            SessionStateError: If the session is not scheduled.
        """
        if session.state != OrchestratorState.SCHEDULED:
            raise SessionStateError(
                f"Session {session.id} is {session.state.value}, not scheduled"
            )

        graph = session.graph
        executor = WaveExecutor(
            self.workers,
            max_concurrent=self.max_concurrent,
            timeout=timeout if timeout is not None else self.timeout,
        )
        self._executors[session.id] = executor
        decisions: list[RecoveryDecision] = []
        wave_results: list[WaveExecutionResult] = []
        started_at = utcnow()

        session.advance(OrchestratorState.EXECUTING, "execution started", "dispatch wave 0")

        # Nothing downstream of an unassignable task can ever become ready
        contingent = mark_contingent(graph, graph.by_status(TaskStatus.UNASSIGNABLE))
        if contingent:
            logger.warning(f"Contingent on unassignable tasks: {', '.join(contingent)}")

        try:
            for number, wave in enumerate(graph.waves):
                if session.state == OrchestratorState.ABORTED:
                    break
                wave_results.append(
                    await self._execute_wave(session, executor, number, wave, decisions)
                )
        except asyncio.CancelledError:
            await executor.cancel_all()
            session.advance(OrchestratorState.ABORTED, "execution cancelled")
            raise
        except Exception as e:
            logger.exception(f"Execution of session {session.id} failed: {e}")
            await executor.cancel_all()
            session.advance(OrchestratorState.FAILED, f"execution error: {type(e).__name__}")
            raise
        finally:
            self._executors.pop(session.id, None)

        if session.state != OrchestratorState.ABORTED:
            completed = all(t.status == TaskStatus.COMPLETED for t in graph.tasks.values())
            final = OrchestratorState.COMPLETED if completed else OrchestratorState.FAILED
            session.advance(final, "execution finished", "" if completed else "review blocked tasks")

        report = ExecutionReport(
            session_id=session.id,
            state=session.state,
            completed=graph.by_status(TaskStatus.COMPLETED),
            blocked=graph.by_status(TaskStatus.BLOCKED),
            contingent=graph.by_status(TaskStatus.CONTINGENT),
            unassignable=graph.by_status(TaskStatus.UNASSIGNABLE),
            decisions=decisions,
            degradation=FailureHandler.degrade(graph, session.registry, session.deliverables),
            waves_executed=len(wave_results),
            started_at=started_at,
            completed_at=utcnow(),
        )

        logger.info(
            f"Session {session.id} {session.state.value}: "
            f"{len(report.completed)} completed, {len(report.blocked)} blocked, "
            f"{len(report.contingent)} contingent"
        )
        return report

    async def _execute_wave(
        self,
        session: PlanSession,
        executor: WaveExecutor,
        number: int,
        wave: list[str],
        decisions: list[RecoveryDecision],
    ) -> WaveExecutionResult:
        graph = session.graph
        result = WaveExecutionResult(wave_number=number)
        logger.info(f"Executing wave {number} with {len(wave)} tasks")
        session.touch(f"dispatching wave {number}", f"await wave {number}")

        for tid in wave:
            task = graph.tasks[tid]
            if task.is_terminal:
                continue

            pending = [
                p for p in graph.predecessors(tid)
                if graph.tasks[p].status != TaskStatus.COMPLETED
            ]
            if pending:
                raise SchedulingError(
                    f"Task {tid} reached dispatch before {', '.join(pending)} completed",
                    pending,
                )

            task.transition(TaskStatus.READY, expected=TaskStatus.PENDING)
            task.transition(TaskStatus.DISPATCHED)
            self._launch(session, executor, task)

        # Barrier: nothing from the next wave starts until this drains
        while executor.in_flight:
            for task_result in await executor.wait_next():
                result.add(task_result)
                self._apply_result(session, executor, task_result, decisions)

        result.finish()

        unresolved = [tid for tid in wave if not graph.tasks[tid].is_terminal]
        if unresolved and session.state != OrchestratorState.ABORTED:
            logger.error(f"Wave {number} drained with unresolved tasks: {unresolved}")

        logger.info(
            f"Wave {number} complete: {len(result.completed_tasks)} succeeded "
            f"in {result.attempts} dispatches"
        )
        session.touch(
            f"completed wave {number}",
            f"dispatch wave {number + 1}" if number + 1 < graph.total_waves else "finish",
        )
        return result

    def _launch(self, session: PlanSession, executor: WaveExecutor, task: Task) -> None:
        graph = session.graph

        def on_start(task_id: str) -> None:
            started = graph.tasks[task_id]
            if started.status == TaskStatus.DISPATCHED:
                started.transition(TaskStatus.IN_PROGRESS)

        executor.launch(
            task,
            self._resolve_inputs(session, task),
            on_start=on_start,
        )
        logger.debug(f"Dispatched {task.id} to {task.assigned_worker}")

    @staticmethod
    def _resolve_inputs(session: PlanSession, task: Task) -> dict[str, Artifact]:
        """Union of predecessor outputs plus the task's pre-existing inputs."""
        resolved: dict[str, Artifact] = {}
        for pred in session.graph.predecessors(task.id):
            for artifact in session.registry.produced_by(pred):
                resolved[artifact.name] = artifact.model_copy()
        for name in task.inputs:
            artifact = session.registry.get(name)
            if artifact is not None and artifact.available:
                resolved[name] = artifact.model_copy()
        return resolved

    def _apply_result(
        self,
        session: PlanSession,
        executor: WaveExecutor,
        result: TaskResult,
        decisions: list[RecoveryDecision],
    ) -> None:
        graph = session.graph
        task = graph.tasks[result.task_id]

        # Cancelled or abandoned
        if result.status == ResultStatus.CANCELLED or session.state == OrchestratorState.ABORTED:
            return

        if result.success:
            missing = [name for name in task.outputs if name not in result.outputs]
            if not missing:
                for name in task.outputs:
                    session.registry.mark_available(name, result.outputs[name].value)
                task.transition(TaskStatus.COMPLETED)
                session.touch(f"completed {task.id}")
                logger.debug(f"Task {task.id} completed")
                return
            result = result.model_copy(update={
                "status": ResultStatus.FAILED,
                "diagnostic": f"Missing declared outputs: {', '.join(missing)}",
            })

        task.transition(TaskStatus.FAILED)
        decision = self.failure_handler.handle(graph, result)
        decisions.append(decision)
        session.touch(f"{decision.action.value} {task.id}")

        if decision.redispatch:
            self._launch(session, executor, task)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def abandon(self, session: PlanSession) -> None:
        """
        Abandon a session, cancelling any in-flight dispatches.

        Raises:
            SessionStateError: If the session already completed or failed.
        """
        if session.state == OrchestratorState.ABORTED:
            return
        if session.is_final:
            raise SessionStateError(f"Session {session.id} already {session.state.value}")

        # Aborted before cancelling so a draining wave loop stops advancing
        session.advance(OrchestratorState.ABORTED, "abandoned")
        executor = self._executors.get(session.id)
        if executor is not None:
            await executor.cancel_all()
        logger.info(f"Session {session.id} abandoned")

    @staticmethod
    def _coerce(declaration: TaskDeclaration | dict[str, Any]) -> TaskDeclaration:
        if isinstance(declaration, TaskDeclaration):
            return declaration
        return TaskDeclaration.model_validate(declaration)

    def __repr__(self) -> str:
        return (
            f"Orchestrator(workers={len(self.workers)}, "
            f"max_retries={self.max_retries}, max_concurrent={self.max_concurrent})"
        )
