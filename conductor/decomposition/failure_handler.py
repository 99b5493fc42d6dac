"""Failure handler - bounded retry, reassignment and graceful degradation.

Strategies are applied in order for a failed task:

1. retry on the same worker with the prior failure attached as context,
2. reassign to an alternate worker once retries are exhausted,
3. block the task, mark every transitive dependent contingent and report
   which requested deliverables are still reachable.
"""

from collections.abc import Iterable
from enum import Enum

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from conductor.decomposition.assigner import AgentAssigner
from conductor.decomposition.models import (
    Diagnostic,
    TaskGraph,
    TaskResult,
    TaskStatus,
)
from conductor.decomposition.registry import ArtifactRegistry

LOST_STATUSES = frozenset({
    TaskStatus.BLOCKED,
    TaskStatus.CONTINGENT,
    TaskStatus.UNASSIGNABLE,
})


class RecoveryAction(str, Enum):
    """What the failure handler decided for a failed task."""

    RETRY = "retry"
    REASSIGN = "reassign"
    BLOCK = "block"


class RecoveryDecision(BaseModel):
    """A recovery step applied to one task."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    action: RecoveryAction
    worker: str | None = None
    retry_count: int = 0
    diagnostic: str = ""
    contingent: list[str] = Field(default_factory=list)

    @property
    def redispatch(self) -> bool:
        return self.action in (RecoveryAction.RETRY, RecoveryAction.REASSIGN)


class DegradationReport(BaseModel):
    """Which requested deliverables survive a partial plan failure."""

    deliverables: list[str] = Field(default_factory=list)
    achieved: list[str] = Field(default_factory=list)
    achievable: list[str] = Field(default_factory=list)
    lost: list[str] = Field(default_factory=list)
    blocked_tasks: list[str] = Field(default_factory=list)
    contingent_tasks: list[str] = Field(default_factory=list)
    unassignable_tasks: list[str] = Field(default_factory=list)

    @property
    def partial_success(self) -> bool:
        return bool(self.lost) and bool(self.achieved or self.achievable)


def default_deliverables(graph: TaskGraph) -> list[str]:
    """Every produced artifact that no task consumes, in declaration order."""
    consumed = {name for task in graph.tasks.values() for name in task.inputs}
    return [
        name
        for task in graph.tasks.values()
        for name in task.outputs
        if name not in consumed
    ]


def mark_contingent(graph: TaskGraph, roots: Iterable[str]) -> list[str]:
    """
    Mark every transitive dependent of ``roots`` as Contingent.

    Completed, blocked, unassignable and already contingent tasks are left
    alone.

    Returns:
        IDs newly marked contingent, sorted.
    """
    marked: set[str] = set()
    for root in roots:
        for tid in graph.descendants(root):
            task = graph.tasks[tid]
            if task.status in (
                TaskStatus.COMPLETED,
                TaskStatus.BLOCKED,
                TaskStatus.CONTINGENT,
                TaskStatus.UNASSIGNABLE,
            ):
                continue
            task.transition(TaskStatus.CONTINGENT)
            marked.add(tid)
    return sorted(marked)


class FailureHandler:
    """
    Apply the three-tier recovery protocol to failed tasks.

    Example:
        >>> handler = FailureHandler(assigner, max_retries=2)
        >>> decision = handler.handle(graph, result)
        >>> decision.action
        <RecoveryAction.RETRY: 'retry'>
    """

    def __init__(self, assigner: AgentAssigner, max_retries: int = 2):
        self.assigner = assigner
        self.max_retries = max_retries

    def handle(self, graph: TaskGraph, result: TaskResult) -> RecoveryDecision:
        """
        Decide and apply the next recovery step for a failed task.

        The task must already be in the Failed state. On retry or
        reassignment it is left Dispatched, ready to be relaunched.
        """
        task = graph.tasks[result.task_id]
        detail = result.diagnostic or result.status.value

        diagnostic = Diagnostic.task_failure(task.id, detail)
        graph.diagnostics.append(diagnostic)
        task.failure_context.append(detail)
        logger.warning(diagnostic.message)

        if task.retry_count < self.max_retries:
            task.retry_count += 1
            task.transition(TaskStatus.DISPATCHED, expected=TaskStatus.FAILED)
            logger.info(
                f"Retrying {task.id} on {task.assigned_worker} "
                f"(attempt {task.retry_count}/{self.max_retries})"
            )
            return RecoveryDecision(
                task_id=task.id,
                action=RecoveryAction.RETRY,
                worker=task.assigned_worker,
                retry_count=task.retry_count,
                diagnostic=detail,
            )

        alternate = self.assigner.find_alternate(task, graph)
        if alternate is not None:
            if task.assigned_worker:
                task.excluded_workers.append(task.assigned_worker)
            task.transition(TaskStatus.REASSIGNED, expected=TaskStatus.FAILED)
            previous = task.assigned_worker
            task.assigned_worker = alternate.name
            task.retry_count = 0
            task.transition(TaskStatus.DISPATCHED)
            logger.info(f"Reassigned {task.id} from {previous} to {alternate.name}")
            return RecoveryDecision(
                task_id=task.id,
                action=RecoveryAction.REASSIGN,
                worker=alternate.name,
                diagnostic=detail,
            )

        contingent = self.block(graph, task.id)
        return RecoveryDecision(
            task_id=task.id,
            action=RecoveryAction.BLOCK,
            worker=task.assigned_worker,
            retry_count=task.retry_count,
            diagnostic=detail,
            contingent=contingent,
        )

    def block(self, graph: TaskGraph, task_id: str) -> list[str]:
        """Block a failed task and mark its blast radius contingent."""
        task = graph.tasks[task_id]
        task.transition(TaskStatus.BLOCKED, expected=TaskStatus.FAILED)
        contingent = mark_contingent(graph, [task_id])
        logger.warning(
            f"Blocked {task_id}; {len(contingent)} dependent tasks are contingent"
        )
        return contingent

    @staticmethod
    def degrade(
        graph: TaskGraph,
        registry: ArtifactRegistry,
        deliverables: list[str] | None = None,
    ) -> DegradationReport:
        """
        Compute which requested deliverables remain reachable.

        A deliverable is achieved once available, lost when its producer
        is blocked, contingent or unassignable (or nothing produces it),
        and achievable otherwise.
        """
        requested = deliverables if deliverables is not None else default_deliverables(graph)
        report = DegradationReport(
            deliverables=list(requested),
            blocked_tasks=graph.by_status(TaskStatus.BLOCKED),
            contingent_tasks=graph.by_status(TaskStatus.CONTINGENT),
            unassignable_tasks=graph.by_status(TaskStatus.UNASSIGNABLE),
        )

        for name in requested:
            producer = registry.resolve(name)
            if registry.is_available(name):
                report.achieved.append(name)
            elif producer is None or producer not in graph.tasks:
                report.lost.append(name)
            elif graph.tasks[producer].status in LOST_STATUSES:
                report.lost.append(name)
            else:
                report.achievable.append(name)

        return report
