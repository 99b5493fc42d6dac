"""Pydantic models for task orchestration.

This module defines the data structures shared by every stage of the
planning pipeline: sub-task declarations, runtime tasks with their
lifecycle, artifacts, dependency edges, the task graph itself, diagnostics
and worker results.
"""

from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)

from conductor.core.exceptions import InvalidTransitionError

PREEXISTING = "__preexisting__"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class EffortSize(str, Enum):
    """T-shirt effort sizes accepted in declarations."""

    S = "S"
    M = "M"
    L = "L"
    XL = "XL"

    @property
    def weight(self) -> int:
        return {"S": 1, "M": 2, "L": 3, "XL": 5}[self.value]


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    PENDING = "pending"
    READY = "ready"
    DISPATCHED = "dispatched"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    REASSIGNED = "reassigned"
    CONTINGENT = "contingent"
    UNASSIGNABLE = "unassignable"


# Terminal for the purposes of the wave barrier
TERMINAL_STATUSES = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.BLOCKED,
    TaskStatus.CONTINGENT,
    TaskStatus.UNASSIGNABLE,
})

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({
        TaskStatus.READY,
        TaskStatus.CONTINGENT,
        TaskStatus.UNASSIGNABLE,
    }),
    TaskStatus.READY: frozenset({TaskStatus.DISPATCHED, TaskStatus.CONTINGENT}),
    TaskStatus.DISPATCHED: frozenset({
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CONTINGENT,
    }),
    TaskStatus.IN_PROGRESS: frozenset({
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CONTINGENT,
    }),
    TaskStatus.FAILED: frozenset({
        TaskStatus.DISPATCHED,
        TaskStatus.REASSIGNED,
        TaskStatus.BLOCKED,
    }),
    TaskStatus.REASSIGNED: frozenset({TaskStatus.DISPATCHED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.BLOCKED: frozenset(),
    TaskStatus.CONTINGENT: frozenset(),
    TaskStatus.UNASSIGNABLE: frozenset(),
}


class DiagnosticKind(str, Enum):
    """Error taxonomy for planning and execution diagnostics."""

    DUPLICATE_PRODUCER = "duplicate_producer"
    MISSING_INPUT = "missing_input"
    CYCLE = "cycle"
    SCHEDULING = "scheduling"
    ASSIGNMENT_GAP = "assignment_gap"
    TASK_FAILURE = "task_failure"

    @property
    def fatal(self) -> bool:
        """Whether the diagnostic aborts the planning phase."""
        return self in (
            DiagnosticKind.DUPLICATE_PRODUCER,
            DiagnosticKind.CYCLE,
            DiagnosticKind.SCHEDULING,
        )


class ResultStatus(str, Enum):
    """Outcome reported for a single dispatch."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


# =============================================================================
# DIAGNOSTICS
# =============================================================================


class Diagnostic(BaseModel):
    """A precise, attributable report about a planning or runtime problem."""

    model_config = ConfigDict(frozen=True)

    kind: DiagnosticKind
    message: str
    task_ids: list[str] = Field(default_factory=list)
    artifact: str | None = None
    domain: str | None = None

    @classmethod
    def missing_input(cls, artifact: str, task_id: str) -> "Diagnostic":
        return cls(
            kind=DiagnosticKind.MISSING_INPUT,
            message=f"Input '{artifact}' of task {task_id} has no producer",
            task_ids=[task_id],
            artifact=artifact,
        )

    @classmethod
    def duplicate_producer(
        cls, artifact: str, existing: str, claimant: str
    ) -> "Diagnostic":
        return cls(
            kind=DiagnosticKind.DUPLICATE_PRODUCER,
            message=(
                f"Artifact '{artifact}' is already produced by {existing}; "
                f"{claimant} cannot also produce it"
            ),
            task_ids=[existing, claimant],
            artifact=artifact,
        )

    @classmethod
    def assignment_gap(cls, domain: str, task_id: str) -> "Diagnostic":
        return cls(
            kind=DiagnosticKind.ASSIGNMENT_GAP,
            message=f"No worker offers capability '{domain}' required by {task_id}",
            task_ids=[task_id],
            domain=domain,
        )

    @classmethod
    def task_failure(cls, task_id: str, detail: str) -> "Diagnostic":
        return cls(
            kind=DiagnosticKind.TASK_FAILURE,
            message=f"Task {task_id} failed: {detail}",
            task_ids=[task_id],
        )


# =============================================================================
# DECLARATIONS AND TASKS
# =============================================================================


def _dedupe(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))


class TaskDeclaration(BaseModel):
    """A sub-task as declared by the upstream goal analyzer.

    Example:
        >>> decl = TaskDeclaration(
        ...     id="T2",
        ...     name="Write service",
        ...     domain="backend",
        ...     inputs=["schema"],
        ...     outputs=["service"],
        ...     effort="M",
        ... )
        >>> decl.effort
        2
    """

    model_config = ConfigDict(frozen=False)

    id: str = Field(..., min_length=1, description="Unique, stable task identifier")
    name: str = Field(default="", description="Human readable task name")
    domain: str = Field(..., min_length=1, description="Capability tag")
    inputs: list[str] = Field(default_factory=list, description="Consumed artifacts")
    outputs: list[str] = Field(default_factory=list, description="Produced artifacts")
    effort: int = Field(default=1, gt=0, description="Effort weight")

    @field_validator("effort", mode="before")
    @classmethod
    def coerce_effort(cls, v: Any) -> Any:
        """Accept T-shirt sizes as well as integer weights."""
        if isinstance(v, EffortSize):
            return v.weight
        if isinstance(v, str) and v.upper() in EffortSize.__members__:
            return EffortSize[v.upper()].weight
        return v

    @field_validator("inputs", "outputs")
    @classmethod
    def collapse_duplicates(cls, v: list[str]) -> list[str]:
        return _dedupe(v)

    @model_validator(mode="after")
    def check_disjoint(self) -> "TaskDeclaration":
        overlap = set(self.inputs) & set(self.outputs)
        if overlap:
            raise ValueError(
                f"Task {self.id} lists {sorted(overlap)} as both input and output"
            )
        return self


class Task(TaskDeclaration):
    """A declared sub-task plus its planning annotations and runtime state."""

    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    assigned_worker: str | None = None
    wave_number: int | None = None

    # Critical path annotations (advisory)
    earliest_start: int | None = None
    earliest_finish: int | None = None
    slack: int | None = None
    on_critical_path: bool = False

    # Failure bookkeeping
    missing_inputs: list[str] = Field(default_factory=list)
    excluded_workers: list[str] = Field(default_factory=list)
    failure_context: list[str] = Field(default_factory=list)
    status_history: list[TaskStatus] = Field(default_factory=list)

    @classmethod
    def from_declaration(cls, declaration: TaskDeclaration) -> "Task":
        task = cls(**declaration.model_dump())
        task.status_history = [task.status]
        return task

    def to_declaration(self) -> TaskDeclaration:
        return TaskDeclaration(
            id=self.id,
            name=self.name,
            domain=self.domain,
            inputs=list(self.inputs),
            outputs=list(self.outputs),
            effort=self.effort,
        )

    def transition(
        self,
        target: TaskStatus,
        expected: TaskStatus | None = None,
    ) -> None:
        """Move the task to ``target``.

        Args:
            target: New status.
            expected: If given, the transition only happens when the current
                status equals it (compare-and-set).

        Raises:
            InvalidTransitionError: If the move is not allowed from the
                current status, or ``expected`` does not match.
        """
        if expected is not None and self.status != expected:
            raise InvalidTransitionError(
                f"Task {self.id}: expected {expected.value}, found {self.status.value}"
            )
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Task {self.id}: cannot move from {self.status.value} to {target.value}"
            )
        self.status = target
        self.status_history.append(target)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Artifact(BaseModel):
    """A named data reference and the task that produces it."""

    model_config = ConfigDict(frozen=False)

    name: str
    producer: str = Field(description="Producing task id or the pre-existing sentinel")
    available: bool = False
    value: Any = None

    @property
    def preexisting(self) -> bool:
        return self.producer == PREEXISTING


class Edge(BaseModel):
    """``target`` depends on an output of ``source``."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str

    @model_validator(mode="after")
    def no_self_loop(self) -> "Edge":
        if self.source == self.target:
            raise ValueError(f"Self-loop on task {self.source}")
        return self


# =============================================================================
# TASK GRAPH
# =============================================================================


class TaskGraph(BaseModel):
    """Tasks plus the dependency edges derived between them.

    Task order follows declaration order. Edges are unique and never
    self-loops.
    """

    model_config = ConfigDict(frozen=False)

    tasks: dict[str, Task] = Field(default_factory=dict)
    edges: list[Edge] = Field(default_factory=list)
    waves: list[list[str]] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    # Lookup index over edges, rebuilt on load and kept in step by add_edge
    _edge_set: set[Edge] = PrivateAttr(default_factory=set)
    _predecessors: dict[str, set[str]] = PrivateAttr(default_factory=dict)
    _successors: dict[str, set[str]] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        for edge in self.edges:
            self._index(edge)

    def _index(self, edge: Edge) -> None:
        self._edge_set.add(edge)
        self._predecessors.setdefault(edge.target, set()).add(edge.source)
        self._successors.setdefault(edge.source, set()).add(edge.target)

    def add_task(self, task: Task) -> None:
        self.tasks[task.id] = task

    def add_edge(self, source: str, target: str) -> bool:
        """Add an edge unless it already exists.

        Returns:
            True if the edge was added.
        """
        edge = Edge(source=source, target=target)
        if edge in self._edge_set:
            return False
        self.edges.append(edge)
        self._index(edge)
        return True

    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def predecessors(self, task_id: str) -> list[str]:
        return sorted(self._predecessors.get(task_id, ()))

    def successors(self, task_id: str) -> list[str]:
        return sorted(self._successors.get(task_id, ()))

    def adjacency(self) -> dict[str, list[str]]:
        """Successor lists for every task, sorted by id."""
        adj = {tid: self.successors(tid) for tid in self.tasks}
        for source in self._successors:
            adj.setdefault(source, self.successors(source))
        return adj

    def descendants(self, task_id: str) -> list[str]:
        """All transitive dependents of a task, sorted by id."""
        seen: set[str] = set()
        queue = deque(self._successors.get(task_id, ()))
        while queue:
            node = queue.popleft()
            if node in seen:
                continue
            seen.add(node)
            queue.extend(self._successors.get(node, ()))
        seen.discard(task_id)
        return sorted(seen)

    def by_status(self, *statuses: TaskStatus) -> list[str]:
        return [tid for tid, t in self.tasks.items() if t.status in statuses]

    def wave_of(self, task_id: str) -> int | None:
        task = self.tasks.get(task_id)
        return task.wave_number if task else None

    def diagnostics_of(self, kind: DiagnosticKind) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.kind == kind]

    @property
    def fatal_diagnostics(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.kind.fatal]

    @property
    def total_waves(self) -> int:
        return len(self.waves)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": {k: v.model_dump(mode="json") for k, v in self.tasks.items()},
            "edges": [e.model_dump() for e in self.edges],
            "waves": self.waves,
            "total_waves": self.total_waves,
        }


# =============================================================================
# RESULTS
# =============================================================================


class TaskResult(BaseModel):
    """What a worker reports back for one dispatch."""

    model_config = ConfigDict(frozen=False)

    task_id: str
    status: ResultStatus
    outputs: dict[str, Artifact] = Field(default_factory=dict)
    diagnostic: str = ""
    worker: str | None = None
    duration_seconds: float = 0.0
    completed_at: datetime = Field(default_factory=utcnow)

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.SUCCEEDED
