"""Plan session state and its exportable snapshot.

A PlanSession is created per goal, handed to the orchestrator by
reference, mutated only by the orchestrator and failure handler, and
discarded when the goal completes or is abandoned. Every mutation bumps
its version.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from conductor.decomposition.models import (
    Artifact,
    Diagnostic,
    Edge,
    Task,
    TaskGraph,
    TaskStatus,
    utcnow,
)
from conductor.decomposition.registry import ArtifactRegistry


class OrchestratorState(str, Enum):
    """Lifecycle of a plan session."""

    BUILDING = "building"
    VALIDATING = "validating"
    SCHEDULED = "scheduled"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


FINAL_STATES = frozenset({
    OrchestratorState.COMPLETED,
    OrchestratorState.FAILED,
    OrchestratorState.ABORTED,
})


class PlanSnapshot(BaseModel):
    """Structured decomposition-state record plus the full plan listing."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    goal: str = ""
    version: int = 0
    mode: OrchestratorState
    task_count: int = Field(default=0, alias="taskCount")
    assigned_count: int = Field(default=0, alias="assignedCount")
    unassignable_count: int = Field(default=0, alias="unassignableCount")
    dag_valid: bool = Field(default=False, alias="dagValid")
    critical_path_length: int = Field(default=0, alias="criticalPathLength")
    parallel_track_count: int = Field(default=0, alias="parallelTrackCount")
    last_action: str = Field(default="", alias="lastAction")
    next_action: str = Field(default="", alias="nextAction")

    critical_path: list[str] = Field(default_factory=list, alias="criticalPath")
    tasks: list[Task] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    waves: list[list[str]] = Field(default_factory=list)
    artifacts: list[Artifact] = Field(default_factory=list)
    deliverables: list[str] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)

    @classmethod
    def from_json(cls, data: str | bytes) -> "PlanSnapshot":
        return cls.model_validate_json(data)

    def summary(self) -> dict[str, Any]:
        """The decomposition-state fields only."""
        return self.model_dump(
            by_alias=True,
            mode="json",
            include={
                "mode",
                "task_count",
                "assigned_count",
                "unassignable_count",
                "dag_valid",
                "critical_path_length",
                "parallel_track_count",
                "last_action",
                "next_action",
            },
        )


class PlanSession:
    """
    Versioned, explicit plan state for one goal.

    Example:
        >>> session = PlanSession(goal="Ship the billing API")
        >>> session.state
        <OrchestratorState.BUILDING: 'building'>
        >>> snapshot = session.to_snapshot()
    """

    def __init__(
        self,
        goal: str = "",
        deliverables: list[str] | None = None,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or str(uuid4())
        self.goal = goal
        self.version = 0
        self.state = OrchestratorState.BUILDING
        self.graph = TaskGraph()
        self.registry = ArtifactRegistry()
        self.deliverables: list[str] = list(deliverables or [])
        self.dag_valid = False
        self.critical_path: list[str] = []
        self.critical_path_length = 0
        self.last_action = "created"
        self.next_action = "build"
        self.created_at: datetime = utcnow()
        self.updated_at: datetime = self.created_at

    def advance(
        self,
        state: OrchestratorState,
        last_action: str,
        next_action: str = "",
    ) -> None:
        """Move to ``state`` and record the action that got it there."""
        self.state = state
        self.touch(last_action, next_action)

    def touch(self, last_action: str, next_action: str = "") -> None:
        self.version += 1
        self.last_action = last_action
        self.next_action = next_action
        self.updated_at = utcnow()

    @property
    def is_final(self) -> bool:
        return self.state in FINAL_STATES

    @property
    def assigned_count(self) -> int:
        return sum(1 for t in self.graph.tasks.values() if t.assigned_worker)

    @property
    def unassignable_count(self) -> int:
        return len(self.graph.by_status(TaskStatus.UNASSIGNABLE))

    @property
    def parallel_track_count(self) -> int:
        return max((len(w) for w in self.graph.waves), default=0)

    def to_snapshot(self) -> PlanSnapshot:
        """Export the session for the reporting layer or persistence."""
        return PlanSnapshot(
            session_id=self.id,
            goal=self.goal,
            version=self.version,
            mode=self.state,
            task_count=len(self.graph.tasks),
            assigned_count=self.assigned_count,
            unassignable_count=self.unassignable_count,
            dag_valid=self.dag_valid,
            critical_path_length=self.critical_path_length,
            parallel_track_count=self.parallel_track_count,
            last_action=self.last_action,
            next_action=self.next_action,
            critical_path=list(self.critical_path),
            tasks=[t.model_copy(deep=True) for t in self.graph.tasks.values()],
            edges=list(self.graph.edges),
            waves=[list(w) for w in self.graph.waves],
            artifacts=[a.model_copy() for a in self.registry.artifacts()],
            deliverables=list(self.deliverables),
            diagnostics=list(self.graph.diagnostics),
        )

    @classmethod
    def from_snapshot(cls, snapshot: PlanSnapshot) -> "PlanSession":
        """Rebuild a session whose graph matches the exported one."""
        session = cls(
            goal=snapshot.goal,
            deliverables=snapshot.deliverables,
            session_id=snapshot.session_id,
        )
        session.version = snapshot.version
        session.state = snapshot.mode
        session.graph = TaskGraph(
            tasks={t.id: t.model_copy(deep=True) for t in snapshot.tasks},
            edges=list(snapshot.edges),
            waves=[list(w) for w in snapshot.waves],
            diagnostics=list(snapshot.diagnostics),
        )
        session.registry = ArtifactRegistry.from_artifacts(snapshot.artifacts)
        session.dag_valid = snapshot.dag_valid
        session.critical_path = list(snapshot.critical_path)
        session.critical_path_length = snapshot.critical_path_length
        session.last_action = snapshot.last_action
        session.next_action = snapshot.next_action
        return session

    def __repr__(self) -> str:
        return (
            f"PlanSession(id={self.id!r}, state={self.state.value}, "
            f"version={self.version}, tasks={len(self.graph.tasks)})"
        )
