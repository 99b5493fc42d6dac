"""Agent assigner - matches task domains to worker capabilities.

Matching is exact on capability tags. Among several exact matches the
assigner applies one deterministic total order:

1. a worker already assigned another task in the same wave,
2. then the worker with the tighter focus (fewer capability tags),
3. then the worker with fewer assignments so far in this plan,
4. then the worker name.
"""

from collections import Counter
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from conductor.decomposition.models import (
    Diagnostic,
    Task,
    TaskGraph,
    TaskStatus,
)

if TYPE_CHECKING:
    from conductor.decomposition.executor import Worker


class WorkerProfile(BaseModel):
    """Capabilities a worker advertises."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    capabilities: list[str] = Field(default_factory=list)

    def handles(self, domain: str) -> bool:
        return domain in self.capabilities


class WorkerRegistry:
    """
    Static registry of available workers.

    Each entry pairs a WorkerProfile with the object implementing the
    dispatch interface. The dispatch object may be omitted when the
    registry is only used for planning.

    Example:
        >>> workers = WorkerRegistry()
        >>> workers.register(WorkerProfile(name="coder", capabilities=["backend"]))
        >>> [p.name for p in workers.candidates("backend")]
        ['coder']
    """

    def __init__(self) -> None:
        self._profiles: dict[str, WorkerProfile] = {}
        self._workers: dict[str, "Worker"] = {}

    def register(self, profile: WorkerProfile, worker: "Worker | None" = None) -> None:
        self._profiles[profile.name] = profile
        if worker is not None:
            self._workers[profile.name] = worker

    def candidates(self, domain: str, exclude: set[str] | None = None) -> list[WorkerProfile]:
        exclude = exclude or set()
        return [
            p for p in self._profiles.values()
            if p.handles(domain) and p.name not in exclude
        ]

    def get_profile(self, name: str) -> WorkerProfile | None:
        return self._profiles.get(name)

    def get_worker(self, name: str) -> "Worker | None":
        return self._workers.get(name)

    @property
    def profiles(self) -> list[WorkerProfile]:
        return list(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkerRegistry":
        """Build a planning-only registry from ``{"workers": [...]}``."""
        registry = cls()
        for entry in data.get("workers", []):
            registry.register(WorkerProfile.model_validate(entry))
        return registry


class AssignmentReport(BaseModel):
    """Outcome of one assignment pass."""

    assignments: dict[str, str] = Field(default_factory=dict)
    gaps: list[Diagnostic] = Field(default_factory=list)

    @property
    def unassigned(self) -> list[str]:
        return [tid for d in self.gaps for tid in d.task_ids]


def score_worker(
    profile: WorkerProfile,
    wave_workers: set[str],
    load: Counter,
) -> tuple[int, int, int, str]:
    """Sort key for candidate workers; lower is better."""
    return (
        0 if profile.name in wave_workers else 1,
        len(profile.capabilities),
        load[profile.name],
        profile.name,
    )


class AgentAssigner:
    """
    Assign each task to the best matching worker.

    Tasks are visited wave by wave, in wave order, so the same-wave
    preference is well defined. A task whose domain nobody offers becomes
    Unassignable and an AssignmentGap diagnostic is recorded. A mismatched
    worker is never substituted.
    """

    def __init__(self, workers: WorkerRegistry) -> None:
        self.workers = workers

    def assign(self, graph: TaskGraph) -> AssignmentReport:
        """
        Run the assignment pass over a scheduled graph.

        Tasks already Unassignable (missing inputs, duplicate producers)
        are skipped.
        """
        report = AssignmentReport()
        load: Counter = Counter()
        waves = graph.waves or [list(graph.tasks)]

        for wave in waves:
            wave_workers: set[str] = set()
            for tid in wave:
                task = graph.tasks[tid]
                if task.status == TaskStatus.UNASSIGNABLE:
                    continue

                choice = self.select(task, wave_workers, load)
                if choice is None:
                    gap = Diagnostic.assignment_gap(task.domain, task.id)
                    graph.diagnostics.append(gap)
                    report.gaps.append(gap)
                    task.assigned_worker = None
                    task.transition(TaskStatus.UNASSIGNABLE)
                    logger.warning(gap.message)
                    continue

                task.assigned_worker = choice.name
                wave_workers.add(choice.name)
                load[choice.name] += 1
                report.assignments[task.id] = choice.name
                logger.debug(f"Assigned {task.id} ({task.domain}) to {choice.name}")

        logger.info(
            f"Assigned {len(report.assignments)} tasks, "
            f"{len(report.gaps)} assignment gaps"
        )
        return report

    def select(
        self,
        task: Task,
        wave_workers: set[str] | None = None,
        load: Counter | None = None,
        exclude: set[str] | None = None,
    ) -> WorkerProfile | None:
        """Pick the best exact match for ``task`` or None."""
        candidates = self.workers.candidates(task.domain, exclude)
        if not candidates:
            return None
        wave_workers = wave_workers or set()
        load = load if load is not None else Counter()
        return min(candidates, key=lambda p: score_worker(p, wave_workers, load))

    def find_alternate(self, task: Task, graph: TaskGraph) -> WorkerProfile | None:
        """
        Rerun selection for a failed task, excluding every worker that
        already failed it.
        """
        exclude = set(task.excluded_workers)
        if task.assigned_worker:
            exclude.add(task.assigned_worker)

        wave_workers: set[str] = set()
        if task.wave_number is not None and task.wave_number < len(graph.waves):
            for tid in graph.waves[task.wave_number]:
                other = graph.tasks[tid]
                if tid != task.id and other.assigned_worker:
                    wave_workers.add(other.assigned_worker)

        load: Counter = Counter(
            t.assigned_worker for t in graph.tasks.values() if t.assigned_worker
        )
        return self.select(task, wave_workers, load, exclude)
