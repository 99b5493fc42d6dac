"""Critical path analysis over an effort-weighted, scheduled graph.

This is advisory only: it annotates tasks with their earliest start and
finish, slack and critical-path membership, and never touches task status.
"""

from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from conductor.core.exceptions import SchedulingError
from conductor.decomposition.models import TaskGraph


class CriticalPathReport(BaseModel):
    """Forward/backward pass results for one graph."""

    model_config = ConfigDict(frozen=True)

    path: list[str] = Field(default_factory=list)
    length: int = 0
    earliest_start: dict[str, int] = Field(default_factory=dict)
    earliest_finish: dict[str, int] = Field(default_factory=dict)
    latest_finish: dict[str, int] = Field(default_factory=dict)
    slack: dict[str, int] = Field(default_factory=dict)

    @property
    def zero_slack(self) -> list[str]:
        return sorted(tid for tid, s in self.slack.items() if s == 0)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class CriticalPathAnalyzer:
    """
    Compute the longest effort-weighted path through the graph.

    Example:
        >>> report = CriticalPathAnalyzer().analyze(graph)
        >>> report.path, report.length
        (['T1', 'T2', 'T4'], 6)
        >>> report.slack["T3"]
        1
    """

    def analyze(self, graph: TaskGraph, annotate: bool = True) -> CriticalPathReport:
        """
        Run the forward and backward passes.

        Args:
            graph: A graph that has been scheduled into waves.
            annotate: Write the results onto the graph's tasks.

        Raises:
            SchedulingError: If the graph has tasks but no waves.
        """
        if graph.tasks and not graph.waves:
            raise SchedulingError("Critical path requires a scheduled graph")

        order = [tid for wave in graph.waves for tid in wave]
        effort = {tid: graph.tasks[tid].effort for tid in order}
        preds = {tid: graph.predecessors(tid) for tid in order}
        succs = {tid: graph.successors(tid) for tid in order}

        earliest_start: dict[str, int] = {}
        earliest_finish: dict[str, int] = {}
        for tid in order:
            earliest_start[tid] = max(
                (earliest_finish[p] for p in preds[tid]),
                default=0,
            )
            earliest_finish[tid] = earliest_start[tid] + effort[tid]

        total = max(earliest_finish.values(), default=0)

        latest_finish: dict[str, int] = {}
        for tid in reversed(order):
            latest_finish[tid] = min(
                (latest_finish[s] - effort[s] for s in succs[tid]),
                default=total,
            )
        slack = {tid: latest_finish[tid] - earliest_finish[tid] for tid in order}

        path = self._trace(order, preds, earliest_start, earliest_finish)

        report = CriticalPathReport(
            path=path,
            length=total,
            earliest_start=earliest_start,
            earliest_finish=earliest_finish,
            latest_finish=latest_finish,
            slack=slack,
        )

        if annotate:
            for tid in order:
                task = graph.tasks[tid]
                task.earliest_start = earliest_start[tid]
                task.earliest_finish = earliest_finish[tid]
                task.slack = slack[tid]
                task.on_critical_path = slack[tid] == 0

        logger.info(
            f"Critical path {' -> '.join(path) or '(empty)'} with length {total}"
        )
        return report

    @staticmethod
    def _trace(
        order: list[str],
        preds: dict[str, list[str]],
        earliest_start: dict[str, int],
        earliest_finish: dict[str, int],
    ) -> list[str]:
        if not order:
            return []

        # Ties resolve to the smallest id
        current = min(order, key=lambda tid: (-earliest_finish[tid], tid))
        path = [current]
        while preds[current]:
            tight = [
                p for p in preds[current]
                if earliest_finish[p] == earliest_start[current]
            ]
            if not tight:
                break
            current = min(tight)
            path.append(current)
        return list(reversed(path))
