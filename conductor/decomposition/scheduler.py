"""Wave scheduler - partitions an acyclic graph into execution waves."""

from loguru import logger

from conductor.core.exceptions import SchedulingError
from conductor.decomposition.models import Diagnostic, DiagnosticKind, TaskGraph


class WaveScheduler:
    """
    Topologically partition a validated graph into waves (Kahn's algorithm).

    Every predecessor of a task in wave k sits in a wave strictly before k,
    and every task appears in exactly one wave. Ties within a wave are
    ordered by ascending task id so repeated runs are identical.

    Example:
        >>> scheduler = WaveScheduler()
        >>> scheduler.schedule(graph)
        [['T1'], ['T2', 'T3'], ['T4']]
    """

    def schedule(self, graph: TaskGraph) -> list[list[str]]:
        """
        Compute waves and record them on the graph and its tasks.

        Args:
            graph: Graph that already passed the cycle validator.

        Returns:
            Ordered list of waves, each a sorted list of task ids.

        Raises:
            SchedulingError: If an edge references an unknown task or some
                tasks could not be placed.
        """
        dangling = sorted(
            {
                f"{e.source} -> {e.target}"
                for e in graph.edges
                if e.source not in graph.tasks or e.target not in graph.tasks
            }
        )
        if dangling:
            self._fail(
                graph,
                f"Edges reference unknown tasks: {', '.join(dangling)}",
                [],
            )

        in_degree: dict[str, int] = {tid: 0 for tid in graph.tasks}
        for edge in graph.edges:
            in_degree[edge.target] += 1
        adjacency = graph.adjacency()

        waves: list[list[str]] = []
        current = sorted(tid for tid, degree in in_degree.items() if degree == 0)
        placed = 0

        while current:
            waves.append(current)
            placed += len(current)
            following: list[str] = []
            for node in current:
                for succ in adjacency[node]:
                    in_degree[succ] -= 1
                    if in_degree[succ] == 0:
                        following.append(succ)
            current = sorted(following)

        if placed != len(graph.tasks):
            remaining = sorted(tid for tid, degree in in_degree.items() if degree > 0)
            self._fail(
                graph,
                f"Could not schedule {len(remaining)} tasks: {', '.join(remaining)}",
                remaining,
            )

        graph.waves = waves
        for number, wave in enumerate(waves):
            for tid in wave:
                graph.tasks[tid].wave_number = number
            logger.debug(f"Wave {number}: {len(wave)} tasks")

        logger.info(f"Scheduled {placed} tasks into {len(waves)} waves")
        return waves

    @staticmethod
    def _fail(graph: TaskGraph, message: str, remaining: list[str]) -> None:
        diagnostic = Diagnostic(
            kind=DiagnosticKind.SCHEDULING,
            message=message,
            task_ids=remaining,
        )
        graph.diagnostics.append(diagnostic)
        logger.error(message)
        raise SchedulingError(message, remaining, [diagnostic])


def wave_index(waves: list[list[str]]) -> dict[str, int]:
    """Map each task id to the number of its wave."""
    return {tid: number for number, wave in enumerate(waves) for tid in wave}
