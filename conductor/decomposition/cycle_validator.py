"""Cycle validator - strongly connected component detection.

Uses an iterative form of Tarjan's algorithm so deep dependency chains do
not hit the interpreter recursion limit. Any component with more than one
member is a cycle. Detection and reporting is the whole contract: breaking
a cycle is left to the caller.
"""

from loguru import logger

from conductor.core.exceptions import CycleError
from conductor.decomposition.models import Diagnostic, DiagnosticKind, TaskGraph


class CycleValidator:
    """
    Detect dependency cycles in a TaskGraph.

    Example:
        >>> validator = CycleValidator()
        >>> validator.find_cycles(graph)
        [['A', 'B', 'C']]
        >>> validator.validate(graph)
        Traceback (most recent call last):
        ...
        CycleError: Circular dependency detected: A -> B -> C
    """

    def strongly_connected_components(self, graph: TaskGraph) -> list[list[str]]:
        """
        Compute every strongly connected component.

        Nodes are visited in declaration order and successors in id order.
        Members of each component are listed in DFS discovery order.

        Returns:
            Components in the order Tarjan completes them.
        """
        adjacency = graph.adjacency()
        index: dict[str, int] = {}
        lowlink: dict[str, int] = {}
        on_stack: set[str] = set()
        stack: list[str] = []
        components: list[list[str]] = []
        counter = 0

        for root in graph.tasks:
            if root in index:
                continue

            # Each frame is (node, iterator position over successors)
            work: list[tuple[str, int]] = [(root, 0)]
            while work:
                node, pos = work.pop()
                if pos == 0:
                    index[node] = lowlink[node] = counter
                    counter += 1
                    stack.append(node)
                    on_stack.add(node)

                successors = adjacency.get(node, [])
                recursed = False
                while pos < len(successors):
                    succ = successors[pos]
                    pos += 1
                    if succ not in adjacency:
                        continue  # Dangling edge, reported by the scheduler
                    if succ not in index:
                        work.append((node, pos))
                        work.append((succ, 0))
                        recursed = True
                        break
                    if succ in on_stack:
                        lowlink[node] = min(lowlink[node], index[succ])
                if recursed:
                    continue

                if lowlink[node] == index[node]:
                    component: list[str] = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    component.sort(key=lambda tid: index[tid])
                    components.append(component)

                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])

        return components

    def find_cycles(self, graph: TaskGraph) -> list[list[str]]:
        """Return every non-trivial strongly connected component."""
        return [c for c in self.strongly_connected_components(graph) if len(c) > 1]

    def validate(self, graph: TaskGraph) -> None:
        """
        Validate that the graph is acyclic.

        Cycle diagnostics are appended to the graph before raising.

        Raises:
            CycleError: Naming every member of every cycle.
        """
        cycles = self.find_cycles(graph)
        if not cycles:
            logger.debug(f"Graph with {len(graph.tasks)} tasks is acyclic")
            return

        diagnostics = [
            Diagnostic(
                kind=DiagnosticKind.CYCLE,
                message=f"Cycle between tasks: {', '.join(cycle)}",
                task_ids=cycle,
            )
            for cycle in cycles
        ]
        graph.diagnostics.extend(diagnostics)
        for diagnostic in diagnostics:
            logger.error(diagnostic.message)
        raise CycleError(cycles, diagnostics)

    def is_acyclic(self, graph: TaskGraph) -> bool:
        return not self.find_cycles(graph)
