"""Graph builder - turns sub-task declarations into a dependency graph.

Edges are never declared directly. They are derived by resolving each
declared input through the artifact registry to the task that produces it.
"""

from collections.abc import Iterable
from typing import Any

from loguru import logger

from conductor.core.exceptions import DuplicateProducerError, DuplicateTaskError
from conductor.decomposition.models import (
    PREEXISTING,
    Diagnostic,
    Task,
    TaskDeclaration,
    TaskGraph,
    TaskStatus,
)
from conductor.decomposition.registry import ArtifactRegistry


class GraphBuilder:
    """
    Build a TaskGraph from an ordered list of declarations.

    Missing inputs and duplicate producers are reported as diagnostics on
    the returned graph rather than raised, so the caller always gets a
    best-effort graph for the parts that do resolve.

    Example:
        >>> builder = GraphBuilder()
        >>> graph = builder.build(declarations, preexisting=["repo"])
        >>> graph.predecessors("T2")
        ['T1']
    """

    def __init__(self, registry: ArtifactRegistry | None = None) -> None:
        self.registry = registry if registry is not None else ArtifactRegistry()

    def build(
        self,
        declarations: Iterable[TaskDeclaration | dict[str, Any]],
        preexisting: Iterable[str] = (),
    ) -> TaskGraph:
        """
        Build the dependency graph.

        Args:
            declarations: Sub-task declarations in upstream order.
            preexisting: Artifact names already available outside the graph.

        Returns:
            TaskGraph with one node per declaration and one edge per
            resolved (producer, consumer) pair.

        Raises:
            DuplicateTaskError: If two declarations share an id.
        """
        decls = [self._coerce(d) for d in declarations]
        graph = TaskGraph()

        for name in preexisting:
            self.registry.mark_preexisting(name)

        # Register every output first so declaration order does not matter
        for decl in decls:
            if decl.id in graph.tasks:
                raise DuplicateTaskError(f"Task id {decl.id} declared more than once")
            task = Task.from_declaration(decl)
            graph.add_task(task)

            for output in decl.outputs:
                try:
                    self.registry.register(output, decl.id)
                except DuplicateProducerError as e:
                    diagnostic = Diagnostic.duplicate_producer(output, e.existing, decl.id)
                    graph.diagnostics.append(diagnostic)
                    logger.warning(diagnostic.message)

        for task in graph.tasks.values():
            for artifact_name in task.inputs:
                producer = self.registry.resolve(artifact_name)
                if producer is None:
                    task.missing_inputs.append(artifact_name)
                    diagnostic = Diagnostic.missing_input(artifact_name, task.id)
                    graph.diagnostics.append(diagnostic)
                    logger.warning(diagnostic.message)
                elif producer != PREEXISTING and producer != task.id:
                    graph.add_edge(producer, task.id)

        # Offending tasks stay in the graph but can never become ready
        offending = {
            d.task_ids[-1]
            for d in graph.diagnostics
            if d.kind.fatal
        }
        for task in graph.tasks.values():
            if task.missing_inputs or task.id in offending:
                task.transition(TaskStatus.UNASSIGNABLE)

        logger.info(
            f"Built graph with {len(graph.tasks)} tasks, {len(graph.edges)} edges "
            f"and {len(graph.diagnostics)} diagnostics"
        )
        return graph

    @staticmethod
    def _coerce(declaration: TaskDeclaration | dict[str, Any]) -> TaskDeclaration:
        if isinstance(declaration, TaskDeclaration):
            return declaration
        return TaskDeclaration.model_validate(declaration)


def build_graph(
    declarations: Iterable[TaskDeclaration | dict[str, Any]],
    preexisting: Iterable[str] = (),
) -> tuple[TaskGraph, ArtifactRegistry]:
    """
    Convenience function to build a graph with a fresh registry.

    Returns:
        Tuple of (graph, registry).
    """
    builder = GraphBuilder()
    graph = builder.build(declarations, preexisting)
    return graph, builder.registry
