"""Unit tests for failure recovery and degradation."""

import pytest

from conductor.core.exceptions import InvalidTransitionError
from conductor.decomposition.assigner import AgentAssigner, WorkerProfile, WorkerRegistry
from conductor.decomposition.failure_handler import (
    FailureHandler,
    RecoveryAction,
    default_deliverables,
    mark_contingent,
)
from conductor.decomposition.graph_builder import build_graph
from conductor.decomposition.models import (
    DiagnosticKind,
    ResultStatus,
    TaskDeclaration,
    TaskGraph,
    TaskResult,
    TaskStatus,
)
from conductor.decomposition.registry import ArtifactRegistry
from conductor.decomposition.scheduler import WaveScheduler


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def planned(diamond_declarations: list[TaskDeclaration]):
    """Factory returning an assigned diamond graph for the given workers."""

    def build(capabilities: dict[str, list[str]]) -> tuple[TaskGraph, ArtifactRegistry, AgentAssigner]:
        graph, registry = build_graph(diamond_declarations, preexisting=["requirements"])
        WaveScheduler().schedule(graph)
        workers = WorkerRegistry()
        for name, tags in capabilities.items():
            workers.register(WorkerProfile(name=name, capabilities=tags))
        assigner = AgentAssigner(workers)
        assigner.assign(graph)
        return graph, registry, assigner

    return build


def fail(graph: TaskGraph, task_id: str, detail: str = "boom") -> TaskResult:
    """Drive a task into Failed the way the orchestrator would."""
    task = graph.tasks[task_id]
    if task.status == TaskStatus.PENDING:
        task.transition(TaskStatus.READY)
        task.transition(TaskStatus.DISPATCHED)
    task.transition(TaskStatus.FAILED)
    return TaskResult(task_id=task_id, status=ResultStatus.FAILED, diagnostic=detail)


# =============================================================================
# TESTS
# =============================================================================


class TestFailureHandler:
    """Tests for FailureHandler."""

    def test_retry_then_block(self, planned, standard_capabilities) -> None:
        graph, _, assigner = planned(standard_capabilities)
        handler = FailureHandler(assigner, max_retries=2)

        first = handler.handle(graph, fail(graph, "T2", "first"))
        second = handler.handle(graph, fail(graph, "T2", "second"))

        assert [first.action, second.action] == [RecoveryAction.RETRY] * 2
        assert second.retry_count == 2
        assert first.redispatch
        assert graph.tasks["T2"].status == TaskStatus.DISPATCHED

        final = handler.handle(graph, fail(graph, "T2", "third"))

        assert final.action == RecoveryAction.BLOCK
        assert not final.redispatch
        assert final.contingent == ["T4"]
        assert graph.tasks["T2"].status == TaskStatus.BLOCKED
        assert graph.tasks["T4"].status == TaskStatus.CONTINGENT
        assert graph.tasks["T3"].status == TaskStatus.PENDING
        assert graph.tasks["T2"].failure_context == ["first", "second", "third"]
        assert len(graph.diagnostics_of(DiagnosticKind.TASK_FAILURE)) == 3

    def test_reassign_after_retries(self, planned) -> None:
        graph, _, assigner = planned({
            "architect": ["design"],
            "coder": ["backend"],
            "coder2": ["backend"],
            "tester": ["testing"],
        })
        handler = FailureHandler(assigner, max_retries=1)
        assert graph.tasks["T2"].assigned_worker == "coder"

        handler.handle(graph, fail(graph, "T2"))
        decision = handler.handle(graph, fail(graph, "T2"))

        task = graph.tasks["T2"]
        assert decision.action == RecoveryAction.REASSIGN
        assert decision.worker == "coder2"
        assert task.assigned_worker == "coder2"
        assert task.excluded_workers == ["coder"]
        assert task.retry_count == 0
        assert task.status == TaskStatus.DISPATCHED
        assert TaskStatus.REASSIGNED in task.status_history

        # The alternate gets its own retry budget, then nobody is left
        assert handler.handle(graph, fail(graph, "T2")).action == RecoveryAction.RETRY
        assert handler.handle(graph, fail(graph, "T2")).action == RecoveryAction.BLOCK

    def test_zero_retries(self, planned, standard_capabilities) -> None:
        graph, _, assigner = planned(standard_capabilities)

        decision = FailureHandler(assigner, max_retries=0).handle(graph, fail(graph, "T1"))

        assert decision.action == RecoveryAction.BLOCK
        assert decision.contingent == ["T2", "T3", "T4"]

    def test_requires_failed_task(self, planned, standard_capabilities) -> None:
        graph, _, assigner = planned(standard_capabilities)
        result = TaskResult(task_id="T1", status=ResultStatus.FAILED)

        with pytest.raises(InvalidTransitionError):
            FailureHandler(assigner).handle(graph, result)


class TestDegradation:
    """Tests for contingency marking and deliverable reachability."""

    def test_default_deliverables_are_sink_outputs(self, planned, standard_capabilities) -> None:
        graph, _, _ = planned(standard_capabilities)

        assert default_deliverables(graph) == ["report"]

    def test_mark_contingent_leaves_finished_tasks(self, planned, standard_capabilities) -> None:
        graph, _, _ = planned(standard_capabilities)
        t3 = graph.tasks["T3"]
        for status in (
            TaskStatus.READY,
            TaskStatus.DISPATCHED,
            TaskStatus.COMPLETED,
        ):
            t3.transition(status)

        assert mark_contingent(graph, ["T1"]) == ["T2", "T4"]
        assert t3.status == TaskStatus.COMPLETED
        assert mark_contingent(graph, ["T1"]) == []

    def test_partial_success(self, planned, standard_capabilities) -> None:
        graph, registry, assigner = planned(standard_capabilities)
        FailureHandler(assigner, max_retries=0).handle(graph, fail(graph, "T2"))
        registry.mark_available("schema")

        report = FailureHandler.degrade(graph, registry, ["schema", "fixtures", "report"])

        assert report.achieved == ["schema"]
        assert report.achievable == ["fixtures"]
        assert report.lost == ["report"]
        assert report.blocked_tasks == ["T2"]
        assert report.contingent_tasks == ["T4"]
        assert report.partial_success

    def test_total_loss_is_not_partial_success(self, planned, standard_capabilities) -> None:
        graph, registry, assigner = planned(standard_capabilities)
        FailureHandler(assigner, max_retries=0).handle(graph, fail(graph, "T2"))

        report = FailureHandler.degrade(graph, registry)

        assert report.deliverables == ["report"]
        assert report.lost == ["report"]
        assert not report.partial_success

    def test_unknown_deliverable_is_lost(self, planned, standard_capabilities) -> None:
        graph, registry, _ = planned(standard_capabilities)

        report = FailureHandler.degrade(graph, registry, ["nonexistent"])

        assert report.lost == ["nonexistent"]
