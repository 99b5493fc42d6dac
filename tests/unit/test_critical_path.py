"""Unit tests for critical path analysis."""

import pytest

from conductor.core.exceptions import SchedulingError
from conductor.decomposition.critical_path import CriticalPathAnalyzer
from conductor.decomposition.graph_builder import build_graph
from conductor.decomposition.models import TaskDeclaration, TaskGraph, TaskStatus
from conductor.decomposition.scheduler import WaveScheduler


def scheduled(declarations: list, preexisting: list[str] | None = None) -> TaskGraph:
    graph, _ = build_graph(declarations, preexisting=preexisting or [])
    WaveScheduler().schedule(graph)
    return graph


class TestCriticalPathAnalyzer:
    """Tests for CriticalPathAnalyzer."""

    def test_diamond(self, diamond_declarations: list[TaskDeclaration]) -> None:
        graph = scheduled(diamond_declarations, ["requirements"])

        report = CriticalPathAnalyzer().analyze(graph)

        assert report.path == ["T1", "T2", "T4"]
        assert report.length == 6
        assert report.slack == {"T1": 0, "T2": 0, "T3": 1, "T4": 0}
        assert report.earliest_start["T4"] == 3
        assert report.zero_slack == ["T1", "T2", "T4"]

    def test_annotates_tasks_without_touching_status(
        self,
        diamond_declarations: list[TaskDeclaration],
    ) -> None:
        graph = scheduled(diamond_declarations, ["requirements"])

        CriticalPathAnalyzer().analyze(graph)

        t3 = graph.tasks["T3"]
        assert t3.slack == 1
        assert not t3.on_critical_path
        assert graph.tasks["T2"].on_critical_path
        assert graph.tasks["T4"].earliest_finish == 6
        assert all(t.status == TaskStatus.PENDING for t in graph.tasks.values())

    def test_annotate_false(self, diamond_declarations: list[TaskDeclaration]) -> None:
        graph = scheduled(diamond_declarations, ["requirements"])

        CriticalPathAnalyzer().analyze(graph, annotate=False)

        assert graph.tasks["T1"].slack is None

    def test_tie_breaks_by_smallest_id(self) -> None:
        graph = scheduled([
            {"id": "b", "domain": "d", "outputs": ["x"], "effort": 2},
            {"id": "a", "domain": "d", "outputs": ["y"], "effort": 2},
            {"id": "c", "domain": "d", "inputs": ["x", "y"], "effort": 1},
        ])

        report = CriticalPathAnalyzer().analyze(graph)

        assert report.path == ["a", "c"]
        assert report.length == 3
        assert report.slack["b"] == 0

    def test_independent_tasks(self) -> None:
        graph = scheduled([
            {"id": "a", "domain": "d", "effort": "S"},
            {"id": "b", "domain": "d", "effort": "XL"},
        ])

        report = CriticalPathAnalyzer().analyze(graph)

        assert report.path == ["b"]
        assert report.length == 5
        assert report.slack["a"] == 4

    def test_empty_graph(self) -> None:
        report = CriticalPathAnalyzer().analyze(TaskGraph())

        assert report.path == []
        assert report.length == 0

    def test_requires_schedule(self, diamond_declarations: list[TaskDeclaration]) -> None:
        graph, _ = build_graph(diamond_declarations, preexisting=["requirements"])

        with pytest.raises(SchedulingError):
            CriticalPathAnalyzer().analyze(graph)
