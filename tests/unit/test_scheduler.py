"""Unit tests for the wave scheduler."""

import pytest

from conductor.core.exceptions import SchedulingError
from conductor.decomposition.graph_builder import build_graph
from conductor.decomposition.models import DiagnosticKind, TaskDeclaration
from conductor.decomposition.scheduler import WaveScheduler, wave_index


class TestWaveScheduler:
    """Tests for WaveScheduler."""

    def test_diamond_waves(self, diamond_declarations: list[TaskDeclaration]) -> None:
        graph, _ = build_graph(diamond_declarations, preexisting=["requirements"])

        waves = WaveScheduler().schedule(graph)

        assert waves == [["T1"], ["T2", "T3"], ["T4"]]
        assert graph.waves == waves
        assert graph.total_waves == 3
        assert graph.tasks["T3"].wave_number == 1

    def test_waves_partition_and_respect_edges(self) -> None:
        graph, _ = build_graph([
            {"id": "e", "domain": "d", "inputs": ["c", "d"], "outputs": ["e"]},
            {"id": "d", "domain": "d", "inputs": ["a"], "outputs": ["d"]},
            {"id": "c", "domain": "d", "inputs": ["b"], "outputs": ["c"]},
            {"id": "b", "domain": "d", "outputs": ["b"]},
            {"id": "a", "domain": "d", "outputs": ["a"]},
            {"id": "f", "domain": "d"},
        ])

        waves = WaveScheduler().schedule(graph)
        index = wave_index(waves)

        assert sorted(index) == sorted(graph.tasks)
        assert sum(len(w) for w in waves) == len(graph.tasks)
        for edge in graph.edges:
            assert index[edge.source] < index[edge.target]
        assert waves[0] == ["a", "b", "f"]
        assert all(wave == sorted(wave) for wave in waves)

    def test_rescheduling_is_identical(
        self,
        diamond_declarations: list[TaskDeclaration],
    ) -> None:
        graph, _ = build_graph(diamond_declarations, preexisting=["requirements"])
        scheduler = WaveScheduler()

        assert scheduler.schedule(graph) == scheduler.schedule(graph)

    def test_empty_graph(self) -> None:
        graph, _ = build_graph([])

        assert WaveScheduler().schedule(graph) == []

    def test_dangling_edge(self, diamond_declarations: list[TaskDeclaration]) -> None:
        graph, _ = build_graph(diamond_declarations, preexisting=["requirements"])
        graph.add_edge("T4", "ghost")

        with pytest.raises(SchedulingError, match="ghost"):
            WaveScheduler().schedule(graph)

        assert graph.diagnostics_of(DiagnosticKind.SCHEDULING)

    def test_unplaceable_tasks_are_reported(self) -> None:
        """An unvalidated cycle leaves tasks behind."""
        graph, _ = build_graph([
            {"id": "A", "domain": "d", "inputs": ["b"], "outputs": ["a"]},
            {"id": "B", "domain": "d", "inputs": ["a"], "outputs": ["b"]},
            {"id": "C", "domain": "d", "outputs": ["c"]},
        ])

        with pytest.raises(SchedulingError) as exc_info:
            WaveScheduler().schedule(graph)

        assert exc_info.value.remaining == ["A", "B"]
        assert graph.waves == []
