"""End-to-end tests for the command line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conductor.cli.main import app

runner = CliRunner()


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def plan_file(tmp_path: Path, diamond_declarations) -> Path:
    path = tmp_path / "tasks.json"
    path.write_text(json.dumps({
        "goal": "Ship the service",
        "preexisting": ["requirements"],
        "tasks": [d.model_dump() for d in diamond_declarations],
    }))
    return path


@pytest.fixture
def workers_file(tmp_path: Path, standard_capabilities) -> Path:
    path = tmp_path / "workers.json"
    path.write_text(json.dumps({
        "workers": [
            {"name": name, "capabilities": tags}
            for name, tags in standard_capabilities.items()
        ],
    }))
    return path


@pytest.fixture
def cyclic_file(tmp_path: Path) -> Path:
    path = tmp_path / "cyclic.json"
    path.write_text(json.dumps([
        {"id": "A", "domain": "design", "inputs": ["b"], "outputs": ["a"]},
        {"id": "B", "domain": "design", "inputs": ["a"], "outputs": ["b"]},
    ]))
    return path


# =============================================================================
# TESTS
# =============================================================================


class TestCLI:
    """Tests for the conductor CLI."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "version" in result.output

    def test_validate(self, plan_file: Path) -> None:
        result = runner.invoke(app, ["validate", str(plan_file)])

        assert result.exit_code == 0
        assert "acyclic" in result.output

    def test_validate_cycle(self, cyclic_file: Path) -> None:
        result = runner.invoke(app, ["validate", str(cyclic_file)])

        assert result.exit_code == 1
        assert "Invalid" in result.output

    def test_validate_duplicate_producer(self, tmp_path: Path) -> None:
        path = tmp_path / "dupes.json"
        path.write_text(json.dumps([
            {"id": "A", "domain": "design", "outputs": ["x"]},
            {"id": "B", "domain": "design", "outputs": ["x"]},
        ]))

        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "duplicate_producer" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.json")])

        assert result.exit_code == 2

    def test_validate_invalid_declaration(self, tmp_path: Path) -> None:
        path = tmp_path / "invalid.json"
        path.write_text(json.dumps([
            {"id": "A", "domain": "design", "outputs": ["a"], "effort": 0},
        ]))

        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Invalid declaration" in result.output
        assert "effort" in result.output

    def test_plan_invalid_declaration(self, tmp_path: Path, workers_file: Path) -> None:
        path = tmp_path / "invalid.json"
        path.write_text(json.dumps([{"id": "A", "outputs": ["a"]}]))

        result = runner.invoke(app, ["plan", str(path), "-w", str(workers_file)])

        assert result.exit_code == 1
        assert "Invalid declaration" in result.output

    def test_malformed_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text('[{"id": "A", "domain": ')

        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Malformed JSON" in result.output

    def test_invalid_workers_file(self, plan_file: Path, tmp_path: Path) -> None:
        path = tmp_path / "workers.json"
        path.write_text(json.dumps({"workers": [{"capabilities": ["backend"]}]}))

        result = runner.invoke(app, ["plan", str(plan_file), "-w", str(path)])

        assert result.exit_code == 1
        assert "Invalid declaration" in result.output

    def test_plan_writes_snapshot(
        self,
        tmp_path: Path,
        plan_file: Path,
        workers_file: Path,
    ) -> None:
        output = tmp_path / "plan.json"

        result = runner.invoke(
            app,
            ["plan", str(plan_file), "-w", str(workers_file), "-o", str(output)],
        )

        assert result.exit_code == 0
        snapshot = json.loads(output.read_text())
        assert snapshot["dagValid"] is True
        assert snapshot["mode"] == "scheduled"
        assert snapshot["criticalPath"] == ["T1", "T2", "T4"]
        assert snapshot["waves"] == [["T1"], ["T2", "T3"], ["T4"]]

    def test_plan_rejects_cycle(self, cyclic_file: Path, workers_file: Path) -> None:
        result = runner.invoke(app, ["plan", str(cyclic_file), "-w", str(workers_file)])

        assert result.exit_code == 1
        assert "Planning failed" in result.output

    def test_run(self, plan_file: Path, workers_file: Path) -> None:
        result = runner.invoke(app, ["run", str(plan_file), "-w", str(workers_file)])

        assert result.exit_code == 0
        assert "Execution report" in result.output
        assert "completed" in result.output

    def test_run_with_failure(self, plan_file: Path, workers_file: Path) -> None:
        result = runner.invoke(
            app,
            ["run", str(plan_file), "-w", str(workers_file), "--fail", "T3"],
        )

        assert result.exit_code == 1
        assert "blocked" in result.output
        assert "contingent" in result.output

    def test_show(self, tmp_path: Path, plan_file: Path, workers_file: Path) -> None:
        output = tmp_path / "plan.json"
        runner.invoke(app, ["plan", str(plan_file), "-w", str(workers_file), "-o", str(output)])

        result = runner.invoke(app, ["show", str(output)])

        assert result.exit_code == 0
        assert "taskCount" in result.output
        assert "criticalPathLength" in result.output
