"""Pytest configuration and shared fixtures."""

import asyncio
import os
from collections.abc import Callable
from datetime import datetime
from typing import Generator

import pytest

# Set test environment
os.environ.setdefault("CONDUCTOR_LOG_LEVEL", "DEBUG")
os.environ.setdefault("CONDUCTOR_DISPATCH_TIMEOUT", "5")

from conductor.decomposition.assigner import WorkerProfile, WorkerRegistry  # noqa: E402
from conductor.decomposition.models import (  # noqa: E402
    Artifact,
    ResultStatus,
    Task,
    TaskDeclaration,
    TaskResult,
)


class ScriptedWorker:
    """
    In-process worker double.

    ``script`` maps a task id to a list of outcomes consumed one per
    dispatch: "ok", "fail", "raise", "hang", "partial" or "garbage"
    (returns something other than a TaskResult). Unscripted dispatches
    succeed.
    """

    def __init__(
        self,
        name: str,
        script: dict[str, list[str]] | None = None,
        delays: dict[str, float] | None = None,
    ):
        self.name = name
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.delays = delays or {}
        self.calls: list[str] = []
        self.received_inputs: dict[str, list[str]] = {}
        self.contexts: list[list[str]] = []
        self.cancelled: list[str] = []

    async def dispatch(
        self,
        task: Task,
        resolved_inputs: dict[str, Artifact],
        deadline: datetime,
    ) -> TaskResult:
        self.calls.append(task.id)
        self.received_inputs[task.id] = sorted(resolved_inputs)
        self.contexts.append(list(task.failure_context))

        outcomes = self.script.get(task.id, [])
        outcome = outcomes.pop(0) if outcomes else "ok"

        try:
            if task.id in self.delays:
                await asyncio.sleep(self.delays[task.id])
            if outcome == "hang":
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled.append(task.id)
            raise

        if outcome == "garbage":
            return None  # type: ignore[return-value]
        if outcome == "raise":
            raise RuntimeError("worker crashed")
        if outcome == "fail":
            return TaskResult(
                task_id=task.id,
                status=ResultStatus.FAILED,
                diagnostic=f"{self.name} could not finish {task.id}",
            )

        outputs = {} if outcome == "partial" else {
            name: Artifact(name=name, producer=task.id, available=True, value=f"{name}@{self.name}")
            for name in task.outputs
        }
        return TaskResult(task_id=task.id, status=ResultStatus.SUCCEEDED, outputs=outputs)


@pytest.fixture
def mock_settings() -> Generator:
    """Reset cached settings around a test."""
    from conductor.core.config import clear_settings_cache

    clear_settings_cache()

    yield

    clear_settings_cache()


@pytest.fixture
def diamond_declarations() -> list[TaskDeclaration]:
    """T1 -> {T2, T3} -> T4 with efforts 1, 2, 1, 3."""
    return [
        TaskDeclaration(
            id="T1",
            name="Design schema",
            domain="design",
            inputs=["requirements"],
            outputs=["schema"],
            effort=1,
        ),
        TaskDeclaration(
            id="T2",
            name="Implement service",
            domain="backend",
            inputs=["schema"],
            outputs=["service"],
            effort=2,
        ),
        TaskDeclaration(
            id="T3",
            name="Write fixtures",
            domain="testing",
            inputs=["schema"],
            outputs=["fixtures"],
            effort=1,
        ),
        TaskDeclaration(
            id="T4",
            name="Integration tests",
            domain="testing",
            inputs=["service", "fixtures"],
            outputs=["report"],
            effort=3,
        ),
    ]


@pytest.fixture
def worker_factory() -> Callable[..., tuple[WorkerRegistry, dict[str, ScriptedWorker]]]:
    """Build a registry of scripted workers.

    Usage: ``worker_factory({"designer": ["design"]}, scripts={"designer": {...}})``
    """

    def build(
        capabilities: dict[str, list[str]],
        scripts: dict[str, dict[str, list[str]]] | None = None,
        delays: dict[str, dict[str, float]] | None = None,
    ) -> tuple[WorkerRegistry, dict[str, ScriptedWorker]]:
        registry = WorkerRegistry()
        workers: dict[str, ScriptedWorker] = {}
        for name, tags in capabilities.items():
            worker = ScriptedWorker(
                name,
                script=(scripts or {}).get(name),
                delays=(delays or {}).get(name),
            )
            registry.register(WorkerProfile(name=name, capabilities=tags), worker)
            workers[name] = worker
        return registry, workers

    return build


@pytest.fixture
def standard_capabilities() -> dict[str, list[str]]:
    return {
        "architect": ["design"],
        "coder": ["backend", "frontend"],
        "tester": ["testing"],
    }


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
