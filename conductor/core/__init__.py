"""Core module - Orchestrator, plan sessions, errors and configuration."""

from conductor.core.config import Settings, get_settings
from conductor.core.exceptions import (
    ConductorError,
    CycleError,
    DuplicateProducerError,
    DuplicateTaskError,
    InvalidTransitionError,
    PlanningError,
    SchedulingError,
    SessionStateError,
)
from conductor.core.orchestrator import ExecutionReport, Orchestrator
from conductor.core.session import OrchestratorState, PlanSession, PlanSnapshot

__all__ = [
    "ConductorError",
    "CycleError",
    "DuplicateProducerError",
    "DuplicateTaskError",
    "ExecutionReport",
    "InvalidTransitionError",
    "Orchestrator",
    "OrchestratorState",
    "PlanSession",
    "PlanSnapshot",
    "PlanningError",
    "SchedulingError",
    "SessionStateError",
    "Settings",
    "get_settings",
]
