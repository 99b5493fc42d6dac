"""
Conductor - task orchestration engine.

Plans a goal's declared sub-tasks into a validated dependency graph,
schedules them into parallel waves and drives capability-matched workers
through them, recovering from partial failures.
"""

__version__ = "0.1.0"
__author__ = "Conductor Team"

from conductor.core.orchestrator import Orchestrator

__all__ = ["Orchestrator", "__version__"]
