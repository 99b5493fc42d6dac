"""Task decomposition - from declared sub-tasks to an executable plan.

This module provides the complete planning and recovery pipeline:
- Artifact registry (artifact -> producing task)
- Graph building (declarations -> dependency edges)
- Cycle validation (strongly connected components)
- Wave scheduling (acyclic graph -> execution waves)
- Critical path analysis (effort-weighted longest path, slack)
- Agent assignment (domain -> capability-matched worker)
- Concurrent dispatch (waves -> worker results)
- Failure handling (retry, reassignment, graceful degradation)
"""

from conductor.decomposition.assigner import (
    AgentAssigner,
    AssignmentReport,
    WorkerProfile,
    WorkerRegistry,
)
from conductor.decomposition.critical_path import CriticalPathAnalyzer, CriticalPathReport
from conductor.decomposition.cycle_validator import CycleValidator
from conductor.decomposition.executor import (
    DryRunWorker,
    WaveExecutionResult,
    WaveExecutor,
    Worker,
)
from conductor.decomposition.failure_handler import (
    DegradationReport,
    FailureHandler,
    RecoveryAction,
    RecoveryDecision,
)
from conductor.decomposition.graph_builder import GraphBuilder, build_graph
from conductor.decomposition.models import (
    PREEXISTING,
    Artifact,
    Diagnostic,
    DiagnosticKind,
    Edge,
    EffortSize,
    ResultStatus,
    Task,
    TaskDeclaration,
    TaskGraph,
    TaskResult,
    TaskStatus,
)
from conductor.decomposition.registry import ArtifactRegistry
from conductor.decomposition.scheduler import WaveScheduler

__all__ = [
    # Models
    "PREEXISTING",
    "Artifact",
    "Diagnostic",
    "DiagnosticKind",
    "Edge",
    "EffortSize",
    "ResultStatus",
    "Task",
    "TaskDeclaration",
    "TaskGraph",
    "TaskResult",
    "TaskStatus",
    # Planning
    "ArtifactRegistry",
    "GraphBuilder",
    "build_graph",
    "CycleValidator",
    "WaveScheduler",
    "CriticalPathAnalyzer",
    "CriticalPathReport",
    # Assignment
    "AgentAssigner",
    "AssignmentReport",
    "WorkerProfile",
    "WorkerRegistry",
    # Execution
    "Worker",
    "WaveExecutor",
    "WaveExecutionResult",
    "DryRunWorker",
    # Recovery
    "FailureHandler",
    "RecoveryAction",
    "RecoveryDecision",
    "DegradationReport",
]
