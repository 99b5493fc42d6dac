"""Exception hierarchy for the orchestration engine."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from conductor.decomposition.models import Diagnostic


class ConductorError(Exception):
    """Base exception for conductor errors."""

    pass


class PlanningError(ConductorError):
    """The planning phase was aborted before any dispatch."""

    def __init__(
        self,
        message: str,
        diagnostics: "list[Diagnostic] | None" = None,
    ) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics or []


class DuplicateTaskError(PlanningError):
    """Two declarations share the same task id."""

    pass


class DuplicateProducerError(PlanningError):
    """An artifact is claimed by more than one producer."""

    def __init__(
        self,
        artifact: str,
        existing: str,
        claimant: str,
        diagnostics: "list[Diagnostic] | None" = None,
    ) -> None:
        super().__init__(
            f"Artifact '{artifact}' already produced by {existing}, "
            f"also claimed by {claimant}",
            diagnostics,
        )
        self.artifact = artifact
        self.existing = existing
        self.claimant = claimant


class CycleError(PlanningError):
    """The dependency graph contains one or more cycles."""

    def __init__(
        self,
        cycles: list[list[str]],
        diagnostics: "list[Diagnostic] | None" = None,
    ) -> None:
        rendered = "; ".join(" -> ".join(c) for c in cycles)
        super().__init__(f"Circular dependency detected: {rendered}", diagnostics)
        self.cycles = cycles

    @property
    def members(self) -> set[str]:
        return {tid for cycle in self.cycles for tid in cycle}


class SchedulingError(PlanningError):
    """Topological scheduling could not place every task."""

    def __init__(
        self,
        message: str,
        remaining: list[str] | None = None,
        diagnostics: "list[Diagnostic] | None" = None,
    ) -> None:
        super().__init__(message, diagnostics)
        self.remaining = remaining or []


class InvalidTransitionError(ConductorError):
    """A task status change violated the lifecycle."""

    pass


class SessionStateError(ConductorError):
    """An operation does not apply to the session's current state."""

    pass
