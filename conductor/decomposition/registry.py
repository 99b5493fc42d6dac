"""Artifact registry - maps artifact names to the task that produces them."""

from typing import Any

from loguru import logger

from conductor.core.exceptions import DuplicateProducerError
from conductor.decomposition.models import PREEXISTING, Artifact


class ArtifactRegistry:
    """
    Single source of truth for who produces which artifact.

    Every artifact has at most one producer: a task id, or the
    pre-existing sentinel for inputs that exist outside the graph.

    Example:
        >>> registry = ArtifactRegistry()
        >>> registry.mark_preexisting("repo")
        >>> registry.register("schema", "T1")
        >>> registry.resolve("schema")
        'T1'
        >>> registry.resolve("repo") == PREEXISTING
        True
    """

    def __init__(self) -> None:
        self._artifacts: dict[str, Artifact] = {}

    def register(self, artifact_name: str, producer_id: str) -> Artifact:
        """
        Register ``producer_id`` as the producer of ``artifact_name``.

        Re-registering the same producer is a no-op.

        Raises:
            DuplicateProducerError: If the name is already registered to a
                different producer, or marked pre-existing.
        """
        existing = self._artifacts.get(artifact_name)
        if existing is not None:
            if existing.producer == producer_id:
                return existing
            raise DuplicateProducerError(artifact_name, existing.producer, producer_id)

        artifact = Artifact(name=artifact_name, producer=producer_id)
        self._artifacts[artifact_name] = artifact
        logger.debug(f"Registered artifact {artifact_name} -> {producer_id}")
        return artifact

    def mark_preexisting(self, artifact_name: str, value: Any = None) -> Artifact:
        """
        Mark an artifact as already available outside the graph.

        Raises:
            DuplicateProducerError: If a task already produces the name.
        """
        existing = self._artifacts.get(artifact_name)
        if existing is not None and not existing.preexisting:
            raise DuplicateProducerError(artifact_name, existing.producer, PREEXISTING)

        artifact = Artifact(
            name=artifact_name,
            producer=PREEXISTING,
            available=True,
            value=value if value is not None else (existing.value if existing else None),
        )
        self._artifacts[artifact_name] = artifact
        return artifact

    def resolve(self, artifact_name: str) -> str | None:
        """
        Resolve an artifact name to its producer.

        Returns:
            The producing task id, the pre-existing sentinel, or None when
            nothing produces the name.
        """
        artifact = self._artifacts.get(artifact_name)
        return artifact.producer if artifact else None

    def get(self, artifact_name: str) -> Artifact | None:
        return self._artifacts.get(artifact_name)

    def mark_available(self, artifact_name: str, value: Any = None) -> Artifact:
        """Record that the producer completed and the artifact can be consumed."""
        artifact = self._artifacts[artifact_name]
        artifact.available = True
        artifact.value = value
        return artifact

    def is_available(self, artifact_name: str) -> bool:
        artifact = self._artifacts.get(artifact_name)
        return bool(artifact and artifact.available)

    def produced_by(self, producer_id: str) -> list[Artifact]:
        return [a for a in self._artifacts.values() if a.producer == producer_id]

    def artifacts(self) -> list[Artifact]:
        return list(self._artifacts.values())

    def __contains__(self, artifact_name: object) -> bool:
        return artifact_name in self._artifacts

    def __len__(self) -> int:
        return len(self._artifacts)

    def to_list(self) -> list[dict[str, Any]]:
        return [a.model_dump(mode="json") for a in self._artifacts.values()]

    @classmethod
    def from_artifacts(cls, artifacts: list[Artifact]) -> "ArtifactRegistry":
        registry = cls()
        for artifact in artifacts:
            registry._artifacts[artifact.name] = artifact.model_copy()
        return registry
