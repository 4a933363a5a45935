from __future__ import annotations


class RoadmapGenerationError(RuntimeError):
    """Fatal for the current job; the worker moves on to the next one."""


class ModelsExhaustedError(RoadmapGenerationError):
    def __init__(self, message: str, *, attempts: int, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.errors = list(errors or [])


class ResponseParseError(RoadmapGenerationError):
    """Raised when a completion does not contain a usable JSON object."""


class StructureValidationError(RoadmapGenerationError):
    """Raised when the structure call does not yield a non-empty phase list."""


class CheckpointError(RoadmapGenerationError):
    """Raised when a roadmap could not be persisted after a generation step."""


class RoadmapNotFoundError(RoadmapGenerationError):
    """Raised when a resume job points at a roadmap that no longer exists."""
