"""Kiln exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type so a failed build names
the stage and step that broke it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.types import StageOutcome


class KilnError(Exception):
    """Base exception for all Kiln failures.

    Attributes:
        outcomes: Per-stage outcomes, set when the error aborted a pipeline run.
    """

    outcomes: tuple[StageOutcome, ...] = ()


class KilnConfigError(KilnError):
    """Raised for invalid runtime configuration."""


class PipelineSpecError(KilnError):
    """Raised for invalid or unsupported pipeline definitions."""


class SourceUnavailableError(KilnError):
    """Raised when a source tree cannot be fetched within its attempt budget."""

    def __init__(
        self,
        source_name: str,
        attempts: int,
        last_error: str,
        stage_name: str | None = None,
    ) -> None:
        owner = f" for stage '{stage_name}'" if stage_name else ""
        super().__init__(
            f"Source '{source_name}'{owner} is unavailable after {attempts} attempt(s): "
            f"{last_error}. Check network access and the repository reference, then retry."
        )
        self.source_name = source_name
        self.attempts = attempts
        self.last_error = last_error
        self.stage_name = stage_name


class FetchAttemptError(KilnError):
    """Raised by fetchers for one failed, retryable fetch attempt."""


class StageCommandFailedError(KilnError):
    """Raised when a build command inside a stage reports failure."""

    def __init__(
        self,
        stage_name: str,
        step_name: str,
        exit_status: int | None,
        log_path: str | None = None,
        detail: str | None = None,
    ) -> None:
        message = f"Stage '{stage_name}' failed at step '{step_name}'"
        if exit_status is not None:
            message += f" with exit status {exit_status}"
        if detail:
            message += f": {detail}"
        if log_path:
            message += f". See {log_path} for command output"
        super().__init__(message + ".")
        self.stage_name = stage_name
        self.step_name = step_name
        self.exit_status = exit_status
        self.log_path = log_path


class ArtifactNotFoundError(KilnError):
    """Raised when a declared artifact is absent from its producer tree."""

    def __init__(self, producer: str, consumer: str, source: str) -> None:
        super().__init__(
            f"Artifact '{source}' was not found in stage '{producer}' "
            f"while importing into stage '{consumer}'. "
            f"Fix the outputs declared by '{producer}' or its install commands."
        )
        self.producer = producer
        self.consumer = consumer
        self.source = source


class ArtifactCopyError(KilnError):
    """Raised for filesystem failures while copying a present artifact."""


class ModuleToggleError(KilnError):
    """Raised when the module manifest cannot be read or rewritten."""


class ProvisioningFailedError(KilnError):
    """Raised when the runtime image cannot be provisioned."""
