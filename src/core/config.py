"""Runtime configuration model for Kiln.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_BUILD_ROOT,
    DEFAULT_FETCH_ATTEMPTS,
    DEFAULT_FETCH_BACKOFF_SECONDS,
    DEFAULT_MAX_PARALLEL_STAGES,
    LOGS_DIR_NAME,
    STAGES_DIR_NAME,
)
from core.errors import KilnConfigError

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class KilnConfig:
    """Validated runtime configuration.

    Attributes:
        build_root: Local root for stage work trees, logs, and the image manifest.
        jobs: Parallel job count exported to build commands as ``JOBS``.
        max_parallel_stages: Upper bound on concurrently running stages.
        fetch_attempts: Default attempt budget for source fetches.
        fetch_backoff_seconds: Default fixed wait between fetch attempts.
        keep_work_trees: Keep producer trees after all consumers finished.
        overwrite_runtime_config: Regenerate an existing runtime config file.
    """

    build_root: Path
    jobs: int
    max_parallel_stages: int
    fetch_attempts: int
    fetch_backoff_seconds: float
    keep_work_trees: bool
    overwrite_runtime_config: bool

    @classmethod
    def from_env(cls) -> "KilnConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            KilnConfigError: If environment values are invalid.
        """
        build_root_value = os.getenv("KILN_BUILD_ROOT", str(DEFAULT_BUILD_ROOT))
        return cls(
            build_root=Path(build_root_value).expanduser().resolve(),
            jobs=_parse_positive_int("KILN_JOBS", os.getenv("KILN_JOBS"), os.cpu_count() or 1),
            max_parallel_stages=_parse_positive_int(
                "KILN_MAX_PARALLEL_STAGES",
                os.getenv("KILN_MAX_PARALLEL_STAGES"),
                DEFAULT_MAX_PARALLEL_STAGES,
            ),
            fetch_attempts=_parse_positive_int(
                "KILN_FETCH_ATTEMPTS",
                os.getenv("KILN_FETCH_ATTEMPTS"),
                DEFAULT_FETCH_ATTEMPTS,
            ),
            fetch_backoff_seconds=_parse_backoff(os.getenv("KILN_FETCH_BACKOFF_SECONDS")),
            keep_work_trees=_parse_bool(
                "KILN_KEEP_WORK_TREES", os.getenv("KILN_KEEP_WORK_TREES", "false")
            ),
            overwrite_runtime_config=_parse_bool(
                "KILN_OVERWRITE_RUNTIME_CONFIG",
                os.getenv("KILN_OVERWRITE_RUNTIME_CONFIG", "false"),
            ),
        )

    @property
    def stages_root(self) -> Path:
        """Directory holding one work tree per stage."""
        return self.build_root / STAGES_DIR_NAME

    @property
    def logs_root(self) -> Path:
        """Directory holding one command log per stage."""
        return self.build_root / LOGS_DIR_NAME


def _parse_positive_int(variable: str, raw_value: str | None, default_value: int) -> int:
    """Parse a positive integer environment value.

    Args:
        variable: Environment variable name used in error messages.
        raw_value: Raw string from environment, or None when unset.
        default_value: Value used when the variable is unset.

    Returns:
        Parsed positive integer.

    Raises:
        KilnConfigError: If value is not a positive integer.
    """
    if raw_value is None:
        return default_value
    try:
        value = int(raw_value)
    except ValueError as error:
        raise KilnConfigError(
            f"Invalid {variable} value: expected integer, got '{raw_value}'. "
            f"Set {variable} to a positive number."
        ) from error
    if value < 1:
        raise KilnConfigError(
            f"Invalid {variable} value: expected at least 1, got {value}. "
            f"Set {variable} to a positive number."
        )
    return value


def _parse_backoff(raw_value: str | None) -> float:
    if raw_value is None:
        return DEFAULT_FETCH_BACKOFF_SECONDS
    try:
        value = float(raw_value)
    except ValueError as error:
        raise KilnConfigError(
            "Invalid KILN_FETCH_BACKOFF_SECONDS value: "
            f"expected number, got '{raw_value}'. Set it to seconds, e.g. 5."
        ) from error
    if value < 0:
        raise KilnConfigError(
            f"Invalid KILN_FETCH_BACKOFF_SECONDS value: {value} is negative."
        )
    return value


def _parse_bool(variable: str, raw_value: str) -> bool:
    normalized = raw_value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise KilnConfigError(
        f"Invalid {variable} value: expected true/false, got '{raw_value}'."
    )
