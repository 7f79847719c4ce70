"""Unit tests for core config parsing."""

from __future__ import annotations

import pytest

from core.config import KilnConfig
from core.constants import DEFAULT_FETCH_ATTEMPTS, DEFAULT_MAX_PARALLEL_STAGES
from core.errors import KilnConfigError

_VARIABLES = (
    "KILN_BUILD_ROOT",
    "KILN_JOBS",
    "KILN_MAX_PARALLEL_STAGES",
    "KILN_FETCH_ATTEMPTS",
    "KILN_FETCH_BACKOFF_SECONDS",
    "KILN_KEEP_WORK_TREES",
    "KILN_OVERWRITE_RUNTIME_CONFIG",
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for variable in _VARIABLES:
        monkeypatch.delenv(variable, raising=False)


def test_from_env_reads_build_root(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should resolve build root from environment."""
    monkeypatch.setenv("KILN_BUILD_ROOT", "./.tmp-kiln")

    config = KilnConfig.from_env()

    assert config.build_root.name == ".tmp-kiln" and config.build_root.is_absolute()


def test_from_env_uses_defaults() -> None:
    """Unset variables should fall back to documented defaults."""
    config = KilnConfig.from_env()

    assert (
        config.max_parallel_stages == DEFAULT_MAX_PARALLEL_STAGES
        and config.fetch_attempts == DEFAULT_FETCH_ATTEMPTS
        and config.keep_work_trees is False
        and config.overwrite_runtime_config is False
    )


def test_stage_and_log_roots_live_under_build_root(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Derived directories should be nested below the build root."""
    monkeypatch.setenv("KILN_BUILD_ROOT", str(tmp_path))

    config = KilnConfig.from_env()

    assert config.stages_root.parent == config.logs_root.parent == tmp_path.resolve()


def test_from_env_raises_for_invalid_jobs(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should fail for non-numeric job counts."""
    monkeypatch.setenv("KILN_JOBS", "many")

    with pytest.raises(KilnConfigError):
        KilnConfig.from_env()


def test_from_env_raises_for_zero_fetch_attempts(monkeypatch: pytest.MonkeyPatch) -> None:
    """A zero attempt budget can never fetch anything and is rejected."""
    monkeypatch.setenv("KILN_FETCH_ATTEMPTS", "0")

    with pytest.raises(KilnConfigError):
        KilnConfig.from_env()


def test_from_env_raises_for_negative_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    """Negative fetch backoff should be rejected."""
    monkeypatch.setenv("KILN_FETCH_BACKOFF_SECONDS", "-1")

    with pytest.raises(KilnConfigError):
        KilnConfig.from_env()


def test_from_env_parses_boolean_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    """Boolean variables should accept common truthy spellings."""
    monkeypatch.setenv("KILN_KEEP_WORK_TREES", "yes")
    monkeypatch.setenv("KILN_OVERWRITE_RUNTIME_CONFIG", "TRUE")

    config = KilnConfig.from_env()

    assert config.keep_work_trees and config.overwrite_runtime_config


def test_from_env_raises_for_invalid_boolean(monkeypatch: pytest.MonkeyPatch) -> None:
    """Unrecognized boolean spellings should fail loudly."""
    monkeypatch.setenv("KILN_KEEP_WORK_TREES", "maybe")

    with pytest.raises(KilnConfigError):
        KilnConfig.from_env()
