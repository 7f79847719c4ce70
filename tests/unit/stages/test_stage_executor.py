"""Unit tests for sequential stage command execution."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.errors import StageCommandFailedError
from core.types import BuildCommand, ModuleToggleSpec, StageSpec
from stages.command_runner import CommandInvocation, SubprocessCommandRunner
from stages.stage_executor import StageExecutor
from stages.work_tree import WorkTree


class _FakeRunner:
    """Records invocations and fails configured steps."""

    def __init__(self, failing_steps: dict[str, int] | None = None) -> None:
        self.invocations: list[CommandInvocation] = []
        self.manifest_at_configure: str | None = None
        self._failing_steps = failing_steps or {}

    def run(self, invocation: CommandInvocation) -> int:
        self.invocations.append(invocation)
        if invocation.command.step == "configure":
            manifest = invocation.cwd / "modules.conf"
            if manifest.exists():
                self.manifest_at_configure = manifest.read_text(encoding="utf-8")
        return self._failing_steps.get(invocation.command.step, 0)


def _stage(*steps: str, toggles: ModuleToggleSpec | None = None) -> StageSpec:
    return StageSpec(
        name="app",
        base_environment="debian:bullseye",
        commands=tuple(BuildCommand(step=step, run=f"run-{step}") for step in steps),
        environment={"PKG_CONFIG_PATH": "$STAGE_ROOT/usr/lib/pkgconfig"},
        toggles=toggles,
    )


def _executor(tmp_path: Path, runner) -> StageExecutor:
    return StageExecutor(tmp_path / "logs", jobs=2, runner=runner)


def test_run_executes_commands_in_order(tmp_path) -> None:
    """Commands should run in declared order."""
    runner = _FakeRunner()
    tree = WorkTree.create("app", tmp_path / "stages")

    _executor(tmp_path, runner).run(_stage("bootstrap", "configure", "make"), tree)

    assert [row.command.step for row in runner.invocations] == ["bootstrap", "configure", "make"]


def test_run_stops_at_first_failure(tmp_path) -> None:
    """A failing command should abort the stage and name its step."""
    runner = _FakeRunner(failing_steps={"configure": 2})
    tree = WorkTree.create("app", tmp_path / "stages")

    with pytest.raises(StageCommandFailedError) as error_info:
        _executor(tmp_path, runner).run(_stage("bootstrap", "configure", "make"), tree)

    assert (
        error_info.value.stage_name == "app"
        and error_info.value.step_name == "configure"
        and error_info.value.exit_status == 2
        and [row.command.step for row in runner.invocations] == ["bootstrap", "configure"]
    )


def test_run_builds_isolated_environment(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Host variables should not leak into stage commands."""
    monkeypatch.setenv("HOST_ONLY_SECRET", "leak")
    runner = _FakeRunner()
    tree = WorkTree.create("app", tmp_path / "stages")

    _executor(tmp_path, runner).run(_stage("make"), tree)
    environment = runner.invocations[0].environment

    assert (
        "HOST_ONLY_SECRET" not in environment
        and environment["JOBS"] == "2"
        and environment["STAGE_ROOT"] == str(tree.root)
        and environment["PKG_CONFIG_PATH"] == f"{tree.root}/usr/lib/pkgconfig"
    )


def test_run_applies_toggles_before_configure(tmp_path) -> None:
    """The manifest should be rewritten before the configure step runs."""
    runner = _FakeRunner()
    tree = WorkTree.create("app", tmp_path / "stages")
    tree.resolve("modules.conf").write_text("endpoints/mod_verto\ncodecs/mod_opus\n", encoding="utf-8")
    toggles = ModuleToggleSpec(
        manifest_path="modules.conf",
        before_step="configure",
        table={"mod_verto": False},
    )

    _executor(tmp_path, runner).run(_stage("bootstrap", "configure", toggles=toggles), tree)

    assert runner.manifest_at_configure == "#endpoints/mod_verto\ncodecs/mod_opus\n"


def test_run_rejects_missing_working_directory(tmp_path) -> None:
    """A command cwd absent from the tree should fail its step."""
    runner = _FakeRunner()
    tree = WorkTree.create("app", tmp_path / "stages")
    stage = StageSpec(
        name="app",
        base_environment="debian",
        commands=(BuildCommand(step="configure", run="./configure", cwd="usr/src/app"),),
    )

    with pytest.raises(StageCommandFailedError, match="configure"):
        _executor(tmp_path, runner).run(stage, tree)


def test_subprocess_runner_writes_into_tree_and_log(tmp_path) -> None:
    """Shell commands should run inside the tree and append to the stage log."""
    tree = WorkTree.create("app", tmp_path / "stages")
    executor = _executor(tmp_path, SubprocessCommandRunner())
    stage = StageSpec(
        name="app",
        base_environment="debian",
        commands=(BuildCommand(step="install", run='echo built > artifact.txt && echo "done $STAGE_NAME"'),),
    )

    executor.run(stage, tree)

    assert (
        tree.resolve("artifact.txt").read_text(encoding="utf-8") == "built\n"
        and "done app" in executor.log_path("app").read_text(encoding="utf-8")
    )


def test_subprocess_runner_reports_exit_status(tmp_path) -> None:
    """Non-zero shell exits should surface as the failed step's status."""
    tree = WorkTree.create("app", tmp_path / "stages")
    executor = _executor(tmp_path, SubprocessCommandRunner())
    stage = StageSpec(
        name="app",
        base_environment="debian",
        commands=(BuildCommand(step="make", run="exit 3"),),
    )

    with pytest.raises(StageCommandFailedError) as error_info:
        executor.run(stage, tree)

    assert error_info.value.exit_status == 3 and error_info.value.log_path == str(executor.log_path("app"))
