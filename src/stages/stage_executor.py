"""Sequential command execution for one stage.

Native builds are not resumable mid-stage, so the first failing command
aborts the stage and nothing after it runs.
"""

from __future__ import annotations

import time
from pathlib import Path

from core.errors import StageCommandFailedError
from core.logging_config import get_logger
from core.types import BuildCommand, StageSpec
from stages.command_runner import (
    CommandInvocation,
    CommandRunner,
    SubprocessCommandRunner,
    build_stage_environment,
)
from stages.work_tree import WorkTree, WorkTreeEscapeError
from toggles.module_manifest import toggle_manifest_file

_LOGGER = get_logger(__name__)


class StageExecutor:
    """Runs the command list of a stage inside its own work tree."""

    def __init__(
        self,
        logs_root: Path,
        jobs: int,
        runner: CommandRunner | None = None,
    ) -> None:
        self._logs_root = logs_root
        self._jobs = jobs
        self._runner = runner or SubprocessCommandRunner()

    def log_path(self, stage_name: str) -> Path:
        """Command output log for *stage_name*."""
        return self._logs_root / f"{stage_name}.log"

    def run(self, stage: StageSpec, tree: WorkTree) -> None:
        """Execute every command of *stage* in declared order.

        When the stage declares module toggles, the manifest is rewritten
        exactly once, immediately before the command whose step matches
        ``toggles.before_step``.

        Args:
            stage: Stage definition.
            tree: The stage's exclusive work tree.

        Raises:
            StageCommandFailedError: On the first failing command.
            ModuleToggleError: If the module manifest cannot be rewritten.
        """
        environment = build_stage_environment(stage, tree, self._jobs)
        toggles_applied = False
        for command in stage.commands:
            if (
                stage.toggles is not None
                and not toggles_applied
                and command.step == stage.toggles.before_step
            ):
                toggle_manifest_file(tree.resolve(stage.toggles.manifest_path), stage.toggles.table)
                toggles_applied = True
            self._run_command(stage, tree, command, environment)

    def _run_command(
        self,
        stage: StageSpec,
        tree: WorkTree,
        command: BuildCommand,
        environment: dict[str, str],
    ) -> None:
        log_path = self.log_path(stage.name)
        cwd = _resolve_cwd(stage, tree, command)
        _LOGGER.info("stage_step_started", stage_name=stage.name, step=command.step)
        started_at = time.monotonic()
        exit_status = self._runner.run(
            CommandInvocation(
                stage_name=stage.name,
                command=command,
                cwd=cwd,
                environment=environment,
                log_path=log_path,
            )
        )
        duration_seconds = round(time.monotonic() - started_at, 3)
        if exit_status != 0:
            _LOGGER.error(
                "stage_step_failed",
                stage_name=stage.name,
                step=command.step,
                exit_status=exit_status,
                duration_seconds=duration_seconds,
                log_path=str(log_path),
            )
            raise StageCommandFailedError(
                stage.name, command.step, exit_status, log_path=str(log_path)
            )
        _LOGGER.info(
            "stage_step_completed",
            stage_name=stage.name,
            step=command.step,
            duration_seconds=duration_seconds,
        )


def _resolve_cwd(stage: StageSpec, tree: WorkTree, command: BuildCommand) -> Path:
    if command.cwd is None:
        return tree.root
    try:
        cwd = tree.resolve(command.cwd)
    except WorkTreeEscapeError as error:
        raise StageCommandFailedError(stage.name, command.step, None, detail=str(error)) from error
    if not cwd.is_dir():
        raise StageCommandFailedError(
            stage.name,
            command.step,
            None,
            detail=f"working directory '{command.cwd}' does not exist in the stage tree",
        )
    return cwd
