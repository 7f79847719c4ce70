"""Build command execution inside an isolated stage environment.

Commands are opaque to the orchestrator: it only builds their
environment, runs them through the shell, and observes the exit status.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Mapping, Protocol

from core.constants import DEFAULT_STAGE_LANG, DEFAULT_STAGE_PATH, SHELL_EXECUTABLE
from core.errors import StageCommandFailedError
from core.types import BuildCommand, StageSpec
from stages.work_tree import WorkTree


@dataclass(frozen=True)
class CommandInvocation:
    """Fully resolved command ready to execute."""

    stage_name: str
    command: BuildCommand
    cwd: Path
    environment: Mapping[str, str]
    log_path: Path


class CommandRunner(Protocol):
    """Executes one resolved command and returns its exit status."""

    def run(self, invocation: CommandInvocation) -> int: ...


class SubprocessCommandRunner:
    """Run commands with ``/bin/sh -c``, appending output to the stage log."""

    def run(self, invocation: CommandInvocation) -> int:
        """Execute *invocation* and return the shell exit status.

        Launch failures (missing shell, missing cwd) are reported as
        status 127 so the executor treats them like any failed command.

        Raises:
            StageCommandFailedError: If the stage log cannot be opened.
        """
        try:
            invocation.log_path.parent.mkdir(parents=True, exist_ok=True)
            log_file = invocation.log_path.open("a", encoding="utf-8")
        except OSError as error:
            raise StageCommandFailedError(
                invocation.stage_name,
                invocation.command.step,
                None,
                detail=f"cannot open command log {invocation.log_path}: {error}",
            ) from error
        with log_file:
            log_file.write(f"$ [{invocation.command.step}] {invocation.command.run}\n")
            log_file.flush()
            try:
                completed = subprocess.run(
                    [SHELL_EXECUTABLE, "-c", invocation.command.run],
                    cwd=invocation.cwd,
                    env=dict(invocation.environment),
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    check=False,
                )
            except OSError as error:
                log_file.write(f"failed to launch command: {error}\n")
                return 127
        return completed.returncode


def build_stage_environment(stage: StageSpec, tree: WorkTree, jobs: int) -> dict[str, str]:
    """Build the isolated environment for commands of *stage*.

    Nothing is inherited from the orchestrator's own environment; the stage
    sees a fixed base plus its declared ``env`` entries, in which
    ``$STAGE_ROOT``-style references to earlier variables are expanded.
    """
    environment = {
        "PATH": DEFAULT_STAGE_PATH,
        "HOME": str(tree.root),
        "LANG": DEFAULT_STAGE_LANG,
        "STAGE_ROOT": str(tree.root),
        "STAGE_NAME": stage.name,
        "BASE_ENVIRONMENT": stage.base_environment,
        "JOBS": str(jobs),
    }
    for key, value in stage.environment.items():
        environment[key] = Template(value).safe_substitute(environment)
    return environment
