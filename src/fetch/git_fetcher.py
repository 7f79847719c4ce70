"""Git-backed source fetcher.

This module wraps one ``git clone`` attempt. Every failure, whether a
non-zero exit or a launch error, is reported as a retryable attempt
failure; the acquirer owns the retry budget.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Protocol

from core.constants import GIT_CLONE_CONFIG, GIT_EXECUTABLE
from core.errors import FetchAttemptError
from core.types import RepositoryRef


class SourceFetcher(Protocol):
    """Populates a destination directory from a repository reference."""

    def fetch(self, repository: RepositoryRef, destination: Path) -> None: ...


class GitFetcher:
    """Fetch sources with ``git clone``."""

    def __init__(self, executable: str = GIT_EXECUTABLE) -> None:
        self._executable = executable

    def build_command(self, repository: RepositoryRef, destination: Path) -> list[str]:
        """Return the clone argv for *repository* into *destination*."""
        command = [self._executable]
        for setting in GIT_CLONE_CONFIG:
            command.extend(["-c", setting])
        command.append("clone")
        if repository.ref:
            command.extend(["--branch", repository.ref])
        if repository.shallow:
            command.extend(["--depth", "1", "--single-branch"])
        command.extend([repository.url, str(destination)])
        return command

    def fetch(self, repository: RepositoryRef, destination: Path) -> None:
        """Clone *repository* into *destination*.

        Raises:
            FetchAttemptError: If git exits non-zero or cannot be launched.
        """
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise FetchAttemptError(
                f"failed to prepare clone directory {destination.parent}: {error}"
            ) from error
        try:
            completed = subprocess.run(
                self.build_command(repository, destination),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as error:
            raise FetchAttemptError(f"failed to launch {self._executable}: {error}") from error
        if completed.returncode != 0:
            detail = completed.stderr.strip().splitlines()
            raise FetchAttemptError(
                f"git clone exited with status {completed.returncode}"
                + (f": {detail[-1]}" if detail else "")
            )
