"""Bounded-retry source acquisition as an explicit state machine.

States move ``IDLE -> FETCHING -> SUCCEEDED`` on a clean fetch, or through
``RETRY_WAIT`` back to ``FETCHING`` after a failed attempt, ending in
``EXHAUSTED`` once the attempt budget is spent. ``step`` performs exactly
one transition so callers and tests can drive the machine attempt by
attempt.
"""

from __future__ import annotations

import enum
import shutil
import time
from pathlib import Path
from typing import Callable

from core.errors import FetchAttemptError, SourceUnavailableError
from core.logging_config import get_logger
from core.types import SourceSpec
from fetch.git_fetcher import SourceFetcher

_LOGGER = get_logger(__name__)


class FetchState(enum.Enum):
    """Source acquirer states."""

    IDLE = "idle"
    FETCHING = "fetching"
    RETRY_WAIT = "retry_wait"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


_TERMINAL_STATES = (FetchState.SUCCEEDED, FetchState.EXHAUSTED)


class SourceAcquirer:
    """Fetch one source into a destination with fixed-backoff retry."""

    def __init__(
        self,
        source: SourceSpec,
        destination: Path,
        fetcher: SourceFetcher,
        max_attempts: int,
        backoff_seconds: float,
        sleep: Callable[[float], None] | None = None,
        stage_name: str | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._source = source
        self._destination = destination
        self._fetcher = fetcher
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep or time.sleep
        self._stage_name = stage_name
        self._state = FetchState.IDLE
        self._attempt = 0
        self._last_error: str | None = None

    @property
    def state(self) -> FetchState:
        """Current state."""
        return self._state

    @property
    def attempt(self) -> int:
        """Number of fetch attempts started so far."""
        return self._attempt

    @property
    def last_error(self) -> str | None:
        """Failure message of the latest failed attempt."""
        return self._last_error

    def step(self) -> FetchState:
        """Advance the machine by one transition and return the new state.

        Terminal states are sticky; stepping them is a no-op.
        """
        if self._state is FetchState.IDLE:
            self._state = FetchState.FETCHING
        elif self._state is FetchState.FETCHING:
            self._state = self._attempt_fetch()
        elif self._state is FetchState.RETRY_WAIT:
            self._sleep(self._backoff_seconds)
            self._state = FetchState.FETCHING
        return self._state

    def run(self) -> Path:
        """Drive the machine to a terminal state.

        Returns:
            The populated destination directory.

        Raises:
            SourceUnavailableError: If every attempt failed.
        """
        while self._state not in _TERMINAL_STATES:
            self.step()
        if self._state is FetchState.EXHAUSTED:
            raise SourceUnavailableError(
                self._source.name,
                self._attempt,
                self._last_error or "unknown error",
                stage_name=self._stage_name,
            )
        return self._destination

    def _attempt_fetch(self) -> FetchState:
        self._attempt += 1
        _LOGGER.info(
            "fetch_attempt_started",
            source=self._source.name,
            url=self._source.repository.url,
            ref=self._source.repository.ref,
            attempt=self._attempt,
            max_attempts=self._max_attempts,
        )
        try:
            _discard_partial_tree(self._destination)
            self._fetcher.fetch(self._source.repository, self._destination)
        except FetchAttemptError as error:
            self._last_error = str(error)
            try:
                _discard_partial_tree(self._destination)
            except FetchAttemptError as cleanup_error:
                self._last_error = f"{self._last_error}; {cleanup_error}"
            if self._attempt >= self._max_attempts:
                _LOGGER.error(
                    "fetch_exhausted",
                    source=self._source.name,
                    attempts=self._attempt,
                    error=self._last_error,
                )
                return FetchState.EXHAUSTED
            _LOGGER.warning(
                "fetch_attempt_failed",
                source=self._source.name,
                attempt=self._attempt,
                retry_in_seconds=self._backoff_seconds,
                error=self._last_error,
            )
            return FetchState.RETRY_WAIT
        _LOGGER.info("fetch_succeeded", source=self._source.name, attempt=self._attempt)
        return FetchState.SUCCEEDED


def _discard_partial_tree(destination: Path) -> None:
    try:
        if destination.is_symlink() or destination.is_file():
            destination.unlink()
        elif destination.exists():
            shutil.rmtree(destination)
    except OSError as error:
        raise FetchAttemptError(f"could not clear partial tree {destination}: {error}") from error
