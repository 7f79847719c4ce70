"""Shared typed models.

This module defines immutable data models used by the pipeline loader,
stage scheduler, artifact importer, and runtime provisioner to keep
interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Mapping

from core.constants import DEFAULT_DIRECTORY_MODE, DEFAULT_IDENTITY_SHELL

ListenerProtocol = Literal["tcp", "udp"]
StageStatus = Literal["succeeded", "failed", "cancelled"]


@dataclass(frozen=True)
class RepositoryRef:
    """Remote repository reference for a source fetch.

    Attributes:
        url: Clone URL.
        ref: Branch or tag to check out; remote default when omitted.
        shallow: Fetch a single-commit history.
    """

    url: str
    ref: str | None = None
    shallow: bool = True


@dataclass(frozen=True)
class SourceSpec:
    """A named source tree fetched into a stage work tree.

    Attributes:
        name: Source identifier used in logs and errors.
        repository: Remote repository reference.
        path: Destination relative to the fetching stage's tree.
        max_attempts: Attempt budget; the configured default when None.
        backoff_seconds: Fixed wait between attempts; the configured default when None.
    """

    name: str
    repository: RepositoryRef
    path: str
    max_attempts: int | None = None
    backoff_seconds: float | None = None


@dataclass(frozen=True)
class BuildCommand:
    """One opaque build command inside a stage.

    Attributes:
        step: Step name reported on failure, e.g. ``configure``.
        run: Shell command line.
        cwd: Working directory relative to the stage tree.
    """

    step: str
    run: str
    cwd: str | None = None


@dataclass(frozen=True)
class ArtifactMapping:
    """Copy of one producer path into a consumer tree.

    Attributes:
        source: Path or glob inside the producer tree.
        destination: Path inside the consumer tree; a trailing ``/`` marks a directory.
    """

    source: str
    destination: str


@dataclass(frozen=True)
class ModuleToggleSpec:
    """Module manifest rewrite applied before one stage step.

    Attributes:
        manifest_path: Manifest path relative to the stage tree.
        before_step: Step name the rewrite must precede.
        table: Component name to enabled state.
    """

    manifest_path: str
    before_step: str
    table: Mapping[str, bool]


@dataclass(frozen=True)
class StageSpec:
    """Immutable stage definition from the pipeline file."""

    name: str
    base_environment: str
    commands: tuple[BuildCommand, ...] = ()
    outputs: tuple[str, ...] = ()
    sources: tuple[SourceSpec, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    toggles: ModuleToggleSpec | None = None


@dataclass(frozen=True)
class DependencyEdge:
    """Producer to consumer artifact channel, applied in declaration order."""

    producer: str
    consumer: str
    artifacts: tuple[ArtifactMapping, ...]


@dataclass(frozen=True)
class ProcessIdentity:
    """Unprivileged identity that owns runtime paths and runs the process."""

    user: str
    group: str
    uid: int
    gid: int
    home: str
    shell: str = DEFAULT_IDENTITY_SHELL


@dataclass(frozen=True)
class DirectorySpec:
    """Required runtime directory relative to the runtime root."""

    path: str
    mode: int = DEFAULT_DIRECTORY_MODE


@dataclass(frozen=True)
class EntryLink:
    """Symbolic link making an installed executable reachable.

    Attributes:
        link: Link location inside the image.
        target: Image-absolute path the link points to.
    """

    link: str
    target: str


@dataclass(frozen=True)
class ListenerSpec:
    """Declared network surface of the runtime process."""

    name: str
    protocol: ListenerProtocol
    port: int
    port_end: int | None = None

    def render(self) -> str:
        """Render as ``port/proto`` or ``start-end/proto``."""
        if self.port_end is None or self.port_end == self.port:
            return f"{self.port}/{self.protocol}"
        return f"{self.port}-{self.port_end}/{self.protocol}"


@dataclass(frozen=True)
class RuntimeConfigSpec:
    """Generated runtime configuration file.

    Attributes:
        path: File path relative to the runtime root.
        template: ``string.Template`` text with ``$name`` placeholders.
        parameters: Literal parameter values.
        secret_parameters: Parameter name to environment variable holding the value.
    """

    path: str
    template: str
    parameters: Mapping[str, str] = field(default_factory=dict)
    secret_parameters: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RuntimeLayout:
    """Final runtime image layout applied by the provisioner."""

    root: str
    identity: ProcessIdentity
    directories: tuple[DirectorySpec, ...] = ()
    config_file: RuntimeConfigSpec | None = None
    links: tuple[EntryLink, ...] = ()
    entrypoint: tuple[str, ...] = ()
    workdir: str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)
    listeners: tuple[ListenerSpec, ...] = ()


@dataclass(frozen=True)
class PipelineSpec:
    """Validated pipeline definition root object."""

    version: int
    name: str
    stages: tuple[StageSpec, ...]
    edges: tuple[DependencyEdge, ...]
    final_stage: str
    runtime: RuntimeLayout | None = None

    def stage(self, name: str) -> StageSpec:
        """Return the stage named *name*."""
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)


@dataclass(frozen=True)
class StageOutcome:
    """Completion signal of one stage.

    Attributes:
        stage_name: Stage identifier.
        status: Terminal stage status.
        work_tree: Tree root on success.
        error: Failure description when failed.
    """

    stage_name: str
    status: StageStatus
    work_tree: Path | None = None
    error: str | None = None


@dataclass(frozen=True)
class PipelineResult:
    """Result of a completed pipeline run."""

    image_root: Path
    image_manifest_path: Path | None
    outcomes: tuple[StageOutcome, ...]
