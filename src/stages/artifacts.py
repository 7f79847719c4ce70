"""Artifact export and import between stage work trees.

Copying declared artifacts is the only channel between stages. Every
mapping of an edge is resolved before anything is copied, so a missing
artifact never leaves a half-imported edge behind. Mappings are then
applied in declaration order and a later mapping overwrites whatever an
earlier one placed at the same path.
"""

from __future__ import annotations

import glob
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from core.errors import ArtifactCopyError, ArtifactNotFoundError
from core.logging_config import get_logger
from core.types import ArtifactMapping, DependencyEdge
from stages.work_tree import WorkTree

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedArtifact:
    """Artifact mapping expanded against the producer tree.

    Attributes:
        mapping: Declared mapping.
        matches: Existing producer paths, sorted.
        into_directory: Copy each match into the destination by basename.
    """

    mapping: ArtifactMapping
    matches: tuple[Path, ...]
    into_directory: bool


def resolve_export(
    edge: DependencyEdge,
    mapping: ArtifactMapping,
    producer_tree: WorkTree,
) -> ResolvedArtifact:
    """Expand one mapping's source inside the producer tree.

    Args:
        edge: Edge the mapping belongs to, used for error context.
        mapping: Declared artifact mapping.
        producer_tree: Completed producer work tree.

    Returns:
        Resolved artifact with at least one match.

    Raises:
        ArtifactNotFoundError: If the source path or pattern matches nothing.
    """
    is_pattern = glob.has_magic(mapping.source)
    if is_pattern:
        pattern = mapping.source.strip().lstrip("/")
        matches = tuple(sorted(producer_tree.root.glob(pattern)))
    else:
        path = producer_tree.resolve(mapping.source)
        matches = (path,) if path.exists() or path.is_symlink() else ()
    if not matches:
        raise ArtifactNotFoundError(edge.producer, edge.consumer, mapping.source)
    return ResolvedArtifact(
        mapping=mapping,
        matches=matches,
        into_directory=is_pattern or mapping.destination.endswith("/"),
    )


def import_edge(edge: DependencyEdge, producer_tree: WorkTree, consumer_tree: WorkTree) -> int:
    """Copy every artifact of *edge* into the consumer tree.

    Args:
        edge: Dependency edge with ordered artifact mappings.
        producer_tree: Completed producer work tree.
        consumer_tree: Consumer work tree being prepared.

    Returns:
        Number of top-level paths copied.

    Raises:
        ArtifactNotFoundError: If any declared source is missing; nothing is copied.
        ArtifactCopyError: If the filesystem rejects a copy.
    """
    resolved_artifacts = [
        resolve_export(edge, mapping, producer_tree) for mapping in edge.artifacts
    ]
    copied_count = 0
    for resolved in resolved_artifacts:
        copied_count += _import_artifact(edge, resolved, producer_tree, consumer_tree)
    return copied_count


def _import_artifact(
    edge: DependencyEdge,
    resolved: ResolvedArtifact,
    producer_tree: WorkTree,
    consumer_tree: WorkTree,
) -> int:
    destination = consumer_tree.resolve(resolved.mapping.destination)
    overlay = False
    for match in resolved.matches:
        target = destination / match.name if resolved.into_directory else destination
        overlay = overlay or target.exists() or target.is_symlink()
        try:
            _copy_path(match, target)
        except OSError as error:
            raise ArtifactCopyError(
                f"Failed to copy '{producer_tree.relative(match)}' from stage '{edge.producer}' "
                f"to '{consumer_tree.relative(target)}' in stage '{edge.consumer}': {error}."
            ) from error
    _LOGGER.info(
        "artifact_imported",
        producer=edge.producer,
        consumer=edge.consumer,
        source=resolved.mapping.source,
        destination=resolved.mapping.destination,
        match_count=len(resolved.matches),
        overlay=overlay,
    )
    return len(resolved.matches)


def _copy_path(source: Path, target: Path) -> None:
    """Copy file, symlink, or directory *source* to *target*, last write wins."""
    target.parent.mkdir(parents=True, exist_ok=True)
    if source.is_symlink():
        _remove_path(target)
        os.symlink(os.readlink(source), target)
    elif source.is_dir():
        if target.is_symlink() or (target.exists() and not target.is_dir()):
            target.unlink()
        target.mkdir(exist_ok=True)
        for child in sorted(source.iterdir()):
            _copy_path(child, target / child.name)
        shutil.copystat(source, target)
    else:
        _remove_path(target)
        shutil.copy2(source, target)


def _remove_path(target: Path) -> None:
    if target.is_symlink() or target.is_file():
        target.unlink()
    elif target.is_dir():
        shutil.rmtree(target)
