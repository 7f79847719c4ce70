"""Ownership assignment and auditing for runtime paths."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, Protocol

from core.types import ProcessIdentity


class OwnershipApplier(Protocol):
    """Reads and changes path ownership without following symlinks."""

    def chown(self, path: Path, uid: int, gid: int) -> None: ...

    def owner_of(self, path: Path) -> tuple[int, int]: ...


class PosixOwnership:
    """Ownership operations backed by ``os.lchown`` and ``lstat``."""

    def chown(self, path: Path, uid: int, gid: int) -> None:
        """Set owner of *path* itself, never a symlink's target."""
        os.lchown(path, uid, gid)

    def owner_of(self, path: Path) -> tuple[int, int]:
        """Return ``(uid, gid)`` of *path* itself."""
        stat_result = path.lstat()
        return stat_result.st_uid, stat_result.st_gid


def walk_tree(root: Path) -> Iterator[Path]:
    """Yield *root* and everything below it without following symlinks."""
    yield root
    for directory, dir_names, file_names in os.walk(root, followlinks=False):
        base = Path(directory)
        for name in sorted(dir_names) + sorted(file_names):
            yield base / name


def chown_recursive(root: Path, identity: ProcessIdentity, applier: OwnershipApplier) -> int:
    """Assign *identity* to every path under *root*; returns paths changed."""
    changed_count = 0
    for path in walk_tree(root):
        if applier.owner_of(path) != (identity.uid, identity.gid):
            applier.chown(path, identity.uid, identity.gid)
            changed_count += 1
    return changed_count


def find_foreign_owned(
    root: Path,
    identity: ProcessIdentity,
    applier: OwnershipApplier,
) -> list[Path]:
    """Return paths under *root* not owned by *identity*."""
    return [
        path
        for path in walk_tree(root)
        if applier.owner_of(path) != (identity.uid, identity.gid)
    ]
