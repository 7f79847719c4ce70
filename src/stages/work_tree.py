"""Capability-scoped stage work tree handle.

Each stage executor receives its own ``WorkTree`` explicitly. Every path a
stage touches is resolved through the handle, which refuses to leave the
tree root.
"""

from __future__ import annotations

import shutil
from pathlib import Path


class WorkTreeEscapeError(ValueError):
    """Raised when a relative path resolves outside its work tree."""


class WorkTree:
    """Exclusive working directory of one stage."""

    def __init__(self, stage_name: str, root: Path) -> None:
        self._stage_name = stage_name
        self._root = root.resolve()

    @classmethod
    def create(cls, stage_name: str, stages_root: Path) -> "WorkTree":
        """Create a fresh, empty tree for *stage_name*, discarding leftovers.

        Raises:
            WorkTreeEscapeError: If the name is not a single path component.
        """
        if not stage_name or "/" in stage_name or stage_name in (".", ".."):
            raise WorkTreeEscapeError(
                f"Stage name '{stage_name}' cannot name a directory under {stages_root}."
            )
        root = stages_root / stage_name
        if root.exists() or root.is_symlink():
            shutil.rmtree(root)
        root.mkdir(parents=True)
        return cls(stage_name, root)

    @property
    def stage_name(self) -> str:
        """Owning stage name."""
        return self._stage_name

    @property
    def root(self) -> Path:
        """Absolute tree root."""
        return self._root

    def resolve(self, tree_path: str) -> Path:
        """Resolve a tree path such as ``/usr/lib`` or ``usr/lib`` under the root.

        Symlinks are not followed, so a link inside the tree may point
        anywhere without widening what the handle grants.

        Raises:
            WorkTreeEscapeError: If the path climbs out of the tree.
        """
        parts = [part for part in tree_path.strip().split("/") if part not in ("", ".")]
        if ".." in parts:
            raise WorkTreeEscapeError(
                f"Path '{tree_path}' escapes the work tree of stage '{self._stage_name}'."
            )
        return self._root.joinpath(*parts)

    def relative(self, path: Path) -> str:
        """Render an absolute path inside the tree as an image-absolute path."""
        return "/" + path.relative_to(self._root).as_posix()

    def exists(self) -> bool:
        """Return whether the tree root still exists."""
        return self._root.is_dir()

    def discard(self) -> None:
        """Delete the tree; safe to call more than once."""
        shutil.rmtree(self._root, ignore_errors=True)
