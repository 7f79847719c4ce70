"""Unit tests for capability-scoped work trees."""

from __future__ import annotations

import pytest

from stages.work_tree import WorkTree, WorkTreeEscapeError


def test_create_discards_leftovers(tmp_path) -> None:
    """A new tree should not inherit files from a previous run."""
    stale = tmp_path / "build" / "stale.txt"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", encoding="utf-8")

    tree = WorkTree.create("build", tmp_path)

    assert tree.exists() and list(tree.root.iterdir()) == []


def test_resolve_maps_image_paths_under_root(tmp_path) -> None:
    """Leading slashes should resolve inside the tree, not the host root."""
    tree = WorkTree.create("build", tmp_path)

    assert tree.resolve("/usr/lib") == tree.root / "usr" / "lib"


def test_resolve_rejects_parent_segments(tmp_path) -> None:
    """Paths climbing out of the tree should be refused."""
    tree = WorkTree.create("build", tmp_path)

    with pytest.raises(WorkTreeEscapeError):
        tree.resolve("usr/../../etc/passwd")


def test_relative_renders_image_absolute_path(tmp_path) -> None:
    """Paths inside the tree should render with a leading slash."""
    tree = WorkTree.create("build", tmp_path)

    assert tree.relative(tree.root / "usr" / "bin") == "/usr/bin"


def test_discard_is_repeatable(tmp_path) -> None:
    """Discarding twice should not raise."""
    tree = WorkTree.create("build", tmp_path)

    tree.discard()
    tree.discard()

    assert not tree.exists()


@pytest.mark.parametrize("stage_name", ["..", "../victim", "a/b", ""])
def test_create_refuses_names_outside_stages_root(tmp_path, stage_name: str) -> None:
    """Stage names that are not one path component should never be removed or created."""
    victim = tmp_path / "victim" / "keep.txt"
    victim.parent.mkdir()
    victim.write_text("operator data", encoding="utf-8")
    stages_root = tmp_path / "stages"
    stages_root.mkdir()

    with pytest.raises(WorkTreeEscapeError):
        WorkTree.create(stage_name, stages_root)

    assert victim.read_text(encoding="utf-8") == "operator data"
