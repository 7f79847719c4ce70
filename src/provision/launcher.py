"""Entry point launcher for a provisioned runtime image.

The entry point always runs as the image's unprivileged identity. Paths in
the manifest are image-absolute and are resolved under the image root.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from core.constants import DEFAULT_STAGE_PATH
from core.errors import ProvisioningFailedError
from core.logging_config import get_logger
from provision.image_manifest import ImageManifest
from stages.work_tree import WorkTree

_LOGGER = get_logger(__name__)
_MAX_LINK_DEPTH = 40


@dataclass(frozen=True)
class LaunchPlan:
    """Resolved process invocation for an image entry point."""

    argv: tuple[str, ...]
    cwd: Path
    environment: dict[str, str]
    uid: int
    gid: int


def build_launch_plan(manifest: ImageManifest, image_root: Path) -> LaunchPlan:
    """Resolve the manifest entry point against *image_root*.

    A bare executable name is looked up in the image's ``PATH`` directories,
    which come from the manifest environment or the default search path.

    Raises:
        ProvisioningFailedError: If the entry point is empty or not installed.
    """
    if not manifest.entrypoint:
        raise ProvisioningFailedError(
            f"Image manifest for '{manifest.pipeline_name}' declares no entrypoint. "
            "Set runtime.entrypoint in the pipeline file."
        )
    image = WorkTree(manifest.pipeline_name, image_root)
    search_path = manifest.environment.get("PATH", DEFAULT_STAGE_PATH)
    executable = _resolve_executable(image, manifest.entrypoint[0], search_path)
    environment = dict(manifest.environment)
    environment["PATH"] = os.pathsep.join(
        str(image.resolve(entry)) for entry in search_path.split(":") if entry
    )
    environment.setdefault("HOME", str(image.resolve(manifest.workdir)))
    return LaunchPlan(
        argv=(str(executable), *manifest.entrypoint[1:]),
        cwd=image.resolve(manifest.workdir),
        environment=environment,
        uid=manifest.uid,
        gid=manifest.gid,
    )


def launch(manifest: ImageManifest, image_root: Path) -> int:
    """Run the image entry point as the unprivileged identity.

    Returns:
        The process exit status.

    Raises:
        ProvisioningFailedError: If the entry point cannot be resolved or started.
    """
    plan = build_launch_plan(manifest, image_root)
    _LOGGER.info(
        "entrypoint_launching",
        argv=list(plan.argv),
        cwd=str(plan.cwd),
        uid=plan.uid,
        gid=plan.gid,
    )
    try:
        completed = subprocess.run(
            list(plan.argv),
            cwd=plan.cwd,
            env=plan.environment,
            user=plan.uid,
            group=plan.gid,
            extra_groups=[],
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as error:
        raise ProvisioningFailedError(
            f"Failed to start entrypoint {plan.argv[0]} as uid {plan.uid}: {error}."
        ) from error
    _LOGGER.info("entrypoint_exited", exit_status=completed.returncode)
    return completed.returncode


def _resolve_executable(image: WorkTree, name: str, search_path: str) -> Path:
    if "/" in name:
        candidates = [image.resolve(name)]
    else:
        candidates = [image.resolve(entry) / name for entry in search_path.split(":") if entry]
    for candidate in candidates:
        resolved = _follow_image_links(image, candidate)
        if resolved is not None and resolved.is_file() and os.access(resolved, os.X_OK):
            return resolved
    raise ProvisioningFailedError(
        f"Entrypoint '{name}' is not an executable inside image {image.root}. "
        "Check runtime.links and runtime.entrypoint."
    )


def _follow_image_links(image: WorkTree, path: Path) -> Path | None:
    """Follow symlinks treating absolute targets as image-absolute."""
    for _ in range(_MAX_LINK_DEPTH):
        if not path.is_symlink():
            return path
        target = os.readlink(path)
        path = image.resolve(target) if target.startswith("/") else path.parent / target
    return None
