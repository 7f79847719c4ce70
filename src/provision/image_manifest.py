"""Persistence of the runtime image manifest.

The manifest records how the provisioned image is meant to be started:
identity, working directory, entry point argv, environment, and the
declared network listeners.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

from core.constants import IMAGE_MANIFEST_FILE_NAME
from core.errors import ProvisioningFailedError
from core.types import RuntimeLayout


@dataclass(frozen=True)
class ImageManifest:
    """Launch description of a provisioned runtime image."""

    pipeline_name: str
    user: str
    group: str
    uid: int
    gid: int
    workdir: str
    entrypoint: tuple[str, ...]
    environment: dict[str, str]
    listeners: tuple[str, ...]

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible mapping."""
        return {
            "pipeline_name": self.pipeline_name,
            "user": self.user,
            "group": self.group,
            "uid": self.uid,
            "gid": self.gid,
            "workdir": self.workdir,
            "entrypoint": list(self.entrypoint),
            "environment": dict(self.environment),
            "listeners": list(self.listeners),
        }


def build_image_manifest(pipeline_name: str, layout: RuntimeLayout) -> ImageManifest:
    """Build the manifest for *layout*."""
    return ImageManifest(
        pipeline_name=pipeline_name,
        user=layout.identity.user,
        group=layout.identity.group,
        uid=layout.identity.uid,
        gid=layout.identity.gid,
        workdir=layout.workdir or layout.root,
        entrypoint=layout.entrypoint,
        environment=dict(layout.environment),
        listeners=tuple(listener.render() for listener in layout.listeners),
    )


def write_image_manifest(build_root: Path, manifest: ImageManifest) -> Path:
    """Write ``image.json`` under *build_root* and return its path."""
    build_root.mkdir(parents=True, exist_ok=True)
    manifest_path = build_root / IMAGE_MANIFEST_FILE_NAME
    manifest_path.write_text(
        json.dumps(manifest.to_payload(), indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return manifest_path


def load_image_manifest(manifest_path: Path) -> ImageManifest:
    """Load a manifest written by ``write_image_manifest``.

    Raises:
        ProvisioningFailedError: If the file is missing or malformed.
    """
    if not manifest_path.exists():
        raise ProvisioningFailedError(
            f"Image manifest not found at {manifest_path}. Run 'kiln build' first."
        )
    try:
        payload = json.loads(manifest_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as error:
        raise ProvisioningFailedError(
            f"Invalid image manifest at {manifest_path}: {error.msg}."
        ) from error
    if not isinstance(payload, dict):
        raise ProvisioningFailedError(
            f"Invalid image manifest at {manifest_path}: expected JSON object."
        )
    payload = cast(dict[str, Any], payload)
    try:
        return ImageManifest(
            pipeline_name=str(payload["pipeline_name"]),
            user=str(payload["user"]),
            group=str(payload["group"]),
            uid=int(payload["uid"]),
            gid=int(payload["gid"]),
            workdir=str(payload["workdir"]),
            entrypoint=tuple(str(value) for value in payload["entrypoint"]),
            environment={str(key): str(value) for key, value in payload["environment"].items()},
            listeners=tuple(str(value) for value in payload["listeners"]),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as error:
        raise ProvisioningFailedError(
            f"Invalid image manifest at {manifest_path}: missing or malformed field {error}."
        ) from error
