"""Unit tests for image manifest persistence."""

from __future__ import annotations

import pytest

from core.errors import ProvisioningFailedError
from core.types import ListenerSpec, ProcessIdentity, RuntimeLayout
from provision.image_manifest import build_image_manifest, load_image_manifest, write_image_manifest


def _layout() -> RuntimeLayout:
    return RuntimeLayout(
        root="/usr/local/freeswitch",
        identity=ProcessIdentity(
            user="freeswitch", group="freeswitch", uid=999, gid=999, home="/usr/local/freeswitch"
        ),
        entrypoint=("freeswitch", "-nonat"),
        environment={"LANG": "en_US.utf8"},
        listeners=(
            ListenerSpec(name="sip", protocol="udp", port=5060),
            ListenerSpec(name="event-socket", protocol="tcp", port=8021),
            ListenerSpec(name="rtp", protocol="udp", port=64535, port_end=65535),
        ),
    )


def test_build_image_manifest_renders_listeners() -> None:
    """Listeners should render as port/protocol strings with media ranges."""
    manifest = build_image_manifest("freeswitch", _layout())

    assert manifest.listeners == ("5060/udp", "8021/tcp", "64535-65535/udp")


def test_build_image_manifest_defaults_workdir_to_runtime_root() -> None:
    """Without an explicit workdir the runtime root is used."""
    manifest = build_image_manifest("freeswitch", _layout())

    assert manifest.workdir == "/usr/local/freeswitch"


def test_written_manifest_loads_back(tmp_path) -> None:
    """A written manifest should load into an equal object."""
    manifest = build_image_manifest("freeswitch", _layout())

    loaded = load_image_manifest(write_image_manifest(tmp_path, manifest))

    assert loaded == manifest


def test_load_image_manifest_requires_file(tmp_path) -> None:
    """Loading a missing manifest should point at the build command."""
    with pytest.raises(ProvisioningFailedError, match="kiln build"):
        load_image_manifest(tmp_path / "image.json")


def test_load_image_manifest_rejects_incomplete_payload(tmp_path) -> None:
    """Manifests missing fields should be rejected."""
    manifest_path = tmp_path / "image.json"
    manifest_path.write_text('{"user": "freeswitch"}', encoding="utf-8")

    with pytest.raises(ProvisioningFailedError, match="missing or malformed"):
        load_image_manifest(manifest_path)
