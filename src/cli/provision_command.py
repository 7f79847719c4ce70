"""Provision and launch command wiring for Kiln CLI.

Both commands act on an image tree that a previous ``kiln build`` left
in place, so provisioning can be repeated and the entry point started
without rebuilding any stage.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

from core.config import KilnConfig
from core.errors import PipelineSpecError
from core.pipeline_spec import load_pipeline_spec
from provision.image_manifest import build_image_manifest, load_image_manifest, write_image_manifest
from provision.launcher import launch
from provision.provisioner import RuntimeProvisioner
from stages.work_tree import WorkTree


def add_provision_command(subparsers: Any) -> None:
    """Register provision subcommand."""
    parser = subparsers.add_parser(
        "provision",
        help="Re-run runtime provisioning on an existing image tree",
    )
    parser.add_argument("spec_file", help="Path to YAML pipeline file")
    parser.add_argument("image_root", help="Final stage tree to provision")
    parser.add_argument(
        "--overwrite-runtime-config",
        action="store_true",
        help="Regenerate the runtime config file even when it exists",
    )


def add_launch_command(subparsers: Any) -> None:
    """Register launch subcommand."""
    parser = subparsers.add_parser(
        "launch",
        help="Run the image entry point as the unprivileged runtime user",
    )
    parser.add_argument("image_manifest", help="Path to image.json written by build")
    parser.add_argument("image_root", help="Provisioned image tree")


def run_provision_command(config: KilnConfig, args: argparse.Namespace) -> int:
    """Provision an image tree and refresh its manifest."""
    spec = load_pipeline_spec(args.spec_file)
    if spec.runtime is None:
        raise PipelineSpecError(
            f"Pipeline '{spec.name}' declares no runtime layout. Add a 'runtime' section."
        )
    image_root = Path(args.image_root).expanduser().resolve()
    provisioner = RuntimeProvisioner(
        spec.runtime,
        overwrite_config=config.overwrite_runtime_config or args.overwrite_runtime_config,
    )
    report = provisioner.provision(WorkTree(spec.final_stage, image_root))
    manifest_path = write_image_manifest(
        config.build_root, build_image_manifest(spec.name, spec.runtime)
    )
    print(f"created_directories={len(report.created_directories)}")
    print(f"config_written={str(report.config_written).lower()}")
    print(f"links_created={len(report.links_created)}")
    print(f"ownership_changes={report.ownership_changes}")
    print(f"image_manifest={manifest_path}")
    return 0


def run_launch_command(args: argparse.Namespace) -> int:
    """Run the image entry point and return its exit status."""
    manifest = load_image_manifest(Path(args.image_manifest).expanduser())
    return launch(manifest, Path(args.image_root).expanduser().resolve())
