"""Kiln CLI entry points.

This module exposes build, plan, module toggle, provisioning, and launch
commands. It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from cli.provision_command import (
    add_launch_command,
    add_provision_command,
    run_launch_command,
    run_provision_command,
)
from cli.toggle_command import add_toggle_modules_command, run_toggle_modules_command
from core.config import KilnConfig
from core.errors import KilnError
from core.pipeline_spec import load_pipeline_spec
from core.types import StageOutcome
from stages.pipeline_runner import build_image
from stages.stage_graph import StageGraph


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="kiln", description="Kiln multi-stage build CLI")
    parser.add_argument("--build-root", help="Override KILN_BUILD_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_build_command(subparsers)
    _add_plan_command(subparsers)
    add_toggle_modules_command(subparsers)
    add_provision_command(subparsers)
    add_launch_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Kiln CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = _build_config(args.build_root)
        if args.command == "build":
            return _run_build_command(config, args)
        if args.command == "plan":
            return _run_plan_command(args)
        if args.command == "toggle-modules":
            return run_toggle_modules_command(args)
        if args.command == "provision":
            return run_provision_command(config, args)
        if args.command == "launch":
            return run_launch_command(args)
    except KilnError as error:
        _print_outcomes(error.outcomes)
        print(f"error={error}")
        return 1
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_config(build_root: str | None) -> KilnConfig:
    """Build config with optional build-root override.

    Args:
        build_root: Optional override path.

    Returns:
        Validated config.
    """
    config = KilnConfig.from_env()
    if build_root:
        config = replace(config, build_root=Path(build_root).expanduser().resolve())
    return config


def _run_build_command(config: KilnConfig, args: argparse.Namespace) -> int:
    """Handle build command.

    Args:
        config: Runtime configuration.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    if args.jobs is not None:
        config = replace(config, jobs=args.jobs)
    if args.overwrite_runtime_config:
        config = replace(config, overwrite_runtime_config=True)
    spec = load_pipeline_spec(args.spec_file)
    result = build_image(spec, config)
    _print_outcomes(result.outcomes)
    print(f"image_root={result.image_root}")
    if result.image_manifest_path is not None:
        print(f"image_manifest={result.image_manifest_path}")
    return 0


def _print_outcomes(outcomes: Sequence[StageOutcome]) -> None:
    for outcome in outcomes:
        print(f"stage={outcome.stage_name}\t{outcome.status}")


def _run_plan_command(args: argparse.Namespace) -> int:
    """Print execution batches, one line per batch."""
    spec = load_pipeline_spec(args.spec_file)
    for batch_index, batch in enumerate(StageGraph.from_spec(spec).batch_names(), start=1):
        print(f"batch {batch_index}: {' '.join(batch)}")
    return 0


def _add_build_command(subparsers: Any) -> None:
    """Register build subcommand."""
    parser = subparsers.add_parser("build", help="Build every stage and provision the image")
    parser.add_argument("spec_file", help="Path to YAML pipeline file")
    parser.add_argument("--jobs", type=_positive_int, help="Override KILN_JOBS for this build")
    parser.add_argument(
        "--overwrite-runtime-config",
        action="store_true",
        help="Regenerate the runtime config file even when it exists",
    )


def _add_plan_command(subparsers: Any) -> None:
    """Register plan subcommand."""
    parser = subparsers.add_parser("plan", help="Validate a pipeline and print stage batches")
    parser.add_argument("spec_file", help="Path to YAML pipeline file")


def _positive_int(raw_value: str) -> int:
    value = int(raw_value)
    if value < 1:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return value
