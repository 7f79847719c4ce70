"""Module toggle command wiring for Kiln CLI."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

from toggles.module_manifest import load_toggle_table, toggle_manifest_file


def add_toggle_modules_command(subparsers: Any) -> None:
    """Register toggle-modules subcommand."""
    parser = subparsers.add_parser(
        "toggle-modules",
        help="Rewrite a module manifest from a toggle table",
    )
    parser.add_argument("manifest", help="Path to the module manifest, e.g. modules.conf")
    parser.add_argument(
        "--table",
        required=True,
        help="YAML file mapping component names to true/false",
    )


def run_toggle_modules_command(args: argparse.Namespace) -> int:
    """Apply a toggle table to one manifest file and print the changes."""
    table = load_toggle_table(Path(args.table).expanduser())
    report = toggle_manifest_file(Path(args.manifest).expanduser(), table)
    for component in report.disabled:
        print(f"disabled={component}")
    for component in report.enabled:
        print(f"enabled={component}")
    for key in report.unmatched_keys:
        print(f"unmatched={key}")
    print(f"unchanged={report.unchanged_count}")
    return 0
