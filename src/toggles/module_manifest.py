"""Module manifest parsing and toggle rewriting.

A module manifest is line oriented: one ``category/module`` component per
line, disabled lines carrying a leading comment marker. Rewrites match
entries by pattern, so applying the same toggle table twice leaves the
manifest exactly as one application did.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

import yaml

from core.constants import MODULE_COMMENT_MARKER
from core.errors import ModuleToggleError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)
_ENTRY_PATTERN = re.compile(r"^(?P<marker>#\s*)?(?P<name>(?:[\w.+-]+/)+[\w.+-]+)\s*$")


@dataclass(frozen=True)
class ManifestLine:
    """One manifest line.

    Attributes:
        text: Line text without newline.
        component: Component name when the line is an entry, else None.
        active: Whether the entry is enabled.
    """

    text: str
    component: str | None = None
    active: bool = False


@dataclass(frozen=True)
class ToggleReport:
    """Summary of one toggle application."""

    disabled: tuple[str, ...]
    enabled: tuple[str, ...]
    unmatched_keys: tuple[str, ...]
    unchanged_count: int


@dataclass(frozen=True)
class ModuleManifest:
    """Ordered manifest lines, entries and free text alike."""

    lines: tuple[ManifestLine, ...]
    trailing_newline: bool = True

    @classmethod
    def parse(cls, text: str) -> "ModuleManifest":
        """Parse manifest text, keeping non-entry lines verbatim."""
        rows = text.splitlines()
        return cls(
            lines=tuple(_parse_line(row) for row in rows),
            trailing_newline=text.endswith("\n") or not rows,
        )

    def render(self) -> str:
        """Render the manifest back to text."""
        body = "\n".join(line.text for line in self.lines)
        return body + "\n" if self.trailing_newline and self.lines else body

    def entries(self) -> tuple[ManifestLine, ...]:
        """Entry lines in manifest order."""
        return tuple(line for line in self.lines if line.component is not None)

    def is_active(self, component: str) -> bool:
        """Return whether *component* has an active entry."""
        return any(line.active for line in self.entries() if line.component == component)


def apply_toggles(
    manifest: ModuleManifest,
    table: Mapping[str, bool],
) -> tuple[ModuleManifest, ToggleReport]:
    """Rewrite entries named in *table* to their commented or active form.

    A table key matches an entry by full component name, or by module
    basename when the key contains no ``/``. Entries not named in the table
    are left as the manifest encodes them.

    Args:
        manifest: Parsed module manifest.
        table: Component name to desired enabled state.

    Returns:
        Rewritten manifest and a report of changed entries.
    """
    disabled: list[str] = []
    enabled: list[str] = []
    matched_keys: set[str] = set()
    unchanged_count = 0
    rewritten: list[ManifestLine] = []
    for line in manifest.lines:
        if line.component is None:
            rewritten.append(line)
            continue
        key = _match_key(line.component, table)
        if key is None:
            unchanged_count += 1
            rewritten.append(line)
            continue
        matched_keys.add(key)
        desired_active = table[key]
        if desired_active == line.active:
            unchanged_count += 1
            rewritten.append(line)
        elif desired_active:
            enabled.append(line.component)
            rewritten.append(replace(line, text=line.component, active=True))
        else:
            disabled.append(line.component)
            rewritten.append(
                replace(line, text=f"{MODULE_COMMENT_MARKER}{line.component}", active=False)
            )
    report = ToggleReport(
        disabled=tuple(disabled),
        enabled=tuple(enabled),
        unmatched_keys=tuple(key for key in table if key not in matched_keys),
        unchanged_count=unchanged_count,
    )
    return replace(manifest, lines=tuple(rewritten)), report


def toggle_manifest_file(manifest_path: Path, table: Mapping[str, bool]) -> ToggleReport:
    """Apply *table* to the manifest file at *manifest_path* in place.

    Args:
        manifest_path: Module manifest file.
        table: Component name to desired enabled state.

    Returns:
        Report of changed entries.

    Raises:
        ModuleToggleError: If the manifest cannot be read or written.
    """
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except OSError as error:
        raise ModuleToggleError(
            f"Failed to read module manifest at {manifest_path}: {error}. "
            "Make sure the step that generates it runs before the toggle step."
        ) from error
    manifest, report = apply_toggles(ModuleManifest.parse(text), table)
    try:
        manifest_path.write_text(manifest.render(), encoding="utf-8")
    except OSError as error:
        raise ModuleToggleError(
            f"Failed to rewrite module manifest at {manifest_path}: {error}."
        ) from error
    _LOGGER.info(
        "modules_toggled",
        manifest_path=str(manifest_path),
        disabled=list(report.disabled),
        enabled=list(report.enabled),
        unchanged_count=report.unchanged_count,
    )
    if report.unmatched_keys:
        _LOGGER.warning(
            "toggle_keys_unmatched",
            manifest_path=str(manifest_path),
            keys=list(report.unmatched_keys),
        )
    return report


def parse_toggle_table(payload: object, context: str) -> dict[str, bool]:
    """Validate a component-name to boolean mapping.

    Raises:
        ModuleToggleError: If keys are not strings or values not booleans.
    """
    if not isinstance(payload, Mapping):
        raise ModuleToggleError(
            f"Invalid {context}: expected mapping of component name to true/false."
        )
    table: dict[str, bool] = {}
    for key, value in payload.items():
        if not isinstance(key, str) or not key.strip():
            raise ModuleToggleError(f"Invalid {context}: component names must be strings.")
        if not isinstance(value, bool):
            raise ModuleToggleError(
                f"Invalid {context}: component '{key}' must map to true or false."
            )
        table[key.strip()] = value
    return table


def load_toggle_table(table_path: Path) -> dict[str, bool]:
    """Load a YAML toggle table file.

    Raises:
        ModuleToggleError: If the file is missing or malformed.
    """
    try:
        payload = yaml.safe_load(table_path.read_text(encoding="utf-8"))
    except OSError as error:
        raise ModuleToggleError(
            f"Failed to read toggle table at {table_path}: {error}."
        ) from error
    except yaml.YAMLError as error:
        raise ModuleToggleError(
            f"Failed to parse toggle table at {table_path}: {error}. Fix YAML syntax and retry."
        ) from error
    if payload is None:
        return {}
    return parse_toggle_table(payload, f"toggle table {table_path}")


def _parse_line(text: str) -> ManifestLine:
    match = _ENTRY_PATTERN.match(text.strip())
    if match is None:
        return ManifestLine(text=text)
    return ManifestLine(
        text=text,
        component=match.group("name"),
        active=match.group("marker") is None,
    )


def _match_key(component: str, table: Mapping[str, bool]) -> str | None:
    if component in table:
        return component
    basename = component.rsplit("/", 1)[-1]
    if basename in table:
        return basename
    return None
