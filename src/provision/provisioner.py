"""Runtime provisioning of the final stage tree.

Provisioning is idempotent: running it again on an already provisioned
tree creates nothing new and leaves ownership, modes, and file contents
as the first run left them. An existing runtime configuration file is
kept unless regeneration is requested, so operator edits survive.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Mapping

from core.errors import ProvisioningFailedError
from core.logging_config import get_logger
from core.types import EntryLink, RuntimeConfigSpec, RuntimeLayout
from provision.identity import ensure_identity_records
from provision.ownership import (
    OwnershipApplier,
    PosixOwnership,
    chown_recursive,
    find_foreign_owned,
)
from stages.work_tree import WorkTree

_LOGGER = get_logger(__name__)
_CONFIG_FILE_MODE = 0o640


@dataclass(frozen=True)
class ProvisionReport:
    """Changes made by one provisioning run."""

    created_directories: tuple[str, ...]
    config_written: bool
    links_created: tuple[str, ...]
    ownership_changes: int


class RuntimeProvisioner:
    """Apply a runtime layout to the final stage tree."""

    def __init__(
        self,
        layout: RuntimeLayout,
        overwrite_config: bool = False,
        ownership: OwnershipApplier | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._layout = layout
        self._overwrite_config = overwrite_config
        self._ownership = ownership or PosixOwnership()
        self._environ = os.environ if environ is None else environ

    def provision(self, tree: WorkTree) -> ProvisionReport:
        """Provision *tree* in place.

        Args:
            tree: Final stage tree holding installed binaries.

        Returns:
            Report of the changes made.

        Raises:
            ProvisioningFailedError: If any provisioning step fails.
        """
        runtime_root = tree.resolve(self._layout.root)
        if not runtime_root.is_dir():
            raise ProvisioningFailedError(
                f"Runtime root {self._layout.root} does not exist in stage "
                f"'{tree.stage_name}'. Check that the install step populates it."
            )
        try:
            ensure_identity_records(tree, self._layout.identity)
            created_directories = self._ensure_directories(tree, runtime_root)
            config_written = self._write_config(runtime_root)
            links_created = tuple(
                link.link for link in self._layout.links if _ensure_link(tree, link)
            )
            ownership_changes = chown_recursive(
                runtime_root, self._layout.identity, self._ownership
            )
        except OSError as error:
            raise ProvisioningFailedError(
                f"Failed to provision runtime image in stage '{tree.stage_name}': {error}."
            ) from error
        self._audit_ownership(tree, runtime_root)
        report = ProvisionReport(
            created_directories=created_directories,
            config_written=config_written,
            links_created=links_created,
            ownership_changes=ownership_changes,
        )
        _LOGGER.info(
            "runtime_provisioned",
            stage_name=tree.stage_name,
            runtime_root=self._layout.root,
            user=self._layout.identity.user,
            created_directories=list(report.created_directories),
            config_written=report.config_written,
            links_created=list(report.links_created),
            ownership_changes=report.ownership_changes,
        )
        return report

    def _ensure_directories(self, tree: WorkTree, runtime_root: Path) -> tuple[str, ...]:
        created: list[str] = []
        for directory in self._layout.directories:
            path = runtime_root.joinpath(*tree_parts(directory.path))
            if not path.is_dir():
                path.mkdir(parents=True, exist_ok=True)
                created.append(tree.relative(path))
            path.chmod(directory.mode)
        return tuple(created)

    def _write_config(self, runtime_root: Path) -> bool:
        config_spec = self._layout.config_file
        if config_spec is None:
            return False
        config_path = runtime_root.joinpath(*tree_parts(config_spec.path))
        existed = config_path.exists()
        if existed and not self._overwrite_config:
            _LOGGER.info("runtime_config_preserved", config_path=str(config_path))
            return False
        content = render_runtime_config(config_spec, self._environ)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(content, encoding="utf-8")
        config_path.chmod(_CONFIG_FILE_MODE)
        _LOGGER.info("runtime_config_written", config_path=str(config_path), overwritten=existed)
        return True

    def _audit_ownership(self, tree: WorkTree, runtime_root: Path) -> None:
        foreign_paths = find_foreign_owned(runtime_root, self._layout.identity, self._ownership)
        if foreign_paths:
            sample = ", ".join(tree.relative(path) for path in foreign_paths[:5])
            raise ProvisioningFailedError(
                f"{len(foreign_paths)} runtime path(s) are not owned by "
                f"'{self._layout.identity.user}' after provisioning: {sample}."
            )


def render_runtime_config(config_spec: RuntimeConfigSpec, environ: Mapping[str, str]) -> str:
    """Substitute named parameters into the runtime config template.

    Secret parameters are read from the environment variables they name so
    credentials never live in the pipeline file.

    Raises:
        ProvisioningFailedError: If a secret is unset or a placeholder has no value.
    """
    values = dict(config_spec.parameters)
    for name, variable in config_spec.secret_parameters.items():
        secret = environ.get(variable)
        if not secret:
            raise ProvisioningFailedError(
                f"Runtime config parameter '{name}' reads environment variable "
                f"{variable}, which is not set. Export {variable} and rerun provisioning."
            )
        values[name] = secret
    try:
        return Template(config_spec.template).substitute(values)
    except KeyError as error:
        raise ProvisioningFailedError(
            f"Runtime config template for {config_spec.path} uses parameter {error} "
            "with no value. Add it to 'parameters' or 'secret_parameters'."
        ) from error
    except ValueError as error:
        raise ProvisioningFailedError(
            f"Runtime config template for {config_spec.path} is malformed: {error}."
        ) from error


def tree_parts(relative_path: str) -> list[str]:
    """Split a relative layout path into components."""
    return [part for part in relative_path.split("/") if part not in ("", ".")]


def _ensure_link(tree: WorkTree, entry: EntryLink) -> bool:
    """Create or repoint one entry link; returns True when it changed."""
    link_path = tree.resolve(entry.link)
    target_path = tree.resolve(entry.target)
    if not (target_path.exists() or target_path.is_symlink()):
        raise ProvisioningFailedError(
            f"Entry link {entry.link} points to {entry.target}, which is not installed "
            f"in stage '{tree.stage_name}'."
        )
    if link_path.is_symlink():
        if os.readlink(link_path) == entry.target:
            return False
        link_path.unlink()
    elif link_path.exists():
        raise ProvisioningFailedError(
            f"Cannot create entry link {entry.link}: a non-link file already exists there."
        )
    link_path.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(entry.target, link_path)
    return True
