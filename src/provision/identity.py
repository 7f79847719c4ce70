"""Account database records for the unprivileged runtime identity.

The runtime image carries its own ``etc/group`` and ``etc/passwd``. The
identity is added once; later runs find the matching records and leave
the files untouched.
"""

from __future__ import annotations

from pathlib import Path

from core.errors import ProvisioningFailedError
from core.types import ProcessIdentity
from stages.work_tree import WorkTree


def ensure_identity_records(tree: WorkTree, identity: ProcessIdentity) -> bool:
    """Add group and passwd records for *identity* to the image.

    Args:
        tree: Final stage tree acting as the image root.
        identity: Unprivileged runtime identity.

    Returns:
        True when either file was changed.

    Raises:
        ProvisioningFailedError: If a record with the same name has other ids,
            or another account already holds the id.
    """
    group_changed = _ensure_record(
        tree.resolve("etc/group"),
        name=identity.group,
        record=f"{identity.group}:x:{identity.gid}:",
        id_field=2,
        expected_id=identity.gid,
    )
    passwd_changed = _ensure_record(
        tree.resolve("etc/passwd"),
        name=identity.user,
        record=(
            f"{identity.user}:x:{identity.uid}:{identity.gid}::"
            f"{identity.home}:{identity.shell}"
        ),
        id_field=2,
        expected_id=identity.uid,
    )
    return group_changed or passwd_changed


def _ensure_record(
    database_path: Path,
    name: str,
    record: str,
    id_field: int,
    expected_id: int,
) -> bool:
    lines = (
        database_path.read_text(encoding="utf-8").splitlines()
        if database_path.exists()
        else []
    )
    for line in lines:
        fields = line.split(":")
        record_id = fields[id_field] if len(fields) > id_field else None
        if fields[0] != name:
            if record_id == str(expected_id):
                raise ProvisioningFailedError(
                    f"Id {expected_id} in {database_path} already belongs to account "
                    f"'{fields[0]}', not '{name}'. Pick a free id for the runtime identity."
                )
            continue
        if record_id != str(expected_id):
            raise ProvisioningFailedError(
                f"Account '{name}' in {database_path} exists with a different id than "
                f"{expected_id}. Align the runtime user ids with the base environment."
            )
        return False
    database_path.parent.mkdir(parents=True, exist_ok=True)
    database_path.write_text("\n".join([*lines, record]) + "\n", encoding="utf-8")
    return True
