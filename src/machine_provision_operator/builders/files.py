"""Builder for the driver files secret."""

from __future__ import annotations

import posixpath
from typing import Any

from ..constants import PATH_TO_MACHINE_FILES, SSH_KEY_FILE_NAME

# Spec fields whose values are file contents, per driver: schema field -> driver field
DRIVER_FILE_FIELDS: dict[str, dict[str, str]] = {
    "amazonec2": {"sshKeyContents": "sshKeypath", "userdata": "userdata"},
    "azure": {"customData": "customData"},
    "digitalocean": {"sshKeyContents": "sshKeyPath", "userdata": "userdata"},
    "exoscale": {"sshKey": "sshKey", "userdata": "userdata"},
    "google": {"authEncodedJson": "authEncodedJson", "userdata": "userdata"},
    "linode": {"sshKeyContents": "sshKeyPath"},
    "openstack": {"cacert": "cacert", "privateKeyFile": "privateKeyFile", "userDataFile": "userDataFile"},
    "otc": {"privateKeyFile": "privateKeyFile"},
    "packet": {"userdata": "userdata"},
    "vmwarevsphere": {"cloudConfig": "cloud-config"},
}

# Schema fields holding SSH private keys; always written as id_rsa
SSH_KEY_FIELDS = frozenset({"sshKeyContents", "sshKey", "privateKeyFile"})


def construct_files_secret(driver: str, config: dict[str, Any]) -> dict[str, bytes] | None:
    """Move file-valued spec fields into secret data.

    Each file-valued field holding a string is removed from ``config``. Non-empty
    contents are stored in the returned data and the driver field is pointed at
    the path the job mounts the file under.

    Args:
        driver: Node driver name (e.g. "amazonec2")
        config: Machine spec, mutated in place

    Returns:
        Secret data keyed by file name, or None if the driver has no file fields
    """
    fields = DRIVER_FILE_FIELDS.get(driver)
    if fields is None:
        return None

    secret_data: dict[str, bytes] = {}
    for schema_field, driver_field in fields.items():
        file_contents = config.get(schema_field)
        if not isinstance(file_contents, str):
            continue

        del config[schema_field]
        if not file_contents:
            continue

        file_name = SSH_KEY_FILE_NAME if schema_field in SSH_KEY_FIELDS else driver_field
        file_contents = file_contents.rstrip("\n") + "\n"

        secret_data[file_name] = file_contents.encode("utf-8")
        config[driver_field] = posixpath.join(PATH_TO_MACHINE_FILES, file_name)

    return secret_data
