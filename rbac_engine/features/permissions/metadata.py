"""
Loading declared permission metadata from disk.

Example document (YAML):

    permissions:
      - name: apps.read
        title: Read apps
        resource: /api/v1/apps/:id
        action: GET
    permission_groups:
      - name: apps
        title: Apps
        permissions: [apps.read]
        permission_groups:
          - name: apps.settings
            title: Settings
    roles:
      - roleable_type: app
        name: owner
        title: Owner
        permission_groups: [apps, apps.settings]
"""
import json
from pathlib import Path

import yaml

from rbac_engine.features.permissions.exceptions import ValidationError
from rbac_engine.features.permissions.schemas import PermissionMetadata
from rbac_engine.utils import get_logger


log = get_logger(__name__)


def parse_metadata(content: str, fmt: str = "yaml") -> PermissionMetadata:
    """Parse a YAML or JSON document into PermissionMetadata."""
    if fmt in ("yaml", "yml"):
        data = yaml.safe_load(content)
    elif fmt == "json":
        data = json.loads(content)
    else:
        raise ValidationError(f"unsupported metadata format {fmt!r}")

    return PermissionMetadata.model_validate(data or {})


def load_metadata(path: str | Path) -> PermissionMetadata:
    """
    Read a metadata file. The format follows the file extension
    (.yaml, .yml or .json).
    """
    path = Path(path)
    fmt = path.suffix.lstrip(".").lower()
    metadata = parse_metadata(path.read_text(encoding="utf-8"), fmt)
    log.info(
        "Loaded permission metadata from %s: %d permissions, %d root groups, %d preset roles",
        path, len(metadata.permissions), len(metadata.permission_groups), len(metadata.roles),
    )
    return metadata
