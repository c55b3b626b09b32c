"""
Configuration loader (``procurement_config.loader``).

Responsibility
--------------
Reads a YAML configuration set and parses it into ``ProcurementSettings``.
Callers go through ``procurement_config.get_active_config()``; this module
is its tooling.

File layout::

    config_id: default
    version: 1
    delivery:
      policy: partial            # or all_or_nothing
    requests:
      require_duplicate_explanation: true
    roles:
      owner: ["*"]               # "*" grants every permission
      project_manager: [request.create, request.decide, ...]

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shapes  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import ProcurementSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def parse_settings(data: dict[str, Any], checksum: str | None = None) -> ProcurementSettings:
    """
    Build ProcurementSettings from the parsed YAML document.

    Sections that are absent keep the schema defaults.
    """
    if not isinstance(data, dict):
        raise ValueError("configuration root must be a mapping")

    fields: dict[str, Any] = {}
    if "config_id" in data:
        fields["config_id"] = str(data["config_id"])
    if "version" in data:
        fields["version"] = int(data["version"])

    delivery = _section(data, "delivery")
    if "policy" in delivery:
        fields["delivery_policy"] = str(delivery["policy"])

    requests = _section(data, "requests")
    if "require_duplicate_explanation" in requests:
        fields["require_duplicate_explanation"] = bool(requests["require_duplicate_explanation"])

    if "roles" in data:
        roles = _section(data, "roles")
        fields["role_permissions"] = {
            str(role): [str(p) for p in (perms or [])] for role, perms in roles.items()
        }

    if checksum is not None:
        fields["checksum"] = checksum
    return ProcurementSettings.from_dict(fields)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical data, identical checksum."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
