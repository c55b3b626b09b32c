"""
Procurement configuration schema (``procurement_config.schema``).

Responsibility
--------------
Typed, plain-value form of a configuration set: which delivery policy is
in force, whether a flagged duplicate needs an explanation, and which
project roles grant which permissions.  Values stay strings here; turning
them into kernel enums is the bridge's job.

Invariants enforced
-------------------
* ``delivery_policy`` and every role / permission name are non-blank.
* ``version`` is positive.

Failure modes
-------------
* ``ValueError`` at construction if a constraint is violated.

Audit relevance
---------------
Settings are logged at construction; ``checksum`` ties a running engine
to the exact file it was configured from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from procurement_kernel.domain.authority import DEFAULT_ROLE_PERMISSIONS
from procurement_kernel.logging_config import get_logger

logger = get_logger("config.schema")


def _default_role_permissions() -> dict[str, list[str]]:
    return {
        role.value: sorted(p.value for p in permissions)
        for role, permissions in DEFAULT_ROLE_PERMISSIONS.items()
    }


@dataclass
class ProcurementSettings:
    """
    Configuration for one deployment of the procurement engine.

    Override at instantiation:
        settings = ProcurementSettings(delivery_policy="all_or_nothing")
    """

    config_id: str = "default"
    version: int = 1
    delivery_policy: str = "partial"
    require_duplicate_explanation: bool = True
    role_permissions: dict[str, list[str]] = field(default_factory=_default_role_permissions)
    checksum: str | None = None

    def __post_init__(self):
        if not self.config_id or not self.config_id.strip():
            raise ValueError("config_id cannot be empty")
        if self.version < 1:
            raise ValueError("version must be positive")
        if not self.delivery_policy or not str(self.delivery_policy).strip():
            raise ValueError("delivery_policy cannot be empty")
        for role, permissions in self.role_permissions.items():
            if not role or not str(role).strip():
                raise ValueError("role names cannot be empty")
            if isinstance(permissions, str):
                raise ValueError(f"permissions for role {role!r} must be a list")
            if any(not p or not str(p).strip() for p in permissions):
                raise ValueError(f"role {role!r} lists an empty permission")

        logger.debug(
            "procurement_settings_initialized",
            extra={
                "config_id": self.config_id,
                "version": self.version,
                "delivery_policy": self.delivery_policy,
                "require_duplicate_explanation": self.require_duplicate_explanation,
                "role_count": len(self.role_permissions),
            },
        )

    @classmethod
    def with_defaults(cls) -> ProcurementSettings:
        logger.info("procurement_settings_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcurementSettings:
        """
        Create settings from a flat dict whose keys are field names.

        Raises:
            TypeError: on unknown keys.
            ValueError: if validation fails in ``__post_init__``.
        """
        logger.info(
            "procurement_settings_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        data = dict(data)
        if "role_permissions" in data:
            data["role_permissions"] = {
                str(role): list(perms or []) for role, perms in data["role_permissions"].items()
            }
        return cls(**data)
