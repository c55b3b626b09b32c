"""
Config -> kernel bridges.

Converts ProcurementSettings into the kernel's EnginePolicy.  Lives here
because the kernel must never import procurement_config.

Usage:
    from procurement_config import get_active_config
    from procurement_config.bridges import build_engine_policy

    policy = build_engine_policy(get_active_config())
    service = RequestLifecycleService(session, policy=policy)
"""

from __future__ import annotations

from types import MappingProxyType

from procurement_config.schema import ProcurementSettings
from procurement_kernel.domain.authority import Permission, ProjectRole
from procurement_kernel.domain.policy import DeliveryPolicy, EnginePolicy

ALL_PERMISSIONS = "*"


def _parse_enum(enum_cls, value: str, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        known = ", ".join(sorted(m.value for m in enum_cls))
        raise ValueError(f"Unknown {what} {value!r} (expected one of: {known})") from None


def build_role_permissions(
    role_permissions: dict[str, list[str]],
) -> MappingProxyType:
    """Role name -> permission names, as kernel enums.

    Roles missing from the mapping grant nothing.
    """
    grants: dict[ProjectRole, frozenset[Permission]] = {}
    for role_name, permission_names in role_permissions.items():
        role = _parse_enum(ProjectRole, role_name, "role")
        if ALL_PERMISSIONS in permission_names:
            grants[role] = frozenset(Permission)
            continue
        grants[role] = frozenset(
            _parse_enum(Permission, name, "permission") for name in permission_names
        )
    return MappingProxyType(grants)


def build_engine_policy(settings: ProcurementSettings) -> EnginePolicy:
    """
    Raises:
        ValueError: on an unknown delivery policy, role or permission name.
    """
    return EnginePolicy(
        delivery_policy=_parse_enum(DeliveryPolicy, settings.delivery_policy, "delivery policy"),
        require_duplicate_explanation=settings.require_duplicate_explanation,
        role_permissions=build_role_permissions(settings.role_permissions),
    )
