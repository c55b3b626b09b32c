"""
Authority -- project roles, permissions, and the permission check.

Responsibility:
    Decide whether an actor (identity and project roles supplied by the
    external authentication context) may perform an engine operation.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The kernel stays
    identity-agnostic: it never resolves who an actor is, it only checks the
    roles it was handed against the role -> permission grants in the
    active EnginePolicy.

Invariants enforced:
    - Fail closed: an actor with no roles, or with roles that grant nothing,
      is denied.
    - Permissions are operation verbs; every service operation names exactly
      one.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from procurement_kernel.exceptions import UnauthorizedError


class ProjectRole(str, Enum):
    """Roles an actor can hold on a project."""

    OWNER = "owner"
    PROJECT_MANAGER = "project_manager"
    PROJECT_ACCOUNTANT = "project_accountant"
    LEAD_ENGINEER = "lead_engineer"
    SITE_ENGINEER = "site_engineer"
    CONSULTANT_ENGINEER = "consultant_engineer"


class Permission(str, Enum):
    """Operation verbs checked by the services."""

    REQUEST_CREATE = "request.create"
    REQUEST_EDIT = "request.edit"
    REQUEST_SUBMIT = "request.submit"
    REQUEST_DECIDE = "request.decide"
    REQUEST_RESUBMIT = "request.resubmit"
    PURCHASE_ORDER_CREATE = "purchase_order.create"
    DELIVERY_RECORD = "delivery.record"


_REQUESTER = frozenset({
    Permission.REQUEST_CREATE,
    Permission.REQUEST_EDIT,
    Permission.REQUEST_SUBMIT,
    Permission.REQUEST_RESUBMIT,
})

DEFAULT_ROLE_PERMISSIONS: Mapping[ProjectRole, frozenset[Permission]] = {
    ProjectRole.OWNER: frozenset(Permission),
    ProjectRole.PROJECT_MANAGER: _REQUESTER | {Permission.REQUEST_DECIDE},
    ProjectRole.PROJECT_ACCOUNTANT: frozenset({Permission.PURCHASE_ORDER_CREATE}),
    ProjectRole.LEAD_ENGINEER: _REQUESTER | {Permission.DELIVERY_RECORD},
    ProjectRole.SITE_ENGINEER: _REQUESTER | {Permission.DELIVERY_RECORD},
    ProjectRole.CONSULTANT_ENGINEER: _REQUESTER | {Permission.DELIVERY_RECORD},
}


@dataclass(frozen=True)
class Actor:
    """Who is calling, and in which project roles."""

    actor_id: UUID
    roles: frozenset[ProjectRole] = field(default_factory=frozenset)

    @classmethod
    def with_roles(cls, actor_id: UUID, roles: Iterable[ProjectRole | str]) -> Actor:
        return cls(actor_id=actor_id, roles=frozenset(ProjectRole(r) for r in roles))


def check_permission(
    role_permissions: Mapping[ProjectRole, frozenset[Permission]],
    actor: Actor,
    permission: Permission,
) -> tuple[bool, str]:
    """Check whether the actor's roles grant ``permission``.

    Returns:
        (allowed, reason). reason is empty when allowed, or a short message
        when denied.
    """
    if not actor.roles:
        return (False, "actor holds no project role")

    for role in sorted(actor.roles, key=lambda r: r.value):
        if permission in role_permissions.get(role, frozenset()):
            return (True, "")

    held = ", ".join(sorted(r.value for r in actor.roles))
    return (False, f"no held role ({held}) grants {permission.value}")


def require_permission(
    role_permissions: Mapping[ProjectRole, frozenset[Permission]],
    actor: Actor,
    permission: Permission,
) -> None:
    """Raise UnauthorizedError unless ``check_permission`` allows."""
    allowed, reason = check_permission(role_permissions, actor, permission)
    if not allowed:
        raise UnauthorizedError(
            actor_id=str(actor.actor_id),
            permission=permission.value,
            reason=reason,
        )
