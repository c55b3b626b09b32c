"""Tests for roles, permissions and the fail-closed permission check."""

from types import MappingProxyType
from uuid import uuid4

import pytest

from procurement_kernel.domain.authority import (
    DEFAULT_ROLE_PERMISSIONS,
    Actor,
    Permission,
    ProjectRole,
    check_permission,
    require_permission,
)
from procurement_kernel.domain.policy import DeliveryPolicy, EnginePolicy
from procurement_kernel.exceptions import UnauthorizedError


class TestCheckPermission:

    def test_owner_may_do_everything(self):
        owner = Actor.with_roles(uuid4(), [ProjectRole.OWNER])
        for permission in Permission:
            allowed, reason = check_permission(DEFAULT_ROLE_PERMISSIONS, owner, permission)
            assert allowed, permission
            assert reason == ""

    def test_no_roles_is_denied(self):
        nobody = Actor(actor_id=uuid4())
        allowed, reason = check_permission(
            DEFAULT_ROLE_PERMISSIONS, nobody, Permission.REQUEST_CREATE,
        )
        assert not allowed
        assert "no project role" in reason

    def test_consultant_engineer_matches_site_engineer(self):
        consultant = Actor.with_roles(uuid4(), ["consultant_engineer"])
        site = Actor.with_roles(uuid4(), ["site_engineer"])
        for permission in Permission:
            consultant_allowed, _ = check_permission(
                DEFAULT_ROLE_PERMISSIONS, consultant, permission,
            )
            site_allowed, _ = check_permission(DEFAULT_ROLE_PERMISSIONS, site, permission)
            assert consultant_allowed == site_allowed, permission

    def test_consultant_records_deliveries_but_does_not_decide(self):
        consultant = Actor.with_roles(uuid4(), [ProjectRole.CONSULTANT_ENGINEER])
        assert check_permission(
            DEFAULT_ROLE_PERMISSIONS, consultant, Permission.DELIVERY_RECORD,
        )[0]
        assert not check_permission(
            DEFAULT_ROLE_PERMISSIONS, consultant, Permission.REQUEST_DECIDE,
        )[0]

    def test_any_held_role_grants(self):
        actor = Actor.with_roles(
            uuid4(), [ProjectRole.CONSULTANT_ENGINEER, ProjectRole.PROJECT_ACCOUNTANT],
        )
        allowed, _ = check_permission(
            DEFAULT_ROLE_PERMISSIONS, actor, Permission.PURCHASE_ORDER_CREATE,
        )
        assert allowed

    @pytest.mark.parametrize(
        "role,permission,expected",
        [
            (ProjectRole.PROJECT_MANAGER, Permission.REQUEST_DECIDE, True),
            (ProjectRole.SITE_ENGINEER, Permission.REQUEST_DECIDE, False),
            (ProjectRole.SITE_ENGINEER, Permission.DELIVERY_RECORD, True),
            (ProjectRole.PROJECT_ACCOUNTANT, Permission.DELIVERY_RECORD, False),
            (ProjectRole.PROJECT_ACCOUNTANT, Permission.PURCHASE_ORDER_CREATE, True),
            (ProjectRole.LEAD_ENGINEER, Permission.REQUEST_CREATE, True),
        ],
    )
    def test_default_grants(self, role, permission, expected):
        actor = Actor.with_roles(uuid4(), [role])
        allowed, _ = check_permission(DEFAULT_ROLE_PERMISSIONS, actor, permission)
        assert allowed is expected

    def test_unknown_role_string_raises(self):
        with pytest.raises(ValueError):
            Actor.with_roles(uuid4(), ["janitor"])


class TestRequirePermission:

    def test_raises_with_structured_fields(self):
        engineer = Actor.with_roles(uuid4(), [ProjectRole.SITE_ENGINEER])
        with pytest.raises(UnauthorizedError) as exc_info:
            require_permission(DEFAULT_ROLE_PERMISSIONS, engineer, Permission.REQUEST_DECIDE)
        assert exc_info.value.permission == "request.decide"
        assert exc_info.value.actor_id == str(engineer.actor_id)
        assert exc_info.value.code == "UNAUTHORIZED"

    def test_custom_grants_replace_defaults(self):
        grants = MappingProxyType({ProjectRole.SITE_ENGINEER: frozenset({Permission.REQUEST_DECIDE})})
        engineer = Actor.with_roles(uuid4(), [ProjectRole.SITE_ENGINEER])
        require_permission(grants, engineer, Permission.REQUEST_DECIDE)
        with pytest.raises(UnauthorizedError):
            require_permission(grants, engineer, Permission.REQUEST_CREATE)


class TestEnginePolicy:

    def test_defaults(self):
        policy = EnginePolicy.defaults()
        assert policy.delivery_policy is DeliveryPolicy.PARTIAL
        assert policy.require_duplicate_explanation is True
        assert policy.role_permissions[ProjectRole.OWNER] == frozenset(Permission)

    def test_role_permissions_are_read_only(self):
        policy = EnginePolicy.defaults()
        with pytest.raises(TypeError):
            policy.role_permissions[ProjectRole.OWNER] = frozenset()
