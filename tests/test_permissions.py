from __future__ import annotations

from app.domain.models import OrgRole, RoleKind, RoleRef, UserRole
from app.domain.permissions import ORG_MANAGE_ROLES, ORG_OWNER_ROLES, authorize
from app.domain.results import ErrorCode

MEMBERSHIPS = {
    ("org-1", "owner"): OrgRole.OWNER,
    ("org-1", "admin"): OrgRole.ADMIN,
    ("org-1", "member"): OrgRole.MEMBER,
}


def _find_role(org_id: str, user_id: str) -> OrgRole | None:
    return MEMBERSHIPS.get((org_id, user_id))


def test_authorize_allows_listed_roles() -> None:
    assert authorize("org-1", "owner", ORG_MANAGE_ROLES, _find_role).success
    assert authorize("org-1", "admin", ORG_MANAGE_ROLES, _find_role).success


def test_authorize_rejects_other_roles_and_strangers() -> None:
    for actor in ("member", "stranger"):
        result = authorize("org-1", actor, ORG_MANAGE_ROLES, _find_role)
        assert not result.success
        assert result.code == ErrorCode.INSUFFICIENT_PERMISSIONS


def test_authorize_is_scoped_to_organization() -> None:
    result = authorize("org-2", "owner", ORG_MANAGE_ROLES, _find_role)
    assert result.code == ErrorCode.INSUFFICIENT_PERMISSIONS


def test_owner_only_gate() -> None:
    assert authorize("org-1", "owner", ORG_OWNER_ROLES, _find_role).success
    assert not authorize("org-1", "admin", ORG_OWNER_ROLES, _find_role).success


def test_role_ref_keeps_admin_kinds_apart() -> None:
    user_admin = RoleRef.for_user(UserRole.ADMIN)
    org_admin = RoleRef.for_organization(OrgRole.ADMIN)

    assert user_admin.value == org_admin.value == "ADMIN"
    assert user_admin.kind == RoleKind.USER
    assert org_admin.kind == RoleKind.ORGANIZATION
    assert user_admin != org_admin
    assert RoleRef.for_user(UserRole.SUPER_ADMIN).label == "Super Admin"
