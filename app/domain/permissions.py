from __future__ import annotations

from collections.abc import Callable, Collection

from app.domain.models import OrgRole, UserRole
from app.domain.results import ErrorCode, ValidationResult

ORG_MANAGE_ROLES: frozenset[OrgRole] = frozenset({OrgRole.OWNER, OrgRole.ADMIN})
ORG_OWNER_ROLES: frozenset[OrgRole] = frozenset({OrgRole.OWNER})

USER_ROLE_RANK: dict[UserRole, int] = {
    UserRole.SUPER_ADMIN: 0,
    UserRole.ADMIN: 1,
    UserRole.MANAGER: 2,
    UserRole.SUPERVISOR: 3,
    UserRole.USER: 4,
}

MANAGER_USER_ROLES: tuple[UserRole, ...] = (
    UserRole.SUPER_ADMIN,
    UserRole.ADMIN,
    UserRole.MANAGER,
    UserRole.SUPERVISOR,
)

ADMIN_AREA_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.MANAGER}
)

MembershipLookup = Callable[[str, str], OrgRole | None]


def has_user_role(claims: dict[str, object], allowed_roles: Collection[UserRole]) -> bool:
    role = claims.get("role")
    return isinstance(role, str) and role in {item.value for item in allowed_roles}


def authorize(
    org_id: str,
    actor_user_id: str,
    allowed_roles: Collection[OrgRole],
    find_role: MembershipLookup,
) -> ValidationResult:
    role = find_role(org_id, actor_user_id)
    if role is None or role not in allowed_roles:
        return ValidationResult.fail(
            ErrorCode.INSUFFICIENT_PERMISSIONS,
            "you do not have permission to perform this action",
        )
    return ValidationResult.ok()
