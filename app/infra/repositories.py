from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_
from sqlmodel import Session, col, select
from sqlmodel.sql.expression import SelectOfScalar

from app.domain.hierarchy import NodeKind, ParentLookup
from app.domain.models import (
    Department,
    DepartmentFilters,
    InvitationStatus,
    Organization,
    OrganizationFilters,
    OrganizationInvitation,
    OrganizationMember,
    OrgRole,
    PaginationParams,
    User,
    UserFilters,
    UserStatus,
)
from app.domain.permissions import MANAGER_USER_ROLES


def paginate(
    session: Session,
    statement: SelectOfScalar[Any],
    pagination: PaginationParams,
    *,
    sortable: dict[str, Any],
    default_sort: str,
    default_order: str,
) -> tuple[list[Any], int]:
    count_statement = select(func.count()).select_from(statement.subquery())
    total = int(session.exec(count_statement).one())

    sort_key = pagination.sort_by if pagination.sort_by in sortable else default_sort
    column = sortable[sort_key]
    order = pagination.sort_order or default_order
    ordered = statement.order_by(column.desc() if order == "desc" else column.asc())

    offset = (pagination.page - 1) * pagination.page_size
    items = list(session.exec(ordered.offset(offset).limit(pagination.page_size)).all())
    return items, total


def parent_lookup(session: Session, kind: NodeKind) -> ParentLookup:
    """Parent-id lookup for the self-referencing table of ``kind``."""
    if kind is NodeKind.DEPARTMENT:
        model: Any = Department
        column: Any = Department.parent_id
    else:
        model = User
        column = User.manager_id

    def _lookup(node_id: str) -> str | None:
        return session.exec(select(column).where(model.id == node_id)).first()

    return _lookup


class UserRepository:
    SORTABLE: dict[str, Any] = {
        "created_at": col(User.created_at),
        "updated_at": col(User.updated_at),
        "name": col(User.name),
        "email": col(User.email),
        "role": col(User.role),
        "status": col(User.status),
    }

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def find_by_email(self, email: str) -> User | None:
        return self.session.exec(select(User).where(User.email == email)).first()

    def subordinates(self, user_id: str) -> list[User]:
        statement = select(User).where(User.manager_id == user_id).order_by(col(User.name))
        return list(self.session.exec(statement).all())

    def count_subordinates(self, user_id: str) -> int:
        statement = select(func.count()).select_from(User).where(User.manager_id == user_id)
        return int(self.session.exec(statement).one())

    def find_page(self, filters: UserFilters, pagination: PaginationParams) -> tuple[list[User], int]:
        statement = select(User)
        if filters.role is not None:
            statement = statement.where(User.role == filters.role)
        if filters.status is not None:
            statement = statement.where(User.status == filters.status)
        if filters.department_id:
            statement = statement.where(User.department_id == filters.department_id)
        if filters.manager_id:
            statement = statement.where(User.manager_id == filters.manager_id)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            statement = statement.where(
                or_(col(User.name).ilike(pattern), col(User.email).ilike(pattern))
            )
        return paginate(
            self.session,
            statement,
            pagination,
            sortable=self.SORTABLE,
            default_sort="created_at",
            default_order="desc",
        )

    def managers(self) -> list[User]:
        statement = (
            select(User)
            .where(col(User.role).in_(MANAGER_USER_ROLES))
            .where(User.status == UserStatus.ACTIVE)
        )
        return list(self.session.exec(statement).all())


class DepartmentRepository:
    SORTABLE: dict[str, Any] = {
        "name": col(Department.name),
        "created_at": col(Department.created_at),
        "updated_at": col(Department.updated_at),
    }

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, department_id: str) -> Department | None:
        return self.session.get(Department, department_id)

    def children(self, department_id: str) -> list[Department]:
        statement = (
            select(Department)
            .where(Department.parent_id == department_id)
            .order_by(col(Department.name))
        )
        return list(self.session.exec(statement).all())

    def users(self, department_id: str) -> list[User]:
        statement = select(User).where(User.department_id == department_id).order_by(col(User.name))
        return list(self.session.exec(statement).all())

    def count_users(self, department_id: str) -> int:
        statement = select(func.count()).select_from(User).where(User.department_id == department_id)
        return int(self.session.exec(statement).one())

    def user_counts(self) -> dict[str, int]:
        statement = (
            select(User.department_id, func.count())
            .where(col(User.department_id).is_not(None))
            .group_by(col(User.department_id))
        )
        return {str(department_id): int(total) for department_id, total in self.session.exec(statement).all()}

    def ordered_by_name(self) -> list[Department]:
        return list(self.session.exec(select(Department).order_by(col(Department.name))).all())

    def find_page(
        self,
        filters: DepartmentFilters,
        pagination: PaginationParams,
    ) -> tuple[list[Department], int]:
        statement = select(Department)
        if filters.roots_only:
            statement = statement.where(col(Department.parent_id).is_(None))
        elif filters.parent_id:
            statement = statement.where(Department.parent_id == filters.parent_id)
        if filters.search:
            statement = statement.where(col(Department.name).ilike(f"%{filters.search.strip()}%"))
        return paginate(
            self.session,
            statement,
            pagination,
            sortable=self.SORTABLE,
            default_sort="name",
            default_order="asc",
        )


class OrganizationRepository:
    SORTABLE: dict[str, Any] = {
        "created_at": col(Organization.created_at),
        "updated_at": col(Organization.updated_at),
        "name": col(Organization.name),
        "slug": col(Organization.slug),
    }

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, organization_id: str) -> Organization | None:
        return self.session.get(Organization, organization_id)

    def find_by_slug(self, slug: str) -> Organization | None:
        return self.session.exec(select(Organization).where(Organization.slug == slug)).first()

    def find_member(self, organization_id: str, user_id: str) -> OrganizationMember | None:
        statement = (
            select(OrganizationMember)
            .where(OrganizationMember.organization_id == organization_id)
            .where(OrganizationMember.user_id == user_id)
        )
        return self.session.exec(statement).first()

    def member_role(self, organization_id: str, user_id: str) -> OrgRole | None:
        member = self.find_member(organization_id, user_id)
        return member.role if member is not None else None

    def members(self, organization_id: str) -> list[tuple[OrganizationMember, User]]:
        statement = (
            select(OrganizationMember, User)
            .join(User, col(User.id) == col(OrganizationMember.user_id))
            .where(OrganizationMember.organization_id == organization_id)
            .order_by(col(OrganizationMember.created_at))
        )
        return [(member, user) for member, user in self.session.exec(statement).all()]

    def pending_invitations(self, organization_id: str) -> list[OrganizationInvitation]:
        statement = (
            select(OrganizationInvitation)
            .where(OrganizationInvitation.organization_id == organization_id)
            .where(OrganizationInvitation.status == InvitationStatus.PENDING)
            .order_by(col(OrganizationInvitation.created_at))
        )
        return list(self.session.exec(statement).all())

    def find_invitation(self, organization_id: str, email: str) -> OrganizationInvitation | None:
        statement = (
            select(OrganizationInvitation)
            .where(OrganizationInvitation.organization_id == organization_id)
            .where(OrganizationInvitation.email == email.lower())
        )
        return self.session.exec(statement).first()

    def get_invitation(self, invitation_id: str) -> OrganizationInvitation | None:
        return self.session.get(OrganizationInvitation, invitation_id)

    def find_page(
        self,
        filters: OrganizationFilters,
        pagination: PaginationParams,
    ) -> tuple[list[Organization], int]:
        statement = select(Organization)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            statement = statement.where(
                or_(col(Organization.name).ilike(pattern), col(Organization.slug).ilike(pattern))
            )
        return paginate(
            self.session,
            statement,
            pagination,
            sortable=self.SORTABLE,
            default_sort="created_at",
            default_order="desc",
        )
