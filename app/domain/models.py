from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, computed_field
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class UserRole(StrEnum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SUPERVISOR = "SUPERVISOR"
    USER = "USER"


class UserStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class OrgRole(StrEnum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class InvitationStatus(StrEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class RoleKind(StrEnum):
    USER = "user"
    ORGANIZATION = "organization"


class RoleRef(BaseModel):
    """A role value tagged with the enum it belongs to.

    ``ADMIN`` exists both as a user role and as an organization role, so the
    value alone is not enough to tell them apart.
    """

    model_config = ConfigDict(frozen=True)

    kind: RoleKind
    value: str

    @classmethod
    def for_user(cls, role: UserRole) -> RoleRef:
        return cls(kind=RoleKind.USER, value=UserRole(role).value)

    @classmethod
    def for_organization(cls, role: OrgRole) -> RoleRef:
        return cls(kind=RoleKind.ORGANIZATION, value=OrgRole(role).value)

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class Department(SQLModel, table=True):
    __tablename__ = "departments"
    __table_args__ = (
        ForeignKeyConstraint(["parent_id"], ["departments.id"], ondelete="SET NULL"),
        Index("ix_departments_parent_id", "parent_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    description: str | None = None
    parent_id: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        ForeignKeyConstraint(["manager_id"], ["users.id"], ondelete="SET NULL"),
        Index("ix_users_department_id", "department_id"),
        Index("ix_users_manager_id", "manager_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    email: str = Field(index=True, unique=True)
    email_verified: bool = Field(default=False)
    image: str | None = None
    phone: str | None = None
    birth_date: date | None = None
    role: UserRole = Field(default=UserRole.USER, index=True)
    status: UserStatus = Field(default=UserStatus.ACTIVE, index=True)
    banned: bool = Field(default=False)
    ban_reason: str | None = None
    ban_expires: datetime | None = None
    department_id: str | None = Field(default=None)
    manager_id: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Account(SQLModel, table=True):
    __tablename__ = "accounts"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        UniqueConstraint("provider_id", "account_id", name="uq_accounts_provider_account"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    provider_id: str
    account_id: str
    password_hash: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    slug: str = Field(index=True, unique=True)
    logo: str | None = None
    meta: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSON, nullable=True),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class OrganizationMember(SQLModel, table=True):
    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
        ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        Index("ix_organization_members_user_id", "user_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str = Field(index=True)
    user_id: str
    role: OrgRole = Field(default=OrgRole.MEMBER)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class OrganizationInvitation(SQLModel, table=True):
    __tablename__ = "organization_invitations"
    __table_args__ = (
        UniqueConstraint("organization_id", "email", name="uq_organization_invitations_org_email"),
        ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["inviter_id"], ["users.id"], ondelete="CASCADE"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str = Field(index=True)
    email: str = Field(index=True)
    role: OrgRole = Field(default=OrgRole.MEMBER)
    status: InvitationStatus = Field(default=InvitationStatus.PENDING, index=True)
    inviter_id: str
    expires_at: datetime
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PaginationParams(BaseModel):
    page: int = PydanticField(default=1, ge=1)
    page_size: int = PydanticField(default=10, ge=1, le=100)
    sort_by: str | None = None
    sort_order: Literal["asc", "desc"] | None = None


class UserCreate(BaseModel):
    name: str | None = None
    email: str | None = None
    password: str | None = None
    phone: str | None = None
    birth_date: date | None = None
    image: str | None = None
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE
    department_id: str | None = None
    manager_id: str | None = None


class UserChanges(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    birth_date: date | None = None
    image: str | None = None
    role: UserRole | None = None
    status: UserStatus | None = None
    department_id: str | None = None
    manager_id: str | None = None
    banned: bool | None = None
    ban_reason: str | None = None
    ban_expires: datetime | None = None


class UserUpdate(UserChanges):
    id: str


class UserFilters(BaseModel):
    search: str | None = None
    role: UserRole | None = None
    status: UserStatus | None = None
    department_id: str | None = None
    manager_id: str | None = None


class UserStatusUpdate(BaseModel):
    status: UserStatus


class UserBanRequest(BaseModel):
    reason: str
    expires_at: datetime | None = None


class DepartmentSummary(ORMReadModel):
    id: str
    name: str


class UserSummary(ORMReadModel):
    id: str
    name: str
    role: UserRole


class UserBrief(ORMReadModel):
    id: str
    name: str
    email: str
    role: UserRole


class UserRead(ORMReadModel):
    id: str
    name: str
    email: str
    email_verified: bool
    image: str | None = None
    phone: str | None = None
    birth_date: date | None = None
    role: UserRole
    status: UserStatus
    banned: bool
    ban_reason: str | None = None
    ban_expires: datetime | None = None
    department_id: str | None = None
    manager_id: str | None = None
    created_at: datetime
    updated_at: datetime
    department: DepartmentSummary | None = None
    manager: UserSummary | None = None
    subordinates: list[UserSummary] = PydanticField(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def role_ref(self) -> RoleRef:
        return RoleRef.for_user(self.role)


class DepartmentCreate(BaseModel):
    name: str | None = None
    description: str | None = None
    parent_id: str | None = None


class DepartmentChanges(BaseModel):
    name: str | None = None
    description: str | None = None
    parent_id: str | None = None


class DepartmentUpdate(DepartmentChanges):
    id: str


class DepartmentFilters(BaseModel):
    search: str | None = None
    parent_id: str | None = None
    roots_only: bool = False


class DepartmentRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    parent_id: str | None = None
    created_at: datetime
    updated_at: datetime
    parent: DepartmentSummary | None = None
    children: list[DepartmentSummary] = PydanticField(default_factory=list)
    user_count: int = 0


class DepartmentDetail(DepartmentRead):
    users: list[UserBrief] = PydanticField(default_factory=list)


class DepartmentNode(BaseModel):
    id: str
    name: str
    description: str | None = None
    parent_id: str | None = None
    children: list[DepartmentNode] = PydanticField(default_factory=list)
    user_count: int = 0


class OrganizationCreate(BaseModel):
    name: str | None = None
    slug: str | None = None
    logo: str | None = None
    meta: dict[str, Any] | None = None


class OrganizationChanges(BaseModel):
    name: str | None = None
    slug: str | None = None
    logo: str | None = None
    meta: dict[str, Any] | None = None


class OrganizationUpdate(OrganizationChanges):
    id: str


class OrganizationFilters(BaseModel):
    search: str | None = None


class AddMemberRequest(BaseModel):
    organization_id: str
    user_id: str
    role: OrgRole = OrgRole.MEMBER


class MemberCreate(BaseModel):
    user_id: str
    role: OrgRole = OrgRole.MEMBER


class MemberRoleUpdate(BaseModel):
    role: OrgRole


class InvitationCreate(BaseModel):
    email: str
    role: OrgRole = OrgRole.MEMBER


class InviteMemberRequest(BaseModel):
    organization_id: str
    email: str
    role: OrgRole = OrgRole.MEMBER
    inviter_id: str


class InvitationReply(BaseModel):
    accept: bool


class OwnershipTransferRequest(BaseModel):
    new_owner_id: str


class MemberUser(ORMReadModel):
    id: str
    name: str
    email: str
    image: str | None = None


class OrganizationMemberRead(ORMReadModel):
    id: str
    organization_id: str
    user_id: str
    role: OrgRole
    created_at: datetime
    updated_at: datetime
    user: MemberUser | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def role_ref(self) -> RoleRef:
        return RoleRef.for_organization(self.role)


class InvitationRead(ORMReadModel):
    id: str
    organization_id: str
    email: str
    role: OrgRole
    status: InvitationStatus
    inviter_id: str
    expires_at: datetime
    created_at: datetime
    updated_at: datetime


class OrganizationRead(ORMReadModel):
    id: str
    name: str
    slug: str
    logo: str | None = None
    meta: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime
    members: list[OrganizationMemberRead] = PydanticField(default_factory=list)
    member_count: int = 0


class OrganizationDetail(OrganizationRead):
    invitations: list[InvitationRead] = PydanticField(default_factory=list)


class DevLoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
