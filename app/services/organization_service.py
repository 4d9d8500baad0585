from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from app.domain.models import (
    AddMemberRequest,
    InvitationRead,
    InvitationStatus,
    InviteMemberRequest,
    MemberUser,
    Organization,
    OrganizationCreate,
    OrganizationDetail,
    OrganizationFilters,
    OrganizationInvitation,
    OrganizationMember,
    OrganizationMemberRead,
    OrganizationRead,
    OrganizationUpdate,
    OrgRole,
    PaginationParams,
    User,
    as_utc,
    now_utc,
)
from app.domain.permissions import ORG_MANAGE_ROLES, ORG_OWNER_ROLES, authorize
from app.domain.results import (
    ActionResult,
    ErrorCode,
    PaginatedResult,
    ValidationResult,
    service_boundary,
)
from app.domain.validation import (
    Check,
    ValidationChain,
    check_email_format,
    check_slug_format,
    normalize_email,
    require_text,
)
from app.infra.db import get_engine
from app.infra.events import ORGANIZATIONS_VIEW_PATH, ViewInvalidator, view_bus
from app.infra.repositories import OrganizationRepository, UserRepository

logger = logging.getLogger(__name__)

INVITATION_TTL = timedelta(days=7)


@dataclass(frozen=True)
class MemberCommand:
    organization_id: str
    user_id: str
    requester_id: str
    role: OrgRole | None = None


def _not_found(what: str = "organization") -> ActionResult[Any]:
    return ActionResult.fail(ErrorCode.NOT_FOUND, f"{what} not found")


def _required_fields(payload: OrganizationCreate) -> ValidationResult:
    result = require_text(payload.name, ErrorCode.REQUIRED_NAME, "organization name is required")
    if not result.success:
        return result
    return require_text(payload.slug, ErrorCode.REQUIRED_SLUG, "slug is required")


def _is_expired(invitation: OrganizationInvitation) -> bool:
    return as_utc(invitation.expires_at) <= now_utc()


class OrganizationService:
    def __init__(
        self,
        engine: Engine | None = None,
        invalidator: ViewInvalidator | None = None,
    ) -> None:
        self._engine = engine
        self._invalidator = invalidator or view_bus

    def _session(self) -> Session:
        return Session(self._engine or get_engine(), expire_on_commit=False)

    @staticmethod
    def _slug_available(
        organizations: OrganizationRepository,
        slug: str,
        exclude_id: str | None = None,
    ) -> ValidationResult:
        existing = organizations.find_by_slug(slug)
        if existing is not None and existing.id != exclude_id:
            return ValidationResult.fail(ErrorCode.SLUG_EXISTS, "slug is already in use")
        return ValidationResult.ok()

    @staticmethod
    def _gate(
        organizations: OrganizationRepository,
        allowed_roles: Collection[OrgRole],
    ) -> Check[Any]:
        return Check(
            "permission",
            lambda command: authorize(
                command.organization_id,
                command.requester_id,
                allowed_roles,
                organizations.member_role,
            ),
        )

    def create_chain(self, organizations: OrganizationRepository) -> ValidationChain[OrganizationCreate]:
        return ValidationChain(
            Check("required-fields", _required_fields),
            Check("slug-format", lambda payload: check_slug_format(payload.slug)),
            Check("slug-unique", lambda payload: self._slug_available(organizations, payload.slug or "")),
        )

    def update_chain(self, organizations: OrganizationRepository) -> ValidationChain[OrganizationUpdate]:
        def required_name(payload: OrganizationUpdate) -> ValidationResult:
            if "name" not in payload.model_fields_set:
                return ValidationResult.ok()
            return require_text(payload.name, ErrorCode.REQUIRED_NAME, "organization name is required")

        def slug_format(payload: OrganizationUpdate) -> ValidationResult:
            if "slug" not in payload.model_fields_set:
                return ValidationResult.ok()
            return check_slug_format(payload.slug)

        def slug_unique(payload: OrganizationUpdate) -> ValidationResult:
            if "slug" not in payload.model_fields_set or payload.slug is None:
                return ValidationResult.ok()
            return self._slug_available(organizations, payload.slug, exclude_id=payload.id)

        return ValidationChain(
            Check("required-name", required_name),
            Check("slug-format", slug_format),
            Check("slug-unique", slug_unique),
        )

    def invite_chain(self, organizations: OrganizationRepository) -> ValidationChain[InviteMemberRequest]:
        def no_pending(payload: InviteMemberRequest) -> ValidationResult:
            invitation = organizations.find_invitation(payload.organization_id, normalize_email(payload.email))
            if (
                invitation is not None
                and invitation.status == InvitationStatus.PENDING
                and not _is_expired(invitation)
            ):
                return ValidationResult.fail(
                    ErrorCode.INVITATION_EXISTS,
                    "a pending invitation already exists for this email",
                )
            return ValidationResult.ok()

        return ValidationChain(
            Check(
                "permission",
                lambda payload: authorize(
                    payload.organization_id,
                    payload.inviter_id,
                    ORG_MANAGE_ROLES,
                    organizations.member_role,
                ),
            ),
            Check("email-format", lambda payload: check_email_format(payload.email)),
            Check("no-pending-invitation", no_pending),
        )

    def _member_read(self, member: OrganizationMember, user: User | None) -> OrganizationMemberRead:
        return OrganizationMemberRead.model_validate(member).model_copy(
            update={"user": MemberUser.model_validate(user) if user else None}
        )

    def _to_read(self, session: Session, organization: Organization) -> OrganizationRead:
        members = [
            self._member_read(member, user)
            for member, user in OrganizationRepository(session).members(organization.id)
        ]
        return OrganizationRead.model_validate(organization).model_copy(
            update={"members": members, "member_count": len(members)}
        )

    def _finish(self, result: ActionResult[Any], action: str, organization_id: str) -> ActionResult[Any]:
        if result.success:
            self._invalidator.invalidate(ORGANIZATIONS_VIEW_PATH)
            logger.info("%s organization %s", action, organization_id)
        return result

    @service_boundary(ErrorCode.CREATE_ERROR)
    def create_organization(self, payload: OrganizationCreate, owner_id: str) -> ActionResult[OrganizationRead]:
        with self._session() as session:
            organizations = OrganizationRepository(session)
            verdict = self.create_chain(organizations).handle(payload)
            if not verdict.success:
                return ActionResult.from_validation(verdict)
            if UserRepository(session).get(owner_id) is None:
                return _not_found("user")

            slug = payload.slug or ""
            organization = Organization(
                name=(payload.name or "").strip(),
                slug=slug,
                logo=payload.logo,
                meta=payload.meta,
            )
            try:
                session.add(organization)
                session.flush()
                session.add(
                    OrganizationMember(
                        organization_id=organization.id,
                        user_id=owner_id,
                        role=OrgRole.OWNER,
                    )
                )
                session.commit()
            except IntegrityError:
                session.rollback()
                if organizations.find_by_slug(slug) is not None:
                    logger.warning("slug %s was taken concurrently", slug)
                    return ActionResult.fail(ErrorCode.SLUG_EXISTS, "slug is already in use")
                raise
            session.refresh(organization)
            result = ActionResult.ok(self._to_read(session, organization))
        return self._finish(result, "created", organization.id)

    @service_boundary(ErrorCode.UPDATE_ERROR)
    def update_organization(
        self,
        payload: OrganizationUpdate,
        requester_id: str,
    ) -> ActionResult[OrganizationRead]:
        with self._session() as session:
            organizations = OrganizationRepository(session)
            organization = organizations.get(payload.id)
            if organization is None:
                return _not_found()
            permitted = authorize(payload.id, requester_id, ORG_MANAGE_ROLES, organizations.member_role)
            if not permitted.success:
                return ActionResult.from_validation(permitted)
            verdict = self.update_chain(organizations).handle(payload)
            if not verdict.success:
                return ActionResult.from_validation(verdict)

            fields = payload.model_fields_set - {"id"}
            if "name" in fields and payload.name is not None:
                organization.name = payload.name.strip()
            if "slug" in fields and payload.slug is not None:
                organization.slug = payload.slug
            if "logo" in fields:
                organization.logo = payload.logo
            if "meta" in fields:
                organization.meta = payload.meta
            organization.updated_at = now_utc()
            session.add(organization)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                if payload.slug and not self._slug_available(organizations, payload.slug, payload.id).success:
                    logger.warning("slug %s was taken concurrently", payload.slug)
                    return ActionResult.fail(ErrorCode.SLUG_EXISTS, "slug is already in use")
                raise
            session.refresh(organization)
            result = ActionResult.ok(self._to_read(session, organization))
        return self._finish(result, "updated", payload.id)

    @service_boundary(ErrorCode.FETCH_ERROR)
    def get_organization(self, organization_id: str) -> ActionResult[OrganizationDetail]:
        with self._session() as session:
            organizations = OrganizationRepository(session)
            organization = organizations.get(organization_id)
            if organization is None:
                return _not_found()
            read = self._to_read(session, organization)
            invitations = [
                InvitationRead.model_validate(item)
                for item in organizations.pending_invitations(organization_id)
            ]
            return ActionResult.ok(
                OrganizationDetail(
                    **read.model_dump(exclude={"members"}),
                    members=read.members,
                    invitations=invitations,
                )
            )

    @service_boundary(ErrorCode.FETCH_ERROR)
    def list_organizations(
        self,
        filters: OrganizationFilters | None = None,
        pagination: PaginationParams | None = None,
    ) -> ActionResult[PaginatedResult[OrganizationRead]]:
        filters = filters or OrganizationFilters()
        pagination = pagination or PaginationParams()
        with self._session() as session:
            items, total = OrganizationRepository(session).find_page(filters, pagination)
            page = PaginatedResult.build(
                [self._to_read(session, item) for item in items],
                total,
                pagination.page,
                pagination.page_size,
            )
            return ActionResult.ok(page)

    @service_boundary(ErrorCode.DELETE_ERROR)
    def delete_organization(self, organization_id: str, requester_id: str) -> ActionResult[None]:
        with self._session() as session:
            organizations = OrganizationRepository(session)
            organization = organizations.get(organization_id)
            if organization is None:
                return _not_found()
            permitted = authorize(organization_id, requester_id, ORG_OWNER_ROLES, organizations.member_role)
            if not permitted.success:
                return ActionResult.from_validation(permitted)
            session.delete(organization)
            session.commit()
        return self._finish(ActionResult.ok(), "deleted", organization_id)

    @service_boundary(ErrorCode.ADD_MEMBER_ERROR)
    def add_member(self, payload: AddMemberRequest, requester_id: str) -> ActionResult[OrganizationMemberRead]:
        command = MemberCommand(payload.organization_id, payload.user_id, requester_id, payload.role)
        with self._session() as session:
            organizations = OrganizationRepository(session)
            users = UserRepository(session)

            def user_exists(cmd: MemberCommand) -> ValidationResult:
                if users.get(cmd.user_id) is None:
                    return ValidationResult.fail(ErrorCode.NOT_FOUND, "user not found")
                return ValidationResult.ok()

            def not_member(cmd: MemberCommand) -> ValidationResult:
                if organizations.find_member(cmd.organization_id, cmd.user_id) is not None:
                    return ValidationResult.fail(
                        ErrorCode.ALREADY_MEMBER,
                        "user is already a member of this organization",
                    )
                return ValidationResult.ok()

            chain = ValidationChain(
                self._gate(organizations, ORG_MANAGE_ROLES),
                Check("user-exists", user_exists),
                Check("not-member", not_member),
            )
            verdict = chain.handle(command)
            if not verdict.success:
                return ActionResult.from_validation(verdict)

            member = OrganizationMember(
                organization_id=payload.organization_id,
                user_id=payload.user_id,
                role=payload.role,
            )
            session.add(member)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                if organizations.find_member(payload.organization_id, payload.user_id) is not None:
                    logger.warning(
                        "user %s joined organization %s concurrently",
                        payload.user_id,
                        payload.organization_id,
                    )
                    return ActionResult.fail(
                        ErrorCode.ALREADY_MEMBER,
                        "user is already a member of this organization",
                    )
                raise
            session.refresh(member)
            result = ActionResult.ok(self._member_read(member, users.get(payload.user_id)))
        return self._finish(result, f"added member {payload.user_id} to", payload.organization_id)

    def _member_chain(
        self,
        organizations: OrganizationRepository,
        *owner_guard: Check[MemberCommand],
        allowed_roles: Collection[OrgRole] = ORG_MANAGE_ROLES,
    ) -> ValidationChain[MemberCommand]:
        def member_exists(cmd: MemberCommand) -> ValidationResult:
            if organizations.find_member(cmd.organization_id, cmd.user_id) is None:
                return ValidationResult.fail(ErrorCode.MEMBER_NOT_FOUND, "member not found")
            return ValidationResult.ok()

        return ValidationChain(
            self._gate(organizations, allowed_roles),
            Check("member-exists", member_exists),
            *owner_guard,
        )

    @service_boundary(ErrorCode.REMOVE_MEMBER_ERROR)
    def remove_member(self, organization_id: str, user_id: str, requester_id: str) -> ActionResult[None]:
        command = MemberCommand(organization_id, user_id, requester_id)
        with self._session() as session:
            organizations = OrganizationRepository(session)

            def not_owner(cmd: MemberCommand) -> ValidationResult:
                if organizations.member_role(cmd.organization_id, cmd.user_id) == OrgRole.OWNER:
                    return ValidationResult.fail(
                        ErrorCode.CANNOT_REMOVE_OWNER,
                        "the organization owner cannot be removed",
                    )
                return ValidationResult.ok()

            verdict = self._member_chain(organizations, Check("not-owner", not_owner)).handle(command)
            if not verdict.success:
                return ActionResult.from_validation(verdict)
            member = organizations.find_member(organization_id, user_id)
            session.delete(member)
            session.commit()
        return self._finish(ActionResult.ok(), f"removed member {user_id} from", organization_id)

    @service_boundary(ErrorCode.UPDATE_ROLE_ERROR)
    def update_member_role(
        self,
        organization_id: str,
        user_id: str,
        role: OrgRole,
        requester_id: str,
    ) -> ActionResult[OrganizationMemberRead]:
        command = MemberCommand(organization_id, user_id, requester_id, role)
        with self._session() as session:
            organizations = OrganizationRepository(session)

            def keeps_owner(cmd: MemberCommand) -> ValidationResult:
                current = organizations.member_role(cmd.organization_id, cmd.user_id)
                if current == OrgRole.OWNER and cmd.role != OrgRole.OWNER:
                    return ValidationResult.fail(
                        ErrorCode.CANNOT_CHANGE_OWNER_ROLE,
                        "the owner's role can only change through an ownership transfer",
                    )
                return ValidationResult.ok()

            verdict = self._member_chain(organizations, Check("keeps-owner", keeps_owner)).handle(command)
            if not verdict.success:
                return ActionResult.from_validation(verdict)
            member = organizations.find_member(organization_id, user_id)
            if member is None:
                return ActionResult.fail(ErrorCode.MEMBER_NOT_FOUND, "member not found")
            member.role = role
            member.updated_at = now_utc()
            session.add(member)
            session.commit()
            session.refresh(member)
            result = ActionResult.ok(self._member_read(member, UserRepository(session).get(user_id)))
        return self._finish(result, f"set role {role} for {user_id} in", organization_id)

    @service_boundary(ErrorCode.TRANSFER_ERROR)
    def transfer_ownership(
        self,
        organization_id: str,
        new_owner_id: str,
        requester_id: str,
    ) -> ActionResult[OrganizationRead]:
        command = MemberCommand(organization_id, new_owner_id, requester_id, OrgRole.OWNER)
        with self._session() as session:
            organizations = OrganizationRepository(session)
            chain = self._member_chain(organizations, allowed_roles=ORG_OWNER_ROLES)
            verdict = chain.handle(command)
            if not verdict.success:
                return ActionResult.from_validation(verdict)

            organization = organizations.get(organization_id)
            if organization is None:
                return _not_found()
            if new_owner_id != requester_id:
                target = organizations.find_member(organization_id, new_owner_id)
                current = organizations.find_member(organization_id, requester_id)
                if target is None or current is None:
                    return ActionResult.fail(ErrorCode.MEMBER_NOT_FOUND, "member not found")
                timestamp = now_utc()
                target.role = OrgRole.OWNER
                target.updated_at = timestamp
                current.role = OrgRole.ADMIN
                current.updated_at = timestamp
                session.add(target)
                session.add(current)
                session.commit()
            result = ActionResult.ok(self._to_read(session, organization))
        return self._finish(result, f"transferred ownership to {new_owner_id} of", organization_id)

    @service_boundary(ErrorCode.INVITE_ERROR)
    def invite_member(self, payload: InviteMemberRequest) -> ActionResult[InvitationRead]:
        email = normalize_email(payload.email)
        with self._session() as session:
            organizations = OrganizationRepository(session)
            verdict = self.invite_chain(organizations).handle(payload)
            if not verdict.success:
                return ActionResult.from_validation(verdict)

            timestamp = now_utc()
            invitation = organizations.find_invitation(payload.organization_id, email)
            if invitation is None:
                invitation = OrganizationInvitation(
                    organization_id=payload.organization_id,
                    email=email,
                    role=payload.role,
                    inviter_id=payload.inviter_id,
                    expires_at=timestamp + INVITATION_TTL,
                )
            else:
                if invitation.status == InvitationStatus.PENDING:
                    logger.info("invitation %s expired before reissue", invitation.id)
                    invitation.status = InvitationStatus.EXPIRED
                    invitation.updated_at = timestamp
                    session.add(invitation)
                    session.flush()
                invitation.status = InvitationStatus.PENDING
                invitation.role = payload.role
                invitation.inviter_id = payload.inviter_id
                invitation.expires_at = timestamp + INVITATION_TTL
                invitation.updated_at = timestamp
            session.add(invitation)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.warning("invitation for %s to %s created concurrently", email, payload.organization_id)
                return ActionResult.fail(
                    ErrorCode.INVITATION_EXISTS,
                    "a pending invitation already exists for this email",
                )
            session.refresh(invitation)
            result = ActionResult.ok(InvitationRead.model_validate(invitation))
        return self._finish(result, f"invited {email} to", payload.organization_id)

    @service_boundary(ErrorCode.INVITE_ERROR)
    def respond_to_invitation(
        self,
        invitation_id: str,
        user_id: str,
        accept: bool,
    ) -> ActionResult[InvitationRead]:
        with self._session() as session:
            organizations = OrganizationRepository(session)
            invitation = organizations.get_invitation(invitation_id)
            if invitation is None:
                return _not_found("invitation")
            user = UserRepository(session).get(user_id)
            if user is None:
                return _not_found("user")
            if normalize_email(user.email) != invitation.email:
                return ActionResult.fail(
                    ErrorCode.INSUFFICIENT_PERMISSIONS,
                    "this invitation was sent to a different email",
                )
            if invitation.status != InvitationStatus.PENDING:
                return ActionResult.fail(
                    ErrorCode.INVITATION_NOT_PENDING,
                    f"invitation is already {invitation.status.lower()}",
                )

            timestamp = now_utc()
            if _is_expired(invitation):
                invitation.status = InvitationStatus.EXPIRED
                invitation.updated_at = timestamp
                session.add(invitation)
                session.commit()
                self._invalidator.invalidate(ORGANIZATIONS_VIEW_PATH)
                return ActionResult.fail(ErrorCode.INVITATION_EXPIRED, "invitation has expired")

            if accept:
                if organizations.find_member(invitation.organization_id, user_id) is not None:
                    return ActionResult.fail(
                        ErrorCode.ALREADY_MEMBER,
                        "user is already a member of this organization",
                    )
                session.add(
                    OrganizationMember(
                        organization_id=invitation.organization_id,
                        user_id=user_id,
                        role=invitation.role,
                    )
                )
            invitation.status = InvitationStatus.ACCEPTED if accept else InvitationStatus.REJECTED
            invitation.updated_at = timestamp
            session.add(invitation)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                if organizations.find_member(invitation.organization_id, user_id) is not None:
                    logger.warning("user %s joined organization %s concurrently", user_id, invitation.organization_id)
                    return ActionResult.fail(
                        ErrorCode.ALREADY_MEMBER,
                        "user is already a member of this organization",
                    )
                raise
            session.refresh(invitation)
            result = ActionResult.ok(InvitationRead.model_validate(invitation))
        action = "accepted" if accept else "rejected"
        return self._finish(result, f"{action} invitation {invitation_id} for", invitation.organization_id)
