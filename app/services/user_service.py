from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from app.domain.hierarchy import NodeKind, ParentLookup, check_reparent
from app.domain.models import (
    Department,
    DepartmentSummary,
    PaginationParams,
    User,
    UserCreate,
    UserFilters,
    UserRead,
    UserStatus,
    UserSummary,
    UserUpdate,
    now_utc,
)
from app.domain.permissions import USER_ROLE_RANK
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
    check_password_strength,
    normalize_email,
    require_text,
)
from app.infra.db import get_engine
from app.infra.events import USERS_VIEW_PATH, ViewInvalidator, view_bus
from app.infra.identity import IdentityProvider, LocalIdentityProvider
from app.infra.repositories import UserRepository, parent_lookup

logger = logging.getLogger(__name__)

# Columns that a partial update may not null out.
NON_NULLABLE_FIELDS = frozenset({"name", "email", "role", "status", "banned"})


def _not_found() -> ActionResult[Any]:
    return ActionResult.fail(ErrorCode.NOT_FOUND, "user not found")


def _required_user_fields(payload: UserCreate) -> ValidationResult:
    result = require_text(payload.name, ErrorCode.REQUIRED_NAME, "name is required")
    if not result.success:
        return result
    return require_text(payload.email, ErrorCode.REQUIRED_EMAIL, "email is required")


def _manager_hierarchy(payload: UserUpdate, get_manager_id: ParentLookup) -> ValidationResult:
    if "manager_id" not in payload.model_fields_set or payload.manager_id is None:
        return ValidationResult.ok()
    return check_reparent(
        payload.id,
        payload.manager_id,
        get_manager_id,
        self_reference_code=ErrorCode.CIRCULAR_REFERENCE,
    )


def _changes(payload: UserUpdate) -> dict[str, Any]:
    provided = payload.model_dump(include=set(payload.model_fields_set) - {"id"})
    changes = {
        field: value
        for field, value in provided.items()
        if value is not None or field not in NON_NULLABLE_FIELDS
    }
    if "email" in changes:
        changes["email"] = normalize_email(changes["email"])
    return changes


class UserService:
    def __init__(
        self,
        engine: Engine | None = None,
        identity: IdentityProvider | None = None,
        invalidator: ViewInvalidator | None = None,
    ) -> None:
        self._engine = engine
        self._identity = identity or LocalIdentityProvider()
        self._invalidator = invalidator or view_bus

    def _session(self) -> Session:
        return Session(self._engine or get_engine(), expire_on_commit=False)

    def _email_available(self, users: UserRepository, email: str | None) -> ValidationResult:
        result = check_email_format(email)
        if not result.success or email is None:
            return result
        if users.find_by_email(normalize_email(email)) is not None:
            return ValidationResult.fail(ErrorCode.EMAIL_EXISTS, "email is already registered")
        return ValidationResult.ok()

    def create_chain(self, users: UserRepository) -> ValidationChain[UserCreate]:
        return ValidationChain(
            Check("required-fields", _required_user_fields),
            Check("email", lambda payload: self._email_available(users, payload.email)),
            Check("password-strength", lambda payload: check_password_strength(payload.password)),
        )

    def update_chain(self, session: Session) -> ValidationChain[UserUpdate]:
        get_manager_id = parent_lookup(session, NodeKind.USER)
        return ValidationChain(
            Check("manager-hierarchy", lambda payload: _manager_hierarchy(payload, get_manager_id)),
        )

    def _to_read(self, session: Session, user: User) -> UserRead:
        users = UserRepository(session)
        department = session.get(Department, user.department_id) if user.department_id else None
        manager = users.get(user.manager_id) if user.manager_id else None
        return UserRead.model_validate(user).model_copy(
            update={
                "department": DepartmentSummary.model_validate(department) if department else None,
                "manager": UserSummary.model_validate(manager) if manager else None,
                "subordinates": [UserSummary.model_validate(item) for item in users.subordinates(user.id)],
            }
        )

    def _commit_changes(self, session: Session, user: User, changes: dict[str, Any]) -> ActionResult[Any]:
        for field, value in changes.items():
            setattr(user, field, value)
        user.updated_at = now_utc()
        session.add(user)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            email = changes.get("email")
            existing = UserRepository(session).find_by_email(email) if email else None
            if existing is not None and existing.id != user.id:
                logger.warning("email %s was taken before user %s could be saved", email, user.id)
                return ActionResult.fail(ErrorCode.EMAIL_EXISTS, "email is already registered")
            raise
        session.refresh(user)
        return ActionResult.ok(self._to_read(session, user))

    def _finish(self, result: ActionResult[Any], action: str, user_id: str) -> ActionResult[Any]:
        if result.success:
            self._invalidator.invalidate(USERS_VIEW_PATH)
            logger.info("%s user %s", action, user_id)
        return result

    @service_boundary(ErrorCode.CREATE_ERROR)
    def create_user(self, payload: UserCreate) -> ActionResult[UserRead]:
        with self._session() as session:
            users = UserRepository(session)
            verdict = self.create_chain(users).handle(payload)
            if not verdict.success:
                return ActionResult.from_validation(verdict)

            email = normalize_email(payload.email or "")
            try:
                user = self._identity.register(
                    session,
                    name=(payload.name or "").strip(),
                    email=email,
                    password=payload.password or "",
                )
                user.role = payload.role
                user.status = payload.status
                user.department_id = payload.department_id
                user.manager_id = payload.manager_id
                user.image = payload.image
                user.birth_date = payload.birth_date
                user.phone = payload.phone
                user.banned = False
                user.ban_reason = None
                user.ban_expires = None
                user.email_verified = True
                user.updated_at = now_utc()
                session.add(user)
                session.commit()
            except IntegrityError:
                session.rollback()
                if users.find_by_email(email) is not None:
                    logger.warning("email %s was registered concurrently", email)
                    return ActionResult.fail(ErrorCode.EMAIL_EXISTS, "email is already registered")
                raise
            session.refresh(user)
            result = ActionResult.ok(self._to_read(session, user))
        return self._finish(result, "created", user.id)

    @service_boundary(ErrorCode.UPDATE_ERROR)
    def update_user(self, payload: UserUpdate) -> ActionResult[UserRead]:
        with self._session() as session:
            user = UserRepository(session).get(payload.id)
            if user is None:
                return _not_found()
            verdict = self.update_chain(session).handle(payload)
            if not verdict.success:
                return ActionResult.from_validation(verdict)
            result = self._commit_changes(session, user, _changes(payload))
        return self._finish(result, "updated", payload.id)

    @service_boundary(ErrorCode.FETCH_ERROR)
    def get_user(self, user_id: str) -> ActionResult[UserRead]:
        with self._session() as session:
            user = UserRepository(session).get(user_id)
            if user is None:
                return _not_found()
            return ActionResult.ok(self._to_read(session, user))

    @service_boundary(ErrorCode.FETCH_ERROR)
    def list_users(
        self,
        filters: UserFilters | None = None,
        pagination: PaginationParams | None = None,
    ) -> ActionResult[PaginatedResult[UserRead]]:
        filters = filters or UserFilters()
        pagination = pagination or PaginationParams()
        with self._session() as session:
            items, total = UserRepository(session).find_page(filters, pagination)
            page = PaginatedResult.build(
                [self._to_read(session, item) for item in items],
                total,
                pagination.page,
                pagination.page_size,
            )
            return ActionResult.ok(page)

    @service_boundary(ErrorCode.FETCH_ERROR)
    def list_managers(self) -> ActionResult[list[UserSummary]]:
        with self._session() as session:
            managers = UserRepository(session).managers()
            ordered = sorted(managers, key=lambda item: (USER_ROLE_RANK[item.role], item.name))
            return ActionResult.ok([UserSummary.model_validate(item) for item in ordered])

    @service_boundary(ErrorCode.DELETE_ERROR)
    def delete_user(self, user_id: str) -> ActionResult[None]:
        with self._session() as session:
            users = UserRepository(session)
            user = users.get(user_id)
            if user is None:
                return _not_found()
            if users.count_subordinates(user_id) > 0:
                return ActionResult.fail(
                    ErrorCode.HAS_SUBORDINATES,
                    "cannot delete a user who still has subordinates",
                )
            self._identity.revoke(session, user_id)
            session.delete(user)
            session.commit()
        return self._finish(ActionResult.ok(), "deleted", user_id)

    @service_boundary(ErrorCode.UPDATE_STATUS_ERROR)
    def update_user_status(self, user_id: str, status: UserStatus) -> ActionResult[UserRead]:
        with self._session() as session:
            user = UserRepository(session).get(user_id)
            if user is None:
                return _not_found()
            result = self._commit_changes(session, user, {"status": status})
        return self._finish(result, f"set status {status} on", user_id)

    @service_boundary(ErrorCode.BAN_ERROR)
    def ban_user(
        self,
        user_id: str,
        reason: str,
        expires_at: datetime | None = None,
    ) -> ActionResult[UserRead]:
        with self._session() as session:
            user = UserRepository(session).get(user_id)
            if user is None:
                return _not_found()
            changes = {
                "banned": True,
                "ban_reason": reason,
                "ban_expires": expires_at,
                "status": UserStatus.SUSPENDED,
            }
            result = self._commit_changes(session, user, changes)
        return self._finish(result, "banned", user_id)

    @service_boundary(ErrorCode.UNBAN_ERROR)
    def unban_user(self, user_id: str) -> ActionResult[UserRead]:
        with self._session() as session:
            user = UserRepository(session).get(user_id)
            if user is None:
                return _not_found()
            changes = {
                "banned": False,
                "ban_reason": None,
                "ban_expires": None,
                "status": UserStatus.ACTIVE,
            }
            result = self._commit_changes(session, user, changes)
        return self._finish(result, "unbanned", user_id)
