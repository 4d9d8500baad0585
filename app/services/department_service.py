from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session

from app.domain.hierarchy import NodeKind, ParentLookup, build_forest, check_reparent
from app.domain.models import (
    Department,
    DepartmentCreate,
    DepartmentDetail,
    DepartmentFilters,
    DepartmentNode,
    DepartmentRead,
    DepartmentSummary,
    DepartmentUpdate,
    PaginationParams,
    UserBrief,
    now_utc,
)
from app.domain.results import (
    ActionResult,
    ErrorCode,
    PaginatedResult,
    ValidationResult,
    service_boundary,
)
from app.domain.validation import Check, ValidationChain, require_text
from app.infra.db import get_engine
from app.infra.events import DEPARTMENTS_VIEW_PATH, ViewInvalidator, view_bus
from app.infra.repositories import DepartmentRepository, parent_lookup

logger = logging.getLogger(__name__)


def _not_found() -> ActionResult[Any]:
    return ActionResult.fail(ErrorCode.NOT_FOUND, "department not found")


def _required_name(name: str | None) -> ValidationResult:
    return require_text(name, ErrorCode.REQUIRED_NAME, "department name is required")


class DepartmentService:
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
    def _parent_exists(departments: DepartmentRepository, parent_id: str | None) -> ValidationResult:
        if parent_id is None or departments.get(parent_id) is not None:
            return ValidationResult.ok()
        return ValidationResult.fail(ErrorCode.PARENT_NOT_FOUND, "parent department not found")

    def create_chain(self, departments: DepartmentRepository) -> ValidationChain[DepartmentCreate]:
        return ValidationChain(
            Check("required-name", lambda payload: _required_name(payload.name)),
            Check("parent-exists", lambda payload: self._parent_exists(departments, payload.parent_id)),
        )

    def update_chain(self, session: Session) -> ValidationChain[DepartmentUpdate]:
        departments = DepartmentRepository(session)
        get_parent_id: ParentLookup = parent_lookup(session, NodeKind.DEPARTMENT)

        def required_name(payload: DepartmentUpdate) -> ValidationResult:
            if "name" not in payload.model_fields_set:
                return ValidationResult.ok()
            return _required_name(payload.name)

        def parent_exists(payload: DepartmentUpdate) -> ValidationResult:
            if "parent_id" not in payload.model_fields_set:
                return ValidationResult.ok()
            return self._parent_exists(departments, payload.parent_id)

        def no_cycle(payload: DepartmentUpdate) -> ValidationResult:
            if "parent_id" not in payload.model_fields_set:
                return ValidationResult.ok()
            return check_reparent(payload.id, payload.parent_id, get_parent_id)

        return ValidationChain(
            Check("required-name", required_name),
            Check("parent-exists", parent_exists),
            Check("no-cycle", no_cycle),
        )

    def _to_read(self, session: Session, department: Department) -> DepartmentRead:
        departments = DepartmentRepository(session)
        parent = departments.get(department.parent_id) if department.parent_id else None
        return DepartmentRead.model_validate(department).model_copy(
            update={
                "parent": DepartmentSummary.model_validate(parent) if parent else None,
                "children": [
                    DepartmentSummary.model_validate(child) for child in departments.children(department.id)
                ],
                "user_count": departments.count_users(department.id),
            }
        )

    def _to_detail(self, session: Session, department: Department) -> DepartmentDetail:
        users = DepartmentRepository(session).users(department.id)
        read = self._to_read(session, department)
        return DepartmentDetail(
            **read.model_dump(exclude={"parent", "children"}),
            parent=read.parent,
            children=read.children,
            users=[UserBrief.model_validate(user) for user in users],
        )

    def _finish(self, result: ActionResult[Any], action: str, department_id: str) -> ActionResult[Any]:
        if result.success:
            self._invalidator.invalidate(DEPARTMENTS_VIEW_PATH)
            logger.info("%s department %s", action, department_id)
        return result

    @service_boundary(ErrorCode.CREATE_ERROR)
    def create_department(self, payload: DepartmentCreate) -> ActionResult[DepartmentRead]:
        with self._session() as session:
            verdict = self.create_chain(DepartmentRepository(session)).handle(payload)
            if not verdict.success:
                return ActionResult.from_validation(verdict)
            department = Department(
                name=(payload.name or "").strip(),
                description=payload.description,
                parent_id=payload.parent_id,
            )
            session.add(department)
            session.commit()
            session.refresh(department)
            result = ActionResult.ok(self._to_read(session, department))
        return self._finish(result, "created", department.id)

    @service_boundary(ErrorCode.UPDATE_ERROR)
    def update_department(self, payload: DepartmentUpdate) -> ActionResult[DepartmentRead]:
        with self._session() as session:
            department = DepartmentRepository(session).get(payload.id)
            if department is None:
                return _not_found()
            verdict = self.update_chain(session).handle(payload)
            if not verdict.success:
                return ActionResult.from_validation(verdict)

            fields = payload.model_fields_set - {"id"}
            if "name" in fields and payload.name is not None:
                department.name = payload.name.strip()
            if "description" in fields:
                department.description = payload.description
            if "parent_id" in fields:
                department.parent_id = payload.parent_id
            department.updated_at = now_utc()
            session.add(department)
            session.commit()
            session.refresh(department)
            result = ActionResult.ok(self._to_read(session, department))
        return self._finish(result, "updated", payload.id)

    @service_boundary(ErrorCode.FETCH_ERROR)
    def get_department(self, department_id: str) -> ActionResult[DepartmentDetail]:
        with self._session() as session:
            department = DepartmentRepository(session).get(department_id)
            if department is None:
                return _not_found()
            return ActionResult.ok(self._to_detail(session, department))

    @service_boundary(ErrorCode.FETCH_ERROR)
    def list_departments(
        self,
        filters: DepartmentFilters | None = None,
        pagination: PaginationParams | None = None,
    ) -> ActionResult[PaginatedResult[DepartmentRead]]:
        filters = filters or DepartmentFilters()
        pagination = pagination or PaginationParams()
        with self._session() as session:
            items, total = DepartmentRepository(session).find_page(filters, pagination)
            page = PaginatedResult.build(
                [self._to_read(session, item) for item in items],
                total,
                pagination.page,
                pagination.page_size,
            )
            return ActionResult.ok(page)

    @service_boundary(ErrorCode.FETCH_ERROR)
    def get_hierarchy(self) -> ActionResult[list[DepartmentNode]]:
        with self._session() as session:
            departments = DepartmentRepository(session)
            counts = departments.user_counts()
            nodes = [
                DepartmentNode(
                    id=item.id,
                    name=item.name,
                    description=item.description,
                    parent_id=item.parent_id,
                    user_count=counts.get(item.id, 0),
                )
                for item in departments.ordered_by_name()
            ]
        return ActionResult.ok(build_forest(nodes))

    @service_boundary(ErrorCode.DELETE_ERROR)
    def delete_department(self, department_id: str) -> ActionResult[None]:
        with self._session() as session:
            departments = DepartmentRepository(session)
            department = departments.get(department_id)
            if department is None:
                return _not_found()
            if departments.count_users(department_id) > 0:
                return ActionResult.fail(
                    ErrorCode.HAS_USERS,
                    "cannot delete a department that still has users",
                )
            if departments.children(department_id):
                return ActionResult.fail(
                    ErrorCode.HAS_CHILDREN,
                    "cannot delete a department that still has sub-departments",
                )
            session.delete(department)
            session.commit()
        return self._finish(ActionResult.ok(), "deleted", department_id)
