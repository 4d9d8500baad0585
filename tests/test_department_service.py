from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.domain.models import (
    Department,
    DepartmentCreate,
    DepartmentFilters,
    DepartmentUpdate,
    PaginationParams,
    User,
)
from app.domain.results import ErrorCode
from app.infra.events import DEPARTMENTS_VIEW_PATH
from app.services.department_service import DepartmentService


class RecordingInvalidator:
    def __init__(self) -> None:
        self.paths: list[str] = []

    def invalidate(self, path: str) -> None:
        self.paths.append(path)


@pytest.fixture()
def test_engine(tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "department_service_test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def invalidator() -> RecordingInvalidator:
    return RecordingInvalidator()


@pytest.fixture()
def service(test_engine: Engine, invalidator: RecordingInvalidator) -> DepartmentService:
    return DepartmentService(engine=test_engine, invalidator=invalidator)


def _create(service: DepartmentService, name: str, parent_id: str | None = None) -> str:
    result = service.create_department(DepartmentCreate(name=name, parent_id=parent_id))
    assert result.success, result.error
    return result.data.id


def _department(engine: Engine, department_id: str) -> Department | None:
    with Session(engine) as session:
        return session.get(Department, department_id)


def _add_user(engine: Engine, name: str, department_id: str) -> str:
    with Session(engine, expire_on_commit=False) as session:
        user = User(name=name, email=f"{name.lower()}@example.com", department_id=department_id)
        session.add(user)
        session.commit()
    return user.id


def test_reparenting_root_under_its_child_is_rejected(
    service: DepartmentService,
    test_engine: Engine,
) -> None:
    engineering = _create(service, "Engineering")
    backend = _create(service, "Backend", parent_id=engineering)

    result = service.update_department(DepartmentUpdate(id=engineering, parent_id=backend))

    assert result.success is False
    assert result.code == ErrorCode.CIRCULAR_HIERARCHY
    stored = _department(test_engine, engineering)
    assert stored is not None and stored.parent_id is None


def test_department_cannot_be_its_own_parent(service: DepartmentService) -> None:
    engineering = _create(service, "Engineering")
    result = service.update_department(DepartmentUpdate(id=engineering, parent_id=engineering))
    assert result.code == ErrorCode.CIRCULAR_HIERARCHY


def test_create_department_validation(
    service: DepartmentService,
    invalidator: RecordingInvalidator,
) -> None:
    assert service.create_department(DepartmentCreate(name="  ")).code == ErrorCode.REQUIRED_NAME
    assert service.create_department(DepartmentCreate()).code == ErrorCode.REQUIRED_NAME
    missing_parent = service.create_department(DepartmentCreate(name="Ops", parent_id="nope"))
    assert missing_parent.code == ErrorCode.PARENT_NOT_FOUND
    assert invalidator.paths == []

    created = service.create_department(DepartmentCreate(name=" Ops ", description="Operations"))
    assert created.success
    assert created.data.name == "Ops"
    assert created.data.user_count == 0
    assert invalidator.paths == [DEPARTMENTS_VIEW_PATH]


def test_update_department_checks_in_order(service: DepartmentService) -> None:
    engineering = _create(service, "Engineering")

    assert service.update_department(DepartmentUpdate(id="nope", name="x")).code == ErrorCode.NOT_FOUND
    blank_and_missing = DepartmentUpdate(id=engineering, name="", parent_id="nope")
    assert service.update_department(blank_and_missing).code == ErrorCode.REQUIRED_NAME
    missing_parent = DepartmentUpdate(id=engineering, parent_id="nope")
    assert service.update_department(missing_parent).code == ErrorCode.PARENT_NOT_FOUND


def test_update_department_is_partial(service: DepartmentService, test_engine: Engine) -> None:
    engineering = _create(service, "Engineering")
    backend = _create(service, "Backend", parent_id=engineering)

    result = service.update_department(DepartmentUpdate(id=backend, description="APIs"))

    assert result.success
    stored = _department(test_engine, backend)
    assert stored is not None
    assert stored.name == "Backend"
    assert stored.description == "APIs"
    assert stored.parent_id == engineering

    detached = service.update_department(DepartmentUpdate(id=backend, parent_id=None))
    assert detached.success
    assert detached.data.parent is None
    assert _department(test_engine, backend).parent_id is None


def test_get_department_with_relations(service: DepartmentService, test_engine: Engine) -> None:
    engineering = _create(service, "Engineering")
    _create(service, "Frontend", parent_id=engineering)
    _create(service, "Backend", parent_id=engineering)
    _add_user(test_engine, "Ada", engineering)

    result = service.get_department(engineering)

    assert result.success
    detail = result.data
    assert detail.parent is None
    assert [child.name for child in detail.children] == ["Backend", "Frontend"]
    assert [user.name for user in detail.users] == ["Ada"]
    assert detail.user_count == 1

    assert service.get_department("nope").code == ErrorCode.NOT_FOUND


def test_delete_department_guards(
    service: DepartmentService,
    test_engine: Engine,
    invalidator: RecordingInvalidator,
) -> None:
    engineering = _create(service, "Engineering")
    backend = _create(service, "Backend", parent_id=engineering)
    user_id = _add_user(test_engine, "Ada", engineering)
    invalidator.paths.clear()

    has_users = service.delete_department(engineering)
    assert has_users.code == ErrorCode.HAS_USERS

    with Session(test_engine) as session:
        user = session.get(User, user_id)
        user.department_id = None
        session.add(user)
        session.commit()

    has_children = service.delete_department(engineering)
    assert has_children.code == ErrorCode.HAS_CHILDREN
    assert _department(test_engine, engineering) is not None
    assert invalidator.paths == []

    assert service.delete_department(backend).success
    assert service.delete_department(engineering).success
    assert _department(test_engine, engineering) is None
    assert service.delete_department(engineering).code == ErrorCode.NOT_FOUND


def test_hierarchy_groups_children_with_user_counts(service: DepartmentService, test_engine: Engine) -> None:
    engineering = _create(service, "Engineering")
    _create(service, "Sales")
    backend = _create(service, "Backend", parent_id=engineering)
    _create(service, "Api", parent_id=backend)
    _create(service, "Frontend", parent_id=engineering)
    _add_user(test_engine, "Ada", backend)
    _add_user(test_engine, "Linus", backend)

    result = service.get_hierarchy()

    assert result.success
    roots = result.data
    assert [root.name for root in roots] == ["Engineering", "Sales"]
    assert [child.name for child in roots[0].children] == ["Backend", "Frontend"]
    backend_node = roots[0].children[0]
    assert backend_node.user_count == 2
    assert [child.name for child in backend_node.children] == ["Api"]
    assert roots[1].children == []


def test_list_departments_filters(service: DepartmentService) -> None:
    engineering = _create(service, "Engineering")
    _create(service, "Backend", parent_id=engineering)
    _create(service, "Sales")

    roots = service.list_departments(DepartmentFilters(roots_only=True))
    assert [item.name for item in roots.data.items] == ["Engineering", "Sales"]
    assert [child.name for child in roots.data.items[0].children] == ["Backend"]

    children = service.list_departments(DepartmentFilters(parent_id=engineering))
    assert [item.name for item in children.data.items] == ["Backend"]

    searched = service.list_departments(
        DepartmentFilters(search="ENG"),
        PaginationParams(page=1, page_size=1),
    )
    assert searched.data.total == 1
    assert searched.data.total_pages == 1
    assert searched.data.items[0].name == "Engineering"
