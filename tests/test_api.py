from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from app import main as app_main
from app.domain.models import UserCreate, UserRole
from app.infra import db
from app.services.user_service import UserService


class RecordingInvalidator:
    def __init__(self) -> None:
        self.paths: list[str] = []

    def invalidate(self, path: str) -> None:
        self.paths.append(path)


@pytest.fixture()
def api_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "api_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)

    client = TestClient(app_main.app)
    yield client
    client.close()
    app_main.app.dependency_overrides.clear()


def _seed_user(email: str, role: UserRole, password: str = "Secret123") -> str:
    service = UserService(invalidator=RecordingInvalidator())
    result = service.create_user(
        UserCreate(name=role.value.title(), email=email, password=password, role=role)
    )
    assert result.success, result.error
    return result.data.id


def _seed_admin(email: str = "admin@example.com", password: str = "Secret123") -> str:
    return _seed_user(email, UserRole.ADMIN, password)


def _login(client: TestClient, email: str = "admin@example.com", password: str = "Secret123") -> dict[str, str]:
    response = client.post("/api/auth/dev-login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_dev_login_and_bearer_required(api_client: TestClient) -> None:
    admin_id = _seed_admin()

    assert api_client.get("/api/users").status_code == 401
    bad = api_client.post("/api/auth/dev-login", json={"email": "admin@example.com", "password": "wrong"})
    assert bad.status_code == 401

    response = api_client.post("/api/auth/dev-login", json={"email": "ADMIN@example.com", "password": "Secret123"})
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == admin_id
    assert body["token_type"] == "bearer"

    invalid = api_client.get("/api/users", headers={"Authorization": "Bearer not-a-token"})
    assert invalid.status_code == 401


def test_user_endpoints_return_uniform_result(api_client: TestClient) -> None:
    _seed_admin()
    headers = _login(api_client)

    weak = api_client.post(
        "/api/users",
        json={"name": "Ann", "email": "ann@example.com", "password": "weakpassword"},
        headers=headers,
    )
    assert weak.status_code == 422
    assert weak.json() == {
        "success": False,
        "error": weak.json()["error"],
        "code": "PASSWORD_WEAK",
    }

    created = api_client.post(
        "/api/users",
        json={"name": "Ann", "email": "Ann@Example.com", "password": "Secret123"},
        headers=headers,
    )
    assert created.status_code == 201
    user = created.json()["data"]
    assert user["email"] == "ann@example.com"
    assert user["role_ref"] == {"kind": "user", "value": "USER"}
    assert user["manager_id"] is None

    duplicate = api_client.post(
        "/api/users",
        json={"name": "Ann", "email": "ann@example.com", "password": "Secret123"},
        headers=headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "EMAIL_EXISTS"

    self_managed = api_client.patch(f"/api/users/{user['id']}", json={"manager_id": user["id"]}, headers=headers)
    assert self_managed.status_code == 409
    assert self_managed.json()["code"] == "CIRCULAR_REFERENCE"

    renamed = api_client.patch(f"/api/users/{user['id']}", json={"phone": "555-0100"}, headers=headers)
    assert renamed.status_code == 200
    assert renamed.json()["data"]["name"] == "Ann"
    assert renamed.json()["data"]["phone"] == "555-0100"

    listed = api_client.get("/api/users", params={"status": "ACTIVE", "page_size": 1}, headers=headers)
    assert listed.status_code == 200
    page = listed.json()["data"]
    assert page["total"] == 2
    assert page["total_pages"] == 2
    assert len(page["items"]) == 1

    assert api_client.get("/api/users", params={"page_size": 0}, headers=headers).status_code == 422

    managers = api_client.get("/api/users/managers", headers=headers)
    assert [item["name"] for item in managers.json()["data"]] == ["Admin"]

    missing = api_client.get("/api/users/nope", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"

    banned = api_client.post(f"/api/users/{user['id']}/ban", json={"reason": "spam"}, headers=headers)
    assert banned.json()["data"]["status"] == "SUSPENDED"

    deleted = api_client.delete(f"/api/users/{user['id']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json() == {"success": True}


def test_department_cycle_and_hierarchy_over_http(api_client: TestClient) -> None:
    _seed_admin()
    headers = _login(api_client)

    engineering = api_client.post("/api/departments", json={"name": "Engineering"}, headers=headers).json()["data"]
    backend = api_client.post(
        "/api/departments",
        json={"name": "Backend", "parent_id": engineering["id"]},
        headers=headers,
    ).json()["data"]

    cycle = api_client.patch(
        f"/api/departments/{engineering['id']}",
        json={"parent_id": backend["id"]},
        headers=headers,
    )
    assert cycle.status_code == 409
    assert cycle.json()["code"] == "CIRCULAR_HIERARCHY"

    missing_parent = api_client.post(
        "/api/departments",
        json={"name": "Ops", "parent_id": "nope"},
        headers=headers,
    )
    assert missing_parent.status_code == 404
    assert missing_parent.json()["code"] == "PARENT_NOT_FOUND"

    hierarchy = api_client.get("/api/departments/hierarchy", headers=headers).json()["data"]
    assert [node["name"] for node in hierarchy] == ["Engineering"]
    assert hierarchy[0]["parent_id"] is None
    assert [node["name"] for node in hierarchy[0]["children"]] == ["Backend"]

    blocked = api_client.delete(f"/api/departments/{engineering['id']}", headers=headers)
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "HAS_CHILDREN"


def test_organization_membership_over_http(api_client: TestClient) -> None:
    owner_id = _seed_admin()
    headers = _login(api_client)

    created = api_client.post("/api/organizations", json={"name": "Acme", "slug": "acme"}, headers=headers)
    assert created.status_code == 201
    organization = created.json()["data"]
    assert organization["members"][0]["user_id"] == owner_id
    assert organization["members"][0]["role_ref"] == {"kind": "organization", "value": "OWNER"}

    org_id = organization["id"]
    first = api_client.post(f"/api/organizations/{org_id}/invitations", json={"email": "a@x.com"}, headers=headers)
    assert first.status_code == 201
    assert first.json()["data"]["status"] == "PENDING"

    second = api_client.post(f"/api/organizations/{org_id}/invitations", json={"email": "a@x.com"}, headers=headers)
    assert second.status_code == 409
    assert second.json()["code"] == "INVITATION_EXISTS"

    remove_owner = api_client.delete(f"/api/organizations/{org_id}/members/{owner_id}", headers=headers)
    assert remove_owner.status_code == 409
    assert remove_owner.json()["code"] == "CANNOT_REMOVE_OWNER"

    _seed_admin("outsider@example.com")
    outsider = _login(api_client, "outsider@example.com")
    forbidden = api_client.post(
        f"/api/organizations/{org_id}/invitations",
        json={"email": "b@x.com"},
        headers=outsider,
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "INSUFFICIENT_PERMISSIONS"

    detail = api_client.get(f"/api/organizations/{org_id}", headers=headers).json()["data"]
    assert detail["member_count"] == 1
    assert [item["email"] for item in detail["invitations"]] == ["a@x.com"]

    assert api_client.get("/api/organizations/nope", headers=headers).status_code == 404


def test_plain_user_token_is_kept_out_of_admin_routes(api_client: TestClient) -> None:
    admin_id = _seed_admin()
    admin = _login(api_client)
    org_id = api_client.post(
        "/api/organizations",
        json={"name": "Acme", "slug": "acme"},
        headers=admin,
    ).json()["data"]["id"]
    invitation = api_client.post(
        f"/api/organizations/{org_id}/invitations",
        json={"email": "plain@example.com"},
        headers=admin,
    ).json()["data"]

    _seed_user("plain@example.com", UserRole.USER)
    plain = _login(api_client, "plain@example.com")

    ban = api_client.post(f"/api/users/{admin_id}/ban", json={"reason": "spam"}, headers=plain)
    assert ban.status_code == 403
    assert api_client.delete(f"/api/organizations/{org_id}", headers=plain).status_code == 403
    assert api_client.get("/api/departments", headers=plain).status_code == 403
    assert api_client.get("/api/users", headers=plain).status_code == 403
    assert api_client.get(f"/api/users/{admin_id}", headers=admin).json()["data"]["banned"] is False

    accepted = api_client.post(
        f"/api/organizations/invitations/{invitation['id']}/respond",
        json={"accept": True},
        headers=plain,
    )
    assert accepted.status_code == 200
    assert accepted.json()["data"]["status"] == "ACCEPTED"


def test_platform_admin_still_needs_organization_role(api_client: TestClient) -> None:
    _seed_admin()
    owner = _login(api_client)
    org_id = api_client.post(
        "/api/organizations",
        json={"name": "Acme", "slug": "acme"},
        headers=owner,
    ).json()["data"]["id"]

    _seed_user("manager@example.com", UserRole.MANAGER)
    manager = _login(api_client, "manager@example.com")

    renamed = api_client.patch(f"/api/organizations/{org_id}", json={"name": "Taken"}, headers=manager)
    assert renamed.status_code == 403
    assert renamed.json()["code"] == "INSUFFICIENT_PERMISSIONS"
    deleted = api_client.delete(f"/api/organizations/{org_id}", headers=manager)
    assert deleted.status_code == 403

    assert api_client.delete(f"/api/organizations/{org_id}", headers=owner).status_code == 200
