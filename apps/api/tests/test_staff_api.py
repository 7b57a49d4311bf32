from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import create_access_token, verify_password
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.staff.models import Department, Role, Staff, StaffRole, User
from app.staff.service import PASSWORD_ALPHABET, generate_password, next_employee_id, username_from_email


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("PASSWORD_HASH_ROUNDS", "4")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _headers(db_session: Session, username: str, role: str) -> dict[str, str]:
    user = User(username=username, password_hash="unused", full_name=username.title(), role=role)
    db_session.add(user)
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.username, user.role)}"}


@pytest.fixture()
def admin_headers(db_session: Session) -> dict[str, str]:
    return _headers(db_session, "office.admin", "ADMIN")


@pytest.fixture()
def staff_headers(db_session: Session) -> dict[str, str]:
    return _headers(db_session, "tax.junior", "STAFF")


def _department(client: TestClient, headers: dict[str, str], name: str = "Tax Advisory") -> dict:
    response = client.post("/api/departments", json={"name": name, "description": "Direct and indirect tax"}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _role(client: TestClient, headers: dict[str, str], name: str, role_type: str) -> dict:
    response = client.post("/api/roles", json={"name": name, "type": role_type}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _staff(client: TestClient, headers: dict[str, str], department_id: str, **overrides: object) -> dict:
    payload = {
        "firstName": "Hiruni",
        "lastName": "Weerasinghe",
        "email": "hiruni.w@acmeltd.com",
        "departmentId": department_id,
        "createUserAccount": False,
    }
    payload.update(overrides)
    response = client.post("/api/staff", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


# departments


def test_department_lifecycle(client: TestClient, admin_headers: dict[str, str]) -> None:
    created = _department(client, admin_headers)
    assert created["name"] == "Tax Advisory"
    assert created["isActive"] is True
    assert created["staffCount"] == 0

    updated = client.put(
        f"/api/departments/{created['id']}",
        json={"name": "Tax & Compliance", "description": None},
        headers=admin_headers,
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["name"] == "Tax & Compliance"
    assert updated.json()["data"]["description"] is None

    deleted = client.delete(f"/api/departments/{created['id']}", headers=admin_headers)
    assert deleted.status_code == 200
    assert deleted.json()["message"] == "Department deleted successfully"
    assert deleted.json()["data"]["isActive"] is False

    active = client.get("/api/departments", headers=admin_headers).json()["data"]
    everything = client.get("/api/departments/all", headers=admin_headers).json()["data"]
    assert active == []
    assert [item["name"] for item in everything] == ["Tax & Compliance"]


def test_department_name_is_required_and_unique(client: TestClient, admin_headers: dict[str, str]) -> None:
    _department(client, admin_headers, "Audit")

    blank = client.post("/api/departments", json={"name": "  "}, headers=admin_headers)
    duplicate = client.post("/api/departments", json={"name": "Audit"}, headers=admin_headers)

    assert blank.status_code == 400
    assert blank.json()["message"] == "Department name is required"
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Department with this name already exists"


def test_department_with_staff_cannot_be_deleted(client: TestClient, admin_headers: dict[str, str]) -> None:
    department = _department(client, admin_headers)
    _staff(client, admin_headers, department["id"])

    response = client.delete(f"/api/departments/{department['id']}", headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Cannot delete department with staff members. Please reassign staff first."
    listed = client.get("/api/departments", headers=admin_headers).json()["data"]
    assert listed[0]["staffCount"] == 1


def test_department_mutations_require_admin(client: TestClient, staff_headers: dict[str, str]) -> None:
    response = client.post("/api/departments", json={"name": "Payroll"}, headers=staff_headers)

    assert response.status_code == 403
    assert client.get("/api/departments", headers=staff_headers).status_code == 200


def test_unknown_department_is_404(client: TestClient, admin_headers: dict[str, str]) -> None:
    missing = client.put(f"/api/departments/{uuid.uuid4()}", json={"name": "Ghost"}, headers=admin_headers)
    malformed = client.delete("/api/departments/abc", headers=admin_headers)

    assert missing.status_code == 404
    assert missing.json()["message"] == "Department not found"
    assert malformed.status_code == 404


# roles


def test_role_create_requires_name_and_type(client: TestClient, admin_headers: dict[str, str]) -> None:
    response = client.post("/api/roles", json={"name": "Senior Associate"}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["code"] == "role_create_failed"
    assert response.json()["message"] == "Role name and type are required"


def test_role_name_and_type_are_unique(client: TestClient, admin_headers: dict[str, str]) -> None:
    _role(client, admin_headers, "Engagement Manager", "MANAGER")

    same_name = client.post("/api/roles", json={"name": "Engagement Manager", "type": "PARTNER"}, headers=admin_headers)
    same_type = client.post("/api/roles", json={"name": "Practice Manager", "type": "MANAGER"}, headers=admin_headers)

    assert same_name.json()["message"] == "Role with this name already exists"
    assert same_type.json()["message"] == "Role with this type already exists"


def test_role_update_may_keep_its_own_name(client: TestClient, admin_headers: dict[str, str]) -> None:
    role = _role(client, admin_headers, "Tax Partner", "PARTNER")

    response = client.put(
        f"/api/roles/{role['id']}",
        json={"name": "Tax Partner", "type": "PARTNER", "description": "Signs off returns"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"]["description"] == "Signs off returns"


def test_assigned_role_cannot_be_deleted(client: TestClient, admin_headers: dict[str, str]) -> None:
    department = _department(client, admin_headers)
    role = _role(client, admin_headers, "Supervisor", "SUPERVISOR")
    _staff(client, admin_headers, department["id"], roleIds=[role["id"]])

    blocked = client.delete(f"/api/roles/{role['id']}", headers=admin_headers)

    assert blocked.status_code == 400
    assert blocked.json()["message"] == "Cannot delete role that is assigned to staff members. Please reassign staff first."
    listed = client.get("/api/roles", headers=admin_headers).json()["data"]
    assert listed[0]["assignmentCount"] == 1


def test_unassigned_role_is_hard_deleted(client: TestClient, db_session: Session, admin_headers: dict[str, str]) -> None:
    role = _role(client, admin_headers, "HR Officer", "HR")

    response = client.delete(f"/api/roles/{role['id']}", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Role deleted successfully"}
    assert db_session.get(Role, uuid.UUID(role["id"])) is None
    assert client.delete(f"/api/roles/{role['id']}", headers=admin_headers).json()["message"] == "Role not found"


# staff


def test_create_staff_generates_employee_id_and_account(
    client: TestClient,
    db_session: Session,
    admin_headers: dict[str, str],
) -> None:
    department = _department(client, admin_headers)
    role = _role(client, admin_headers, "Associate", "STAFF")

    body = _staff(
        client,
        admin_headers,
        department["id"],
        roleIds=[role["id"], role["id"]],
        createUserAccount=True,
        hireDate="2024-02-01",
    )

    data = body["data"]
    assert data["employeeId"] == f"EMP{date.today():%y}0001"
    assert data["hireDate"] == "2024-02-01"
    assert data["status"] == "ACTIVE"
    assert data["department"]["name"] == "Tax Advisory"
    assert [item["role"]["name"] for item in data["roles"]] == ["Associate"]
    credentials = body["userCredentials"]
    assert credentials["username"] == "hiruni.w"
    assert credentials["email"] == "hiruni.w@acmeltd.com"
    assert len(credentials["password"]) == 12
    assert data["user"]["username"] == "hiruni.w"

    account = db_session.scalar(select(User).where(User.username == "hiruni.w"))
    assert account is not None
    assert account.role == "STAFF"
    assert account.full_name == "Hiruni Weerasinghe"
    assert verify_password(credentials["password"], account.password_hash)


def test_create_staff_without_account_returns_no_credentials(client: TestClient, admin_headers: dict[str, str]) -> None:
    department = _department(client, admin_headers)

    body = _staff(client, admin_headers, department["id"], employeeId="EMP-CUSTOM-7")

    assert body["userCredentials"] is None
    assert body["data"]["userId"] is None
    assert body["data"]["employeeId"] == "EMP-CUSTOM-7"


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"firstName": ""}, "First name, last name, email, and department are required"),
        ({"departmentId": None}, "First name, last name, email, and department are required"),
        ({"email": "not-an-email"}, "Valid email format required"),
        ({"departmentId": "00000000-0000-4000-8000-000000000000"}, "Department not found"),
        ({"roleIds": ["00000000-0000-4000-8000-000000000001"]}, "One or more roles not found"),
    ],
)
def test_create_staff_rejects_invalid_payload(
    client: TestClient,
    admin_headers: dict[str, str],
    overrides: dict,
    message: str,
) -> None:
    department = _department(client, admin_headers)
    payload = {
        "firstName": "Sahan",
        "lastName": "Rajapaksha",
        "email": "sahan@acmeltd.com",
        "departmentId": department["id"],
        "createUserAccount": False,
    }
    payload.update(overrides)

    response = client.post("/api/staff", json=payload, headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["code"] == "staff_create_failed"
    assert response.json()["message"] == message


def test_create_staff_rejects_duplicate_email_and_employee_id(client: TestClient, admin_headers: dict[str, str]) -> None:
    department = _department(client, admin_headers)
    _staff(client, admin_headers, department["id"], employeeId="EMP240099")

    same_email = client.post(
        "/api/staff",
        json={"firstName": "A", "lastName": "B", "email": "hiruni.w@acmeltd.com", "departmentId": department["id"]},
        headers=admin_headers,
    )
    same_employee_id = client.post(
        "/api/staff",
        json={
            "firstName": "A",
            "lastName": "B",
            "email": "other@acmeltd.com",
            "departmentId": department["id"],
            "employeeId": "EMP240099",
            "createUserAccount": False,
        },
        headers=admin_headers,
    )

    assert same_email.json()["message"] == "Staff member with this email already exists"
    assert same_employee_id.json()["message"] == "Employee ID already exists"


def test_create_staff_conflicting_username_is_rejected(client: TestClient, db_session: Session, admin_headers: dict[str, str]) -> None:
    department = _department(client, admin_headers)
    db_session.add(User(username="hiruni.w", password_hash="unused", role="STAFF"))
    db_session.commit()

    response = client.post(
        "/api/staff",
        json={
            "firstName": "Hiruni",
            "lastName": "Weerasinghe",
            "email": "hiruni.w@acmeltd.com",
            "departmentId": department["id"],
            "createUserAccount": True,
        },
        headers=admin_headers,
    )

    assert response.status_code == 409
    assert db_session.scalar(select(Staff)) is None


def test_list_staff_filters_and_searches(client: TestClient, admin_headers: dict[str, str]) -> None:
    tax = _department(client, admin_headers, "Tax Advisory")
    audit = _department(client, admin_headers, "Audit & Assurance")
    partner = _role(client, admin_headers, "Partner", "PARTNER")
    _staff(client, admin_headers, tax["id"], firstName="Anura", email="anura@acmeltd.com", roleIds=[partner["id"]])
    _staff(client, admin_headers, audit["id"], firstName="Bimal", email="bimal@acmeltd.com", status="STUDY_LEAVE")
    _staff(client, admin_headers, audit["id"], firstName="Chathu", email="chathu@acmeltd.com")

    def names(**params: str) -> list[str]:
        response = client.get("/api/staff", params={"sortBy": "firstName", "sortOrder": "asc", **params}, headers=admin_headers)
        assert response.status_code == 200
        return [item["firstName"] for item in response.json()["data"]]

    assert names() == ["Anura", "Bimal", "Chathu"]
    assert names(department=audit["id"]) == ["Bimal", "Chathu"]
    assert names(status="STUDY_LEAVE") == ["Bimal"]
    assert names(role=partner["id"]) == ["Anura"]
    assert names(search="CHATHU@") == ["Chathu"]

    paged = client.get("/api/staff", params={"limit": 2, "page": 2}, headers=admin_headers).json()
    assert paged["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}


def test_list_staff_rejects_malformed_filter_ids(client: TestClient, admin_headers: dict[str, str]) -> None:
    response = client.get("/api/staff", params={"department": "tax"}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid department: tax"


def test_update_staff_replaces_roles_when_supplied(client: TestClient, admin_headers: dict[str, str]) -> None:
    department = _department(client, admin_headers)
    first = _role(client, admin_headers, "Associate", "STAFF")
    second = _role(client, admin_headers, "Supervisor", "SUPERVISOR")
    created = _staff(client, admin_headers, department["id"], roleIds=[first["id"]])["data"]

    response = client.put(
        f"/api/staff/{created['id']}",
        json={"phone": "+94 77 123 4567", "status": "RESIGNED", "resignDate": "2024-09-30", "roleIds": [second["id"]]},
        headers=admin_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["phone"] == "+94 77 123 4567"
    assert data["status"] == "RESIGNED"
    assert data["resignDate"] == "2024-09-30"
    assert data["firstName"] == "Hiruni"
    assert [item["role"]["type"] for item in data["roles"]] == ["SUPERVISOR"]

    untouched = client.put(f"/api/staff/{created['id']}", json={"lastName": "Fonseka"}, headers=admin_headers)
    assert [item["role"]["type"] for item in untouched.json()["data"]["roles"]] == ["SUPERVISOR"]


def test_update_staff_rejects_taken_email(client: TestClient, admin_headers: dict[str, str]) -> None:
    department = _department(client, admin_headers)
    _staff(client, admin_headers, department["id"], email="first@acmeltd.com")
    second = _staff(client, admin_headers, department["id"], email="second@acmeltd.com")["data"]

    response = client.put(f"/api/staff/{second['id']}", json={"email": "first@acmeltd.com"}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Email already exists"


def test_delete_staff_is_soft(client: TestClient, db_session: Session, admin_headers: dict[str, str]) -> None:
    department = _department(client, admin_headers)
    created = _staff(client, admin_headers, department["id"])["data"]

    response = client.delete(f"/api/staff/{created['id']}", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["message"] == "Staff member deleted successfully"
    assert response.json()["data"]["isActive"] is False
    assert client.get(f"/api/staff/{created['id']}", headers=admin_headers).status_code == 200


def test_assign_roles_is_additive_and_skips_duplicates(
    client: TestClient,
    db_session: Session,
    admin_headers: dict[str, str],
) -> None:
    department = _department(client, admin_headers)
    first = _role(client, admin_headers, "Associate", "STAFF")
    second = _role(client, admin_headers, "HR Partner", "HR")
    created = _staff(client, admin_headers, department["id"], roleIds=[first["id"]])["data"]

    response = client.post(
        f"/api/staff/{created['id']}/roles",
        json={"roleIds": [first["id"], second["id"]]},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert sorted(item["role"]["type"] for item in response.json()["data"]["roles"]) == ["HR", "STAFF"]
    assert len(db_session.scalars(select(StaffRole)).all()) == 2

    missing = client.post(f"/api/staff/{created['id']}/roles", json={}, headers=admin_headers)
    assert missing.status_code == 400
    assert missing.json()["message"] == "Role IDs array is required"


def test_remove_role_from_staff(client: TestClient, admin_headers: dict[str, str]) -> None:
    department = _department(client, admin_headers)
    role = _role(client, admin_headers, "Associate", "STAFF")
    created = _staff(client, admin_headers, department["id"], roleIds=[role["id"]])["data"]

    response = client.delete(f"/api/staff/{created['id']}/roles/{role['id']}", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["data"]["roles"] == []


def test_staff_routes_require_authentication_and_404_unknown(client: TestClient, staff_headers: dict[str, str]) -> None:
    assert client.get("/api/staff").status_code == 401
    missing = client.get(f"/api/staff/{uuid.uuid4()}", headers=staff_headers)
    assert missing.status_code == 404
    assert missing.json()["message"] == "Staff member not found"


# helpers


def test_next_employee_id_continues_highest_sequence(db_session: Session) -> None:
    department = Department(name="Payroll")
    db_session.add(department)
    db_session.flush()
    for employee_id, email in (("EMP240007", "a@acmeltd.com"), ("EMP240002", "b@acmeltd.com"), ("EMP23X", "c@acmeltd.com")):
        db_session.add(
            Staff(employee_id=employee_id, first_name="A", last_name="B", email=email, department_id=department.id)
        )
    db_session.commit()

    assert next_employee_id(db_session, date(2024, 3, 1)) == "EMP240008"
    assert next_employee_id(db_session, date(2025, 1, 1)) == "EMP250001"


def test_generated_passwords_use_allowed_alphabet() -> None:
    password = generate_password()

    assert len(password) == 12
    assert set(password) <= set(PASSWORD_ALPHABET)


def test_username_from_email() -> None:
    assert username_from_email("dilhan.k@acmeltd.com") == "dilhan.k"
