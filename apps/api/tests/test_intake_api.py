from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.audit.models import AuditLog
from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.intake.models import ClientIntake, RelatedParty, utcnow
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.staff.models import User


DELETE_PASSCODE = "ledger-close-2024"


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
    monkeypatch.setenv("DELETE_PASSCODE", DELETE_PASSCODE)
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


@pytest.fixture()
def staff_user(db_session: Session) -> User:
    user = User(username="nperera", password_hash="unused", full_name="Nadeesha Perera", role="STAFF")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def auth_headers(staff_user: User) -> dict[str, str]:
    token = create_access_token(str(staff_user.id), staff_user.username, staff_user.role)
    return {"Authorization": f"Bearer {token}"}


def _payload(**overrides: object) -> dict:
    payload = {
        "legalName": "Acme Holdings (Pvt) Ltd",
        "tradeName": "Acme",
        "type": "COMPANY",
        "ownerName": "Ruwan Fernando",
        "address": "12 Galle Road, Colombo 03",
        "city": "Colombo",
        "email": "accounts@acmeltd.com",
        "companySecretary": "Corporate Secretaries (Pvt) Ltd",
        "servicesSelected": ["Direct Tax", "Accounts"],
        "directTaxSubcategories": ["Income Taxes"],
        "incomeTaxTypes": ["CIT"],
        "serviceFrequencies": {"Accounts": "Monthly"},
        "taxReturnYears": {"Income Taxes": ["2022", "2023"]},
        "ramisStatus": "AVAILABLE",
        "consent": True,
        "relatedParties": [
            {"name": "Ruwan Fernando", "relationship": "Director", "email": "ruwan@acmeltd.com"},
            {"name": "Dilani Jayasuriya", "relationship": "Shareholder", "tin": "114-556-778"},
        ],
    }
    payload.update(overrides)
    return payload


def _create(client: TestClient, headers: dict[str, str] | None = None, **overrides: object) -> dict:
    response = client.post("/api/intake", json=_payload(**overrides), headers=headers or {})
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_create_intake_persists_record_and_related_parties(client: TestClient, db_session: Session, auth_headers: dict[str, str]) -> None:
    response = client.post("/api/intake", json=_payload(), headers=auth_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Client intake submitted successfully"
    data = body["data"]
    assert data["legalName"] == "Acme Holdings (Pvt) Ltd"
    assert data["createdBy"] == "nperera"
    assert data["clientPriority"] == "MEDIUM"
    assert data["preferredCurrency"] == "USD"
    assert data["rowVersion"] == 1
    assert data["submittedAt"] is not None
    assert {party["name"] for party in data["relatedParties"]} == {"Ruwan Fernando", "Dilani Jayasuriya"}

    stored = db_session.scalar(select(ClientIntake).where(ClientIntake.id == uuid.UUID(data["id"])))
    assert stored is not None
    assert stored.services_selected == ["Direct Tax", "Accounts"]
    assert len(db_session.scalars(select(RelatedParty)).all()) == 2


def test_anonymous_submission_records_unknown_creator(client: TestClient, db_session: Session) -> None:
    data = _create(client)

    assert data["createdBy"] == "unknown"
    entry = db_session.scalar(select(AuditLog).where(AuditLog.action == "CREATE"))
    assert entry is not None
    assert entry.user_id is None
    assert entry.old_values is None
    assert entry.new_values["id"] == data["id"]
    assert entry.client_intake_id == uuid.UUID(data["id"])


def test_invalid_bearer_token_on_submission_is_rejected(client: TestClient) -> None:
    response = client.post("/api/intake", json=_payload(), headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_create_reports_every_missing_required_field(client: TestClient) -> None:
    response = client.post("/api/intake", json={})

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "intake_create_failed"
    assert body["message"] == "Validation failed"
    messages = {item["field"]: item["message"] for item in body["details"]}
    assert messages == {
        "legalName": "Legal name is required",
        "type": "Invalid client type",
        "ownerName": "Owner/Primary contact name is required",
        "address": "Business address is required",
        "servicesSelected": "At least one service must be selected",
        "ramisStatus": "Invalid RAMIS status",
        "consent": "Consent must be given",
    }


def test_create_rejects_malformed_email_and_string_consent(client: TestClient) -> None:
    response = client.post("/api/intake", json=_payload(email="not-an-email", consent="true"))

    assert response.status_code == 400
    fields = {item["field"] for item in response.json()["details"]}
    assert fields == {"email", "consent"}


def test_cross_field_rules_run_after_basic_checks(client: TestClient) -> None:
    response = client.post(
        "/api/intake",
        json=_payload(
            servicesSelected=["Direct Tax", "Indirect Tax"],
            directTaxSubcategories=[],
            indirectTaxSubcategories=[],
            companySecretary="",
        ),
    )

    assert response.status_code == 400
    messages = [item["message"] for item in response.json()["details"]]
    assert messages == [
        "At least one Direct Tax subcategory must be selected",
        "At least one Indirect Tax subcategory must be selected",
        "Company Secretary is required for Company type",
    ]


def test_individual_direct_tax_client_without_tin_is_accepted(client: TestClient) -> None:
    data = _create(
        client,
        type="INDIVIDUAL",
        companySecretary=None,
        servicesSelected=["Direct Tax"],
        directTaxSubcategories=["Income Taxes"],
        incomeTaxTypes=["PIT"],
        relatedParties=[],
    )

    assert data["type"] == "INDIVIDUAL"
    assert data["tin"] is None
    assert data["relatedParties"] == []


def test_related_party_errors_are_indexed(client: TestClient) -> None:
    response = client.post(
        "/api/intake",
        json=_payload(relatedParties=[{"name": "Valid Person", "relationship": "Director"}, {"name": " ", "email": "bad"}]),
    )

    assert response.status_code == 400
    fields = {item["field"] for item in response.json()["details"]}
    assert fields == {"relatedParties[1].name", "relatedParties[1].relationship", "relatedParties[1].email"}


def test_get_intake_requires_authentication(client: TestClient) -> None:
    created = _create(client)

    response = client.get(f"/api/intake/{created['id']}")

    assert response.status_code == 401


def test_get_intake_returns_404_for_unknown_or_malformed_id(client: TestClient, auth_headers: dict[str, str]) -> None:
    missing = client.get(f"/api/intake/{uuid.uuid4()}", headers=auth_headers)
    malformed = client.get("/api/intake/not-a-uuid", headers=auth_headers)

    assert missing.status_code == 404
    assert missing.json()["message"] == "Client intake not found"
    assert malformed.status_code == 404


def test_update_replaces_scalars_and_related_parties(client: TestClient, db_session: Session, auth_headers: dict[str, str]) -> None:
    created = _create(client)

    response = client.put(
        f"/api/intake/{created['id']}",
        json={
            "notes": "Year-end pack requested",
            "clientPriority": "HIGH",
            "relatedParties": [{"name": "Sanjeewa Gunasekara", "relationship": "Partner"}],
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Client intake updated successfully"
    data = body["data"]
    assert data["notes"] == "Year-end pack requested"
    assert data["clientPriority"] == "HIGH"
    assert data["legalName"] == created["legalName"]
    assert data["updatedBy"] == "nperera"
    assert data["rowVersion"] == 2
    assert [party["name"] for party in data["relatedParties"]] == ["Sanjeewa Gunasekara"]
    assert len(db_session.scalars(select(RelatedParty)).all()) == 1

    entry = db_session.scalar(select(AuditLog).where(AuditLog.action == "UPDATE"))
    assert entry is not None
    assert entry.old_values["clientPriority"] == "MEDIUM"
    assert len(entry.old_values["relatedParties"]) == 2
    assert entry.new_values["clientPriority"] == "HIGH"


def test_update_with_empty_party_list_removes_all_parties(client: TestClient, auth_headers: dict[str, str]) -> None:
    created = _create(
        client,
        relatedParties=[
            {"name": "Party One", "relationship": "Director"},
            {"name": "Party Two", "relationship": "Partner"},
            {"name": "Party Three", "relationship": "Owner"},
        ],
    )

    response = client.put(f"/api/intake/{created['id']}", json={"relatedParties": []}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"]["relatedParties"] == []


def test_update_evaluates_cross_field_rules_against_stored_values(client: TestClient, auth_headers: dict[str, str]) -> None:
    created = _create(client)

    response = client.put(
        f"/api/intake/{created['id']}",
        json={"servicesSelected": ["Direct Tax", "Indirect Tax"]},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["code"] == "intake_update_failed"
    assert response.json()["details"] == [
        {"field": "indirectTaxSubcategories", "message": "At least one Indirect Tax subcategory must be selected"}
    ]


def test_update_rejects_invalid_supplied_enum(client: TestClient, auth_headers: dict[str, str]) -> None:
    created = _create(client)

    response = client.put(f"/api/intake/{created['id']}", json={"ramisStatus": "PENDING"}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["details"] == [{"field": "ramisStatus", "message": "Invalid RAMIS status"}]


def test_update_requires_authentication(client: TestClient) -> None:
    created = _create(client)

    response = client.put(f"/api/intake/{created['id']}", json={"notes": "x"})

    assert response.status_code == 401


def test_update_with_stale_row_version_conflicts(client: TestClient, auth_headers: dict[str, str]) -> None:
    created = _create(client)
    first = client.put(f"/api/intake/{created['id']}", json={"notes": "first", "rowVersion": 1}, headers=auth_headers)
    assert first.status_code == 200

    stale = client.put(f"/api/intake/{created['id']}", json={"notes": "second", "rowVersion": 1}, headers=auth_headers)

    assert stale.status_code == 409
    assert stale.json()["code"] == "intake_update_failed"


def test_update_of_soft_deleted_intake_returns_404(client: TestClient, auth_headers: dict[str, str]) -> None:
    created = _create(client)
    deleted = client.request(
        "DELETE",
        f"/api/intake/{created['id']}",
        json={"passcode": DELETE_PASSCODE},
        headers=auth_headers,
    )
    assert deleted.status_code == 200

    response = client.put(f"/api/intake/{created['id']}", json={"notes": "revive"}, headers=auth_headers)

    assert response.status_code == 404


def test_delete_requires_matching_passcode(client: TestClient, db_session: Session, auth_headers: dict[str, str]) -> None:
    created = _create(client)

    missing = client.delete(f"/api/intake/{created['id']}", headers=auth_headers)
    wrong = client.request("DELETE", f"/api/intake/{created['id']}", json={"passcode": "guess"}, headers=auth_headers)

    assert missing.status_code == 403
    assert wrong.status_code == 403
    assert wrong.json()["message"] == "Invalid delete passcode"
    stored = db_session.get(ClientIntake, uuid.UUID(created["id"]))
    assert stored is not None
    assert stored.deleted_at is None


def test_delete_requires_authentication_before_passcode(client: TestClient) -> None:
    created = _create(client)

    response = client.request("DELETE", f"/api/intake/{created['id']}", json={"passcode": DELETE_PASSCODE})

    assert response.status_code == 401


def test_soft_delete_hides_record_and_keeps_children(client: TestClient, db_session: Session, auth_headers: dict[str, str]) -> None:
    created = _create(client)

    response = client.request(
        "DELETE",
        f"/api/intake/{created['id']}",
        json={"passcode": DELETE_PASSCODE},
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Client intake deleted successfully"
    assert body["deletedBy"] == "nperera"
    assert body["deletedAt"] is not None

    assert client.get(f"/api/intake/{created['id']}", headers=auth_headers).status_code == 404
    listing = client.get("/api/intake", headers=auth_headers).json()
    assert listing["pagination"]["total"] == 0
    assert len(db_session.scalars(select(RelatedParty)).all()) == 2

    entry = db_session.scalar(select(AuditLog).where(AuditLog.action == "DELETE"))
    assert entry is not None
    assert entry.new_values is None
    assert entry.old_values["legalName"] == created["legalName"]


def test_list_paginates_with_shared_filter(client: TestClient, auth_headers: dict[str, str]) -> None:
    for index in range(25):
        _create(client, legalName=f"Client {index:02d} Ltd", email=f"client{index}@acmeltd.com")

    response = client.get("/api/intake", params={"page": 3, "limit": 10}, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert len(body["data"]) == 5
    assert body["pagination"] == {"page": 3, "limit": 10, "total": 25, "pages": 3}


def test_list_filters_by_type_service_tax_type_and_ramis(client: TestClient, auth_headers: dict[str, str]) -> None:
    _create(client, legalName="Company Direct")
    _create(
        client,
        legalName="Partnership Indirect",
        type="PARTNERSHIP",
        companySecretary=None,
        servicesSelected=["Indirect Tax"],
        directTaxSubcategories=[],
        indirectTaxSubcategories=["VAT"],
        incomeTaxTypes=[],
        ramisStatus="NOT_AVAILABLE",
    )

    def names(**params: str) -> set[str]:
        response = client.get("/api/intake", params=params, headers=auth_headers)
        assert response.status_code == 200
        return {item["legalName"] for item in response.json()["data"]}

    assert names(type="PARTNERSHIP") == {"Partnership Indirect"}
    assert names(service="Direct Tax") == {"Company Direct"}
    assert names(taxType="VAT") == {"Partnership Indirect"}
    assert names(taxType="CIT") == {"Company Direct"}
    assert names(ramisStatus="AVAILABLE") == {"Company Direct"}


def test_list_search_is_case_insensitive_over_name_email_and_owner(client: TestClient, auth_headers: dict[str, str]) -> None:
    _create(client, legalName="Lanka Spices Exporters", email="info@lankaspices.com", ownerName="Amaya Wickrama")
    _create(client, legalName="Harbour Logistics", email="ops@harbour.lk", ownerName="Tharindu Silva")

    def search(term: str) -> list[str]:
        response = client.get("/api/intake", params={"search": term}, headers=auth_headers)
        return [item["legalName"] for item in response.json()["data"]]

    assert search("spices") == ["Lanka Spices Exporters"]
    assert search("HARBOUR.LK") == ["Harbour Logistics"]
    assert search("tharindu") == ["Harbour Logistics"]
    assert search("100%") == []


def test_list_sorts_by_requested_column(client: TestClient, auth_headers: dict[str, str]) -> None:
    _create(client, legalName="Bravo Traders")
    _create(client, legalName="Alpha Traders")

    response = client.get("/api/intake", params={"sortBy": "legalName", "sortOrder": "asc"}, headers=auth_headers)

    assert [item["legalName"] for item in response.json()["data"]] == ["Alpha Traders", "Bravo Traders"]


def test_list_rejects_unknown_sort_column(client: TestClient, auth_headers: dict[str, str]) -> None:
    response = client.get("/api/intake", params={"sortBy": "password"}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["code"] == "intake_list_failed"
    assert response.json()["message"] == "Invalid sortBy value: password"


def test_list_rejects_out_of_range_paging(client: TestClient, auth_headers: dict[str, str]) -> None:
    assert client.get("/api/intake", params={"page": 0}, headers=auth_headers).status_code == 400
    assert client.get("/api/intake", params={"limit": 501}, headers=auth_headers).status_code == 400


def test_dashboard_stats_count_active_intakes(client: TestClient, db_session: Session, auth_headers: dict[str, str]) -> None:
    _create(client, legalName="Direct Only", clientPriority="HIGH")
    _create(
        client,
        legalName="Indirect Only",
        servicesSelected=["Indirect Tax", "Audit"],
        directTaxSubcategories=[],
        indirectTaxSubcategories=["SSCL"],
        ramisStatus="NOT_AVAILABLE",
    )
    old = _create(client, legalName="Audit Only", servicesSelected=["Audit"], directTaxSubcategories=[])
    db_session.execute(
        update(ClientIntake)
        .where(ClientIntake.id == uuid.UUID(old["id"]))
        .values(submitted_at=utcnow() - timedelta(days=30))
    )
    db_session.commit()

    response = client.get("/api/stats", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalClients"] == 3
    assert data["taxClients"] == 2
    assert data["directTaxCount"] == 1
    assert data["indirectTaxCount"] == 1
    assert data["recentClients"] == 2
    assert {"service": "Audit", "count": 2} in data["serviceBreakdown"]
    assert {"priority": "HIGH", "count": 1} in data["priorityDistribution"]
    assert {"status": "NOT_AVAILABLE", "count": 1} in data["ramisStatusBreakdown"]
