from datetime import date, timedelta

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


def _client() -> TestClient:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager, so the scheduler startup hook never runs.
    return TestClient(app)


def _payload(**overrides) -> dict:
    first = date.today().replace(day=1) + timedelta(days=40)
    values = {
        "name": "Streaming",
        "amount": "12.99",
        "recurrence_interval_months": 1,
        "first_occurrence_date": first.replace(day=5).isoformat(),
    }
    values.update(overrides)
    return values


def test_create_and_fetch_definition() -> None:
    client = _client()

    response = client.post("/definitions?horizon_months=3", json=_payload())
    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Streaming"
    assert body["recurrence_description"] == "1 month"
    dates = [o["scheduled_date"] for o in body["occurrences"]]
    assert dates and dates == sorted(dates)

    fetched = client.get(f"/definitions/{body['id']}")
    assert fetched.status_code == 200
    assert len(fetched.json()["occurrences"]) == len(dates)

    listed = client.get("/definitions", params={"q": "stream"})
    assert [d["id"] for d in listed.json()] == [body["id"]]


def test_pattern_round_trips_through_api() -> None:
    client = _client()

    response = client.post(
        "/definitions?horizon_months=2",
        json=_payload(day_pattern={"kind": "last_weekday", "weekday": "friday"}),
    )
    assert response.status_code == 201
    assert response.json()["day_pattern"] == {"kind": "last_weekday", "weekday": "friday"}


def test_validation_errors_are_listed() -> None:
    client = _client()

    response = client.post(
        "/definitions", json=_payload(name="", amount="0", recurrence_interval_months=0)
    )
    assert response.status_code == 400
    assert len(response.json()["detail"]) == 3


def test_unknown_ids_return_404() -> None:
    client = _client()

    assert client.get("/definitions/999").status_code == 404
    assert client.post("/definitions/999/synchronize").status_code == 404
    response = client.post(
        "/occurrences/999/complete",
        json={"actual_date": "2025-01-01", "actual_amount": "10"},
    )
    assert response.status_code == 404


def test_complete_occurrence_and_resync() -> None:
    client = _client()
    created = client.post("/definitions?horizon_months=3", json=_payload()).json()
    first = created["occurrences"][0]

    response = client.post(
        f"/occurrences/{first['id']}/complete?horizon_months=3",
        json={"actual_date": first["scheduled_date"], "actual_amount": "12.99"},
    )
    assert response.status_code == 200
    assert response.json()["removed_count"] == 0

    completed = client.get(
        "/occurrences",
        params={"status": "completed", "definition_id": created["id"]},
    ).json()
    assert [o["id"] for o in completed] == [first["id"]]

    resync = client.post(f"/definitions/{created['id']}/synchronize?horizon_months=3")
    assert resync.json()["created_count"] == 0
    assert resync.json()["updated_count"] == 0


def test_negative_horizon_is_rejected() -> None:
    client = _client()
    created = client.post("/definitions?horizon_months=3", json=_payload()).json()

    response = client.post(f"/definitions/{created['id']}/synchronize?horizon_months=-1")
    assert response.status_code == 400


def test_holidays_and_suggestions_endpoints() -> None:
    client = _client()

    assert client.post(
        "/holidays", json={"date": "2025-12-24", "name": "Christmas Eve"}
    ).status_code == 201
    duplicate = client.post("/holidays", json={"date": "2025-12-24", "name": "Christmas Eve"})
    assert duplicate.status_code == 400
    assert [h["name"] for h in client.get("/holidays").json()] == ["Christmas Eve"]

    assert client.get("/suggestions").json() == []
    assert client.get("/balances/999").status_code == 404
