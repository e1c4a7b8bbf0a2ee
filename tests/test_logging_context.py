from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salespipe.core.auth import AuthUser, get_current_user
from salespipe.core.config import get_settings
from salespipe.core.database import Base, build_engine, get_db
from salespipe.logging import JsonLogFormatter
from salespipe.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = build_engine(
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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=["user"], name="Log User")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/pipeline/leads/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record
        for record in caplog.records
        if record.name == "salespipe.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/pipeline/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_conversion_logs_carry_pipeline_context(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    lead = client.post("/pipeline/leads", json={"company_name": "Log Lead", "customer_id": "cust-1"}).json()

    response = client.post(f"/pipeline/leads/{lead['id']}/convert", headers={"X-Correlation-Id": "conv-1"})
    assert response.status_code == 201

    records = [record for record in caplog.records if record.name == "salespipe.pipeline"]
    assert any(
        record.getMessage() == "conversion.lead_to_offer"
        and getattr(record, "pipeline_ref", None) == lead["pipeline_ref"]
        and getattr(record, "event_type", None) == "pipeline.lead_converted"
        and getattr(record, "correlation_id", None) == "conv-1"
        for record in records
    )
    assert any(
        record.getMessage() == "offer.created" and getattr(record, "parent_type", None) == "offer"
        for record in records
    )


def test_json_formatter_keeps_only_structured_fields() -> None:
    record = logging.makeLogRecord(
        {
            "name": "salespipe.pipeline",
            "levelname": "WARNING",
            "msg": "sequence.conflict",
            "counter_key": "offer-no",
            "attempt": 2,
            "secret": "do-not-log",
            "correlation_id": "corr-9",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "sequence.conflict"
    assert payload["correlation_id"] == "corr-9"
    assert payload["fields"] == {"counter_key": "offer-no", "attempt": 2}
