from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import get_db
from app.crm.api import get_current_user
from app.main import app
from app.platform.security.context import AuthContext, Role


@pytest.fixture()
def broken_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(broken_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield broken_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: AuthContext(user_id="u1", role=Role.CONSEILLER)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_store_failure_is_reported_as_service_unavailable(client: TestClient) -> None:
    before = REGISTRY.get_sample_value("crm_store_failures_total", {"path": "/api/crm/contacts"}) or 0.0

    response = client.get("/api/crm/contacts", headers={"X-Correlation-Id": "corr-store"})

    assert response.status_code == 503
    body = response.json()
    assert body["code"] == "crm_store_unavailable"
    assert body["correlation_id"] == "corr-store"
    assert REGISTRY.get_sample_value("crm_store_failures_total", {"path": "/api/crm/contacts"}) == before + 1


def test_store_failure_on_dashboard_is_not_partial(client: TestClient) -> None:
    response = client.get("/api/crm/dashboard")

    assert response.status_code == 503
    assert "nouveaux_contacts" not in response.json()
