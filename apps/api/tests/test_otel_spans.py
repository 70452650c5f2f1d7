from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.api import get_current_user as crm_get_current_user
from app.crm.models import Equipe, Utilisateur
from app.main import app
from app.otel import setup_inmemory_otel
from app.platform.security.context import AuthContext, Role


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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("courtage-crm-api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    db_session.add(Equipe(id="t1", nom="Lyon"))
    db_session.add(Utilisateur(id="u1", email="u1@cabinet.fr", nom_complet="Alice Martin", equipe_id="t1"))
    db_session.commit()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> AuthContext:
        return AuthContext(
            user_id="g1",
            role=Role.GESTIONNAIRE,
            team_id="t1",
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.get("/api/crm/contacts", headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_scope_resolution_span_records_entity_role_and_kind(
    client: TestClient,
    span_exporter: InMemorySpanExporter,
) -> None:
    response = client.get("/api/crm/taches", headers={"X-Correlation-Id": "otel-scope-1"})
    assert response.status_code == 200

    scope_spans = [span for span in span_exporter.get_finished_spans() if span.name == "crm.scope.resolve"]
    assert scope_spans
    assert any(
        span.attributes.get("crm.scope.entity") == "tache"
        and span.attributes.get("crm.scope.role") == "gestionnaire"
        and span.attributes.get("crm.scope.kind") == "team_owned"
        for span in scope_spans
    )
