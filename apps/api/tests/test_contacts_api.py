from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit
from app.core.database import Base, get_db
from app.crm.api import get_current_user
from app.crm.models import Contact, Contrat, Equipe, Proposition, Tache, Utilisateur
from app.main import app
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


@pytest.fixture()
def team(db_session: Session) -> str:
    db_session.add_all([Equipe(id="t1", nom="Lyon"), Equipe(id="t2", nom="Paris")])
    db_session.add_all(
        [
            Utilisateur(id="u1", email="u1@cabinet.fr", nom_complet="Alice Martin", equipe_id="t1"),
            Utilisateur(id="u2", email="u2@cabinet.fr", nom_complet="Bruno Petit", equipe_id="t1"),
            Utilisateur(id="u3", email="u3@cabinet.fr", nom_complet="Chloe Roux", equipe_id="t2"),
            Utilisateur(id="g1", email="g1@cabinet.fr", nom_complet="Gerard Blanc", equipe_id="t1", role="gestionnaire"),
        ]
    )
    db_session.commit()
    return "t1"


@pytest.fixture()
def contacts(db_session: Session, team: str) -> dict[str, str]:
    base = datetime(2026, 3, 1, tzinfo=timezone.utc)
    rows = {
        "u1_a": Contact(nom="Durand", prenom="Paul", collaborateur_en_charge="u1", statut_lead="Nouveau"),
        "u1_b": Contact(nom="Lefevre", prenom="Anne", collaborateur_en_charge="u1", statut_lead="Client"),
        "u2_a": Contact(nom="Moreau", prenom="Luc", collaborateur_en_charge="u2"),
        "u2_b": Contact(nom="Garnier", prenom="Lea", collaborateur_en_charge="u2"),
        "u2_c": Contact(nom="Faure", prenom="Hugo", collaborateur_en_charge="u2"),
        "u3_a": Contact(nom="Mercier", prenom="Ines", collaborateur_en_charge="u3"),
    }
    for index, contact in enumerate(rows.values()):
        contact.created_at = base + timedelta(minutes=index)
        contact.updated_at = contact.created_at
    db_session.add_all(rows.values())
    db_session.commit()
    return {key: contact.id for key, contact in rows.items()}


@pytest.fixture()
def client(db_session: Session, team: str) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    actors = {
        "u1": AuthContext(user_id="u1", role=Role.CONSEILLER, team_id="t1", correlation_id="corr-contact"),
        "u3": AuthContext(user_id="u3", role=Role.CONSEILLER, team_id="t2", correlation_id="corr-contact"),
        "g1": AuthContext(user_id="g1", role=Role.GESTIONNAIRE, team_id="t1", correlation_id="corr-contact"),
        "g_no_team": AuthContext(user_id="g9", role=Role.GESTIONNAIRE, team_id=None),
        "admin": AuthContext(user_id="admin-1", role=Role.ADMIN),
    }
    state = {"current": "u1"}

    def override_get_current_user() -> AuthContext:
        return actors[state["current"]]

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def test_conseiller_lists_only_owned_contacts(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, _set_actor = client

    response = test_client.get("/api/crm/contacts")

    assert response.status_code == 200
    body = response.json()
    assert [item["id"] for item in body] == [contacts["u1_b"], contacts["u1_a"]]
    assert all(item["collaborateur_en_charge"] == "u1" for item in body)
    assert body[0]["utilisateur"] == {"nom_complet": "Alice Martin"}


def test_gestionnaire_lists_team_contacts(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, set_actor = client
    set_actor("g1")

    response = test_client.get("/api/crm/contacts")

    assert response.status_code == 200
    owners = {item["collaborateur_en_charge"] for item in response.json()}
    assert owners == {"u1", "u2"}
    assert len(response.json()) == 5


def test_gestionnaire_without_team_lists_nothing(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, set_actor = client
    set_actor("g_no_team")

    response = test_client.get("/api/crm/contacts")

    assert response.status_code == 200
    assert response.json() == []


def test_admin_lists_all_contacts_with_pagination(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, set_actor = client
    set_actor("admin")

    full = test_client.get("/api/crm/contacts")
    page = test_client.get("/api/crm/contacts", params={"limit": 2, "offset": 1})

    assert len(full.json()) == 6
    assert [item["id"] for item in page.json()] == [item["id"] for item in full.json()[1:3]]


def test_list_contacts_filters_apply_inside_scope(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, _set_actor = client

    by_status = test_client.get("/api/crm/contacts", params={"statut_lead": "Nouveau"})
    by_search = test_client.get("/api/crm/contacts", params={"search": "lefe"})
    outside = test_client.get("/api/crm/contacts", params={"search": "Mercier"})

    assert [item["id"] for item in by_status.json()] == [contacts["u1_a"]]
    assert [item["id"] for item in by_search.json()] == [contacts["u1_b"]]
    assert outside.json() == []


def test_create_contact_assigns_actor_and_records_audit(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
) -> None:
    test_client, _set_actor = client
    audit.audit_entries.clear()

    response = test_client.post(
        "/api/crm/contacts",
        json={"nom": " Bernard ", "prenom": "Julie", "email": "julie.bernard@courtier-lyon.fr", "tags": ["sante"]},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["nom"] == "Bernard"
    assert body["collaborateur_en_charge"] == "u1"
    assert body["statut_lead"] == "Nouveau"
    assert body["tags"] == ["sante"]
    stored = db_session.scalar(select(Contact).where(Contact.id == body["id"]))
    assert stored is not None
    entries = audit.entries_for("crm.contact", body["id"])
    assert [entry["action"] for entry in entries] == ["create"]
    assert entries[0]["correlation_id"] == "corr-contact"


def test_create_contact_rejects_invalid_email(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _set_actor = client

    response = test_client.post("/api/crm/contacts", json={"nom": "Bernard", "prenom": "Julie", "email": "pas-un-email"})

    assert response.status_code == 422


def test_get_contact_outside_scope_returns_not_found(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, _set_actor = client

    response = test_client.get(f"/api/crm/contacts/{contacts['u3_a']}")

    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "crm_contact_get_failed"
    assert body["message"] == "contact not found"


def test_update_contact_within_scope(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, _set_actor = client
    audit.audit_entries.clear()

    response = test_client.patch(
        f"/api/crm/contacts/{contacts['u1_a']}",
        json={"statut_lead": "Qualifie", "collaborateur_en_charge": "u2"},
    )

    assert response.status_code == 200
    assert response.json()["statut_lead"] == "Qualifie"
    assert response.json()["collaborateur_en_charge"] == "u2"
    entry = audit.entries_for("crm.contact", contacts["u1_a"])[-1]
    assert entry["before"]["statut_lead"] == "Nouveau"
    assert entry["after"]["statut_lead"] == "Qualifie"

    follow_up = test_client.get(f"/api/crm/contacts/{contacts['u1_a']}")
    assert follow_up.status_code == 404


def test_update_contact_rejects_unknown_owner(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, _set_actor = client

    response = test_client.patch(f"/api/crm/contacts/{contacts['u1_a']}", json={"collaborateur_en_charge": "ghost"})

    assert response.status_code == 422
    assert response.json()["code"] == "crm_contact_update_failed"


def test_update_contact_outside_scope_is_rejected(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
    db_session: Session,
) -> None:
    test_client, _set_actor = client

    response = test_client.patch(f"/api/crm/contacts/{contacts['u3_a']}", json={"statut_lead": "Perdu"})

    assert response.status_code == 404
    db_session.expire_all()
    assert db_session.get(Contact, contacts["u3_a"]).statut_lead == "Nouveau"


def test_update_contact_rejects_null_required_fields(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
    db_session: Session,
) -> None:
    test_client, _set_actor = client

    null_status = test_client.patch(f"/api/crm/contacts/{contacts['u1_a']}", json={"statut_lead": None})
    null_name = test_client.patch(f"/api/crm/contacts/{contacts['u1_a']}", json={"nom": None})
    cleared_email = test_client.patch(f"/api/crm/contacts/{contacts['u1_a']}", json={"email": None})

    assert null_status.status_code == 422
    assert null_name.status_code == 422
    assert cleared_email.status_code == 200
    db_session.expire_all()
    contact = db_session.get(Contact, contacts["u1_a"])
    assert contact.statut_lead == "Nouveau"
    assert contact.nom is not None


def test_delete_contact(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
    db_session: Session,
) -> None:
    test_client, _set_actor = client

    response = test_client.delete(f"/api/crm/contacts/{contacts['u1_b']}")

    assert response.status_code == 200
    assert response.json() == {"status": "deleted"}
    db_session.expire_all()
    assert db_session.get(Contact, contacts["u1_b"]) is None
    assert audit.entries_for("crm.contact", contacts["u1_b"])[-1]["action"] == "delete"


def test_delete_contact_with_contracts_conflicts(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
    db_session: Session,
) -> None:
    test_client, _set_actor = client
    db_session.add(Contrat(numero_contrat="K-100", cotisation_mensuelle=Decimal("42"), contact_client_id=contacts["u1_a"]))
    db_session.commit()

    response = test_client.delete(f"/api/crm/contacts/{contacts['u1_a']}")

    assert response.status_code == 409
    assert response.json()["details"]["contrats"] == 1


def test_delete_contact_outside_scope_returns_not_found(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, set_actor = client
    set_actor("u3")

    response = test_client.delete(f"/api/crm/contacts/{contacts['u1_a']}")

    assert response.status_code == 404


def test_contact_detail_scopes_related_lists(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    contact_id = contacts["u1_a"]
    db_session.add_all(
        [
            Proposition(contact_id=contact_id, conseiller_id="u1", produit="Sante"),
            Proposition(contact_id=contact_id, conseiller_id="u3", produit="Prevoyance"),
            Contrat(numero_contrat="K-200", cotisation_mensuelle=Decimal("80"), contact_client_id=contact_id),
            Tache(titre="Appel", contact_id=contact_id, assigne_a="u1", cree_par="u1"),
            Tache(titre="Visite", contact_id=contact_id, assigne_a="u3", cree_par="u3"),
        ]
    )
    db_session.commit()

    response = test_client.get(f"/api/crm/contacts/{contact_id}/detail")

    assert response.status_code == 200
    body = response.json()
    assert body["contact"]["id"] == contact_id
    assert [item["produit"] for item in body["propositions"]] == ["Sante"]
    assert [item["numero_contrat"] for item in body["contrats"]] == ["K-200"]
    assert [item["titre"] for item in body["taches"]] == ["Appel"]

    set_actor("admin")
    admin_view = test_client.get(f"/api/crm/contacts/{contact_id}/detail").json()
    assert len(admin_view["propositions"]) == 2
    assert len(admin_view["taches"]) == 2


def test_unknown_role_sees_nothing(
    client: tuple[TestClient, Callable[[str], None]],
    contacts: dict[str, str],
) -> None:
    test_client, _set_actor = client
    app.dependency_overrides[get_current_user] = lambda: AuthContext(user_id="u1", role=None, team_id="t1")

    response = test_client.get("/api/crm/contacts")

    assert response.status_code == 200
    assert response.json() == []
