from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.core.database import Base
from app.crm.models import Contact, Contrat, Equipe, Objectif, Tache, Utilisateur
from app.crm.repositories import (
    SqlMembershipResolver,
    contact_repository,
    contrat_repository,
    objectif_repository,
    tache_repository,
)
from app.platform.security.context import AuthContext, Role
from app.platform.security.errors import OutOfScopeError


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
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def seeded(db_session: Session) -> dict[str, str]:
    db_session.add_all([Equipe(id="t1", nom="Lyon"), Equipe(id="t2", nom="Paris")])
    db_session.add_all(
        [
            Utilisateur(id="u1", email="u1@cabinet.fr", nom_complet="Alice Martin", equipe_id="t1"),
            Utilisateur(id="u2", email="u2@cabinet.fr", nom_complet="Bruno Petit", equipe_id="t1"),
            Utilisateur(id="u3", email="u3@cabinet.fr", nom_complet="Chloe Roux", equipe_id="t2"),
            Utilisateur(id="g1", email="g1@cabinet.fr", nom_complet="Gerard Blanc", equipe_id="t1", role="gestionnaire"),
            Utilisateur(id="g2", email="g2@cabinet.fr", nom_complet="Gaelle Noir", role="gestionnaire"),
        ]
    )

    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    owners = ["u1", "u1", "u2", "u2", "u2", "u3"]
    for index, owner in enumerate(owners):
        db_session.add(
            Contact(
                id=f"c{index + 1}",
                nom=f"Nom{index + 1}",
                prenom="Client",
                collaborateur_en_charge=owner,
                created_at=base + timedelta(hours=index),
                updated_at=base + timedelta(hours=index),
            )
        )

    db_session.add_all(
        [
            Contrat(id="k1", numero_contrat="K-1", cotisation_mensuelle=Decimal("50"), contact_client_id="c1"),
            Contrat(id="k2", numero_contrat="K-2", cotisation_mensuelle=Decimal("70"), contact_client_id="c3"),
            Contrat(id="k3", numero_contrat="K-3", cotisation_mensuelle=Decimal("90"), contact_client_id="c6"),
        ]
    )
    db_session.add_all(
        [
            Tache(id="ta1", titre="Rappeler", assigne_a="u1", cree_par="u3"),
            Tache(id="ta2", titre="Relancer", assigne_a="u3", cree_par="u2"),
            Tache(id="ta3", titre="Archiver", assigne_a="u3", cree_par="u3"),
            Tache(id="ta4", titre="Signer", assigne_a="u1", cree_par="u2"),
        ]
    )
    db_session.add_all(
        [
            Objectif(
                id="o1",
                nom="Equipe Lyon",
                type="ca",
                valeur_cible=Decimal("1000"),
                periode_debut=date(2026, 1, 1),
                periode_fin=date(2026, 12, 31),
                equipe_id="t1",
                cree_par="g1",
            ),
            Objectif(
                id="o2",
                nom="Perso u2",
                type="ca",
                valeur_cible=Decimal("500"),
                periode_debut=date(2026, 1, 1),
                periode_fin=date(2026, 12, 31),
                assigne_a="u2",
                cree_par="g1",
            ),
            Objectif(
                id="o3",
                nom="Perso u3",
                type="ca",
                valeur_cible=Decimal("500"),
                periode_debut=date(2026, 1, 1),
                periode_fin=date(2026, 12, 31),
                assigne_a="u3",
                equipe_id="t2",
                cree_par="u3",
            ),
        ]
    )
    db_session.commit()
    return {"team": "t1"}


def _ids(rows: list) -> list[str]:
    return [row.id for row in rows]


def test_conseiller_sees_only_own_contacts(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="u1", role=Role.CONSEILLER, team_id="t1")

    rows = contact_repository.list_visible(db_session, ctx)

    assert sorted(_ids(rows)) == ["c1", "c2"]
    assert all(row.collaborateur_en_charge == "u1" for row in rows)


def test_gestionnaire_sees_contacts_of_team_members(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="g1", role=Role.GESTIONNAIRE, team_id="t1")

    rows = contact_repository.list_visible(db_session, ctx)

    assert sorted(_ids(rows)) == ["c1", "c2", "c3", "c4", "c5"]
    assert {row.collaborateur_en_charge for row in rows} <= {"u1", "u2", "g1"}


def test_gestionnaire_contrats_are_exactly_those_of_team_contacts(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="g1", role=Role.GESTIONNAIRE, team_id="t1")

    rows = contrat_repository.list_visible(db_session, ctx)

    assert sorted(_ids(rows)) == ["k1", "k2"]


def test_conseiller_contrats_follow_owned_contacts(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="u2", role=Role.CONSEILLER, team_id="t1")

    assert _ids(contrat_repository.list_visible(db_session, ctx)) == ["k2"]


def test_gestionnaire_without_team_gets_empty_results(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="g2", role=Role.GESTIONNAIRE, team_id=None)

    assert contact_repository.list_visible(db_session, ctx) == []
    assert contrat_repository.list_visible(db_session, ctx) == []
    assert tache_repository.list_visible(db_session, ctx) == []
    assert objectif_repository.list_visible(db_session, ctx) == []
    assert contact_repository.count_visible(db_session, ctx) == 0


def test_gestionnaire_taches_match_assignee_or_creator(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="g1", role=Role.GESTIONNAIRE, team_id="t1")

    rows = tache_repository.list_visible(db_session, ctx)

    assert sorted(_ids(rows)) == ["ta1", "ta2", "ta4"]


def test_tache_team_scope_uses_configured_combinator(
    db_session: Session,
    seeded: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("TACHE_TEAM_SCOPE_COMBINATOR", "and")
    get_settings.cache_clear()
    ctx = AuthContext(user_id="g1", role=Role.GESTIONNAIRE, team_id="t1")

    rows = tache_repository.list_visible(db_session, ctx)

    assert _ids(rows) == ["ta4"]


def test_gestionnaire_objectifs_cover_team_and_member_assignments(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="g1", role=Role.GESTIONNAIRE, team_id="t1")

    assert sorted(_ids(objectif_repository.list_visible(db_session, ctx))) == ["o1", "o2"]


def test_conseiller_objectifs_cover_own_and_team_targets(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="u3", role=Role.CONSEILLER, team_id="t2")

    assert _ids(objectif_repository.list_visible(db_session, ctx)) == ["o3"]


def test_admin_sees_everything(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="root", role=Role.ADMIN)

    assert contact_repository.count_visible(db_session, ctx) == 6
    assert len(contrat_repository.list_visible(db_session, ctx)) == 3
    assert len(tache_repository.list_visible(db_session, ctx)) == 4


def test_scoped_fetch_is_idempotent_and_ordered(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="g1", role=Role.GESTIONNAIRE, team_id="t1")

    first = _ids(contact_repository.list_visible(db_session, ctx))
    second = _ids(contact_repository.list_visible(db_session, ctx))

    assert first == second
    assert first == ["c5", "c4", "c3", "c2", "c1"]


def test_get_visible_rejects_out_of_scope_row(db_session: Session, seeded: dict[str, str]) -> None:
    ctx = AuthContext(user_id="u1", role=Role.CONSEILLER, team_id="t1")

    assert contact_repository.get_visible(db_session, ctx, "c1").id == "c1"
    with pytest.raises(OutOfScopeError):
        contact_repository.get_visible(db_session, ctx, "c3")


def test_membership_resolver_reads_users_and_contacts(db_session: Session, seeded: dict[str, str]) -> None:
    resolver = SqlMembershipResolver(db_session)

    assert resolver.team_member_ids("t1") == ["g1", "u1", "u2"]
    assert resolver.team_member_ids("missing") == []
    assert resolver.contact_ids_owned_by(["u1"]) == ["c1", "c2"]
    assert resolver.contact_ids_owned_by([]) == []
