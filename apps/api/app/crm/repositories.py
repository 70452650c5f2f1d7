from __future__ import annotations

from collections.abc import Collection, Sequence
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session, selectinload

from app.crm.models import Campagne, Contact, Contrat, Objectif, Proposition, Tache, Utilisateur
from app.platform.security.context import AuthContext
from app.platform.security.errors import OutOfScopeError
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import EntityKind


class SqlMembershipResolver:
    def __init__(self, session: Session) -> None:
        self._session = session

    def team_member_ids(self, team_id: str) -> list[str]:
        stmt = select(Utilisateur.id).where(Utilisateur.equipe_id == team_id).order_by(Utilisateur.id)
        return list(self._session.scalars(stmt).all())

    def contact_ids_owned_by(self, owner_ids: Collection[str]) -> list[str]:
        if not owner_ids:
            return []
        stmt = (
            select(Contact.id)
            .where(Contact.collaborateur_en_charge.in_(sorted(owner_ids)))
            .order_by(Contact.id)
        )
        return list(self._session.scalars(stmt).all())


class ScopedRepository(BaseRepository):
    """Every read of the entity table goes through ``scoped_select``."""

    def load_options(self) -> Sequence[Any]:
        return ()

    def scoped_select(self, session: Session, ctx: AuthContext) -> Select[Any]:
        stmt = select(self.model).options(*self.load_options())
        return self.apply_scope_query(stmt, ctx, SqlMembershipResolver(session))

    def list_visible(
        self,
        session: Session,
        ctx: AuthContext,
        *criteria: Any,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Any]:
        stmt = self.scoped_select(session, ctx)
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = stmt.order_by(self.model.created_at.desc(), self.model.id.asc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.scalars(stmt).all())

    def aggregate_visible(self, session: Session, ctx: AuthContext, expression: Any, *criteria: Any) -> Any:
        stmt = self.apply_scope_query(select(expression).select_from(self.model), ctx, SqlMembershipResolver(session))
        if criteria:
            stmt = stmt.where(*criteria)
        return session.scalar(stmt)

    def count_visible(self, session: Session, ctx: AuthContext, *criteria: Any) -> int:
        return int(self.aggregate_visible(session, ctx, func.count(self.model.id), *criteria) or 0)

    def get_visible(self, session: Session, ctx: AuthContext, entity_id: str) -> Any:
        stmt = self.scoped_select(session, ctx).where(self.model.id == entity_id)
        row = session.scalar(stmt)
        if row is None:
            raise OutOfScopeError(self.resource, entity_id)
        return row

    def get_by_id(self, session: Session, entity_id: str) -> Any:
        stmt = select(self.model).options(*self.load_options()).where(self.model.id == entity_id)
        return session.scalar(stmt)


class ContactRepository(ScopedRepository):
    resource = "crm.contact"
    entity_kind = EntityKind.CONTACT
    model = Contact

    def load_options(self) -> Sequence[Any]:
        return (selectinload(Contact.utilisateur),)


class PropositionRepository(ScopedRepository):
    resource = "crm.proposition"
    entity_kind = EntityKind.PROPOSITION
    model = Proposition

    def load_options(self) -> Sequence[Any]:
        return (selectinload(Proposition.contact), selectinload(Proposition.conseiller))


class ContratRepository(ScopedRepository):
    resource = "crm.contrat"
    entity_kind = EntityKind.CONTRAT
    model = Contrat

    def load_options(self) -> Sequence[Any]:
        return (selectinload(Contrat.contact),)


class TacheRepository(ScopedRepository):
    resource = "crm.tache"
    entity_kind = EntityKind.TACHE
    model = Tache

    def load_options(self) -> Sequence[Any]:
        return (
            selectinload(Tache.contact),
            selectinload(Tache.assignee),
            selectinload(Tache.createur),
        )


class ObjectifRepository(ScopedRepository):
    resource = "crm.objectif"
    entity_kind = EntityKind.OBJECTIF
    model = Objectif

    def load_options(self) -> Sequence[Any]:
        return (
            selectinload(Objectif.assignee),
            selectinload(Objectif.equipe),
            selectinload(Objectif.createur),
        )


class CampagneRepository(ScopedRepository):
    resource = "crm.campagne"
    entity_kind = EntityKind.CAMPAGNE
    model = Campagne

    def load_options(self) -> Sequence[Any]:
        return (selectinload(Campagne.createur),)


contact_repository = ContactRepository()
proposition_repository = PropositionRepository()
contrat_repository = ContratRepository()
tache_repository = TacheRepository()
objectif_repository = ObjectifRepository()
campagne_repository = CampagneRepository()
