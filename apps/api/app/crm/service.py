from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit
from app.core.auth import AuthUser
from app.crm.models import Campagne, Contact, Contrat, Objectif, Proposition, Tache, Utilisateur, utcnow
from app.crm.repositories import (
    ScopedRepository,
    campagne_repository,
    contact_repository,
    contrat_repository,
    objectif_repository,
    proposition_repository,
    tache_repository,
)
from app.crm.schemas import (
    CampagneCreate,
    CampagneRead,
    CampagneUpdate,
    ContactCreate,
    ContactDetailRead,
    ContactRead,
    ContactUpdate,
    ContratCreate,
    ContratRead,
    DashboardStatsRead,
    ObjectifCreate,
    ObjectifRead,
    ObjectifUpdate,
    PropositionCreate,
    PropositionRead,
    PropositionUpdate,
    TacheCreate,
    TacheRead,
    TacheUpdate,
)
from app.platform.security.context import AuthContext, Role
from app.platform.security.errors import IdentityUnavailableError, OutOfScopeError


logger = logging.getLogger("app.crm.service")

NOUVEAU_LEAD_STATUT = "Nouveau"
PROPOSITION_EN_ATTENTE_STATUT = "envoyee"
TACHE_TERMINEE_STATUT = "termine"


def resolve_actor(session: Session, auth_user: AuthUser | None, correlation_id: str | None = None) -> AuthContext:
    """Build the acting user's context, completing role/team from the ``users`` profile when the token lacks them."""

    if auth_user is None:
        raise IdentityUnavailableError()

    role = Role.parse(auth_user.role)
    team_id = auth_user.team_id
    email = auth_user.email

    if role is None or team_id is None:
        profile = session.get(Utilisateur, auth_user.sub)
        if profile is None and auth_user.email:
            profile = session.scalar(select(Utilisateur).where(Utilisateur.email == auth_user.email))
        if profile is not None:
            role = role or Role.parse(profile.role)
            team_id = team_id or profile.equipe_id
            email = email or profile.email
        else:
            logger.info("crm.identity.profile_missing", extra={"user_id": auth_user.sub})

    return AuthContext(
        user_id=auth_user.sub,
        role=role,
        team_id=team_id,
        email=email,
        correlation_id=correlation_id,
    )


def _get_visible_or_404(repository: ScopedRepository, session: Session, ctx: AuthContext, entity_id: str, label: str) -> Any:
    try:
        return repository.get_visible(session, ctx, entity_id)
    except OutOfScopeError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")


def _ensure_user_exists(session: Session, user_id: str, field_name: str) -> None:
    if session.get(Utilisateur, user_id) is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{field_name} references an unknown user",
        )


def _apply_changes(row: Any, changes: dict[str, Any]) -> None:
    for field_name, value in changes.items():
        setattr(row, field_name, value)


class ContactService:
    entity_type = "crm.contact"

    def list_contacts(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ContactRead]:
        criteria: list[Any] = []
        if filters.get("statut_lead"):
            criteria.append(Contact.statut_lead == filters["statut_lead"])
        search = filters.get("search")
        if search:
            pattern = f"%{search}%"
            criteria.append(
                or_(Contact.nom.ilike(pattern), Contact.prenom.ilike(pattern), Contact.email.ilike(pattern))
            )
        rows = contact_repository.list_visible(session, ctx, *criteria, limit=limit, offset=offset)
        return [ContactRead.model_validate(row) for row in rows]

    def get_contact(self, session: Session, ctx: AuthContext, contact_id: str) -> ContactRead:
        contact = _get_visible_or_404(contact_repository, session, ctx, contact_id, "contact")
        return ContactRead.model_validate(contact)

    def get_contact_detail(self, session: Session, ctx: AuthContext, contact_id: str) -> ContactDetailRead:
        contact = _get_visible_or_404(contact_repository, session, ctx, contact_id, "contact")
        propositions = proposition_repository.list_visible(session, ctx, Proposition.contact_id == contact.id)
        contrats = contrat_repository.list_visible(session, ctx, Contrat.contact_client_id == contact.id)
        taches = tache_repository.list_visible(session, ctx, Tache.contact_id == contact.id)
        return ContactDetailRead(
            contact=ContactRead.model_validate(contact),
            propositions=[PropositionRead.model_validate(row) for row in propositions],
            contrats=[ContratRead.model_validate(row) for row in contrats],
            taches=[TacheRead.model_validate(row) for row in taches],
        )

    def create_contact(self, session: Session, ctx: AuthContext, dto: ContactCreate) -> ContactRead:
        payload = dto.model_dump()
        payload["nom"] = payload["nom"].strip()
        payload["prenom"] = payload["prenom"].strip()
        contact = Contact(**payload, collaborateur_en_charge=ctx.user_id)
        session.add(contact)
        session.commit()

        read_model = self._to_read_model(session, contact.id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=contact.id,
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def update_contact(self, session: Session, ctx: AuthContext, contact_id: str, dto: ContactUpdate) -> ContactRead:
        contact = _get_visible_or_404(contact_repository, session, ctx, contact_id, "contact")
        before = ContactRead.model_validate(contact).model_dump(mode="json")

        changes = dto.model_dump(exclude_unset=True)
        if changes.get("collaborateur_en_charge") is None:
            changes.pop("collaborateur_en_charge", None)
        else:
            _ensure_user_exists(session, changes["collaborateur_en_charge"], "collaborateur_en_charge")
        _apply_changes(contact, changes)
        contact.updated_at = utcnow()
        session.commit()

        read_model = self._to_read_model(session, contact_id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=contact_id,
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def delete_contact(self, session: Session, ctx: AuthContext, contact_id: str) -> None:
        contact = _get_visible_or_404(contact_repository, session, ctx, contact_id, "contact")
        before = ContactRead.model_validate(contact).model_dump(mode="json")
        contract_count = session.scalar(select(func.count(Contrat.id)).where(Contrat.contact_client_id == contact_id)) or 0
        if contract_count:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"message": "contact has contracts", "contrats": int(contract_count)},
            )
        try:
            session.delete(contact)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="contact is still referenced")

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=contact_id,
            action="delete",
            before=before,
            after=None,
            correlation_id=ctx.correlation_id,
        )

    def _to_read_model(self, session: Session, contact_id: str) -> ContactRead:
        session.expire_all()
        return ContactRead.model_validate(contact_repository.get_by_id(session, contact_id))


class PropositionService:
    entity_type = "crm.proposition"

    def list_propositions(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PropositionRead]:
        criteria: list[Any] = []
        if filters.get("statut"):
            criteria.append(Proposition.statut == filters["statut"])
        if filters.get("contact_id"):
            criteria.append(Proposition.contact_id == filters["contact_id"])
        rows = proposition_repository.list_visible(session, ctx, *criteria, limit=limit, offset=offset)
        return [PropositionRead.model_validate(row) for row in rows]

    def get_proposition(self, session: Session, ctx: AuthContext, proposition_id: str) -> PropositionRead:
        proposition = _get_visible_or_404(proposition_repository, session, ctx, proposition_id, "proposition")
        return PropositionRead.model_validate(proposition)

    def create_proposition(self, session: Session, ctx: AuthContext, dto: PropositionCreate) -> PropositionRead:
        _get_visible_or_404(contact_repository, session, ctx, dto.contact_id, "contact")

        proposition = Proposition(**dto.model_dump(), conseiller_id=ctx.user_id)
        session.add(proposition)
        session.commit()

        read_model = self._to_read_model(session, proposition.id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=proposition.id,
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def update_proposition(
        self,
        session: Session,
        ctx: AuthContext,
        proposition_id: str,
        dto: PropositionUpdate,
    ) -> PropositionRead:
        proposition = _get_visible_or_404(proposition_repository, session, ctx, proposition_id, "proposition")
        before = PropositionRead.model_validate(proposition).model_dump(mode="json")

        _apply_changes(proposition, dto.model_dump(exclude_unset=True))
        proposition.updated_at = utcnow()
        session.commit()

        read_model = self._to_read_model(session, proposition_id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=proposition_id,
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def _to_read_model(self, session: Session, proposition_id: str) -> PropositionRead:
        session.expire_all()
        return PropositionRead.model_validate(proposition_repository.get_by_id(session, proposition_id))


class ContratService:
    entity_type = "crm.contrat"

    def list_contrats(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ContratRead]:
        criteria: list[Any] = []
        if filters.get("contact_client_id"):
            criteria.append(Contrat.contact_client_id == filters["contact_client_id"])
        rows = contrat_repository.list_visible(session, ctx, *criteria, limit=limit, offset=offset)
        return [ContratRead.model_validate(row) for row in rows]

    def get_contrat(self, session: Session, ctx: AuthContext, contrat_id: str) -> ContratRead:
        contrat = _get_visible_or_404(contrat_repository, session, ctx, contrat_id, "contrat")
        return ContratRead.model_validate(contrat)

    def create_contrat(self, session: Session, ctx: AuthContext, dto: ContratCreate) -> ContratRead:
        _get_visible_or_404(contact_repository, session, ctx, dto.contact_client_id, "contact")

        payload = dto.model_dump()
        payload["numero_contrat"] = payload["numero_contrat"].strip()
        contrat = Contrat(**payload)
        try:
            session.add(contrat)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="numero_contrat already exists")

        read_model = self._to_read_model(session, contrat.id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=contrat.id,
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def _to_read_model(self, session: Session, contrat_id: str) -> ContratRead:
        session.expire_all()
        return ContratRead.model_validate(contrat_repository.get_by_id(session, contrat_id))


class TacheService:
    entity_type = "crm.tache"

    def list_taches(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TacheRead]:
        criteria: list[Any] = []
        if filters.get("statut"):
            criteria.append(Tache.statut == filters["statut"])
        if filters.get("priorite"):
            criteria.append(Tache.priorite == filters["priorite"])
        if filters.get("contact_id"):
            criteria.append(Tache.contact_id == filters["contact_id"])
        rows = tache_repository.list_visible(session, ctx, *criteria, limit=limit, offset=offset)
        return [TacheRead.model_validate(row) for row in rows]

    def get_tache(self, session: Session, ctx: AuthContext, tache_id: str) -> TacheRead:
        tache = _get_visible_or_404(tache_repository, session, ctx, tache_id, "tache")
        return TacheRead.model_validate(tache)

    def create_tache(self, session: Session, ctx: AuthContext, dto: TacheCreate) -> TacheRead:
        if dto.contact_id is not None:
            _get_visible_or_404(contact_repository, session, ctx, dto.contact_id, "contact")

        payload = dto.model_dump()
        payload["assigne_a"] = dto.assigne_a or ctx.user_id
        if payload["assigne_a"] != ctx.user_id:
            _ensure_user_exists(session, payload["assigne_a"], "assigne_a")
        if payload["statut"] == TACHE_TERMINEE_STATUT:
            payload["date_completion"] = utcnow()

        tache = Tache(**payload, cree_par=ctx.user_id)
        session.add(tache)
        session.commit()

        read_model = self._to_read_model(session, tache.id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=tache.id,
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def update_tache(self, session: Session, ctx: AuthContext, tache_id: str, dto: TacheUpdate) -> TacheRead:
        tache = _get_visible_or_404(tache_repository, session, ctx, tache_id, "tache")
        before = TacheRead.model_validate(tache).model_dump(mode="json")

        changes = dto.model_dump(exclude_unset=True)
        if changes.get("assigne_a") is None:
            changes.pop("assigne_a", None)
        else:
            _ensure_user_exists(session, changes["assigne_a"], "assigne_a")
        if (
            changes.get("statut") == TACHE_TERMINEE_STATUT
            and changes.get("date_completion") is None
            and tache.date_completion is None
        ):
            changes["date_completion"] = utcnow()
        elif "statut" in changes and changes["statut"] != TACHE_TERMINEE_STATUT:
            changes["date_completion"] = None
        _apply_changes(tache, changes)
        tache.updated_at = utcnow()
        session.commit()

        read_model = self._to_read_model(session, tache_id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=tache_id,
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def _to_read_model(self, session: Session, tache_id: str) -> TacheRead:
        session.expire_all()
        return TacheRead.model_validate(tache_repository.get_by_id(session, tache_id))


class ObjectifService:
    entity_type = "crm.objectif"

    def list_objectifs(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ObjectifRead]:
        criteria: list[Any] = []
        if filters.get("type"):
            criteria.append(Objectif.type == filters["type"])
        rows = objectif_repository.list_visible(session, ctx, *criteria, limit=limit, offset=offset)
        return [ObjectifRead.model_validate(row) for row in rows]

    def get_objectif(self, session: Session, ctx: AuthContext, objectif_id: str) -> ObjectifRead:
        objectif = _get_visible_or_404(objectif_repository, session, ctx, objectif_id, "objectif")
        return ObjectifRead.model_validate(objectif)

    def create_objectif(self, session: Session, ctx: AuthContext, dto: ObjectifCreate) -> ObjectifRead:
        if dto.assigne_a is not None:
            _ensure_user_exists(session, dto.assigne_a, "assigne_a")

        objectif = Objectif(**dto.model_dump(), cree_par=ctx.user_id)
        session.add(objectif)
        session.commit()

        read_model = self._to_read_model(session, objectif.id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=objectif.id,
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def update_objectif(self, session: Session, ctx: AuthContext, objectif_id: str, dto: ObjectifUpdate) -> ObjectifRead:
        objectif = _get_visible_or_404(objectif_repository, session, ctx, objectif_id, "objectif")
        before = ObjectifRead.model_validate(objectif).model_dump(mode="json")

        changes = dto.model_dump(exclude_unset=True)
        periode_debut = changes.get("periode_debut") or objectif.periode_debut
        periode_fin = changes.get("periode_fin") or objectif.periode_fin
        if periode_fin < periode_debut:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="periode_fin must not be before periode_debut",
            )
        if changes.get("assigne_a") is not None:
            _ensure_user_exists(session, changes["assigne_a"], "assigne_a")
        _apply_changes(objectif, changes)
        objectif.updated_at = utcnow()
        session.commit()

        read_model = self._to_read_model(session, objectif_id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=objectif_id,
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def _to_read_model(self, session: Session, objectif_id: str) -> ObjectifRead:
        session.expire_all()
        return ObjectifRead.model_validate(objectif_repository.get_by_id(session, objectif_id))


class CampagneService:
    entity_type = "crm.campagne"

    def list_campagnes(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[CampagneRead]:
        criteria: list[Any] = []
        if filters.get("statut"):
            criteria.append(Campagne.statut == filters["statut"])
        rows = campagne_repository.list_visible(session, ctx, *criteria, limit=limit, offset=offset)
        return [CampagneRead.model_validate(row) for row in rows]

    def get_campagne(self, session: Session, ctx: AuthContext, campagne_id: str) -> CampagneRead:
        campagne = _get_visible_or_404(campagne_repository, session, ctx, campagne_id, "campagne")
        return CampagneRead.model_validate(campagne)

    def create_campagne(self, session: Session, ctx: AuthContext, dto: CampagneCreate) -> CampagneRead:
        campagne = Campagne(**dto.model_dump(), cree_par=ctx.user_id)
        session.add(campagne)
        session.commit()

        read_model = self._to_read_model(session, campagne.id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=campagne.id,
            action="create",
            before=None,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def update_campagne(self, session: Session, ctx: AuthContext, campagne_id: str, dto: CampagneUpdate) -> CampagneRead:
        campagne = _get_visible_or_404(campagne_repository, session, ctx, campagne_id, "campagne")
        before = CampagneRead.model_validate(campagne).model_dump(mode="json")

        _apply_changes(campagne, dto.model_dump(exclude_unset=True))
        campagne.updated_at = utcnow()
        session.commit()

        read_model = self._to_read_model(session, campagne_id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=self.entity_type,
            entity_id=campagne_id,
            action="update",
            before=before,
            after=read_model.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        return read_model

    def _to_read_model(self, session: Session, campagne_id: str) -> CampagneRead:
        session.expire_all()
        return CampagneRead.model_validate(campagne_repository.get_by_id(session, campagne_id))


class DashboardService:
    def get_stats(self, session: Session, ctx: AuthContext, today: date | None = None) -> DashboardStatsRead:
        today = today or date.today()
        month_start = today.replace(day=1)

        nouveaux_contacts = contact_repository.count_visible(
            session, ctx, Contact.statut_lead == NOUVEAU_LEAD_STATUT
        )
        propositions_en_attente = proposition_repository.count_visible(
            session, ctx, Proposition.statut == PROPOSITION_EN_ATTENTE_STATUT
        )
        ca_raw = contrat_repository.aggregate_visible(
            session,
            ctx,
            func.coalesce(func.sum(Contrat.cotisation_mensuelle), 0),
            Contrat.date_signature >= month_start,
        )
        objectifs = objectif_repository.list_visible(
            session,
            ctx,
            Objectif.periode_debut <= today,
            Objectif.periode_fin >= today,
        )

        return DashboardStatsRead(
            nouveaux_contacts=nouveaux_contacts,
            propositions_en_attente=propositions_en_attente,
            ca_mensuel=Decimal(str(ca_raw or 0)).quantize(Decimal("0.01")),
            progression_objectif=self._progression(objectifs),
        )

    @staticmethod
    def _progression(objectifs: list[Objectif]) -> float:
        cible = sum((Decimal(str(item.valeur_cible)) for item in objectifs), Decimal("0"))
        if cible <= 0:
            return 0.0
        actuelle = sum((Decimal(str(item.valeur_actuelle or 0)) for item in objectifs), Decimal("0"))
        return round(min(float(actuelle / cible * 100), 100.0), 2)
