from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Equipe(Base):
    __tablename__ = "equipes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nom: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    membres: Mapped[list[Utilisateur]] = relationship("Utilisateur", back_populates="equipe")


class Utilisateur(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    nom_complet: Mapped[str] = mapped_column(Text, nullable=False)
    equipe_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("equipes.id", ondelete="SET NULL"), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="conseiller", server_default="conseiller")
    statut: Mapped[str] = mapped_column(String(32), nullable=False, default="actif", server_default="actif")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    equipe: Mapped[Equipe | None] = relationship("Equipe", back_populates="membres")

    __table_args__ = (Index("ix_users_equipe_id", "equipe_id"),)


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nom: Mapped[str] = mapped_column(Text, nullable=False)
    prenom: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    telephone: Mapped[str | None] = mapped_column(Text, nullable=True)
    statut_lead: Mapped[str] = mapped_column(String(32), nullable=False, default="Nouveau", server_default="Nouveau")
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    collaborateur_en_charge: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    utilisateur: Mapped[Utilisateur] = relationship("Utilisateur", foreign_keys=[collaborateur_en_charge])

    __table_args__ = (Index("ix_contacts_collaborateur_en_charge", "collaborateur_en_charge"),)


class Proposition(Base):
    __tablename__ = "propositions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    contact_id: Mapped[str] = mapped_column(String(36), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    conseiller_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    produit: Mapped[str | None] = mapped_column(Text, nullable=True)
    compagnie: Mapped[str | None] = mapped_column(Text, nullable=True)
    montant_mensuel: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    statut: Mapped[str] = mapped_column(String(32), nullable=False, default="brouillon", server_default="brouillon")
    date_proposition: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_echeance: Mapped[date | None] = mapped_column(Date, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    contact: Mapped[Contact] = relationship("Contact", foreign_keys=[contact_id])
    conseiller: Mapped[Utilisateur] = relationship("Utilisateur", foreign_keys=[conseiller_id])

    __table_args__ = (
        Index("ix_propositions_conseiller_id", "conseiller_id"),
        Index("ix_propositions_contact_id", "contact_id"),
    )


class Contrat(Base):
    __tablename__ = "contrats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    numero_contrat: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    compagnie: Mapped[str | None] = mapped_column(Text, nullable=True)
    cotisation_mensuelle: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    date_signature: Mapped[date | None] = mapped_column(Date, nullable=True)
    contact_client_id: Mapped[str] = mapped_column(String(36), ForeignKey("contacts.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    contact: Mapped[Contact] = relationship("Contact", foreign_keys=[contact_client_id])

    __table_args__ = (Index("ix_contrats_contact_client_id", "contact_client_id"),)


class Tache(Base):
    __tablename__ = "taches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    titre: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    statut: Mapped[str] = mapped_column(String(32), nullable=False, default="a_faire", server_default="a_faire")
    priorite: Mapped[str] = mapped_column(String(32), nullable=False, default="normale", server_default="normale")
    date_echeance: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_completion: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    contact_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    assigne_a: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    cree_par: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    contact: Mapped[Contact | None] = relationship("Contact", foreign_keys=[contact_id])
    assignee: Mapped[Utilisateur] = relationship("Utilisateur", foreign_keys=[assigne_a])
    createur: Mapped[Utilisateur] = relationship("Utilisateur", foreign_keys=[cree_par])

    __table_args__ = (
        Index("ix_taches_assigne_a", "assigne_a"),
        Index("ix_taches_cree_par", "cree_par"),
    )


class Objectif(Base):
    __tablename__ = "objectifs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nom: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    valeur_cible: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    valeur_actuelle: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    periode_debut: Mapped[date] = mapped_column(Date, nullable=False)
    periode_fin: Mapped[date] = mapped_column(Date, nullable=False)
    assigne_a: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    equipe_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("equipes.id"), nullable=True)
    cree_par: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    assignee: Mapped[Utilisateur | None] = relationship("Utilisateur", foreign_keys=[assigne_a])
    equipe: Mapped[Equipe | None] = relationship("Equipe", foreign_keys=[equipe_id])
    createur: Mapped[Utilisateur] = relationship("Utilisateur", foreign_keys=[cree_par])


class Campagne(Base):
    __tablename__ = "campagnes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    nom: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    statut: Mapped[str] = mapped_column(String(32), nullable=False, default="brouillon", server_default="brouillon")
    date_debut: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_fin: Mapped[date | None] = mapped_column(Date, nullable=True)
    declencheur: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    etapes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    cree_par: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    createur: Mapped[Utilisateur] = relationship("Utilisateur", foreign_keys=[cree_par])
