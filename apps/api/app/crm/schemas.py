from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


PropositionStatut = Literal["brouillon", "envoyee", "acceptee", "refusee"]
TacheStatut = Literal["a_faire", "en_cours", "termine"]
TachePriorite = Literal["basse", "normale", "haute"]
CampagneStatut = Literal["brouillon", "active", "pausee", "terminee"]

IMPORTABLE_CONTACT_FIELDS = ("nom", "prenom", "email", "telephone", "statut_lead", "source")


class PatchModel(BaseModel):
    """Partial update body; fields named in ``non_nullable_fields`` may be omitted but not set to null."""

    non_nullable_fields: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_null_required(self) -> PatchModel:
        for field_name in self.non_nullable_fields:
            if field_name in self.model_fields_set and getattr(self, field_name) is None:
                raise ValueError(f"{field_name} cannot be null")
        return self


class UserRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    nom_complet: str


class EquipeRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    nom: str


class ContactRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    nom: str
    prenom: str
    email: str | None = None


class ContactCreate(BaseModel):
    nom: str = Field(min_length=1)
    prenom: str = Field(min_length=1)
    email: EmailStr | None = None
    telephone: str | None = None
    statut_lead: str = "Nouveau"
    source: str | None = None
    score: int | None = None
    notes: str | None = None
    tags: list[str] | None = None


class ContactUpdate(PatchModel):
    non_nullable_fields = ("nom", "prenom", "statut_lead")

    nom: str | None = Field(default=None, min_length=1)
    prenom: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    telephone: str | None = None
    statut_lead: str | None = None
    source: str | None = None
    score: int | None = None
    notes: str | None = None
    tags: list[str] | None = None
    collaborateur_en_charge: str | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    nom: str
    prenom: str
    email: str | None
    telephone: str | None
    statut_lead: str
    source: str | None
    score: int | None
    notes: str | None
    tags: list[str] | None
    collaborateur_en_charge: str
    created_at: datetime
    updated_at: datetime
    utilisateur: UserRef | None = None


class PropositionCreate(BaseModel):
    contact_id: str
    produit: str | None = None
    compagnie: str | None = None
    montant_mensuel: Decimal | None = Field(default=None, ge=0)
    statut: PropositionStatut = "brouillon"
    date_proposition: date | None = None
    date_echeance: date | None = None
    details: dict[str, Any] | None = None


class PropositionUpdate(PatchModel):
    non_nullable_fields = ("statut",)

    produit: str | None = None
    compagnie: str | None = None
    montant_mensuel: Decimal | None = Field(default=None, ge=0)
    statut: PropositionStatut | None = None
    date_proposition: date | None = None
    date_echeance: date | None = None
    details: dict[str, Any] | None = None


class PropositionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    contact_id: str
    conseiller_id: str
    produit: str | None
    compagnie: str | None
    montant_mensuel: Decimal | None
    statut: str
    date_proposition: date | None
    date_echeance: date | None
    details: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime
    contact: ContactRef | None = None
    conseiller: UserRef | None = None


class ContratCreate(BaseModel):
    numero_contrat: str = Field(min_length=1)
    compagnie: str | None = None
    cotisation_mensuelle: Decimal = Field(ge=0)
    date_signature: date | None = None
    contact_client_id: str


class ContratRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    numero_contrat: str
    compagnie: str | None
    cotisation_mensuelle: Decimal
    date_signature: date | None
    contact_client_id: str
    created_at: datetime
    contact: ContactRef | None = None


class TacheCreate(BaseModel):
    titre: str = Field(min_length=1)
    description: str | None = None
    statut: TacheStatut = "a_faire"
    priorite: TachePriorite = "normale"
    date_echeance: date | None = None
    contact_id: str | None = None
    assigne_a: str | None = None


class TacheUpdate(PatchModel):
    non_nullable_fields = ("titre", "statut", "priorite")

    titre: str | None = Field(default=None, min_length=1)
    description: str | None = None
    statut: TacheStatut | None = None
    priorite: TachePriorite | None = None
    date_echeance: date | None = None
    date_completion: datetime | None = None
    assigne_a: str | None = None


class TacheRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    titre: str
    description: str | None
    statut: str
    priorite: str
    date_echeance: date | None
    date_completion: datetime | None
    contact_id: str | None
    assigne_a: str
    cree_par: str
    created_at: datetime
    updated_at: datetime
    contact: ContactRef | None = None
    assignee: UserRef | None = None
    createur: UserRef | None = None


class ObjectifCreate(BaseModel):
    nom: str = Field(min_length=1)
    type: str = Field(min_length=1)
    valeur_cible: Decimal = Field(gt=0)
    valeur_actuelle: Decimal = Field(default=Decimal("0"), ge=0)
    periode_debut: date
    periode_fin: date
    assigne_a: str | None = None
    equipe_id: str | None = None

    @model_validator(mode="after")
    def _check_period(self) -> ObjectifCreate:
        if self.periode_fin < self.periode_debut:
            raise ValueError("periode_fin must not be before periode_debut")
        return self


class ObjectifUpdate(PatchModel):
    non_nullable_fields = ("nom", "type", "valeur_cible", "valeur_actuelle", "periode_debut", "periode_fin")

    nom: str | None = Field(default=None, min_length=1)
    type: str | None = None
    valeur_cible: Decimal | None = Field(default=None, gt=0)
    valeur_actuelle: Decimal | None = Field(default=None, ge=0)
    periode_debut: date | None = None
    periode_fin: date | None = None
    assigne_a: str | None = None
    equipe_id: str | None = None


class ObjectifRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    nom: str
    type: str
    valeur_cible: Decimal
    valeur_actuelle: Decimal
    periode_debut: date
    periode_fin: date
    assigne_a: str | None
    equipe_id: str | None
    cree_par: str
    created_at: datetime
    updated_at: datetime
    assignee: UserRef | None = None
    equipe: EquipeRef | None = None
    createur: UserRef | None = None


class CampagneCreate(BaseModel):
    nom: str = Field(min_length=1)
    description: str | None = None
    type: str = Field(min_length=1)
    statut: CampagneStatut = "brouillon"
    date_debut: date | None = None
    date_fin: date | None = None
    declencheur: dict[str, Any] = Field(default_factory=dict)
    etapes: list[dict[str, Any]] = Field(default_factory=list)


class CampagneUpdate(PatchModel):
    non_nullable_fields = ("nom", "type", "statut", "declencheur", "etapes")

    nom: str | None = Field(default=None, min_length=1)
    description: str | None = None
    type: str | None = None
    statut: CampagneStatut | None = None
    date_debut: date | None = None
    date_fin: date | None = None
    declencheur: dict[str, Any] | None = None
    etapes: list[dict[str, Any]] | None = None


class CampagneRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    nom: str
    description: str | None
    type: str
    statut: str
    date_debut: date | None
    date_fin: date | None
    declencheur: dict[str, Any]
    etapes: list[dict[str, Any]]
    cree_par: str
    created_at: datetime
    updated_at: datetime
    createur: UserRef | None = None


class ContactDetailRead(BaseModel):
    contact: ContactRead
    propositions: list[PropositionRead]
    contrats: list[ContratRead]
    taches: list[TacheRead]


class DashboardStatsRead(BaseModel):
    nouveaux_contacts: int
    propositions_en_attente: int
    ca_mensuel: Decimal
    progression_objectif: float


class ImportRowError(BaseModel):
    row_number: int
    error_code: str
    message: str


class ContactImportResult(BaseModel):
    created_count: int
    error_count: int
    errors: list[ImportRowError]


class IdentityRead(BaseModel):
    user_id: str
    email: str | None
    role: str | None
    team_id: str | None
