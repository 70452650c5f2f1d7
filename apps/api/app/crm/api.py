from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.config import get_settings
from app.core.database import get_db
from app.crm.import_export import import_contacts_csv
from app.crm.schemas import (
    CampagneCreate,
    CampagneRead,
    CampagneUpdate,
    ContactCreate,
    ContactDetailRead,
    ContactImportResult,
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
from app.crm.service import (
    CampagneService,
    ContactService,
    ContratService,
    DashboardService,
    ObjectifService,
    PropositionService,
    TacheService,
    resolve_actor,
)
from app.platform.security.context import AuthContext

contacts_router = APIRouter(prefix="/api/crm", tags=["crm.contacts"])
propositions_router = APIRouter(prefix="/api/crm", tags=["crm.propositions"])
contrats_router = APIRouter(prefix="/api/crm", tags=["crm.contrats"])
taches_router = APIRouter(prefix="/api/crm", tags=["crm.taches"])
objectifs_router = APIRouter(prefix="/api/crm", tags=["crm.objectifs"])
campagnes_router = APIRouter(prefix="/api/crm", tags=["crm.campagnes"])
dashboard_router = APIRouter(prefix="/api/crm", tags=["crm.dashboard"])
import_router = APIRouter(prefix="/api/crm", tags=["crm.import"])
contact_service = ContactService()
proposition_service = PropositionService()
contrat_service = ContratService()
tache_service = TacheService()
objectif_service = ObjectifService()
campagne_service = CampagneService()
dashboard_service = DashboardService()


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def _http_error(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


def get_current_user(
    request: Request,
    auth_user: AuthUser | None = Depends(get_auth_user),
    db: Session = Depends(get_db),
) -> AuthContext:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return resolve_actor(db, auth_user, correlation_id)


def page_limit(limit: int | None = Query(default=None, ge=1)) -> int:
    settings = get_settings()
    if limit is None:
        return settings.list_default_limit
    return min(limit, settings.list_max_limit)


@contacts_router.get("/contacts", response_model=list[ContactRead])
def list_contacts(
    request: Request,
    statut_lead: str | None = Query(default=None),
    search: str | None = Query(default=None),
    limit: int = Depends(page_limit),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[ContactRead] | JSONResponse:
    try:
        return contact_service.list_contacts(
            db,
            user,
            filters={"statut_lead": statut_lead, "search": search},
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return _http_error(request, exc, "crm_contact_list_failed")


@contacts_router.post("/contacts", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    request: Request,
    dto: ContactCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.create_contact(db, user, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_contact_create_failed")


@contacts_router.get("/contacts/{contact_id}", response_model=ContactRead)
def get_contact(
    request: Request,
    contact_id: str,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.get_contact(db, user, contact_id)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_contact_get_failed")


@contacts_router.get("/contacts/{contact_id}/detail", response_model=ContactDetailRead)
def get_contact_detail(
    request: Request,
    contact_id: str,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ContactDetailRead | JSONResponse:
    try:
        return contact_service.get_contact_detail(db, user, contact_id)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_contact_detail_failed")


@contacts_router.patch("/contacts/{contact_id}", response_model=ContactRead)
def patch_contact(
    request: Request,
    contact_id: str,
    dto: ContactUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.update_contact(db, user, contact_id, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_contact_update_failed")


@contacts_router.delete("/contacts/{contact_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_contact(
    request: Request,
    contact_id: str,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> Any:
    try:
        contact_service.delete_contact(db, user, contact_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return _http_error(request, exc, "crm_contact_delete_failed")


@propositions_router.get("/propositions", response_model=list[PropositionRead])
def list_propositions(
    request: Request,
    statut: str | None = Query(default=None),
    contact_id: str | None = Query(default=None),
    limit: int = Depends(page_limit),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[PropositionRead] | JSONResponse:
    try:
        return proposition_service.list_propositions(
            db,
            user,
            filters={"statut": statut, "contact_id": contact_id},
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return _http_error(request, exc, "crm_proposition_list_failed")


@propositions_router.post("/propositions", response_model=PropositionRead, status_code=status.HTTP_201_CREATED)
def create_proposition(
    request: Request,
    dto: PropositionCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> PropositionRead | JSONResponse:
    try:
        return proposition_service.create_proposition(db, user, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_proposition_create_failed")


@propositions_router.get("/propositions/{proposition_id}", response_model=PropositionRead)
def get_proposition(
    request: Request,
    proposition_id: str,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> PropositionRead | JSONResponse:
    try:
        return proposition_service.get_proposition(db, user, proposition_id)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_proposition_get_failed")


@propositions_router.patch("/propositions/{proposition_id}", response_model=PropositionRead)
def patch_proposition(
    request: Request,
    proposition_id: str,
    dto: PropositionUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> PropositionRead | JSONResponse:
    try:
        return proposition_service.update_proposition(db, user, proposition_id, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_proposition_update_failed")


@contrats_router.get("/contrats", response_model=list[ContratRead])
def list_contrats(
    request: Request,
    contact_client_id: str | None = Query(default=None),
    limit: int = Depends(page_limit),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[ContratRead] | JSONResponse:
    try:
        return contrat_service.list_contrats(
            db,
            user,
            filters={"contact_client_id": contact_client_id},
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return _http_error(request, exc, "crm_contrat_list_failed")


@contrats_router.post("/contrats", response_model=ContratRead, status_code=status.HTTP_201_CREATED)
def create_contrat(
    request: Request,
    dto: ContratCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ContratRead | JSONResponse:
    try:
        return contrat_service.create_contrat(db, user, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_contrat_create_failed")


@contrats_router.get("/contrats/{contrat_id}", response_model=ContratRead)
def get_contrat(
    request: Request,
    contrat_id: str,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ContratRead | JSONResponse:
    try:
        return contrat_service.get_contrat(db, user, contrat_id)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_contrat_get_failed")


@taches_router.get("/taches", response_model=list[TacheRead])
def list_taches(
    request: Request,
    statut: str | None = Query(default=None),
    priorite: str | None = Query(default=None),
    contact_id: str | None = Query(default=None),
    limit: int = Depends(page_limit),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[TacheRead] | JSONResponse:
    try:
        return tache_service.list_taches(
            db,
            user,
            filters={"statut": statut, "priorite": priorite, "contact_id": contact_id},
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return _http_error(request, exc, "crm_tache_list_failed")


@taches_router.post("/taches", response_model=TacheRead, status_code=status.HTTP_201_CREATED)
def create_tache(
    request: Request,
    dto: TacheCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> TacheRead | JSONResponse:
    try:
        return tache_service.create_tache(db, user, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_tache_create_failed")


@taches_router.get("/taches/{tache_id}", response_model=TacheRead)
def get_tache(
    request: Request,
    tache_id: str,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> TacheRead | JSONResponse:
    try:
        return tache_service.get_tache(db, user, tache_id)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_tache_get_failed")


@taches_router.patch("/taches/{tache_id}", response_model=TacheRead)
def patch_tache(
    request: Request,
    tache_id: str,
    dto: TacheUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> TacheRead | JSONResponse:
    try:
        return tache_service.update_tache(db, user, tache_id, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_tache_update_failed")


@objectifs_router.get("/objectifs", response_model=list[ObjectifRead])
def list_objectifs(
    request: Request,
    type_filter: str | None = Query(default=None, alias="type"),
    limit: int = Depends(page_limit),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[ObjectifRead] | JSONResponse:
    try:
        return objectif_service.list_objectifs(db, user, filters={"type": type_filter}, limit=limit, offset=offset)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_objectif_list_failed")


@objectifs_router.post("/objectifs", response_model=ObjectifRead, status_code=status.HTTP_201_CREATED)
def create_objectif(
    request: Request,
    dto: ObjectifCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ObjectifRead | JSONResponse:
    try:
        return objectif_service.create_objectif(db, user, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_objectif_create_failed")


@objectifs_router.get("/objectifs/{objectif_id}", response_model=ObjectifRead)
def get_objectif(
    request: Request,
    objectif_id: str,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ObjectifRead | JSONResponse:
    try:
        return objectif_service.get_objectif(db, user, objectif_id)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_objectif_get_failed")


@objectifs_router.patch("/objectifs/{objectif_id}", response_model=ObjectifRead)
def patch_objectif(
    request: Request,
    objectif_id: str,
    dto: ObjectifUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ObjectifRead | JSONResponse:
    try:
        return objectif_service.update_objectif(db, user, objectif_id, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_objectif_update_failed")


@campagnes_router.get("/campagnes", response_model=list[CampagneRead])
def list_campagnes(
    request: Request,
    statut: str | None = Query(default=None),
    limit: int = Depends(page_limit),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> list[CampagneRead] | JSONResponse:
    try:
        return campagne_service.list_campagnes(db, user, filters={"statut": statut}, limit=limit, offset=offset)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_campagne_list_failed")


@campagnes_router.post("/campagnes", response_model=CampagneRead, status_code=status.HTTP_201_CREATED)
def create_campagne(
    request: Request,
    dto: CampagneCreate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> CampagneRead | JSONResponse:
    try:
        return campagne_service.create_campagne(db, user, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_campagne_create_failed")


@campagnes_router.get("/campagnes/{campagne_id}", response_model=CampagneRead)
def get_campagne(
    request: Request,
    campagne_id: str,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> CampagneRead | JSONResponse:
    try:
        return campagne_service.get_campagne(db, user, campagne_id)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_campagne_get_failed")


@campagnes_router.patch("/campagnes/{campagne_id}", response_model=CampagneRead)
def patch_campagne(
    request: Request,
    campagne_id: str,
    dto: CampagneUpdate,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> CampagneRead | JSONResponse:
    try:
        return campagne_service.update_campagne(db, user, campagne_id, dto)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_campagne_update_failed")


@dashboard_router.get("/dashboard", response_model=DashboardStatsRead)
def get_dashboard(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> DashboardStatsRead | JSONResponse:
    try:
        return dashboard_service.get_stats(db, user)
    except HTTPException as exc:
        return _http_error(request, exc, "crm_dashboard_failed")


@import_router.post("/import/contacts", response_model=ContactImportResult)
def import_contacts(
    request: Request,
    file: UploadFile = File(...),
    mapping: str = Form(...),
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> ContactImportResult | JSONResponse:
    try:
        mapping_payload = json.loads(mapping)
        content = file.file.read()
        return import_contacts_csv(db, user, content, mapping_payload, contact_service=contact_service)
    except json.JSONDecodeError as exc:
        return error_response(
            request,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="crm_import_contacts_failed",
            message=str(exc),
            details=str(exc),
        )
    except HTTPException as exc:
        return _http_error(request, exc, "crm_import_contacts_failed")
