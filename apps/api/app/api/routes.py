from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.core.config import get_settings
from app.crm.api import (
    campagnes_router,
    contacts_router,
    contrats_router,
    dashboard_router,
    get_current_user,
    import_router,
    objectifs_router,
    propositions_router,
    taches_router,
)
from app.crm.schemas import IdentityRead
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.security.context import AuthContext

router = APIRouter()
router.include_router(contacts_router)
router.include_router(propositions_router)
router.include_router(contrats_router)
router.include_router(taches_router)
router.include_router(objectifs_router)
router.include_router(campagnes_router)
router.include_router(dashboard_router)
router.include_router(import_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"], response_model=IdentityRead)
def me(user: AuthContext = Depends(get_current_user)) -> IdentityRead:
    return IdentityRead(
        user_id=user.user_id,
        email=user.email,
        role=user.role.value if user.role else None,
        team_id=user.team_id,
    )


@router.get("/metrics", tags=["system"])
def metrics(user: AuthContext = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="metrics are restricted to admin")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
