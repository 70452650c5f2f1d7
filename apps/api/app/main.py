import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import SQLAlchemyError

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.crm.api import error_response
from app.logging import configure_logging
from app.metrics import observe_store_failure, resolve_http_path_label
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel
from app.platform.security.errors import IdentityUnavailableError


configure_logging(service="courtage-crm-api")
logger = logging.getLogger("app.lifecycle")

app = FastAPI(title="Courtage CRM API", version="0.1.0")
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(IdentityUnavailableError)
async def identity_unavailable_handler(request: Request, exc: IdentityUnavailableError) -> JSONResponse:
    logger.info("crm.identity.unavailable", extra={"path": request.url.path, "error": exc.reason})
    return error_response(
        request,
        status_code=status.HTTP_401_UNAUTHORIZED,
        code="crm_identity_unavailable",
        message="authentication required",
        details=exc.reason,
    )


@app.exception_handler(SQLAlchemyError)
async def store_unavailable_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    path = resolve_http_path_label(request)
    observe_store_failure(path)
    logger.error("crm.store.failed", exc_info=exc, extra={"path": path, "error": str(exc)})
    return error_response(
        request,
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code="crm_store_unavailable",
        message="data store unavailable",
        details=None,
    )


settings = get_settings()
if settings.otel_enabled:
    setup_otel("courtage-crm-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
