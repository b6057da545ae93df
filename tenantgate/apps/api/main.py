from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantgate.apps.api.errors import (
    http_exception_handler,
    tenantgate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from tenantgate.apps.api.response import API_VERSION, REQUEST_ID_HEADER, assign_request_id
from tenantgate.apps.api.routes.admin import router as admin_router
from tenantgate.apps.api.routes.feature_flags import router as feature_flags_router
from tenantgate.apps.api.routes.health import router as health_router
from tenantgate.apps.api.routes.notifications import router as notifications_router
from tenantgate.apps.api.routes.personal_notes import router as personal_notes_router
from tenantgate.core.config import get_settings
from tenantgate.core.errors import TenantGateError
from tenantgate.core.logging import configure_logging
from tenantgate.services.entitlements import EntitlementService, get_entitlement_service


def create_app(service: EntitlementService | None = None) -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title=f"{settings.app_name} API", version=API_VERSION)
    # Handlers reach the service through app.state via the get_service dependency.
    app.state.entitlements = service or get_entitlement_service()

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = assign_request_id(request)
        response = await call_next(request)
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    app.add_exception_handler(TenantGateError, tenantgate_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    # Platform-admin surface for catalog, plans and tenant grants.
    app.include_router(admin_router, prefix=f"/{API_VERSION}")
    app.include_router(feature_flags_router, prefix=f"/{API_VERSION}")
    app.include_router(notifications_router, prefix=f"/{API_VERSION}")
    app.include_router(personal_notes_router, prefix=f"/{API_VERSION}")

    return app
