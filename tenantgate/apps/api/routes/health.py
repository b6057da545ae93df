from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from tenantgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantgate.apps.api.response import SuccessEnvelope, success_response
from tenantgate.core.config import get_settings

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    store_backend: str
    quota_backend: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
def health(request: Request) -> dict:
    settings = get_settings()
    payload = HealthResponse(
        status="ok",
        store_backend=settings.store_backend,
        quota_backend=settings.quota_backend,
    )
    return success_response(request=request, data=payload)
