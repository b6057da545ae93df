from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from tenantgate.core.config import get_settings


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = Field(default=API_VERSION)
    # Tenant the caller acted in; omitted for platform-level calls.
    tenant_id: str | None = None


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def assign_request_id(request: Request) -> str:
    """Return the request id, adopting the client's header or minting one."""
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
    return request_id


def is_versioned_request(request: Request) -> bool:
    return request.url.path.startswith(f"/{API_VERSION}")


def _meta(request: Request) -> dict[str, Any]:
    tenant_id = (request.headers.get(get_settings().auth_tenant_header) or "").strip() or None
    meta = ResponseMeta(request_id=assign_request_id(request), tenant_id=tenant_id)
    return meta.model_dump(exclude_none=True)


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    # Domain values (enums, frozen dataclasses) are encoded here so routes can return them directly.
    return {"data": jsonable_encoder(data), "meta": _meta(request)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, details=jsonable_encoder(details) if details else None)
    return {"error": error.model_dump(exclude_none=True), "meta": _meta(request)}
