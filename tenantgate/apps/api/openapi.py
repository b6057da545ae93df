from __future__ import annotations

from typing import Any

from tenantgate.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response(
        "Missing caller identity",
        _error_example(code="AUTH_UNAUTHORIZED", message="X-User-Id header is required"),
    ),
    402: _response(
        "Quota exceeded",
        _error_example(
            code="QUOTA_EXCEEDED",
            message="You can pin at most 5 notes",
            details={"scope_id": "pins:t1:u1", "limit": 5, "used": 5},
        ),
    ),
    403: _response(
        "Forbidden",
        _error_example(
            code="SELF_MODIFICATION_DENIED",
            message="You cannot change your own permissions",
            details={"user_id": "u1"},
        ),
    ),
    404: _response(
        "Not found",
        _error_example(code="NOT_FOUND", message="No entitlement record for tenant t1"),
    ),
    409: _response(
        "Entitlement exceeded",
        _error_example(
            code="ENTITLEMENT_EXCEEDED",
            message="Feature is not enabled for this tenant",
            details={"tenant_id": "t1", "feature_keys": ["reports"]},
        ),
    ),
    422: _response(
        "Validation error",
        _error_example(
            code="VALIDATION_ERROR",
            message="Unknown feature key: reportz",
            details={"feature_key": "reportz"},
        ),
    ),
    500: _response(
        "Internal server error",
        _error_example(code="INTERNAL_ERROR", message="Internal server error"),
    ),
}
