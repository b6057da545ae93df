from __future__ import annotations

from typing import Any


class TenantGateError(Exception):
    """Base error for tenantgate."""

    code = "TENANTGATE_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = {k: v for k, v in details.items() if v is not None}


class EntitlementExceededError(TenantGateError):
    """Requested grant is not covered by the tenant's entitlement."""

    code = "ENTITLEMENT_EXCEEDED"


class SelfModificationDeniedError(TenantGateError):
    """Actor attempted to change their own permission record."""

    code = "SELF_MODIFICATION_DENIED"


class QuotaExceededError(TenantGateError):
    """Bounded counter is already at its maximum."""

    code = "QUOTA_EXCEEDED"


class ValidationError(TenantGateError):
    """Unknown feature key or malformed input."""

    code = "VALIDATION_ERROR"


class NotFoundError(TenantGateError):
    """Tenant, plan or feature definition does not exist."""

    code = "NOT_FOUND"


class ForbiddenError(TenantGateError):
    """Caller role does not allow the operation."""

    code = "AUTH_FORBIDDEN"
