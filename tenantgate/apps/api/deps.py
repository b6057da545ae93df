from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from tenantgate.core.config import get_settings
from tenantgate.domain.entitlements import PERMISSION_EDITOR_ROLES, Role
from tenantgate.services.entitlements import EntitlementService
from tenantgate.services.resolver import EntitlementResolver


logger = logging.getLogger(__name__)


class Principal(BaseModel):
    # Caller identity resolved from headers and the identity store.
    user_id: str
    tenant_id: str | None = None
    role: Role | None = None
    is_platform_admin: bool = False


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def get_service(request: Request) -> EntitlementService:
    # The app owns one service instance; handlers receive it explicitly.
    return request.app.state.entitlements


def get_current_principal(
    request: Request,
    service: EntitlementService = Depends(get_service),
) -> Principal:
    settings = get_settings()
    user_id = (request.headers.get(settings.auth_user_header) or "").strip()
    if not user_id:
        raise _auth_error(f"{settings.auth_user_header} header is required")
    tenant_id = (request.headers.get(settings.auth_tenant_header) or "").strip() or None
    role = service.identity.get_role(tenant_id, user_id) if tenant_id else None
    return Principal(
        user_id=user_id,
        tenant_id=tenant_id,
        role=role,
        is_platform_admin=service.identity.is_platform_admin(user_id),
    )


def require_platform_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_platform_admin:
        logger.info("platform_admin_required user_id=%s", principal.user_id)
        raise _forbidden_error("Platform administrator access required")
    return principal


def require_tenant_member(principal: Principal = Depends(get_current_principal)) -> Principal:
    settings = get_settings()
    if principal.tenant_id is None:
        raise _auth_error(f"{settings.auth_tenant_header} header is required")
    if principal.role is None:
        raise _forbidden_error("User is not a member of this tenant")
    return principal


def require_role(*roles: Role) -> Callable[..., Principal]:
    # Dependency factory gating a route on the caller's tenant role.
    allowed = frozenset(roles)

    def _dependency(principal: Principal = Depends(require_tenant_member)) -> Principal:
        if principal.role not in allowed:
            logger.info(
                "role_forbidden tenant_id=%s user_id=%s role=%s",
                principal.tenant_id,
                principal.user_id,
                principal.role,
            )
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return _dependency


require_permission_editor = require_role(*PERMISSION_EDITOR_ROLES)


def get_resolver(
    principal: Principal = Depends(require_tenant_member),
    service: EntitlementService = Depends(get_service),
) -> EntitlementResolver:
    # One snapshot per request; every check in the handler sees the same records.
    assert principal.tenant_id is not None
    return service.require_resolver(principal.tenant_id, principal.user_id)
