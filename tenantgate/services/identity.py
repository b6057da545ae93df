from __future__ import annotations

import threading
from typing import Iterable, Protocol

from tenantgate.core.errors import ValidationError
from tenantgate.domain.entitlements import Role


class IdentityStore(Protocol):
    def get_role(self, tenant_id: str, user_id: str) -> Role | None:
        ...

    def is_platform_admin(self, user_id: str) -> bool:
        ...


def normalize_role(value: str | Role) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {value}", role=str(value)) from exc


class InMemoryIdentityStore:
    # Role directory for local runs and tests; production reads the user service.
    def __init__(self, platform_admin_ids: Iterable[str] = ()) -> None:
        self._roles: dict[tuple[str, str], Role] = {}
        self._platform_admins = {item for item in platform_admin_ids if item}
        self._lock = threading.Lock()

    def get_role(self, tenant_id: str, user_id: str) -> Role | None:
        with self._lock:
            return self._roles.get((tenant_id, user_id))

    def is_platform_admin(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._platform_admins

    def set_role(self, tenant_id: str, user_id: str, role: str | Role) -> Role:
        resolved = normalize_role(role)
        with self._lock:
            self._roles[(tenant_id, user_id)] = resolved
        return resolved

    def add_platform_admin(self, user_id: str) -> None:
        with self._lock:
            self._platform_admins.add(user_id)


def parse_admin_ids(raw: str) -> list[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]
