from __future__ import annotations

from fastapi import FastAPI
import pytest

from tenantgate.apps.api.main import create_app
from tenantgate.services.entitlements import EntitlementService
from tenantgate.services.identity import InMemoryIdentityStore
from tenantgate.tests.factories import MANAGER_ID, OWNER_ID, STAFF_ID, TENANT_ID


@pytest.fixture
def app(service: EntitlementService, identity: InMemoryIdentityStore) -> FastAPI:
    identity.set_role(TENANT_ID, OWNER_ID, "OWNER")
    identity.set_role(TENANT_ID, MANAGER_ID, "manager")
    identity.set_role(TENANT_ID, STAFF_ID, "STAFF")
    return create_app(service=service)
