from __future__ import annotations

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
import pytest

from tenantgate.services.entitlements import EntitlementService
from tenantgate.tests.factories import MANAGER_ID, OWNER_ID, STAFF_ID, TENANT_ID, headers


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def pro_tenant(service: EntitlementService) -> EntitlementService:
    service.assign_plan(TENANT_ID, "pro")
    return service


@pytest.mark.asyncio
async def test_user_flags_report_every_catalog_key(app: FastAPI, pro_tenant: EntitlementService) -> None:
    async with _client(app) as client:
        response = await client.get("/v1/feature-flags/user", headers=headers(STAFF_ID))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["tenant_id"] == TENANT_ID
    assert data["user_id"] == STAFF_ID
    assert len(data["features"]) == len(pro_tenant.catalog.list_definitions())
    assert data["features"]["reports"] is True
    assert data["features"]["insights"] is False


@pytest.mark.asyncio
async def test_member_routes_require_tenant_membership(app: FastAPI, pro_tenant: EntitlementService) -> None:
    async with _client(app) as client:
        no_tenant = await client.get("/v1/feature-flags/user", headers=headers(STAFF_ID, tenant_id=None))
        outsider = await client.get("/v1/feature-flags/user", headers=headers("stranger"))

    assert no_tenant.status_code == 401
    assert outsider.status_code == 403
    assert outsider.json()["error"]["code"] == "AUTH_FORBIDDEN"


@pytest.mark.asyncio
async def test_tenant_flags_list_explicit_grants(app: FastAPI, pro_tenant: EntitlementService) -> None:
    async with _client(app) as client:
        response = await client.get("/v1/feature-flags/tenant", headers=headers(STAFF_ID))

    features = response.json()["data"]["features"]
    assert "insights" not in features
    assert features["beds"] is True


@pytest.mark.asyncio
async def test_route_check(app: FastAPI, pro_tenant: EntitlementService) -> None:
    async with _client(app) as client:
        allowed = await client.get(
            "/v1/feature-flags/route-check", params={"path": "/payments/rent"}, headers=headers(STAFF_ID)
        )
        denied = await client.get(
            "/v1/feature-flags/route-check", params={"path": "/visitors/7"}, headers=headers(STAFF_ID)
        )
        ungated = await client.get(
            "/v1/feature-flags/route-check", params={"path": "/residents"}, headers=headers(STAFF_ID)
        )

    assert allowed.json()["data"] == {"path": "/payments/rent", "feature_key": "rentPayments", "allowed": True}
    assert denied.json()["data"]["allowed"] is False
    assert ungated.json()["data"] == {"path": "/residents", "feature_key": None, "allowed": True}


@pytest.mark.asyncio
async def test_owner_edits_staff_permissions(app: FastAPI, pro_tenant: EntitlementService) -> None:
    async with _client(app) as client:
        patched = await client.patch(
            f"/v1/feature-flags/user/{STAFF_ID}",
            json={"permissions": {"reports": {"enabled": False}, "beds": {"enabled": True}}},
            headers=headers(OWNER_ID),
        )
        staff_view = await client.get("/v1/feature-flags/user", headers=headers(STAFF_ID))
        cleared = await client.patch(
            f"/v1/feature-flags/user/{STAFF_ID}",
            json={"permissions": {"reports": {"enabled": None}}},
            headers=headers(MANAGER_ID),
        )

    assert patched.status_code == 200
    data = patched.json()["data"]
    assert data["overrides"] == {"beds": True, "reports": False}
    assert data["resolved"]["reports"] is False
    assert staff_view.json()["data"]["features"]["reports"] is False
    assert cleared.json()["data"]["overrides"] == {"beds": True}
    assert cleared.json()["data"]["resolved"]["reports"] is True


@pytest.mark.asyncio
async def test_permission_edit_errors(app: FastAPI, pro_tenant: EntitlementService) -> None:
    async with _client(app) as client:
        self_edit = await client.patch(
            f"/v1/feature-flags/user/{OWNER_ID}",
            json={"permissions": {"reports": {"enabled": True}}},
            headers=headers(OWNER_ID),
        )
        exceeded = await client.patch(
            f"/v1/feature-flags/user/{STAFF_ID}",
            json={"permissions": {"insights": {"enabled": True}}},
            headers=headers(OWNER_ID),
        )
        staff_edit = await client.patch(
            f"/v1/feature-flags/user/{MANAGER_ID}",
            json={"permissions": {"reports": {"enabled": False}}},
            headers=headers(STAFF_ID),
        )
        empty = await client.patch(
            f"/v1/feature-flags/user/{STAFF_ID}",
            json={"permissions": {}},
            headers=headers(OWNER_ID),
        )

    assert self_edit.status_code == 403
    assert self_edit.json()["error"]["code"] == "SELF_MODIFICATION_DENIED"
    assert exceeded.status_code == 409
    assert exceeded.json()["error"]["code"] == "ENTITLEMENT_EXCEEDED"
    assert exceeded.json()["error"]["details"]["feature_keys"] == ["insights"]
    assert staff_edit.status_code == 403
    assert staff_edit.json()["error"]["code"] == "AUTH_FORBIDDEN"
    assert empty.status_code == 422


@pytest.mark.asyncio
async def test_editor_reads_user_permissions(app: FastAPI, pro_tenant: EntitlementService) -> None:
    pro_tenant.set_user_feature(OWNER_ID, TENANT_ID, STAFF_ID, "rooms", False)
    async with _client(app) as client:
        response = await client.get(f"/v1/feature-flags/user/{STAFF_ID}", headers=headers(MANAGER_ID))

    data = response.json()["data"]
    assert data["user_id"] == STAFF_ID
    assert data["tenant_features"]["rooms"] is True
    assert data["overrides"] == {"rooms": False}
    assert data["resolved"]["rooms"] is False
