from __future__ import annotations

import asyncio

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
import pytest

from tenantgate.tests.factories import OWNER_ID, STAFF_ID, headers


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_pin_limit_is_enforced(app: FastAPI) -> None:
    async with _client(app) as client:
        pins = [await client.post("/v1/personal-notes/pins", headers=headers(STAFF_ID)) for _ in range(5)]
        rejected = await client.post("/v1/personal-notes/pins", headers=headers(STAFF_ID))
        stats = await client.get("/v1/personal-notes/stats/pinned-count", headers=headers(STAFF_ID))
        other_user = await client.get("/v1/personal-notes/stats/pinned-count", headers=headers(OWNER_ID))

    assert [response.status_code for response in pins] == [201] * 5
    assert pins[-1].json()["data"] == {"count": 5, "max": 5}
    assert rejected.status_code == 402
    assert rejected.json()["error"]["code"] == "QUOTA_EXCEEDED"
    assert stats.json()["data"] == {"count": 5, "max": 5}
    assert other_user.json()["data"] == {"count": 0, "max": 5}


@pytest.mark.asyncio
async def test_unpin_frees_a_slot(app: FastAPI) -> None:
    async with _client(app) as client:
        for _ in range(5):
            await client.post("/v1/personal-notes/pins", headers=headers(STAFF_ID))
        unpinned = await client.delete("/v1/personal-notes/pins", headers=headers(STAFF_ID))
        repinned = await client.post("/v1/personal-notes/pins", headers=headers(STAFF_ID))

    assert unpinned.json()["data"]["count"] == 4
    assert repinned.status_code == 201


@pytest.mark.asyncio
async def test_concurrent_pins_never_exceed_max(app: FastAPI) -> None:
    async with _client(app) as client:
        responses = await asyncio.gather(
            *[client.post("/v1/personal-notes/pins", headers=headers(STAFF_ID)) for _ in range(8)]
        )
        stats = await client.get("/v1/personal-notes/stats/pinned-count", headers=headers(STAFF_ID))

    codes = sorted(response.status_code for response in responses)
    assert codes == [201] * 5 + [402] * 3
    assert stats.json()["data"]["count"] == 5
