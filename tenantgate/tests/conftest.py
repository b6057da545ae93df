from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from tenantgate.core.config import Settings, get_settings
from tenantgate.persistence.db import build_engine, build_session_factory, init_db
from tenantgate.services.entitlements import (
    EntitlementService,
    build_service,
    reset_entitlement_service,
)
from tenantgate.services.identity import InMemoryIdentityStore
from tenantgate.tests.factories import PLATFORM_ADMIN_ID, PRO_PLAN, STARTER_PLAN


@pytest.fixture(autouse=True)
def _reset_singletons() -> None:
    # Keep settings and the process-wide service isolated between tests.
    get_settings.cache_clear()
    reset_entitlement_service()
    yield
    get_settings.cache_clear()
    reset_entitlement_service()


@pytest.fixture
def identity() -> InMemoryIdentityStore:
    return InMemoryIdentityStore([PLATFORM_ADMIN_ID])


@pytest.fixture
def service(identity: InMemoryIdentityStore) -> EntitlementService:
    settings = Settings(store_backend="memory", quota_backend="memory", pinned_items_max=5)
    built = build_service(settings, identity=identity)
    built.plans.save_plan(STARTER_PLAN)
    built.plans.save_plan(PRO_PLAN)
    return built


@pytest.fixture
def sqlite_session_factory(tmp_path: Path) -> sessionmaker[Session]:
    engine = build_engine(f"sqlite:///{tmp_path / 'tenantgate.db'}")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()
