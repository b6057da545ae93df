from __future__ import annotations

from tenantgate.core.config import get_settings
from tenantgate.core.logging import configure_logging
from tenantgate.services.catalog import DEFAULT_FEATURES
from tenantgate.services.entitlements import build_service


def seed() -> None:
    configure_logging()
    # Skip the startup seed so the inserted count reflects this run.
    settings = get_settings().model_copy(update={"seed_default_features": False})
    service = build_service(settings)
    inserted = service.catalog.seed_defaults()
    print(f"seeded_features={inserted}")
    print(f"catalog_size={len(service.catalog.list_definitions())}")
    print(f"default_features={len(DEFAULT_FEATURES)}")


if __name__ == "__main__":
    seed()
