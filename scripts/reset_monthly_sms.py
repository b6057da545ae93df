from __future__ import annotations

import argparse
import sys

from tenantgate.core.errors import NotFoundError
from tenantgate.core.logging import configure_logging
from tenantgate.services.entitlements import build_service


def _build_parser() -> argparse.ArgumentParser:
    # Run from the monthly scheduler; one invocation can reset several tenants.
    parser = argparse.ArgumentParser(description="Reset monthly SMS counters")
    parser.add_argument("--tenant", action="append", required=True, help="Tenant identifier (repeatable)")
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = _build_parser().parse_args(argv)
    service = build_service()
    failures = 0
    for tenant_id in args.tenant:
        try:
            service.get_tenant(tenant_id)
        except NotFoundError:
            print(f"tenant_id={tenant_id} status=not_found")
            failures += 1
            continue
        service.reset_monthly_sms(tenant_id)
        print(f"tenant_id={tenant_id} status=reset")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
