from __future__ import annotations

import argparse
import sys

from tenantgate.core.errors import TenantGateError
from tenantgate.core.logging import configure_logging
from tenantgate.services.entitlements import build_service


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Assign a plan to a tenant")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument("--plan", default=None, help="Plan id (defaults to the catalog default plan)")
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = _build_parser().parse_args(argv)
    service = build_service()
    try:
        if args.plan:
            record = service.assign_plan(args.tenant, args.plan, actor_id="cli")
        else:
            record = service.assign_default_plan(args.tenant, actor_id="cli")
    except TenantGateError as exc:
        print(f"error_code={exc.code} message={exc.message}")
        return 1
    enabled = sorted(key for key, value in record.features.items() if value)
    print(f"tenant_id={record.tenant_id}")
    print(f"plan_id={record.plan_id}")
    print(f"enabled_features={','.join(enabled)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
