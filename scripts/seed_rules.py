#!/usr/bin/env python3
"""
Seed the regulatory catalog with baseline PFAS jurisdictions and rules.

This script provides a command-line interface to:
1. Create the EU and US jurisdictions (skipped if they already exist)
2. Create one active ruleset per jurisdiction
3. Add the baseline PFAS rules to each ruleset

Usage:
    # Seed the default tenant
    python scripts/seed_rules.py

    # Seed a specific tenant
    python scripts/seed_rules.py --tenant acme

    # Show what would be created without writing
    python scripts/seed_rules.py --dry-run

Requirements:
    - Database must be running (docker-compose up -d postgres)
    - Migration must be applied (alembic upgrade head)
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pfas_compliance.core.config import settings  # noqa: E402
from pfas_compliance.core.context import RequestContext  # noqa: E402
from pfas_compliance.core.logging import get_logger, setup_logging  # noqa: E402
from pfas_compliance.db import get_db_context  # noqa: E402
from pfas_compliance.db.enums import RuleSeverity, RulesetStatus  # noqa: E402
from pfas_compliance.services import RuleCatalog  # noqa: E402

logger = get_logger(__name__)

# code -> (name, priority, ruleset name, regulation reference, rules)
BASELINE_CATALOG: dict[str, dict] = {
    "EU": {
        "name": "European Union",
        "priority": 10,
        "ruleset": "EU PFAS restrictions",
        "reference": "Regulation (EU) 2017/1000, REACH Annex XVII",
        "rules": [
            {
                "code": "EU-PFOA-25PPB",
                "name": "PFOA and its salts above 25 ppb",
                "severity": RuleSeverity.CRITICAL,
                "thresholds": {"max_concentration_ppm": 0.025},
                "action_types": ["substitute_material", "notify_supplier"],
            },
            {
                "code": "EU-PFAS-TOTAL",
                "name": "Total PFAS above 50 ppm",
                "severity": RuleSeverity.CRITICAL,
                "thresholds": {"aggregate_pfas_ppm": 50},
                "action_types": ["substitute_material"],
            },
            {
                "code": "EU-SCIP-SVHC",
                "name": "SVHC in articles above 0.1% w/w",
                "severity": RuleSeverity.WARNING,
                "thresholds": {"max_concentration_ppm": 1000},
                "condition": {"object_types": ["Product", "Packaging"]},
                "action_types": ["scip_notification"],
            },
        ],
    },
    "US": {
        "name": "United States",
        "priority": 20,
        "ruleset": "US state PFAS packaging laws",
        "reference": "State food packaging PFAS bans",
        "rules": [
            {
                "code": "US-PKG-100PPM",
                "name": "Total organic fluorine in food packaging above 100 ppm",
                "severity": RuleSeverity.CRITICAL,
                "thresholds": {"aggregate_pfas_ppm": 100},
                "condition": {"object_types": ["Packaging"], "use_categories": ["food_contact"]},
                "action_types": ["substitute_material"],
            },
            {
                "code": "US-REPORTING",
                "name": "Intentionally added PFAS requires reporting",
                "severity": RuleSeverity.WARNING,
                "thresholds": {"max_concentration_ppm": 0},
                "exemptions": {"exempted_uses": ["medical_device"]},
                "action_types": ["regulatory_reporting"],
            },
        ],
    },
}


async def seed(tenant_id: str, dry_run: bool = False) -> tuple[int, int]:
    """
    Create the baseline catalog for one tenant.

    Existing jurisdictions are left untouched, so the script is safe to rerun.

    Returns:
        Tuple of (jurisdictions_created, rules_created)
    """
    ctx = RequestContext(tenant_id=tenant_id)
    jurisdictions_created = 0
    rules_created = 0

    async with get_db_context() as db:
        catalog = RuleCatalog(db)

        for code, entry in BASELINE_CATALOG.items():
            if await catalog.get_jurisdiction_by_code(ctx, code) is not None:
                print(f"  - {code}: already present, skipping")
                continue

            if dry_run:
                print(f"  + {code}: would create {len(entry['rules'])} rules")
                continue

            jurisdiction = await catalog.create_jurisdiction(
                ctx, code=code, name=entry["name"], priority=entry["priority"]
            )
            ruleset = await catalog.create_ruleset(
                ctx,
                jurisdiction_id=jurisdiction.id,
                name=entry["ruleset"],
                status=RulesetStatus.ACTIVE,
                regulation_reference=entry["reference"],
            )
            for rule in entry["rules"]:
                await catalog.add_rule(ctx, ruleset_id=ruleset.id, **rule)
                rules_created += 1

            jurisdictions_created += 1
            print(f"  + {code}: {len(entry['rules'])} rules")

        if not dry_run:
            await db.commit()

    logger.info(
        "Catalog seeded",
        tenant_id=tenant_id,
        jurisdictions=jurisdictions_created,
        rules=rules_created,
    )
    return jurisdictions_created, rules_created


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Seed baseline PFAS jurisdictions and rules",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--tenant", "-t",
        type=str,
        default=settings.default_tenant_id,
        help=f"Tenant to seed (default: {settings.default_tenant_id})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview the catalog without saving to database",
    )
    args = parser.parse_args()

    setup_logging()
    print(f"Seeding catalog for tenant '{args.tenant}'")
    jurisdictions, rules = asyncio.run(seed(args.tenant, dry_run=args.dry_run))
    print(f"\nCreated {jurisdictions} jurisdictions and {rules} rules")


if __name__ == "__main__":
    main()
