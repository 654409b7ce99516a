#!/usr/bin/env python3
"""
Verify CAS numbers against the chemical data providers.

Usage:
    # Verify one substance and cache it
    python scripts/verify_substance.py 335-67-1

    # Several at once, ignoring cached records
    python scripts/verify_substance.py 335-67-1 1763-23-1 --refresh

    # Query providers without saving
    python scripts/verify_substance.py 335-67-1 --dry-run

Requirements:
    - Database must be running with the schema applied
    - Network access to PubChem / CAS Common Chemistry
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
from pfas_compliance.db import Substance, get_db_context  # noqa: E402
from pfas_compliance.services import (  # noqa: E402
    InvalidCASNumberError,
    SubstanceVerificationService,
    VerificationInsufficientError,
)

logger = get_logger(__name__)


def print_substance(substance: Substance) -> None:
    metadata = substance.verification_metadata or {}
    print(f"\n{substance.cas_number}  {substance.name or '(unnamed)'}")
    print(f"  Formula:       {substance.molecular_formula or '-'}")
    print(f"  Weight:        {substance.molecular_weight or '-'}")
    print(f"  Score:         {metadata.get('verification_score', '-')}")
    print(f"  Sources:       {', '.join(metadata.get('sources_responded', [])) or '-'}")
    print(f"  PFAS:          {substance.pfas_flag}")
    print(f"  SVHC:          {substance.svhc_status}")
    print(f"  Restricted:    {substance.restricted_status}")
    if not substance.regulatory_data_available:
        print("  Regulatory data unavailable; flags default to False")
    if substance.synonyms:
        print(f"  Synonyms:      {', '.join(substance.synonyms[:5])}")


async def run(cas_numbers: list[str], tenant_id: str, refresh: bool, dry_run: bool) -> int:
    """Verify each CAS number; returns the number of failures."""
    ctx = RequestContext(tenant_id=tenant_id)
    failures = 0

    async with get_db_context() as db:
        service = SubstanceVerificationService(db)
        for cas_number in cas_numbers:
            try:
                substance = await service.verify(ctx, cas_number, force_refresh=refresh)
            except (InvalidCASNumberError, VerificationInsufficientError) as e:
                failures += 1
                print(f"\n{cas_number}: {e}")
                continue
            print_substance(substance)

        if dry_run:
            await db.rollback()
        else:
            await db.commit()

    return failures


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Verify CAS numbers against chemical data providers")
    parser.add_argument("cas_numbers", nargs="+", help="CAS registry numbers to verify")
    parser.add_argument(
        "--tenant", "-t",
        type=str,
        default=settings.default_tenant_id,
        help="Tenant whose substance cache is used",
    )
    parser.add_argument("--refresh", action="store_true", help="Ignore cached records")
    parser.add_argument("--dry-run", action="store_true", help="Do not save verified substances")
    args = parser.parse_args()

    setup_logging()
    failures = asyncio.run(run(args.cas_numbers, args.tenant, args.refresh, args.dry_run))
    if failures:
        logger.warning("Some substances could not be verified", failures=failures)
        sys.exit(1)


if __name__ == "__main__":
    main()
