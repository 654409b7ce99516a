"""
Substance verification: reconcile independent chemical data sources.

`SubstanceVerificationService.verify(ctx, cas_number)` returns one trusted
Substance record per (tenant, CAS number):

1. Normalize and validate the CAS number (format and check digit).
2. Serve a cached Substance unchanged while it is younger than the TTL.
3. Otherwise query both identity providers and the regulatory provider
   concurrently. Each call is time-bounded; a failure or timeout becomes an
   absent result rather than an error.
4. Score the agreement between the identity providers (0-100):
   - +40 both identity providers answered, +20 only one, neither: not found
   - +30 molecular formulas match exactly
   - +30 molecular weights agree within the relative tolerance (0.1%)
5. Below the gate (50) raise VerificationInsufficientError and write nothing;
   otherwise upsert the Substance.

Consensus values are "first non-null source in provider priority order",
not averaged, so a given pair of provider answers always yields the same
record.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.config import settings
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db.base import utcnow
from pfas_compliance.db.models import Substance
from pfas_compliance.services.chemical_providers import (
    ChemicalIdentity,
    ChemicalIdentityProvider,
    CommonChemistryProvider,
    HTTPRegulatoryProvider,
    PubChemProvider,
    RegulatoryStatus,
    RegulatoryStatusProvider,
)
from pfas_compliance.services.errors import InvalidCASNumberError, VerificationInsufficientError

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

BOTH_SOURCES_POINTS = 40
SINGLE_SOURCE_POINTS = 20
FORMULA_MATCH_POINTS = 30
WEIGHT_MATCH_POINTS = 30

_CAS_PATTERN = re.compile(r"^(\d{2,7})-(\d{2})-(\d)$")


# =============================================================================
# CAS Numbers
# =============================================================================


def normalize_cas_number(value: str) -> str:
    """
    Normalize and validate a CAS registry number.

    Accepts the dashed form or bare digits; verifies the check digit.

    Examples:
        normalize_cas_number(" 335-67-1 ")  -> "335-67-1"
        normalize_cas_number("335671")      -> "335-67-1"
        normalize_cas_number("335-67-2")    -> InvalidCASNumberError

    Raises:
        InvalidCASNumberError: Wrong shape or failing check digit
    """
    if not value or not value.strip():
        raise InvalidCASNumberError(value or "", "empty")

    candidate = value.strip()
    if candidate.isdigit():
        if not 5 <= len(candidate) <= 10:
            raise InvalidCASNumberError(value, "invalid length")
        candidate = f"{candidate[:-3]}-{candidate[-3:-1]}-{candidate[-1]}"

    match = _CAS_PATTERN.match(candidate)
    if not match:
        raise InvalidCASNumberError(value, "expected format NNNNNNN-NN-N")

    body = match.group(1) + match.group(2)
    check_digit = int(match.group(3))
    checksum = sum(int(digit) * weight for weight, digit in enumerate(reversed(body), start=1)) % 10
    if checksum != check_digit:
        raise InvalidCASNumberError(value, "check digit mismatch")

    return candidate


def is_valid_cas_number(value: str) -> bool:
    """Check if a string is a valid CAS number."""
    try:
        normalize_cas_number(value)
    except InvalidCASNumberError:
        return False
    return True


# =============================================================================
# Consistency Scoring
# =============================================================================


@dataclass
class ConsistencyResult:
    """Score and individual checks for one pair of identity answers."""

    score: int
    checks: list[dict[str, Any]] = field(default_factory=list)
    responding_sources: list[str] = field(default_factory=list)


def weights_agree(first: float, second: float, tolerance: float) -> bool:
    """True when the relative difference is within `tolerance` (0.001 = 0.1%)."""
    reference = max(abs(first), abs(second))
    if reference == 0:
        return True
    return abs(first - second) / reference <= tolerance


def score_consistency(
    identities: list[ChemicalIdentity | None],
    weight_tolerance: float | None = None,
) -> ConsistencyResult:
    """
    Deterministic 0-100 agreement score between two identity answers.

    Args:
        identities: Answers in provider priority order; None for absent
        weight_tolerance: Relative molecular weight tolerance

    Returns:
        ConsistencyResult. A score of 0 with no responding sources means the
        substance was not found anywhere.

    Examples:
        both answer, same formula and weight  -> 100
        only one answers                      -> 20
        both answer, formula and weight differ -> 40
    """
    tolerance = weight_tolerance if weight_tolerance is not None else settings.molecular_weight_tolerance
    present = [identity for identity in identities if identity is not None]
    responding = [identity.source for identity in present]

    if not present:
        return ConsistencyResult(score=0, responding_sources=[])

    if len(present) == 1:
        return ConsistencyResult(
            score=SINGLE_SOURCE_POINTS,
            checks=[{"check": "sources", "passed": False, "detail": f"only {responding[0]} responded"}],
            responding_sources=responding,
        )

    first, second = present[0], present[1]
    score = BOTH_SOURCES_POINTS
    checks: list[dict[str, Any]] = [{"check": "sources", "passed": True, "detail": ", ".join(responding)}]

    formula_match = (
        first.molecular_formula is not None
        and second.molecular_formula is not None
        and first.molecular_formula == second.molecular_formula
    )
    if formula_match:
        score += FORMULA_MATCH_POINTS
    checks.append(
        {
            "check": "molecular_formula",
            "passed": formula_match,
            "values": [first.molecular_formula, second.molecular_formula],
        }
    )

    weight_match = (
        first.molecular_weight is not None
        and second.molecular_weight is not None
        and weights_agree(first.molecular_weight, second.molecular_weight, tolerance)
    )
    if weight_match:
        score += WEIGHT_MATCH_POINTS
    checks.append(
        {
            "check": "molecular_weight",
            "passed": weight_match,
            "values": [first.molecular_weight, second.molecular_weight],
            "tolerance": tolerance,
        }
    )

    return ConsistencyResult(score=score, checks=checks, responding_sources=responding)


def merge_synonyms(identities: list[ChemicalIdentity | None], limit: int | None = None) -> list[str]:
    """Merge synonyms from all answers: lower-cased, de-duplicated, first-seen order, capped."""
    limit = limit or settings.synonym_limit
    seen: set[str] = set()
    merged: list[str] = []
    for identity in identities:
        if identity is None:
            continue
        for synonym in identity.synonyms:
            normalized = synonym.strip().lower()
            if not normalized or normalized in seen:
                continue
            seen.add(normalized)
            merged.append(normalized)
            if len(merged) >= limit:
                return merged
    return merged


def _first_non_null(identities: list[ChemicalIdentity | None], attribute: str) -> Any:
    for identity in identities:
        if identity is None:
            continue
        value = getattr(identity, attribute)
        if value is not None:
            return value
    return None


# =============================================================================
# Service
# =============================================================================


class SubstanceVerificationService:
    """
    Resolve CAS numbers into verified Substance records.

    Usage:
        service = SubstanceVerificationService(db)
        substance = await service.verify(ctx, "335-67-1")

    Providers are injectable for tests; by default PubChem and CAS Common
    Chemistry are the identity providers (in that priority order) and the
    configured HTTP endpoint is the regulatory provider.
    """

    def __init__(
        self,
        session: AsyncSession,
        identity_providers: list[ChemicalIdentityProvider] | None = None,
        regulatory_provider: RegulatoryStatusProvider | None = None,
        ttl_days: int | None = None,
        provider_timeout: float | None = None,
        min_score: int | None = None,
    ):
        self.session = session
        self.identity_providers = identity_providers or [PubChemProvider(), CommonChemistryProvider()]
        self.regulatory_provider = regulatory_provider or HTTPRegulatoryProvider()
        self.ttl_days = ttl_days or settings.substance_cache_ttl_days
        self.provider_timeout = provider_timeout or settings.provider_timeout_seconds
        self.min_score = min_score if min_score is not None else settings.verification_min_score

    async def get_cached(self, ctx: RequestContext, cas_number: str) -> Substance | None:
        """Stored Substance for this tenant, fresh or not."""
        result = await self.session.execute(
            select(Substance).where(
                Substance.tenant_id == ctx.tenant_id,
                Substance.cas_number == cas_number,
            )
        )
        return result.scalar_one_or_none()

    async def verify(self, ctx: RequestContext, cas_number: str, force_refresh: bool = False) -> Substance:
        """
        Return a trusted Substance for `cas_number`.

        Args:
            ctx: Tenant and acting user
            cas_number: CAS registry number (dashed or bare digits)
            force_refresh: Ignore the cache and re-query providers

        Returns:
            Fresh or newly verified Substance (flushed, not committed)

        Raises:
            InvalidCASNumberError: Malformed CAS number
            VerificationInsufficientError: Not found, or score below the gate
        """
        cas_number = normalize_cas_number(cas_number)

        existing = await self.get_cached(ctx, cas_number)
        if existing is not None and not force_refresh and existing.is_fresh(self.ttl_days):
            logger.debug("Substance served from cache", cas_number=cas_number)
            return existing

        identities, regulatory = await self._query_providers(cas_number)
        consistency = score_consistency(identities)
        sources_checked = [provider.name for provider in self.identity_providers] + [
            self.regulatory_provider.name
        ]

        if not consistency.responding_sources:
            logger.warning("Substance not found by any provider", cas_number=cas_number)
            raise VerificationInsufficientError(cas_number, 0, "not found", sources_checked)

        if consistency.score < self.min_score:
            logger.warning(
                "Substance verification below threshold",
                cas_number=cas_number,
                score=consistency.score,
                min_score=self.min_score,
            )
            raise VerificationInsufficientError(
                cas_number,
                consistency.score,
                f"consistency score below {self.min_score}",
                sources_checked,
            )

        substance = existing or Substance(tenant_id=ctx.tenant_id, cas_number=cas_number)
        self._apply(substance, identities, regulatory, consistency, sources_checked)
        if existing is None:
            self.session.add(substance)
        await self.session.flush()

        logger.info(
            "Substance verified",
            cas_number=cas_number,
            score=consistency.score,
            sources=consistency.responding_sources,
            regulatory_data=regulatory is not None,
        )
        return substance

    async def _query_providers(
        self, cas_number: str
    ) -> tuple[list[ChemicalIdentity | None], RegulatoryStatus | None]:
        """Query every provider concurrently; absent on failure or timeout."""
        calls = [self._bounded(provider, cas_number) for provider in self.identity_providers]
        calls.append(self._bounded(self.regulatory_provider, cas_number))
        results = await asyncio.gather(*calls)
        return list(results[:-1]), results[-1]

    async def _bounded(self, provider: Any, cas_number: str) -> Any:
        try:
            return await asyncio.wait_for(provider.lookup(cas_number), timeout=self.provider_timeout)
        except asyncio.TimeoutError:
            logger.warning("Provider timed out", provider=provider.name, cas_number=cas_number)
            return None
        except Exception as e:
            logger.warning(
                "Provider lookup failed",
                provider=provider.name,
                cas_number=cas_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def _apply(
        self,
        substance: Substance,
        identities: list[ChemicalIdentity | None],
        regulatory: RegulatoryStatus | None,
        consistency: ConsistencyResult,
        sources_checked: list[str],
    ) -> None:
        substance.name = _first_non_null(identities, "name")
        substance.molecular_formula = _first_non_null(identities, "molecular_formula")
        substance.molecular_weight = _first_non_null(identities, "molecular_weight")
        substance.synonyms = merge_synonyms(identities)

        external_ids = {
            identity.source: identity.external_id
            for identity in identities
            if identity is not None and identity.external_id
        }

        if regulatory is not None:
            substance.pfas_flag = regulatory.pfas_restricted
            substance.svhc_status = regulatory.is_svhc
            substance.restricted_status = regulatory.is_restricted
            substance.restriction_threshold_ppm = regulatory.restriction_threshold_ppm
            substance.restriction_effective_date = regulatory.restriction_effective_date
            substance.regulatory_data_available = True
            if regulatory.echa_substance_id:
                external_ids["echa"] = regulatory.echa_substance_id
        else:
            substance.pfas_flag = False
            substance.svhc_status = False
            substance.restricted_status = False
            substance.restriction_threshold_ppm = None
            substance.restriction_effective_date = None
            substance.regulatory_data_available = False

        substance.external_ids = external_ids
        substance.verification_metadata = {
            "sources_checked": sources_checked,
            "sources_responded": consistency.responding_sources
            + ([self.regulatory_provider.name] if regulatory is not None else []),
            "verification_score": consistency.score,
            "consistency_checks": consistency.checks,
        }
        substance.last_updated = utcnow()
