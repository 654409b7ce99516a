"""
Async clients for the external chemical data providers.

Three independent collaborators feed substance verification:

- PubChem PUG REST (identity): name, synonyms, formula, weight, CID
- CAS Common Chemistry (identity): name, synonyms, formula, mass, CAS RN
- Regulatory-status API (regulatory): PFAS restriction, SVHC, thresholds

Every provider exposes `lookup(cas_number)` returning a dataclass or None
when the substance is unknown to it. Transport errors and rate limiting are
retried with exponential backoff; anything else raises a ProviderError,
which the verification service treats as an absent result.

PubChem PUG REST documentation:
https://pubchem.ncbi.nlm.nih.gov/docs/pug-rest
CAS Common Chemistry API:
https://commonchemistry.cas.org/api-overview
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pfas_compliance.core.config import settings
from pfas_compliance.core.logging import get_logger

logger = get_logger(__name__)

# Common Chemistry formats formulas with HTML subscripts: C<sub>8</sub>HF<sub>15</sub>O<sub>2</sub>
_HTML_TAG = re.compile(r"<[^>]+>")


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ChemicalIdentity:
    """Identity data for one substance as reported by one provider."""

    source: str
    name: str | None = None
    synonyms: list[str] = field(default_factory=list)
    molecular_formula: str | None = None
    molecular_weight: float | None = None
    external_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "name": self.name,
            "synonyms": list(self.synonyms),
            "molecular_formula": self.molecular_formula,
            "molecular_weight": self.molecular_weight,
            "external_id": self.external_id,
        }


@dataclass
class RegulatoryStatus:
    """Regulatory flags for one substance."""

    pfas_restricted: bool = False
    is_svhc: bool = False
    is_restricted: bool = False
    restriction_effective_date: date | None = None
    restriction_threshold_ppm: float | None = None
    echa_substance_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RegulatoryStatus":
        """Build from the JSON body of the regulatory API."""
        effective = payload.get("restriction_effective_date")
        threshold = payload.get("restriction_threshold_ppm")
        return cls(
            pfas_restricted=bool(payload.get("pfas_restricted", False)),
            is_svhc=bool(payload.get("is_svhc", False)),
            is_restricted=bool(payload.get("is_restricted", False)),
            restriction_effective_date=date.fromisoformat(effective[:10]) if effective else None,
            restriction_threshold_ppm=float(threshold) if threshold is not None else None,
            echa_substance_id=payload.get("echa_substance_id"),
        )


# =============================================================================
# Exceptions
# =============================================================================


class ProviderError(Exception):
    """Base exception for chemical data provider errors."""

    pass


class ProviderRateLimitError(ProviderError):
    """Raised when a provider rate limits us (HTTP 429)."""

    pass


class ProviderAPIError(ProviderError):
    """Raised when a provider returns an unexpected error response."""

    pass


# =============================================================================
# Base Client
# =============================================================================


def _to_float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class _HTTPProvider:
    """
    Shared HTTP plumbing: optional shared client, retries, status mapping.

    Usage:
        async with PubChemProvider() as provider:
            identity = await provider.lookup("335-67-1")

    Without the context manager each request opens a short-lived client.
    """

    name: str = "http"

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float | None = None):
        self.timeout = timeout or settings.provider_timeout_seconds
        self._client = http_client
        self._owns_client = False

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, ProviderRateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
    )
    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """
        GET a JSON document.

        Returns:
            Parsed JSON, or None when the provider answers 404 (unknown substance)

        Raises:
            ProviderRateLimitError: If rate limited (429), after retries
            ProviderAPIError: If the provider returns any other error status
        """
        logger.debug("Provider request", provider=self.name, url=url)

        if self._client is not None:
            response = await self._client.get(url, params=params, headers=self._headers())
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params, headers=self._headers())

        if response.status_code == 404:
            return None

        if response.status_code == 429:
            logger.warning("Provider rate limit hit, will retry", provider=self.name)
            raise ProviderRateLimitError(f"{self.name} rate limit exceeded")

        if response.status_code != 200:
            logger.error(
                "Provider API error",
                provider=self.name,
                status_code=response.status_code,
                response=response.text[:500],
            )
            raise ProviderAPIError(
                f"{self.name} returned status {response.status_code}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderAPIError(f"{self.name} returned invalid JSON: {e}") from e


class ChemicalIdentityProvider(ABC):
    """Contract of an identity provider."""

    name: str

    @abstractmethod
    async def lookup(self, cas_number: str) -> ChemicalIdentity | None:
        """Resolve a CAS number, or None when not found."""
        pass


class RegulatoryStatusProvider(ABC):
    """Contract of a regulatory-status provider."""

    name: str

    @abstractmethod
    async def lookup(self, cas_number: str) -> RegulatoryStatus | None:
        """Regulatory flags for a CAS number, or None when absent."""
        pass


# =============================================================================
# Providers
# =============================================================================


class PubChemProvider(_HTTPProvider, ChemicalIdentityProvider):
    """
    PubChem PUG REST identity lookup.

    Two requests per substance: the property table (by CAS used as a name),
    then the synonym list of the resolved CID.
    """

    name = "pubchem"

    def __init__(self, base_url: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = (base_url or settings.pubchem_base_url).rstrip("/")

    async def lookup(self, cas_number: str) -> ChemicalIdentity | None:
        properties_url = (
            f"{self.base_url}/compound/name/{cas_number}"
            "/property/MolecularFormula,MolecularWeight,IUPACName,Title/JSON"
        )
        payload = await self._get_json(properties_url)
        if not payload:
            return None

        rows = payload.get("PropertyTable", {}).get("Properties", [])
        if not rows:
            return None
        row = rows[0]
        cid = row.get("CID")

        synonyms: list[str] = []
        if cid is not None:
            synonym_payload = await self._get_json(f"{self.base_url}/compound/cid/{cid}/synonyms/JSON")
            if synonym_payload:
                info = synonym_payload.get("InformationList", {}).get("Information", [])
                if info:
                    synonyms = list(info[0].get("Synonym", []))

        identity = ChemicalIdentity(
            source=self.name,
            name=row.get("Title") or row.get("IUPACName"),
            synonyms=synonyms,
            molecular_formula=row.get("MolecularFormula"),
            molecular_weight=_to_float(row.get("MolecularWeight")),
            external_id=str(cid) if cid is not None else None,
        )
        logger.debug("PubChem lookup completed", cas_number=cas_number, cid=cid)
        return identity


class CommonChemistryProvider(_HTTPProvider, ChemicalIdentityProvider):
    """CAS Common Chemistry identity lookup (`/detail?cas_rn=`)."""

    name = "common_chemistry"

    def __init__(self, base_url: str | None = None, api_key: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = (base_url or settings.common_chemistry_base_url).rstrip("/")
        self.api_key = api_key or settings.common_chemistry_api_key

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        return headers

    @staticmethod
    def clean_formula(formula: str | None) -> str | None:
        """Strip HTML subscript markup: C<sub>8</sub>HF<sub>15</sub>O<sub>2</sub> -> C8HF15O2."""
        if not formula:
            return None
        return _HTML_TAG.sub("", formula).strip() or None

    async def lookup(self, cas_number: str) -> ChemicalIdentity | None:
        payload = await self._get_json(f"{self.base_url}/detail", params={"cas_rn": cas_number})
        if not payload or not payload.get("rn"):
            return None

        return ChemicalIdentity(
            source=self.name,
            name=_HTML_TAG.sub("", payload.get("name") or "") or None,
            synonyms=[_HTML_TAG.sub("", s) for s in payload.get("synonyms", []) if s],
            molecular_formula=self.clean_formula(payload.get("molecularFormula")),
            molecular_weight=_to_float(payload.get("molecularMass")),
            external_id=payload.get("rn"),
        )


class HTTPRegulatoryProvider(_HTTPProvider, RegulatoryStatusProvider):
    """
    Regulatory-status lookup against a configured HTTP endpoint.

    GET {base_url}/substances/{cas} returns the RegulatoryStatus fields as
    JSON. When no endpoint is configured the provider reports every substance
    as absent, which the verification service tolerates.
    """

    name = "regulatory"

    def __init__(self, base_url: str | None = None, api_key: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        base_url = base_url if base_url is not None else settings.regulatory_api_url
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key or settings.regulatory_api_key

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @property
    def is_configured(self) -> bool:
        return self.base_url is not None

    async def lookup(self, cas_number: str) -> RegulatoryStatus | None:
        if not self.is_configured:
            return None
        payload = await self._get_json(f"{self.base_url}/substances/{cas_number}")
        if not payload:
            return None
        return RegulatoryStatus.from_payload(payload)
