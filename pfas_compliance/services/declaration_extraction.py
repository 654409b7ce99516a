"""
Declaration extraction: pre-populate evidence packages from documents.

The extraction collaborator reads a supplier declaration (PDF, image or
text) with the LLM and returns structured fields, the substances listed with
their concentrations, a confidence score and a page citation per fact. Its
output is never trusted directly: the evidence pipeline grades it C and
routes it through review, and anything without full page citations or with
confidence at or below the auto-submit threshold stays a draft.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

from pfas_compliance.core.config import settings
from pfas_compliance.core.logging import get_logger
from pfas_compliance.services.llm_client import (
    BaseLLMClient,
    LLMAttachment,
    LLMMessage,
    LLMParseError,
)
from pfas_compliance.services.substance_verification import is_valid_cas_number, normalize_cas_number

logger = get_logger(__name__)


# =============================================================================
# Prompts
# =============================================================================

DECLARATION_EXTRACTION_SYSTEM_PROMPT = """You are a regulatory compliance analyst reading supplier PFAS declarations.

Extract the following from the attached declaration:
1. claim_status: "present", "not_present", "unknown" or "inconclusive"
2. intentionally_added: "yes", "no" or "unknown"
3. threshold_definition: the threshold wording used by the declaration (e.g. "below 25 ppb PFOA")
4. threshold_numeric_ppm: that threshold converted to ppm, or null
5. valid_from / valid_to: validity dates as YYYY-MM-DD, or null
6. signatory: {"name", "role", "organization"} of the person who signed
7. substances: every PFAS substance listed, each as
   {"cas_number", "name", "concentration_ppm", "page"}
8. page_citations: for every field above that you filled in, the page number it came from
9. confidence_score: your overall confidence from 0.0 to 1.0

Rules:
- Only report what the document states; never infer values
- Every filled field and every substance MUST carry a page number
- Convert concentrations to ppm (1 % = 10000 ppm, 1 ppb = 0.001 ppm)
- Use null for anything the document does not state

Respond with ONLY a valid JSON object in this exact format:
{
  "claim_status": "present",
  "intentionally_added": "no",
  "threshold_definition": "...",
  "threshold_numeric_ppm": 0.025,
  "valid_from": "2025-01-01",
  "valid_to": "2026-12-31",
  "signatory": {"name": "...", "role": "...", "organization": "..."},
  "substances": [{"cas_number": "335-67-1", "name": "...", "concentration_ppm": 12.5, "page": 2}],
  "page_citations": {"claim_status": 1, "signatory": 3},
  "confidence_score": 0.9
}"""

DECLARATION_FIELDS = (
    "claim_status",
    "intentionally_added",
    "threshold_definition",
    "threshold_numeric_ppm",
    "valid_from",
    "valid_to",
    "signatory",
)

TEXT_MIME_TYPES = {"text/plain", "text/csv", "text/markdown", "application/json"}


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ExtractedSubstance:
    """A substance listed in a declaration."""

    name: str | None
    cas_number: str | None = None
    concentration_ppm: float | None = None
    page: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "cas_number": self.cas_number,
            "concentration_ppm": self.concentration_ppm,
            "page": self.page,
        }


@dataclass
class ExtractedDeclaration:
    """Structured output of one extraction call."""

    fields: dict[str, Any] = field(default_factory=dict)
    substances: list[ExtractedSubstance] = field(default_factory=list)
    confidence_score: float = 0.0
    page_citations: dict[str, int] = field(default_factory=dict)
    model_version: str | None = None
    prompt_version: str | None = None

    @property
    def uncited_facts(self) -> list[str]:
        """Extracted facts without a page citation."""
        missing = [
            name
            for name, value in self.fields.items()
            if value not in (None, "", {}, []) and name not in self.page_citations
        ]
        missing.extend(
            f"substance:{substance.cas_number or substance.name}"
            for substance in self.substances
            if substance.page is None
        )
        return missing

    @property
    def fully_cited(self) -> bool:
        """True when every extracted fact is traceable to a page."""
        return not self.uncited_facts

    def page_map(self) -> dict[str, int]:
        """Field -> page citations, including one entry per substance."""
        page_map = dict(self.page_citations)
        for substance in self.substances:
            if substance.page is not None:
                page_map[f"substance:{substance.cas_number or substance.name}"] = substance.page
        return page_map


# =============================================================================
# JSON helpers
# =============================================================================


def extract_json(text: str) -> str:
    """Extract JSON from text, handling markdown code blocks."""
    json_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if json_match:
        return json_match.group(1)

    json_match = re.search(r"(\{.*\})", text, re.DOTALL)
    if json_match:
        return json_match.group(1)

    return text


def repair_json(json_str: str) -> str:
    """
    Attempt to repair common JSON issues from LLM responses.

    Fixes:
    - Trailing commas before ] or }
    - Missing commas between objects
    """
    json_str = re.sub(r",\s*([}\]])", r"\1", json_str)
    json_str = re.sub(r"}\s*{", r"},{", json_str)
    return json_str


def _to_float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_page(value: Any) -> int | None:
    try:
        page = int(value)
    except (TypeError, ValueError):
        return None
    return page if page > 0 else None


# =============================================================================
# Extractor
# =============================================================================


class DeclarationExtractor:
    """
    LLM-backed extraction of declaration documents.

    Usage:
        async with get_llm_client() as llm:
            extractor = DeclarationExtractor(llm)
            declaration = await extractor.extract(content, "decl.pdf", "application/pdf")
    """

    def __init__(self, llm_client: BaseLLMClient, prompt_version: str | None = None):
        self.llm = llm_client
        self.prompt_version = prompt_version or settings.extraction_prompt_version

    async def extract(self, content: bytes, file_name: str, mime_type: str) -> ExtractedDeclaration:
        """
        Extract a declaration from a document.

        Args:
            content: Raw file bytes
            file_name: Original file name (context for the model)
            mime_type: Content type; text types are inlined, others attached

        Returns:
            ExtractedDeclaration

        Raises:
            LLMParseError: The model response was not usable JSON
        """
        if mime_type in TEXT_MIME_TYPES:
            text = content.decode("utf-8", errors="replace")
            user_message = LLMMessage(
                role="user",
                content=f"Extract the PFAS declaration from this document ({file_name}):\n\n{text}",
            )
        else:
            user_message = LLMMessage(
                role="user",
                content=f"Extract the PFAS declaration from the attached document ({file_name}).",
                attachments=[LLMAttachment(mime_type=mime_type, data=content)],
            )

        messages = [
            LLMMessage(role="system", content=DECLARATION_EXTRACTION_SYSTEM_PROMPT),
            user_message,
        ]

        response = await self.llm.complete(messages, temperature=0.0)
        declaration = self.parse_response(response.content)
        declaration.model_version = response.model
        declaration.prompt_version = self.prompt_version

        logger.info(
            "Declaration extracted",
            file_name=file_name,
            substances=len(declaration.substances),
            confidence=declaration.confidence_score,
            fully_cited=declaration.fully_cited,
            tokens=response.total_tokens,
        )
        return declaration

    def parse_response(self, response: str) -> ExtractedDeclaration:
        """Parse and normalize the model's JSON answer."""
        try:
            data = json.loads(repair_json(extract_json(response)))
        except json.JSONDecodeError as e:
            logger.error("Failed to parse declaration response", error=str(e), raw_response=response[:2000])
            raise LLMParseError(f"Failed to parse declaration response: {e}") from e

        if not isinstance(data, dict):
            raise LLMParseError("Declaration response is not a JSON object")

        fields = {name: data.get(name) for name in DECLARATION_FIELDS}
        fields["threshold_numeric_ppm"] = _to_float(fields["threshold_numeric_ppm"])
        if not isinstance(fields["signatory"], dict):
            fields["signatory"] = None

        substances = []
        for item in data.get("substances") or []:
            if not isinstance(item, dict):
                continue
            cas_number = item.get("cas_number")
            if cas_number and is_valid_cas_number(str(cas_number)):
                cas_number = normalize_cas_number(str(cas_number))
            elif cas_number:
                logger.warning("Discarding invalid CAS from extraction", cas_number=cas_number)
                cas_number = None
            substances.append(
                ExtractedSubstance(
                    name=item.get("name"),
                    cas_number=cas_number,
                    concentration_ppm=_to_float(item.get("concentration_ppm")),
                    page=_to_page(item.get("page")),
                )
            )

        citations = {}
        for name, page in (data.get("page_citations") or {}).items():
            page_number = _to_page(page)
            if page_number is not None:
                citations[name] = page_number

        confidence = _to_float(data.get("confidence_score")) or 0.0
        # Some models answer on a 0-100 scale
        if confidence > 1.0:
            confidence = confidence / 100.0
        confidence = max(0.0, min(1.0, confidence))

        return ExtractedDeclaration(
            fields=fields,
            substances=substances,
            confidence_score=confidence,
            page_citations=citations,
        )
