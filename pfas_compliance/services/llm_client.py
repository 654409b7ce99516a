"""
LLM collaborator used for the two AI-assisted steps of the pipeline:
reading supplier declaration documents and proposing PFAS-free substitutes.

Both steps ask for a JSON answer, so every client runs in JSON response mode.
Declaration documents travel as inline attachments next to the prompt.

`get_llm_client()` picks the implementation from ``LLM_EXTRACTOR``:
``gemini`` calls Google Gemini over HTTP, ``mock`` returns canned answers and
records every call (test suite, local development).
"""

import base64
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from pfas_compliance.core.config import settings
from pfas_compliance.core.logging import get_logger

logger = get_logger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class LLMProvider(str, Enum):
    GEMINI = "gemini"
    MOCK = "mock"


@dataclass
class LLMAttachment:
    """A binary document sent with a message (e.g. a declaration PDF)."""

    mime_type: str
    data: bytes

    def to_inline_data(self) -> dict[str, Any]:
        return {
            "inline_data": {
                "mime_type": self.mime_type,
                "data": base64.b64encode(self.data).decode("ascii"),
            }
        }


@dataclass
class LLMMessage:
    role: str  # system | user | assistant
    content: str
    attachments: list[LLMAttachment] = field(default_factory=list)


@dataclass
class LLMResponse:
    content: str
    model: str
    provider: LLMProvider
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMError(Exception):
    """Base exception for LLM client errors."""


class LLMRateLimitError(LLMError):
    """Rate limited or overloaded; retried."""


class LLMAPIError(LLMError):
    """Non-retryable error response."""


class LLMParseError(LLMError):
    """The model answered, but not with the JSON the caller needs."""


_STATUS_ERRORS = {
    400: "Bad request",
    403: "API key invalid or lacks permissions",
    404: "Model not found",
}


class BaseLLMClient(ABC):
    """Async context manager owning one httpx client per unit of work."""

    provider: LLMProvider

    def __init__(self, model: str | None = None, timeout: float = 60.0):
        self.model = model
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BaseLLMClient":
        self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("LLM client must be used as an async context manager")
        return self._client

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Generate one JSON completion for the conversation."""


class GeminiClient(BaseLLMClient):
    """Google Gemini ``generateContent`` client."""

    provider = LLMProvider.GEMINI

    def __init__(self, api_key: str | None = None, model: str | None = None, timeout: float = 60.0):
        super().__init__(model=model or settings.gemini_model, timeout=timeout)
        self.api_key = api_key or settings.google_api_key
        if not self.api_key:
            raise ValueError("Google API key not configured. Set GOOGLE_API_KEY in .env")

    @staticmethod
    def build_payload(messages: list[LLMMessage], temperature: float, max_tokens: int) -> dict[str, Any]:
        """System messages become the system instruction; attachments precede the text part."""
        payload: dict[str, Any] = {
            "contents": [],
            "generation_config": {
                "temperature": temperature,
                "max_output_tokens": max_tokens,
                "response_mime_type": "application/json",
            },
        }
        for msg in messages:
            if msg.role == "system":
                payload["system_instruction"] = {"parts": [{"text": msg.content}]}
                continue
            parts = [attachment.to_inline_data() for attachment in msg.attachments]
            parts.append({"text": msg.content})
            payload["contents"].append({"role": "model" if msg.role == "assistant" else "user", "parts": parts})
        return payload

    def parse_response(self, data: dict[str, Any]) -> LLMResponse:
        candidates = data.get("candidates") or [{}]
        parts = candidates[0].get("content", {}).get("parts", [])
        usage = data.get("usageMetadata", {})
        return LLMResponse(
            content="".join(part.get("text", "") for part in parts),
            model=self.model,
            provider=self.provider,
            input_tokens=usage.get("promptTokenCount", 0),
            output_tokens=usage.get("candidatesTokenCount", 0),
        )

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, LLMRateLimitError)),
        stop=stop_after_attempt(5),
        wait=wait_random_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        response = await self.client.post(
            f"{GEMINI_API_URL}/{self.model}:generateContent",
            headers={"x-goog-api-key": self.api_key},
            json=self.build_payload(messages, temperature, max_tokens),
        )

        if response.status_code in (429, 503):
            logger.warning("Gemini throttled, retrying", status_code=response.status_code)
            raise LLMRateLimitError(f"Gemini returned {response.status_code}")
        if response.status_code != 200:
            detail = response.text[:500]
            logger.error("Gemini API error", status_code=response.status_code, response=detail)
            reason = _STATUS_ERRORS.get(response.status_code, f"API returned status {response.status_code}")
            raise LLMAPIError(f"{reason}: {detail}")

        result = self.parse_response(response.json())
        logger.debug("Gemini completion", model=self.model, tokens=result.total_tokens)
        return result


_MOCK_SUBSTITUTE = {
    "substitute_name": "Silicone-based water repellent",
    "cost_ratio": 1.2,
    "performance_impact": "Equivalent",
    "supply_chain_risk": "Low",
    "risk_reasoning": "Multiple qualified suppliers in the EU",
}

_MOCK_DECLARATION = {
    "claim_status": "present",
    "intentionally_added": "yes",
    "threshold_definition": "25 ppb PFOA and salts",
    "threshold_numeric_ppm": 0.025,
    "valid_from": "2025-01-01",
    "valid_to": "2026-12-31",
    "signatory": {"name": "Jane Roe", "role": "Quality Manager", "organization": "Acme Coatings"},
    "substances": [
        {"cas_number": "335-67-1", "name": "Perfluorooctanoic acid", "concentration_ppm": 50.0, "page": 2},
    ],
    "page_citations": {
        "claim_status": 1,
        "intentionally_added": 1,
        "threshold_definition": 1,
        "signatory": 3,
    },
    "confidence_score": 0.92,
}


class MockLLMClient(BaseLLMClient):
    """
    Offline client.

    Queued responses (`set_responses`) are returned in order, the last one
    repeating. Otherwise the answer is picked from the user prompt: a
    substitute suggestion or a cited PFOA declaration.
    """

    provider = LLMProvider.MOCK

    def __init__(self, model: str = "mock-model", timeout: float = 60.0):
        super().__init__(model=model, timeout=timeout)
        self._responses: list[str] = []
        self.calls: list[list[LLMMessage]] = []

    async def __aenter__(self) -> "MockLLMClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    def set_responses(self, responses: list[str]) -> None:
        self._responses = list(responses)

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.0,  # noqa: ARG002
        max_tokens: int = 4096,  # noqa: ARG002
    ) -> LLMResponse:
        self.calls.append(messages)
        if self._responses:
            content = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        else:
            content = self._canned(messages)
        return LLMResponse(content=content, model=self.model, provider=self.provider, input_tokens=100, output_tokens=50)

    @staticmethod
    def _canned(messages: list[LLMMessage]) -> str:
        prompt = next((msg.content for msg in messages if msg.role == "user"), "").lower()
        if "substitute" in prompt:
            return json.dumps(_MOCK_SUBSTITUTE)
        if "declaration" in prompt:
            return json.dumps(_MOCK_DECLARATION)
        return json.dumps({"result": "mock response"})


def get_llm_client(provider: str | LLMProvider | None = None, **kwargs) -> BaseLLMClient:
    """
    Build the configured LLM client.

    Example:
        async with get_llm_client() as llm:
            response = await llm.complete(messages)
    """
    provider = LLMProvider((provider or settings.llm_extractor).lower())
    if provider == LLMProvider.GEMINI:
        return GeminiClient(**kwargs)
    return MockLLMClient(**kwargs)
