"""Unit tests for LLM-backed declaration extraction."""

import json

import pytest

from pfas_compliance.services.declaration_extraction import (
    DeclarationExtractor,
    extract_json,
    repair_json,
)
from pfas_compliance.services.llm_client import LLMParseError, MockLLMClient


class TestJSONHelpers:
    """Tests for JSON extraction and repair utilities."""

    def test_extract_json_from_markdown(self) -> None:
        text = 'Here is the result:\n```json\n{"claim_status": "present"}\n```'
        assert extract_json(text) == '{"claim_status": "present"}'

    def test_extract_json_plain(self) -> None:
        text = 'Some text {"key": "value"} more text'
        assert extract_json(text) == '{"key": "value"}'

    def test_repair_trailing_comma(self) -> None:
        assert json.loads(repair_json('{"a": 1, "b": [1, 2,],}')) == {"a": 1, "b": [1, 2]}


class TestParseResponse:
    """Tests for normalizing the model's answer."""

    @pytest.fixture
    def extractor(self, mock_llm: MockLLMClient) -> DeclarationExtractor:
        return DeclarationExtractor(mock_llm, prompt_version="test-v1")

    def test_fully_cited_declaration(self, extractor: DeclarationExtractor) -> None:
        declaration = extractor.parse_response(
            json.dumps(
                {
                    "claim_status": "not_present",
                    "valid_to": "2027-01-31",
                    "substances": [{"cas_number": "335671", "name": "PFOA", "concentration_ppm": "0.5", "page": 2}],
                    "page_citations": {"claim_status": 1, "valid_to": 1},
                    "confidence_score": 0.95,
                }
            )
        )

        assert declaration.fields["claim_status"] == "not_present"
        assert declaration.substances[0].cas_number == "335-67-1"
        assert declaration.substances[0].concentration_ppm == 0.5
        assert declaration.fully_cited
        assert declaration.page_map() == {"claim_status": 1, "valid_to": 1, "substance:335-67-1": 2}

    def test_invalid_cas_is_discarded(self, extractor: DeclarationExtractor) -> None:
        declaration = extractor.parse_response(
            '{"substances": [{"cas_number": "335-67-2", "name": "PFOA?", "page": 1}]}'
        )
        assert declaration.substances[0].cas_number is None
        assert declaration.substances[0].name == "PFOA?"

    def test_uncited_facts_listed(self, extractor: DeclarationExtractor) -> None:
        declaration = extractor.parse_response(
            json.dumps(
                {
                    "claim_status": "present",
                    "signatory": {"name": "Jane Roe"},
                    "substances": [{"cas_number": "335-67-1", "name": "PFOA"}],
                    "page_citations": {"claim_status": 1, "signatory": "not a page"},
                }
            )
        )
        assert declaration.uncited_facts == ["signatory", "substance:335-67-1"]
        assert not declaration.fully_cited

    @pytest.mark.parametrize("raw, expected", [(0.8, 0.8), (85, 0.85), (-1, 0.0), (None, 0.0), ("high", 0.0)])
    def test_confidence_normalized(self, extractor: DeclarationExtractor, raw, expected: float) -> None:
        declaration = extractor.parse_response(json.dumps({"confidence_score": raw}))
        assert declaration.confidence_score == pytest.approx(expected)

    def test_non_dict_signatory_dropped(self, extractor: DeclarationExtractor) -> None:
        declaration = extractor.parse_response('{"signatory": "Jane Roe"}')
        assert declaration.fields["signatory"] is None

    def test_invalid_json_raises(self, extractor: DeclarationExtractor) -> None:
        with pytest.raises(LLMParseError):
            extractor.parse_response("I could not read this document")

    def test_array_response_raises(self, extractor: DeclarationExtractor) -> None:
        with pytest.raises(LLMParseError):
            extractor.parse_response("[1, 2, 3]")


class TestExtract:
    async def test_extract_with_mock_client(self, mock_llm: MockLLMClient) -> None:
        declaration = await DeclarationExtractor(mock_llm, prompt_version="test-v1").extract(
            b"%PDF-1.7 declaration", "decl.pdf", "application/pdf"
        )

        assert declaration.model_version == "mock-model"
        assert declaration.prompt_version == "test-v1"
        assert declaration.confidence_score == pytest.approx(0.92)
        assert declaration.substances[0].cas_number == "335-67-1"
        assert declaration.substances[0].concentration_ppm == 50.0
        assert "valid_to" in declaration.uncited_facts

        user_message = mock_llm.calls[0][1]
        assert user_message.attachments[0].mime_type == "application/pdf"

    async def test_text_documents_are_inlined(self, mock_llm: MockLLMClient) -> None:
        await DeclarationExtractor(mock_llm).extract(b"PFAS declaration: none", "decl.txt", "text/plain")

        user_message = mock_llm.calls[0][1]
        assert "PFAS declaration: none" in user_message.content
        assert not user_message.attachments

    async def test_unparseable_model_output(self, mock_llm: MockLLMClient) -> None:
        mock_llm.set_responses(["not json at all"])
        with pytest.raises(LLMParseError):
            await DeclarationExtractor(mock_llm).extract(b"x", "decl.pdf", "application/pdf")
