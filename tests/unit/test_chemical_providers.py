"""Unit tests for the chemical data provider clients."""

from datetime import date

import httpx
import pytest

from pfas_compliance.services.chemical_providers import (
    CommonChemistryProvider,
    HTTPRegulatoryProvider,
    ProviderAPIError,
    PubChemProvider,
    RegulatoryStatus,
)

PUBCHEM_URL = "https://pubchem.test/rest/pug"
COMMON_CHEMISTRY_URL = "https://commonchemistry.test/api"
REGULATORY_URL = "https://regulatory.test"


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestPubChemProvider:
    """Tests for PubChem PUG REST parsing."""

    async def test_lookup_parses_properties_and_synonyms(self) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            if request.url.path.endswith("/synonyms/JSON"):
                return httpx.Response(
                    200,
                    json={"InformationList": {"Information": [{"CID": 9554, "Synonym": ["PFOA", "335-67-1"]}]}},
                )
            return httpx.Response(
                200,
                json={
                    "PropertyTable": {
                        "Properties": [
                            {
                                "CID": 9554,
                                "MolecularFormula": "C8HF15O2",
                                "MolecularWeight": "414.07",
                                "Title": "Perfluorooctanoic acid",
                            }
                        ]
                    }
                },
            )

        async with mock_client(handler) as client:
            provider = PubChemProvider(base_url=PUBCHEM_URL, http_client=client)
            identity = await provider.lookup("335-67-1")

        assert identity is not None
        assert identity.source == "pubchem"
        assert identity.name == "Perfluorooctanoic acid"
        assert identity.molecular_formula == "C8HF15O2"
        assert identity.molecular_weight == pytest.approx(414.07)
        assert identity.external_id == "9554"
        assert identity.synonyms == ["PFOA", "335-67-1"]
        assert len(requested) == 2
        assert "/compound/name/335-67-1/" in requested[0]

    async def test_not_found_returns_none(self) -> None:
        async with mock_client(lambda request: httpx.Response(404, json={"Fault": {}})) as client:
            provider = PubChemProvider(base_url=PUBCHEM_URL, http_client=client)
            assert await provider.lookup("1763-23-1") is None

    async def test_server_error_raises_provider_error(self) -> None:
        async with mock_client(lambda request: httpx.Response(500, text="boom")) as client:
            provider = PubChemProvider(base_url=PUBCHEM_URL, http_client=client)
            with pytest.raises(ProviderAPIError):
                await provider.lookup("335-67-1")


class TestCommonChemistryProvider:
    """Tests for CAS Common Chemistry parsing."""

    def test_clean_formula_strips_subscripts(self) -> None:
        assert CommonChemistryProvider.clean_formula("C<sub>8</sub>HF<sub>15</sub>O<sub>2</sub>") == "C8HF15O2"
        assert CommonChemistryProvider.clean_formula(None) is None
        assert CommonChemistryProvider.clean_formula("<sub></sub>") is None

    async def test_lookup_uses_detail_endpoint(self) -> None:
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["cas_rn"] = request.url.params["cas_rn"]
            seen["api_key"] = request.headers.get("X-API-KEY", "")
            return httpx.Response(
                200,
                json={
                    "rn": "335-67-1",
                    "name": "Perfluorooctanoic acid",
                    "molecularFormula": "C<sub>8</sub>HF<sub>15</sub>O<sub>2</sub>",
                    "molecularMass": "414.07",
                    "synonyms": ["Perfluorooctanoic acid", "<i>n</i>-PFOA"],
                },
            )

        async with mock_client(handler) as client:
            provider = CommonChemistryProvider(base_url=COMMON_CHEMISTRY_URL, api_key="secret", http_client=client)
            identity = await provider.lookup("335-67-1")

        assert seen == {"path": "/api/detail", "cas_rn": "335-67-1", "api_key": "secret"}
        assert identity is not None
        assert identity.molecular_formula == "C8HF15O2"
        assert identity.molecular_weight == pytest.approx(414.07)
        assert identity.external_id == "335-67-1"
        assert identity.synonyms == ["Perfluorooctanoic acid", "n-PFOA"]

    async def test_empty_payload_returns_none(self) -> None:
        async with mock_client(lambda request: httpx.Response(200, json={})) as client:
            provider = CommonChemistryProvider(base_url=COMMON_CHEMISTRY_URL, http_client=client)
            assert await provider.lookup("335-67-1") is None


class TestRegulatoryProvider:
    async def test_unconfigured_provider_reports_absent(self) -> None:
        provider = HTTPRegulatoryProvider(base_url="")
        assert provider.is_configured is False
        assert await provider.lookup("335-67-1") is None

    async def test_lookup_parses_flags(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer token"
            return httpx.Response(
                200,
                json={
                    "pfas_restricted": True,
                    "is_svhc": True,
                    "is_restricted": False,
                    "restriction_effective_date": "2025-07-04T00:00:00Z",
                    "restriction_threshold_ppm": "0.025",
                },
            )

        async with mock_client(handler) as client:
            provider = HTTPRegulatoryProvider(base_url=REGULATORY_URL, api_key="token", http_client=client)
            status = await provider.lookup("335-67-1")

        assert status == RegulatoryStatus(
            pfas_restricted=True,
            is_svhc=True,
            is_restricted=False,
            restriction_effective_date=date(2025, 7, 4),
            restriction_threshold_ppm=0.025,
        )
