"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time; configure before importing the app.
os.environ.setdefault("LLM_EXTRACTOR", "mock")
os.environ.setdefault("RESOLVE_SUBSTANCES_ON_ASSESSMENT", "false")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("LOG_FORMAT", "console")

from collections.abc import AsyncGenerator, Awaitable, Callable, Generator  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from pfas_compliance.core.context import RequestContext  # noqa: E402
from pfas_compliance.db import Base, get_db  # noqa: E402
from pfas_compliance.db.enums import RuleSeverity, RulesetStatus  # noqa: E402
from pfas_compliance.db.models import Jurisdiction, Rule  # noqa: E402
from pfas_compliance.main import app  # noqa: E402
from pfas_compliance.services import (  # noqa: E402
    ComplianceOrchestrator,
    EvidencePipeline,
    RuleCatalog,
    SubstanceVerificationService,
)
from pfas_compliance.services.chemical_providers import (  # noqa: E402
    ChemicalIdentity,
    ChemicalIdentityProvider,
    RegulatoryStatus,
    RegulatoryStatusProvider,
)
from pfas_compliance.services.llm_client import MockLLMClient  # noqa: E402
from pfas_compliance.services.notifications import LoggingEmailSender, NotificationService  # noqa: E402
from pfas_compliance.services.substitution import SubstitutionAdvisor, SubstitutionPlanner  # noqa: E402
from pfas_compliance.workers.job_store import use_memory_store  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

PFOA_CAS = "335-67-1"
PFOS_CAS = "1763-23-1"


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeIdentityProvider(ChemicalIdentityProvider):
    """Identity provider answering from a dict; `fail` raises instead."""

    def __init__(self, name: str, records: dict[str, ChemicalIdentity] | None = None, fail: bool = False):
        self.name = name
        self.records = records or {}
        self.fail = fail
        self.calls: list[str] = []

    async def lookup(self, cas_number: str) -> ChemicalIdentity | None:
        self.calls.append(cas_number)
        if self.fail:
            raise RuntimeError(f"{self.name} unavailable")
        return self.records.get(cas_number)


class FakeRegulatoryProvider(RegulatoryStatusProvider):
    name = "regulatory"

    def __init__(self, records: dict[str, RegulatoryStatus] | None = None):
        self.records = records or {}
        self.calls: list[str] = []

    async def lookup(self, cas_number: str) -> RegulatoryStatus | None:
        self.calls.append(cas_number)
        return self.records.get(cas_number)


def pfoa_identity(source: str, **overrides: Any) -> ChemicalIdentity:
    values = {
        "source": source,
        "name": "Perfluorooctanoic acid",
        "synonyms": ["PFOA", "Perfluorooctanoic acid"],
        "molecular_formula": "C8HF15O2",
        "molecular_weight": 414.07,
        "external_id": f"{source}-335",
    }
    values.update(overrides)
    return ChemicalIdentity(**values)


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with the full schema."""
    test_engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def memory_job_store() -> None:
    """Jobs never touch Redis in tests."""
    use_memory_store()


# =============================================================================
# Contexts
# =============================================================================


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(tenant_id="tenant-a", actor="alice@example.com")


@pytest.fixture
def reviewer_ctx() -> RequestContext:
    return RequestContext(tenant_id="tenant-a", actor="bob@example.com")


@pytest.fixture
def other_tenant_ctx() -> RequestContext:
    return RequestContext(tenant_id="tenant-b", actor="carol@example.com")


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def mock_llm() -> MockLLMClient:
    return MockLLMClient()


@pytest.fixture
def email_sender() -> LoggingEmailSender:
    return LoggingEmailSender()


@pytest.fixture
def orchestrator(db_session: AsyncSession, mock_llm: MockLLMClient, email_sender: LoggingEmailSender):
    return ComplianceOrchestrator(
        db_session,
        notifications=NotificationService(db_session, email_sender),
        substitution=SubstitutionPlanner(db_session, SubstitutionAdvisor(mock_llm)),
    )


@pytest.fixture
def pipeline(db_session: AsyncSession, orchestrator: ComplianceOrchestrator) -> EvidencePipeline:
    return EvidencePipeline(db_session, orchestrator=orchestrator)


@pytest.fixture
def identity_providers() -> list[FakeIdentityProvider]:
    return [
        FakeIdentityProvider("pubchem", {PFOA_CAS: pfoa_identity("pubchem")}),
        FakeIdentityProvider(
            "common_chemistry",
            {PFOA_CAS: pfoa_identity("common_chemistry", synonyms=["pfoa", "Perfluorooctanoate"])},
        ),
    ]


@pytest.fixture
def regulatory_provider() -> FakeRegulatoryProvider:
    return FakeRegulatoryProvider(
        {
            PFOA_CAS: RegulatoryStatus(
                pfas_restricted=True,
                is_svhc=True,
                is_restricted=True,
                restriction_threshold_ppm=0.025,
                echa_substance_id="100.006.416",
            )
        }
    )


@pytest.fixture
def verifier(
    db_session: AsyncSession,
    identity_providers: list[FakeIdentityProvider],
    regulatory_provider: FakeRegulatoryProvider,
) -> SubstanceVerificationService:
    return SubstanceVerificationService(
        db_session,
        identity_providers=identity_providers,
        regulatory_provider=regulatory_provider,
    )


# =============================================================================
# Catalog helpers
# =============================================================================


RulesetFactory = Callable[..., Awaitable[tuple[Jurisdiction, list[Rule]]]]


@pytest.fixture
def make_ruleset(db_session: AsyncSession) -> RulesetFactory:
    """
    Create a jurisdiction with one active ruleset and the given rules.

    Each rule is a dict of RuleCatalog.add_rule keyword arguments.
    """

    async def factory(
        ctx: RequestContext,
        code: str = "EU",
        rules: list[dict[str, Any]] | None = None,
        priority: int = 10,
        status: RulesetStatus = RulesetStatus.ACTIVE,
    ) -> tuple[Jurisdiction, list[Rule]]:
        catalog = RuleCatalog(db_session)
        jurisdiction = await catalog.create_jurisdiction(ctx, code=code, name=f"{code} jurisdiction", priority=priority)
        ruleset = await catalog.create_ruleset(ctx, jurisdiction.id, name=f"{code} PFAS rules", status=status)
        created = []
        for rule in rules or []:
            created.append(await catalog.add_rule(ctx, ruleset.id, **rule))
        await db_session.commit()
        return jurisdiction, created

    return factory


@pytest.fixture
def critical_pfoa_rule() -> dict[str, Any]:
    return {
        "code": "EU-PFOA",
        "name": "PFOA above 25 ppm",
        "severity": RuleSeverity.CRITICAL,
        "thresholds": {"max_concentration_ppm": 25},
        "action_types": ["substitute_material"],
    }


# =============================================================================
# HTTP clients
# =============================================================================


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a synchronous test client for FastAPI."""
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an asynchronous test client for FastAPI with DB override."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def sample_declaration() -> dict[str, Any]:
    """Supplier declaration payload (grade B)."""
    return {
        "object_type": "Material",
        "object_id": "mat-100",
        "source_type": "supplier_declaration",
        "claim_status": "present",
        "intentionally_added": "yes",
        "threshold_definition": "25 ppm PFOA",
        "threshold_numeric_ppm": 25,
        "valid_from": "2025-01-01",
        "valid_to": "2030-12-31",
        "signatory": {"name": "Jane Roe", "role": "Quality Manager", "organization": "Acme Coatings"},
        "confidence_score": 80,
        "substances": [
            {"name": "Perfluorooctanoic acid", "cas_number": PFOA_CAS, "concentration_ppm": 50},
        ],
    }
