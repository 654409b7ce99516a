"""Service settings, read from the environment and an optional .env file."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, PostgresDsn, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment variable names are the upper-cased field names."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============== Environment ==============
    environment: Literal["development", "staging", "production"] = "development"

    # ============== Database ==============
    postgres_user: str = "pfas"
    postgres_password: str = "pfas_dev_password"
    postgres_db: str = "pfas_compliance"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url: PostgresDsn | None = None

    @property
    def db_url(self) -> str:
        """asyncpg URL; DATABASE_URL wins over the POSTGRES_* parts."""
        if self.database_url:
            return str(self.database_url)
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # ============== Redis ==============
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_url: RedisDsn | None = None

    @property
    def redis_dsn(self) -> str:
        """Job store and default Celery broker."""
        if self.redis_url:
            return str(self.redis_url)
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    # ============== API ==============
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False
    api_reload: bool = False
    cors_origins_str: str = Field(default="http://localhost:3000,http://localhost:8000", alias="cors_origins")
    default_tenant_id: str = "default"

    @property
    def cors_origins(self) -> list[str]:
        """CORS_ORIGINS is comma separated."""
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # ============== LLM Configuration ==============
    google_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    llm_extractor: Literal["gemini", "mock"] = "gemini"
    extraction_prompt_version: str = "pfas-declaration-v2"

    # ============== Chemical Data Providers ==============
    pubchem_base_url: str = "https://pubchem.ncbi.nlm.nih.gov/rest/pug"
    common_chemistry_base_url: str = "https://commonchemistry.cas.org/api"
    common_chemistry_api_key: str | None = None
    regulatory_api_url: str | None = None
    regulatory_api_key: str | None = None
    provider_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)

    # ============== Substance Verification ==============
    substance_cache_ttl_days: int = Field(default=30, ge=1, le=365)
    verification_min_score: int = Field(default=50, ge=0, le=100)
    synonym_limit: int = Field(default=50, ge=1, le=500)
    molecular_weight_tolerance: float = Field(default=0.001, gt=0.0, lt=1.0)

    # ============== Evidence Review ==============
    extraction_auto_submit_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    lab_auto_approve_confidence: int = Field(default=90, ge=0, le=100)

    # ============== Assessment Pipeline ==============
    max_jurisdictions_per_assessment: int = Field(default=3, ge=1, le=50)
    resolve_substances_on_assessment: bool = True

    # ============== Notifications ==============
    email_api_url: str | None = None
    email_api_key: str | None = None
    email_sender: str = "compliance-alerts@pfas-compliance.local"
    compliance_contact_email: str = "compliance-manager@pfas-compliance.local"

    # ============== Celery ==============
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_task_always_eager: bool = False  # also forces the in-process job fallback
    evidence_expiry_check_hours: int = Field(default=24, ge=1, le=168)

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_dsn

    @property
    def celery_backend(self) -> str:
        return self.celery_result_backend or self.redis_dsn

    # ============== Logging ==============
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "console"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings; tests override fields through monkeypatch."""
    return Settings()


settings = get_settings()
