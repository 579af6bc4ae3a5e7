from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env into os.environ
load_dotenv()


class Settings(BaseSettings):
    """Application configuration settings backed by environment variables."""

    database_url: str = Field(
        default="sqlite:///querypilot.db",
        validation_alias="DATABASE_URL",
        description="SQLAlchemy URL of the database whose schema is planned against."
    )
    metadata_config_path: str = Field(
        default="configs/metadata.yaml",
        validation_alias="METADATA_CONFIG",
        description="Path to the YAML file holding curated business vocabulary."
    )

    schema_cache_ttl_sec: float = Field(
        default=300.0,
        validation_alias="SCHEMA_CACHE_TTL_SEC",
        description="Seconds a cached schema is served before it is re-introspected."
    )
    schema_refresh_timeout_sec: float = Field(
        default=30.0,
        validation_alias="SCHEMA_REFRESH_TIMEOUT_SEC",
        description="Maximum seconds a caller waits on an in-flight schema refresh."
    )

    tenant_column: str = Field(
        default="tenantId",
        validation_alias="TENANT_COLUMN",
        description="Column every tenant-scoped table uses to isolate rows."
    )
    safety_row_limit: int = Field(
        default=1000,
        validation_alias="SAFETY_ROW_LIMIT",
        description="LIMIT injected into non-aggregated plans that carry no explicit limit."
    )
    default_top_n: int = Field(
        default=10,
        validation_alias="DEFAULT_TOP_N",
        description="Row count used for ranking questions that do not name one."
    )
    synonym_match_cutoff: float = Field(
        default=0.8,
        validation_alias="SYNONYM_MATCH_CUTOFF",
        description="difflib similarity ratio required for typo-tolerant term matching."
    )

    introspection_breaker_fail_max: int = Field(
        default=5,
        validation_alias="INTROSPECTION_BREAKER_FAIL_MAX",
        description="Consecutive catalog failures before introspection fails fast."
    )
    introspection_breaker_reset_sec: int = Field(
        default=30,
        validation_alias="INTROSPECTION_BREAKER_RESET_SEC",
        description="Seconds before a tripped introspection breaker allows a trial call."
    )

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON")
    default_tenant_id: Optional[str] = Field(
        default=None,
        validation_alias="TENANT_ID",
        description="Tenant used by the CLI when --tenant is omitted."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
