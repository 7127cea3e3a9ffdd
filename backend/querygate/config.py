from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices
from typing import Optional


class Settings(BaseSettings):
    """Gateway configuration using Pydantic v2 settings.

    - Parses comma-separated CORS origins and ClickHouse hosts into lists
    - Reads environment from APP_ENV or ENVIRONMENT
    - Ignores unknown env keys
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "querygate"
    environment: str = Field(default="dev", validation_alias=AliasChoices("APP_ENV", "ENVIRONMENT"))
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL"))

    # CORS (comma-separated string)
    cors_origins: str = Field(default="http://localhost:3000,http://127.0.0.1:3000")

    # ClickHouse HTTP endpoints, one per hostId (comma-separated)
    clickhouse_hosts: str = Field(
        default="http://localhost:8123",
        validation_alias=AliasChoices("CLICKHOUSE_HOST", "CLICKHOUSE_HOSTS"),
    )
    clickhouse_user: str = Field(default="default", validation_alias=AliasChoices("CLICKHOUSE_USER"))
    clickhouse_password: Optional[str] = Field(default=None, validation_alias=AliasChoices("CLICKHOUSE_PASSWORD"))
    clickhouse_database: Optional[str] = Field(default=None, validation_alias=AliasChoices("CLICKHOUSE_DATABASE"))

    query_timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("CLICKHOUSE_TIMEOUT", "QUERY_TIMEOUT_SECONDS"),
        description="Per-request timeout handed to the HTTP client",
    )
    # Server version only changes on upgrade
    version_cache_ttl_seconds: int = Field(
        default=24 * 60 * 60,
        validation_alias=AliasChoices("VERSION_CACHE_TTL_SECONDS"),
    )
    table_cache_ttl_seconds: int = Field(
        default=5 * 60,
        validation_alias=AliasChoices("TABLE_CACHE_TTL_SECONDS"),
    )

    @property
    def cors_origins_list(self) -> list[str]:
        return [s.strip() for s in (self.cors_origins or "").split(",") if s.strip()]

    @property
    def clickhouse_hosts_list(self) -> list[str]:
        return [s.strip().rstrip("/") for s in (self.clickhouse_hosts or "").split(",") if s.strip()]


settings = Settings()
