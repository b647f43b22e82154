"""Application configuration loading via Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode
from sqlalchemy.engine import URL


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables."""

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    db_user: str = Field(default="postgres", alias="DB_USER")
    db_password: str = Field(default="postgres", alias="DB_PASSWORD")
    db_host: str = Field(default="localhost", alias="DB_HOST")
    db_port: int = Field(default=5432, alias="DB_PORT")
    db_name: str = Field(default="todos", alias="DB_NAME")
    database_url_override: str | None = Field(default=None, alias="DATABASE_URL")
    db_query_timeout_seconds: float | None = Field(default=None, gt=0, alias="DB_QUERY_TIMEOUT_SECONDS")

    metrics_path: str = Field(default="/metrics", alias="METRICS_PATH")
    metrics_strict: bool = Field(default=False, alias="METRICS_STRICT")
    connection_sample_interval_seconds: float = Field(
        default=5.0, gt=0, alias="CONNECTION_SAMPLE_INTERVAL_SECONDS"
    )
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default=["*"], alias="CORS_ALLOW_ORIGINS")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @property
    def database_url(self) -> str:
        """Return the SQLAlchemy URL, preferring an explicit DATABASE_URL."""

        if self.database_url_override:
            return self.database_url_override
        url = URL.create(
            "postgresql+asyncpg",
            username=self.db_user,
            password=self.db_password,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )
        return url.render_as_string(hide_password=False)


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()  # type: ignore[call-arg]
