from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "feature-flag-service"
    app_env: Literal["dev", "prod"] = Field("dev")
    api_prefix: str = Field("/api/v1")
    cors_origins_raw: str | None = Field(None, validation_alias="cors_origins")
    database_url: str = Field("sqlite+aiosqlite:///./feature_flags.db")
    database_pool_size: int = Field(5)
    database_max_overflow: int = Field(5)
    database_pool_timeout_seconds: float = Field(30.0)
    database_statement_timeout_ms: int = Field(5000)
    redis_url: str | None = Field(None)
    redis_socket_timeout_seconds: float = Field(2.0)
    evaluation_cache_enabled: bool = Field(True)
    evaluation_cache_ttl_seconds: int = Field(300)
    evaluation_cache_key_prefix: str = Field("feature_flag_evaluation")
    metrics_enabled: bool = Field(True)
    metrics_token: str | None = Field(None)
    testing: bool = Field(False)

    model_config = SettingsConfigDict(env_file=".env", enable_decoding=False)

    @field_validator("cors_origins_raw", mode="before")
    @classmethod
    def normalize_list_raw(cls, value: object) -> str | None:
        return cls._normalize_raw_list(value)

    @field_validator("evaluation_cache_ttl_seconds")
    @classmethod
    def validate_cache_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("evaluation_cache_ttl_seconds must be positive")
        return value

    @field_validator("evaluation_cache_key_prefix")
    @classmethod
    def validate_cache_key_prefix(cls, value: str) -> str:
        cleaned = value.strip().rstrip(":")
        if not cleaned:
            raise ValueError("evaluation_cache_key_prefix must not be blank")
        if any(char in cleaned for char in "*?[]"):
            raise ValueError("evaluation_cache_key_prefix must not contain glob characters")
        return cleaned

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if cleaned and not cleaned.startswith("/"):
            cleaned = f"/{cleaned}"
        return cleaned

    @model_validator(mode="after")
    def validate_prod_settings(self) -> "Settings":
        if self.app_env != "prod":
            return self

        if any(origin == "*" for origin in self.cors_origins):
            raise ValueError("APP_ENV=prod does not allow wildcard CORS_ORIGINS entries")

        if self.metrics_enabled and (not self.metrics_token or not self.metrics_token.strip()):
            raise ValueError("METRICS_TOKEN is required when METRICS_ENABLED=true in prod")

        if self.testing:
            raise ValueError("APP_ENV=prod disables testing mode")

        return self

    @property
    def cors_origins(self) -> list[str]:
        return self._parse_list(self.cors_origins_raw)

    @cors_origins.setter
    def cors_origins(self, value: list[str] | str | None) -> None:
        self.cors_origins_raw = self._normalize_raw_list(value)

    @staticmethod
    def _normalize_raw_list(value: object) -> str | None:
        if value is None:
            return None
        if isinstance(value, (list, tuple, set)):
            return ",".join(str(item).strip() for item in value if str(item).strip())
        return str(value)

    @staticmethod
    def _parse_list(raw: str | None) -> list[str]:
        if not raw:
            return []
        return [item.strip() for item in raw.split(",") if item.strip()]


settings = Settings()
