from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "alert-rule-provisioning"
    app_env: Literal["dev", "prod"] = Field("prod")
    database_url: str = Field("sqlite+aiosqlite:///./alert_rules.db")
    database_pool_size: int = Field(5)
    database_max_overflow: int = Field(5)
    database_pool_timeout_seconds: float = Field(30.0)
    database_statement_timeout_ms: int = Field(5000)
    base_interval_seconds: int = Field(10)
    default_interval_seconds: int = Field(60)
    transaction_timeout_seconds: float = Field(30.0)
    metrics_enabled: bool = Field(False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field("INFO")

    model_config = SettingsConfigDict(env_file=".env")

    @field_validator("base_interval_seconds")
    @classmethod
    def validate_base_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("base_interval_seconds must be positive")
        return value

    @field_validator("transaction_timeout_seconds")
    @classmethod
    def validate_transaction_timeout(cls, value: float) -> float:
        if value < 0:
            raise ValueError("transaction_timeout_seconds must not be negative")
        return value

    @model_validator(mode="after")
    def validate_default_interval(self) -> "Settings":
        if self.default_interval_seconds <= 0:
            raise ValueError("default_interval_seconds must be positive")
        if self.default_interval_seconds % self.base_interval_seconds != 0:
            raise ValueError(
                "default_interval_seconds must be a multiple of base_interval_seconds "
                f"({self.base_interval_seconds})"
            )
        return self

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith(("postgresql://", "postgresql+"))

    @property
    def transaction_timeout(self) -> float | None:
        # 0 disables the deadline
        return self.transaction_timeout_seconds or None


settings = Settings()
