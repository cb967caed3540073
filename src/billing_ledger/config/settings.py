"""Configuration settings for the billing ledger exporter."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings for environment variable configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Stripe API
    stripe_api_key: SecretStr = Field(..., validation_alias="STRIPE_API_KEY")
    stripe_api_url: str = Field(
        default="https://api.stripe.com", validation_alias="STRIPE_API_URL"
    )
    stripe_api_version: str = Field(
        default="2020-08-27", validation_alias="STRIPE_API_VERSION"
    )
    stripe_timeout: float = Field(default=30.0, validation_alias="STRIPE_TIMEOUT")
    stripe_max_retries: int = Field(default=3, validation_alias="STRIPE_MAX_RETRIES")

    # Ledger configuration and output
    ledger_config_path: str = Field(
        default="ledger.yaml", validation_alias="LEDGER_CONFIG_PATH"
    )
    output_dir: str = Field(default="out", validation_alias="OUTPUT_DIR")

    # Period extraction: earliest year accepted as a service-period year
    period_min_year: int = Field(default=2020, validation_alias="PERIOD_MIN_YEAR")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )

    @property
    def is_test_mode(self) -> bool:
        """True when running against a Stripe test-mode key."""
        return self.stripe_api_key.get_secret_value().startswith("sk_test")


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
