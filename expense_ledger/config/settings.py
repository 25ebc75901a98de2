"""
Configuration Management for Expense Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here, one typed class per
concern. There is no shallow merging of partial settings dictionaries:
every option is a named field with a default, so a missing key is a
validation error at startup instead of a surprise at runtime.
"""

from datetime import date
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    path: str = Field(
        default="ledger.db",
        description="SQLite database file (':memory:' for a throwaway store)"
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=120.0,
        description="How long SQLite waits on a locked database"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for autocommit statements hitting a busy database"
    )


class ModuleSettings(BaseSettings):
    """Feature modules that change engine behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_MODULES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    debt_enabled: bool = Field(
        default=True,
        description="Enable debt allocation and settlement"
    )
    payment_methods_enabled: bool = Field(
        default=True,
        description="Track which payment method settlements are paid into"
    )
    default_payment_method_id: Optional[int] = Field(
        default=1,
        description="Method used when a settlement names none (1 = Cash in a fresh store)"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Display
    currency_symbol: str = Field(
        default="€",
        max_length=3,
        description="Symbol used in generated notes"
    )
    currency_precision: int = Field(
        default=2,
        ge=0,
        le=4,
        description="Decimal places used when amounts are displayed"
    )

    # Clock override for reproducing historical views
    mock_today: Optional[date] = Field(
        default=None,
        description="Pretend today is this date (time series end point)"
    )

    # Audit
    audit_persist: bool = Field(
        default=True,
        description="Persist audit events to the store, not only the local log"
    )

    @field_validator('mock_today')
    @classmethod
    def warn_future_mock_date(cls, v: Optional[date]) -> Optional[date]:
        """Warn if the mocked clock is in the future (charts will run ahead)."""
        if v is not None and v > date.today():
            import warnings
            warnings.warn(
                f"LEDGER_MOCK_TODAY is set to {v}, which is in the future."
            )
        return v

    def today(self) -> date:
        """Current date, honouring the mock clock."""
        return self.mock_today or date.today()

    def format_amount(self, amount: float) -> str:
        """Render an amount for notes and messages."""
        return f"{self.currency_symbol}{amount:.{self.currency_precision}f}"


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily so one broken section
    # does not prevent reading the others

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def modules(self) -> ModuleSettings:
        return ModuleSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "modules", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
