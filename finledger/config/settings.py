"""
Configuration Management for finledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQLite ledger storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    path: str = Field(
        default="finledger.db",
        description="Path to the SQLite database file"
    )
    busy_timeout_ms: int = Field(
        default=5000,
        ge=0,
        le=600000,
        description="How long a writer waits for the database lock"
    )

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Reject an empty path (":memory:" would give every session its own database)."""
        if not v.strip() or v.strip() == ":memory:":
            raise ValueError("Database path must point to a file")
        return v.strip()

    @property
    def db_path(self) -> Path:
        return Path(self.path)


class MindeeSettings(BaseSettings):
    """Mindee OCR service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MINDEE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Mindee API key"
    )


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=4096,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
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

    # Statement uploads
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum statement file size in MB"
    )
    supported_statement_formats: str = Field(
        default="pdf,jpg,jpeg,png",
        description="Comma-separated list of supported statement formats"
    )

    # Auto-categorization
    auto_categorize_min_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Predictions at or below this confidence are not applied"
    )

    # Validation thresholds for extracted statement records
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future a transaction date can be"
    )
    max_transaction_amount: float = Field(
        default=10000000.0,
        gt=0,
        description="Maximum reasonable transaction amount (for sanity checking)"
    )

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [
            fmt.strip().lower()
            for fmt in self.supported_statement_formats.split(",")
            if fmt.strip()
        ]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def mindee(self) -> MindeeSettings:
        return MindeeSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    "<name>_error" entries for the sections that failed.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "mindee", "gemini", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
