"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # ERP posting API
    erp_api_url: str = Field(default="https://erp.example.invalid")
    erp_user: str = Field(default="")
    erp_password: str = Field(default="")
    erp_timeout_seconds: float = Field(default=30.0)
    erp_max_attempts: int = Field(default=3)

    # Reference tokenizer
    min_bare_digits: int = Field(default=4)
    min_prefixed_digits: int = Field(default=3)

    # Candidate scoring weights
    weight_reference_substring: float = Field(default=0.6)
    weight_numeric_core: float = Field(default=0.5)
    weight_credit_memo: float = Field(default=0.65)
    weight_amount_match: float = Field(default=0.3)
    candidate_min_score: float = Field(default=0.4)

    # Match decision
    amount_tolerance_cents: int = Field(default=50)
    tie_break_margin: float = Field(default=0.1)
    auto_match_confidence_threshold: int = Field(default=90)
    remittance_match_confidence: int = Field(default=94)
    default_exception_confidence: int = Field(default=60)

    # Customer resolution
    customer_name_similarity_threshold: float = Field(default=0.85)

    # Settlement lifecycle
    ghost_payment_threshold_hours: float = Field(default=48.0)

    # Data integrity guard
    sync_stale_after_minutes: int = Field(default=30)

    # Storage
    reports_dir: Path = Field(default=Path("./data/reports"))

    def within_tolerance(self, difference_cents: int) -> bool:
        """Check whether an amount difference is strictly inside the match tolerance."""
        return abs(difference_cents) < self.amount_tolerance_cents

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
