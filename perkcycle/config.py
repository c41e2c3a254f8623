"""Application configuration."""
from collections import Counter
from functools import lru_cache
import math
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Perkcycle"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./data/perkcycle.db"
    transaction_timeout_seconds: float = 30.0

    # Batch processing
    migration_batch_size: int = 10
    materialize_batch_size: int = 10

    # Notifications
    expiring_threshold_days: int = 7
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "noreply@perkcycle.app"

    # Trigger endpoints
    cron_secret: str | None = None

    # Paths
    base_dir: Path = Path(__file__).parent
    plans_dir: Path = base_dir / "plans"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("migration_batch_size", "materialize_batch_size")
    @classmethod
    def validate_batch_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Batch sizes must be at least 1.")
        return value

    @field_validator("cron_secret")
    @classmethod
    def validate_cron_secret(cls, value: str | None) -> str | None:
        """Fail closed if CRON_SECRET is set to something guessable."""
        if value is None or value == "":
            return None

        if len(value) < 32:
            raise ValueError("CRON_SECRET must be at least 32 characters.")

        lowered = value.lower()
        if "changeme" in lowered or lowered in {"secret", "password", "test"}:
            raise ValueError("CRON_SECRET must not be a placeholder value.")

        counts = Counter(value)
        entropy_per_char = -sum((count / len(value)) * math.log2(count / len(value)) for count in counts.values())
        if entropy_per_char * len(value) < 100:
            raise ValueError("CRON_SECRET entropy is too low; use a cryptographically random value.")

        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
