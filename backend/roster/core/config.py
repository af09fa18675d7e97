"""Application configuration using Pydantic Settings"""

import logging
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Roster engine settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent.parent / ".env",
        env_file_encoding="utf-8",
        env_prefix="ROSTER_",
        case_sensitive=False,
        extra="ignore",
    )

    # Database (empty → in-memory store)
    database_url: str = Field(default="", description="PostgreSQL database URL")
    db_min_size: int = Field(default=1, description="Minimum pool size")
    db_max_size: int = Field(default=5, description="Maximum pool size")

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Scheduling
    default_timezone: str = Field(
        default="America/New_York",
        description="Timezone used for naive schedule times when the creator has no profile",
    )

    # Selection wizards
    pending_action_ttl: float = Field(
        default=600.0, description="Seconds of inactivity before a wizard expires"
    )
    pending_action_maxsize: int = Field(
        default=1024, description="Maximum number of concurrently tracked wizards"
    )

    # Transactions
    transaction_retries: int = Field(
        default=3, description="Attempts for a transaction hitting a serialization conflict"
    )
    transaction_retry_delay: float = Field(
        default=0.05, description="Base backoff in seconds between transaction attempts"
    )

    # Game modes
    game_modes_file: Path | None = Field(
        default=None, description="Optional JSON file with additional game modes"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject timezone names the zoneinfo database does not know"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def use_database(self) -> bool:
        """Whether a PostgreSQL store is configured"""
        return bool(self.database_url)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
