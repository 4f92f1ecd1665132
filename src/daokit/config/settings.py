from pydantic_settings import BaseSettings, NoDecode
from pydantic import ConfigDict, field_validator
from pathlib import Path
from typing import Annotated, Literal
from functools import lru_cache
from ..validators.config_validators import to_uppercase, to_lowercase, to_interval_list

class Settings(BaseSettings):
    """
    Library settings loaded from environment (or a `.env` file).
    """

    # Environment
    ENV: Literal["development", "testing", "staging", "production"] = "development"

    # Database configuration
    DATABASE_URL: str = "sqlite+aiosqlite:///./daokit.db"
    DB_POOL_PRE_PING: bool = True

    # SQLAlchemy
    SQLALCHEMY_ECHO: bool = False

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "json"
    LOG_TO_STDOUT: bool = True
    LOG_DIR: Path = Path("/var/log/daokit")
    LOG_MAX_BYTES: int = 10_000_000  # 10 MB
    LOG_BACKUP_COUNT: int = 5
    ENABLE_SQL_LOGGING: bool = False

    # Query stats
    STATS_TITLE: str = "db stats"
    STATS_TOP: int = 30
    STATS_INTERVAL_SECONDS: float = 3600.0
    # Shorter reporting periods used once, in order, before the steady interval kicks in
    STATS_WARMUP_INTERVALS_SECONDS: Annotated[list[float], NoDecode] = [600.0, 1800.0]
    STATS_WARN_DESCRIPTORS: int = 500
    STATS_MAX_DESCRIPTORS: int = 1000
    STATS_QUEUE_MAX_SIZE: int = 10_000
    STATS_SLOW_QUERY_MS: float = 1000.0

    # --- Validators ---
    @field_validator("LOG_LEVEL", mode="before")
    def normalize_log_level(cls, v: str | None) -> str | None:
        """
        Normalize the LOG_LEVEL value to uppercase before Literal validation runs,
        so `LOG_LEVEL=debug` is accepted.
        """
        return to_uppercase(v)

    @field_validator("LOG_FORMAT", mode="before")
    def normalize_log_format(cls, v: str | None) -> str | None:
        return to_lowercase(v)

    @field_validator("STATS_WARMUP_INTERVALS_SECONDS", mode="before")
    def parse_warmup_intervals(cls, v):
        """
        Accept either a JSON list (the pydantic-settings default for complex fields)
        or a plain comma separated string such as `600,1800`.
        """
        return to_interval_list(v)

    # --- ConfigDict settings ---
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

# Settings never change during the process lifetime, so one cached instance is enough.
@lru_cache()
def get_settings() -> Settings:
    return Settings()
