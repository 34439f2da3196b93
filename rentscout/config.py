"""
Scraper configuration and settings management.
"""
import os
from typing import Optional


def _env_bool(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Config:
    """Scraper configuration, read from the environment."""

    # Storage
    DB_PATH: str = os.getenv("RENTSCOUT_DB", "./data/rentscout.db")

    # Fetching
    REQUEST_TIMEOUT: float = float(os.getenv("RENTSCOUT_REQUEST_TIMEOUT", "20"))
    SOURCE_DEADLINE: float = float(os.getenv("RENTSCOUT_SOURCE_DEADLINE", "600"))

    # Scheduled job runs inside a bounded execution window
    BATCH_MAX_PAGES: int = int(os.getenv("RENTSCOUT_BATCH_MAX_PAGES", "3"))

    # Defaults for triggers
    DEFAULT_CITY: str = os.getenv("RENTSCOUT_DEFAULT_CITY", "cape-town")
    DEFAULT_SOURCES: str = os.getenv("RENTSCOUT_DEFAULT_SOURCES", "private_property,property24")
    SCRAPE_ON_EMPTY: bool = _env_bool("RENTSCOUT_SCRAPE_ON_EMPTY", "true")

    # Facebook Marketplace needs a logged-in session for most listings
    FB_COOKIES: Optional[str] = os.getenv("RENTSCOUT_FB_COOKIES") or None

    # Logging
    LOG_CONSOLE: str = os.getenv("LOG_CONSOLE", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "DEBUG")
    LOG_FILE_PATH: str = os.getenv("LOG_FILE_PATH", "rentscout.log")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration before a run."""
        if cls.REQUEST_TIMEOUT <= 0:
            raise ValueError("RENTSCOUT_REQUEST_TIMEOUT must be positive")
        if cls.SOURCE_DEADLINE <= 0:
            raise ValueError("RENTSCOUT_SOURCE_DEADLINE must be positive")
        if cls.BATCH_MAX_PAGES < 1:
            raise ValueError("RENTSCOUT_BATCH_MAX_PAGES must be at least 1")


# Global config instance
config = Config()
