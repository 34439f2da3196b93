"""
API configuration and settings management.
"""
import os

from rentscout.config import config as scraper_config


class Config:
    """Application configuration."""

    # Database (shared with the scraper)
    DB_PATH: str = os.getenv("RENTSCOUT_DB", scraper_config.DB_PATH)

    # API settings
    API_TITLE: str = "RentScout API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "REST API for scraped rental listings with scam scores"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    # Pagination defaults
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 50
    EXPORT_LIMIT: int = 10000

    # Listings hidden above this scam score unless the caller asks otherwise
    DEFAULT_MAX_SCAM: float = 0.5

    # Scrape triggers
    DEFAULT_CITY: str = scraper_config.DEFAULT_CITY
    DEFAULT_SOURCES: str = scraper_config.DEFAULT_SOURCES
    SCRAPE_ON_EMPTY: bool = scraper_config.SCRAPE_ON_EMPTY
    BATCH_MAX_PAGES: int = scraper_config.BATCH_MAX_PAGES

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE_PATH: str = os.getenv("API_LOG_FILE", "api.log")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration on startup."""
        if not cls.DB_PATH:
            raise ValueError("Database path not configured")
        if not 0 <= cls.DEFAULT_MAX_SCAM <= 1:
            raise ValueError("DEFAULT_MAX_SCAM must be between 0 and 1")
        if cls.BATCH_MAX_PAGES < 1:
            raise ValueError("BATCH_MAX_PAGES must be at least 1")


# Global config instance
config = Config()
