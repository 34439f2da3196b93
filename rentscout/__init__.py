"""
Rental listings scraper for South African property portals
"""
from .models import ScrapedRecord, ScraperResult, ScamAnalysis, Source
from .base import SourceScraper, FetchError, AuthRequiredError
from .core import (
    ScraperOrchestrator,
    get_scraper_for_source,
    run_pipeline,
    spawn_background_scrape
)
from .database import (
    db_connect,
    db_init,
    upsert_property,
    db_get_property,
    ingest_records
)
from .export import (
    export_new_since_run,
    export_price_history,
    save_output_rows
)
from .extract import extract_price
from .scam import ScamDetector, scam_detector
from .utils import init_logger, now_iso

__version__ = "1.0.0"

__all__ = [
    "ScrapedRecord",
    "ScraperResult",
    "ScamAnalysis",
    "Source",
    "SourceScraper",
    "FetchError",
    "AuthRequiredError",
    "ScraperOrchestrator",
    "get_scraper_for_source",
    "run_pipeline",
    "spawn_background_scrape",
    "db_connect",
    "db_init",
    "upsert_property",
    "db_get_property",
    "ingest_records",
    "export_new_since_run",
    "export_price_history",
    "save_output_rows",
    "extract_price",
    "ScamDetector",
    "scam_detector",
    "init_logger",
    "now_iso"
]
