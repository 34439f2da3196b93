"""
Route package initialization.
"""
from .listings import router as listings_router
from .scrape import router as scrape_router
from .stats import router as stats_router

__all__ = ["listings_router", "scrape_router", "stats_router"]
