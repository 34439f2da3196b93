"""
Property24 rentals scraper.

Search pages live at /to-rent/<city>[/<suburb>] and paginate with a
trailing /p<N> path segment.
"""
import logging

from .base import DEFAULT_USER_AGENTS, SourceScraper
from .models import ScraperConfig, Source

logger = logging.getLogger(__name__)

PROPERTY24_CONFIG = ScraperConfig(
    source=Source.PROPERTY24,
    base_url="https://www.property24.com",
    search_url="https://www.property24.com/to-rent",
    rate_limit=2,
    max_pages=10,
    user_agents=DEFAULT_USER_AGENTS,
)


class Property24Scraper(SourceScraper):

    container_selectors = (
        ".p24_listing",
        ".js_listing",
        "article.listing",
        ".property-card",
        ".result-item",
        "li.property",
    )

    def __init__(self, config: ScraperConfig = PROPERTY24_CONFIG, **kwargs):
        super().__init__(config, **kwargs)

    def page_url(self, base_url: str, page: int) -> str:
        if page <= 1:
            return base_url
        return f"{base_url.rstrip('/')}/p{page}"
