"""
Shared scraping toolkit: HTTP fetch policy, pagination driver and the
generic card/detail parsers used by the South African property portals.

Concrete scrapers only describe their site (config, URL shapes, container
selectors, link patterns) and override parsing where the site is unusual.
"""
import asyncio
import logging
import math
import re
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from .config import config as app_config
from .extract import (
    as_soup, city_from_url, detect_property_type, extract_address, extract_contact,
    extract_coordinates, extract_deposit, extract_description, extract_external_id,
    extract_images, extract_location, extract_postal_code, extract_price,
    extract_room_counts, extract_size_sqm, extract_summary, extract_title,
    is_furnished, is_pet_friendly, normalize_price_frequency, suburb_from_address,
)
from .models import ScrapedRecord, ScraperConfig, ScraperResult
from .utils import clean_text

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
]

PAGINATION_RE = re.compile(r"/p\d+/?$")
NOT_FOUND_STATUSES = (404, 410)
AUTH_STATUSES = (401, 403)


class FetchError(Exception):
    """Non-2xx response or network failure for a single URL."""

    def __init__(self, url: str, status: Optional[int] = None, reason: str = ""):
        self.url = url
        self.status = status
        self.reason = reason
        if status is not None:
            message = f"HTTP {status}: {reason}".rstrip(": ")
        else:
            message = reason or "Request failed"
        super().__init__(message)

    @property
    def not_found(self) -> bool:
        return self.status in NOT_FOUND_STATUSES


class AuthRequiredError(FetchError):
    """401/403: the site wants a logged-in session or has blocked us."""


class SourceScraper(ABC):
    """
    Base for one listing source.

    Every scraper offers ``scrape(city, suburb)``, ``scrape_listing_page(url)``
    and ``scrape_property_detail(url)``. The default implementations drive
    pagination, try structured listing containers before falling back to
    detail-page links, and turn markup into ``ScrapedRecord`` objects via the
    functions in ``extract``.

    A scraper owns its ``httpx.AsyncClient`` unless one is passed in, and its
    user-agent rotation counter, so concurrent instances never share state.
    """

    # CSS selectors tried in order; the first that matches anything wins
    container_selectors: Sequence[str] = ()
    external_id_pattern: Optional[re.Pattern] = None

    card_image_limit = 10
    detail_image_limit = 20

    default_city = "Cape Town"
    default_province = "Western Cape"
    auth_required_message = "Authentication required by source"

    def __init__(
        self,
        config: ScraperConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        deadline: Optional[float] = None,
        max_pages: Optional[int] = None,
    ):
        self.config = config
        self.max_pages = max_pages or config.max_pages
        self.deadline = deadline
        self.user_agent_index = 0
        self._timeout = timeout or app_config.REQUEST_TIMEOUT
        self._client = client
        self._owns_client = client is None
        self._pending_errors: List[str] = []
        # Pages already fetched while resolving the search URL, by URL
        self._prefetched: Dict[str, str] = {}
        # Result of the scrape in progress, readable if the caller cancels it
        self.progress: Optional[ScraperResult] = None

    @property
    def source(self):
        return self.config.source

    # ---------- Client lifecycle ----------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    # ---------- Fetch policy ----------

    def get_next_user_agent(self) -> str:
        """Round-robin over the configured user agents."""
        ua = self.config.user_agents[self.user_agent_index]
        self.user_agent_index = (self.user_agent_index + 1) % len(self.config.user_agents)
        return ua

    def get_rate_limit_delay(self) -> int:
        """Milliseconds between requests for the configured requests/second."""
        return math.ceil(1000 / self.config.rate_limit)

    def request_delay(self) -> float:
        """Seconds to wait before each request; strict sources wait twice as long."""
        delay_ms = self.get_rate_limit_delay()
        if self.config.strict:
            delay_ms *= 2
        return delay_ms / 1000

    def build_headers(self, referer: Optional[str] = None) -> Dict[str, str]:
        return {
            "User-Agent": self.get_next_user_agent(),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "Referer": referer or self.config.base_url,
        }

    async def fetch(self, url: str, referer: Optional[str] = None) -> str:
        """Rate-limited GET returning the body text; raises FetchError."""
        await asyncio.sleep(self.request_delay())
        client = self._get_client()
        try:
            response = await client.get(url, headers=self.build_headers(referer))
        except httpx.HTTPError as e:
            raise FetchError(url, None, str(e) or e.__class__.__name__) from e

        if response.status_code in AUTH_STATUSES:
            raise AuthRequiredError(url, response.status_code, response.reason_phrase)
        if not response.is_success:
            raise FetchError(url, response.status_code, response.reason_phrase)

        logger.debug("[%s] %s -> %d bytes", self.source.value, url, len(response.text))
        return response.text

    async def fetch_listing_page(self, url: str) -> str:
        """Body of a results page, reusing it if URL resolution already fetched it."""
        html = self._prefetched.pop(url, None)
        if html is not None:
            logger.debug("[%s] Reusing prefetched %s", self.source.value, url)
            return html
        return await self.fetch(url)

    # ---------- Pagination ----------

    async def resolve_search_url(self, city: str, suburb: Optional[str] = None) -> Optional[str]:
        """Base URL of page 1 for the search, or None when none can be found."""
        url = f"{self.config.search_url}/{city}"
        if suburb:
            url = f"{url}/{suburb}"
        return url

    @abstractmethod
    def page_url(self, base_url: str, page: int) -> str:
        """URL of results page `page` (1-based) given the page-1 URL."""

    def _past_deadline(self, started: float) -> bool:
        return self.deadline is not None and time.monotonic() - started >= self.deadline

    def _drain_errors(self) -> List[str]:
        errors, self._pending_errors = self._pending_errors, []
        return errors

    async def scrape(self, city: Optional[str] = None, suburb: Optional[str] = None) -> ScraperResult:
        """
        Walk result pages 1..max_pages and collect records.

        Stops at the first empty page. A not-found response on page 1 means
        the URL shape is wrong and aborts the run; past page 1 it just ends
        pagination. On strict sources a 401/403 ends the run. Any other page
        failure is recorded and the next page is tried.
        """
        started = time.monotonic()
        city = city or app_config.DEFAULT_CITY
        self.progress = result = ScraperResult(success=False)
        properties = result.properties
        errors = result.errors
        self._pending_errors = []
        self._prefetched = {}

        base_url = await self.resolve_search_url(city, suburb)
        if base_url is None:
            message = f"Could not find valid URL pattern for city: {city}"
            logger.error("[%s] %s", self.source.value, message)
            errors.append(message)
            result.duration = (time.monotonic() - started) * 1000
            return result

        for page in range(1, self.max_pages + 1):
            if self._past_deadline(started):
                errors.append(f"Deadline of {self.deadline:g}s reached after {result.pages_scraped} pages")
                logger.warning("[%s] deadline reached, stopping at page %d", self.source.value, page)
                break

            url = self.page_url(base_url, page)
            logger.info("[%s] Scraping page %d of %d: %s", self.source.value, page, self.max_pages, url)
            try:
                page_properties = await self.scrape_listing_page(url)
            except AuthRequiredError as e:
                errors.extend(self._drain_errors())
                errors.append(f"Page {page}: {e}")
                if self.config.strict:
                    logger.error("[%s] %s, stopping", self.source.value, e)
                    errors.append(self.auth_required_message)
                    break
                continue
            except FetchError as e:
                errors.extend(self._drain_errors())
                if e.not_found and page == 1:
                    logger.error("[%s] Page 1 returned %s - URL structure may be incorrect", self.source.value, e.status)
                    errors.append(f"Page 1: {e}")
                    break
                if e.not_found:
                    logger.info("[%s] Got %s on page %d, stopping pagination", self.source.value, e.status, page)
                    break
                logger.warning("[%s] Page %d failed: %s", self.source.value, page, e)
                errors.append(f"Page {page}: {e}")
                continue
            except Exception as e:
                logger.exception("[%s] Unexpected error on page %d", self.source.value, page)
                errors.extend(self._drain_errors())
                errors.append(f"Page {page}: {e}")
                continue

            errors.extend(self._drain_errors())
            logger.info("[%s] Page %d: found %d properties", self.source.value, page, len(page_properties))
            if not page_properties:
                break
            properties.extend(page_properties)
            result.pages_scraped += 1

        result.success = bool(properties) or not errors
        result.duration = (time.monotonic() - started) * 1000
        return result

    # ---------- Listing pages ----------

    def find_listing_containers(self, soup: BeautifulSoup) -> List[Tag]:
        for selector in self.container_selectors:
            found = soup.select(selector)
            if found:
                return found
        return []

    def is_detail_link(self, href: str) -> bool:
        """Links to a single listing: /to-rent/... ending in an id, not a results page."""
        if not href or "/to-rent/" not in href or PAGINATION_RE.search(href):
            return False
        last = href.split("?")[0].rstrip("/").rsplit("/", 1)[-1]
        return any(ch.isdigit() for ch in last)

    def harvest_detail_links(self, soup: BeautifulSoup) -> List[str]:
        """Detail-page URLs in document order, de-duplicated."""
        links: List[str] = []
        for a in soup.find_all("a", href=True):
            href = a["href"].strip()
            if not self.is_detail_link(href):
                continue
            url = urljoin(self.config.base_url, href)
            if url not in links:
                links.append(url)
        return links

    async def scrape_listing_page(self, url: str) -> List[ScrapedRecord]:
        """Records from one results page, falling back to detail pages."""
        html = await self.fetch_listing_page(url)
        soup = as_soup(html)
        properties: List[ScrapedRecord] = []

        containers = self.find_listing_containers(soup)
        if not containers:
            links = self.harvest_detail_links(soup)
            logger.info("[%s] No structured listings on %s, following %d detail links", self.source.value, url, len(links))
            for link in links:
                record = await self.scrape_property_detail(link)
                if record:
                    properties.append(record)
            return properties

        for container in containers:
            try:
                record = self.parse_listing_card(container, url)
            except Exception:
                logger.warning("[%s] Error parsing listing on %s", self.source.value, url, exc_info=True)
                continue
            if record:
                properties.append(record)

        logger.debug("[%s] Parsed %d of %d listings on %s", self.source.value, len(properties), len(containers), url)
        return properties

    def parse_listing_card(self, card: Tag, page_url: str) -> Optional[ScrapedRecord]:
        """Build a record from one results-page card; None without link or price."""
        link = None
        for a in card.find_all("a", href=True):
            if self.is_detail_link(a["href"]) or "/to-rent/" in a["href"]:
                link = a["href"]
                break
        if not link:
            return None
        property_url = urljoin(self.config.base_url, link)

        fragment = str(card)
        price = extract_price(fragment)
        if price is None:
            return None

        text = clean_text(card.get_text(" "))
        title = extract_title(card, detail=False)
        suburb, city, _ = extract_location(card)
        bedrooms, bathrooms, parking = extract_room_counts(text)

        return ScrapedRecord(
            external_id=self.external_id_for(property_url),
            source=self.source,
            source_url=property_url,
            title=title or "Property Listing",
            description=extract_summary(card),
            property_type=detect_property_type(text, title),
            suburb=suburb or "Unknown",
            city=city or city_from_url(page_url, self.default_city),
            province=self.default_province,
            price=price,
            price_frequency=normalize_price_frequency(text),
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            parking=parking,
            furnished=is_furnished(text),
            pet_friendly=is_pet_friendly(text),
            images=extract_images(card, self.config.base_url, self.card_image_limit),
        )

    # ---------- Detail pages ----------

    def external_id_for(self, url: str) -> str:
        if self.external_id_pattern is not None:
            return extract_external_id(url, self.external_id_pattern)
        return extract_external_id(url)

    async def scrape_property_detail(self, url: str) -> Optional[ScrapedRecord]:
        """
        Fetch and parse one listing page.

        Returns None when the page is unreachable or has no resolvable price.
        The fetch failure is kept for the enclosing run's error list, except a
        401/403 on a strict source, which is re-raised to end the run.
        """
        try:
            html = await self.fetch(url, referer=self.config.search_url)
        except AuthRequiredError:
            if self.config.strict:
                raise
            self._pending_errors.append(f"{url}: authentication required")
            return None
        except FetchError as e:
            logger.warning("[%s] Failed to scrape %s: %s", self.source.value, url, e)
            self._pending_errors.append(f"{url}: {e}")
            return None

        try:
            return self.parse_detail_page(html, url)
        except Exception:
            logger.warning("[%s] Error parsing detail page %s", self.source.value, url, exc_info=True)
            return None

    def parse_detail_page(self, html: str, url: str) -> Optional[ScrapedRecord]:
        price = extract_price(html)
        if price is None:
            logger.debug("[%s] No price on %s, skipping", self.source.value, url)
            return None

        soup = as_soup(html)
        text = clean_text(soup.get_text(" "))
        title = extract_title(soup, detail=True)
        address = extract_address(soup)
        suburb, city, province = extract_location(soup)
        bedrooms, bathrooms, parking = extract_room_counts(text)
        latitude, longitude = extract_coordinates(html)
        contact = extract_contact(soup)

        return ScrapedRecord(
            external_id=self.external_id_for(url),
            source=self.source,
            source_url=url,
            title=title or "Property Listing",
            description=extract_description(soup),
            property_type=detect_property_type(text, title),
            address=address,
            suburb=suburb or suburb_from_address(address),
            city=city or city_from_url(url, self.default_city),
            province=province or self.default_province,
            postal_code=extract_postal_code(address),
            latitude=latitude,
            longitude=longitude,
            price=price,
            price_frequency=normalize_price_frequency(text),
            deposit=extract_deposit(html),
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            parking=parking,
            size_sqm=extract_size_sqm(text),
            furnished=is_furnished(text),
            pet_friendly=is_pet_friendly(text),
            images=extract_images(soup, self.config.base_url, self.detail_image_limit),
            agent_name=contact["agent_name"],
            agent_phone=contact["agent_phone"],
            agent_email=contact["agent_email"],
            agency_name=contact["agency_name"],
        )
