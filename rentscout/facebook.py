"""
Facebook Marketplace property-rentals scraper.

Marketplace pages are React apps: listing data sits in embedded
``application/json`` script blocks, and nearly everything is behind a login.
Without session cookies expect 401/403, which ends the run for this source
(the config is strict). Pass cookies through ``RENTSCOUT_FB_COOKIES``.
"""
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urljoin

from bs4 import BeautifulSoup

from .base import DEFAULT_USER_AGENTS, SourceScraper
from .config import config as app_config
from .extract import (
    as_soup, coerce_price, extract_price_from_json, is_furnished, is_pet_friendly,
    iter_json_blobs, normalize_property_type, parse_rooms,
)
from .models import PriceFrequency, ScrapedRecord, ScraperConfig, Source
from .utils import clean_text, to_float

logger = logging.getLogger(__name__)

FACEBOOK_CONFIG = ScraperConfig(
    source=Source.FACEBOOK,
    base_url="https://www.facebook.com",
    search_url="https://www.facebook.com/marketplace/search",
    rate_limit=1,
    max_pages=5,
    user_agents=DEFAULT_USER_AGENTS,
    strict=True,
)

ITEM_LINK_RE = re.compile(r"/marketplace/item/(\d+)")
LISTING_KEYS = ("marketplace_listing", "listing", "item", "product")
LISTING_SEARCH_DEPTH = 10

TITLE_KEYS = ("title", "name", "headline", "marketplace_listing_title")
DESCRIPTION_KEYS = ("description", "details", "redacted_description")
PRICE_KEYS = ("price", "priceText", "formattedPrice", "listing_price")


def find_listings_in_json(obj: Any, depth: int = 0, max_depth: int = LISTING_SEARCH_DEPTH) -> List[Dict[str, Any]]:
    """Every object that looks like a marketplace listing, depth-bounded."""
    if depth > max_depth:
        return []
    found: List[Dict[str, Any]] = []

    if isinstance(obj, list):
        for item in obj:
            found.extend(find_listings_in_json(item, depth + 1, max_depth))

    elif isinstance(obj, dict):
        for key in LISTING_KEYS:
            if isinstance(obj.get(key), dict):
                found.append(obj[key])
                break
        if isinstance(obj.get("listings"), list):
            found.extend(x for x in obj["listings"] if isinstance(x, dict))
        for value in obj.values():
            if isinstance(value, (dict, list)):
                found.extend(find_listings_in_json(value, depth + 1, max_depth))

    return found


def _first(data: Dict[str, Any], keys) -> Any:
    for key in keys:
        if data.get(key):
            return data[key]
    return None


def _text(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("text") or ""
    return clean_text(str(value)) if value else ""


def _listing_price(data: Dict[str, Any]) -> Optional[float]:
    for key in PRICE_KEYS:
        value = data.get(key)
        if value is None:
            continue
        price = coerce_price(value)
        if price is None and isinstance(value, dict):
            price = extract_price_from_json(value)
        if price is not None:
            return price
    return None


def _count(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return parse_rooms(data.get(f"{key}Text") or (value if isinstance(value, str) else ""))


def _images(data: Dict[str, Any]) -> List[str]:
    raw = data.get("images")
    if not isinstance(raw, list):
        raw = [data["image"]] if data.get("image") else []
    images: List[str] = []
    for img in raw:
        if isinstance(img, dict):
            url = img.get("url") or img.get("src") or img.get("uri") or ""
        else:
            url = img if isinstance(img, str) else ""
        if url and url not in images:
            images.append(url)
    return images


class FacebookScraper(SourceScraper):

    external_id_pattern = ITEM_LINK_RE
    detail_image_limit = 20
    default_city = "Unknown"
    default_province = "Unknown"
    auth_required_message = "Facebook authentication required. Please provide session cookies."

    def __init__(self, config: ScraperConfig = FACEBOOK_CONFIG, cookies: Optional[str] = None, **kwargs):
        super().__init__(config, **kwargs)
        self.cookies = cookies if cookies is not None else app_config.FB_COOKIES

    def build_headers(self, referer: Optional[str] = None) -> Dict[str, str]:
        headers = super().build_headers(referer)
        headers.update({
            "Accept-Language": "en-US,en;q=0.9",
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "same-origin" if referer else "none",
        })
        if self.cookies:
            headers["Cookie"] = self.cookies
        return headers

    async def resolve_search_url(self, city: str, suburb: Optional[str] = None) -> Optional[str]:
        place = city.replace("-", " ")
        query = f"{suburb.replace('-', ' ')}, {place}" if suburb else place
        params = {"query": query, "category": "propertyrentals", "vertical": "property"}
        return f"{self.config.search_url}?{urlencode(params)}"

    def page_url(self, base_url: str, page: int) -> str:
        if page <= 1:
            return base_url
        return f"{base_url}&page={page}"

    def is_detail_link(self, href: str) -> bool:
        return bool(href) and ITEM_LINK_RE.search(href) is not None

    def harvest_detail_links(self, soup: BeautifulSoup) -> List[str]:
        links: List[str] = []
        for a in soup.find_all("a", href=True):
            m = ITEM_LINK_RE.search(a["href"])
            if not m:
                continue
            url = f"{self.config.base_url}/marketplace/item/{m.group(1)}/"
            if url not in links:
                links.append(url)
        return links

    async def scrape_listing_page(self, url: str) -> List[ScrapedRecord]:
        html = await self.fetch_listing_page(url)
        soup = as_soup(html)

        properties: List[ScrapedRecord] = []
        seen = set()
        for blob in iter_json_blobs(soup):
            for listing in find_listings_in_json(blob):
                try:
                    record = self.parse_listing_json(listing)
                except Exception:
                    logger.debug("[facebook] Skipping unparseable listing object", exc_info=True)
                    continue
                if record is None or record.external_id in seen:
                    continue
                seen.add(record.external_id)
                properties.append(record)

        if properties:
            return properties

        for link in self.harvest_detail_links(soup):
            record = await self.scrape_property_detail(link)
            if record:
                properties.append(record)
        return properties

    def parse_listing_json(self, data: Dict[str, Any], url: str = "", external_id: str = "") -> Optional[ScrapedRecord]:
        """Record from one marketplace listing object; None without id or price."""
        listing_id = external_id or (str(data["id"]) if data.get("id") else "")
        if not listing_id:
            return None
        price = _listing_price(data)
        if price is None:
            return None

        title = _text(_first(data, TITLE_KEYS))
        description = _text(_first(data, DESCRIPTION_KEYS))
        full_text = f"{title} {description}"

        location = data.get("location") or data.get("place") or {}
        if not isinstance(location, dict):
            location = {}
        seller = data.get("seller") or data.get("owner") or {}
        if not isinstance(seller, dict):
            seller = {}

        return ScrapedRecord(
            external_id=listing_id,
            source=self.source,
            source_url=url or data.get("url") or f"{self.config.base_url}/marketplace/item/{listing_id}/",
            title=title or "Property Listing",
            description=description or None,
            property_type=normalize_property_type(full_text),
            address=location.get("address") or location.get("full_address") or None,
            suburb=location.get("suburb") or location.get("neighborhood") or location.get("city") or "Unknown",
            city=location.get("city") or location.get("metro") or "Unknown",
            province=location.get("province") or location.get("state") or "Unknown",
            latitude=to_float(location.get("latitude") or data.get("latitude")),
            longitude=to_float(location.get("longitude") or data.get("longitude")),
            price=price,
            price_frequency=PriceFrequency.MONTHLY,
            bedrooms=_count(data, "bedrooms"),
            bathrooms=_count(data, "bathrooms"),
            parking=_count(data, "parking"),
            furnished=is_furnished(full_text),
            pet_friendly=is_pet_friendly(full_text),
            images=[urljoin(self.config.base_url, i) for i in _images(data)][:self.detail_image_limit],
            agent_name=seller.get("name") or None,
            agent_phone=seller.get("phone") or None,
            agent_email=seller.get("email") or None,
        )

    def parse_detail_page(self, html: str, url: str) -> Optional[ScrapedRecord]:
        """
        Item pages also embed related listings, so only the object carrying
        this item's id is taken. An id-less object is used when none matches.
        A page carrying only other items' listings yields nothing.
        """
        external_id = self.external_id_for(url)
        fallback = None
        others = 0
        for blob in iter_json_blobs(html):
            for listing in find_listings_in_json(blob):
                listing_id = str(listing["id"]) if listing.get("id") else ""
                if external_id and listing_id and listing_id != external_id:
                    others += 1
                    continue
                record = self.parse_listing_json(listing, url, external_id)
                if record is None:
                    continue
                if listing_id:
                    return record
                if fallback is None:
                    fallback = record
        if fallback is not None:
            return fallback
        if others:
            logger.debug("[facebook] %s only embeds %d other listings, skipping", url, others)
            return None
        return super().parse_detail_page(html, url)
