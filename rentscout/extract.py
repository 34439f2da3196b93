"""
Price and field extraction from listing markup.

Everything in here is pure: raw HTML (or an already parsed JSON value) in,
typed values out. Markup differs between sources and is partly rendered by
JavaScript, so price recovery runs several strategies in priority order:

1. JSON embedded in ``<script>`` blocks (``application/json``,
   ``application/ld+json``) and in known state assignments such as
   ``window.__NEXT_DATA__ = {...}``, searched recursively for price fields.
2. ``key: value`` / ``key = value`` assignments inside raw script bodies,
   preferring space-grouped thousands ("16 000") over comma-grouped
   ("16,000") over bare digit runs.
3. A battery of HTML patterns, from price-classed containers down to a bare
   ``R`` followed by digits. The longest number found wins.

A price of ``None`` means "not confidently resolved" and the caller must drop
the listing rather than store a guess.
"""
import json
import logging
import math
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from .models import PriceFrequency, PropertyType
from .utils import clean_text, slug_to_title, to_float

logger = logging.getLogger(__name__)

PRICE_FIELDS = (
    "price", "rent", "rentalPrice", "amount", "cost",
    "monthlyRent", "weeklyRent", "dailyRent",
)
JSON_MAX_DEPTH = 5

STATE_VARIABLES = ("window.__INITIAL_STATE__", "window.__NEXT_DATA__", "__INITIAL_PROPS__")
STATE_ASSIGN_RE = re.compile(
    r"(?:%s)\s*=\s*" % "|".join(re.escape(v) for v in STATE_VARIABLES)
)
JSON_SCRIPT_TYPES = ("application/json", "application/ld+json")

# A three digit group followed by a unit is a size or distance, not thousands.
UNIT_AHEAD = r"(?!\s*(?i:m\u00b2|m2|sqm|sq\s*m|square|met(?:er|re)s?|km|m)(?![a-z]))"
# Space or comma grouped thousands first, then a plain digit run.
NUMBER = (
    r"\d{1,3}(?:[ \u00a0,]\d{3}(?!\d)%s)+(?:\.\d{1,2})?(?!\d)|\d+(?:\.\d{1,2})?" % UNIT_AHEAD
)
CURRENCY = r"(?:ZAR|(?<![A-Za-z])R)"

SCRIPT_ASSIGN_RE = re.compile(
    r"(?<![A-Za-z0-9_])[\"']?(?i:%s)[\"']?\s*[:=]\s*[\"']?\s*%s?\s*(%s)"
    % ("|".join(PRICE_FIELDS), CURRENCY, NUMBER)
)

# Most specific first. Order only breaks ties between equally long numbers.
HTML_PRICE_PATTERNS = [
    re.compile(r"<[^>]*(?:class|id)=\"[^\"]*(?i:price)[^\"]*\"[^>]*>[\s\S]{0,200}?%s\s*(%s)" % (CURRENCY, NUMBER)),
    re.compile(r"%s\s*(%s)\s*(?i:per\s*(?:month|week|day)|p/?m|p/?w|p/?d)\b" % (CURRENCY, NUMBER)),
    re.compile(r"(?i:rent|price)\s*:\s*%s?\s*(%s)" % (CURRENCY, NUMBER)),
    re.compile(r"(?i:data-(?:price|rent|cost))=\"[^\"\d]*(%s)\"" % NUMBER),
    re.compile(r"<meta[^>]*(?:property|name)=\"[^\"]*(?i:price)[^\"]*\"[^>]*content=\"[^\"\d]*(%s)\"" % NUMBER),
    re.compile(r"\"price\"\s*:\s*\"?%s?\s*(%s)" % (CURRENCY, NUMBER)),
    re.compile(r"%s\s*(%s)" % (CURRENCY, NUMBER)),
]
# Asset URLs are full of digit runs that look like prices ("/img/R1234567.jpg").
URL_ATTR_RE = re.compile(r"\s(?:src|href|srcset|data-src)=\"[^\"]*\"", re.I)

FREQUENCY_RE = re.compile(r"per\s*(month|week|day)|\b(p/?m|p/?w|p/?d)\b", re.I)
BEDROOMS_RE = re.compile(r"(\d+)\s*(?:bedrooms?|beds?|br)\b", re.I)
BATHROOMS_RE = re.compile(r"(\d+)\s*(?:bathrooms?|baths?|ba)\b", re.I)
PARKING_RE = re.compile(r"(\d+)\s*(?:parking|garages?|carports?|cars?)\b", re.I)
SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:m²|m2|sqm|square\s*met(?:er|re)s?)(?![a-z])", re.I)
DEPOSIT_RE = re.compile(r"(?i:deposit)[^:<\d]{0,20}:?\s*(?:<[^>]*>\s*)*%s\s*(%s)" % (CURRENCY, NUMBER))
EMAIL_RE = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
PHONE_RE = re.compile(r"(\+?\d{2,3}[\s-]?\d{2,4}[\s-]?\d{3,4}[\s-]?\d{3,4})")
LATITUDE_RE = re.compile(r"\"(?:latitude|lat)\"\s*:\s*\"?(-?\d{1,3}\.\d+)")
LONGITUDE_RE = re.compile(r"\"(?:longitude|lng|lon)\"\s*:\s*\"?(-?\d{1,3}\.\d+)")
CAPITALISED = r"[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*"
LOCATION3_RE = re.compile(r"(%s)\s*,\s*(%s)\s*,\s*(%s)" % (CAPITALISED, CAPITALISED, CAPITALISED))
LOCATION2_RE = re.compile(r"(%s)\s*,\s*(%s)" % (CAPITALISED, CAPITALISED))
POSTAL_CODE_RE = re.compile(r"\b(\d{4})\b")
EXTERNAL_ID_RE = re.compile(r"/(\d+)(?=/|$|\?)")
CITY_SLUG_RE = re.compile(r"/to-rent/([^/?#]+)")

IMAGE_SKIP_WORDS = ("placeholder", "logo", "icon")
ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg")

Doc = Union[str, Tag]


def as_soup(doc: Doc) -> Tag:
    if isinstance(doc, Tag):
        return doc
    return BeautifulSoup(doc or "", "html.parser")


# ---------- Price ----------

def parse_price(price_text) -> Optional[float]:
    """
    Parse a price string such as "R 16 000.00" or "R16,000" into a float.

    Everything except digits, commas and periods is dropped, commas are
    treated as thousands separators. Returns None for empty or non-finite
    results.
    """
    if price_text is None:
        return None
    cleaned = re.sub(r"[^\d.,]", "", str(price_text)).replace(",", "")
    if not cleaned:
        return None
    return to_float(cleaned)


def _positive(value: Optional[float]) -> Optional[float]:
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    return float(value)


def coerce_price(value: Any) -> Optional[float]:
    """Accept positive numbers, numeric strings, or {"value": ...} objects."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _positive(float(value))
    if isinstance(value, str):
        return _positive(parse_price(value))
    if isinstance(value, dict) and value.get("value"):
        return _positive(parse_price(str(value["value"])))
    return None


def extract_price_from_json(data: Any, depth: int = 0, max_depth: int = JSON_MAX_DEPTH) -> Optional[float]:
    """Depth-bounded search of a parsed JSON value for a positive price field."""
    if data is None:
        return None

    if isinstance(data, dict):
        for name in PRICE_FIELDS:
            if data.get(name) is not None:
                price = coerce_price(data[name])
                if price is not None:
                    return price
        if depth < max_depth:
            for value in data.values():
                if isinstance(value, (dict, list)):
                    price = extract_price_from_json(value, depth + 1, max_depth)
                    if price is not None:
                        return price

    elif isinstance(data, list) and depth < max_depth:
        for item in data:
            price = extract_price_from_json(item, depth + 1, max_depth)
            if price is not None:
                return price

    return None


def iter_json_blobs(doc: Doc) -> Iterator[Any]:
    """Yield every JSON value embedded in the page's script blocks."""
    soup = as_soup(doc)
    decoder = json.JSONDecoder()

    for script in soup.find_all("script"):
        body = script.string if script.string is not None else script.get_text()
        if not body:
            continue
        script_type = (script.get("type") or "").strip().lower()

        if script_type in JSON_SCRIPT_TYPES:
            try:
                yield json.loads(body)
            except ValueError:
                logger.debug("Skipping malformed %s script block", script_type)
            continue

        for m in STATE_ASSIGN_RE.finditer(body):
            try:
                value, _ = decoder.raw_decode(body, m.end())
            except ValueError:
                continue
            yield value


def _script_bodies(doc: Doc) -> Iterator[str]:
    for script in as_soup(doc).find_all("script"):
        if script.get("src"):
            continue
        body = script.string if script.string is not None else script.get_text()
        if body:
            yield body


def _grouping_rank(number_text: str) -> int:
    """0 = space-grouped thousands, 1 = comma-grouped, 2 = plain digits."""
    if " " in number_text or "\u00a0" in number_text:
        return 0
    if "," in number_text:
        return 1
    return 2


def extract_price_from_scripts(doc: Doc) -> Optional[float]:
    """
    Find price-like assignments in raw script bodies.

    Space-grouped values ("16 000") are the local convention and are rarely
    unrelated numbers, so they beat comma-grouped values, which beat plain
    digit runs. Within a rank the first occurrence wins.
    """
    best: Optional[Tuple[int, float]] = None
    for body in _script_bodies(doc):
        for m in SCRIPT_ASSIGN_RE.finditer(body):
            price = _positive(parse_price(m.group(1)))
            if price is None:
                continue
            rank = _grouping_rank(m.group(1))
            if best is None or rank < best[0]:
                best = (rank, price)
                if rank == 0:
                    return price
    return best[1] if best else None


def _integer_digits(number_text: str) -> int:
    return len(re.sub(r"\D", "", number_text.split(".")[0]))


def extract_price_from_html(html: str) -> Optional[float]:
    """
    Run the HTML pattern battery over the page.

    All matches of all patterns are candidates. The candidate with the most
    integer digits wins, so "R16 000" beats an unrelated "R16" earlier in the
    page; pattern order then position break ties.
    """
    if not html:
        return None
    text = URL_ATTR_RE.sub(" ", html)
    best = None
    for order, pattern in enumerate(HTML_PRICE_PATTERNS):
        for m in pattern.finditer(text):
            price = _positive(parse_price(m.group(1)))
            if price is None:
                continue
            rank = (-_integer_digits(m.group(1)), order, m.start())
            if best is None or rank < best[0]:
                best = (rank, price)
    return best[1] if best else None


def extract_price(html: str) -> Optional[float]:
    """Resolve a single positive price for a page or card, or None."""
    if not html:
        return None
    soup = as_soup(html)

    for blob in iter_json_blobs(soup):
        price = extract_price_from_json(blob)
        if price is not None:
            return price

    price = extract_price_from_scripts(soup)
    if price is not None:
        return price

    return extract_price_from_html(html)


# ---------- Classifiers ----------

def parse_rooms(text: Optional[str]) -> int:
    if not text:
        return 0
    m = re.search(r"(\d+)", str(text))
    return int(m.group(1)) if m else 0


def extract_room_counts(text: str) -> Tuple[int, int, int]:
    """Return (bedrooms, bathrooms, parking), zero where absent."""
    text = clean_text(text)
    counts = []
    for rx in (BEDROOMS_RE, BATHROOMS_RE, PARKING_RE):
        m = rx.search(text)
        counts.append(int(m.group(1)) if m else 0)
    return counts[0], counts[1], counts[2]


def normalize_property_type(text: Optional[str]) -> PropertyType:
    t = (text or "").lower().strip()
    if "townhouse" in t or "town house" in t:
        return PropertyType.TOWNHOUSE
    if "studio" in t or "bachelor" in t:
        return PropertyType.STUDIO
    if "apartment" in t or "flat" in t or "penthouse" in t:
        return PropertyType.APARTMENT
    if "house" in t or "cottage" in t:
        return PropertyType.HOUSE
    if re.search(r"\broom\b", t):
        return PropertyType.ROOM
    return PropertyType.OTHER


def is_pet_friendly(text: Optional[str]) -> bool:
    t = (text or "").lower()
    return "pet friendly" in t or "pet-friendly" in t or "pets allowed" in t or "pets ok" in t


def is_furnished(text: Optional[str]) -> bool:
    t = (text or "").lower()
    return "furnished" in t and "unfurnished" not in t


def normalize_price_frequency(text: Optional[str]) -> PriceFrequency:
    """Map "per week", "pw", "p/d" ... to a frequency; monthly when unknown."""
    if not text:
        return PriceFrequency.MONTHLY
    m = FREQUENCY_RE.search(text)
    if not m:
        return PriceFrequency.MONTHLY
    word = (m.group(1) or "").lower()
    if word:
        return {"week": PriceFrequency.WEEKLY, "day": PriceFrequency.DAILY}.get(word, PriceFrequency.MONTHLY)
    abbrev = m.group(2).lower().replace("/", "")
    return {"pw": PriceFrequency.WEEKLY, "pd": PriceFrequency.DAILY}.get(abbrev, PriceFrequency.MONTHLY)


# ---------- Media, size, money ----------

def extract_images(doc: Doc, base_url: str, limit: int = 20) -> List[str]:
    """Ordered, de-duplicated absolute image URLs, skipping logos and icons."""
    images: List[str] = []
    for img in as_soup(doc).find_all("img"):
        src = img.get("src") or img.get("data-src") or ""
        src = src.strip()
        if not src or src.startswith("data:"):
            continue
        low = src.lower()
        if any(w in low for w in IMAGE_SKIP_WORDS):
            continue
        url = urljoin(base_url, src)
        if url not in images:
            images.append(url)
        if len(images) >= limit:
            break
    return images


def extract_size_sqm(text: str) -> Optional[float]:
    m = SIZE_RE.search(clean_text(text))
    if not m:
        return None
    return _positive(to_float(m.group(1)))


def extract_deposit(html: str) -> Optional[float]:
    m = DEPOSIT_RE.search(html or "")
    if not m:
        return None
    return _positive(parse_price(m.group(1)))


def extract_coordinates(html: str) -> Tuple[Optional[float], Optional[float]]:
    lat = lon = None
    m1 = LATITUDE_RE.search(html or "")
    m2 = LONGITUDE_RE.search(html or "")
    if m1:
        lat = to_float(m1.group(1))
        if lat is not None and not -90 <= lat <= 90:
            lat = None
    if m2:
        lon = to_float(m2.group(1))
        if lon is not None and not -180 <= lon <= 180:
            lon = None
    return lat or None, lon or None


# ---------- Contact ----------

def _first_text_in_class(soup: BeautifulSoup, word: str) -> Optional[str]:
    """Text of the first element whose class mentions `word`."""
    rx = re.compile(word, re.I)
    for el in soup.find_all(class_=rx):
        for child in el.find_all(["h1", "h2", "h3", "h4", "h5", "span", "strong", "p", "a"]):
            txt = clean_text(child.get_text(" "))
            if txt:
                return txt
        txt = clean_text(el.get_text(" "))
        if txt:
            return txt
    return None


def _is_email(value: str) -> bool:
    return bool(value) and not value.lower().endswith(ASSET_SUFFIXES)


def extract_contact(doc: Doc) -> Dict[str, Optional[str]]:
    """Agent name, phone, e-mail and agency name when the page shows them."""
    soup = as_soup(doc)
    text = clean_text(soup.get_text(" "))

    agent_name = _first_text_in_class(soup, r"agent")
    if not agent_name:
        m = re.search(r"(?i:agent)\s*:\s*(%s)" % CAPITALISED, text)
        agent_name = m.group(1) if m else None

    agency_name = _first_text_in_class(soup, r"agency")
    if not agency_name:
        m = re.search(r"(?i:agency)\s*:\s*(%s)" % CAPITALISED, text)
        agency_name = m.group(1) if m else None

    phone = None
    tel = soup.find("a", href=re.compile(r"^tel:", re.I))
    if tel:
        phone = tel["href"].split(":", 1)[1].strip() or None
    if not phone:
        m = PHONE_RE.search(text)
        phone = re.sub(r"\s+", " ", m.group(1)) if m else None

    email = None
    mailto = soup.find("a", href=re.compile(r"^mailto:", re.I))
    if mailto:
        email = mailto["href"].split(":", 1)[1].split("?")[0].strip() or None
    if not email:
        for m in EMAIL_RE.finditer(text):
            if _is_email(m.group(1)):
                email = m.group(1)
                break

    return {
        "agent_name": agent_name,
        "agent_phone": phone,
        "agent_email": email,
        "agency_name": agency_name,
    }


# ---------- Location, text ----------

def city_from_url(url: str, default: str = "Cape Town") -> str:
    m = CITY_SLUG_RE.search(url or "")
    if m:
        return slug_to_title(m.group(1))
    return default


def suburb_from_address(address: Optional[str]) -> str:
    if not address:
        return "Unknown"
    parts = [p.strip() for p in address.split(",")]
    if len(parts) > 1:
        return parts[-2] or parts[0] or "Unknown"
    return "Unknown"


def extract_address(doc: Doc) -> Optional[str]:
    soup = as_soup(doc)
    el = soup.find("address") or soup.find(class_=re.compile(r"address", re.I))
    if el:
        return clean_text(el.get_text(" ")) or None
    return None


def extract_location(doc: Doc) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """
    Best-effort (suburb, city, province).

    Elements classed as location/address/suburb are tried before the whole
    page text, since page text carries plenty of unrelated "Word, Word" pairs.
    """
    soup = as_soup(doc)
    pools = [clean_text(el.get_text(" ")) for el in soup.find_all(class_=re.compile(r"location|address|suburb", re.I))]
    pools.append(clean_text(soup.get_text(" ")))
    for text in pools:
        m = LOCATION3_RE.search(text)
        if m:
            return m.group(1), m.group(2), m.group(3)
        m = LOCATION2_RE.search(text)
        if m:
            return m.group(1), m.group(2), None
    return None, None, None


def extract_postal_code(*texts: Optional[str]) -> Optional[str]:
    for text in texts:
        if not text:
            continue
        m = POSTAL_CODE_RE.search(text)
        if m:
            return m.group(1)
    return None


def extract_title(doc: Doc, detail: bool = True) -> str:
    """Heading text; detail pages use h1/title, cards use h2/h3/title links."""
    soup = as_soup(doc)
    if detail:
        candidates = [soup.find("h1"), soup.find("title")]
    else:
        candidates = [
            soup.find(["h2", "h3"]),
            soup.find("a", class_=re.compile(r"title", re.I)),
            soup.find("a"),
        ]
    for el in candidates:
        if el is not None:
            txt = clean_text(el.get_text(" "))
            if txt:
                return txt
    return ""


def extract_description(doc: Doc, min_paragraph: int = 50) -> Optional[str]:
    soup = as_soup(doc)
    rx = re.compile(r"description", re.I)
    for tag in ("div", "section", "p"):
        el = soup.find(tag, class_=rx)
        if el is not None:
            txt = clean_text(el.get_text(" "))
            if txt:
                return txt
    el = soup.find(attrs={"data-testid": rx})
    if el is not None:
        txt = clean_text(el.get_text(" "))
        if txt:
            return txt
    for p in soup.find_all("p"):
        txt = clean_text(p.get_text(" "))
        if len(txt) >= min_paragraph:
            return txt
    return None


def extract_summary(doc: Doc) -> Optional[str]:
    """Short card blurb: first paragraph or description-classed element."""
    soup = as_soup(doc)
    el = soup.find("p") or soup.find(class_=re.compile(r"description", re.I))
    if el is None:
        return None
    return clean_text(el.get_text(" ")) or None


def extract_external_id(url: str, pattern: re.Pattern = EXTERNAL_ID_RE) -> str:
    """
    Last numeric path segment, else the last path segment, else the URL.

    Portal URLs often carry a suburb or area id before the listing id
    (/to-rent/sea-point/cape-town/western-cape/11021/114383737).
    """
    path = urlparse(url or "").path
    ids = pattern.findall(path)
    if ids:
        return ids[-1]
    path = path.rstrip("/")
    return path.rsplit("/", 1)[-1] or url


PROPERTY_TYPE_RE = re.compile(r"\b(townhouse|apartment|penthouse|house|studio|bachelor|flat|room)\b", re.I)


def detect_property_type(text: str, fallback: str = "") -> PropertyType:
    """Classify by the first property-type word in `text`, else by `fallback`."""
    m = PROPERTY_TYPE_RE.search(clean_text(text))
    return normalize_property_type(m.group(1) if m else fallback)
