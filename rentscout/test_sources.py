"""
Tests for the source scrapers, driven through a mocked HTTP transport.
"""
import asyncio
from dataclasses import replace

import httpx
import pytest

from rentscout.base import AuthRequiredError, FetchError
from rentscout.facebook import FACEBOOK_CONFIG, FacebookScraper, find_listings_in_json
from rentscout.models import PriceFrequency, PropertyType, Source
from rentscout.private_property import PRIVATE_PROPERTY_CONFIG, PrivatePropertyScraper
from rentscout.property24 import PROPERTY24_CONFIG, Property24Scraper

P24 = "https://www.property24.com"
PP = "https://www.privateproperty.co.za"
FB = "https://www.facebook.com"

EMPTY_PAGE = "<html><body><p>No results found</p></body></html>"

LISTING_PAGE = """
<html><body>
<div class="p24_listing">
  <a href="/to-rent/sea-point/cape-town/western-cape/11021/114383737"><h3>2 Bedroom Apartment in Sea Point</h3></a>
  <span class="p24_price">R 12,500</span>
  <span>2 Bedrooms</span> <span>1 Bathroom</span>
  <span class="p24_location">Sea Point, Cape Town</span>
  <img src="https://images.prop24.com/a.jpg">
  <img src="https://images.prop24.com/b.jpg">
</div>
<div class="p24_listing">
  <a href="/to-rent/green-point/cape-town/western-cape/11017/114399999"><h3>Studio in Green Point</h3></a>
  <span class="p24_price">POA</span>
</div>
</body></html>
"""

LINKS_PAGE = """
<html><body>
<a href="/to-rent/cape-town/p2">Next</a>
<a href="/to-rent/sea-point/cape-town/western-cape/11021/111">First</a>
<a href="/to-rent/sea-point/cape-town/western-cape/11021/222">Second</a>
<a href="/to-rent/sea-point/cape-town/western-cape/11021/111">First again</a>
</body></html>
"""

DETAIL_PAGE = """
<html><head><title>Sea Point flat</title></head><body>
<h1>Furnished 1 Bedroom Apartment</h1>
<div class="listing-price">R 9 500 per month</div>
<span class="location">Sea Point, Cape Town</span>
<address>5 Beach Road, Sea Point, Cape Town</address>
<div class="description">Lovely furnished apartment close to the promenade. Pet friendly building with secure parking.</div>
<ul><li>1 Bedroom</li><li>1 Bathroom</li><li>1 Parking</li><li>Floor size: 55 m²</li><li>Deposit: R 9 500</li></ul>
<div class="agent-details"><h4>Sam Jones</h4><a href="tel:0215551234">Call</a></div>
<img src="/photos/1.jpg"><img src="/photos/2.jpg">
</body></html>
"""


def fast(config, **changes):
    """Same source config with near-zero request delay."""
    changes.setdefault("rate_limit", 1000)
    return replace(config, **changes)


def mock_client(routes, seen=None, default=(404, "not found")):
    """AsyncClient answering from a {url: (status, body)} map, `default` otherwise."""
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if seen is not None:
            seen.append(url)
        status, body = routes.get(url, default)
        return httpx.Response(status, text=body)
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def run(coro):
    return asyncio.run(coro)


# ---------- Fetch policy ----------

def test_rate_limit_delay():
    assert Property24Scraper(fast(PROPERTY24_CONFIG, rate_limit=2)).get_rate_limit_delay() == 500
    assert Property24Scraper(fast(PROPERTY24_CONFIG, rate_limit=1)).get_rate_limit_delay() == 1000
    assert Property24Scraper(fast(PROPERTY24_CONFIG, rate_limit=3)).get_rate_limit_delay() == 334


def test_strict_source_doubles_delay():
    assert Property24Scraper().request_delay() == 0.5
    assert FacebookScraper(cookies="").request_delay() == 2.0


def test_user_agents_rotate_per_instance():
    agents = ["ua-1", "ua-2", "ua-3"]
    a = Property24Scraper(fast(PROPERTY24_CONFIG, user_agents=agents))
    b = Property24Scraper(fast(PROPERTY24_CONFIG, user_agents=agents))
    assert [a.get_next_user_agent() for _ in range(4)] == ["ua-1", "ua-2", "ua-3", "ua-1"]
    # Independent counter
    assert b.get_next_user_agent() == "ua-1"


def test_facebook_headers_carry_cookies():
    scraper = FacebookScraper(cookies="c_user=1; xs=abc")
    headers = scraper.build_headers()
    assert headers["Cookie"] == "c_user=1; xs=abc"
    assert headers["Sec-Fetch-Site"] == "none"
    assert scraper.build_headers(referer=FACEBOOK_CONFIG.search_url)["Sec-Fetch-Site"] == "same-origin"
    assert "Cookie" not in FacebookScraper(cookies="").build_headers()


def test_fetch_maps_statuses_to_errors():
    async def go():
        client = mock_client({
            f"{P24}/ok": (200, "fine"),
            f"{P24}/blocked": (403, ""),
            f"{P24}/broken": (500, ""),
        })
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        assert await scraper.fetch(f"{P24}/ok") == "fine"
        errors = {}
        for path in ("blocked", "broken", "missing"):
            try:
                await scraper.fetch(f"{P24}/{path}")
            except FetchError as e:
                errors[path] = e
        await client.aclose()
        return errors

    errors = run(go())
    assert isinstance(errors["blocked"], AuthRequiredError)
    assert str(errors["broken"]) == "HTTP 500: Internal Server Error"
    assert errors["missing"].not_found
    assert not errors["broken"].not_found


def test_network_error_becomes_fetch_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def go():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        try:
            await scraper.fetch(f"{P24}/x")
        except FetchError as e:
            return e
        finally:
            await client.aclose()

    err = run(go())
    assert err.status is None
    assert "connection refused" in str(err)


# ---------- Listing and detail pages ----------

def test_listing_page_keeps_only_priced_cards():
    """Two structured cards, one without a price: exactly one record."""
    async def go():
        url = f"{P24}/to-rent/cape-town"
        client = mock_client({url: (200, LISTING_PAGE)})
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        records = await scraper.scrape_listing_page(url)
        await client.aclose()
        return records

    records = run(go())
    assert len(records) == 1
    r = records[0]
    assert r.price == 12500
    assert r.external_id == "114383737"
    assert r.source == Source.PROPERTY24
    assert r.source_url == f"{P24}/to-rent/sea-point/cape-town/western-cape/11021/114383737"
    assert r.title == "2 Bedroom Apartment in Sea Point"
    assert r.images == ["https://images.prop24.com/a.jpg", "https://images.prop24.com/b.jpg"]
    assert r.suburb == "Sea Point"
    assert r.city == "Cape Town"
    assert r.province == "Western Cape"
    assert r.property_type == PropertyType.APARTMENT
    assert (r.bedrooms, r.bathrooms) == (2, 1)


@pytest.mark.parametrize("prices", [
    ["R 5 000", "POA", "R 0", "R 12,500", "", "R 7 250 pm"],
    ["Price on request", "R0.00", "Contact agent"],
    ["R 8 000", "R 9,999", "R 11 000.00"],
])
def test_cards_without_positive_price_never_become_records(prices):
    cards = "".join(
        f'<div class="p24_listing"><a href="/to-rent/sea-point/cape-town/western-cape/11021/{i + 1}">'
        f"<h3>Flat number {i + 1}</h3></a><span>{price}</span></div>"
        for i, price in enumerate(prices)
    )
    expected = [i + 1 for i, p in enumerate(prices) if any(ch in "123456789" for ch in p)]

    async def go():
        url = f"{P24}/to-rent/cape-town"
        client = mock_client({url: (200, f"<html><body>{cards}</body></html>")})
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        records = await scraper.scrape_listing_page(url)
        await client.aclose()
        return records

    records = run(go())
    assert [int(r.external_id) for r in records] == expected
    assert all(r.price > 0 for r in records)


def test_detail_page_fields():
    url = f"{P24}/to-rent/sea-point/cape-town/western-cape/11021/111"
    r = Property24Scraper().parse_detail_page(DETAIL_PAGE, url)
    assert r.external_id == "111"
    assert r.title == "Furnished 1 Bedroom Apartment"
    assert r.price == 9500
    assert r.price_frequency == PriceFrequency.MONTHLY
    assert r.deposit == 9500
    assert (r.bedrooms, r.bathrooms, r.parking) == (1, 1, 1)
    assert r.size_sqm == 55
    assert r.furnished and r.pet_friendly
    assert r.suburb == "Sea Point"
    assert r.city == "Cape Town"
    assert r.province == "Western Cape"
    assert r.address == "5 Beach Road, Sea Point, Cape Town"
    assert r.description.startswith("Lovely furnished apartment")
    assert r.agent_name == "Sam Jones"
    assert r.agent_phone == "0215551234"
    assert r.images == [f"{P24}/photos/1.jpg", f"{P24}/photos/2.jpg"]


def test_detail_page_without_price_is_dropped():
    html = "<html><body><h1>Lovely flat</h1><p>Price on application</p></body></html>"
    assert Property24Scraper().parse_detail_page(html, f"{P24}/to-rent/x/1") is None


def test_falls_back_to_detail_links_in_discovery_order():
    async def go():
        seen = []
        client = mock_client({
            f"{P24}/to-rent/cape-town": (200, LINKS_PAGE),
            f"{P24}/to-rent/sea-point/cape-town/western-cape/11021/111": (200, DETAIL_PAGE),
            f"{P24}/to-rent/sea-point/cape-town/western-cape/11021/222": (404, ""),
            f"{P24}/to-rent/cape-town/p2": (200, EMPTY_PAGE),
        }, seen)
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result, seen

    result, seen = run(go())
    assert seen == [
        f"{P24}/to-rent/cape-town",
        f"{P24}/to-rent/sea-point/cape-town/western-cape/11021/111",
        f"{P24}/to-rent/sea-point/cape-town/western-cape/11021/222",
        f"{P24}/to-rent/cape-town/p2",
    ]
    assert result.success
    assert result.pages_scraped == 1
    assert [p.external_id for p in result.properties] == ["111"]
    assert len(result.errors) == 1
    assert "/222" in result.errors[0] and "HTTP 404" in result.errors[0]


# ---------- Pagination and failure semantics ----------

def test_pagination_stops_at_first_empty_page():
    async def go():
        seen = []
        client = mock_client({
            f"{P24}/to-rent/cape-town": (200, LISTING_PAGE),
            f"{P24}/to-rent/cape-town/p2": (200, LISTING_PAGE),
            f"{P24}/to-rent/cape-town/p3": (200, EMPTY_PAGE),
            f"{P24}/to-rent/cape-town/p4": (200, LISTING_PAGE),
        }, seen)
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result, seen

    result, seen = run(go())
    assert result.pages_scraped == 2
    assert len(result.properties) == 2
    assert result.errors == []
    assert f"{P24}/to-rent/cape-town/p4" not in seen


def test_page_one_not_found_aborts():
    async def go():
        seen = []
        client = mock_client({}, seen)
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        result = await scraper.scrape("atlantis")
        await client.aclose()
        return result, seen

    result, seen = run(go())
    assert not result.success
    assert result.errors == ["Page 1: HTTP 404: Not Found"]
    assert seen == [f"{P24}/to-rent/atlantis"]


def test_not_found_after_page_one_ends_quietly():
    async def go():
        client = mock_client({f"{P24}/to-rent/cape-town": (200, LISTING_PAGE)})
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result

    result = run(go())
    assert result.success
    assert result.errors == []
    assert result.pages_scraped == 1


def test_server_error_on_a_page_is_recorded_and_skipped():
    async def go():
        client = mock_client({
            f"{P24}/to-rent/cape-town": (500, ""),
            f"{P24}/to-rent/cape-town/p2": (200, LISTING_PAGE),
            f"{P24}/to-rent/cape-town/p3": (200, EMPTY_PAGE),
        })
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result

    result = run(go())
    assert result.success
    assert result.errors == ["Page 1: HTTP 500: Internal Server Error"]
    assert len(result.properties) == 1


def test_max_pages_bound():
    async def go():
        seen = []
        routes = {f"{P24}/to-rent/cape-town": (200, LISTING_PAGE)}
        routes.update({f"{P24}/to-rent/cape-town/p{n}": (200, LISTING_PAGE) for n in range(2, 11)})
        client = mock_client(routes, seen)
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client, max_pages=3)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result, seen

    result, seen = run(go())
    assert result.pages_scraped == 3
    assert len(seen) == 3


def test_suburb_in_search_path():
    async def go():
        seen = []
        client = mock_client({}, seen)
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        await scraper.scrape("cape-town", "sea-point")
        await client.aclose()
        return seen

    assert run(go()) == [f"{P24}/to-rent/cape-town/sea-point"]


def test_strict_source_stops_on_auth_failure():
    async def go():
        seen = []
        client = mock_client({}, seen, default=(403, ""))
        scraper = FacebookScraper(fast(FACEBOOK_CONFIG), cookies="", client=client)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result, seen

    result, seen = run(go())
    assert not result.success
    assert len(seen) == 1
    assert result.errors == [
        "Page 1: HTTP 403: Forbidden",
        "Facebook authentication required. Please provide session cookies.",
    ]


def test_lenient_source_keeps_paginating_after_auth_failure():
    async def go():
        client = mock_client({
            f"{P24}/to-rent/cape-town": (403, ""),
            f"{P24}/to-rent/cape-town/p2": (200, LISTING_PAGE),
            f"{P24}/to-rent/cape-town/p3": (200, EMPTY_PAGE),
        })
        scraper = Property24Scraper(fast(PROPERTY24_CONFIG), client=client)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result

    result = run(go())
    assert result.success
    assert result.errors == ["Page 1: HTTP 403: Forbidden"]
    assert len(result.properties) == 1


# ---------- Private Property ----------

PP_CARD_PAGE = """
<html><body>
<p>Rental property results</p>
<article class="listing">
  <a href="/to-rent/western-cape/cape-town/observatory/T123456"><h2>Cosy cottage</h2></a>
  <p>Observatory, Cape Town</p>
  <span class="price">R 7 200 pm</span>
  <img src="/img/1.jpg">
</article>
<!-- %s -->
</body></html>
""" % ("x" * 10000)


def test_private_property_probes_url_patterns():
    async def go():
        seen = []
        province_url = f"{PP}/to-rent/western-cape/cape-town"
        client = mock_client({
            f"{PP}/to-rent/cape-town/": (200, "<html>tiny</html>"),
            province_url: (200, PP_CARD_PAGE),
            f"{province_url}?page=2": (200, EMPTY_PAGE),
        }, seen)
        scraper = PrivatePropertyScraper(fast(PRIVATE_PROPERTY_CONFIG), client=client)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result, seen

    result, seen = run(go())
    assert seen[:3] == [
        f"{PP}/to-rent/cape-town",
        f"{PP}/to-rent/cape-town/",
        f"{PP}/to-rent/western-cape/cape-town",
    ]
    assert seen[-1] == f"{PP}/to-rent/western-cape/cape-town?page=2"
    # the probed page 1 is parsed, not fetched again
    assert seen.count(f"{PP}/to-rent/western-cape/cape-town") == 1
    assert len(seen) == 4
    assert result.success
    assert result.errors == []
    assert len(result.properties) == 1
    r = result.properties[0]
    assert r.source == Source.PRIVATE_PROPERTY
    assert r.external_id == "T123456"
    assert r.price == 7200
    assert r.suburb == "Observatory"
    assert r.images == [f"{PP}/img/1.jpg"]


def test_private_property_without_working_url_fails():
    async def go():
        client = mock_client({})
        scraper = PrivatePropertyScraper(fast(PRIVATE_PROPERTY_CONFIG), client=client)
        result = await scraper.scrape("durban")
        await client.aclose()
        return result

    result = run(go())
    assert not result.success
    assert result.errors == ["Could not find valid URL pattern for city: durban"]
    assert result.properties == []


def test_private_property_page_urls():
    scraper = PrivatePropertyScraper()
    assert scraper.page_url(f"{PP}/to-rent/cape-town", 1) == f"{PP}/to-rent/cape-town"
    assert scraper.page_url(f"{PP}/to-rent/cape-town", 2) == f"{PP}/to-rent/cape-town?page=2"
    assert scraper.page_url(f"{PP}/to-rent?location=cape-town", 3) == f"{PP}/to-rent?location=cape-town&page=3"


# ---------- Facebook ----------

FB_SEARCH_PAGE = """
<html><body>
<script type="application/json">
{"require": [{"data": {"marketplace_search": {"feed_units": {"edges": [
  {"node": {"listing": {"id": "111", "marketplace_listing_title": "2 bed apartment in Sea Point",
    "listing_price": {"formatted_amount": "R9,000", "amount": "9000.00"},
    "location": {"city": "Cape Town", "suburb": "Sea Point"},
    "images": [{"uri": "https://scontent.example.com/1.jpg"}]}}},
  {"node": {"listing": {"id": "111", "title": "duplicate", "price": 9000}}},
  {"node": {"listing": {"id": "222", "title": "Room", "price": 0}}},
  {"node": {"listing": {"title": "No id", "price": 5000}}}
]}}}}]}
</script>
</body></html>
"""


def fb_route(request: httpx.Request, pages) -> httpx.Response:
    page = request.url.params.get("page", "1")
    if request.url.path == "/marketplace/search":
        return httpx.Response(200, text=pages.get(page, EMPTY_PAGE))
    return httpx.Response(200, text=pages.get(request.url.path, EMPTY_PAGE))


def test_find_listings_in_json_is_depth_bounded():
    nested = {"listing": {"id": "1"}}
    for _ in range(12):
        nested = {"wrap": nested}
    assert find_listings_in_json(nested) == []
    assert find_listings_in_json({"listings": [{"id": "1"}, "junk"]}) == [{"id": "1"}]


def test_facebook_listings_from_embedded_json():
    async def go():
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return fb_route(request, {"1": FB_SEARCH_PAGE})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        scraper = FacebookScraper(fast(FACEBOOK_CONFIG), cookies="", client=client)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result, seen

    result, seen = run(go())
    first = httpx.URL(seen[0])
    assert first.path == "/marketplace/search"
    assert dict(first.params) == {"query": "cape town", "category": "propertyrentals", "vertical": "property"}
    assert seen[1].endswith("&page=2")
    assert len(result.properties) == 1
    r = result.properties[0]
    assert r.external_id == "111"
    assert r.source == Source.FACEBOOK
    assert r.source_url == f"{FB}/marketplace/item/111/"
    assert r.price == 9000
    assert r.title == "2 bed apartment in Sea Point"
    assert r.property_type == PropertyType.APARTMENT
    assert (r.suburb, r.city, r.province) == ("Sea Point", "Cape Town", "Unknown")
    assert r.images == ["https://scontent.example.com/1.jpg"]


def test_facebook_falls_back_to_item_links():
    links_page = '<html><body><a href="/marketplace/item/333/?ref=search">Room</a></body></html>'
    detail = "<html><body><h1>Room in shared house</h1><p>R 4 500 per month</p></body></html>"

    async def go():
        def handler(request):
            return fb_route(request, {"1": links_page, "/marketplace/item/333/": detail})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        scraper = FacebookScraper(fast(FACEBOOK_CONFIG), cookies="", client=client)
        result = await scraper.scrape("cape-town")
        await client.aclose()
        return result

    result = run(go())
    assert len(result.properties) == 1
    r = result.properties[0]
    assert r.external_id == "333"
    assert r.source_url == f"{FB}/marketplace/item/333/"
    assert r.price == 4500
    assert r.property_type == PropertyType.ROOM
    assert (r.suburb, r.city, r.province) == ("Unknown", "Unknown", "Unknown")


FB_ITEM_WITH_RELATED = """
<html><body>
<script type="application/json">
{"related": [{"listing": {"id": "999", "title": "Other flat", "price": 3000}}],
 "target": {"listing": {"id": "123", "title": "Garden cottage in Rondebosch", "price": 9000,
   "location": {"suburb": "Rondebosch", "city": "Cape Town"}}}}
</script>
</body></html>
"""


def test_facebook_detail_takes_the_listing_with_the_item_id():
    r = FacebookScraper(cookies="").parse_detail_page(FB_ITEM_WITH_RELATED, f"{FB}/marketplace/item/123/")
    assert r.external_id == "123"
    assert r.title == "Garden cottage in Rondebosch"
    assert r.price == 9000
    assert r.suburb == "Rondebosch"


def test_facebook_detail_never_borrows_another_items_listing():
    html = """
    <script type="application/json">
    {"related": [{"listing": {"id": "999", "title": "Other flat", "price": 3000}}],
     "page": {"listing": {"title": "Room near UCT", "price": 4200}}}
    </script>
    """
    r = FacebookScraper(cookies="").parse_detail_page(html, f"{FB}/marketplace/item/123/")
    assert (r.external_id, r.title, r.price) == ("123", "Room near UCT", 4200)

    only_related = '<script type="application/json">{"related": [{"listing": {"id": "999", "price": 3000}}]}</script>'
    assert FacebookScraper(cookies="").parse_detail_page(only_related, f"{FB}/marketplace/item/123/") is None
