import asyncio

import scrapy
from scrapy.http import HtmlResponse
from twisted.python.failure import Failure

from conftest import make_response
from Rentwatch.items import BuildingItem
from Rentwatch.spiders.crawlers.cortland_spider import CortlandSpider
from Rentwatch.spiders.crawlers.crescent_spider import CrescentSpider
from Rentwatch.spiders.crawlers.greystar_spider import GreystarSpider
from Rentwatch.spiders.crawlers.maa_spider import DEALS_HUB_URL, MAASpider
from Rentwatch.spiders.extractors import build_special

NOVA_URL = "https://www.thenovasouthend.com"

GREYSTAR_FLOOR_PLANS_HTML = """
<html>
<head>
  <title>The Nova | Floor Plans</title>
  <script type="application/ld+json">{broken</script>
  <script type="application/ld+json">{"@type": "WebSite", "name": "Nova Website"}</script>
  <script type="application/ld+json">
    {
      "@context": "https://schema.org",
      "@type": "ApartmentComplex",
      "name": "The Nova South End",
      "telephone": "704-555-0100",
      "address": {
        "@type": "PostalAddress",
        "streetAddress": "2100 South Blvd",
        "addressLocality": "Charlotte",
        "addressRegion": "NC",
        "postalCode": "28203"
      },
      "geo": {"latitude": "35.21", "longitude": "-80.86"}
    }
  </script>
</head>
<body>
  <div class="popdown"><h3>Limited Time</h3><p>Get 6 weeks free when you move in by 3/31/27!</p></div>
  <ul class="amenity-list">
    <li>Resort-style pool</li>
    <li>Pet friendly dog park</li>
    <li>Garage parking</li>
  </ul>
  <div class="fp-card"><h3>A1</h3><p>1 Bed / 1 Bath</p><p>650 Sq Ft</p><p>$1,400</p></div>
  <div class="fp-card"><h3>B2</h3><p>2 Bed / 2 Bath</p><p>1,050 Sq Ft</p><p>$1,900 - $2,050</p></div>
</body>
</html>
"""


def test_greystar_identity_and_specials_from_floor_plans_page():
    spider = GreystarSpider()
    response = make_response(GREYSTAR_FLOOR_PLANS_HTML, url=f"{NOVA_URL}/floorplans/")

    building = spider.parse_property_page(response, NOVA_URL)

    assert building["provider"] == "greystar"
    assert building["name"] == "The Nova South End"
    assert building["address"] == "2100 South Blvd"
    assert building["city"] == "Charlotte"
    assert building["zip_code"] == "28203"
    assert building["lat"] == 35.21
    assert building["phone"] == "704-555-0100"
    assert building["listing_url"] == NOVA_URL
    assert building["amenities"] == ["pool", "pet-friendly", "parking"]
    assert building["pet_policy"] == "dogs-allowed"
    assert building["parking_type"] == "garage"

    assert len(building["specials"]) == 1
    special = building["specials"][0]
    assert special["title"] == "Limited Time"
    assert special["discount_type"] == "months_free"
    assert special["discount_value"] == 1.5


def test_greystar_floor_plans():
    spider = GreystarSpider()
    response = make_response(GREYSTAR_FLOOR_PLANS_HTML, url=f"{NOVA_URL}/floorplans/")
    building = spider.parse_property_page(response, NOVA_URL)

    building = spider.parse_floor_plans_page(response, building)

    assert building["floorplans_url"] == f"{NOVA_URL}/floorplans/"
    assert [plan["name"] for plan in building["floor_plans"]] == ["A1", "B2"]
    b2 = building["floor_plans"][1]
    assert b2["bedrooms"] == 2
    assert (b2["sqft_min"], b2["sqft_max"]) == (1050, 1050)
    assert (b2["rent_min"], b2["rent_max"]) == (1900, 2050)
    assert spider.result.errors == []


def test_missing_floor_plans_is_a_soft_error():
    spider = GreystarSpider()
    response = make_response("<html><head><title>The Nova | Home</title></head><body></body></html>", url=NOVA_URL)
    building = spider.parse_property_page(response, NOVA_URL)

    building = spider.parse_floor_plans_page(response, building)

    assert building["floor_plans"] == []
    assert building["name"] == "The Nova"
    assert spider.result.errors == [f"No floor plans found for {NOVA_URL}"]


def test_floor_plans_candidates_prefer_stored_url():
    spider = GreystarSpider()
    spider.catalog_rows[NOVA_URL] = {"name": "The Nova South End", "floorplans_url": f"{NOVA_URL}/floor-plans/"}

    assert spider.floor_plans_candidates(NOVA_URL) == [
        f"{NOVA_URL}/floor-plans/",
        f"{NOVA_URL}/floorplans/",
        f"{NOVA_URL}/floorplans",
        f"{NOVA_URL}/floor-plans",
    ]


def _failure(request, message="HTTP 404"):
    failure = Failure(Exception(message))
    failure.request = request
    return failure


def test_floor_plans_errback_tries_next_path():
    spider = GreystarSpider()
    request = spider.property_request(NOVA_URL)
    assert request.url == f"{NOVA_URL}/floorplans/"
    assert request.meta["playwright"] is True

    retried = asyncio.run(spider.handle_floor_plans_error(_failure(request)))

    assert len(retried) == 1
    assert retried[0].url == f"{NOVA_URL}/floor-plans/"
    assert retried[0].cb_kwargs["attempt"] == 1
    assert spider.result.errors == []


def test_floor_plans_errback_emits_partial_building():
    spider = GreystarSpider()
    building = BuildingItem(name="The Nova South End", listing_url=NOVA_URL, specials=[], floor_plans=[])
    request = spider.floor_plans_request(NOVA_URL, building, attempt=3)

    emitted = asyncio.run(spider.handle_floor_plans_error(_failure(request, "Timeout 30000ms exceeded")))

    assert emitted == [building]
    assert spider.result.buildings == [building]
    assert spider.result.errors == [
        f"Failed to load floor plans for {NOVA_URL}: Timeout 30000ms exceeded",
        f"No floor plans found for {NOVA_URL}",
    ]


def test_home_page_failure_falls_through_to_floor_plans():
    spider = CortlandSpider()
    url = "https://cortland.com/apartments/cortland-noda/"
    request = spider.property_request(url)

    follow_up = asyncio.run(spider.handle_error(_failure(request, "net::ERR_NAME_NOT_RESOLVED")))

    assert [r.url for r in follow_up] == ["https://cortland.com/apartments/cortland-noda/floorplans/"]
    assert follow_up[0].cb_kwargs["building"] is None
    assert spider.result.errors == [f"Failed to scrape {url}: net::ERR_NAME_NOT_RESOLVED"]


def test_discover_urls_reads_catalog(catalog):
    spider = CortlandSpider()
    spider.catalog = catalog
    assert spider.discover_urls() == CortlandSpider.seed_urls

    catalog.create_building(
        {
            "provider": "cortland",
            "name": "Cortland Noda",
            "listing_url": "https://cortland.com/apartments/cortland-noda/",
            "floorplans_url": "https://cortland.com/apartments/cortland-noda/floorplans/",
        }
    )
    assert spider.discover_urls() == ["https://cortland.com/apartments/cortland-noda/"]
    assert spider.catalog_rows["https://cortland.com/apartments/cortland-noda/"]["name"] == "Cortland Noda"


def test_cortland_embedded_json_and_popdown_fallback():
    spider = CortlandSpider()
    url = "https://cortland.com/apartments/cortland-noda/"
    response = make_response(
        """
        <html><body>
          <div class="popdown__container">
            <h3 class="popdown__title">Welcome Home</h3>
            <p>Ask about our current pricing</p>
          </div>
          <script>var data = {"floorplans": [{"name": "Noda A1", "beds": 1, "baths": 1, "rent": 1500}]};</script>
        </body></html>
        """,
        url=url,
    )

    building = spider.parse_property_page(response, url)
    building = spider.parse_floor_plans_page(response, building)

    assert building["name"] == "Cortland Noda"
    assert [special["title"] for special in building["specials"]] == ["Welcome Home"]
    assert building["specials"][0]["discount_type"] == "other"
    assert building["floor_plans"][0]["name"] == "Noda A1"
    assert building["floor_plans"][0]["rent_min"] == 1500


def test_cortland_fallback_name():
    spider = CortlandSpider()
    assert spider.fallback_name("https://cortland.com/apartments/cortland-noda/") == "Cortland Noda"
    assert spider.fallback_name("https://cortland.com/apartments/southpark/") == "Cortland Southpark"


MAA_HUB_HTML = """
<html><body>
  <div class="deal-card">
    <a href="/north-carolina/charlotte/maa-ballantyne/"><h3>MAA Ballantyne</h3></a>
    <p>Save $500 on select 2 bed homes</p>
  </div>
  <div class="deal-card">
    <h3>MAA Reserve</h3>
    <p>1 month free on 12 month leases</p>
  </div>
</body></html>
"""


def test_maa_deals_hub_grouping():
    spider = MAASpider()
    hub = spider.parse_deals_hub_page(make_response(MAA_HUB_HTML, url=DEALS_HUB_URL))

    assert set(hub) == {"https://www.maac.com/north-carolina/charlotte/maa-ballantyne", "maa reserve"}
    special = hub["https://www.maac.com/north-carolina/charlotte/maa-ballantyne"][0]
    assert special["discount_type"] == "reduced_rent"
    assert special["discount_value"] == 500.0
    assert special["target_floor_plan_names"] is None


def test_maa_hub_specials_merge_without_duplicates():
    spider = MAASpider()
    spider.hub_specials = spider.parse_deals_hub_page(make_response(MAA_HUB_HTML, url=DEALS_HUB_URL))

    own = build_special("Look & Lease: admin fee waived", None, title="Look & Lease")
    building = BuildingItem(
        name="MAA Ballantyne",
        listing_url="https://www.maac.com/north-carolina/charlotte/maa-ballantyne/",
        specials=[own],
    )
    spider.merge_hub_specials(building)
    spider.merge_hub_specials(building)

    assert [special["title"] for special in building["specials"]] == ["Look & Lease", "MAA Ballantyne"]

    by_name = BuildingItem(name="MAA Reserve", listing_url="https://www.maac.com/north-carolina/charlotte/maa-reserve/")
    spider.merge_hub_specials(by_name)
    assert by_name["specials"][0]["discount_type"] == "months_free"


CRESCENT_HTML = """
<html><head><title>NOVEL Davidson Apartments | Davidson, NC</title></head>
<body>
  <a href="/floor-plans/">Floor Plans</a>
  <h2>Get 6 weeks free on select homes this month!</h2>
  <h2>Short</h2>
  <div class="floor-plan"><span>S1</span> 540 SF $1,295</div>
  <div class="floor-plan"><span>B2</span> 2 Bed 1,100 SF $2,050</div>
</body></html>
"""


def test_crescent_banners_and_plan_codes():
    spider = CrescentSpider()
    url = "https://www.noveldavidson.com"
    spider.catalog_rows[url] = {"name": "NOVEL Davidson", "floorplans_url": None}
    response = make_response(CRESCENT_HTML, url=f"{url}/floor-plans/")

    building = spider.parse_property_page(response, url)
    building = spider.parse_floor_plans_page(response, building)

    assert building["name"] == "NOVEL Davidson"
    assert len(building["specials"]) == 1
    banner = building["specials"][0]
    assert banner["title"] == "Get 6 weeks free on select homes this month!"
    assert banner["target_floor_plan_names"] is None
    assert banner["discount_value"] == 1.5

    assert [(plan["name"], plan["bedrooms"]) for plan in building["floor_plans"]] == [("S1", 0), ("B2", 2)]


class FakePage:
    """Stands in for a playwright page handed over through response.meta."""

    def __init__(self, url, content):
        self.url = url
        self._content = content
        self.closed = False

    async def wait_for_selector(self, selector, timeout=None):
        return None

    async def content(self):
        return self._content

    async def close(self):
        self.closed = True


def rendered(url, html):
    page = FakePage(url, html)
    request = scrapy.Request(url, meta={"playwright_page": page})
    return HtmlResponse(url=url, body=b"", request=request), page


async def collect(generator):
    return [output async for output in generator]


class ExplodingExtractor:
    name = "exploding"

    def extract(self, response):
        raise RuntimeError("unexpected markup")


def test_floor_plans_parse_failure_keeps_partial_building(monkeypatch):
    spider = CortlandSpider()
    url = "https://cortland.com/apartments/cortland-noda/"
    special = build_special("Get 1 month free on select homes", None)
    building = BuildingItem(name="Cortland Noda", listing_url=url, specials=[special], floor_plans=[])
    monkeypatch.setattr(spider, "floor_plan_extractors", lambda response: [ExplodingExtractor()])
    response, page = rendered(f"{url}floorplans/", "<html><body></body></html>")

    emitted = asyncio.run(collect(spider.parse_floor_plans(response, url, building, 0)))

    assert emitted == [building]
    assert building["specials"] == [special]
    assert spider.result.buildings == [building]
    assert spider.result.errors == [f"Failed to parse {url}floorplans/: unexpected markup"]
    assert page.closed


def test_property_page_parse_failure_still_requests_floor_plans(monkeypatch):
    spider = CortlandSpider()
    url = "https://cortland.com/apartments/cortland-noda/"

    def broken_property_page(response, property_url):
        raise ValueError("no identity")

    monkeypatch.setattr(spider, "parse_property_page", broken_property_page)
    response, page = rendered(url, "<html><body></body></html>")

    [request] = asyncio.run(collect(spider.parse(response, url)))

    assert request.url == f"{url}floorplans/"
    assert request.cb_kwargs["building"] is None
    assert spider.result.errors == [f"Failed to parse {url}: no identity"]

    # The floor plans page cannot build identity either: nothing is emitted
    floor_plans_response, _ = rendered(request.url, "<html><body></body></html>")
    assert asyncio.run(collect(spider.parse_floor_plans(floor_plans_response, url, None, 0))) == []
    assert len(spider.result.errors) == 2
