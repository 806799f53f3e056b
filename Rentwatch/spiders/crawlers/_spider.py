from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, AsyncGenerator

import psycopg
import scrapy
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from scrapy.http import HtmlResponse
from scrapy_playwright.page import PageMethod
from urlmatch import urlmatch

from Rentwatch.catalog import MemoryCatalog, open_catalog
from Rentwatch.items import BuildingItem
from Rentwatch.matching import name_from_slug
from Rentwatch.results import ScrapeResult
from Rentwatch.spiders.extractors import (
    CardSelectorExtractor,
    TextPatternExtractor,
    first_non_empty,
)
from Rentwatch.spiders.utils import (
    dom_identity,
    get_schema_data,
    join_path,
    name_from_title,
    schema_identity,
)

if TYPE_CHECKING:
    from playwright.async_api import Page, Route
    from scrapy.crawler import Crawler
    from scrapy.http import Response
    from twisted.python.failure import Failure

    from Rentwatch.catalog import Catalog


logger = logging.getLogger(__name__)

DEFAULT_CITY = "Charlotte"
DEFAULT_STATE = "NC"


class ConfigurableSpider(scrapy.Spider):
    """
    A spider that can be initialized with a list of start URLs.
    """

    def __init__(self, start_urls: str | list | None = None, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        if start_urls:
            match start_urls:
                case str():
                    self.start_urls = [url.strip() for url in start_urls.split(",") if url.strip()]
                case list():
                    self.start_urls = start_urls
                case _:
                    raise ValueError("start_urls must be a string or list of strings")
            self.logger.info(f"Initialized with {len(self.start_urls)} URLs.")


class DatabaseSpider(scrapy.Spider):
    """
    A spider that reads its start URLs from the provider's catalog buildings,
    falling back to a static seed list.
    """

    provider: str  # To be defined in subclasses
    seed_urls: list[str] = []

    catalog: Catalog
    owns_catalog: bool = False

    @classmethod
    def from_crawler(cls, crawler: Crawler, *args, **kwargs) -> DatabaseSpider:
        catalog = kwargs.pop("catalog", None)
        owns_catalog = catalog is None
        if catalog is None:
            try:
                catalog = open_catalog(crawler.settings)
            except psycopg.Error as e:
                logger.error(f"PostgreSQL connection failed: {e}")
                catalog = MemoryCatalog()

        spider = super().from_crawler(crawler, *args, **kwargs)
        spider.catalog = catalog
        spider.owns_catalog = owns_catalog
        if not spider.start_urls:
            spider.start_urls = spider.discover_urls()
        return spider

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Catalog row (id, name, floorplans_url) per listing URL
        self.catalog_rows: dict[str, dict] = {}

    def discover_urls(self) -> list[str]:
        try:
            rows = self.catalog.listing_urls(self.provider)
        except psycopg.Error as e:
            self.logger.error(f"Could not read {self.provider} listing URLs: {e}")
            rows = []

        urls = []
        for row in rows:
            urls.append(row["listing_url"])
            self.catalog_rows[row["listing_url"]] = row

        if not urls:
            self.logger.info(f"No {self.provider} buildings in catalog, using {len(self.seed_urls)} seed URLs.")
            return list(self.seed_urls)

        self.logger.info(f"Found {len(urls)} {self.provider} properties to scrape.")
        return urls

    def closed(self, reason: str) -> None:
        if self.owns_catalog:
            self.catalog.close()


class ContentBlockerSpider(scrapy.Spider):
    """
    A spider that blocks heavy resources and trackers to speed up page loading.
    """

    blocked_resource_types: set[str] = set()
    blocked_domains: set[str] = set()

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.blocked_domains = set(self.blocked_domains)

        blocklists = kwargs.get("blocklists", [])
        if isinstance(blocklists, str):
            blocklists = blocklists.split(",")
        for blocklist in blocklists:
            try:
                with open(blocklist, "r") as f:
                    for line in f:
                        domain = line.strip()
                        if domain and not domain.startswith("#"):
                            self.blocked_domains.add(domain)
            except OSError as e:
                self.logger.error(f"Error reading domain file {blocklist}: {e}")

    async def route_handler(self, route: Route) -> None:
        # Block fonts, images, and media to speed up loading
        if route.request.resource_type in self.blocked_resource_types:
            await route.abort()

        # Block known ad/tracker domains
        elif any(urlmatch(pattern, route.request.url) for pattern in self.blocked_domains):
            await route.abort()

        else:
            await route.continue_()


class ProviderSpider(DatabaseSpider, ContentBlockerSpider, ConfigurableSpider):
    """
    Base class for brand spiders.

    Each property is scraped as a request chain: property page (identity and
    specials) then floor plans page. Failures are recorded in `result.errors`
    and never stop the crawl.
    """

    start_urls: list[str] = []

    blocked_resource_types = set(["font", "image", "media"])
    blocked_domains = set(
        [
            "*://*.google-analytics.com/*",
            "*://*.googletagmanager.com/*",
            "*://*.doubleclick.net/*",
            "*://*.facebook.net/*",
        ]
    )

    # Identity and specials come from the home page unless False, in which
    # case the floor plans page provides everything
    scrape_home_page: bool = True
    floor_plans_paths: list[str] = ["/floorplans/"]

    popup_selector: str | None = None
    popup_timeout: int = 5000
    floor_plans_wait_selector: str | None = None

    title_noise: list[str] = []

    card_selectors: list[str] = [".floorplan-card", ".floor-plan-card", "[class*=floorplan]"]
    special_extractors: list = []

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.result = ScrapeResult()

    # Extraction strategies

    def floor_plan_extractors(self, response: Response) -> list:
        return [CardSelectorExtractor(self.card_selectors), TextPatternExtractor()]

    def parse_specials(self, response: Response) -> list:
        return first_non_empty(self.special_extractors, response)

    # Requests

    def playwright_meta(self) -> dict:
        return {
            "playwright": True,
            "playwright_include_page": True,
            "playwright_page_methods": [
                # Block unnecessary resources
                PageMethod("route", url="**/*", handler=self.route_handler),
                # Ensure the main content is loaded
                PageMethod("wait_for_load_state", "networkidle"),
            ],
        }

    async def start(self):
        for url in self.start_urls:
            yield self.property_request(url)

    def property_request(self, property_url: str) -> scrapy.Request:
        if not self.scrape_home_page:
            return self.floor_plans_request(property_url, building=None)

        return scrapy.Request(
            url=property_url,
            callback=self.parse,
            errback=self.handle_error,
            meta=self.playwright_meta(),
            cb_kwargs={"property_url": property_url},
            dont_filter=True,
        )

    def floor_plans_candidates(self, property_url: str) -> list[str]:
        candidates = []
        stored = self.catalog_rows.get(property_url, {}).get("floorplans_url")
        if stored:
            candidates.append(stored)
        candidates.extend(join_path(property_url, path) for path in self.floor_plans_paths)
        return list(dict.fromkeys(candidates))

    def floor_plans_request(
        self, property_url: str, building: BuildingItem | None, attempt: int = 0
    ) -> scrapy.Request:
        url = self.floor_plans_candidates(property_url)[attempt]
        return scrapy.Request(
            url=url,
            callback=self.parse_floor_plans,
            errback=self.handle_floor_plans_error,
            meta=self.playwright_meta(),
            cb_kwargs={"property_url": property_url, "building": building, "attempt": attempt},
            dont_filter=True,
        )

    async def settle_page(self, page: Page, response: Response, wait_selector: str | None) -> HtmlResponse:
        """
        Wait (bounded) for dynamically injected content, then snapshot the DOM
        and release the page.
        """
        try:
            if wait_selector:
                try:
                    await page.wait_for_selector(wait_selector, timeout=self.popup_timeout)
                except PlaywrightTimeoutError:
                    self.logger.debug(f"No '{wait_selector}' elements after {self.popup_timeout}ms on {page.url}")
            content = await page.content()
        finally:
            # Make sure to close the page to avoid hangs
            await page.close()

        return HtmlResponse(url=response.url, body=content, encoding="utf-8", request=response.request)

    # Callbacks

    async def parse(self, response: Response, property_url: str) -> AsyncGenerator[scrapy.Request, None]:
        page = response.meta["playwright_page"]
        building = None
        try:
            response = await self.settle_page(page, response, self.popup_selector)
            building = self.parse_property_page(response, property_url)
            self.logger.info(f"Found {len(building['specials'])} specials on {property_url}")
        except Exception as e:
            self.record_error(f"Failed to parse {property_url}: {e}")

        # Identity can still come from the floor plans page
        yield self.floor_plans_request(property_url, building)

    async def parse_floor_plans(
        self,
        response: Response,
        property_url: str,
        building: BuildingItem | None,
        attempt: int,
    ) -> AsyncGenerator[BuildingItem, None]:
        page = response.meta["playwright_page"]
        wait_selector = self.floor_plans_wait_selector if building is not None else self.popup_selector
        try:
            response = await self.settle_page(page, response, wait_selector)
            if building is None:
                building = self.parse_property_page(response, property_url)
            building = self.parse_floor_plans_page(response, building)
        except Exception as e:
            self.record_error(f"Failed to parse {response.url}: {e}")
            if building is None:
                return
        yield self.finish(building)

    def parse_property_page(self, response: Response, property_url: str) -> BuildingItem:
        """
        Build the identity part of a building: JSON-LD first, DOM fallbacks for
        whatever it leaves out.
        """
        identity = {
            **dom_identity(response),
            **schema_identity(get_schema_data(response)),
        }

        name = identity.get("name") or name_from_title(response, self.title_noise) or self.fallback_name(property_url)
        amenities = identity.get("amenities", [])
        photos = identity.get("photos", [])

        return BuildingItem(
            scraped_at=datetime.now(timezone.utc),
            provider=self.provider,
            name=name,
            listing_url=property_url,
            floorplans_url=None,
            website=property_url,
            address=identity.get("address") or "",
            city=identity.get("city") or DEFAULT_CITY,
            state=identity.get("state") or DEFAULT_STATE,
            zip_code=identity.get("zip_code"),
            lat=identity.get("lat"),
            lng=identity.get("lng"),
            phone=identity.get("phone"),
            primary_photo_url=identity.get("primary_photo_url") or (photos[0] if photos else None),
            photos=photos,
            amenities=amenities,
            pet_policy="dogs-allowed" if "pet-friendly" in amenities else None,
            parking_type="garage" if "parking" in amenities else None,
            year_built=None,
            total_units=None,
            floor_plans=[],
            specials=self.parse_specials(response),
        )

    def parse_floor_plans_page(self, response: Response, building: BuildingItem) -> BuildingItem:
        floor_plans = first_non_empty(self.floor_plan_extractors(response), response)
        building["floor_plans"] = floor_plans
        building["floorplans_url"] = response.url

        if not floor_plans:
            self.record_error(f"No floor plans found for {building['listing_url']}")
        else:
            self.logger.info(
                f"Found {len(floor_plans)} floor plans, {len(building['specials'])} specials for {building['name']}"
            )
        return building

    def fallback_name(self, property_url: str) -> str:
        row = self.catalog_rows.get(property_url)
        if row and row.get("name"):
            return row["name"]
        slug = [part for part in property_url.rstrip("/").split("/") if part][-1]
        slug = slug.removeprefix("www.").split(".")[0]
        return name_from_slug(slug) or "Unknown"

    def finish(self, building: BuildingItem) -> BuildingItem:
        self.result.buildings.append(building)
        return building

    def record_error(self, message: str) -> None:
        self.logger.warning(message)
        self.result.errors.append(message)

    # Errbacks

    async def _close_page(self, failure: Failure) -> None:
        page = failure.request.meta.get("playwright_page")  # type: ignore[attr-defined]
        if page is None:
            return
        try:
            await page.close()
        except Exception as e:
            self.logger.error(f"Error closing Playwright page: {e}")

    async def handle_error(self, failure: Failure) -> list:
        await self._close_page(failure)
        property_url = failure.request.cb_kwargs["property_url"]  # type: ignore[attr-defined]
        self.record_error(f"Failed to scrape {property_url}: {failure.getErrorMessage()}")

        # Identity can still come from the floor plans page
        return [self.floor_plans_request(property_url, building=None)]

    async def handle_floor_plans_error(self, failure: Failure) -> list:
        await self._close_page(failure)
        kwargs = failure.request.cb_kwargs  # type: ignore[attr-defined]
        property_url = kwargs["property_url"]
        attempt = kwargs["attempt"] + 1

        if attempt < len(self.floor_plans_candidates(property_url)):
            self.logger.debug(f"Floor plans at {failure.request.url} failed, trying next path")  # type: ignore[attr-defined]
            return [self.floor_plans_request(property_url, kwargs["building"], attempt)]

        self.record_error(f"Failed to load floor plans for {property_url}: {failure.getErrorMessage()}")
        building = kwargs["building"]
        if building is None:
            return []
        self.record_error(f"No floor plans found for {property_url}")
        return [self.finish(building)]

    def closed(self, reason: str) -> None:
        self.logger.info(
            f"{self.provider}: scraped {len(self.result.buildings)} buildings, {len(self.result.errors)} errors ({reason})"
        )
        super().closed(reason)
