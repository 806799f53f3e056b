from __future__ import annotations

import re
import scrapy

from Rentwatch.items import PropertyItem
from Rentwatch.parsing import clean_text
from Rentwatch.spiders.crawlers._spider import DEFAULT_CITY, DEFAULT_STATE
from Rentwatch.spiders.indexers import IndexerSpider, load_community_config
from Rentwatch.spiders.utils import classify_platform, floor_plans_path, join_path

from typing import TYPE_CHECKING, Generator

if TYPE_CHECKING:
    from scrapy.crawler import Crawler
    from scrapy.http import Response
    from twisted.python.failure import Failure


MARKET_URL = "https://www.crescentcommunities.com/about-us/markets/charlotte-nc/"
COMMUNITY_PREFIX = "NOVEL "
STATUS_WINDOW = 4
COMMUNITY_LINK = re.compile(r"novel([a-z]+)\.com", re.IGNORECASE)


def slugify(name: str) -> str:
    """"NOVEL University Place" -> "novel-university-place"."""
    slug = re.sub(r"^novel\s+", "novel-", name.lower())
    slug = re.sub(r"\s+", "-", slug)
    return re.sub(r"[^a-z0-9-]", "", slug)


def name_key(name: str) -> str:
    """Key used by community domains: "NOVEL Mallard Creek" -> "mallardcreek"."""
    return re.sub(r"\s+", "", re.sub(r"^novel\s+", "", name, flags=re.IGNORECASE)).lower()


def guessed_urls(name: str) -> list[str]:
    key = name_key(name)
    return [f"https://www.novel{key}.com", f"https://novel{key}.com"]


def community_name(slug: str) -> str:
    words = slug.removeprefix("novel-").split("-")
    return COMMUNITY_PREFIX + " ".join(word.capitalize() for word in words if word)


def line_status(line: str) -> str | None:
    lowered = line.strip().lower()
    if lowered == "leasing":
        return "leasing"
    if lowered == "legacy":
        return "legacy"
    if "coming soon" in lowered:
        return "coming_soon"
    return None


class CrescentIndexer(IndexerSpider):
    """
    Spider to index Crescent Communities' NOVEL properties from the Charlotte
    market page.

    Community websites are resolved from the override configuration, links
    on the market page, or by probing guessed domains. Sites with no known
    platform are rendered once to pick their floor plans path.
    """

    name: str = "crescent_indexer"
    provider: str = "crescent"
    start_urls: list[str] = [MARKET_URL]

    @classmethod
    def from_crawler(cls, crawler: Crawler, *args, **kwargs) -> CrescentIndexer:
        if "community_config" not in kwargs:
            kwargs["community_config"] = load_community_config(crawler.settings.get("COMMUNITY_OVERRIDES_PATH"))
        return super().from_crawler(crawler, *args, **kwargs)

    def __init__(self, *args, community_config: dict | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        config = community_config or {}
        self.overrides: dict = config.get("overrides", {})
        self.known_communities: dict = config.get("known_communities", {})
        self.seen_urls: set[str] = set()

    def parse(self, response: Response) -> Generator[PropertyItem | scrapy.Request, None, None]:
        self.save_page(response)

        communities = self.parse_market_page(response)
        self.logger.info(f"Found {len(communities)} communities on the market page")

        seen_slugs = set()
        for community in communities:
            seen_slugs.add(community["slug"])
            yield from self.resolve(community)

        # Known communities may be missing from the market page
        for slug, known in self.known_communities.items():
            if slug in seen_slugs or known["url"] in self.seen_urls:
                continue
            if self.overrides.get(slug, {}).get("exclude_from_scrape"):
                continue
            name = community_name(slug)
            self.logger.info(f"Adding known community: {name}")
            yield from self.emit(
                name,
                known["url"],
                known.get("status", "leasing"),
                known.get("platform"),
                known.get("floor_plans_path"),
            )

    def community_links(self, response: Response) -> dict[str, str]:
        links = {}
        for href in response.css("a[href*=novel]::attr(href)").getall():
            if ".com" not in href or "crescentcommunities" in href:
                continue
            match = COMMUNITY_LINK.search(href)
            if match:
                links[match.group(1).lower()] = href
        return links

    def parse_market_page(self, response: Response) -> list[dict]:
        """Community names, statuses and same-page links from the market page text."""
        lines = [
            clean_text(text)
            for text in response.xpath(
                "//body//text()[not(ancestor::script) and not(ancestor::style)]"
            ).getall()
        ]
        lines = [line for line in lines if line]
        links = self.community_links(response)

        communities = []
        seen_names = set()
        for index, line in enumerate(lines):
            if not line.startswith(COMMUNITY_PREFIX) or len(line) >= 50 or line in seen_names:
                continue
            seen_names.add(line)

            status = "unknown"
            for following in lines[index + 1 : index + 1 + STATUS_WINDOW]:
                found = line_status(following)
                if found:
                    status = found
                    break

            communities.append(
                {
                    "name": line,
                    "slug": slugify(line),
                    "status": status,
                    "url": links.get(name_key(line)),
                }
            )

        return communities

    def resolve(self, community: dict) -> list[PropertyItem | scrapy.Request]:
        name = community["name"]
        slug = community["slug"]
        override = self.overrides.get(slug, {})

        if community["status"] == "coming_soon":
            self.skip(name, "coming soon")
            return []
        if override.get("exclude_from_scrape"):
            self.skip(name, "excluded by override")
            return []

        status = override.get("status") or community["status"]

        known = self.known_communities.get(slug)
        if known:
            return self.emit(name, known["url"], status, known.get("platform"), known.get("floor_plans_path"))
        if override.get("url"):
            return self.emit(
                name, override["url"], status, override.get("platform"), override.get("floor_plans_path")
            )
        if community["url"]:
            return self.emit(name, community["url"], status, None, None)

        return [self.site_check_request(name, status, guessed_urls(name))]

    def emit(
        self,
        name: str,
        url: str,
        status: str,
        platform: str | None,
        path: str | None,
    ) -> list[PropertyItem | scrapy.Request]:
        if url in self.seen_urls:
            self.logger.debug(f"{name} duplicates an already discovered URL {url}")
            return []
        self.seen_urls.add(url)

        if platform and platform != "unknown":
            return [self.property_item(name, url, status, platform, path)]

        return [
            scrapy.Request(
                url=url,
                callback=self.parse_platform,
                errback=self.handle_platform_error,
                meta={"playwright": True},
                cb_kwargs={"name": name, "url": url, "status": status, "path": path},
                dont_filter=True,
            )
        ]

    def property_item(
        self,
        name: str,
        url: str,
        status: str,
        platform: str | None,
        path: str | None = None,
    ) -> PropertyItem:
        return PropertyItem(
            provider=self.provider,
            status=status,
            platform=platform,
            property_name=name,
            url=url,
            floor_plans_url=join_path(url, path or floor_plans_path(platform)),
            address=None,
            city=DEFAULT_CITY,
            state=DEFAULT_STATE,
        )

    def parse_platform(
        self, response: Response, name: str, url: str, status: str, path: str | None
    ) -> list[PropertyItem]:
        platform = classify_platform(response)
        self.logger.info(f"Detected platform for {name}: {platform}")
        return [self.property_item(name, url, status, platform, path)]

    def handle_platform_error(self, failure: Failure) -> list[PropertyItem]:
        kwargs = failure.request.cb_kwargs  # type: ignore[attr-defined]
        self.logger.warning(f"Could not classify {kwargs['url']}: {failure.getErrorMessage()}")
        return [self.property_item(kwargs["name"], kwargs["url"], kwargs["status"], "unknown", kwargs["path"])]

    def site_check_request(self, name: str, status: str, candidates: list[str]) -> scrapy.Request:
        return scrapy.Request(
            url=candidates[0],
            method="HEAD",
            callback=self.site_check_succeeded,
            errback=self.site_check_failed,
            meta={"download_timeout": 5, "dont_retry": True},
            cb_kwargs={"name": name, "status": status, "candidates": candidates[1:]},
            dont_filter=True,
        )

    def site_check_succeeded(
        self, response: Response, name: str, status: str, candidates: list[str]
    ) -> list[PropertyItem | scrapy.Request]:
        self.logger.debug(f"Found live website for {name}: {response.url}")
        return self.emit(name, response.url, status, None, None)

    def site_check_failed(self, failure: Failure) -> list[scrapy.Request]:
        kwargs = failure.request.cb_kwargs  # type: ignore[attr-defined]
        if kwargs["candidates"]:
            return [self.site_check_request(kwargs["name"], kwargs["status"], kwargs["candidates"])]
        self.skip(kwargs["name"], "no reachable website")
        return []
