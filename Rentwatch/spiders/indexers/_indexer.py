from __future__ import annotations

import json
import re
from datetime import datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from urllib.parse import urlparse
from scrapy import Spider, Request

from Rentwatch.items import PropertyItem
from Rentwatch.matching import name_from_slug
from Rentwatch.spiders.crawlers._spider import DEFAULT_CITY, DEFAULT_STATE
from Rentwatch.spiders.extractors import node_text

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scrapy import Selector
    from scrapy.crawler import Crawler
    from scrapy.http import Response


regex_patterns: dict = {
    "street_address": (
        r"(\d+\s+[A-Za-z0-9\s.]+(?:Street|St|Avenue|Ave|Boulevard|Blvd|Drive|Dr|Road|Rd|"
        r"Lane|Ln|Way|Court|Ct|Parkway|Pkwy|Circle|Cir)\b[^<,\n]{0,30})"
    ),
    "city_suffix": r",?\s*Charlotte,?\s*NC\s*\d*",
}
for key, pattern in regex_patterns.items():
    regex_patterns[key] = re.compile(pattern, re.IGNORECASE)


def load_community_config(path: str | Path | None) -> dict:
    """Override tables for discovery; missing file means no overrides."""
    config = {"overrides": {}, "known_communities": {}}
    if not path:
        return config
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return config
    config["overrides"].update(data.get("overrides", {}))
    config["known_communities"].update(data.get("known_communities", {}))
    return config


class IndexerSpider(Spider):
    """
    Base class for property indexer spiders.
    """

    provider: str

    @classmethod
    def from_crawler(cls, crawler: Crawler, *args, **kwargs) -> IndexerSpider:
        spider = super().from_crawler(crawler, *args, **kwargs)
        spider.save_pages = crawler.settings.getbool("SAVE_INDEX_PAGES")
        return spider

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.skipped: list[str] = []

    async def start(self):
        for url in self.start_urls:
            yield Request(url=url)

    def save_page(self, response: Response) -> None:
        if not getattr(self, "save_pages", False):
            return

        header_date = response.headers.get("Date", None)
        if header_date is not None:
            timestamp = parsedate_to_datetime(header_date.decode("utf-8"))
        else:
            self.logger.warning("No Date header found in response.")
            timestamp = datetime.now()

        filename = Path(f"output/{self.name}_{timestamp.isoformat()}.html")
        self.logger.debug(f"Saving page content to {filename}.")
        filename.parent.mkdir(parents=True, exist_ok=True)
        filename.write_bytes(response.body)

    def skip(self, name: str, reason: str) -> None:
        self.logger.info(f"Skipping {name} ({reason})")
        self.skipped.append(name)

    def parse(self, response: Response):
        raise NotImplementedError("Subclasses must implement the parse method.")


class PortfolioIndexer(IndexerSpider):
    """
    Indexer for portfolio pages that link to every community in the market.

    Property links are recognised by `link_pattern`, whose `slug` group names
    the community; the street address is sniffed from the text around the link.
    """

    link_pattern: re.Pattern
    name_prefix: str = ""
    slug_prefix: str = ""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.seen_urls: set[str] = set()

    def parse(self, response: Response):
        self.save_page(response)
        yield from self.parse_portfolio_page(response)

    def parse_portfolio_page(self, response: Response) -> list[PropertyItem]:
        """New properties linked from the page; links seen on earlier pages are skipped."""
        properties = []
        for link in response.css("a[href]"):
            parsed = urlparse(response.urljoin(link.attrib["href"]))
            match = self.link_pattern.fullmatch(parsed.path)
            if not match:
                continue

            url = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
            if url in self.seen_urls:
                continue
            self.seen_urls.add(url)

            slug = match.group("slug").removeprefix(self.slug_prefix)
            properties.append(
                PropertyItem(
                    provider=self.provider,
                    status="unknown",
                    platform=None,
                    property_name=name_from_slug(slug, prefix=self.name_prefix),
                    url=url,
                    floor_plans_url=None,
                    address=self.nearby_address(link),
                    city=DEFAULT_CITY,
                    state=DEFAULT_STATE,
                )
            )

        self.logger.info(f"Found {len(properties)} new properties on {response.url}")
        return properties

    def nearby_address(self, link: Selector) -> str | None:
        # Walk outwards from the link until a street address shows up
        for node in reversed(link.xpath("ancestor-or-self::*[position() <= 4]")):
            match = regex_patterns["street_address"].search(node_text(node))
            if match:
                return regex_patterns["city_suffix"].sub("", match.group(1)).strip() or None
        return None
