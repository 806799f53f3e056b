from __future__ import annotations

import scrapy

from Rentwatch.spiders.crawlers import ProviderSpider
from Rentwatch.spiders.extractors import (
    SpecialSelectorExtractor,
    build_special,
    node_text,
)
from Rentwatch.parsing import regex_patterns

from typing import TYPE_CHECKING, AsyncGenerator

if TYPE_CHECKING:
    from scrapy.http import Response
    from twisted.python.failure import Failure

    from Rentwatch.items import BuildingItem, SpecialItem


DEALS_HUB_URL = "https://www.maac.com/north-carolina/charlotte/"

DEAL_CARD_SELECTORS = [
    ".deal-card",
    ".special-card",
    ".offer-card",
    "[class*=deal]",
    "[class*=special]",
    "[class*=promo]",
]


def hub_key(url_or_name: str) -> str:
    return url_or_name.strip().lower().rstrip("/")


class MAASpider(ProviderSpider):
    """
    Spider for MAA (maac.com) communities.

    The Charlotte deals hub is scraped first; its specials are merged into
    each property's own PERQ popup specials.
    """

    name: str = "maa"
    provider: str = "maa"

    seed_urls = [
        "https://www.maac.com/north-carolina/charlotte/maa-ballantyne/",
        "https://www.maac.com/north-carolina/charlotte/maa-south-end/",
        "https://www.maac.com/north-carolina/charlotte/maa-gateway/",
        "https://www.maac.com/north-carolina/charlotte/maa-reserve/",
        "https://www.maac.com/north-carolina/charlotte/maa-plaza-midwood/",
    ]

    scrape_home_page = False
    floor_plans_paths = ["/floor-plans/"]
    popup_selector = '.perq-top-special-offer-cta-outer-container, [class*="perq"], [class*="special-offer"]'
    title_noise = ["MAA"]

    card_selectors = [
        ".floorplan-card",
        ".floor-plan-card",
        ".fp-card",
        "[class*=floorplan]",
        ".unit-type-card",
        ".apartment-card",
    ]

    special_extractors = [
        SpecialSelectorExtractor(
            [
                ".perq-top-special-offer-cta-outer-container",
                ".perq-special-offer",
                "[class*=perq]",
                ".special-offer",
                "[class*=special-offer]",
                ".promo-banner",
                "[class*=promo]",
                "[class*=special]",
                ".look-lease",
                "[class*=incentive]",
            ],
            title_selector="h1, h2, h3, h4, .title, strong, .perq-special-offer-title",
        ),
    ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.hub_specials: dict[str, list[SpecialItem]] = {}

    async def start(self):
        yield scrapy.Request(
            url=DEALS_HUB_URL,
            callback=self.parse_deals_hub,
            errback=self.handle_hub_error,
            meta=self.playwright_meta(),
            dont_filter=True,
        )

    async def parse_deals_hub(self, response: Response) -> AsyncGenerator[scrapy.Request, None]:
        page = response.meta["playwright_page"]
        response = await self.settle_page(page, response, None)

        self.hub_specials = self.parse_deals_hub_page(response)
        self.logger.info(f"Found specials for {len(self.hub_specials)} properties on the deals hub")

        for url in self.start_urls:
            yield self.property_request(url)

    async def handle_hub_error(self, failure: Failure) -> list:
        await self._close_page(failure)
        self.record_error(f"Failed to scrape MAA deals hub: {failure.getErrorMessage()}")
        return [self.property_request(url) for url in self.start_urls]

    def parse_deals_hub_page(self, response: Response) -> dict[str, list[SpecialItem]]:
        """Group hub deal cards by the property they link to (or its name)."""
        specials_by_property: dict[str, list[SpecialItem]] = {}
        seen: set[str] = set()

        for selector in DEAL_CARD_SELECTORS:
            for card in response.css(selector):
                text = node_text(card)
                if len(text) < 10 or text in seen:
                    continue
                if not regex_patterns["promo"].search(text):
                    continue
                seen.add(text)

                property_link = card.css("a[href*='/north-carolina/charlotte/']")
                if property_link:
                    key = response.urljoin(property_link[0].attrib["href"])
                else:
                    heading = card.css("h2, h3, h4, .property-name")
                    key = node_text(heading[0]) if heading else "Unknown Property"

                title_node = card.css("h1, h2, h3, .title, .heading, strong")
                title = node_text(title_node[0]) if title_node else None
                special = build_special(text, card.get(), title=title, with_targets=False)
                specials_by_property.setdefault(hub_key(key), []).append(special)

        return specials_by_property

    def merge_hub_specials(self, building: BuildingItem) -> BuildingItem:
        """Add hub specials that the property page did not already show."""
        hub = self.hub_specials.get(hub_key(building["listing_url"]), []) + self.hub_specials.get(
            hub_key(building.get("name") or ""), []
        )
        specials = list(building.get("specials") or [])
        for special in hub:
            duplicate = any(
                existing["title"] == special["title"] or existing["description"] == special["description"]
                for existing in specials
            )
            if not duplicate:
                specials.append(special)
        building["specials"] = specials
        return building

    def finish(self, building: BuildingItem) -> BuildingItem:
        return super().finish(self.merge_hub_specials(building))
