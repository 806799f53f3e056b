from __future__ import annotations

from Rentwatch.spiders.crawlers import ProviderSpider
from Rentwatch.spiders.extractors import (
    CardSelectorExtractor,
    EmbeddedJsonExtractor,
    SpecialSelectorExtractor,
    TextPatternExtractor,
)

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scrapy.http import Response


class CortlandSpider(ProviderSpider):
    """
    Spider for cortland.com property pages.

    Specials are injected into a popdown after load, so the property page
    waits for them before the DOM is read.
    """

    name: str = "cortland"
    provider: str = "cortland"

    seed_urls = [
        "https://cortland.com/apartments/cortland-southpark/",
        "https://cortland.com/apartments/cortland-noda/",
        "https://cortland.com/apartments/cortland-plaza-midwood/",
        "https://cortland.com/apartments/cortland-university/",
        "https://cortland.com/apartments/cortland-midtown/",
        "https://cortland.com/apartments/cortland-ballantyne/",
        "https://cortland.com/apartments/cortland-dilworth/",
    ]

    floor_plans_paths = ["/floorplans/"]
    popup_selector = '.popdown__container, [class*="popdown"], [class*="special-offer"], [class*="promo"]'
    floor_plans_wait_selector = '[class*="floorplan"], [class*="floor-plan"], .unit-card'
    title_noise = ["Cortland"]

    card_selectors = [
        ".floorplan-card",
        ".floor-plan-card",
        "[class*=floorplan]",
        "[class*=floor-plan]",
        ".unit-card",
        ".apartment-card",
    ]

    special_extractors = [
        SpecialSelectorExtractor(
            [
                ".popdown__container",
                "[class*=popdown]",
                ".special-offer",
                "[class*=special-offer]",
                ".promo-banner",
                "[class*=promo]",
                "[class*=offer]",
                "[class*=deal]",
            ]
        ),
        # Raw markup fallback: popdown containers whatever their wording, then
        # generic promo blocks
        SpecialSelectorExtractor(
            ["div.popdown__container"],
            require_promo=False,
            title_selector="h1, h2, h3, h4, .popdown__title, [class*=title], strong",
        ),
        SpecialSelectorExtractor(
            ["div[class*=promo]", "div[class*=special]", "div[class*=offer]"],
            title_selector="h1, h2, h3, h4, strong",
        ),
    ]

    def floor_plan_extractors(self, response: Response) -> list:
        return [
            EmbeddedJsonExtractor(),
            CardSelectorExtractor(self.card_selectors),
            TextPatternExtractor(max_length=1000),
        ]

    def fallback_name(self, property_url: str) -> str:
        name = super().fallback_name(property_url)
        return name if name.lower().startswith("cortland") else f"Cortland {name}"
