from Rentwatch.spiders.crawlers import ProviderSpider
from Rentwatch.spiders.extractors import SpecialSelectorExtractor


class GreystarSpider(ProviderSpider):
    """
    Spider for Greystar-managed property sites (Jonah Digital templates).

    The floor plans page carries everything: identity, cards and the popdown
    specials, so the home page is never requested.
    """

    name: str = "greystar"
    provider: str = "greystar"

    seed_urls = [
        "https://www.thenovasouthend.com",
        "https://www.camdenrailyardsouthend.com",
        "https://www.avalonmeyerspark.com",
        "https://www.hawthornegatewaynoda.com",
        "https://www.thelincolnatsouthend.com",
    ]

    scrape_home_page = False
    # Tried in order until one answers with a non-error status
    floor_plans_paths = ["/floorplans/", "/floor-plans/", "/floorplans", "/floor-plans"]

    popup_selector = ".popdown, .pop-down, #popdown, [class*=promo], [class*=special]"

    card_selectors = [
        "[data-jd-fp-selector]",
        ".fp-card",
        ".floorplan-card",
        ".floor-plan-card",
        "[class*=floorplan]",
        ".unit-card",
    ]

    special_extractors = [
        SpecialSelectorExtractor(
            [
                ".popdown",
                ".pop-down",
                "#popdown",
                "[class*=promo]",
                "[class*=special]",
                ".offer-banner",
                ".deal-banner",
                ".incentive",
            ],
            title_selector="h1, h2, h3, h4, .title, .heading, strong",
        ),
    ]
