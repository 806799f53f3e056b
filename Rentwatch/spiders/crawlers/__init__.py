from Rentwatch.spiders.crawlers._spider import (
    ConfigurableSpider,
    ContentBlockerSpider,
    DatabaseSpider,
    ProviderSpider,
)

__all__ = [
    "ConfigurableSpider",
    "ContentBlockerSpider",
    "DatabaseSpider",
    "ProviderSpider",
]
