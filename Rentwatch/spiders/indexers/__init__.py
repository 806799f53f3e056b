from Rentwatch.spiders.indexers._indexer import (
    IndexerSpider,
    PortfolioIndexer,
    load_community_config,
    regex_patterns,
)

__all__ = [
    "IndexerSpider",
    "PortfolioIndexer",
    "load_community_config",
    "regex_patterns",
]
