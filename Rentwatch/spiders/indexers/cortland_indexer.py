from __future__ import annotations

import re

from Rentwatch.spiders.indexers import PortfolioIndexer


class CortlandPropertyIndexer(PortfolioIndexer):
    """
    Spider to index Cortland properties from the Charlotte metro page.
    """

    name: str = "cortland_indexer"
    provider: str = "cortland"
    allowed_domains: list[str] = ["cortland.com"]
    start_urls: list[str] = ["https://cortland.com/apartments/charlotte-metro/"]

    link_pattern = re.compile(r"/apartments/(?P<slug>cortland-[a-z0-9-]+)/?")
    slug_prefix = "cortland-"
    name_prefix = "Cortland"
