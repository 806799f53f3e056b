from __future__ import annotations

import re

from Rentwatch.spiders.indexers import PortfolioIndexer


class MAAPropertyIndexer(PortfolioIndexer):
    """
    Spider to index MAA properties from the Charlotte market page.
    """

    name: str = "maa_indexer"
    provider: str = "maa"
    allowed_domains: list[str] = ["maac.com"]
    start_urls: list[str] = ["https://www.maac.com/north-carolina/charlotte/"]

    link_pattern = re.compile(r"/north-carolina/charlotte/(?P<slug>maa-[a-z0-9-]+)/?")
    slug_prefix = "maa-"
    name_prefix = "MAA"
