from __future__ import annotations

import re
import scrapy

from Rentwatch.spiders.indexers import PortfolioIndexer

from typing import TYPE_CHECKING, Generator

if TYPE_CHECKING:
    from scrapy import Item
    from scrapy.http import Response


SEARCH_URL = "https://www.greystar.com/s/charlotte-nc"


class GreystarPropertyIndexer(PortfolioIndexer):
    """
    Spider to index Greystar properties from the paginated Charlotte search.

    Pages are followed until one adds no new properties or `max_pages` is hit.
    """

    name: str = "greystar_indexer"
    provider: str = "greystar"
    allowed_domains: list[str] = ["greystar.com"]
    start_urls: list[str] = [SEARCH_URL]
    max_pages: int = 10

    link_pattern = re.compile(r"/(?P<slug>[a-z0-9-]+)-charlotte-nc/p_\d+/?")

    def parse(self, response: Response, page: int = 1) -> Generator[Item | scrapy.Request, None, None]:
        self.save_page(response)

        properties = self.parse_portfolio_page(response)
        yield from properties

        if properties and page < self.max_pages:
            yield scrapy.Request(
                url=f"{SEARCH_URL}?page={page + 1}",
                callback=self.parse,
                cb_kwargs={"page": page + 1},
            )
