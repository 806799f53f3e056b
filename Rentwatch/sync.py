"""
Full sync job: discovery then scraping, one provider at a time, against a
single shared catalog.

    rentwatch-sync                  # every provider
    rentwatch-sync maa              # one provider
    rentwatch-sync --skip-discovery # scrape the buildings already in the catalog
"""

from __future__ import annotations

import argparse
import logging
import os

from scrapy.crawler import CrawlerRunner
from scrapy.utils.log import configure_logging
from scrapy.utils.project import get_project_settings
from scrapy.utils.reactor import install_reactor
from twisted.internet import defer

from Rentwatch.catalog import open_catalog
from Rentwatch.results import SyncResult
from Rentwatch.spiders.crawlers.cortland_spider import CortlandSpider
from Rentwatch.spiders.crawlers.crescent_spider import CrescentSpider
from Rentwatch.spiders.crawlers.greystar_spider import GreystarSpider
from Rentwatch.spiders.crawlers.maa_spider import MAASpider
from Rentwatch.spiders.indexers.cortland_indexer import CortlandPropertyIndexer
from Rentwatch.spiders.indexers.crescent_indexer import CrescentIndexer
from Rentwatch.spiders.indexers.greystar_indexer import GreystarPropertyIndexer
from Rentwatch.spiders.indexers.maa_indexer import MAAPropertyIndexer

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from Rentwatch.catalog import Catalog


logger = logging.getLogger(__name__)

# provider -> (indexer, spider)
PROVIDERS = {
    "greystar": (GreystarPropertyIndexer, GreystarSpider),
    "maa": (MAAPropertyIndexer, MAASpider),
    "cortland": (CortlandPropertyIndexer, CortlandSpider),
    "crescent": (CrescentIndexer, CrescentSpider),
}


def log_summary(result: SyncResult) -> None:
    logger.info(f"{result.provider} sync complete")
    logger.info(f"  Discovered: {result.discovered}")
    logger.info(f"  Buildings: {result.created} created, {result.updated} updated")
    logger.info(f"  Units: {result.units_created} created, {result.units_updated} updated")
    logger.info(
        f"  Specials: {result.specials_created} created, {result.specials_updated} updated, "
        f"{result.specials_deactivated} deactivated"
    )
    if result.errors:
        logger.warning(f"  Errors ({len(result.errors)}):")
        for error in result.errors:
            logger.warning(f"    - {error}")


@defer.inlineCallbacks
def full_sync(runner: CrawlerRunner, catalog: Catalog, providers: list[str], skip_discovery: bool = False):
    """
    Run each provider's indexer (unless skipped) and then its spider,
    sequentially. A provider that fails to crawl is reported in its result's
    errors and the sync moves on to the next one.
    """
    results = []
    for provider in providers:
        indexer_cls, spider_cls = PROVIDERS[provider]
        result = SyncResult(provider=provider)

        if not skip_discovery:
            logger.info(f"Discovering {provider} properties")
            crawler = runner.create_crawler(indexer_cls)
            try:
                yield crawler.crawl(catalog=catalog)
            except Exception as e:
                message = f"{provider} discovery failed: {e}"
                logger.error(message)
                result.errors.append(message)
            else:
                result.merge(SyncResult.from_stats(provider, crawler.stats.get_stats(), []))
                skipped = getattr(crawler.spider, "skipped", [])
                if skipped:
                    logger.info(f"Skipped {len(skipped)} {provider} properties: {', '.join(skipped)}")

        logger.info(f"Scraping {provider} properties")
        crawler = runner.create_crawler(spider_cls)
        try:
            yield crawler.crawl(catalog=catalog)
        except Exception as e:
            message = f"{provider} scrape failed: {e}"
            logger.error(message)
            result.errors.append(message)
        else:
            result.merge(SyncResult.from_stats(provider, crawler.stats.get_stats(), crawler.spider.result.errors))

        log_summary(result)
        results.append(result)

    return results


def main() -> int:
    parser = argparse.ArgumentParser(description="Scrape apartment providers and reconcile the catalog")
    parser.add_argument("provider", nargs="?", choices=sorted(PROVIDERS), help="Only sync this provider")
    parser.add_argument(
        "--skip-discovery",
        action="store_true",
        help="Skip the indexers and scrape the buildings already in the catalog",
    )
    args = parser.parse_args()

    os.environ.setdefault("SCRAPY_SETTINGS_MODULE", "Rentwatch.settings")
    settings = get_project_settings()
    install_reactor(settings["TWISTED_REACTOR"])
    configure_logging(settings)

    from twisted.internet import reactor

    catalog = open_catalog(settings)
    runner = CrawlerRunner(settings)
    providers = [args.provider] if args.provider else list(PROVIDERS)

    results: list[SyncResult] = []
    failures = []
    d = full_sync(runner, catalog, providers, skip_discovery=args.skip_discovery)
    d.addCallback(results.extend)
    d.addErrback(failures.append)
    d.addBoth(lambda _: reactor.stop())
    reactor.run()

    catalog.close()

    if failures:
        logger.error(f"Sync aborted: {failures[0].getErrorMessage()}")
        return 1

    total = SyncResult(provider="all")
    for result in results:
        total.merge(result)
    if len(results) > 1:
        log_summary(total)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
