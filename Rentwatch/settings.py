# Scrapy settings for Rentwatch project
#
# For simplicity, this file contains only settings considered important or
# commonly used. You can find more settings consulting the documentation:
#
#     https://docs.scrapy.org/en/latest/topics/settings.html
#     https://docs.scrapy.org/en/latest/topics/downloader-middleware.html
#     https://docs.scrapy.org/en/latest/topics/spider-middleware.html

import os
from pathlib import Path

BOT_NAME = "Rentwatch"

SPIDER_MODULES = ["Rentwatch.spiders"]
NEWSPIDER_MODULE = "Rentwatch.spiders"

ADDONS = {}

# Crawl responsibly by identifying yourself (and your website) on the user-agent
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36"

# Obey robots.txt rules
ROBOTSTXT_OBEY = False

# Concurrency and throttling settings
# Properties are scraped one at a time with a fixed pause between requests
CONCURRENT_REQUESTS = 1
CONCURRENT_REQUESTS_PER_DOMAIN = 1
DOWNLOAD_DELAY = 2
RANDOMIZE_DOWNLOAD_DELAY = False

# Disable Telnet Console (enabled by default)
TELNETCONSOLE_ENABLED = False

# Configure item pipelines
# See https://docs.scrapy.org/en/latest/topics/item-pipeline.html
ITEM_PIPELINES = {
    "Rentwatch.pipelines.CatalogPipeline": 300,
    "Rentwatch.pipelines.SpecialsPipeline": 400,
}

# Set settings whose default value is deprecated to a future-proof value
FEED_EXPORT_ENCODING = "utf-8"

DOWNLOAD_HANDLERS = {
    "http": "scrapy_playwright.handler.ScrapyPlaywrightDownloadHandler",
    "https": "scrapy_playwright.handler.ScrapyPlaywrightDownloadHandler",
}

# https://docs.scrapy.org/en/latest/topics/asyncio.html#install-asyncio
TWISTED_REACTOR = "twisted.internet.asyncioreactor.AsyncioSelectorReactor"

PLAYWRIGHT_BROWSER_TYPE = "chromium"
PLAYWRIGHT_LAUNCH_OPTIONS = {"headless": True}
PLAYWRIGHT_DEFAULT_NAVIGATION_TIMEOUT = 30000

# Enables the Feed Exporter
FEEDS = {
    # The %(name)s placeholder will be replaced by the spider's 'name' attribute
    "output/%(name)s_data_%(time)s.jsonl": {
        "format": "jsonlines",
        "encoding": "utf8",
        "store_empty": False,
        "overwrite": False,
    }
}

LOG_LEVEL = os.getenv("RENTWATCH_LOG_LEVEL", "INFO")

# Keep raw index pages under output/ for debugging selectors
SAVE_INDEX_PAGES = False

# PostgreSQL connection string for the catalog; unset means an in-memory catalog
DB_DSN = os.getenv("RENTWATCH_DB_DSN")

# Specials not seen for this many hours are deactivated after a provider scrape
STALE_SPECIAL_HOURS = int(os.getenv("RENTWATCH_STALE_HOURS", "48"))

# Community overrides for Crescent discovery
COMMUNITY_OVERRIDES_PATH = os.getenv(
    "RENTWATCH_OVERRIDES",
    str(Path(__file__).parent / "config" / "crescent_overrides.json"),
)
