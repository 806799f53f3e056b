# Define your item pipelines here
#
# Don't forget to add your pipeline to the ITEM_PIPELINES setting
# See: https://docs.scrapy.org/en/latest/topics/item-pipeline.html

from __future__ import annotations

import logging
from datetime import datetime, timezone

from scrapy import Spider, Item
from scrapy.crawler import Crawler
from scrapy.exceptions import DropItem

from Rentwatch.catalog import open_catalog
from Rentwatch.field_edits import EditTarget, FieldEditOverlay
from Rentwatch.items import BuildingItem, FloorPlanItem, PropertyItem
from Rentwatch.matching import addresses_match, names_match
from Rentwatch.specials import STALE_SPECIAL_HOURS, SpecialsReconciler
from Rentwatch.spiders.crawlers import ProviderSpider

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scrapy.settings import Settings
    from scrapy.statscollectors import StatsCollector

    from Rentwatch.catalog import Catalog


# Scraped building fields written straight to the catalog row
BUILDING_FIELDS = [
    "name",
    "address",
    "city",
    "state",
    "zip_code",
    "lat",
    "lng",
    "website",
    "phone",
    "primary_photo_url",
    "amenities",
    "listing_url",
    "floorplans_url",
    "total_units",
]

# Editable fields a scrape may carry; a locator edit makes them sticky
STICKY_BUILDING_FIELDS = ["pet_policy", "parking_type"]
STICKY_UNIT_FIELDS = ["rent_min", "rent_max"]

UNIT_FIELDS = ["bathrooms", "sqft_min", "sqft_max", "available_count", "photo_url"]


def _present(value) -> bool:
    return value is not None and value != "" and value != []


class CatalogPipeline:
    """
    Writes discovered properties and scraped buildings into the catalog.

    Fields with a standing locator edit are never overwritten; the scraped
    value is handed to the overlay so disagreements are flagged instead.
    """

    logger = logging.getLogger(__name__)

    def __init__(self, stats: StatsCollector, settings: Settings):
        self.stats = stats
        self.settings = settings
        self.catalog: Catalog | None = None
        self.owns_catalog = False

    @classmethod
    def from_crawler(cls, crawler: Crawler):
        return cls(crawler.stats, crawler.settings)

    def open_spider(self, spider: Spider):
        catalog = getattr(spider, "catalog", None)
        if catalog is None:
            catalog = open_catalog(self.settings)
            self.owns_catalog = True
        self.catalog = catalog
        self.overlay = FieldEditOverlay(catalog)

    def close_spider(self, spider: Spider):
        if self.owns_catalog and self.catalog is not None:
            self.catalog.close()

    def process_item(self, item: Item, spider: Spider):
        try:
            match item:
                case PropertyItem():
                    building = self.upsert_property(item)
                    self.logger.debug(f"Upserted building_id: {building['id']}")

                case BuildingItem():
                    building = self.upsert_building(item)
                    self.upsert_units(building["id"], item.get("floor_plans") or [], self._synced_at(item))

                case _:
                    pass  # Allow other items to pass

        except Exception as e:
            self.stats.inc_value("sync/errors")
            self.logger.error(f"Error processing item: {e}")
            raise DropItem(f"Error processing item: {e}")

        return item

    @staticmethod
    def _synced_at(item: Item) -> datetime:
        return item.get("scraped_at") or datetime.now(timezone.utc)

    # Discovery

    def match_unlisted(self, item: PropertyItem) -> dict | None:
        """An existing building of the provider that has no listing URL yet."""
        candidates = self.catalog.buildings_without_url(item["provider"])
        address = item.get("address")
        if address:
            for row in candidates:
                if row["address"] and addresses_match(address, row["address"]):
                    return row
        name = item.get("property_name")
        if name:
            for row in candidates:
                if row["name"] and names_match(name, row["name"]):
                    return row
        return None

    def upsert_property(self, item: PropertyItem) -> dict:
        self.stats.inc_value("sync/discovered")

        values = {
            "listing_url": item["url"],
            "floorplans_url": item.get("floor_plans_url"),
            "platform": item.get("platform"),
        }
        values = {key: value for key, value in values.items() if _present(value)}

        building = self.catalog.find_building(listing_url=item["url"])
        if building is None:
            building = self.match_unlisted(item)

        if building is not None:
            # Fill gaps only; scraped identity is authoritative once it exists
            for column in ("address", "city", "state"):
                if not building.get(column) and _present(item.get(column)):
                    values[column] = item[column]
            self.stats.inc_value("sync/buildings_updated")
            return self.catalog.update_building(building["id"], values)

        self.stats.inc_value("sync/buildings_created")
        return self.catalog.create_building(
            {
                "provider": item["provider"],
                "name": item.get("property_name") or item["url"],
                "address": item.get("address"),
                "city": item.get("city"),
                "state": item.get("state"),
                **values,
            }
        )

    # Scraped buildings

    def upsert_building(self, item: BuildingItem) -> dict:
        values = {field: item.get(field) for field in BUILDING_FIELDS if _present(item.get(field))}
        values["last_synced_at"] = self._synced_at(item)

        building = self.catalog.find_building(
            listing_url=item.get("listing_url"),
            address=item.get("address"),
            provider=item["provider"],
            name=item.get("name"),
        )

        if building is None:
            values["provider"] = item["provider"]
            values.setdefault("name", item.get("listing_url"))
            for field in STICKY_BUILDING_FIELDS:
                if _present(item.get(field)):
                    values[field] = item[field]
            self.stats.inc_value("sync/buildings_created")
            building = self.catalog.create_building(values)
            self.logger.info(f"Created building {building['id']}: {building['name']}")
            return building

        target = EditTarget.building(building["id"])
        for field in STICKY_BUILDING_FIELDS:
            if not _present(item.get(field)):
                continue
            if self.overlay.has_locator_edit(target, field):
                self._flag(target, field, item[field])
            else:
                values[field] = item[field]

        self.stats.inc_value("sync/buildings_updated")
        return self.catalog.update_building(building["id"], values)

    def upsert_units(self, building_id: int, floor_plans: list[FloorPlanItem], synced_at: datetime) -> None:
        """Upsert one unit per (name, bedrooms); units missing from a non-empty scrape become unavailable."""
        if not floor_plans:
            return

        units = {(unit["name"], unit["bedrooms"]): unit for unit in self.catalog.units_for_building(building_id)}
        seen_ids: set[int] = set()

        for floor_plan in floor_plans:
            key = (floor_plan.get("name"), floor_plan.get("bedrooms"))
            values = {field: floor_plan.get(field) for field in UNIT_FIELDS}
            values["is_available"] = True
            values["last_synced_at"] = synced_at
            # A zero rent means the price could not be parsed
            rents = {field: floor_plan.get(field) for field in STICKY_UNIT_FIELDS if floor_plan.get(field)}

            unit = units.get(key)
            if unit is None:
                unit = self.catalog.create_unit(
                    {"building_id": building_id, "name": key[0], "bedrooms": key[1], **values, **rents}
                )
                self.stats.inc_value("sync/units_created")
            else:
                target = EditTarget.unit(unit["id"])
                for field, value in rents.items():
                    if self.overlay.has_locator_edit(target, field):
                        self._flag(target, field, value)
                    else:
                        values[field] = value
                unit = self.catalog.update_unit(unit["id"], values)
                self.stats.inc_value("sync/units_updated")

            units[key] = unit
            seen_ids.add(unit["id"])

        unavailable = self.catalog.mark_units_unavailable(building_id, seen_ids)
        if unavailable:
            self.stats.inc_value("sync/units_unavailable", unavailable)

    def _flag(self, target: EditTarget, field: str, value) -> None:
        if self.overlay.record_scraped_value(target, field, value)["has_conflict"]:
            self.stats.inc_value("sync/conflicts")


class SpecialsPipeline:
    """
    Reconciles each building's specials, then sweeps stale and expired
    specials once the provider spider has finished.
    """

    logger = logging.getLogger(__name__)

    def __init__(self, stats: StatsCollector, stale_hours: int):
        self.stats = stats
        self.stale_hours = stale_hours
        self.reconciler: SpecialsReconciler | None = None

    @classmethod
    def from_crawler(cls, crawler: Crawler):
        return cls(crawler.stats, crawler.settings.getint("STALE_SPECIAL_HOURS", STALE_SPECIAL_HOURS))

    def open_spider(self, spider: Spider):
        catalog = getattr(spider, "catalog", None)
        if catalog is not None:
            self.reconciler = SpecialsReconciler(catalog)

    def close_spider(self, spider: Spider):
        if self.reconciler is None or not isinstance(spider, ProviderSpider):
            return

        stale = self.reconciler.deactivate_stale(spider.provider, self.stale_hours)
        expired = self.reconciler.deactivate_expired()
        self.stats.set_value("sync/specials_stale", stale)
        self.stats.set_value("sync/specials_expired", expired)
        self.logger.info(f"Deactivated {stale} stale and {expired} expired {spider.provider} special(s)")

    def process_item(self, item: Item, spider: Spider):
        if self.reconciler is None or not isinstance(item, BuildingItem):
            return item

        result = self.reconciler.sync_from_buildings([item], item["provider"])
        self.stats.inc_value("sync/specials_created", result["total_created"])
        self.stats.inc_value("sync/specials_updated", result["total_updated"])
        for error in result["errors"]:
            if isinstance(spider, ProviderSpider):
                spider.record_error(error)
        return item
