from datetime import date
from types import SimpleNamespace

import pytest
from scrapy.exceptions import DropItem
from scrapy.settings import Settings
from scrapy.statscollectors import MemoryStatsCollector

from conftest import make_building, make_floor_plan, make_special
from Rentwatch.field_edits import EditTarget
from Rentwatch.items import BuildingItem, PropertyItem
from Rentwatch.pipelines import CatalogPipeline, SpecialsPipeline
from Rentwatch.spiders.crawlers.greystar_spider import GreystarSpider
from Rentwatch.spiders.indexers.maa_indexer import MAAPropertyIndexer

NOVA_URL = "https://www.thenovasouthend.com"
MAA_URL = "https://www.maac.com/north-carolina/charlotte/maa-south-end/"


@pytest.fixture
def stats():
    return MemoryStatsCollector(SimpleNamespace(settings=Settings()))


@pytest.fixture
def spider(catalog):
    spider = GreystarSpider()
    spider.catalog = catalog
    return spider


@pytest.fixture
def pipeline(stats, spider):
    pipeline = CatalogPipeline(stats, Settings())
    pipeline.open_spider(spider)
    return pipeline


def property_item(**fields) -> PropertyItem:
    values = {
        "provider": "maa",
        "status": "unknown",
        "platform": None,
        "property_name": "MAA South End",
        "url": MAA_URL,
        "floor_plans_url": None,
        "address": "2100 South Blvd",
        "city": "Charlotte",
        "state": "NC",
    }
    values.update(fields)
    return PropertyItem(**values)


def units_by_name(catalog, building_id):
    return {unit["name"]: unit for unit in catalog.units_for_building(building_id)}


def test_discovered_property_is_created_then_updated(pipeline, catalog, stats):
    indexer = MAAPropertyIndexer()
    pipeline.process_item(property_item(), indexer)

    building = catalog.find_building(listing_url=MAA_URL)
    assert building["name"] == "MAA South End"
    assert building["provider"] == "maa"
    assert building["floorplans_url"] is None

    pipeline.process_item(property_item(floor_plans_url=f"{MAA_URL}floor-plans/", platform="maa"), indexer)

    building = catalog.find_building(listing_url=MAA_URL)
    assert building["floorplans_url"] == f"{MAA_URL}floor-plans/"
    assert building["platform"] == "maa"
    assert stats.get_value("sync/discovered") == 2
    assert stats.get_value("sync/buildings_created") == 1
    assert stats.get_value("sync/buildings_updated") == 1


def test_discovery_links_building_without_url(pipeline, catalog, stats):
    existing = catalog.create_building({"provider": "maa", "name": "South End by MAA", "address": "2100 South Blvd"})

    pipeline.process_item(property_item(), MAAPropertyIndexer())

    building = catalog.find_building(listing_url=MAA_URL)
    assert building["id"] == existing["id"]
    assert building["name"] == "South End by MAA"
    assert building["city"] == "Charlotte"
    assert stats.get_value("sync/buildings_created") is None


def test_scraped_building_and_units(pipeline, catalog, stats, spider):
    item = make_building(
        floor_plans=[
            make_floor_plan("A1", 1),
            make_floor_plan("B2", 2, rent_min=0, rent_max=0),
        ],
        pet_policy="dogs-allowed",
    )

    assert pipeline.process_item(item, spider) is item

    building = catalog.find_building(listing_url=NOVA_URL)
    assert building["name"] == "The Nova South End"
    assert building["pet_policy"] == "dogs-allowed"
    assert building["last_synced_at"] == item["scraped_at"]

    units = units_by_name(catalog, building["id"])
    assert (units["A1"]["rent_min"], units["A1"]["rent_max"]) == (1500, 1700)
    assert units["A1"]["is_available"] is True
    # A zero rent is unknown, not free
    assert units["B2"]["rent_min"] is None
    assert stats.get_value("sync/units_created") == 2


def test_locator_rent_edit_is_not_overwritten(pipeline, catalog, stats, spider):
    pipeline.process_item(make_building(floor_plans=[make_floor_plan("A1", 1)]), spider)
    building = catalog.find_building(listing_url=NOVA_URL)
    unit = units_by_name(catalog, building["id"])["A1"]

    target = EditTarget.unit(unit["id"])
    pipeline.overlay.record_edit(target, "rent_min", 1450, "locator-7")
    catalog.update_unit(unit["id"], {"rent_min": 1450})

    pipeline.process_item(make_building(floor_plans=[make_floor_plan("A1", 1, rent_min=1600, rent_max=1800)]), spider)

    unit = units_by_name(catalog, building["id"])["A1"]
    assert unit["rent_min"] == 1450
    assert unit["rent_max"] == 1800
    edit = pipeline.overlay.get_effective_value(target, "rent_min", 1600)
    assert edit.current_value == 1450
    assert edit.has_conflict is True
    assert edit.last_edit["conflict_value"] == 1600
    assert stats.get_value("sync/conflicts") == 1
    assert stats.get_value("sync/units_updated") == 1


def test_locator_building_edit_is_not_overwritten(pipeline, catalog, stats, spider):
    pipeline.process_item(make_building(pet_policy="dogs-allowed"), spider)
    building = catalog.find_building(listing_url=NOVA_URL)
    target = EditTarget.building(building["id"])
    pipeline.overlay.record_edit(target, "pet_policy", "no-pets", "locator-7")
    catalog.update_building(building["id"], {"pet_policy": "no-pets"})

    pipeline.process_item(make_building(pet_policy="dogs-allowed", parking_type="garage"), spider)

    building = catalog.find_building(listing_url=NOVA_URL)
    assert building["pet_policy"] == "no-pets"
    assert building["parking_type"] == "garage"
    assert pipeline.overlay.unresolved_conflicts()[0]["conflict_value"] == "dogs-allowed"


def test_missing_units_become_unavailable(pipeline, catalog, stats, spider):
    pipeline.process_item(make_building(floor_plans=[make_floor_plan("A1", 1), make_floor_plan("B2", 2)]), spider)
    building = catalog.find_building(listing_url=NOVA_URL)

    pipeline.process_item(make_building(floor_plans=[make_floor_plan("A1", 1)]), spider)

    units = units_by_name(catalog, building["id"])
    assert units["A1"]["is_available"] is True
    assert units["B2"]["is_available"] is False
    assert stats.get_value("sync/units_unavailable") == 1

    # A scrape that found nothing leaves the units alone
    pipeline.process_item(make_building(floor_plans=[]), spider)
    assert units_by_name(catalog, building["id"])["A1"]["is_available"] is True


def test_broken_item_is_dropped(pipeline, stats, spider):
    with pytest.raises(DropItem):
        pipeline.process_item(BuildingItem(name="No Provider", listing_url=NOVA_URL), spider)
    assert stats.get_value("sync/errors") == 1


def test_specials_pipeline_reconciles_and_sweeps(pipeline, catalog, stats, spider):
    specials = SpecialsPipeline(stats, 48)
    specials.open_spider(spider)

    item = make_building(
        specials=[
            make_special("6 Weeks Free", discount_type="months_free", discount_value=1.5),
            make_special("Spring Deal", end_date=date(2020, 3, 31)),
        ]
    )
    pipeline.process_item(item, spider)
    specials.process_item(item, spider)
    specials.process_item(item, spider)

    assert stats.get_value("sync/specials_created") == 2
    assert stats.get_value("sync/specials_updated") == 2

    specials.close_spider(spider)

    assert stats.get_value("sync/specials_stale") == 0
    assert stats.get_value("sync/specials_expired") == 1
    assert [row["title"] for row in catalog.active_specials()] == ["6 Weeks Free"]


def test_specials_for_unknown_building_are_spider_errors(stats, spider):
    specials = SpecialsPipeline(stats, 48)
    specials.open_spider(spider)

    item = make_building(
        name="Unknown Tower",
        listing_url=None,
        address="1 Nowhere Rd",
        specials=[make_special("Free Rent")],
    )
    specials.process_item(item, spider)

    assert spider.result.errors == ["Building not found in database: Unknown Tower (1 Nowhere Rd)"]
    assert stats.get_value("sync/specials_created") == 0
