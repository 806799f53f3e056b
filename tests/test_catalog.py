import pytest
from scrapy.settings import Settings

from Rentwatch.catalog import MemoryCatalog, open_catalog


def test_open_catalog_without_dsn_is_in_memory():
    assert isinstance(open_catalog(Settings({"DB_DSN": None})), MemoryCatalog)


def test_unknown_columns_are_rejected(catalog):
    with pytest.raises(ValueError, match="Unknown buildings column"):
        catalog.create_building({"provider": "maa", "name": "MAA Gateway", "color": "blue"})


def test_rows_are_returned_as_copies(catalog):
    building = catalog.create_building({"provider": "maa", "name": "MAA Gateway"})
    building["name"] = "Changed"
    assert catalog.find_building(name="MAA Gateway", provider="maa")["id"] == building["id"]


def test_find_building_lookups(catalog):
    listed = catalog.create_building(
        {"provider": "maa", "name": "MAA Gateway", "listing_url": "https://www.maac.com/north-carolina/charlotte/maa-gateway/"}
    )
    addressed = catalog.create_building({"provider": "cortland", "name": "Cortland Noda", "address": "500 E 36th St"})

    assert catalog.find_building(listing_url=listed["listing_url"])["id"] == listed["id"]
    assert catalog.find_building(address="500 E 36th St", provider="cortland")["id"] == addressed["id"]
    # Address matches are scoped to the provider
    assert catalog.find_building(address="500 E 36th St", provider="maa") is None
    assert catalog.find_building(name="Cortland Noda", provider="cortland")["id"] == addressed["id"]
    assert catalog.find_building(listing_url="https://nowhere.example.com") is None


def test_listing_urls_and_buildings_without_url(catalog):
    catalog.create_building(
        {
            "provider": "greystar",
            "name": "The Nova South End",
            "listing_url": "https://www.thenovasouthend.com",
            "floorplans_url": "https://www.thenovasouthend.com/floor-plans/",
        }
    )
    unlisted = catalog.create_building({"provider": "greystar", "name": "Hawthorne Gateway"})

    rows = catalog.listing_urls("greystar")
    assert [row["listing_url"] for row in rows] == ["https://www.thenovasouthend.com"]
    assert rows[0]["floorplans_url"] == "https://www.thenovasouthend.com/floor-plans/"
    assert [row["id"] for row in catalog.buildings_without_url("greystar")] == [unlisted["id"]]
    assert catalog.listing_urls("maa") == []


def test_get_field_value(catalog):
    building = catalog.create_building({"provider": "maa", "name": "MAA Gateway", "pet_policy": "dogs-allowed"})
    assert catalog.get_field_value("building_id", building["id"], "pet_policy") == "dogs-allowed"
    assert catalog.get_field_value("building_id", building["id"], "deposit") is None
    assert catalog.get_field_value("building_id", 999, "pet_policy") is None


def test_mark_units_unavailable(catalog):
    building = catalog.create_building({"provider": "maa", "name": "MAA Gateway"})
    kept = catalog.create_unit({"building_id": building["id"], "name": "A1", "bedrooms": 1, "is_available": True})
    gone = catalog.create_unit({"building_id": building["id"], "name": "B1", "bedrooms": 2, "is_available": True})

    assert catalog.mark_units_unavailable(building["id"], {kept["id"]}) == 1
    units = {unit["id"]: unit for unit in catalog.units_for_building(building["id"])}
    assert units[kept["id"]]["is_available"] is True
    assert units[gone["id"]]["is_available"] is False
