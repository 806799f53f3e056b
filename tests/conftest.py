from datetime import datetime, timedelta, timezone

import pytest
from scrapy.http import HtmlResponse

from Rentwatch.catalog import MemoryCatalog
from Rentwatch.field_edits import FieldEditOverlay
from Rentwatch.items import BuildingItem, FloorPlanItem, SpecialItem
from Rentwatch.specials import SpecialsReconciler


class FakeClock:
    """Deterministic clock for created_at ordering."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def catalog(clock):
    return MemoryCatalog(clock=clock)


@pytest.fixture
def overlay(catalog):
    return FieldEditOverlay(catalog)


@pytest.fixture
def reconciler(catalog):
    return SpecialsReconciler(catalog)


def make_response(html: str, url: str = "https://www.example.com/") -> HtmlResponse:
    return HtmlResponse(url=url, body=html, encoding="utf-8")


def make_special(title: str, description: str | None = None, **fields) -> SpecialItem:
    values = {
        "title": title,
        "description": description or title,
        "discount_type": "other",
        "discount_value": None,
        "conditions": None,
        "start_date": None,
        "end_date": None,
        "raw_html": None,
        "target_floor_plan_names": None,
    }
    values.update(fields)
    return SpecialItem(**values)


def make_floor_plan(name: str, bedrooms: int, rent_min: int = 1500, rent_max: int = 1700, **fields) -> FloorPlanItem:
    values = {
        "name": name,
        "bedrooms": bedrooms,
        "bathrooms": 1.0,
        "sqft_min": 700,
        "sqft_max": 750,
        "rent_min": rent_min,
        "rent_max": rent_max,
        "available_count": 1,
        "photo_url": None,
    }
    values.update(fields)
    return FloorPlanItem(**values)


def make_building(**fields) -> BuildingItem:
    values = {
        "scraped_at": datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc),
        "provider": "greystar",
        "name": "The Nova South End",
        "listing_url": "https://www.thenovasouthend.com",
        "floorplans_url": "https://www.thenovasouthend.com/floorplans/",
        "website": "https://www.thenovasouthend.com",
        "address": "2100 South Blvd",
        "city": "Charlotte",
        "state": "NC",
        "zip_code": "28203",
        "amenities": [],
        "pet_policy": None,
        "parking_type": None,
        "floor_plans": [],
        "specials": [],
    }
    values.update(fields)
    return BuildingItem(**values)
