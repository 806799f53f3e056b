from datetime import date

import pytest

from Rentwatch.parsing import (
    amenity_tags,
    clean_text,
    infer_bedrooms_from_plan_code,
    looks_like_special,
    parse_available_count,
    parse_bathrooms,
    parse_bedrooms,
    parse_discount_type,
    parse_discount_value,
    parse_end_date,
    parse_rent,
    parse_sqft,
    target_floor_plans,
    title_from_text,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("$1,500 - $1,800", (1500, 1800)),
        ("$1,650", (1650, 1650)),
        ("Starting at $1,439/mo", (1439, 1439)),
        ("Call for pricing", (0, 0)),
        ("", (0, 0)),
        (None, (0, 0)),
    ],
)
def test_parse_rent(text, expected):
    assert parse_rent(text) == expected


def test_parse_bedrooms():
    assert parse_bedrooms("Studio / 1 Bath") == 0
    assert parse_bedrooms("2 Bed / 2 Bath") == 2
    assert parse_bedrooms("3BR") == 3
    assert parse_bedrooms("Penthouse") == 1
    assert parse_bedrooms("Penthouse", default=None) is None


def test_plan_code_inference_is_separate_from_text_parsing():
    assert infer_bedrooms_from_plan_code("S1") == 0
    assert infer_bedrooms_from_plan_code("Plan A2") == 1
    assert infer_bedrooms_from_plan_code("B1") == 2
    assert infer_bedrooms_from_plan_code("C3") == 3
    assert infer_bedrooms_from_plan_code("The Willow") is None
    # Plain text parsing never guesses from codes
    assert parse_bedrooms("B1", default=None) is None


def test_parse_bathrooms():
    assert parse_bathrooms("2 Bed / 1.5 Bath") == 1.5
    assert parse_bathrooms("2 BA") == 2.0
    assert parse_bathrooms("no baths listed here") == 1.0


def test_parse_sqft():
    assert parse_sqft("650 - 850 SF") == (650, 850)
    assert parse_sqft("1,050 sq ft") == (1050, 1050)
    assert parse_sqft("574") == (574, 574)
    assert parse_sqft("n/a") == (None, None)


def test_discount_type_priority():
    # Months free beats the dollar amount mentioned later
    assert parse_discount_type("2 months free plus $500 off rent") == "months_free"
    assert parse_discount_type("Save $300 on your first month") == "reduced_rent"
    assert parse_discount_type("Application fee waived this week") == "waived_fees"
    assert parse_discount_type("Get a $200 Visa gift card") == "gift_card"
    assert parse_discount_type("Ask about our specials") == "other"


def test_discount_type_strict_mode():
    assert parse_discount_type("Schedule a tour today", strict=True) is None
    assert parse_discount_type("Schedule a tour today") == "other"
    assert parse_discount_type("Special pricing on select homes", strict=True) == "other"


def test_parse_discount_value():
    assert parse_discount_value("2 months free on 14 month leases", "months_free") == 2.0
    assert parse_discount_value("6 weeks free", "months_free") == 1.5
    assert parse_discount_value("Save $1,000 on 2 bed homes", "reduced_rent") == 1000.0
    # First dollar figure wins, even when a later one is the real discount
    assert parse_discount_value("Rent from $1,400, save $250", "reduced_rent") == 1400.0
    assert parse_discount_value("Ask us about specials", "other") is None


def test_parse_end_date():
    today = date(2025, 1, 15)
    assert parse_end_date("Move in by 3/31", today=today) == date(2025, 3, 31)
    assert parse_end_date("Offer expires 12/31/26", today=today) == date(2026, 12, 31)
    assert parse_end_date("Valid until June 1, 2026", today=today) == date(2026, 6, 1)
    assert parse_end_date("Special ends March 15", today=today) == date(2025, 3, 15)
    assert parse_end_date("Offer expires 2/30/25", today=today) is None
    assert parse_end_date("Limited time only", today=today) is None


def test_target_floor_plans():
    assert target_floor_plans("Save $500 on 2 Bed and 3 bed homes") == ["2 bed", "3 bed"]
    assert target_floor_plans("Studio special: 1 month free") == ["studio"]
    assert target_floor_plans("Look and lease today") is None


def test_helpers():
    assert clean_text("  Two Months \n Free ") == "Two Months Free"
    assert clean_text(None) == ""
    assert looks_like_special("Look & lease within 48 hours")
    assert not looks_like_special("Schedule a tour")
    assert title_from_text("x" * 60) == "x" * 50 + "..."
    assert title_from_text("Short") == "Short"
    assert amenity_tags(["Resort-style pool", "24-hour fitness center", "Bark park for dogs", "Pool deck"]) == [
        "pool",
        "gym",
        "pet-friendly",
    ]
    assert parse_available_count("3 available") == 3
    assert parse_available_count("120 units available") == 50
    assert parse_available_count("Call us") == 1
