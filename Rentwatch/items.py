# Define here the models for your scraped items
#
# See documentation in:
# https://docs.scrapy.org/en/latest/topics/items.html

from scrapy import Item, Field


class PropertyItem(Item):
    """A property found on a portfolio or market index page."""

    # Metadata
    provider = Field()
    status = Field()
    platform = Field()

    # Identifiers
    property_name = Field()
    url = Field()
    floor_plans_url = Field()

    # Location
    address = Field()
    city = Field()
    state = Field()


class FloorPlanItem(Item):
    name = Field()
    bedrooms = Field()  # 0 for studio
    bathrooms = Field()
    sqft_min = Field()
    sqft_max = Field()
    rent_min = Field()  # 0 means the rent could not be parsed
    rent_max = Field()
    available_count = Field()
    photo_url = Field()


class SpecialItem(Item):
    title = Field()
    description = Field()
    discount_type = Field()
    discount_value = Field()  # Dollar amount or number of months
    conditions = Field()
    start_date = Field()
    end_date = Field()
    raw_html = Field()
    # None means the special applies to the whole building
    target_floor_plan_names = Field()


class BuildingItem(Item):
    # Metadata
    scraped_at = Field()
    provider = Field()

    # Identifiers
    name = Field()
    listing_url = Field()
    floorplans_url = Field()
    website = Field()

    # Location
    address = Field()
    city = Field()
    state = Field()
    zip_code = Field()
    lat = Field()
    lng = Field()

    # Contact & media
    phone = Field()
    primary_photo_url = Field()
    photos = Field()

    # Features
    amenities = Field()
    pet_policy = Field()
    parking_type = Field()
    year_built = Field()
    total_units = Field()

    # Owned collections
    floor_plans = Field()
    specials = Field()
