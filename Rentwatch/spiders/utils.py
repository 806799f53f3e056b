from __future__ import annotations

import json
import re
from collections import OrderedDict
from urllib.parse import urlparse

import usaddress

from Rentwatch.parsing import amenity_tags, clean_text

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scrapy.http import Response


PLATFORM_DOMAIN_MAP = {
    "crescentcommunities.com": "crescent_cms",
}

# Checked in order; the first platform with any marker wins
PLATFORM_MARKER_MAP = {
    "crescent_cms": {
        "css": ["a[href*='/floor-plans/']", "script[src*='knockDoorway']"],
        "text": ["/media/", "knockDoorway"],
    },
    "third_party": {
        "css": ["a[href*='/floorplans/']"],
        "text": ["/assets/images/"],
    },
}

FLOOR_PLANS_PATHS = {
    "crescent_cms": "/floor-plans/",
    "third_party": "/floorplans/",
}

ACCEPTED_SCHEMAS = [
    # Ordered by priority
    {"ApartmentComplex", "Apartment", "Residence", "Place", "LocalBusiness"},
    {"WebSite"},
]

STREET_ADDRESS_PARTS = [
    "AddressNumber",
    "StreetNamePreDirectional",
    "StreetName",
    "StreetNamePostType",
    "StreetNamePostDirectional",
    "OccupancyType",
    "OccupancyIdentifier",
]

PHOTO_HINTS = ["gallery", "photo", "hero", "property", "exterior"]
PHOTO_EXCLUDES = ["logo", "icon", "avatar"]


def classify_platform(response: Response) -> str:
    """
    Determine which site platform a community website runs on.
    """

    # 1. Use domain-based mapping
    hostname = urlparse(response.url).hostname
    for domain, platform in PLATFORM_DOMAIN_MAP.items():
        if hostname and domain in hostname:
            return platform

    # 2. Parse the page content for known markers
    for platform, markers in PLATFORM_MARKER_MAP.items():
        if any(response.css(marker).get() for marker in markers["css"]):
            return platform
        if any(needle in response.text for needle in markers["text"]):
            return platform

    return "unknown"


def floor_plans_path(platform: str | None) -> str:
    return FLOOR_PLANS_PATHS.get(platform or "", "/floor-plans/")


def join_path(base_url: str, path: str) -> str:
    """"https://x.com/" + "/floorplans/" -> "https://x.com/floorplans/"."""
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def get_schema_data(response: Response) -> dict:
    """First JSON-LD block of the highest-priority accepted type; malformed blocks are skipped."""
    metadata: dict = {}
    best_rank = len(ACCEPTED_SCHEMAS)

    for raw in response.css("script[type='application/ld+json']::text").getall():
        try:
            meta = json.loads(raw)
        except json.JSONDecodeError:
            continue

        for entry in meta if isinstance(meta, list) else [meta]:
            if not isinstance(entry, dict):
                continue
            schema_types = entry.get("@type")
            if schema_types is None:
                continue
            if isinstance(schema_types, str):
                schema_types = [schema_types]

            for rank, accepted_schema_set in enumerate(ACCEPTED_SCHEMAS):
                if rank < best_rank and any(schema in accepted_schema_set for schema in schema_types):
                    metadata = entry
                    best_rank = rank
                    break

    return metadata


def schema_identity(schema_data: dict) -> dict:
    """Building identity fields from a JSON-LD place."""
    identity: dict = {}

    address = schema_data.get("address")
    match address:
        case dict():
            identity["address"] = address.get("streetAddress")
            identity["city"] = address.get("addressLocality")
            identity["state"] = address.get("addressRegion")
            identity["zip_code"] = address.get("postalCode")
        case str():
            identity["address"] = address

    geo = schema_data.get("geo")
    if isinstance(geo, dict):
        try:
            identity["lat"] = float(geo.get("latitude"))
            identity["lng"] = float(geo.get("longitude"))
        except (TypeError, ValueError):
            pass

    if schema_data.get("telephone"):
        identity["phone"] = schema_data["telephone"]

    image = schema_data.get("image")
    if isinstance(image, list):
        image = image[0] if image else None
    if isinstance(image, dict):
        image = image.get("url")
    if image:
        identity["primary_photo_url"] = image

    if schema_data.get("name"):
        identity["name"] = clean_text(schema_data["name"])

    return {key: value for key, value in identity.items() if value}


def parse_address_lines(lines: list[str]) -> dict:
    """
    Compile an address from free-text lines with usaddress.

    The address may be split across lines, so every line is tagged and the
    first value seen for each component is kept.
    """
    collected_address: OrderedDict = OrderedDict()
    for text in lines:
        try:
            tagged_address, _ = usaddress.tag(text)
        except usaddress.RepeatedLabelError:
            continue
        for key, value in tagged_address.items():
            if key not in collected_address:
                collected_address[key] = value

    street_address_parts = [
        part for key, part in collected_address.items() if key in STREET_ADDRESS_PARTS
    ]

    return {
        "address": " ".join(street_address_parts) or None,
        "city": collected_address.get("PlaceName"),
        "state": collected_address.get("StateName"),
        "zip_code": collected_address.get("ZipCode"),
    }


def dom_identity(response: Response) -> dict:
    """Identity fallback when JSON-LD is missing: address block, phone link, amenity blurbs, photos."""
    identity: dict = {}

    address_lines = [
        clean_text(text)
        for text in response.css(
            "address ::text, .address ::text, [class*=address] ::text, [itemtype*=PostalAddress] ::text"
        ).getall()
        if clean_text(text)
    ]
    # Deduplicate lines while preserving order
    address_lines = list(dict.fromkeys(address_lines))
    if address_lines:
        identity.update({k: v for k, v in parse_address_lines(address_lines).items() if v})

    phone = response.css("a[href^='tel:']::attr(href)").get()
    if phone:
        identity["phone"] = phone.removeprefix("tel:").strip()

    amenity_texts = response.css("[class*=amenity] ::text, [class*=feature] ::text").getall()
    identity["amenities"] = amenity_tags([text for text in amenity_texts if text.strip()])

    photos = []
    for src in response.css("img::attr(src), img::attr(data-src)").getall():
        lower = src.lower()
        if any(hint in lower for hint in PHOTO_HINTS) and not any(bad in lower for bad in PHOTO_EXCLUDES):
            photos.append(response.urljoin(src))
    identity["photos"] = list(dict.fromkeys(photos))[:10]

    return identity


def name_from_title(response: Response, noise: list[str] | None = None) -> str | None:
    """Property name from the <title>, dropping the "| site" suffix and trailing boilerplate."""
    title = clean_text(response.css("title::text").get())
    if not title:
        return None
    name = re.sub(r"\s*\|.*$", "", title)
    name = re.sub(r"Apartments.*$", "", name, flags=re.IGNORECASE)
    name = re.sub(r"Floor Plans.*$", "", name, flags=re.IGNORECASE)
    for word in noise or []:
        name = re.sub(rf"{word}\s*", "", name, flags=re.IGNORECASE)
    return name.strip(" -") or None
