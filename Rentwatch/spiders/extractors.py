"""
Ordered extraction strategies for floor plans and specials.

Each provider spider lists the strategies that fit its sites; the first one
that returns a non-empty result wins.
"""

from __future__ import annotations

import html
import json
import logging
import re

from scrapy import Selector

from Rentwatch.items import FloorPlanItem, SpecialItem
from Rentwatch.parsing import (
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

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from scrapy.http import Response


logger = logging.getLogger(__name__)

CARD_SQFT = re.compile(r"(\d[\d,]{2,4}(?:\s*[-–]\s*\d[\d,]{2,4})?)\s*(?:sq|sf)", re.IGNORECASE)
CARD_RENT = re.compile(r"\$[\d,]+(?:\s*[-–]\s*\$[\d,]+)?")
CARD_BEDROOM_TOKEN = re.compile(r"\d+\s*bed|studio", re.IGNORECASE)
CARD_PLAN_CODE = re.compile(r"\b([A-Z]\d{1,2})\b")

DEFAULT_NAME_SELECTOR = "h2, h3, h4, .name, [class*=name], .title"


def node_text(selector: Selector) -> str:
    return clean_text(" ".join(selector.css("::text").getall()))


def parse_floor_plan_card(
    card: Selector,
    name_selector: str = DEFAULT_NAME_SELECTOR,
    infer_plan_codes: bool = False,
) -> FloorPlanItem | None:
    """
    Turn one floor plan card into an item. Cards without a price are not
    floor plans and yield None.
    """
    text = node_text(card)
    rent_match = CARD_RENT.search(text)
    if not rent_match:
        return None

    name = None
    name_node = card.css(name_selector)
    if name_node:
        name = node_text(name_node[0]) or None
    if name is None and infer_plan_codes:
        code = CARD_PLAN_CODE.search(text)
        if code:
            name = code.group(1)

    bedrooms = parse_bedrooms(text, default=None)
    if bedrooms is None and infer_plan_codes:
        bedrooms = infer_bedrooms_from_plan_code(name)
    if bedrooms is None:
        bedrooms = 1

    sqft_match = CARD_SQFT.search(text)
    sqft_min, sqft_max = parse_sqft(sqft_match.group(1) if sqft_match else None)
    rent_min, rent_max = parse_rent(rent_match.group(0))

    image = card.css("img::attr(src)").get() or card.css("img::attr(data-src)").get()

    return FloorPlanItem(
        name=name,
        bedrooms=bedrooms,
        bathrooms=parse_bathrooms(text),
        sqft_min=sqft_min,
        sqft_max=sqft_max,
        rent_min=rent_min,
        rent_max=rent_max,
        available_count=parse_available_count(text),
        photo_url=image,
    )


class FloorPlanExtractor:
    name: str = "base"

    def extract(self, response: Response) -> list[FloorPlanItem]:
        raise NotImplementedError("Subclasses must implement the extract method.")


def _json_bound(value, parser, index: int) -> int | None:
    """A numeric JSON value as-is, a string one through the text parser."""
    match value:
        case None | bool():
            return None
        case int() | float():
            return int(value)
        case str():
            return parser(value)[index]
        case _:
            raise ValueError(f"unexpected value {value!r}")


class EmbeddedJsonExtractor(FloorPlanExtractor):
    """
    Floor plans serialized into the page by the site's front-end framework.

    Field values arrive as numbers or display strings ("$1,500", "650 sq ft")
    depending on the site. Entries that cannot be converted are skipped; a
    pattern with no usable entries falls through to the next one.
    """

    name = "embedded_json"
    patterns = [
        re.compile(r"window\.__INITIAL_STATE__\s*=\s*({[\s\S]*?});"),
        re.compile(r'"floorplans"\s*:\s*(\[[\s\S]*?\])'),
        re.compile(r"data-floorplans=['\"]([\s\S]*?)['\"]", re.IGNORECASE),
    ]

    def extract(self, response: Response) -> list[FloorPlanItem]:
        for pattern in self.patterns:
            found = pattern.search(response.text)
            if not found:
                continue
            try:
                data = json.loads(html.unescape(found.group(1)))
            except json.JSONDecodeError:
                logger.debug(f"Embedded JSON did not parse for pattern {pattern.pattern}")
                continue

            match data:
                case list():
                    entries = data
                case dict():
                    entries = data.get("floorplans") or []
                case _:
                    entries = []

            floor_plans = []
            for entry in entries:
                if not isinstance(entry, dict):
                    continue
                try:
                    floor_plans.append(self._from_entry(entry))
                except (TypeError, ValueError) as e:
                    logger.debug(f"Skipping embedded floor plan {entry.get('name')!r}: {e}")
            if floor_plans:
                return floor_plans

        return []

    @staticmethod
    def _from_entry(entry: dict) -> FloorPlanItem:
        beds = entry.get("beds", entry.get("bedrooms"))
        baths = entry.get("baths", entry.get("bathrooms"))
        sqft = entry.get("sqft")
        rent = entry.get("rent")
        available = entry.get("availableCount") or entry.get("available")

        match beds:
            case int():
                bedrooms = beds
            case _:
                bedrooms = parse_bedrooms(f"{beds} bed" if str(beds or "").isdigit() else str(beds or ""))
        match baths:
            case int() | float():
                bathrooms = float(baths)
            case _:
                bathrooms = parse_bathrooms(f"{baths} bath" if baths else "")
        if isinstance(available, str):
            available = parse_available_count(f"{available} available")

        return FloorPlanItem(
            name=entry.get("name") or entry.get("title") or entry.get("floorplanName"),
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            sqft_min=_json_bound(entry.get("sqftMin") or entry.get("minSqft") or sqft, parse_sqft, 0),
            sqft_max=_json_bound(entry.get("sqftMax") or entry.get("maxSqft") or sqft, parse_sqft, 1),
            rent_min=_json_bound(entry.get("rentMin") or entry.get("minRent") or rent, parse_rent, 0) or 0,
            rent_max=_json_bound(entry.get("rentMax") or entry.get("maxRent") or rent, parse_rent, 1) or 0,
            available_count=min(int(available or 1), 50),
            photo_url=entry.get("image") or entry.get("floorplanImage") or entry.get("imageUrl"),
        )


class CardSelectorExtractor(FloorPlanExtractor):
    """Provider-specific card selectors; the first selector that matches anything is used."""

    name = "card_selectors"

    def __init__(
        self,
        selectors: list[str],
        name_selector: str = DEFAULT_NAME_SELECTOR,
        infer_plan_codes: bool = False,
    ):
        self.selectors = selectors
        self.name_selector = name_selector
        self.infer_plan_codes = infer_plan_codes

    def extract(self, response: Response) -> list[FloorPlanItem]:
        for selector in self.selectors:
            cards = response.css(selector)
            if not cards:
                continue
            logger.debug(f"Found {len(cards)} card(s) with selector {selector}")
            return self._parse_cards(cards)
        return []

    def _parse_cards(self, cards: Iterable[Selector]) -> list[FloorPlanItem]:
        floor_plans = []
        for card in cards:
            floor_plan = parse_floor_plan_card(card, self.name_selector, self.infer_plan_codes)
            if floor_plan is not None:
                floor_plans.append(floor_plan)
        return floor_plans


class TextPatternExtractor(CardSelectorExtractor):
    """
    Generic content sniffing: any innermost block whose text carries a
    bedroom token and a price is treated as a card.
    """

    name = "text_pattern"
    xpath = "//div | //article | //section | //li"

    def __init__(self, max_length: int = 2000, **kwargs):
        super().__init__(selectors=[], **kwargs)
        self.max_length = max_length

    def _looks_like_card(self, text: str) -> bool:
        return (
            bool(CARD_BEDROOM_TOKEN.search(text))
            and bool(CARD_RENT.search(text))
            and len(text) < self.max_length
        )

    def extract(self, response: Response) -> list[FloorPlanItem]:
        candidates = [node for node in response.xpath(self.xpath) if self._looks_like_card(node_text(node))]
        roots = {node.root for node in candidates}
        innermost = [
            node
            for node in candidates
            if not any(descendant in roots for descendant in node.root.iterdescendants())
        ]
        return self._parse_cards(innermost)


def build_special(
    description: str,
    raw_html: str | None,
    title: str | None = None,
    title_length: int = 50,
    with_targets: bool = True,
) -> SpecialItem:
    discount_type = parse_discount_type(description)
    return SpecialItem(
        title=title or title_from_text(description, title_length),
        description=description,
        discount_type=discount_type,
        discount_value=parse_discount_value(description, discount_type),
        conditions=None,
        start_date=None,
        end_date=parse_end_date(description),
        raw_html=raw_html,
        target_floor_plan_names=target_floor_plans(description) if with_targets else None,
    )


class SpecialSelectorExtractor:
    """Promotional containers matched by CSS, deduplicated by description."""

    name = "special_selectors"
    title_selector = "h1, h2, h3, h4, .title, .heading, strong, [class*=title]"

    def __init__(
        self,
        selectors: list[str],
        min_length: int = 10,
        max_length: int | None = None,
        require_promo: bool = True,
        title_selector: str | None = None,
    ):
        self.selectors = selectors
        self.min_length = min_length
        self.max_length = max_length
        self.require_promo = require_promo
        if title_selector is not None:
            self.title_selector = title_selector

    def _accepts(self, text: str) -> bool:
        if len(text) < self.min_length:
            return False
        if self.max_length is not None and len(text) >= self.max_length:
            return False
        return looks_like_special(text) or not self.require_promo

    def _is_duplicate(self, text: str, seen: list[str]) -> bool:
        return text in seen

    def _title(self, node: Selector) -> str | None:
        title_node = node.css(self.title_selector)
        if title_node:
            return node_text(title_node[0]) or None
        return None

    def _build(self, node: Selector, text: str) -> SpecialItem:
        return build_special(text, node.get(), title=self._title(node))

    def extract(self, response: Response) -> list[SpecialItem]:
        specials: list[SpecialItem] = []
        seen: list[str] = []
        for selector in self.selectors:
            for node in response.css(selector):
                text = node_text(node)
                if not self._accepts(text) or self._is_duplicate(text, seen):
                    continue
                seen.append(text)
                specials.append(self._build(node, text))
        return specials


def first_non_empty(extractors: Iterable, response: Response) -> list:
    for extractor in extractors:
        results = extractor.extract(response)
        if results:
            logger.debug(f"{extractor.name} extracted {len(results)} result(s) from {response.url}")
            return results
    return []
