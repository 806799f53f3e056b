"""
Text extraction helpers shared by every provider spider.

All functions here work on short text fragments (floor plan card text, promo
banner text) and never raise on malformed input; they fall back to a
documented default instead.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date

DISCOUNT_TYPES = ("months_free", "reduced_rent", "waived_fees", "gift_card", "other")

regex_patterns: dict = {
    "bedrooms": r"(\d+)\s*(?:bed|br|bedroom)",
    "bathrooms": r"(\d+(?:\.\d+)?)\s*(?:bath|ba)",
    "range": r"(\d+)\s*[-–]\s*(\d+)",
    "sqft_single": r"(\d{3,4})",
    "rent_single": r"(\d{3,5})",
    "months_free": r"(\d+)\s*months?\s*free",
    "weeks_free": r"(\d+)\s*weeks?\s*free",
    "dollars": r"\$\s*([\d,]+)",
    "plan_code": r"\b([SABC])\d{1,2}\b",
    "available": r"(\d+)\s*(?:units?\s+)?available",
    "promo": r"free|off|waiv|special|deal|save|\$|concession|move.?in|look.*lease",
}
for key, pattern in regex_patterns.items():
    regex_patterns[key] = re.compile(pattern, re.IGNORECASE)

# Phrase families in priority order; the first family that matches wins.
DISCOUNT_PHRASES = [
    ("months_free", ["month free", "months free", "week free", "weeks free"]),
    ("reduced_rent", ["off rent", "reduced", "$ off", "save $"]),
    ("waived_fees", ["waived", "no fee", "free application", "no admin"]),
    ("gift_card", ["gift card", "visa", "amazon"]),
]

# Plan-letter prefixes used by Crescent-style codes (S1, A2, B1, C3)
PLAN_CODE_BEDROOMS = {"S": 0, "A": 1, "B": 2, "C": 3}

AMENITY_KEYWORDS = {
    "pool": ["pool"],
    "gym": ["gym", "fitness"],
    "parking": ["parking", "garage"],
    "pet-friendly": ["pet", "dog"],
    "in-unit-laundry": ["laundry", "washer"],
    "rooftop": ["roof"],
    "concierge": ["concierge", "doorman"],
}

MONTHS = [
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
]

_END_DATE_PREFIX = r"(?:move\s*in\s*by|expires?|ends?|valid\s+until|by|before|through)\s+"
END_DATE_SLASH = re.compile(
    _END_DATE_PREFIX + r"(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?", re.IGNORECASE
)
END_DATE_MONTH = re.compile(
    _END_DATE_PREFIX + r"(" + "|".join(MONTHS) + r")\s+(\d{1,2})(?:,?\s*(\d{4}))?",
    re.IGNORECASE,
)


def clean_text(text: str | None) -> str:
    """Normalize unicode whitespace and collapse runs of spaces."""
    if not text:
        return ""
    text = unicodedata.normalize("NFKC", text)
    return re.sub(r"\s+", " ", text).strip()


def parse_bedrooms(text: str | None, default: int | None = 1) -> int | None:
    """
    Parse a bedroom count from free text.

    "studio" anywhere in the text means 0, otherwise the number in front of
    bed/br/bedroom. Falls back to `default` (1 unless the caller wants to try
    another strategy, e.g. plan-code inference).
    """
    text = text or ""
    if "studio" in text.lower():
        return 0
    match = regex_patterns["bedrooms"].search(text)
    if match:
        return int(match.group(1))
    return default


def infer_bedrooms_from_plan_code(text: str | None) -> int | None:
    """
    Guess a bedroom count from a plan code such as S1, A2 or B1.

    This is a lossy, provider-specific heuristic: the letter prefix is only a
    naming convention on some sites and nothing on the page confirms it.
    Returns None when no plan code is present.
    """
    match = regex_patterns["plan_code"].search(text or "")
    if not match:
        return None
    return PLAN_CODE_BEDROOMS[match.group(1).upper()]


def parse_bathrooms(text: str | None) -> float:
    match = regex_patterns["bathrooms"].search(text or "")
    if match:
        return float(match.group(1))
    return 1.0


def _parse_range(text: str, single_pattern: re.Pattern) -> tuple[int, int] | None:
    range_match = regex_patterns["range"].search(text)
    if range_match:
        return int(range_match.group(1)), int(range_match.group(2))
    single_match = single_pattern.search(text)
    if single_match:
        value = int(single_match.group(1))
        return value, value
    return None


def parse_sqft(text: str | None) -> tuple[int | None, int | None]:
    """Parse "574 SF" or "650 - 850 SF" into (min, max); (None, None) if absent."""
    parsed = _parse_range((text or "").replace(",", ""), regex_patterns["sqft_single"])
    if parsed is None:
        return None, None
    return parsed


def parse_rent(text: str | None) -> tuple[int, int]:
    """
    Parse "$1,439" or "$1,500 - $1,800" into (min, max).

    Returns (0, 0) when nothing parses. Callers must treat a zero rent as
    "unknown", never as "free".
    """
    stripped = re.sub(r"[$,]", "", text or "")
    parsed = _parse_range(stripped, regex_patterns["rent_single"])
    if parsed is None:
        return 0, 0
    return parsed


def looks_like_special(text: str | None) -> bool:
    return bool(regex_patterns["promo"].search(text or ""))


def parse_discount_type(text: str | None, strict: bool = False) -> str | None:
    """
    Classify a promotion by the first matching phrase family.

    Non-strict callers always get a type ("other" as last resort). Strict
    callers get None when the text does not look promotional at all.
    """
    lower = (text or "").lower()
    for discount_type, phrases in DISCOUNT_PHRASES:
        if any(phrase in lower for phrase in phrases):
            return discount_type

    if strict and not re.search(r"free|off|special|deal|save|\$", lower):
        return None
    return "other"


def parse_discount_value(text: str | None, discount_type: str | None) -> float | None:
    """
    Months for months_free (weeks are divided by 4), otherwise the first
    dollar amount in the text.
    """
    text = text or ""
    match discount_type:
        case "months_free":
            months = regex_patterns["months_free"].search(text)
            if months:
                return float(months.group(1))
            weeks = regex_patterns["weeks_free"].search(text)
            if weeks:
                return float(weeks.group(1)) / 4
        case "reduced_rent" | "waived_fees" | "gift_card":
            # NOTE: takes the first dollar figure, even if a later one is the discount
            dollars = regex_patterns["dollars"].search(text)
            if dollars:
                amount = dollars.group(1).replace(",", "")
                if amount:
                    return float(amount)
    return None


def _build_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_end_date(text: str | None, today: date | None = None) -> date | None:
    """
    Find an expiry such as "expires 3/31", "ends March 31" or
    "valid until June 1, 2025". A missing year means the current year.
    """
    text = text or ""
    today = today or date.today()

    slash = END_DATE_SLASH.search(text)
    if slash:
        month, day, year = slash.groups()
        if year is None:
            year_value = today.year
        elif len(year) == 2:
            year_value = 2000 + int(year)
        else:
            year_value = int(year)
        parsed = _build_date(year_value, int(month), int(day))
        if parsed:
            return parsed

    named = END_DATE_MONTH.search(text)
    if named:
        month_name, day, year = named.groups()
        month = MONTHS.index(month_name.lower()) + 1
        return _build_date(int(year) if year else today.year, month, int(day))

    return None


def target_floor_plans(text: str | None) -> list[str] | None:
    """Floor plan mentions ("2 bed", "studio") in a promo; None means building-wide."""
    text = text or ""
    mentions = [m.group(0).lower() for m in regex_patterns["bedrooms"].finditer(text)]
    if not mentions:
        mentions = [m.lower() for m in re.findall(r"studio", text, re.IGNORECASE)]
    return mentions or None


def title_from_text(text: str, max_length: int = 50) -> str:
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


def amenity_tags(texts: list[str]) -> list[str]:
    """Map free-text amenity blurbs to normalized tags, preserving first-seen order."""
    tags: list[str] = []
    for text in texts:
        lower = text.lower()
        for tag, keywords in AMENITY_KEYWORDS.items():
            if tag not in tags and any(keyword in lower for keyword in keywords):
                tags.append(tag)
    return tags


def parse_available_count(text: str | None, cap: int = 50) -> int:
    """Count of available units on a card; 1 when unstated, capped to skip building totals."""
    match = regex_patterns["available"].search(text or "")
    if not match:
        return 1
    return min(int(match.group(1)), cap)
