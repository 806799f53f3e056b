"""
Fuzzy matching of discovered properties against existing catalog buildings.
"""

from __future__ import annotations

import re

STREET_ABBREVIATIONS = {
    "street": "st",
    "avenue": "ave",
    "boulevard": "blvd",
    "drive": "dr",
    "road": "rd",
    "lane": "ln",
    "court": "ct",
    "parkway": "pkwy",
    "north": "n",
    "south": "s",
    "east": "e",
    "west": "w",
}

NAME_NOISE = [
    r"apartments?",
    r"a broadstone community",
    r"townhomes?",
    r"\bat\b",
    r"\bthe\b",
]


def normalize_address(address: str) -> str:
    normalized = re.sub(r"[.,#]", "", address.lower())
    for long_form, short_form in STREET_ABBREVIATIONS.items():
        normalized = re.sub(rf"\b{long_form}\b", short_form, normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def normalize_name(name: str) -> str:
    normalized = name.lower()
    for pattern in NAME_NOISE:
        normalized = re.sub(pattern, "", normalized)
    normalized = re.sub(r"[.,\-()]", "", normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def addresses_match(first: str, second: str) -> bool:
    """Same street number and overlapping leading street words."""
    a, b = normalize_address(first), normalize_address(second)
    if a == b:
        return True

    number_a = re.match(r"^(\d+)", a)
    number_b = re.match(r"^(\d+)", b)
    if not (number_a and number_b) or number_a.group(1) != number_b.group(1):
        return False

    street_a = " ".join(re.sub(r"^\d+\s*", "", a).split()[:2])
    street_b = " ".join(re.sub(r"^\d+\s*", "", b).split()[:2])
    return street_a == street_b or street_a in street_b or street_b in street_a


def names_match(first: str, second: str) -> bool:
    """Containment, or at least half of the shorter name's significant words shared."""
    a, b = normalize_name(first), normalize_name(second)
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True

    words_a = {word for word in a.split() if len(word) > 2}
    words_b = {word for word in b.split() if len(word) > 2}
    shortest = min(len(words_a), len(words_b))
    return shortest > 0 and len(words_a & words_b) >= shortest * 0.5


def name_from_slug(slug: str, prefix: str = "") -> str:
    """"camden-south-end-apartments" -> "Camden South End"."""
    slug = re.sub(r"-charlotte-nc.*$", "", slug)
    slug = re.sub(r"-(?:apartments?|townhomes?)$", "", slug)
    words = [word.capitalize() for word in slug.split("-") if word]
    return " ".join([prefix, *words] if prefix else words)
