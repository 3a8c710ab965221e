"""Shared text-processing utilities.

Pure functions with no domain dependencies — safe to import from any
layer (adapters, pipeline, API).
"""

from __future__ import annotations

import re

# First number in the text, thousands separators included
_NUMBER = re.compile(r"\d[\d,]*(?:\.\d+)?")


def parse_amount(text: str | int | float | None) -> int | None:
    """Parse a display amount (price or mileage) into a whole number.

    Currency symbols, thousands separators, units and surrounding text are
    discarded.  Returns ``None`` when no digits are present.

    >>> parse_amount("£12,495")
    12495
    >>> parse_amount("34,120 miles")
    34120
    """
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return int(text)
    match = _NUMBER.search(text)
    if match is None:
        return None
    return int(float(match.group().replace(",", "")))


def collapse_whitespace(text: str | None) -> str:
    """Strip *text* and collapse internal whitespace runs to one space."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def title_case_word(text: str | None) -> str:
    """Capitalise the first letter and lowercase the rest (``"SILVER"`` -> ``"Silver"``)."""
    if not text:
        return ""
    return text[:1].upper() + text[1:].lower()
