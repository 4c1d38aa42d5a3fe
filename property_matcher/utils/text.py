"""Text helpers for place-name comparison and display formatting."""

import re
import unicodedata
from typing import Optional, Union

Number = Union[int, float]


def normalize_place(text: Optional[str]) -> str:
    """Normalize a place name for case- and accent-insensitive comparison.

    Steps:
    1. Decompose accented characters and drop combining marks
    2. Casefold
    3. Collapse whitespace and strip

    Args:
        text: Place name (city, district, address or free-text location)

    Returns:
        Normalized string ("" for None or blank input)

    Example:
        >>> normalize_place("  Óbidos ")
        'obidos'
    """
    if not text:
        return ""

    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped.casefold()).strip()


def format_amount(value: Optional[Number]) -> str:
    """Format a price or area with thousands separators.

    Whole values are printed without decimals.

    Example:
        >>> format_amount(290000)
        '290,000'
        >>> format_amount(72.5)
        '72.5'
    """
    if value is None:
        return "n/a"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.1f}"


def truncate_text(text: str, max_length: int = 300, suffix: str = "...") -> str:
    """Truncate text to a maximum length, preferring a word boundary.

    Args:
        text: Text to truncate
        max_length: Maximum length of the returned string including suffix
        suffix: Marker appended to truncated text

    Returns:
        Original text if short enough, otherwise a truncated copy
    """
    if not text or len(text) <= max_length:
        return text

    cut = text[: max_length - len(suffix)]
    last_space = cut.rfind(" ")
    if last_space > max_length // 2:
        cut = cut[:last_space]
    return cut.rstrip() + suffix
