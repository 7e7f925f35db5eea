"""
Cache duration parsing.

Accepts integer seconds, a small set of keywords and simple natural language
phrases such as ``"2 hours"``, ``"1.5 days"`` or ``"a week and 3 days"``.
"""

import logging
import re
from typing import Dict, Union

from imgforge.constants.constants import NO_CACHE, PERPETUAL_CACHE
from imgforge.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

SPECIAL_VALUES: Dict[str, int] = {
    "forever": PERPETUAL_CACHE,
    "never expire": PERPETUAL_CACHE,
    "permanent": PERPETUAL_CACHE,
    "perpetual": PERPETUAL_CACHE,
    "never": NO_CACHE,
    "disabled": NO_CACHE,
    "no cache": NO_CACHE,
    "no caching": NO_CACHE,
    "off": NO_CACHE,
    "daily": 86400,
    "weekly": 604800,
    "monthly": 2592000,
}

UNIT_SECONDS: Dict[str, int] = {
    "s": 1, "sec": 1, "second": 1,
    "m": 60, "min": 60, "minute": 60,
    "h": 3600, "hr": 3600, "hour": 3600,
    "d": 86400, "day": 86400,
    "w": 604800, "week": 604800,
    "month": 2592000,
    "y": 31536000, "year": 31536000,
}

_TERM = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]+)")


def parse_duration(value: Union[str, int]) -> int:
    """
    Parse a cache duration into seconds.

    Args:
        value: Integer seconds, a keyword or a phrase

    Returns:
        Seconds; -1 means never expire and 0 means do not cache

    Raises:
        ValidationError: If the value cannot be parsed or is below -1
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid cache duration: {value!r}")
    if isinstance(value, int):
        return _check_range(value)

    text = str(value).strip().lower()
    if not text:
        raise ValidationError("Duration cannot be empty")
    if text in SPECIAL_VALUES:
        return SPECIAL_VALUES[text]
    if re.fullmatch(r"-?\d+", text):
        return _check_range(int(text))

    normalized = re.sub(r"\b(an?|one|every|each)\s+", "1 ", text)
    normalized = re.sub(r"\bhalf\s+1\s+", "0.5 ", normalized)
    normalized = normalized.replace(" and ", " ").replace(",", " ")

    total = 0.0
    consumed = 0
    for match in _TERM.finditer(normalized):
        amount, unit = match.groups()
        seconds = UNIT_SECONDS.get(unit.rstrip("s") if unit not in UNIT_SECONDS else unit)
        if seconds is None:
            raise ValidationError(f"Unknown duration unit '{unit}' in {value!r}")
        total += float(amount) * seconds
        consumed += 1

    if consumed == 0:
        raise ValidationError(f"Unable to parse duration {value!r}")
    logger.debug(f"Parsed duration {value!r} as {int(total)}s")
    return int(round(total))


def _check_range(seconds: int) -> int:
    if seconds < PERPETUAL_CACHE:
        raise ValidationError(
            "Duration must be -1 (permanent), 0 (disabled), or positive seconds"
        )
    return seconds
