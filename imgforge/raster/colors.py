"""
Colour string parsing.

Colours are represented as RGBA tuples of ints in 0..255. Accepted inputs:
``#rgb``, ``#rrggbb``, ``#rrggbbaa`` (with or without the leading ``#``),
``rgb(r, g, b)``, ``rgba(r, g, b, a)`` where ``a`` is 0..1 or 0..255, and a
small table of names.
"""

import re
from typing import Optional, Sequence, Tuple

from imgforge.core.exceptions import ValidationError

RGBA = Tuple[int, int, int, int]

NAMED_COLORS = {
    "white": (255, 255, 255, 255),
    "black": (0, 0, 0, 255),
    "red": (255, 0, 0, 255),
    "green": (0, 128, 0, 255),
    "lime": (0, 255, 0, 255),
    "blue": (0, 0, 255, 255),
    "yellow": (255, 255, 0, 255),
    "cyan": (0, 255, 255, 255),
    "magenta": (255, 0, 255, 255),
    "gray": (128, 128, 128, 255),
    "grey": (128, 128, 128, 255),
    "transparent": (0, 0, 0, 0),
}

_RGB_FUNC = re.compile(
    r"^rgba?\s*\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*(?:,\s*([\d.]+)\s*)?\)$"
)
_HEX = re.compile(r"^[0-9a-f]+$")


def parse_color(value: str, default: Optional[RGBA] = None) -> RGBA:
    """
    Parse a colour string into an RGBA tuple.

    Args:
        value: Colour string
        default: Returned when the string is empty or invalid; when None an
            invalid string raises

    Raises:
        ValidationError: If the colour is invalid and no default is given
    """
    text = str(value or "").strip().lower()
    if not text:
        return _fail_or_default(value, default)

    if text in NAMED_COLORS:
        return NAMED_COLORS[text]

    match = _RGB_FUNC.match(text)
    if match:
        r, g, b = (min(255, int(c)) for c in match.groups()[:3])
        alpha = match.group(4)
        a = 255
        if alpha is not None:
            number = float(alpha)
            a = int(round(number * 255)) if number <= 1.0 else int(min(255, number))
        return (r, g, b, a)

    hex_part = text[1:] if text.startswith("#") else text
    if _HEX.match(hex_part):
        if len(hex_part) == 3:
            hex_part = "".join(ch * 2 for ch in hex_part)
        if len(hex_part) == 6:
            hex_part += "ff"
        if len(hex_part) == 8:
            return tuple(int(hex_part[i:i + 2], 16) for i in range(0, 8, 2))

    return _fail_or_default(value, default)


def _fail_or_default(value: str, default: Optional[RGBA]) -> RGBA:
    if default is None:
        raise ValidationError(f"Invalid colour: {value!r}")
    return default


def to_hex(color: Sequence[int]) -> str:
    """Format an RGB(A) tuple as #rrggbb."""
    return "#{:02x}{:02x}{:02x}".format(*[int(c) for c in color[:3]])
