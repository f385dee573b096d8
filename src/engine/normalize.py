"""
Coordinate normalization and cache key derivation.
"""

import math
from decimal import Decimal

from shared.constants import DEFAULT_KEY_PRECISION


def round_coordinate(n: float, precision: int = DEFAULT_KEY_PRECISION) -> float:
    """
    Round half away from zero to `precision` decimal digits.

    Works on the scaled integer (n * 10^precision) so the result only carries
    ordinary IEEE-754 error, never string truncation artifacts.
    - round_coordinate(1.25, 1) -> 1.3
    - round_coordinate(-1.25, 1) -> -1.3
    """
    scale = 10 ** precision
    scaled = math.floor(abs(n) * scale + 0.5)
    return math.copysign(scaled / scale, n) if scaled else 0.0


def format_coordinate(n: float, precision: int = DEFAULT_KEY_PRECISION) -> str:
    """Fixed decimal text of an already rounded value: no exponent, no trailing zeros."""
    text = f"{n:.{precision}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def format_plain(n: float) -> str:
    """
    Full-precision decimal text without an exponent, for provider query strings.
    - format_plain(0.00001) -> "0.00001"  (str() would give "1e-05")
    - format_plain(-74.0) -> "-74"
    """
    text = format(Decimal(repr(n)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def key_for(lat: float, lon: float, precision: int = DEFAULT_KEY_PRECISION) -> str:
    """
    Canonical cache key "{lat}:{lon}" for the rounded coordinate.

    Points closer than the rounding step share one key on purpose.
    """
    return (
        f"{format_coordinate(round_coordinate(lat, precision), precision)}"
        f":{format_coordinate(round_coordinate(lon, precision), precision)}"
    )
