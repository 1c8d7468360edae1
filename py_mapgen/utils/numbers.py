"""Small numeric helpers shared by the generation stages."""

import math


def round_number(value: float, digits: int = 0) -> float:
    """Round half up, the way map coordinates and lake data are stored."""
    factor = 10 ** digits
    result = math.floor(value * factor + 0.5) / factor
    return int(result) if digits == 0 else result


def clamp(value, low, high):
    return min(max(value, low), high)


def normalize(value: float, low: float, high: float) -> float:
    """Map ``value`` into [0, 1] relative to ``low`` and ``high``."""
    if high == low:
        return 0.0
    return clamp((value - low) / (high - low), 0, 1)


def ease_poly_in_out(t: float, exponent: float = 3) -> float:
    """Symmetric polynomial easing over [0, 1]."""
    t *= 2
    if t <= 1:
        return t ** exponent / 2
    return (2 - (2 - t) ** exponent) / 2
