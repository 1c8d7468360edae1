"""
Random draw helpers built on a seeded generator.

Every helper takes the generator explicitly so that one instance threads
through the whole pipeline. Python's ``random`` and NumPy's random module
are never used: a map must be reproducible from its seed alone.
"""

import math
from typing import Sequence, Tuple, Union

NumberOrRange = Union[float, int, Tuple[float, float]]


def probability(prng, chance: float) -> bool:
    """Return True with the given probability (0..1)."""
    if chance >= 1:
        return True
    if chance <= 0:
        return False
    return prng.random() < chance


def rand(prng, low: float, high: float) -> float:
    """Uniform integer step in the inclusive range [low, high].

    Integral bounds give an integer; a fractional lower bound shifts the
    result by the same fraction.
    """
    if high < low:
        return low
    return int(prng.random() * (high - low + 1)) + low


def get_number_in_range(prng, value: NumberOrRange) -> int:
    """Resolve a fixed number or a (low, high) span to an integer.

    A fixed fractional number rounds up with probability equal to its
    fractional part, e.g. ``1.5`` yields 1 or 2 with equal odds.
    """
    if isinstance(value, tuple):
        low, high = value
        return int(rand(prng, low, high))

    base = int(math.floor(value))
    return base + (1 if probability(prng, value - base) else 0)


def get_point_in_range(prng, span: Tuple[float, float], length: float) -> int:
    """Pick a coordinate inside a percentage span of a canvas dimension."""
    low, high = span
    return rand(prng, low / 100 * length, high / 100 * length)


def gauss(prng, expected: float = 100, deviation: float = 30,
          minimum: float = 0, maximum: float = 300, digits: int = 0) -> float:
    """Normally distributed draw, clamped and rounded.

    Uses the Marsaglia polar method so that it only consumes uniform
    draws from ``prng``.
    """
    while True:
        x = prng.random() * 2 - 1
        y = prng.random() * 2 - 1
        r = x * x + y * y
        if 0 < r < 1:
            break
    value = expected + deviation * y * math.sqrt(-2 * math.log(r) / r)
    value = min(max(value, minimum), maximum)
    return round(value, digits) if digits else float(round(value))


def weighted_index(prng, weights: Sequence[float]) -> int:
    """Pick an index with probability proportional to its weight."""
    total = sum(weights)
    if total <= 0:
        raise ValueError("weights must sum to a positive number")
    target = prng.random() * total
    acc = 0.0
    for i, weight in enumerate(weights):
        acc += weight
        if target < acc:
            return i
    return len(weights) - 1
