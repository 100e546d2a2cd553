from decimal import Decimal
from typing import Iterable, Mapping, NamedTuple, Optional


class Band(NamedTuple):
    tier_id: Optional[int]
    name: str
    lower: Decimal
    upper: Decimal
    rate: Decimal


def classify_tier(value: Decimal, bands: Iterable[Band]) -> Optional[Band]:
    """
    First band (ascending by lower bound) with lower <= value < upper.
    Values outside every band get None: they are excluded, never clamped.
    """
    for band in sorted(bands, key=lambda b: b.lower):
        if band.lower <= value < band.upper:
            return band
    return None


def classify_level(value: Decimal, thresholds: Mapping[int, Decimal]) -> int:
    """Staircase: the highest level whose floor is <= value. Level 0 when none is reached."""
    matched = 0
    for level, floor in sorted(thresholds.items()):
        if floor <= value and level > matched:
            matched = level
    return matched


def next_level_threshold(level: int, thresholds: Mapping[int, Decimal]):
    """(next_level, floor) above `level`, or (None, None) at the top."""
    above = sorted((lvl, floor) for lvl, floor in thresholds.items() if lvl > level)
    if not above:
        return None, None
    return above[0]
