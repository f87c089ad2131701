"""Bike frame-size recommendations.

Three independent lookup tables drive a recommendation:

* per-discipline frame sizes,
* display labels for the rider's height range,
* per-discipline recommendation text.

Each table is a literal list of half-open ``[lo, hi)`` height intervals
in centimetres. The first interval is unbounded below and the last is
unbounded above, so the fallback entries only apply to values that
compare false against every bound (NaN). The tables do not share
boundaries and none is derived from another.
"""

from math import inf
from typing import NamedTuple, Sequence, Tuple

from .models import BikeType

MIN_HEIGHT_CM = 50
MAX_HEIGHT_CM = 250

Bucket = Tuple[float, float, str]


class SizeRecommendation(NamedTuple):
    frame_size: str
    height_range: str
    recommendation: str


FRAME_SIZES: dict[BikeType, Sequence[Bucket]] = {
    BikeType.MTB: (
        (-inf, 150, 'XS (13-14")'),
        (150, 160, 'S (15-16")'),
        (160, 170, 'M (17-18")'),
        (170, 180, 'L (19-20")'),
        (180, 190, 'XL (21-22")'),
        (190, inf, 'XXL (23"+)'),
    ),
    BikeType.BMX_FREESTYLE: (
        (-inf, 120, 'Micro (12" or smaller)'),
        (120, 135, 'Mini (16")'),
        (135, 150, 'Junior (18")'),
        (150, 165, 'Expert (20")'),
        (165, 175, 'Pro (20.5")'),
        (175, 185, 'Pro XL (21")'),
        (185, inf, 'Pro XXL (21.5" or larger)'),
    ),
    BikeType.BMX_RACING: (
        (-inf, 120, 'Micro (12" or smaller)'),
        (120, 130, 'Mini (14-16")'),
        (130, 145, 'Junior (17-18")'),
        (145, 160, 'Expert (19-20")'),
        (160, 170, 'Pro (20.5-21")'),
        (170, 180, 'Pro XL (21-21.5")'),
        (180, inf, 'Pro XXL (21.75" or larger)'),
    ),
}

FRAME_SIZE_FALLBACK: dict[BikeType, str] = {
    BikeType.MTB: 'M (17-18")',
    BikeType.BMX_FREESTYLE: 'Expert (20")',
    BikeType.BMX_RACING: 'Expert (19-20")',
}

HEIGHT_RANGES: Sequence[Bucket] = (
    (-inf, 120, "Under 120cm"),
    (120, 135, "120-135cm"),
    (135, 150, "135-150cm"),
    (150, 165, "150-165cm"),
    (165, 175, "165-175cm"),
    (175, 185, "175-185cm"),
    (185, inf, "185cm+"),
)

HEIGHT_RANGE_FALLBACK = "Standard"

RECOMMENDATIONS: dict[BikeType, Sequence[Bucket]] = {
    BikeType.MTB: (
        (-inf, 150, "Perfect for smaller riders or youth mountain biking"),
        (150, 160, "Great for agile trail riding and technical sections"),
        (160, 170, "Ideal medium size for most trail and cross-country riding"),
        (170, 180, "Perfect for aggressive trail riding and all-mountain use"),
        (180, 190, "Excellent for tall riders seeking stability and control"),
        (190, inf, "Optimal for very tall riders, providing maximum comfort"),
    ),
    BikeType.BMX_FREESTYLE: (
        (-inf, 120, "Perfect for young kids just starting BMX freestyle"),
        (120, 135, "Great for children learning tricks and park basics"),
        (135, 150, "Ideal for young riders developing freestyle skills"),
        (150, 165, "Standard freestyle size for most park riders"),
        (165, 175, "Pro size for experienced freestyle riders"),
        (175, 185, "Large frame for tall freestyle riders"),
        (185, inf, "Extra large frame for very tall freestyle riders"),
    ),
    BikeType.BMX_RACING: (
        (-inf, 120, "Perfect for young racers starting their BMX racing journey"),
        (120, 130, "Great for kids learning racing techniques"),
        (130, 145, "Ideal for junior racers developing speed skills"),
        (145, 160, "Optimized for competitive youth racing"),
        (160, 170, "Professional racing size for speed and agility"),
        (170, 180, "Pro racing frame for tall competitive riders"),
        (180, inf, "Maximum performance for very tall racers"),
    ),
}

RECOMMENDATION_FALLBACK = "Recommended size based on your height"


def _lookup(table: Sequence[Bucket], height: float, fallback: str) -> str:
    for lo, hi, label in table:
        if lo <= height < hi:
            return label
    return fallback


def frame_size(height: float, bike_type: BikeType) -> str:
    """Return the frame-size label for ``height`` in the given discipline."""
    bike_type = BikeType(bike_type)
    return _lookup(FRAME_SIZES[bike_type], height, FRAME_SIZE_FALLBACK[bike_type])


def height_range(height: float) -> str:
    """Return the display label for the rider's height bracket."""
    return _lookup(HEIGHT_RANGES, height, HEIGHT_RANGE_FALLBACK)


def recommendation_text(height: float, bike_type: BikeType) -> str:
    bike_type = BikeType(bike_type)
    return _lookup(RECOMMENDATIONS[bike_type], height, RECOMMENDATION_FALLBACK)


def classify(height: float, bike_type: BikeType) -> SizeRecommendation:
    """
    Classify a rider for a discipline.

    Heights are expected to be validated against
    ``MIN_HEIGHT_CM``/``MAX_HEIGHT_CM`` by the caller.

    Args:
        height (float): Rider height in centimetres.
        bike_type (BikeType): Riding discipline.

    Returns:
        SizeRecommendation: Frame size, height-range label and text.
    """
    return SizeRecommendation(
        frame_size=frame_size(height, bike_type),
        height_range=height_range(height),
        recommendation=recommendation_text(height, bike_type),
    )
