"""Bounding-box geometry for normalized shield rectangles.

All inputs are :class:`NormalizedBBox` values, so every function here is
total: no negative sizes, no out-of-page coordinates.
"""

from __future__ import annotations

from models.schemas import NormalizedBBox


def intersection_area(a: NormalizedBBox, b: NormalizedBBox) -> float:
    """Return the area of intersection between two boxes (0 if disjoint or touching)."""
    ix0 = max(a.x, b.x)
    iy0 = max(a.y, b.y)
    ix1 = min(a.x1, b.x1)
    iy1 = min(a.y1, b.y1)
    if ix1 <= ix0 or iy1 <= iy0:
        return 0.0
    return (ix1 - ix0) * (iy1 - iy0)


def iou(a: NormalizedBBox, b: NormalizedBBox) -> float:
    """Intersection over union. Symmetric, and 1.0 for identical boxes."""
    inter = intersection_area(a, b)
    union = a.area + b.area - inter
    if union <= 0.0:
        return 0.0
    return inter / union


def overlap_ratio(shield: NormalizedBBox, zone: NormalizedBBox) -> float:
    """Fraction of *shield* that falls inside *zone*.

    Deliberately asymmetric: a tiny shield fully inside a large zone scores
    1.0, while a large shield clipping a corner of a small zone scores low.
    """
    area = shield.area
    if area <= 0.0:
        return 0.0
    return intersection_area(shield, zone) / area
