"""Multi-page consistency detection for repetitive headers and footers.

A header or footer that looks the same on most pages of a document is almost
certainly letterhead, a page counter or a tagline rather than content.  This
module compares horizontal strips of each page against page 1 and turns the
agreement into a confidence boost.

Strip statistics come from Pillow (grayscale mean / variance via
``ImageStat``); everything downstream of :class:`StripData` is pure.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from PIL import Image, ImageStat
from pydantic import BaseModel, Field

from cleanup.config import get_settings
from cleanup.detection.detection_config import (
    FOOTER_STRIP_HEIGHT,
    HEADER_STRIP_HEIGHT,
    MULTI_PAGE_BASE_CONFIDENCE,
    MULTI_PAGE_IOU_THRESHOLD,
    MULTI_PAGE_MAX_BOOST,
    STRIP_SIMILARITY_THRESHOLD,
)
from cleanup.detection.geometry import iou
from models.schemas import (
    CleanupShield,
    MultiPageStripResult,
    NormalizedBBox,
    ShieldType,
    StripData,
)

logger = logging.getLogger(__name__)


class MultiPageConfig(BaseModel):
    """Tuning knobs for multi-page strip analysis."""

    header_strip_height: float = Field(default=HEADER_STRIP_HEIGHT, gt=0.0, le=0.5)
    footer_strip_height: float = Field(default=FOOTER_STRIP_HEIGHT, gt=0.0, le=0.5)
    similarity_threshold: float = Field(default=STRIP_SIMILARITY_THRESHOLD, ge=0.0, le=1.0)
    base_confidence: float = Field(default=MULTI_PAGE_BASE_CONFIDENCE, ge=0.0, le=1.0)
    max_confidence_boost: float = Field(default=MULTI_PAGE_MAX_BOOST, ge=0.0, le=1.0)
    iou_threshold: float = Field(default=MULTI_PAGE_IOU_THRESHOLD, ge=0.0, le=1.0)
    content_variance_threshold: float = Field(
        default_factory=lambda: get_settings().content_variance_threshold, ge=0.0,
    )


# ---------------------------------------------------------------------------
# Strip extraction (Pillow)
# ---------------------------------------------------------------------------

def _strip_height_px(img_height: int, ratio: float) -> int:
    # Round half up, and never return an empty strip
    return min(img_height, max(1, int(img_height * ratio + 0.5)))


def _strip_statistics(image: Image.Image, box: tuple[int, int, int, int]) -> tuple[float, float]:
    """Grayscale (mean, population variance) of *box* = (left, top, right, bottom)."""
    left, top, right, bottom = box
    if right <= left or bottom <= top:
        return 0.0, 0.0
    stat = ImageStat.Stat(image.convert("L").crop(box))
    return float(stat.mean[0]), float(stat.var[0])


def _build_strip(
    image: Image.Image,
    top: int,
    strip_height: int,
    variance_threshold: float,
) -> StripData:
    width, height = image.size
    mean, variance = _strip_statistics(image, (0, top, width, top + strip_height))
    return StripData(
        bbox=NormalizedBBox.from_pixels(0, top, width, strip_height, width, height),
        mean_intensity=mean,
        variance=variance,
        has_content=variance > variance_threshold,
    )


def extract_top_strip(
    image: Image.Image,
    strip_height_ratio: float,
    variance_threshold: Optional[float] = None,
) -> StripData:
    """Statistics for the top *strip_height_ratio* of the page."""
    if variance_threshold is None:
        variance_threshold = get_settings().content_variance_threshold
    strip_height = _strip_height_px(image.size[1], strip_height_ratio)
    return _build_strip(image, 0, strip_height, variance_threshold)


def extract_bottom_strip(
    image: Image.Image,
    strip_height_ratio: float,
    variance_threshold: Optional[float] = None,
) -> StripData:
    """Statistics for the bottom *strip_height_ratio* of the page."""
    if variance_threshold is None:
        variance_threshold = get_settings().content_variance_threshold
    height = image.size[1]
    strip_height = _strip_height_px(height, strip_height_ratio)
    return _build_strip(image, height - strip_height, strip_height, variance_threshold)


# ---------------------------------------------------------------------------
# Similarity and boost
# ---------------------------------------------------------------------------

def strip_similarity(a: StripData, b: StripData, threshold: float) -> bool:
    """Whether two strips look like the same recurring element.

    Blank strips match each other and never match a strip with content.
    Otherwise the score is the mean of intensity similarity
    (``1 - |Δmean| / 255``) and variance ratio (``min / max``), and the
    strips match when it reaches *threshold*; raising the threshold makes
    matching stricter.
    """
    if a.has_content != b.has_content:
        return False
    if not a.has_content:
        return True

    mean_similarity = 1.0 - abs(a.mean_intensity - b.mean_intensity) / 255.0
    max_var = max(a.variance, b.variance)
    min_var = min(a.variance, b.variance)
    variance_ratio = min_var / max_var if max_var > 0.0 else 1.0

    return (mean_similarity + variance_ratio) / 2.0 >= threshold


def confidence_boost(match_count: int, total_pages: int, max_boost: float) -> float:
    """Boost proportional to the fraction of pages sharing the element.

    A lone occurrence earns nothing; an element on every page earns
    *max_boost*.
    """
    if total_pages <= 1 or match_count < 2:
        return 0.0
    return (match_count / total_pages) * max_boost


# ---------------------------------------------------------------------------
# Document-level detection
# ---------------------------------------------------------------------------

def _repetitive_shield(
    shield_type: ShieldType,
    label: str,
    reference: StripData,
    match_count: int,
    pages: int,
    config: MultiPageConfig,
) -> Optional[CleanupShield]:
    if match_count <= 1 or not reference.has_content:
        return None
    boost = confidence_boost(match_count, pages, config.max_confidence_boost)
    return CleanupShield.auto_detected(
        shield_type,
        reference.bbox,
        min(1.0, config.base_confidence + boost),
        f"Repetitive {label} detected across {match_count}/{pages} pages",
    )


def detect_multi_page_strips(
    images: Sequence[Image.Image],
    config: Optional[MultiPageConfig] = None,
) -> MultiPageStripResult:
    """Find header/footer strips that repeat across the pages of a document.

    Page 1 is the reference; every page (including page 1) is compared
    against it.  A ``RepetitiveHeader`` / ``RepetitiveFooter`` shield is
    emitted when more than one page matches and the reference strip is not
    blank.

    Args:
        images: Rendered pages in document order.
        config: Analysis settings; defaults to :class:`MultiPageConfig`.

    Returns:
        A :class:`MultiPageStripResult` with at most one shield of each kind.
    """
    if not images:
        return MultiPageStripResult()
    config = config or MultiPageConfig()
    pages = len(images)

    headers = [
        extract_top_strip(img, config.header_strip_height, config.content_variance_threshold)
        for img in images
    ]
    footers = [
        extract_bottom_strip(img, config.footer_strip_height, config.content_variance_threshold)
        for img in images
    ]

    header_matches = sum(
        1 for strip in headers if strip_similarity(headers[0], strip, config.similarity_threshold)
    )
    footer_matches = sum(
        1 for strip in footers if strip_similarity(footers[0], strip, config.similarity_threshold)
    )

    header = _repetitive_shield(
        ShieldType.REPETITIVE_HEADER, "header", headers[0], header_matches, pages, config,
    )
    footer = _repetitive_shield(
        ShieldType.REPETITIVE_FOOTER, "footer", footers[0], footer_matches, pages, config,
    )

    logger.debug(
        f"Multi-page strips: {pages} pages, header {header_matches} matches, "
        f"footer {footer_matches} matches"
    )
    return MultiPageStripResult(
        header_shields=[header] if header else [],
        footer_shields=[footer] if footer else [],
        pages_analyzed=pages,
        header_match_count=header_matches,
        footer_match_count=footer_matches,
    )


def has_similar_shield_on_page(
    shield: CleanupShield,
    other_shields: Sequence[CleanupShield],
    iou_threshold: float,
) -> bool:
    """True if *other_shields* holds a same-type shield overlapping *shield*."""
    return any(
        other.shield_type == shield.shield_type
        and iou(shield.normalized_bbox, other.normalized_bbox) >= iou_threshold
        for other in other_shields
    )


def boost_multi_page_confidence(
    page_shields: Sequence[Sequence[CleanupShield]],
    config: Optional[MultiPageConfig] = None,
) -> list[CleanupShield]:
    """Boost page-1 shields that recur on later pages.

    Returns page 1's shields (copied where boosted); shields on later pages
    only contribute to the match count.
    """
    if not page_shields:
        return []
    config = config or MultiPageConfig()
    page_count = len(page_shields)
    first_page = list(page_shields[0])
    if page_count == 1:
        return first_page

    result: list[CleanupShield] = []
    for shield in first_page:
        match_count = 1 + sum(
            1 for others in page_shields[1:]
            if has_similar_shield_on_page(shield, others, config.iou_threshold)
        )
        if match_count > 1:
            boost = confidence_boost(match_count, page_count, config.max_confidence_boost)
            shield = shield.model_copy(update={
                "confidence": min(1.0, shield.confidence + boost),
                "why_detected": (
                    f"{shield.why_detected} (found on {match_count}/{page_count} pages)"
                ),
            })
        result.append(shield)
    return result
