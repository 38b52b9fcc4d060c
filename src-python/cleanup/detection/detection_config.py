"""Cleanup engine tuning constants.

These are the built-in defaults. The precedence thresholds can be
overridden at runtime through :mod:`cleanup.config` (``CLEANUP_*`` env vars)
or per call; the multi-page values seed :class:`MultiPageConfig`.

Tuning Guide:
- Lower dedup IoU → more proposals collapse into one shield
- Lower critical-overlap thresholds → critical zones are protected more eagerly
"""

from __future__ import annotations

# =============================================================================
# PRECEDENCE
# =============================================================================

SHIELD_DEDUP_IOU_THRESHOLD: float = 0.85
"""Two shields of the same type with IoU at or above this are the same region.
High on purpose: a vendor logo rule and an auto-detected logo a few pixels
off should collapse, two adjacent stamps should not."""

# =============================================================================
# CRITICAL ZONES
# =============================================================================
# Ratios are overlap_area / shield_area (see geometry.overlap_ratio)

CRITICAL_OVERLAP_WARN: float = 0.05
"""Overlap ratio at which a warning is attached to the result.
5% = a header shield grazing the line-items table."""

CRITICAL_OVERLAP_BLOCK_APPLY: float = 0.10
"""Overlap ratio at which an Applied shield is downgraded to Suggested.
Must stay above CRITICAL_OVERLAP_WARN."""

# =============================================================================
# APPLY MODE
# =============================================================================

MIN_AUTO_CONFIDENCE: float = 0.6
"""Minimum confidence for an auto-detected, low-risk shield to be Applied."""

# =============================================================================
# MULTI-PAGE STRIPS
# =============================================================================

HEADER_STRIP_HEIGHT: float = 0.08
"""Top strip height as a fraction of page height."""

FOOTER_STRIP_HEIGHT: float = 0.08
"""Bottom strip height as a fraction of page height."""

STRIP_SIMILARITY_THRESHOLD: float = 0.85
"""Minimum combined intensity/variance similarity for two strips to match."""

MULTI_PAGE_BASE_CONFIDENCE: float = 0.65
"""Confidence of a repetitive header/footer shield before the boost."""

MULTI_PAGE_MAX_BOOST: float = 0.25
"""Confidence boost when the strip recurs on every page."""

MULTI_PAGE_IOU_THRESHOLD: float = 0.7
"""IoU for treating shields on different pages as the same element."""

CONTENT_VARIANCE_THRESHOLD: float = 100.0
"""Grayscale pixel variance above which a strip is considered non-blank.
Blank paper with scanner noise stays well under 100."""
