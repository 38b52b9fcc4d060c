"""Pydantic data models for the document cleanup engine."""

from __future__ import annotations

import enum
import math
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Tolerance for x + width / y + height sums that land a hair past 1.0
# after pixel → normalized conversion.
_BOUNDS_EPSILON = 1e-9


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Zone names
# ---------------------------------------------------------------------------

ZONE_LINE_ITEMS = "LineItems"
ZONE_TOTALS = "Totals"
ZONE_HEADER = "Header"
ZONE_FOOTER = "Footer"
ZONE_BARCODE = "Barcode"
ZONE_LOGO = "Logo"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ShieldType(str, enum.Enum):
    """What kind of region a shield covers."""
    LOGO = "Logo"
    WATERMARK = "Watermark"
    REPETITIVE_HEADER = "RepetitiveHeader"   # e.g. "Page 1 of 3"
    REPETITIVE_FOOTER = "RepetitiveFooter"   # e.g. company tagline
    STAMP = "Stamp"                          # "PAID", "COPY"
    USER_DEFINED = "UserDefined"
    VENDOR_SPECIFIC = "VendorSpecific"
    TEMPLATE_SPECIFIC = "TemplateSpecific"


class ShieldSource(str, enum.Enum):
    """Who proposed a shield.

    The declaration order is the precedence order, lowest first:
    ``AUTO_DETECTED < VENDOR_RULE < TEMPLATE_RULE < SESSION_OVERRIDE``.
    Every precedence decision in the engine reduces to comparing these
    ordinals, so the comparison operators compare by precedence rather
    than alphabetically.
    """
    AUTO_DETECTED = "AutoDetected"
    VENDOR_RULE = "VendorRule"
    TEMPLATE_RULE = "TemplateRule"
    SESSION_OVERRIDE = "SessionOverride"

    @property
    def precedence(self) -> int:
        return _SOURCE_PRECEDENCE[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ShieldSource):
            return NotImplemented
        return self.precedence < other.precedence

    def __le__(self, other: object) -> bool:
        if not isinstance(other, ShieldSource):
            return NotImplemented
        return self.precedence <= other.precedence

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ShieldSource):
            return NotImplemented
        return self.precedence > other.precedence

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, ShieldSource):
            return NotImplemented
        return self.precedence >= other.precedence


_SOURCE_PRECEDENCE: dict[ShieldSource, int] = {
    source: ordinal for ordinal, source in enumerate(ShieldSource)
}


class ApplyMode(str, enum.Enum):
    """Whether the redaction is executed."""
    APPLIED = "Applied"        # Redaction is executed
    SUGGESTED = "Suggested"    # Shown to a reviewer, not executed
    DISABLED = "Disabled"


class RiskLevel(str, enum.Enum):
    """How likely a shield is to obscure something important."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class PageTargetKind(str, enum.Enum):
    ALL = "All"
    FIRST = "First"
    LAST = "Last"
    SPECIFIC = "Specific"


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

class NormalizedBBox(BaseModel):
    """Bounding box relative to page dimensions (0.0 – 1.0, origin top-left).

    Out-of-page boxes are rejected here so the geometry and precedence
    code never has to defend against them.
    """
    model_config = ConfigDict(frozen=True)

    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(gt=0.0, le=1.0)
    height: float = Field(gt=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_page_bounds(self) -> "NormalizedBBox":
        if self.x + self.width > 1.0 + _BOUNDS_EPSILON:
            raise ValueError(
                f"x + width must be <= 1.0, got {self.x} + {self.width}"
            )
        if self.y + self.height > 1.0 + _BOUNDS_EPSILON:
            raise ValueError(
                f"y + height must be <= 1.0, got {self.y} + {self.height}"
            )
        return self

    @property
    def x1(self) -> float:
        return self.x + self.width

    @property
    def y1(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def from_pixels(
        cls,
        x: int,
        y: int,
        width: int,
        height: int,
        img_width: int,
        img_height: int,
    ) -> "NormalizedBBox":
        """Normalize a pixel rectangle against the image size."""
        return cls(
            x=x / img_width,
            y=y / img_height,
            width=width / img_width,
            height=height / img_height,
        )

    def to_pixels(self, img_width: int, img_height: int) -> tuple[int, int, int, int]:
        """Convert back to ``(x, y, width, height)`` pixels, rounding to nearest."""

        def _saturate(value: float) -> int:
            if math.isnan(value) or value < 0:
                return 0
            return int(round(value))

        return (
            _saturate(self.x * img_width),
            _saturate(self.y * img_height),
            _saturate(self.width * img_width),
            _saturate(self.height * img_height),
        )


class CriticalZone(BaseModel):
    """A protected document region, e.g. the totals box."""
    model_config = ConfigDict(frozen=True)

    zone_id: str
    bbox: NormalizedBBox


# ---------------------------------------------------------------------------
# Targeting
# ---------------------------------------------------------------------------

class PageTarget(BaseModel):
    """Which pages a shield applies to.

    ``pages`` is only populated for ``SPECIFIC`` and is kept sorted and
    de-duplicated (1-based page numbers).
    """
    model_config = ConfigDict(frozen=True)

    kind: PageTargetKind = PageTargetKind.ALL
    pages: tuple[int, ...] = ()

    @field_validator("pages")
    @classmethod
    def _normalize_pages(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if any(p < 1 for p in v):
            raise ValueError("page numbers are 1-based")
        return tuple(sorted(set(v)))

    @model_validator(mode="after")
    def _check_pages_match_kind(self) -> "PageTarget":
        if self.kind == PageTargetKind.SPECIFIC and not self.pages:
            raise ValueError("SPECIFIC page target needs at least one page")
        if self.kind != PageTargetKind.SPECIFIC and self.pages:
            raise ValueError(f"{self.kind.value} page target takes no page list")
        return self

    @classmethod
    def all(cls) -> "PageTarget":
        return cls(kind=PageTargetKind.ALL)

    @classmethod
    def first(cls) -> "PageTarget":
        return cls(kind=PageTargetKind.FIRST)

    @classmethod
    def last(cls) -> "PageTarget":
        return cls(kind=PageTargetKind.LAST)

    @classmethod
    def specific(cls, pages) -> "PageTarget":
        return cls(kind=PageTargetKind.SPECIFIC, pages=tuple(pages))

    def applies_to(self, page_number: int, page_count: int) -> bool:
        if self.kind == PageTargetKind.ALL:
            return True
        if self.kind == PageTargetKind.FIRST:
            return page_number == 1
        if self.kind == PageTargetKind.LAST:
            return page_number == page_count
        return page_number in self.pages


class ZoneTarget(BaseModel):
    """Restricts a shield to named layout zones.

    ``include_zones=None`` means every zone; ``exclude_zones`` always wins.
    """
    model_config = ConfigDict(frozen=True)

    include_zones: Optional[tuple[str, ...]] = None
    exclude_zones: tuple[str, ...] = ()

    @field_validator("include_zones", "exclude_zones")
    @classmethod
    def _dedupe(cls, v: Optional[tuple[str, ...]]) -> Optional[tuple[str, ...]]:
        if v is None:
            return None
        return tuple(dict.fromkeys(v))

    def targets(self, zone: str) -> bool:
        if zone in self.exclude_zones:
            return False
        return self.include_zones is None or zone in self.include_zones


# ---------------------------------------------------------------------------
# Shields
# ---------------------------------------------------------------------------

class ShieldProvenance(BaseModel):
    """Who proposed a shield, and why."""
    model_config = ConfigDict(frozen=True)

    source: ShieldSource = ShieldSource.AUTO_DETECTED
    why_detected: str = ""
    user_id: Optional[str] = None
    vendor_id: Optional[str] = None
    template_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None


class CleanupShield(BaseModel):
    """A proposed rectangular region to redact or flag."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    shield_type: ShieldType
    normalized_bbox: NormalizedBBox
    confidence: float = Field(ge=0.0, le=1.0)
    min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    apply_mode: ApplyMode = ApplyMode.SUGGESTED
    risk_level: RiskLevel = RiskLevel.LOW
    page_target: PageTarget = Field(default_factory=PageTarget.all)
    zone_target: ZoneTarget = Field(default_factory=ZoneTarget)
    provenance: ShieldProvenance = Field(default_factory=ShieldProvenance)
    why_detected: str = ""

    @property
    def source(self) -> ShieldSource:
        return self.provenance.source

    @classmethod
    def auto_detected(
        cls,
        shield_type: ShieldType,
        bbox: NormalizedBBox,
        confidence: float,
        why_detected: str,
    ) -> "CleanupShield":
        return cls(
            shield_type=shield_type,
            normalized_bbox=bbox,
            confidence=confidence,
            why_detected=why_detected,
            provenance=ShieldProvenance(
                source=ShieldSource.AUTO_DETECTED,
                why_detected=why_detected,
            ),
        )

    @classmethod
    def user_defined(
        cls,
        bbox: NormalizedBBox,
        user_id: str,
        reason: Optional[str] = None,
    ) -> "CleanupShield":
        why = reason or "User-defined shield"
        return cls(
            shield_type=ShieldType.USER_DEFINED,
            normalized_bbox=bbox,
            confidence=1.0,
            min_confidence=0.0,
            apply_mode=ApplyMode.APPLIED,
            why_detected=why,
            provenance=ShieldProvenance(
                source=ShieldSource.SESSION_OVERRIDE,
                why_detected=why,
                user_id=user_id,
            ),
        )


# ---------------------------------------------------------------------------
# Precedence resolution output
# ---------------------------------------------------------------------------

class PrecedenceExplanation(BaseModel):
    """Why one shield replaced another during de-duplication."""
    shield_id: str
    winning_source: ShieldSource
    overridden_sources: list[ShieldSource] = []
    reason: str


class ZoneConflict(BaseModel):
    """A shield landing on a critical zone, and what was done about it."""
    shield_id: str
    zone_id: str
    overlap_ratio: float
    action_taken: str                  # downgraded_to_suggested | elevated_risk | warning_added


class PrecedenceResult(BaseModel):
    shields: list[CleanupShield] = []
    explanations: list[PrecedenceExplanation] = []
    zone_conflicts: list[ZoneConflict] = []
    warnings: list[str] = []


# ---------------------------------------------------------------------------
# Multi-page analysis
# ---------------------------------------------------------------------------

class StripData(BaseModel):
    """Pixel statistics for a header or footer strip of one page."""
    bbox: NormalizedBBox
    mean_intensity: float              # 0 – 255
    variance: float
    has_content: bool


class MultiPageStripResult(BaseModel):
    header_shields: list[CleanupShield] = []
    footer_shields: list[CleanupShield] = []
    pages_analyzed: int = 0
    header_match_count: int = 0
    footer_match_count: int = 0


# ---------------------------------------------------------------------------
# Rule persistence
# ---------------------------------------------------------------------------

class RuleScope(BaseModel):
    """Exact-match key of a persisted rule set.

    ``entity_id`` is the vendor id for vendor rules and the template id for
    template rules. ``doc_type=None`` is a key of its own, not a wildcard.
    """
    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(min_length=1)
    store_id: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    doc_type: Optional[str] = None

    def as_key(self) -> tuple[str, str, str, Optional[str]]:
        return (self.tenant_id, self.store_id, self.entity_id, self.doc_type)


class RuleSetVersion(BaseModel):
    """One saved version of a vendor or template rule set."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    scope: RuleScope
    vendor_id: Optional[str] = None    # set on template rule sets
    version: int
    rules: list[CleanupShield] = []
    enabled: bool = True
    archived_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    created_by: Optional[str] = None


class CleanupAuditEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    store_id: str
    entity_type: str                   # "vendor" | "template"
    entity_id: str
    action: str                        # "create" | "supersede"
    user_id: str
    diff_json: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ReviewCaseShields(BaseModel):
    """Snapshot of the resolved shields used for one review case."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    store_id: str
    review_case_id: str
    resolved_shields: list[CleanupShield] = []
    overlay_artifact_path: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
