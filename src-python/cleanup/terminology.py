"""Terminology mapping between shields and their API / legacy "mask" shapes.

``CleanupShieldDto`` is the wire shape: enums as their string names and the
provenance source flattened to ``source``.  ``MaskDto`` is the same record
under the older vocabulary, where ``shield_type`` was called ``mask_type``.
Both carry ``min_confidence`` and the full provenance as optional fields, so
shield -> DTO -> shield gives back an equal shield.  Payloads without them
get the model defaults.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from cleanup.exceptions import InvalidShieldError, TerminologyError
from models.schemas import (
    ApplyMode,
    CleanupShield,
    NormalizedBBox,
    PageTarget,
    PageTargetKind,
    RiskLevel,
    ShieldProvenance,
    ShieldSource,
    ShieldType,
    ZoneTarget,
)

_E = TypeVar("_E", bound=enum.Enum)


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

class NormalizedBBoxDto(BaseModel):
    x: float
    y: float
    width: float
    height: float


class PageTargetDto(BaseModel):
    """Tagged page target: ``{"type": "Specific", "pages": [1, 3]}``."""
    type: str = PageTargetKind.ALL.value
    pages: Optional[list[int]] = None


class ZoneTargetDto(BaseModel):
    include_zones: Optional[list[str]] = None
    exclude_zones: list[str] = []


class ProvenanceDto(BaseModel):
    """Provenance details beyond ``source``; absent on older payloads."""
    why_detected: Optional[str] = None
    user_id: Optional[str] = None
    vendor_id: Optional[str] = None
    template_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CleanupShieldDto(BaseModel):
    id: str
    shield_type: str
    normalized_bbox: NormalizedBBoxDto
    page_target: PageTargetDto = PageTargetDto()
    zone_target: ZoneTargetDto = ZoneTargetDto()
    apply_mode: str
    risk_level: str
    confidence: float
    why_detected: str
    source: str
    min_confidence: Optional[float] = None
    provenance: Optional[ProvenanceDto] = None


class MaskDto(BaseModel):
    """Legacy name for :class:`CleanupShieldDto`."""
    id: str
    mask_type: str
    normalized_bbox: NormalizedBBoxDto
    page_target: PageTargetDto = PageTargetDto()
    zone_target: ZoneTargetDto = ZoneTargetDto()
    apply_mode: str
    risk_level: str
    confidence: float
    why_detected: str
    source: str
    min_confidence: Optional[float] = None
    provenance: Optional[ProvenanceDto] = None


# ---------------------------------------------------------------------------
# Enum parsing
# ---------------------------------------------------------------------------

def _parse_enum(enum_cls: Type[_E], value: str, field: str) -> _E:
    try:
        return enum_cls(value)
    except ValueError:
        raise TerminologyError(
            f"Unknown {field}: {value!r}",
            {"expected": ", ".join(m.value for m in enum_cls)},
        ) from None


def _page_target_from_dto(dto: PageTargetDto) -> PageTarget:
    kind = _parse_enum(PageTargetKind, dto.type, "page_target type")
    try:
        return PageTarget(kind=kind, pages=tuple(dto.pages or ()))
    except ValidationError as exc:
        raise InvalidShieldError(f"Invalid page target: {exc}") from exc


# ---------------------------------------------------------------------------
# Shield ↔ DTO
# ---------------------------------------------------------------------------

def shield_to_dto(shield: CleanupShield) -> CleanupShieldDto:
    bbox = shield.normalized_bbox
    page_target = shield.page_target
    prov = shield.provenance
    return CleanupShieldDto(
        id=shield.id,
        shield_type=shield.shield_type.value,
        normalized_bbox=NormalizedBBoxDto(x=bbox.x, y=bbox.y, width=bbox.width, height=bbox.height),
        page_target=PageTargetDto(
            type=page_target.kind.value,
            pages=list(page_target.pages) if page_target.kind == PageTargetKind.SPECIFIC else None,
        ),
        zone_target=ZoneTargetDto(
            include_zones=(
                list(shield.zone_target.include_zones)
                if shield.zone_target.include_zones is not None else None
            ),
            exclude_zones=list(shield.zone_target.exclude_zones),
        ),
        apply_mode=shield.apply_mode.value,
        risk_level=shield.risk_level.value,
        confidence=shield.confidence,
        why_detected=shield.why_detected,
        source=shield.source.value,
        min_confidence=shield.min_confidence,
        provenance=ProvenanceDto(
            why_detected=prov.why_detected,
            user_id=prov.user_id,
            vendor_id=prov.vendor_id,
            template_id=prov.template_id,
            created_at=prov.created_at,
            updated_at=prov.updated_at,
        ),
    )


def dto_to_shield(dto: CleanupShieldDto) -> CleanupShield:
    """Rebuild a shield from its API shape.

    Raises:
        TerminologyError: for enum strings with no matching member.
        InvalidShieldError: for an out-of-page box or bad page list.
    """
    shield_type = _parse_enum(ShieldType, dto.shield_type, "shield_type")
    apply_mode = _parse_enum(ApplyMode, dto.apply_mode, "apply_mode")
    risk_level = _parse_enum(RiskLevel, dto.risk_level, "risk_level")
    source = _parse_enum(ShieldSource, dto.source, "source")
    page_target = _page_target_from_dto(dto.page_target)

    # older payloads carry only the source; fill the rest from the shield
    prov = dto.provenance or ProvenanceDto()
    prov_fields = {
        "source": source,
        "why_detected": dto.why_detected if prov.why_detected is None else prov.why_detected,
        "user_id": prov.user_id,
        "vendor_id": prov.vendor_id,
        "template_id": prov.template_id,
        "updated_at": prov.updated_at,
    }
    if prov.created_at is not None:
        prov_fields["created_at"] = prov.created_at
    extra = {}
    if dto.min_confidence is not None:
        extra["min_confidence"] = dto.min_confidence

    try:
        return CleanupShield(
            id=dto.id,
            shield_type=shield_type,
            normalized_bbox=NormalizedBBox(**dto.normalized_bbox.model_dump()),
            confidence=dto.confidence,
            apply_mode=apply_mode,
            risk_level=risk_level,
            page_target=page_target,
            zone_target=ZoneTarget(
                include_zones=(
                    tuple(dto.zone_target.include_zones)
                    if dto.zone_target.include_zones is not None else None
                ),
                exclude_zones=tuple(dto.zone_target.exclude_zones),
            ),
            why_detected=dto.why_detected,
            provenance=ShieldProvenance(**prov_fields),
            **extra,
        )
    except ValidationError as exc:
        raise InvalidShieldError(f"Invalid shield {dto.id}: {exc}") from exc


# ---------------------------------------------------------------------------
# DTO ↔ legacy mask
# ---------------------------------------------------------------------------

def dto_to_mask(dto: CleanupShieldDto) -> MaskDto:
    data = dto.model_dump()
    data["mask_type"] = data.pop("shield_type")
    return MaskDto.model_validate(data)


def mask_to_dto(mask: MaskDto) -> CleanupShieldDto:
    data = mask.model_dump()
    data["shield_type"] = data.pop("mask_type")
    return CleanupShieldDto.model_validate(data)


def shield_to_mask(shield: CleanupShield) -> MaskDto:
    return dto_to_mask(shield_to_dto(shield))


def mask_to_shield(mask: MaskDto) -> CleanupShield:
    return dto_to_shield(mask_to_dto(mask))
