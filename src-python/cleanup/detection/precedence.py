"""Precedence resolution — reconciles shield proposals from every source
into one ordered, de-duplicated set, then applies the critical-zone policy.

Precedence (highest wins):
    SessionOverride > TemplateRule > VendorRule > AutoDetected

Pure and deterministic: no I/O, no clock, no randomness. Threshold
defaults come from the active :class:`CleanupSettings` and can be
overridden per call.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Union

from cleanup.config import get_settings
from cleanup.detection.geometry import iou, overlap_ratio
from models.schemas import (
    ApplyMode,
    CleanupShield,
    CriticalZone,
    NormalizedBBox,
    PrecedenceExplanation,
    PrecedenceResult,
    RiskLevel,
    ShieldSource,
    ZoneConflict,
)

logger = logging.getLogger(__name__)

ACTION_DOWNGRADED = "downgraded_to_suggested"
ACTION_ELEVATED = "elevated_risk"
ACTION_WARNING = "warning_added"

ZoneInput = Union[CriticalZone, tuple[str, NormalizedBBox]]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def merge_shields(
    auto_shields: Sequence[CleanupShield],
    vendor_shields: Sequence[CleanupShield],
    template_shields: Sequence[CleanupShield],
    session_shields: Sequence[CleanupShield],
    critical_zones: Sequence[ZoneInput] = (),
    *,
    dedup_iou_threshold: Optional[float] = None,
    overlap_warn: Optional[float] = None,
    overlap_block_apply: Optional[float] = None,
) -> PrecedenceResult:
    """Merge shields from all sources with precedence resolution.

    Steps:
    1. Concatenate the four lists lowest-precedence first.
    2. Fold them into a result list: a shield of the same type with
       IoU ≥ *dedup_iou_threshold* against an accepted one is the same
       physical region, and the later shield replaces it when its source
       ranks at least as high.  Otherwise it is dropped.
    3. Apply the critical-zone policy to every survivor.
    4. Sort descending by (source precedence, confidence).

    Args:
        auto_shields: Auto-detected shields (lowest precedence).
        vendor_shields: Vendor rule shields.
        template_shields: Template rule shields.
        session_shields: Session overrides (highest precedence).
        critical_zones: Protected regions, checked in order.  Plain
            ``(zone_id, bbox)`` pairs are accepted too.

    Returns:
        A :class:`PrecedenceResult`.  Input shields are never modified.
    """
    cfg = get_settings()
    threshold = cfg.shield_dedup_iou_threshold if dedup_iou_threshold is None else dedup_iou_threshold
    warn = cfg.critical_overlap_warn if overlap_warn is None else overlap_warn
    block = cfg.critical_overlap_block_apply if overlap_block_apply is None else overlap_block_apply

    zones = [_as_zone(z) for z in critical_zones]
    incoming: list[CleanupShield] = [
        *auto_shields, *vendor_shields, *template_shields, *session_shields,
    ]

    resolved, explanations = _deduplicate(incoming, threshold)
    resolved, zone_conflicts, warnings = _apply_critical_zone_policy(
        resolved, zones, warn, block,
    )

    # sorted() is stable, so equal keys keep their fold order
    resolved = sorted(
        resolved,
        key=lambda s: (s.source.precedence, s.confidence),
        reverse=True,
    )

    logger.debug(
        f"merge_shields: {len(incoming)} in → {len(resolved)} out, "
        f"{len(explanations)} overrides, {len(zone_conflicts)} zone conflicts"
    )
    return PrecedenceResult(
        shields=resolved,
        explanations=explanations,
        zone_conflicts=zone_conflicts,
        warnings=warnings,
    )


def overlaps_critical_zone(
    shield: CleanupShield,
    critical_zones: Iterable[ZoneInput],
    *,
    overlap_warn: Optional[float] = None,
) -> bool:
    """True if *shield* covers at least the warn ratio of any zone."""
    warn = get_settings().critical_overlap_warn if overlap_warn is None else overlap_warn
    return any(
        overlap_ratio(shield.normalized_bbox, _as_zone(zone).bbox) >= warn
        for zone in critical_zones
    )


def highest_precedence_source(shields: Iterable[CleanupShield]) -> Optional[ShieldSource]:
    """Return the highest-ranking source among *shields*, or None if empty."""
    return max((s.source for s in shields), default=None)


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------

def _as_zone(zone: ZoneInput) -> CriticalZone:
    if isinstance(zone, CriticalZone):
        return zone
    zone_id, bbox = zone
    return CriticalZone(zone_id=zone_id, bbox=bbox)


def _deduplicate(
    shields: list[CleanupShield],
    threshold: float,
) -> tuple[list[CleanupShield], list[PrecedenceExplanation]]:
    resolved: list[CleanupShield] = []
    explanations: list[PrecedenceExplanation] = []

    for shield in shields:
        for idx, existing in enumerate(resolved):
            if shield.shield_type != existing.shield_type:
                continue
            score = iou(shield.normalized_bbox, existing.normalized_bbox)
            if score < threshold:
                continue

            # First match decides: replace or drop, never both
            if shield.source >= existing.source:
                explanations.append(PrecedenceExplanation(
                    shield_id=shield.id,
                    winning_source=shield.source,
                    overridden_sources=[existing.source],
                    reason=(
                        f"{shield.source.value} overrides "
                        f"{existing.source.value} (IoU={score:.2f})"
                    ),
                ))
                resolved[idx] = shield
            else:
                logger.debug(
                    f"Dropped {shield.source.value} shield {shield.id}: "
                    f"outranked by {existing.source.value} shield {existing.id}"
                )
            break
        else:
            resolved.append(shield)

    return resolved, explanations


def _apply_critical_zone_policy(
    shields: list[CleanupShield],
    critical_zones: Sequence[CriticalZone],
    warn: float,
    block: float,
) -> tuple[list[CleanupShield], list[ZoneConflict], list[str]]:
    conflicts: list[ZoneConflict] = []
    warnings: list[str] = []
    out: list[CleanupShield] = []

    for shield in shields:
        current = shield
        for zone in critical_zones:
            ratio = overlap_ratio(current.normalized_bbox, zone.bbox)

            if ratio >= block:
                if current.apply_mode == ApplyMode.APPLIED:
                    current = current.model_copy(update={
                        "apply_mode": ApplyMode.SUGGESTED,
                        "risk_level": RiskLevel.HIGH,
                    })
                    action = ACTION_DOWNGRADED
                else:
                    current = current.model_copy(update={"risk_level": RiskLevel.HIGH})
                    action = ACTION_ELEVATED
                conflicts.append(ZoneConflict(
                    shield_id=current.id,
                    zone_id=zone.zone_id,
                    overlap_ratio=ratio,
                    action_taken=action,
                ))
                warnings.append(
                    f"Shield {current.id} overlaps critical zone {zone.zone_id} "
                    f"by {ratio * 100:.1f}% - {action}"
                )
            elif ratio >= warn:
                conflicts.append(ZoneConflict(
                    shield_id=current.id,
                    zone_id=zone.zone_id,
                    overlap_ratio=ratio,
                    action_taken=ACTION_WARNING,
                ))
                warnings.append(
                    f"Shield {current.id} overlaps critical zone {zone.zone_id} "
                    f"by {ratio * 100:.1f}% - review recommended"
                )
        out.append(current)

    return out, conflicts, warnings
