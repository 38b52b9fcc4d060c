"""Review outcome tracking.

Records how much a reviewer had to change the proposed shields and how
extraction confidence moved, so per-vendor thresholds can be tuned from
real review history.
"""

from __future__ import annotations

import enum
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from cleanup.exceptions import OutcomeTrackingError
from models.schemas import CleanupShield, ShieldSource, ShieldType

logger = logging.getLogger(__name__)

# Threshold adjustment heuristics
_HIGH_EDITS_PER_REVIEW = 3.0
_LOW_EDITS_PER_REVIEW = 1.0
_EDIT_FACTOR = 0.05
_GOOD_IMPROVEMENT = 0.1
_BAD_IMPROVEMENT = -0.05
_IMPROVEMENT_FACTOR = 0.03
_MAX_ADJUSTMENT = 0.15


class OutcomeStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    ERROR = "error"


class UserSatisfaction(str, enum.Enum):
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"


class CleanupReviewOutcome(BaseModel):
    """What happened to the shields of one review case."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    store_id: str
    review_case_id: str
    vendor_id: Optional[str] = None
    template_id: Optional[str] = None

    # Shields by source, before review
    auto_detected_count: int = 0
    vendor_rule_count: int = 0
    template_rule_count: int = 0
    session_override_count: int = 0

    # Reviewer edits
    shields_added: int = 0
    shields_removed: int = 0
    shields_adjusted: int = 0
    apply_mode_changes: int = 0

    # Extraction quality
    initial_confidence: Optional[float] = None
    final_confidence: Optional[float] = None
    confidence_delta: Optional[float] = None

    fields_extracted: int = 0
    fields_corrected: int = 0
    fields_failed: int = 0

    review_duration_ms: Optional[int] = None
    outcome_status: OutcomeStatus = OutcomeStatus.COMPLETED
    user_satisfaction: Optional[UserSatisfaction] = None

    created_at: datetime
    completed_at: Optional[datetime] = None
    user_id: Optional[str] = None

    @property
    def total_edits(self) -> int:
        return self.shields_added + self.shields_removed + self.shields_adjusted


def count_shields_by_source(shields: Sequence[CleanupShield]) -> dict[ShieldSource, int]:
    counts = {source: 0 for source in ShieldSource}
    for shield in shields:
        counts[shield.source] += 1
    return counts


def calculate_edit_metrics(
    initial: Sequence[CleanupShield],
    final: Sequence[CleanupShield],
) -> tuple[int, int, int, int]:
    """Return ``(added, removed, adjusted, apply_mode_changes)`` by shield id.

    A shield counts as adjusted when its box changed between the two sets.
    """
    initial_by_id = {s.id: s for s in initial}
    final_ids = {s.id for s in final}

    added = len(final_ids - initial_by_id.keys())
    removed = len(initial_by_id.keys() - final_ids)
    adjusted = 0
    mode_changes = 0
    for shield in final:
        before = initial_by_id.get(shield.id)
        if before is None:
            continue
        if before.normalized_bbox != shield.normalized_bbox:
            adjusted += 1
        if before.apply_mode != shield.apply_mode:
            mode_changes += 1
    return added, removed, adjusted, mode_changes


class OutcomeBuilder:
    """Collects review data, then :meth:`build` computes the outcome.

    Setters return ``self`` so calls can be chained.
    """

    def __init__(self) -> None:
        self._review_case_id: Optional[str] = None
        self._vendor_id: Optional[str] = None
        self._template_id: Optional[str] = None
        self._initial_shields: list[CleanupShield] = []
        self._final_shields: list[CleanupShield] = []
        self._initial_confidence: Optional[float] = None
        self._final_confidence: Optional[float] = None
        self._fields = (0, 0, 0)
        self._review_start: Optional[datetime] = None
        self._user_id: Optional[str] = None

    def review_case_id(self, value: str) -> "OutcomeBuilder":
        self._review_case_id = value
        return self

    def vendor_id(self, value: str) -> "OutcomeBuilder":
        self._vendor_id = value
        return self

    def template_id(self, value: str) -> "OutcomeBuilder":
        self._template_id = value
        return self

    def initial_shields(self, shields: Sequence[CleanupShield]) -> "OutcomeBuilder":
        self._initial_shields = list(shields)
        return self

    def final_shields(self, shields: Sequence[CleanupShield]) -> "OutcomeBuilder":
        self._final_shields = list(shields)
        return self

    def initial_confidence(self, value: float) -> "OutcomeBuilder":
        self._initial_confidence = value
        return self

    def final_confidence(self, value: float) -> "OutcomeBuilder":
        self._final_confidence = value
        return self

    def field_metrics(self, extracted: int, corrected: int, failed: int) -> "OutcomeBuilder":
        self._fields = (extracted, corrected, failed)
        return self

    def review_start(self, start: datetime) -> "OutcomeBuilder":
        self._review_start = start
        return self

    def user_id(self, value: str) -> "OutcomeBuilder":
        self._user_id = value
        return self

    def build(
        self,
        tenant_id: str,
        store_id: str,
        now: Optional[datetime] = None,
    ) -> CleanupReviewOutcome:
        """Compute the outcome.

        Raises:
            OutcomeTrackingError: if no review case id was set.
        """
        if not self._review_case_id:
            raise OutcomeTrackingError("Missing required field: review_case_id")

        now = now or datetime.now(timezone.utc)
        by_source = count_shields_by_source(self._initial_shields)
        added, removed, adjusted, mode_changes = calculate_edit_metrics(
            self._initial_shields, self._final_shields,
        )

        delta = None
        if self._initial_confidence is not None and self._final_confidence is not None:
            delta = self._final_confidence - self._initial_confidence

        duration_ms = None
        if self._review_start is not None:
            duration_ms = max(0, int((now - self._review_start).total_seconds() * 1000))

        extracted, corrected, failed = self._fields
        outcome = CleanupReviewOutcome(
            tenant_id=tenant_id,
            store_id=store_id,
            review_case_id=self._review_case_id,
            vendor_id=self._vendor_id,
            template_id=self._template_id,
            auto_detected_count=by_source[ShieldSource.AUTO_DETECTED],
            vendor_rule_count=by_source[ShieldSource.VENDOR_RULE],
            template_rule_count=by_source[ShieldSource.TEMPLATE_RULE],
            session_override_count=by_source[ShieldSource.SESSION_OVERRIDE],
            shields_added=added,
            shields_removed=removed,
            shields_adjusted=adjusted,
            apply_mode_changes=mode_changes,
            initial_confidence=self._initial_confidence,
            final_confidence=self._final_confidence,
            confidence_delta=delta,
            fields_extracted=extracted,
            fields_corrected=corrected,
            fields_failed=failed,
            review_duration_ms=duration_ms,
            created_at=self._review_start or now,
            completed_at=now,
            user_id=self._user_id,
        )
        logger.debug(
            f"Review outcome for case {self._review_case_id}: "
            f"+{added} -{removed} ~{adjusted} mode={mode_changes}",
            extra={"tenant_id": tenant_id, "store_id": store_id, "vendor_id": self._vendor_id},
        )
        return outcome


def calculate_threshold_adjustment(
    outcomes: Sequence[CleanupReviewOutcome],
    shield_type: Optional[ShieldType] = None,
) -> float:
    """Suggest a delta for a vendor's auto-apply threshold.

    Positive means raise the threshold (fewer auto-applied shields), negative
    means lower it.  The result is clamped to ±0.15.

    Outcomes aren't broken down per shield type yet, so *shield_type* does
    not change the result.
    """
    if not outcomes:
        return 0.0

    avg_edits = sum(o.total_edits for o in outcomes) / len(outcomes)
    deltas = [o.confidence_delta for o in outcomes if o.confidence_delta is not None]
    avg_improvement = sum(deltas) / len(deltas) if deltas else 0.0

    if avg_edits > _HIGH_EDITS_PER_REVIEW:
        edit_factor = _EDIT_FACTOR
    elif avg_edits < _LOW_EDITS_PER_REVIEW:
        edit_factor = -_EDIT_FACTOR
    else:
        edit_factor = 0.0

    if avg_improvement > _GOOD_IMPROVEMENT:
        improvement_factor = -_IMPROVEMENT_FACTOR
    elif avg_improvement < _BAD_IMPROVEMENT:
        improvement_factor = _IMPROVEMENT_FACTOR
    else:
        improvement_factor = 0.0

    return max(-_MAX_ADJUSTMENT, min(_MAX_ADJUSTMENT, edit_factor + improvement_factor))
