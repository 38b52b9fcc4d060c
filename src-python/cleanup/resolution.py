"""Shield resolution service.

Glues the rule store to the precedence engine: loads the vendor and
template rule sets for a document's scope, tags them with their source and
merges them with the auto-detected shields and the reviewer's session
overrides.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Union

from pydantic import BaseModel, ValidationError

from cleanup.config import get_settings
from cleanup.detection.precedence import merge_shields
from cleanup.exceptions import InvalidShieldError, PersistenceError
from cleanup.persistence.base import RuleStore
from models.schemas import (
    ApplyMode,
    CleanupShield,
    CriticalZone,
    NormalizedBBox,
    PageTarget,
    PrecedenceResult,
    RiskLevel,
    ShieldSource,
    ZoneTarget,
)

logger = logging.getLogger(__name__)


class ResolutionOutcome(BaseModel):
    """Merged shields for one document plus what the rule lookup found."""
    result: PrecedenceResult
    vendor_rule_count: int = 0
    template_rule_count: int = 0
    degraded: bool = False            # a rule lookup failed and fail-open substituted []

    @property
    def shields(self) -> list[CleanupShield]:
        return self.result.shields

    @property
    def warnings(self) -> list[str]:
        return self.result.warnings


def _tag_source(
    shields: Sequence[CleanupShield],
    source: ShieldSource,
    **provenance_ids: Optional[str],
) -> list[CleanupShield]:
    """Stamp rule-store provenance onto shields loaded from a rule set."""
    tagged = []
    for shield in shields:
        update: dict[str, Any] = {"source": source}
        update.update({k: v for k, v in provenance_ids.items() if v is not None})
        tagged.append(shield.model_copy(update={
            "provenance": shield.provenance.model_copy(update=update),
        }))
    return tagged


class ShieldResolver:
    """Resolves the authoritative shield set for a document.

    Args:
        store: Where vendor and template rule sets live.
        fail_open: When True, a failing rule lookup is treated as "no rules"
            and reported as a warning instead of raising.  Defaults to
            ``CleanupSettings.fail_open_rule_lookup``.
    """

    def __init__(self, store: RuleStore, *, fail_open: Optional[bool] = None):
        self.store = store
        self.fail_open = get_settings().fail_open_rule_lookup if fail_open is None else fail_open

    async def _lookup(
        self,
        kind: str,
        coro,
        tenant_id: str,
        store_id: str,
    ) -> tuple[list[CleanupShield], Optional[str]]:
        try:
            return await coro, None
        except PersistenceError as exc:
            if not self.fail_open:
                raise
            logger.warning(
                f"{kind.capitalize()} rule lookup failed, continuing without {kind} rules: {exc}",
                extra={
                    "tenant_id": tenant_id,
                    "store_id": store_id,
                    "error_type": type(exc).__name__,
                },
            )
            return [], f"{kind.capitalize()} rules unavailable ({type(exc).__name__}); resolved without them"

    async def resolve(
        self,
        tenant_id: str,
        store_id: str,
        auto_shields: Sequence[CleanupShield],
        critical_zones: Sequence[CriticalZone] = (),
        *,
        vendor_id: Optional[str] = None,
        template_id: Optional[str] = None,
        doc_type: Optional[str] = None,
        session_overrides: Sequence[CleanupShield] = (),
    ) -> ResolutionOutcome:
        """Load the applicable rule sets and merge everything.

        Rule sets are looked up only for the ids given; ``doc_type`` must
        match exactly.

        Raises:
            PersistenceError: if a lookup fails and fail-open is off.
        """
        lookup_warnings: list[str] = []

        vendor_rules: list[CleanupShield] = []
        if vendor_id:
            vendor_rules, warning = await self._lookup(
                "vendor",
                self.store.get_vendor_rules(tenant_id, store_id, vendor_id, doc_type),
                tenant_id, store_id,
            )
            if warning:
                lookup_warnings.append(warning)
            vendor_rules = _tag_source(vendor_rules, ShieldSource.VENDOR_RULE, vendor_id=vendor_id)

        template_rules: list[CleanupShield] = []
        if template_id:
            template_rules, warning = await self._lookup(
                "template",
                self.store.get_template_rules(tenant_id, store_id, template_id, doc_type),
                tenant_id, store_id,
            )
            if warning:
                lookup_warnings.append(warning)
            template_rules = _tag_source(
                template_rules, ShieldSource.TEMPLATE_RULE,
                template_id=template_id, vendor_id=vendor_id,
            )

        result = merge_shields(
            auto_shields,
            vendor_rules,
            template_rules,
            session_overrides,
            critical_zones,
        )
        if lookup_warnings:
            result = result.model_copy(update={"warnings": lookup_warnings + result.warnings})

        logger.debug(
            f"Resolved {len(result.shields)} shields "
            f"(vendor={len(vendor_rules)}, template={len(template_rules)}, "
            f"session={len(session_overrides)})",
            extra={"tenant_id": tenant_id, "store_id": store_id, "doc_type": doc_type},
        )
        return ResolutionOutcome(
            result=result,
            vendor_rule_count=len(vendor_rules),
            template_rule_count=len(template_rules),
            degraded=bool(lookup_warnings),
        )


def add_user_shield(
    bbox: Union[NormalizedBBox, dict],
    user_id: str,
    reason: Optional[str] = None,
    page_target: Optional[PageTarget] = None,
    zone_target: Optional[ZoneTarget] = None,
) -> CleanupShield:
    """Build a reviewer-drawn shield (SessionOverride, Applied, confidence 1.0).

    Raises:
        InvalidShieldError: if the box is degenerate or off the page, or
            *user_id* is empty.
    """
    if not user_id:
        raise InvalidShieldError("A user shield needs a user_id")
    try:
        box = bbox if isinstance(bbox, NormalizedBBox) else NormalizedBBox.model_validate(bbox)
    except ValidationError as exc:
        raise InvalidShieldError(
            "Shield bounding box must have non-zero size and lie within the page",
            {"errors": exc.error_count()},
        ) from exc

    shield = CleanupShield.user_defined(box, user_id, reason)
    update: dict[str, Any] = {}
    if page_target is not None:
        update["page_target"] = page_target
    if zone_target is not None:
        update["zone_target"] = zone_target
    return shield.model_copy(update=update) if update else shield


def determine_apply_mode(shield: CleanupShield, min_auto_confidence: Optional[float] = None) -> ApplyMode:
    """Applied only for confident, low-risk shields; everything else is Suggested."""
    threshold = get_settings().min_auto_confidence if min_auto_confidence is None else min_auto_confidence
    if shield.confidence >= threshold and shield.risk_level == RiskLevel.LOW:
        return ApplyMode.APPLIED
    return ApplyMode.SUGGESTED
