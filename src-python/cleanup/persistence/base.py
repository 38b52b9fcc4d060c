"""Rule store interface.

Every query is scoped by ``(tenant_id, store_id)``; rule sets are further
keyed by vendor or template id and ``doc_type``, matched exactly
(``None`` is a key of its own, never a wildcard).

Saving never deletes: the active version for the key is archived and a new
version ``n + 1`` is inserted, with an audit entry for each save.
"""

from __future__ import annotations

import abc
import asyncio
from typing import Optional

from pydantic import ValidationError

from cleanup.exceptions import InvalidRuleScopeError
from models.schemas import CleanupAuditEntry, CleanupShield, ReviewCaseShields, RuleScope

ENTITY_VENDOR = "vendor"
ENTITY_TEMPLATE = "template"

ACTION_CREATE = "create"
ACTION_SUPERSEDE = "supersede"


def rule_scope(
    tenant_id: str,
    store_id: str,
    entity_id: str,
    doc_type: Optional[str] = None,
) -> RuleScope:
    """Build the exact-match key for a store call.

    Every backend calls this first, so empty ids fail the same way everywhere.

    Raises:
        InvalidRuleScopeError: if any id is empty.
    """
    try:
        return RuleScope(tenant_id=tenant_id, store_id=store_id, entity_id=entity_id, doc_type=doc_type)
    except ValidationError as exc:
        raise InvalidRuleScopeError(
            "Rule store ids must be non-empty",
            {"tenant_id": tenant_id, "store_id": store_id, "entity_id": entity_id},
        ) from exc


class RuleStore(abc.ABC):
    """Async storage for vendor / template rule sets and review snapshots."""

    def __init__(self) -> None:
        # Serializes read-archive-insert so two saves on one key can't both
        # claim the same version.
        self._write_lock = asyncio.Lock()

    # ── Vendor rules ──

    @abc.abstractmethod
    async def save_vendor_rules(
        self,
        tenant_id: str,
        store_id: str,
        vendor_id: str,
        doc_type: Optional[str],
        shields: list[CleanupShield],
        updated_by: str,
    ) -> int:
        """Persist a new version of a vendor rule set and return its version number."""

    @abc.abstractmethod
    async def get_vendor_rules(
        self,
        tenant_id: str,
        store_id: str,
        vendor_id: str,
        doc_type: Optional[str],
    ) -> list[CleanupShield]:
        """Return the active vendor rule set, or ``[]`` if none exists."""

    # ── Template rules ──

    @abc.abstractmethod
    async def save_template_rules(
        self,
        tenant_id: str,
        store_id: str,
        template_id: str,
        vendor_id: str,
        doc_type: Optional[str],
        shields: list[CleanupShield],
        updated_by: str,
    ) -> int:
        """Persist a new version of a template rule set and return its version number."""

    @abc.abstractmethod
    async def get_template_rules(
        self,
        tenant_id: str,
        store_id: str,
        template_id: str,
        doc_type: Optional[str],
    ) -> list[CleanupShield]:
        """Return the active template rule set, or ``[]`` if none exists."""

    # ── Audit ──

    @abc.abstractmethod
    async def get_audit_log(
        self,
        tenant_id: str,
        store_id: str,
        entity_type: str,
        entity_id: str,
    ) -> list[CleanupAuditEntry]:
        """Audit entries for one vendor or template, newest first."""

    # ── Review case snapshots ──

    @abc.abstractmethod
    async def save_review_case_shields(
        self,
        tenant_id: str,
        store_id: str,
        review_case_id: str,
        shields: list[CleanupShield],
        overlay_path: Optional[str] = None,
    ) -> str:
        """Store the resolved shields used for a review case; returns the snapshot id."""

    @abc.abstractmethod
    async def get_review_case_shields(
        self,
        tenant_id: str,
        store_id: str,
        review_case_id: str,
    ) -> Optional[ReviewCaseShields]:
        """Latest snapshot for a review case, or None."""

    async def close(self) -> None:
        """Release backend resources. No-op by default."""
