"""In-process rule store, used for tests and single-process deployments."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from cleanup.persistence.base import (
    ACTION_CREATE,
    ACTION_SUPERSEDE,
    ENTITY_TEMPLATE,
    ENTITY_VENDOR,
    RuleStore,
    rule_scope,
)
from cleanup.structured_logging import scoped
from models.schemas import (
    CleanupAuditEntry,
    CleanupShield,
    ReviewCaseShields,
    RuleScope,
    RuleSetVersion,
)

logger = logging.getLogger(__name__)

_ScopeKey = tuple[str, str, str, Optional[str]]


class InMemoryRuleStore(RuleStore):
    """Dict-backed :class:`RuleStore` that keeps every version ever saved.

    Keys are ``RuleScope.as_key()`` tuples, so ``doc_type=None`` can never
    collide with a real doc type.
    """

    def __init__(self) -> None:
        super().__init__()
        self._vendor: dict[_ScopeKey, list[RuleSetVersion]] = defaultdict(list)
        self._template: dict[_ScopeKey, list[RuleSetVersion]] = defaultdict(list)
        self._audit: list[CleanupAuditEntry] = []
        self._review_cases: list[ReviewCaseShields] = []

    # ── Internals ──

    async def _save(
        self,
        table: dict[_ScopeKey, list[RuleSetVersion]],
        entity_type: str,
        scope: RuleScope,
        shields: list[CleanupShield],
        updated_by: str,
        vendor_id: Optional[str] = None,
    ) -> int:
        async with self._write_lock:
            now = datetime.now(timezone.utc)
            history = table[scope.as_key()]
            active = next((v for v in reversed(history) if v.archived_at is None), None)
            if active is not None:
                active.archived_at = now
                active.enabled = False

            version = RuleSetVersion(
                scope=scope,
                vendor_id=vendor_id,
                version=(active.version + 1) if active else 1,
                rules=list(shields),
                created_at=now,
                created_by=updated_by,
            )
            history.append(version)

            self._audit.append(CleanupAuditEntry(
                tenant_id=scope.tenant_id,
                store_id=scope.store_id,
                entity_type=entity_type,
                entity_id=scope.entity_id,
                action=ACTION_SUPERSEDE if active else ACTION_CREATE,
                user_id=updated_by,
                diff_json=json.dumps({"version": version.version, "rule_count": len(shields)}),
                created_at=now,
            ))

        scoped(logger, tenant_id=scope.tenant_id, store_id=scope.store_id, doc_type=scope.doc_type).info(
            f"Saved {entity_type} cleanup rules v{version.version} ({len(shields)} shields) in memory",
            extra={"version": version.version, "shield_count": len(shields)},
        )
        return version.version

    @staticmethod
    def _active(
        table: dict[_ScopeKey, list[RuleSetVersion]],
        scope: RuleScope,
    ) -> list[CleanupShield]:
        for version in reversed(table.get(scope.as_key(), [])):
            if version.archived_at is None and version.enabled:
                return list(version.rules)
        return []

    def history(self, entity_type: str, scope: RuleScope) -> list[RuleSetVersion]:
        """Every saved version for *scope*, oldest first."""
        table = self._vendor if entity_type == ENTITY_VENDOR else self._template
        return list(table.get(scope.as_key(), []))

    # ── Vendor rules ──

    async def save_vendor_rules(self, tenant_id, store_id, vendor_id, doc_type, shields, updated_by):
        scope = rule_scope(tenant_id, store_id, vendor_id, doc_type)
        return await self._save(self._vendor, ENTITY_VENDOR, scope, shields, updated_by)

    async def get_vendor_rules(self, tenant_id, store_id, vendor_id, doc_type):
        scope = rule_scope(tenant_id, store_id, vendor_id, doc_type)
        return self._active(self._vendor, scope)

    # ── Template rules ──

    async def save_template_rules(
        self, tenant_id, store_id, template_id, vendor_id, doc_type, shields, updated_by,
    ):
        scope = rule_scope(tenant_id, store_id, template_id, doc_type)
        return await self._save(
            self._template, ENTITY_TEMPLATE, scope, shields, updated_by, vendor_id=vendor_id,
        )

    async def get_template_rules(self, tenant_id, store_id, template_id, doc_type):
        scope = rule_scope(tenant_id, store_id, template_id, doc_type)
        return self._active(self._template, scope)

    # ── Audit ──

    async def get_audit_log(self, tenant_id, store_id, entity_type, entity_id):
        rule_scope(tenant_id, store_id, entity_id)
        return [
            entry for entry in reversed(self._audit)
            if entry.tenant_id == tenant_id
            and entry.store_id == store_id
            and entry.entity_type == entity_type
            and entry.entity_id == entity_id
        ]

    # ── Review case snapshots ──

    async def save_review_case_shields(
        self, tenant_id, store_id, review_case_id, shields, overlay_path=None,
    ):
        rule_scope(tenant_id, store_id, review_case_id)
        snapshot = ReviewCaseShields(
            tenant_id=tenant_id,
            store_id=store_id,
            review_case_id=review_case_id,
            resolved_shields=list(shields),
            overlay_artifact_path=overlay_path,
        )
        async with self._write_lock:
            self._review_cases.append(snapshot)
        return snapshot.id

    async def get_review_case_shields(self, tenant_id, store_id, review_case_id):
        rule_scope(tenant_id, store_id, review_case_id)
        for snapshot in reversed(self._review_cases):
            if (
                snapshot.tenant_id == tenant_id
                and snapshot.store_id == store_id
                and snapshot.review_case_id == review_case_id
            ):
                return snapshot
        return None
