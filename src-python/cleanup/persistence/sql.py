"""SQLAlchemy-backed rule store.

Works with any async SQLAlchemy URL; the default is SQLite through
``aiosqlite``.  Every query filters on ``tenant_id`` and ``store_id`` before
anything else, and ``doc_type`` is compared with ``IS NULL`` when the caller
asks for the doc-type-less rule set.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Type, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from cleanup.config import get_settings
from cleanup.exceptions import RuleStorageError
from cleanup.structured_logging import scoped
from cleanup.persistence.base import (
    ACTION_CREATE,
    ACTION_SUPERSEDE,
    ENTITY_TEMPLATE,
    ENTITY_VENDOR,
    RuleStore,
    rule_scope,
)
from cleanup.persistence.codec import decode_shields, encode_shields
from cleanup.persistence.orm import (
    Base,
    CleanupAuditLog,
    ReviewCaseShieldsRow,
    TemplateCleanupRule,
    VendorCleanupRule,
)
from models.schemas import CleanupAuditEntry, CleanupShield, ReviewCaseShields

logger = logging.getLogger(__name__)

_RuleModel = Union[Type[VendorCleanupRule], Type[TemplateCleanupRule]]


def _doc_type_clause(column, doc_type: Optional[str]):
    return column.is_(None) if doc_type is None else column == doc_type


class SQLRuleStore(RuleStore):
    """:class:`RuleStore` on top of SQLAlchemy's async ORM.

    Args:
        database_url: Async SQLAlchemy URL; defaults to
            ``CleanupSettings.database_url``.
        engine: An existing engine to share instead of creating one.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        *,
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        super().__init__()
        self._owns_engine = engine is None
        self._engine = engine or create_async_engine(database_url or get_settings().database_url)
        self._session = async_sessionmaker(self._engine, expire_on_commit=False)

    async def create_schema(self) -> None:
        """Create the rule tables if they don't exist (dev / tests)."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise RuleStorageError("Failed to create cleanup rule schema") from exc

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()

    # ── Internals ──

    async def _save_rules(
        self,
        model: _RuleModel,
        entity_type: str,
        entity_column: str,
        tenant_id: str,
        store_id: str,
        entity_id: str,
        doc_type: Optional[str],
        shields: list[CleanupShield],
        updated_by: str,
        **extra_columns,
    ) -> int:
        rule_scope(tenant_id, store_id, entity_id, doc_type)
        rules_json = encode_shields(shields)
        now = datetime.now(timezone.utc)
        log = scoped(
            logger,
            tenant_id=tenant_id,
            store_id=store_id,
            doc_type=doc_type,
            **{f"{entity_type}_id": entity_id},
        )

        try:
            async with self._write_lock, self._session() as db, db.begin():
                current = (await db.execute(
                    select(model).where(
                        model.tenant_id == tenant_id,
                        model.store_id == store_id,
                        getattr(model, entity_column) == entity_id,
                        _doc_type_clause(model.doc_type, doc_type),
                        model.archived_at.is_(None),
                        model.enabled.is_(True),
                    ).order_by(model.version.desc()).limit(1)
                )).scalar_one_or_none()

                if current is not None:
                    current.archived_at = now
                    current.enabled = False
                    current.updated_at = now
                    new_version = current.version + 1
                else:
                    new_version = 1

                db.add(model(
                    tenant_id=tenant_id,
                    store_id=store_id,
                    doc_type=doc_type,
                    rules_json=rules_json,
                    enabled=True,
                    version=new_version,
                    created_at=now,
                    created_by=updated_by,
                    **{entity_column: entity_id},
                    **extra_columns,
                ))
                db.add(CleanupAuditLog(
                    tenant_id=tenant_id,
                    store_id=store_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    action=ACTION_SUPERSEDE if current is not None else ACTION_CREATE,
                    diff_json=json.dumps({"version": new_version, "rule_count": len(shields)}),
                    user_id=updated_by,
                    created_at=now,
                ))
        except SQLAlchemyError as exc:
            log.error(
                f"Failed to save {entity_type} cleanup rules",
                extra={"error_type": type(exc).__name__},
            )
            raise RuleStorageError(
                f"Failed to save {entity_type} cleanup rules",
                {"tenant_id": tenant_id, "store_id": store_id, entity_column: entity_id},
            ) from exc

        log.info(
            f"Saved {entity_type} cleanup rules v{new_version} ({len(shields)} shields)",
            extra={"version": new_version, "shield_count": len(shields)},
        )
        return new_version

    async def _get_rules(
        self,
        model: _RuleModel,
        entity_column: str,
        tenant_id: str,
        store_id: str,
        entity_id: str,
        doc_type: Optional[str],
    ) -> list[CleanupShield]:
        rule_scope(tenant_id, store_id, entity_id, doc_type)
        try:
            async with self._session() as db:
                rules_json = (await db.execute(
                    select(model.rules_json).where(
                        model.tenant_id == tenant_id,
                        model.store_id == store_id,
                        getattr(model, entity_column) == entity_id,
                        _doc_type_clause(model.doc_type, doc_type),
                        model.archived_at.is_(None),
                        model.enabled.is_(True),
                    ).order_by(model.version.desc()).limit(1)
                )).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RuleStorageError(
                f"Failed to load cleanup rules from {model.__tablename__}",
                {"tenant_id": tenant_id, "store_id": store_id, entity_column: entity_id},
            ) from exc

        if rules_json is None:
            return []
        return decode_shields(rules_json)

    # ── Vendor rules ──

    async def save_vendor_rules(self, tenant_id, store_id, vendor_id, doc_type, shields, updated_by):
        return await self._save_rules(
            VendorCleanupRule, ENTITY_VENDOR, "vendor_id",
            tenant_id, store_id, vendor_id, doc_type, shields, updated_by,
        )

    async def get_vendor_rules(self, tenant_id, store_id, vendor_id, doc_type):
        return await self._get_rules(
            VendorCleanupRule, "vendor_id", tenant_id, store_id, vendor_id, doc_type,
        )

    # ── Template rules ──

    async def save_template_rules(
        self, tenant_id, store_id, template_id, vendor_id, doc_type, shields, updated_by,
    ):
        return await self._save_rules(
            TemplateCleanupRule, ENTITY_TEMPLATE, "template_id",
            tenant_id, store_id, template_id, doc_type, shields, updated_by,
            vendor_id=vendor_id,
        )

    async def get_template_rules(self, tenant_id, store_id, template_id, doc_type):
        return await self._get_rules(
            TemplateCleanupRule, "template_id", tenant_id, store_id, template_id, doc_type,
        )

    # ── Audit ──

    async def get_audit_log(self, tenant_id, store_id, entity_type, entity_id):
        rule_scope(tenant_id, store_id, entity_id)
        try:
            async with self._session() as db:
                rows = (await db.execute(
                    select(CleanupAuditLog).where(
                        CleanupAuditLog.tenant_id == tenant_id,
                        CleanupAuditLog.store_id == store_id,
                        CleanupAuditLog.entity_type == entity_type,
                        CleanupAuditLog.entity_id == entity_id,
                    ).order_by(CleanupAuditLog.seq.desc())
                )).scalars().all()
        except SQLAlchemyError as exc:
            raise RuleStorageError("Failed to read cleanup audit log") from exc

        return [
            CleanupAuditEntry(
                id=row.id,
                tenant_id=row.tenant_id,
                store_id=row.store_id,
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                action=row.action,
                user_id=row.user_id,
                diff_json=row.diff_json,
                created_at=row.created_at,
            )
            for row in rows
        ]

    # ── Review case snapshots ──

    async def save_review_case_shields(
        self, tenant_id, store_id, review_case_id, shields, overlay_path=None,
    ):
        rule_scope(tenant_id, store_id, review_case_id)
        row = ReviewCaseShieldsRow(
            id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            store_id=store_id,
            review_case_id=review_case_id,
            resolved_shields_json=encode_shields(shields),
            overlay_artifact_path=overlay_path,
        )
        try:
            async with self._session() as db, db.begin():
                db.add(row)
        except SQLAlchemyError as exc:
            raise RuleStorageError(
                "Failed to save review case shields",
                {"tenant_id": tenant_id, "store_id": store_id, "review_case_id": review_case_id},
            ) from exc

        logger.info(
            f"Saved review case {review_case_id} shields",
            extra={"tenant_id": tenant_id, "store_id": store_id, "shield_count": len(shields)},
        )
        return row.id

    async def get_review_case_shields(self, tenant_id, store_id, review_case_id):
        rule_scope(tenant_id, store_id, review_case_id)
        try:
            async with self._session() as db:
                row = (await db.execute(
                    select(ReviewCaseShieldsRow).where(
                        ReviewCaseShieldsRow.tenant_id == tenant_id,
                        ReviewCaseShieldsRow.store_id == store_id,
                        ReviewCaseShieldsRow.review_case_id == review_case_id,
                    ).order_by(ReviewCaseShieldsRow.seq.desc()).limit(1)
                )).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RuleStorageError("Failed to load review case shields") from exc

        if row is None:
            return None
        return ReviewCaseShields(
            id=row.id,
            tenant_id=row.tenant_id,
            store_id=row.store_id,
            review_case_id=row.review_case_id,
            resolved_shields=decode_shields(row.resolved_shields_json),
            overlay_artifact_path=row.overlay_artifact_path,
            created_at=row.created_at,
        )
