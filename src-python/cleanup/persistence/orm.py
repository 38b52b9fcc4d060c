"""SQLAlchemy ORM models for the cleanup rule database."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


def _uuid_hex() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# ── Vendor rules ───────────────────────────────────────────────


class VendorCleanupRule(Base):
    __tablename__ = "vendor_cleanup_rules"
    __table_args__ = (
        Index("ix_vendor_rules_scope", "tenant_id", "store_id", "vendor_id", "doc_type"),
    )

    id = Column(String(32), primary_key=True, default=_uuid_hex)
    tenant_id = Column(String(128), nullable=False)
    store_id = Column(String(128), nullable=False)
    vendor_id = Column(String(128), nullable=False)
    doc_type = Column(String(64), nullable=True)  # NULL is its own scope, not "any"
    rules_json = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(128), nullable=True)


# ── Template rules ─────────────────────────────────────────────


class TemplateCleanupRule(Base):
    __tablename__ = "template_cleanup_rules"
    __table_args__ = (
        Index("ix_template_rules_scope", "tenant_id", "store_id", "template_id", "doc_type"),
    )

    id = Column(String(32), primary_key=True, default=_uuid_hex)
    tenant_id = Column(String(128), nullable=False)
    store_id = Column(String(128), nullable=False)
    template_id = Column(String(128), nullable=False)
    vendor_id = Column(String(128), nullable=False)
    doc_type = Column(String(64), nullable=True)
    rules_json = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(128), nullable=True)


# ── Audit log ──────────────────────────────────────────────────


class CleanupAuditLog(Base):
    __tablename__ = "cleanup_audit_log"
    __table_args__ = (
        Index("ix_audit_entity", "tenant_id", "store_id", "entity_type", "entity_id"),
    )

    seq = Column(Integer, primary_key=True, autoincrement=True)  # insertion order
    id = Column(String(32), unique=True, nullable=False, default=_uuid_hex)
    tenant_id = Column(String(128), nullable=False)
    store_id = Column(String(128), nullable=False)
    entity_type = Column(String(16), nullable=False)  # "vendor" | "template"
    entity_id = Column(String(128), nullable=False)
    action = Column(String(16), nullable=False)       # "create" | "supersede"
    diff_json = Column(Text, nullable=True)
    user_id = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ── Review case snapshots ──────────────────────────────────────


class ReviewCaseShieldsRow(Base):
    __tablename__ = "review_case_shields"
    __table_args__ = (
        Index("ix_review_case", "tenant_id", "store_id", "review_case_id"),
    )

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, default=_uuid_hex)
    tenant_id = Column(String(128), nullable=False)
    store_id = Column(String(128), nullable=False)
    review_case_id = Column(String(128), nullable=False)
    resolved_shields_json = Column(Text, nullable=False)
    overlay_artifact_path = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
