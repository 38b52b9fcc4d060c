"""Tests for cleanup.persistence — codec, SQL and in-memory rule stores.

Every store test runs against both backends.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import text

from models.schemas import (
    ApplyMode,
    CleanupShield,
    NormalizedBBox,
    PageTarget,
    RiskLevel,
    ShieldProvenance,
    ShieldSource,
    ShieldType,
    ZoneTarget,
)
from cleanup.exceptions import (
    CleanupError,
    InvalidRuleScopeError,
    PersistenceError,
    RuleDecodeError,
    RuleStorageError,
)
from cleanup.persistence import InMemoryRuleStore, SQLRuleStore
from cleanup.persistence.codec import decode_shields, encode_shields


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _shield(x: float = 0.1, **kwargs) -> CleanupShield:
    defaults = dict(
        shield_type=ShieldType.VENDOR_SPECIFIC,
        normalized_bbox=NormalizedBBox(x=x, y=0.05, width=0.3, height=0.1),
        confidence=0.85,
        apply_mode=ApplyMode.APPLIED,
        why_detected="vendor letterhead",
        provenance=ShieldProvenance(source=ShieldSource.VENDOR_RULE, vendor_id="acme"),
    )
    defaults.update(kwargs)
    return CleanupShield(**defaults)


@pytest_asyncio.fixture(params=["sql", "memory"])
async def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryRuleStore()
        return
    sql_store = SQLRuleStore(f"sqlite+aiosqlite:///{tmp_path / 'rules.db'}")
    await sql_store.create_schema()
    yield sql_store
    await sql_store.close()


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

class TestCodec:
    def test_round_trip_every_field(self):
        shield = _shield(
            risk_level=RiskLevel.MEDIUM,
            page_target=PageTarget.specific([2, 4]),
            zone_target=ZoneTarget(include_zones=("Header",), exclude_zones=("Totals",)),
            min_confidence=0.4,
        )
        [decoded] = decode_shields(encode_shields([shield]))
        assert decoded == shield

    def test_empty_list(self):
        assert encode_shields([]) == "[]"
        assert decode_shields("[]") == []

    def test_none_payload(self):
        assert decode_shields(None) == []

    @pytest.mark.parametrize("payload", ["not json", '[{"shield_type": "Nope"}]', '{"a": 1}', ""])
    def test_corrupt_payload(self, payload):
        with pytest.raises(RuleDecodeError):
            decode_shields(payload)

    def test_decode_error_is_persistence_error(self):
        with pytest.raises(PersistenceError):
            decode_shields("[1, 2]")


# ---------------------------------------------------------------------------
# Scope validation
# ---------------------------------------------------------------------------

class TestScopeValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("tenant_id, store_id, vendor_id", [
        ("", "s1", "acme"),
        ("t1", "", "acme"),
        ("t1", "s1", ""),
    ])
    async def test_empty_ids_rejected(self, store, tenant_id, store_id, vendor_id):
        with pytest.raises(InvalidRuleScopeError):
            await store.get_vendor_rules(tenant_id, store_id, vendor_id, None)
        with pytest.raises(InvalidRuleScopeError):
            await store.save_vendor_rules(tenant_id, store_id, vendor_id, None, [_shield()], "u1")

    @pytest.mark.asyncio
    async def test_other_calls_rejected(self, store):
        with pytest.raises(InvalidRuleScopeError):
            await store.get_template_rules("", "s1", "tpl", None)
        with pytest.raises(InvalidRuleScopeError):
            await store.get_audit_log("t1", "", "vendor", "acme")
        with pytest.raises(InvalidRuleScopeError):
            await store.save_review_case_shields("t1", "s1", "", [])
        with pytest.raises(InvalidRuleScopeError):
            await store.get_review_case_shields("", "s1", "case-1")

    def test_is_a_cleanup_error_not_a_storage_error(self):
        assert issubclass(InvalidRuleScopeError, CleanupError)
        assert not issubclass(InvalidRuleScopeError, PersistenceError)


# ---------------------------------------------------------------------------
# Vendor rules
# ---------------------------------------------------------------------------

class TestVendorRules:
    @pytest.mark.asyncio
    async def test_missing_is_empty(self, store):
        assert await store.get_vendor_rules("t1", "s1", "acme", None) == []

    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        shields = [_shield(0.1), _shield(0.5, page_target=PageTarget.first())]
        version = await store.save_vendor_rules("t1", "s1", "acme", "invoice", shields, "u1")
        assert version == 1

        loaded = await store.get_vendor_rules("t1", "s1", "acme", "invoice")
        assert len(loaded) == 2
        for before, after in zip(shields, loaded):
            assert after.shield_type == before.shield_type
            assert after.confidence == pytest.approx(before.confidence)
            assert after.apply_mode == before.apply_mode
            assert after.risk_level == before.risk_level
            assert after.page_target == before.page_target
            assert after.zone_target == before.zone_target
            assert after.why_detected == before.why_detected

    @pytest.mark.asyncio
    async def test_versions_increment(self, store):
        assert await store.save_vendor_rules("t1", "s1", "acme", None, [_shield(0.1)], "u1") == 1
        assert await store.save_vendor_rules("t1", "s1", "acme", None, [_shield(0.2)], "u2") == 2
        assert await store.save_vendor_rules("t1", "s1", "acme", None, [_shield(0.3)], "u3") == 3

        [active] = await store.get_vendor_rules("t1", "s1", "acme", None)
        assert active.normalized_bbox.x == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_empty_list_is_a_valid_version(self, store):
        await store.save_vendor_rules("t1", "s1", "acme", None, [_shield()], "u1")
        assert await store.save_vendor_rules("t1", "s1", "acme", None, [], "u1") == 2
        assert await store.get_vendor_rules("t1", "s1", "acme", None) == []

    @pytest.mark.asyncio
    async def test_tenant_and_store_isolation(self, store):
        await store.save_vendor_rules("t1", "s1", "acme", None, [_shield()], "u1")
        assert await store.get_vendor_rules("t2", "s1", "acme", None) == []
        assert await store.get_vendor_rules("t1", "s2", "acme", None) == []
        assert await store.get_vendor_rules("t1", "s1", "other", None) == []

    @pytest.mark.asyncio
    async def test_doc_type_exact_match(self, store):
        await store.save_vendor_rules("t1", "s1", "acme", "invoice", [_shield(0.1)], "u1")
        await store.save_vendor_rules("t1", "s1", "acme", None, [_shield(0.2), _shield(0.6)], "u1")

        assert len(await store.get_vendor_rules("t1", "s1", "acme", "invoice")) == 1
        assert len(await store.get_vendor_rules("t1", "s1", "acme", None)) == 2
        assert await store.get_vendor_rules("t1", "s1", "acme", "receipt") == []
        assert await store.get_vendor_rules("t1", "s1", "acme", "_all") == []

    @pytest.mark.asyncio
    async def test_doc_types_version_independently(self, store):
        assert await store.save_vendor_rules("t1", "s1", "acme", "invoice", [], "u1") == 1
        assert await store.save_vendor_rules("t1", "s1", "acme", None, [], "u1") == 1
        assert await store.save_vendor_rules("t1", "s1", "acme", "invoice", [], "u1") == 2


# ---------------------------------------------------------------------------
# Template rules
# ---------------------------------------------------------------------------

class TestTemplateRules:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        shield = _shield(shield_type=ShieldType.TEMPLATE_SPECIFIC)
        version = await store.save_template_rules("t1", "s1", "tpl-1", "acme", "invoice", [shield], "u1")
        assert version == 1
        [loaded] = await store.get_template_rules("t1", "s1", "tpl-1", "invoice")
        assert loaded.shield_type == ShieldType.TEMPLATE_SPECIFIC
        assert loaded.id == shield.id

    @pytest.mark.asyncio
    async def test_separate_from_vendor_rules(self, store):
        await store.save_vendor_rules("t1", "s1", "same-id", None, [_shield()], "u1")
        assert await store.get_template_rules("t1", "s1", "same-id", None) == []

    @pytest.mark.asyncio
    async def test_isolation(self, store):
        await store.save_template_rules("t1", "s1", "tpl-1", "acme", None, [_shield()], "u1")
        assert await store.get_template_rules("t9", "s1", "tpl-1", None) == []


# ---------------------------------------------------------------------------
# Audit log and review snapshots
# ---------------------------------------------------------------------------

class TestAuditLog:
    @pytest.mark.asyncio
    async def test_create_then_supersede(self, store):
        await store.save_vendor_rules("t1", "s1", "acme", None, [_shield()], "alice")
        await store.save_vendor_rules("t1", "s1", "acme", None, [], "bob")

        log = await store.get_audit_log("t1", "s1", "vendor", "acme")
        assert [e.action for e in log] == ["supersede", "create"]
        assert [e.user_id for e in log] == ["bob", "alice"]
        assert all(e.entity_type == "vendor" for e in log)

    @pytest.mark.asyncio
    async def test_scoped(self, store):
        await store.save_template_rules("t1", "s1", "tpl-1", "acme", None, [], "alice")
        assert await store.get_audit_log("t1", "s1", "vendor", "tpl-1") == []
        assert await store.get_audit_log("t2", "s1", "template", "tpl-1") == []
        assert len(await store.get_audit_log("t1", "s1", "template", "tpl-1")) == 1


class TestReviewCaseShields:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        shields = [_shield(0.1), _shield(0.5)]
        snapshot_id = await store.save_review_case_shields("t1", "s1", "case-1", shields, "/tmp/overlay.png")
        snapshot = await store.get_review_case_shields("t1", "s1", "case-1")

        assert snapshot is not None
        assert snapshot.id == snapshot_id
        assert snapshot.resolved_shields == shields
        assert snapshot.overlay_artifact_path == "/tmp/overlay.png"

    @pytest.mark.asyncio
    async def test_latest_wins(self, store):
        await store.save_review_case_shields("t1", "s1", "case-1", [_shield(0.1)])
        await store.save_review_case_shields("t1", "s1", "case-1", [])
        snapshot = await store.get_review_case_shields("t1", "s1", "case-1")
        assert snapshot.resolved_shields == []

    @pytest.mark.asyncio
    async def test_missing(self, store):
        assert await store.get_review_case_shields("t1", "s1", "nope") is None


# ---------------------------------------------------------------------------
# SQL-specific behaviour
# ---------------------------------------------------------------------------

class TestSQLRuleStore:
    @pytest.mark.asyncio
    async def test_versions_archived_not_deleted(self, tmp_path):
        store = SQLRuleStore(f"sqlite+aiosqlite:///{tmp_path / 'rules.db'}")
        await store.create_schema()
        try:
            for _ in range(3):
                await store.save_vendor_rules("t1", "s1", "acme", None, [], "u1")
            async with store._engine.connect() as conn:
                rows = (await conn.execute(text(
                    "SELECT version, archived_at IS NULL FROM vendor_cleanup_rules ORDER BY version"
                ))).all()
        finally:
            await store.close()
        assert [tuple(r) for r in rows] == [(1, 0), (2, 0), (3, 1)]

    @pytest.mark.asyncio
    async def test_corrupt_row_raises_decode_error(self, tmp_path):
        store = SQLRuleStore(f"sqlite+aiosqlite:///{tmp_path / 'rules.db'}")
        await store.create_schema()
        try:
            await store.save_vendor_rules("t1", "s1", "acme", None, [_shield()], "u1")
            async with store._engine.begin() as conn:
                await conn.execute(text("UPDATE vendor_cleanup_rules SET rules_json = 'garbage'"))
            with pytest.raises(RuleDecodeError):
                await store.get_vendor_rules("t1", "s1", "acme", None)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_missing_schema_raises_storage_error(self, tmp_path):
        store = SQLRuleStore(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        try:
            with pytest.raises(RuleStorageError) as excinfo:
                await store.get_vendor_rules("t1", "s1", "acme", None)
        finally:
            await store.close()
        assert excinfo.value.retryable


class TestInMemoryRuleStore:
    @pytest.mark.asyncio
    async def test_history_kept(self):
        from models.schemas import RuleScope

        store = InMemoryRuleStore()
        for _ in range(3):
            await store.save_vendor_rules("t1", "s1", "acme", None, [], "u1")
        history = store.history("vendor", RuleScope(tenant_id="t1", store_id="s1", entity_id="acme"))
        assert [v.version for v in history] == [1, 2, 3]
        assert [v.archived_at is None for v in history] == [False, False, True]
