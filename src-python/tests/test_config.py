"""Tests for cleanup.config and cleanup.structured_logging."""

from __future__ import annotations

import json
import logging
import sys

import pytest

from cleanup.config import CleanupSettings, get_settings, load_settings
from cleanup.exceptions import ConfigurationError
from cleanup.detection import detection_config as dc
from cleanup.structured_logging import JSONFormatter, configure_logging, scoped, setup_logging


class TestCleanupSettings:
    def test_defaults(self):
        s = CleanupSettings(_env_file=None)
        assert s.shield_dedup_iou_threshold == pytest.approx(0.85)
        assert s.critical_overlap_warn == pytest.approx(0.05)
        assert s.critical_overlap_block_apply == pytest.approx(0.10)
        assert s.content_variance_threshold == pytest.approx(100.0)
        assert s.min_auto_confidence == pytest.approx(0.6)
        assert s.fail_open_rule_lookup is False

    def test_defaults_match_tuning_constants(self):
        s = CleanupSettings(_env_file=None)
        assert s.shield_dedup_iou_threshold == dc.SHIELD_DEDUP_IOU_THRESHOLD
        assert s.critical_overlap_warn == dc.CRITICAL_OVERLAP_WARN
        assert s.critical_overlap_block_apply == dc.CRITICAL_OVERLAP_BLOCK_APPLY
        assert s.content_variance_threshold == dc.CONTENT_VARIANCE_THRESHOLD
        assert s.min_auto_confidence == dc.MIN_AUTO_CONFIDENCE

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CLEANUP_SHIELD_DEDUP_IOU_THRESHOLD", "0.7")
        monkeypatch.setenv("CLEANUP_FAIL_OPEN_RULE_LOOKUP", "true")
        s = load_settings(_env_file=None)
        assert s.shield_dedup_iou_threshold == pytest.approx(0.7)
        assert s.fail_open_rule_lookup is True

    def test_warn_must_be_below_block(self):
        with pytest.raises(ConfigurationError):
            load_settings(_env_file=None, critical_overlap_warn=0.5, critical_overlap_block_apply=0.5)

    @pytest.mark.parametrize("field, value", [
        ("critical_overlap_block_apply", 1.5),
        ("critical_overlap_warn", -0.1),
        ("shield_dedup_iou_threshold", 0.2),
        ("min_auto_confidence", 2.0),
    ])
    def test_out_of_range(self, field, value):
        with pytest.raises(ConfigurationError):
            load_settings(_env_file=None, **{field: value})

    def test_singleton(self):
        assert get_settings() is get_settings()


class TestJSONFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("cleanup.test", logging.INFO, __file__, 1, "saved %d", (3,), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        payload = json.loads(JSONFormatter().format(self._record()))
        assert payload["severity"] == "INFO"
        assert payload["logger"] == "cleanup.test"
        assert payload["message"] == "saved 3"
        assert "timestamp" in payload

    def test_extras_lifted(self):
        payload = json.loads(JSONFormatter().format(
            self._record(tenant_id="t1", version=2, unrelated="x")
        ))
        assert payload["tenant_id"] == "t1"
        assert payload["version"] == 2
        assert "unrelated" not in payload

    def test_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        payload = json.loads(JSONFormatter().format(record))
        assert payload["exception"]["type"] == "ValueError"
        assert payload["exception"]["message"] == "boom"


class TestSetupLogging:
    def test_json_handler_installed(self):
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging("json", "debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])

    def test_configure_from_settings(self):
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            configure_logging(load_settings(_env_file=None, log_format="json", log_level="WARNING"))
            assert root.level == logging.WARNING
            assert isinstance(root.handlers[0].formatter, JSONFormatter)

            configure_logging(load_settings(_env_file=None, log_format="text", log_level="INFO"))
            assert root.level == logging.INFO
            assert not isinstance(root.handlers[0].formatter, JSONFormatter)
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])


class TestScopedLogger:
    def test_scope_merged_with_call_extra(self, caplog):
        log = scoped(logging.getLogger("cleanup.scoped"), tenant_id="t1", store_id=None)
        with caplog.at_level(logging.INFO, logger="cleanup.scoped"):
            log.info("saved", extra={"version": 3})
        [record] = caplog.records
        assert record.tenant_id == "t1"
        assert record.version == 3
        assert not hasattr(record, "store_id")
