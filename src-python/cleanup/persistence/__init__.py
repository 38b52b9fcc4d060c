"""Versioned, tenant-scoped storage for vendor and template cleanup rules."""

from cleanup.persistence.base import RuleStore
from cleanup.persistence.memory import InMemoryRuleStore
from cleanup.persistence.sql import SQLRuleStore

__all__ = ["RuleStore", "InMemoryRuleStore", "SQLRuleStore"]
