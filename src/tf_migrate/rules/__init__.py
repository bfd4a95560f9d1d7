"""
Built-in migration rules for the v4 -> v5 provider upgrade.
"""

from __future__ import annotations

from ..registry import RuleRegistry
from . import dns_record, gateway_policy, lists, workers_kv, zones

SOURCE_VERSION = 4
TARGET_VERSION = 5

# Registration order is the order rules run in for preprocessing and state merges
ALL_RULES = (
    dns_record.RULE,
    lists.LIST_RULE,
    lists.LIST_ITEM_RULE,
    gateway_policy.RULE,
    workers_kv.RULE,
    zones.RULE,
)


def register_all(registry: RuleRegistry) -> RuleRegistry:
    for rule in ALL_RULES:
        registry.register_rule(rule, SOURCE_VERSION, TARGET_VERSION)
    return registry


def build_registry() -> RuleRegistry:
    """A frozen registry holding every built-in rule."""
    registry = register_all(RuleRegistry())
    registry.freeze()
    return registry


__all__ = ["ALL_RULES", "SOURCE_VERSION", "TARGET_VERSION", "build_registry", "register_all"]
