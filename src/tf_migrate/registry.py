"""
Registry mapping (resource type, source version, target version) to rules.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import RegistrationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .rule import Rule

logger: logging.Logger = logging.getLogger(__name__)

RegistryKey = tuple[str, int, int]


class RuleRegistry:
    """Resolves the rule responsible for a resource type and version pair.

    Rules are registered once at start-up. Pipelines call ``freeze`` on the
    registry they receive; after that it is read-only and can be shared by
    threads without locking.
    """

    def __init__(self) -> None:
        self._rules: dict[RegistryKey, Rule] = {}
        self._ordered: list[tuple[int, int, Rule]] = []
        self._frozen = False

    def register(self, resource_type: str, source_version: int, target_version: int, rule: Rule) -> None:
        """Associate ``resource_type`` with ``rule`` for a version pair.

        Raises:
            RegistrationError: If the registry is frozen or another rule is
                already registered under the same key.
        """
        if self._frozen:
            msg = f"Cannot register {resource_type} after the registry was frozen"
            raise RegistrationError(msg)

        key = (resource_type, source_version, target_version)
        existing = self._rules.get(key)
        if existing is rule:
            return
        if existing is not None:
            msg = (
                f"Duplicate rule for {resource_type} (v{source_version} -> v{target_version}): "
                f"'{existing.resource_type}' is already registered"
            )
            raise RegistrationError(msg)

        self._rules[key] = rule
        if not any(r is rule and (s, t) == (source_version, target_version) for s, t, r in self._ordered):
            self._ordered.append((source_version, target_version, rule))
        logger.debug(f"Registered rule for {resource_type} (v{source_version} -> v{target_version})")

    def register_rule(self, rule: Rule, source_version: int, target_version: int) -> None:
        """Register ``rule`` under its primary type and all of its aliases."""
        for resource_type in rule.type_names:
            self.register(resource_type, source_version, target_version, rule)

    def lookup(self, resource_type: str, source_version: int, target_version: int) -> Rule | None:
        return self._rules.get((resource_type, source_version, target_version))

    def list_all(
        self, source_version: int, target_version: int, resource_types: Iterable[str] | None = None
    ) -> list[Rule]:
        """Return the distinct rules of a version pair in registration order.

        Args:
            source_version: Source schema version
            target_version: Target schema version
            resource_types: Optional filter; only rules handling one of these
                types are returned
        """
        wanted = set(resource_types) if resource_types is not None else None
        rules = []
        for source, target, rule in self._ordered:
            if (source, target) != (source_version, target_version):
                continue
            if wanted is not None and wanted.isdisjoint(rule.type_names):
                continue
            rules.append(rule)
        return rules

    def version_paths(self) -> list[tuple[int, int]]:
        """Supported (source, target) pairs in registration order."""
        paths: list[tuple[int, int]] = []
        for source, target, _rule in self._ordered:
            if (source, target) not in paths:
                paths.append((source, target))
        return paths

    def schema_versions(self, source_version: int, target_version: int) -> dict[str, int]:
        """Declared target schema version for every type a version pair migrates."""
        versions: dict[str, int] = {}
        for rule in self.list_all(source_version, target_version):
            for resource_type in (*rule.type_names, rule.target_type):
                versions.setdefault(resource_type, rule.schema_version)
        return versions

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, key: object) -> bool:
        return key in self._rules
