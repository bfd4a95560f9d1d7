"""
State migration pipeline.

A state document is loaded, child resources folded into their parents are
merged first, then every resource entry is dispatched to its rule instance by
instance. The engine owns the bookkeeping rules must not have to repeat:
``schema_version`` is set to the declared target version, the entry type is
renamed, and entries left without instances are dropped.
"""

from __future__ import annotations

import copy
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .context import MigrationContext
from .rule import DATA_PREFIX, strip_data_prefix
from .state_toolkit import set_schema_version

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .diagnostics import Diagnostic
    from .models import StateMerge
    from .registry import RuleRegistry
    from .rule import Rule

logger: logging.Logger = logging.getLogger(__name__)

StateDocument = dict[str, Any]


@dataclass
class StateMigrationResult:
    """Outcome of migrating one state document.

    ``content`` is ``None`` when the document could not be loaded.
    """

    filename: str
    original: str
    content: str | None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    transformed: dict[str, int] = field(default_factory=dict)
    merged: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.content is not None

    @property
    def changed(self) -> bool:
        return self.content is not None and self.content != self.original


def lookup_key(entry: dict[str, Any]) -> str:
    """Registry key of a state resource entry (``data.<type>`` for data sources)."""
    resource_type = str(entry.get("type", ""))
    if entry.get("mode") == "data":
        return DATA_PREFIX + resource_type
    return resource_type


def dump_state(document: StateDocument) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


class StatePipeline:
    """Migrates state documents between two schema versions."""

    def __init__(
        self,
        registry: RuleRegistry,
        source_version: int,
        target_version: int,
        *,
        resources: Iterable[str] | None = None,
    ) -> None:
        registry.freeze()
        self.registry: RuleRegistry = registry
        self.source_version: int = source_version
        self.target_version: int = target_version
        self.resources: frozenset[str] = frozenset(resources or ())
        self.rules: list[Rule] = registry.list_all(source_version, target_version)
        self.schema_versions: dict[str, int] = registry.schema_versions(source_version, target_version)

    def new_context(self, filename: str, content: str = "") -> MigrationContext:
        return MigrationContext(
            source_version=self.source_version,
            target_version=self.target_version,
            resources=self.resources,
            filename=filename,
            content=content,
        )

    # Stages

    def load(self, ctx: MigrationContext, content: str | StateDocument) -> StateDocument | None:
        """Decode the document; invalid JSON is an error that ends the run."""
        if isinstance(content, dict):
            return copy.deepcopy(content)
        try:
            document = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse state {ctx.filename}:{e.lineno}:{e.colno}: {e.msg}")
            ctx.add_error("Failed to parse state", e.msg, line=e.lineno, column=e.colno)
            return None
        if not isinstance(document, dict):
            ctx.add_error("Failed to parse state", f"expected a JSON object, got {type(document).__name__}")
            return None
        return document

    def merge(self, ctx: MigrationContext, resources: list[dict[str, Any]]) -> None:
        """Fold child resources into their parents for every declared ``StateMerge``."""
        merged = ctx.metadata.setdefault("merged", {})
        for rule in self.rules:
            declaration = rule.state_merge
            if declaration is None or not ctx.allows(declaration.child_type):
                continue
            count = self._merge_children(ctx, resources, declaration)
            if count:
                merged[declaration.child_type] = merged.get(declaration.child_type, 0) + count
                logger.debug(f"Merged {count} {declaration.child_type} instance(s) into {declaration.parent_type}")

    def _merge_children(self, ctx: MigrationContext, resources: list[dict[str, Any]], declaration: StateMerge) -> int:
        parents: dict[Any, list[dict[str, Any]]] = defaultdict(list)
        for entry in resources:
            if lookup_key(entry) != declaration.parent_type:
                continue
            for instance in entry.get("instances") or []:
                attributes = instance.get("attributes") or {}
                key = attributes.get(declaration.parent_key)
                if key is not None:
                    parents[key].append(attributes)

        count = 0
        for entry in [e for e in resources if lookup_key(e) == declaration.child_type]:
            kept = []
            for instance in entry.get("instances") or []:
                attributes = instance.get("attributes") or {}
                targets = parents.get(attributes.get(declaration.parent_reference), [])
                if not targets:
                    kept.append(instance)
                    ctx.add_warning(
                        f"No {declaration.parent_type} found for {declaration.child_type}.{entry.get('name', '')}",
                        f"{declaration.parent_reference}={attributes.get(declaration.parent_reference)!r}; "
                        "the instance is kept unchanged",
                    )
                    continue
                element = self._build_element(declaration, attributes)
                for parent in targets:
                    if element is not None:
                        self._append_element(parent, declaration, element)
                count += 1
            entry["instances"] = kept
            if not kept:
                resources.remove(entry)
        return count

    @staticmethod
    def _build_element(declaration: StateMerge, attributes: dict[str, Any]) -> dict[str, Any] | None:
        if declaration.build_element is not None:
            return declaration.build_element(copy.deepcopy(attributes))
        skipped = {"id", declaration.parent_reference}
        return {key: copy.deepcopy(value) for key, value in attributes.items() if key not in skipped}

    @staticmethod
    def _append_element(parent: dict[str, Any], declaration: StateMerge, element: dict[str, Any]) -> None:
        collection = parent.get(declaration.collection_attribute)
        if not isinstance(collection, list):
            collection = parent[declaration.collection_attribute] = []
        if element not in collection:
            collection.append(copy.deepcopy(element))
        if declaration.count_attribute is not None:
            parent[declaration.count_attribute] = len(collection)

    def dispatch(self, ctx: MigrationContext, resources: list[dict[str, Any]]) -> None:
        """Run the rule of every resource entry over its instances."""
        transformed = ctx.metadata.setdefault("transformed", {})
        for entry in list(resources):
            key = lookup_key(entry)
            if not key or not ctx.allows(key):
                continue
            rule = self.registry.lookup(key, self.source_version, self.target_version)
            if rule is None:
                if key in self.schema_versions:
                    for instance in entry.get("instances") or []:
                        set_schema_version(instance, self.schema_versions[key])
                continue
            if rule.defers_state:
                logger.debug(f"Leaving {key}.{entry.get('name', '')} to the provider's state upgrader")
                continue

            instances = entry.get("instances") or []
            migrated = [m for m in (self._transform_instance(ctx, rule, entry, i) for i in instances) if m is not None]
            entry["instances"] = migrated
            if instances and not migrated:
                resources.remove(entry)
                logger.debug(f"Removed {key}.{entry.get('name', '')}: no instances left")
                continue

            self._rename_entry(rule, entry)
            transformed[key] = transformed.get(key, 0) + len(instances)

    def _transform_instance(
        self, ctx: MigrationContext, rule: Rule, entry: dict[str, Any], instance: dict[str, Any]
    ) -> dict[str, Any] | None:
        name = str(entry.get("name", ""))
        address = f"{lookup_key(entry)}.{name}"
        try:
            result = rule.apply_state(ctx, copy.deepcopy(instance), name)
        except Exception as e:
            logger.warning(f"Rule for {rule.resource_type} failed on {address} in {ctx.filename}: {e}")
            ctx.add_error(f"Failed to migrate state of {address}", str(e))
            return instance
        if result is None:
            logger.debug(f"Deleted an instance of {address}")
            return None
        if not isinstance(result, dict):
            ctx.add_error(f"Failed to migrate state of {address}", f"rule returned an invalid result: {result!r}")
            return instance
        set_schema_version(result, rule.schema_version)
        return result

    @staticmethod
    def _rename_entry(rule: Rule, entry: dict[str, Any]) -> None:
        address = f"{entry.get('type', '')}.{entry.get('name', '')}"
        new_type = strip_data_prefix(rule.target_type)
        if new_type != entry.get("type"):
            logger.debug(f"Renamed state entry {address} to {new_type}")
            entry["type"] = new_type

    # Driver

    def migrate(self, content: str | StateDocument, filename: str = "terraform.tfstate") -> StateMigrationResult:
        """Migrate one state document (JSON text or an already-decoded dict)."""
        original = content if isinstance(content, str) else dump_state(content)
        ctx = self.new_context(filename, original)
        document = self.load(ctx, content)
        if document is None:
            return StateMigrationResult(filename, original, None, list(ctx.diagnostics))

        resources = document.get("resources")
        if not isinstance(resources, list):
            ctx.add_warning("No resources found in state", "the document is passed through unchanged")
            return StateMigrationResult(filename, original, original, list(ctx.diagnostics))

        self.merge(ctx, resources)
        self.dispatch(ctx, resources)
        logger.info(f"Processed state {filename}")
        return StateMigrationResult(
            filename=filename,
            original=original,
            content=dump_state(document),
            diagnostics=list(ctx.diagnostics),
            transformed=dict(ctx.metadata.get("transformed", {})),
            merged=dict(ctx.metadata.get("merged", {})),
        )
