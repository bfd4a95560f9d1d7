"""
Configuration migration pipeline.

A file moves one way through the stages preprocess, parse, per-block
transform, cross-file transform, reference rewrite and serialize. Projects run
the first three stages per file (each file with its own context, optionally
in parallel), then the cross-file transforms over all files, combine the
rename tables of all files, and only then rewrite references and serialize,
so a rename found in one file is applied to references in every other file.
"""

from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from . import config_toolkit as ct
from .context import MigrationContext, merge_contexts
from .exceptions import ParseError
from .hcl import Block, format_body, parse
from .models import TransformResult
from .rule import strip_data_prefix

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from .diagnostics import Diagnostic
    from .registry import RuleRegistry
    from .rule import Rule

logger: logging.Logger = logging.getLogger(__name__)

TRANSFORMABLE_BLOCKS = ("resource", "data")
PROJECT_FILENAME = "<project>"


@dataclass
class ConfigMigrationResult:
    """Outcome of migrating one configuration file.

    ``content`` is ``None`` when the file could not be parsed; the original
    text must then be kept as it is.
    """

    filename: str
    original: str
    content: str | None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    transformed: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.content is not None

    @property
    def changed(self) -> bool:
        return self.content is not None and self.content != self.original


@dataclass
class ProjectMigrationResult:
    """Outcome of migrating a set of configuration files together."""

    files: dict[str, ConfigMigrationResult] = field(default_factory=dict)
    attribute_renames: dict[tuple[str, str], str] = field(default_factory=dict)
    resource_renames: dict[str, str] = field(default_factory=dict)
    project_diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.files.values())

    @property
    def diagnostics(self) -> list[Diagnostic]:
        per_file = [diagnostic for result in self.files.values() for diagnostic in result.diagnostics]
        return per_file + self.project_diagnostics

    @property
    def changed_files(self) -> list[str]:
        return [name for name, result in self.files.items() if result.changed]

    @property
    def failed_files(self) -> list[str]:
        return [name for name, result in self.files.items() if not result.ok]


class ConfigPipeline:
    """Migrates configuration text between two schema versions."""

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

    def new_context(self, filename: str, content: str) -> MigrationContext:
        return MigrationContext(
            source_version=self.source_version,
            target_version=self.target_version,
            resources=self.resources,
            filename=filename,
            content=content,
        )

    # Stages

    def preprocess(self, ctx: MigrationContext) -> None:
        """Run the text preprocessors of rules whose type appears in the file."""
        for rule in self.rules:
            if rule.preprocess is None or not any(ctx.allows(name) for name in rule.type_names):
                continue
            if not any(strip_data_prefix(name) in ctx.content for name in rule.type_names):
                continue
            try:
                ctx.content = rule.preprocess(ctx.content)
            except Exception as e:
                logger.warning(f"Preprocessor for {rule.resource_type} failed on {ctx.filename}: {e}")
                ctx.add_error(f"Preprocessor for {rule.resource_type} failed", str(e))

    def parse(self, ctx: MigrationContext) -> bool:
        """Parse ``ctx.content`` into ``ctx.tree``; a failure ends the file's run."""
        try:
            ctx.tree = parse(ctx.content, ctx.filename)
        except ParseError as e:
            logger.error(f"Failed to parse {e}")
            ctx.add_error("Failed to parse configuration", e.reason, line=e.line, column=e.column)
            ctx.tree = None
            return False
        return True

    def transform_blocks(self, ctx: MigrationContext) -> None:
        """Dispatch every top-level resource and data block to its rule."""
        if ctx.tree is None:
            return
        counts: Counter[str] = Counter()
        for block in list(ctx.tree.blocks()):
            if block.type not in TRANSFORMABLE_BLOCKS or not ctx.tree.contains(block):
                continue
            lookup_key = block.address_type
            if not ctx.allows(lookup_key):
                logger.debug(f"Skipping {block.address}: not in the resource allowlist")
                continue
            rule = self.registry.lookup(lookup_key, self.source_version, self.target_version)
            if rule is None:
                continue
            if self._transform_block(ctx, rule, block):
                counts[lookup_key] += 1
        transformed = ctx.metadata.setdefault("transformed", {})
        for resource_type, count in counts.items():
            transformed[resource_type] = transformed.get(resource_type, 0) + count

    def _transform_block(self, ctx: MigrationContext, rule: Rule, block: Block) -> bool:
        assert ctx.tree is not None
        original_type = block.address_type
        original_address = block.address
        try:
            result = rule.apply_config(ctx, block)
        except Exception as e:
            logger.warning(f"Rule for {original_type} failed on {original_address} in {ctx.filename}: {e}")
            ctx.add_error(f"Failed to migrate {original_address}", str(e))
            return False
        if not isinstance(result, TransformResult) or not all(isinstance(b, Block) for b in result.blocks):
            ctx.add_error(f"Failed to migrate {original_address}", f"rule returned an invalid result: {result!r}")
            return False

        output = self._splice(ctx, block, result)
        for rename in rule.attribute_renames:
            ctx.record_attribute_rename(rename.resource_type, rename.old_attribute, rename.new_attribute)
        if rule.rename is not None and rule.rename.old_type == original_type:
            self._apply_rename(ctx, rule, output, original_address)
        logger.debug(f"Migrated {original_address} in {ctx.filename} into {len(output)} block(s)")
        return True

    @staticmethod
    def _splice(ctx: MigrationContext, block: Block, result: TransformResult) -> list[Block]:
        """Put the result blocks in place of (or after) the input block."""
        assert ctx.tree is not None
        tree = ctx.tree
        index = tree.index(block)
        extra = [b for b in result.blocks if b is not block]
        if result.remove_original:
            tree.remove(block)
            tree.insert(index, *extra)
            return extra
        tree.insert(index + 1, *extra)
        return [block, *extra]

    @staticmethod
    def _apply_rename(ctx: MigrationContext, rule: Rule, output: list[Block], original_address: str) -> None:
        assert ctx.tree is not None and rule.rename is not None
        old_type = strip_data_prefix(rule.rename.old_type)
        new_type = strip_data_prefix(rule.rename.new_type)
        for block in output:
            if block.type in TRANSFORMABLE_BLOCKS and block.resource_type == old_type:
                ct.rename_resource_type(block, new_type)
        ctx.record_resource_rename(rule.rename.old_type, rule.rename.new_type)
        if not output or output[0].type != "resource" or output[0].resource_type != new_type:
            return

        new_address = f"{new_type}.{output[0].name}"
        if any(ct.is_moved_block(b, original_address, new_address) for b in ctx.tree.blocks("moved")):
            return
        ctx.tree.insert_after(output[-1], ct.moved_block(original_address, new_address))

    def transform_project(self, ctx: MigrationContext, contexts: Sequence[MigrationContext]) -> None:
        """Run the cross-file transforms of every rule over all files together.

        A failing transform is recorded on ``ctx``; the files keep whatever the
        per-file stages produced.
        """
        for rule in self.rules:
            if rule.transform_project is None or not ctx.allows(rule.resource_type):
                continue
            try:
                rule.transform_project(contexts)
            except Exception as e:
                logger.warning(f"Cross-file transform for {rule.resource_type} failed: {e}")
                ctx.add_error(f"Cross-file transform for {rule.resource_type} failed", str(e))

    def rewrite(
        self,
        ctx: MigrationContext,
        resource_renames: Mapping[str, str] | None = None,
        attribute_renames: Mapping[tuple[str, str], str] | None = None,
    ) -> int:
        """Rewrite references with the given tables (the context's own by default)."""
        if ctx.tree is None:
            return 0
        changed = ct.rewrite_references(
            ctx.tree,
            ctx.resource_renames if resource_renames is None else resource_renames,
            ctx.attribute_renames if attribute_renames is None else attribute_renames,
        )
        if changed:
            logger.debug(f"Rewrote references in {changed} attribute(s) of {ctx.filename}")
        return changed

    def serialize(self, ctx: MigrationContext) -> str | None:
        if ctx.tree is None:
            return None
        return format_body(ctx.tree)

    # Drivers

    def prepare(self, filename: str, content: str) -> MigrationContext:
        """Run the per-file stages up to and including block transforms."""
        ctx = self.new_context(filename, content)
        self.preprocess(ctx)
        if self.parse(ctx):
            self.transform_blocks(ctx)
        return ctx

    def _result(self, ctx: MigrationContext, original: str) -> ConfigMigrationResult:
        return ConfigMigrationResult(
            filename=ctx.filename,
            original=original,
            content=self.serialize(ctx),
            diagnostics=list(ctx.diagnostics),
            transformed=dict(ctx.metadata.get("transformed", {})),
        )

    def migrate(self, content: str, filename: str = "main.tf") -> ConfigMigrationResult:
        """Migrate a single file on its own."""
        ctx = self.prepare(filename, content)
        self.transform_project(ctx, [ctx])
        self.rewrite(ctx)
        return self._result(ctx, content)

    def migrate_project(self, files: Mapping[str, str], *, max_workers: int | None = None) -> ProjectMigrationResult:
        """Migrate several files, applying renames found in any file to all of them.

        Args:
            files: Mapping of filename to file content
            max_workers: Run the per-file stages on a thread pool of this size

        Returns:
            ProjectMigrationResult with one entry per input file, in input order
        """
        items = list(files.items())
        if max_workers is not None and max_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                contexts = list(executor.map(lambda item: self.prepare(*item), items))
        else:
            contexts = [self.prepare(filename, content) for filename, content in items]

        project = self.new_context(PROJECT_FILENAME, "")
        self.transform_project(project, contexts)
        combined = merge_contexts(project, contexts)

        result = ProjectMigrationResult(
            attribute_renames=dict(combined.attribute_renames),
            resource_renames=dict(combined.resource_renames),
            # Rename conflicts between files belong to no single file.
            project_diagnostics=[d for d in combined.diagnostics if d.filename == PROJECT_FILENAME],
        )
        for ctx, (filename, content) in zip(contexts, items, strict=True):
            self.rewrite(ctx, combined.resource_renames, combined.attribute_renames)
            result.files[filename] = self._result(ctx, content)
            logger.info(f"Processed {filename}")
        return result
