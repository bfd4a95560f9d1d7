"""
Session context threaded through every pipeline stage and rule call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .diagnostics import Diagnostic
from .rule import strip_data_prefix

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .hcl import Body

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class MigrationContext:
    """Mutable state of one migration run over a single file or document.

    A context is owned by exactly one file or state document. When several
    files are processed (possibly on different threads) each gets its own
    context from ``for_file`` and the results are combined afterwards with
    ``merge``; contexts are never shared between concurrent runs.
    """

    source_version: int
    target_version: int
    resources: frozenset[str] = frozenset()
    filename: str = ""
    content: str = ""
    tree: Body | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    # (resource_type, old_attribute) -> new_attribute
    attribute_renames: dict[tuple[str, str], str] = field(default_factory=dict)
    # old lookup key -> new lookup key
    resource_renames: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def for_file(self, filename: str, content: str = "") -> MigrationContext:
        """Return a fresh context for another file with the same run parameters."""
        return MigrationContext(
            source_version=self.source_version,
            target_version=self.target_version,
            resources=self.resources,
            filename=filename,
            content=content,
        )

    # Diagnostics

    def add_warning(self, summary: str, detail: str = "") -> None:
        self._add("warning", summary, detail)

    def add_error(self, summary: str, detail: str = "", *, line: int | None = None, column: int | None = None) -> None:
        self._add("error", summary, detail, line=line, column=column)

    def _add(self, severity: str, summary: str, detail: str, *, line: int | None = None, column: int | None = None) -> None:
        diagnostic = Diagnostic(
            severity=severity,  # type: ignore[arg-type]
            summary=summary,
            detail=detail,
            filename=self.filename,
            line=line,
            column=column,
        )
        self.diagnostics.append(diagnostic)
        logger.debug(f"Diagnostic recorded: {diagnostic}")

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == "warning"]

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == "error"]

    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)

    # Run parameters

    def allows(self, resource_type: str) -> bool:
        """Whether the resource allowlist admits ``resource_type``.

        An empty allowlist admits everything. Data source keys match with and
        without their ``data.`` prefix.
        """
        if not self.resources:
            return True
        return resource_type in self.resources or strip_data_prefix(resource_type) in self.resources

    # Rename tables

    def record_attribute_rename(self, resource_type: str, old_attribute: str, new_attribute: str) -> None:
        """Register that references to ``<type>.<name>.<old>`` must become ``<new>``.

        The first record for a key wins; a conflicting later one is reported
        as a warning.
        """
        key = (resource_type, old_attribute)
        existing = self.attribute_renames.get(key)
        if existing is None:
            self.attribute_renames[key] = new_attribute
        elif existing != new_attribute:
            self.add_warning(
                f"Conflicting attribute renames for {resource_type}.{old_attribute}",
                f"keeping '{existing}', ignoring '{new_attribute}'",
            )

    def record_resource_rename(self, old_type: str, new_type: str) -> None:
        existing = self.resource_renames.get(old_type)
        if existing is None:
            self.resource_renames[old_type] = new_type
        elif existing != new_type:
            self.add_warning(
                f"Conflicting resource renames for {old_type}",
                f"keeping '{existing}', ignoring '{new_type}'",
            )

    def merge(self, other: MigrationContext) -> None:
        """Fold another file's diagnostics and rename tables into this context."""
        self.diagnostics.extend(other.diagnostics)
        for (resource_type, old_attribute), new_attribute in other.attribute_renames.items():
            self.record_attribute_rename(resource_type, old_attribute, new_attribute)
        for old_type, new_type in other.resource_renames.items():
            self.record_resource_rename(old_type, new_type)


def merge_contexts(base: MigrationContext, others: Iterable[MigrationContext]) -> MigrationContext:
    """Aggregation phase: combine per-file contexts into ``base`` and return it."""
    for other in others:
        base.merge(other)
    return base
