"""
Tests for the migration context and diagnostics.
"""

from __future__ import annotations

import pytest

from tf_migrate.context import MigrationContext, merge_contexts
from tf_migrate.diagnostics import Diagnostic, count_by_severity


def _context(filename: str = "main.tf", resources: frozenset[str] = frozenset()) -> MigrationContext:
    return MigrationContext(source_version=4, target_version=5, resources=resources, filename=filename)


@pytest.mark.unit
class TestDiagnostics:
    """Test diagnostic records."""

    def test_str_with_location(self) -> None:
        diagnostic = Diagnostic("error", "Failed to parse", "unexpected '}'", filename="main.tf", line=3, column=1)
        assert str(diagnostic) == "error: main.tf:3:1: Failed to parse: unexpected '}'"
        assert diagnostic.is_error

    def test_str_without_location(self) -> None:
        assert str(Diagnostic("warning", "Dropped field")) == "warning: Dropped field"

    def test_count_by_severity(self) -> None:
        diagnostics = [Diagnostic("warning", "a"), Diagnostic("warning", "b"), Diagnostic("error", "c")]
        assert count_by_severity(diagnostics) == {"warning": 2, "error": 1}
        assert count_by_severity([]) == {"warning": 0, "error": 0}


@pytest.mark.unit
class TestMigrationContext:
    """Test the per-file context."""

    def test_diagnostics_carry_filename(self) -> None:
        ctx = _context()
        ctx.add_warning("Dropped hostname", "no longer supported")
        ctx.add_error("Failed", line=2)
        assert [d.severity for d in ctx.diagnostics] == ["warning", "error"]
        assert all(d.filename == "main.tf" for d in ctx.diagnostics)
        assert len(ctx.warnings) == 1
        assert ctx.errors[0].line == 2
        assert ctx.has_errors()

    def test_empty_allowlist_admits_everything(self) -> None:
        assert _context().allows("cloudflare_record")

    def test_allowlist(self) -> None:
        """Data sources match with and without their prefix."""
        ctx = _context(resources=frozenset({"cloudflare_record", "cloudflare_zones"}))
        assert ctx.allows("cloudflare_record")
        assert ctx.allows("data.cloudflare_zones")
        assert not ctx.allows("cloudflare_list")

    def test_record_attribute_rename_conflict(self) -> None:
        """The first rename wins and a conflict is a warning."""
        ctx = _context()
        ctx.record_attribute_rename("data.cloudflare_zones", "zones", "result")
        ctx.record_attribute_rename("data.cloudflare_zones", "zones", "result")
        assert not ctx.diagnostics
        ctx.record_attribute_rename("data.cloudflare_zones", "zones", "items")
        assert ctx.attribute_renames == {("data.cloudflare_zones", "zones"): "result"}
        assert len(ctx.warnings) == 1

    def test_for_file_keeps_run_parameters(self) -> None:
        ctx = _context(resources=frozenset({"cloudflare_record"}))
        ctx.add_warning("x")
        other = ctx.for_file("other.tf", "content")
        assert other.resources == ctx.resources
        assert other.filename == "other.tf"
        assert other.content == "content"
        assert not other.diagnostics

    def test_merge_contexts(self) -> None:
        """Rename tables and diagnostics of all files are combined."""
        first = _context("a.tf")
        first.record_resource_rename("cloudflare_record", "cloudflare_dns_record")
        first.add_warning("from a")
        second = _context("b.tf")
        second.record_attribute_rename("data.cloudflare_zones", "zones", "result")
        second.record_resource_rename("cloudflare_record", "cloudflare_other")

        combined = merge_contexts(_context("<project>"), [first, second])
        assert combined.resource_renames == {"cloudflare_record": "cloudflare_dns_record"}
        assert combined.attribute_renames == {("data.cloudflare_zones", "zones"): "result"}
        assert [d.filename for d in combined.diagnostics] == ["a.tf", "<project>"]
