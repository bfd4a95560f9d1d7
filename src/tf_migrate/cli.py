"""
Command-line interface for the tf-migrate tool.
"""

from __future__ import annotations

import argparse
import logging
import sys

from . import __version__
from .config import MigrationSettings
from .exceptions import MigrationError
from .migrator import MigrationReport, TerraformMigrator
from .registry import RuleRegistry
from .rules import build_registry
from .utils import setup_logging


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="tf-migrate",
        description="Migrate Terraform configuration and state between provider schema versions",
    )

    _ = parser.add_argument("--config-dir", help="Directory holding the .tf files to migrate")
    _ = parser.add_argument("--state-file", help="State file (terraform.tfstate) to migrate")
    _ = parser.add_argument("--output-dir", help="Write migrated .tf files here instead of in place")
    _ = parser.add_argument("--output-state", help="Write the migrated state here instead of in place")
    _ = parser.add_argument(
        "--resources", help="Comma separated resource types to migrate (default: all), e.g. cloudflare_record"
    )
    _ = parser.add_argument("--source-version", help="Source provider version, e.g. v4 (default: 4)")
    _ = parser.add_argument("--target-version", help="Target provider version, e.g. v5 (default: 5)")
    _ = parser.add_argument("--recursive", "-r", action="store_true", help="Also migrate .tf files in subdirectories")
    _ = parser.add_argument("--dry-run", action="store_true", help="Show what would change without writing files")
    _ = parser.add_argument("--no-backup", action="store_true", help="Do not write .backup copies of modified files")
    _ = parser.add_argument("--workers", type=int, help="Number of threads used to migrate configuration files")
    _ = parser.add_argument("--list-rules", action="store_true", help="List the available migration rules and exit")
    _ = parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return parser.parse_args(argv)


def _print_rules(registry: RuleRegistry) -> None:
    """Print the rules of every supported version path."""
    for source, target in registry.version_paths():
        print(f"v{source} -> v{target}:")
        for rule in registry.list_all(source, target):
            names = ", ".join(rule.type_names)
            target_type = f" -> {rule.target_type}" if rule.rename is not None else ""
            print(f"  {names}{target_type}")
            if rule.description:
                print(f"      {rule.description}")


def _print_report(report: MigrationReport) -> None:
    """Print a human readable summary of a migration run."""
    title = "Migration summary (dry run)" if report.dry_run else "Migration summary"
    print(title)
    print("=" * len(title))
    for name in report.files_migrated:
        print(f"  migrated:  {name}")
    for name in report.files_failed:
        print(f"  FAILED:    {name}")
    for key, value in report.statistics.items():
        print(f"{key.replace('_', ' ').capitalize()}: {value}")

    if report.diagnostics:
        print()
        print("Diagnostics:")
        for diagnostic in report.diagnostics:
            print(f"  {diagnostic}")

    print()
    print("Result: " + ("SUCCESS" if report.success else "FAILED"))


def main() -> None:
    """Main entry point."""
    args = parse_arguments()

    # Setup logging
    verbose: bool = getattr(args, "verbose", False)
    setup_logging(verbose=verbose)

    registry = build_registry()
    if args.list_rules:
        _print_rules(registry)
        sys.exit(0)

    try:
        settings = MigrationSettings.from_args(args)
        if settings.verbose and not verbose:
            logging.getLogger().setLevel(logging.DEBUG)
        settings.validate(registry)

        # Execute migration
        migrator = TerraformMigrator(settings, registry)
        report = migrator.migrate()

        # Print report
        _print_report(report)

        if report.success:
            sys.exit(0)
        else:
            sys.exit(1)

    except MigrationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception:
        logger = logging.getLogger(__name__)
        logger.exception("Migration failed")
        sys.exit(1)
