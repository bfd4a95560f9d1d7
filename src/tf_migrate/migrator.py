"""
Main migration class: finds the files of a project, runs both pipelines and
writes the results.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .config_pipeline import ConfigPipeline
from .diagnostics import count_by_severity
from .exceptions import MigrationError
from .state_pipeline import StatePipeline

if TYPE_CHECKING:
    from .config import MigrationSettings
    from .diagnostics import Diagnostic
    from .registry import RuleRegistry

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

CONFIG_SUFFIX = ".tf"
BACKUP_SUFFIX = ".backup"
SKIPPED_DIRECTORIES = frozenset({".terraform", ".git"})


@dataclass
class MigrationReport:
    """Summary of a migration run."""

    files_migrated: list[str] = field(default_factory=list)
    files_unchanged: list[str] = field(default_factory=list)
    files_failed: list[str] = field(default_factory=list)
    state_migrated: bool = False
    state_failed: bool = False
    backups: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return not self.files_failed and not self.state_failed and not any(d.is_error for d in self.diagnostics)

    @property
    def statistics(self) -> dict[str, int]:
        counts = count_by_severity(self.diagnostics)
        return {
            "files_migrated": len(self.files_migrated),
            "files_unchanged": len(self.files_unchanged),
            "files_failed": len(self.files_failed),
            "state_migrated": int(self.state_migrated),
            "warnings": counts.get("warning", 0),
            "errors": counts.get("error", 0),
        }


def find_config_files(directory: Path, *, recursive: bool = False) -> list[Path]:
    """``*.tf`` files of ``directory`` in sorted order, skipping provider caches."""
    if not recursive:
        return sorted(path for path in directory.glob(f"*{CONFIG_SUFFIX}") if path.is_file())
    return sorted(
        path
        for path in directory.rglob(f"*{CONFIG_SUFFIX}")
        if path.is_file() and SKIPPED_DIRECTORIES.isdisjoint(path.relative_to(directory).parts[:-1])
    )


def backup_file(path: Path) -> Path:
    """Copy ``path`` to ``<path>.backup`` (or ``.backup.N`` if taken) and return the copy."""
    target = path.with_name(path.name + BACKUP_SUFFIX)
    counter = 1
    while target.exists():
        target = path.with_name(f"{path.name}{BACKUP_SUFFIX}.{counter}")
        counter += 1
    shutil.copy2(path, target)
    logger.debug(f"Backed up {path} to {target}")
    return target


class TerraformMigrator:
    """Migrates a configuration directory and/or a state file."""

    def __init__(self, settings: MigrationSettings, registry: RuleRegistry) -> None:
        self.settings: MigrationSettings = settings
        self.registry: RuleRegistry = registry
        self.config_pipeline: ConfigPipeline = ConfigPipeline(
            registry, settings.source_version, settings.target_version, resources=settings.resources
        )
        self.state_pipeline: StatePipeline = StatePipeline(
            registry, settings.source_version, settings.target_version, resources=settings.resources
        )
        logger.info(f"Initialized migrator for v{settings.source_version} -> v{settings.target_version}")

    def migrate(self) -> MigrationReport:
        """Run the configured migration and return its report."""
        report = MigrationReport(dry_run=self.settings.dry_run)
        if self.settings.config_dir is not None:
            self.migrate_config(self.settings.config_dir, report)
        if self.settings.state_file is not None:
            self.migrate_state(self.settings.state_file, report)
        logger.info(f"Migration finished: {report.statistics}")
        return report

    def migrate_config(self, config_dir: Path, report: MigrationReport) -> None:
        paths = find_config_files(config_dir, recursive=self.settings.recursive)
        if not paths:
            logger.warning(f"No {CONFIG_SUFFIX} files found in {config_dir}")
            return
        logger.info(f"Migrating {len(paths)} configuration file(s) in {config_dir}")

        files = {str(path.relative_to(config_dir)): path.read_text(encoding="utf-8") for path in paths}
        result = self.config_pipeline.migrate_project(files, max_workers=self.settings.max_workers)
        report.diagnostics.extend(result.diagnostics)

        for name, file_result in result.files.items():
            if not file_result.ok:
                logger.error(f"Could not migrate {name}; the file is left unchanged")
                report.files_failed.append(name)
                continue
            if not file_result.changed:
                report.files_unchanged.append(name)
                if self.settings.output_dir is None:
                    continue
            else:
                report.files_migrated.append(name)
            assert file_result.content is not None
            self._write(config_dir / name, self._config_output(config_dir, name), file_result.content, report)

    def _config_output(self, config_dir: Path, name: str) -> Path:
        if self.settings.output_dir is None:
            return config_dir / name
        return self.settings.output_dir / name

    def migrate_state(self, state_file: Path, report: MigrationReport) -> None:
        logger.info(f"Migrating state file {state_file}")
        result = self.state_pipeline.migrate(state_file.read_text(encoding="utf-8"), filename=str(state_file))
        report.diagnostics.extend(result.diagnostics)
        if not result.ok or result.content is None:
            logger.error(f"Could not migrate state file {state_file}; the file is left unchanged")
            report.state_failed = True
            return
        report.state_migrated = result.changed
        output = self.settings.output_state or state_file
        if result.changed or output != state_file:
            self._write(state_file, output, result.content, report)

    def _write(self, source: Path, target: Path, content: str, report: MigrationReport) -> None:
        if self.settings.dry_run:
            logger.info(f"[dry run] Would write {target}")
            return
        try:
            if target == source and self.settings.backup:
                report.backups.append(str(backup_file(source)))
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            msg = f"Failed to write {target}: {e}"
            raise MigrationError(msg) from e
        logger.info(f"Wrote {target}")
