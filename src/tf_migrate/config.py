"""
Run settings for the tf-migrate command line.

Settings come from command-line arguments, with environment variables as
defaults for the version pair and the log level.
"""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import MigrationError
from .utils import parse_resource_list, parse_version

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .registry import RuleRegistry

logger: logging.Logger = logging.getLogger(__name__)

SOURCE_VERSION_ENV_VAR = "TF_MIGRATE_SOURCE_VERSION"
TARGET_VERSION_ENV_VAR = "TF_MIGRATE_TARGET_VERSION"
LOG_LEVEL_ENV_VAR = "TF_MIGRATE_LOG_LEVEL"

DEFAULT_SOURCE_VERSION = 4
DEFAULT_TARGET_VERSION = 5


@dataclass
class MigrationSettings:
    """Everything one migration run needs to know."""

    config_dir: Path | None = None
    state_file: Path | None = None
    output_dir: Path | None = None
    output_state: Path | None = None
    resources: frozenset[str] = frozenset()
    source_version: int = DEFAULT_SOURCE_VERSION
    target_version: int = DEFAULT_TARGET_VERSION
    recursive: bool = False
    dry_run: bool = False
    backup: bool = True
    verbose: bool = False
    max_workers: int | None = None

    @classmethod
    def from_args(cls, args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> MigrationSettings:
        """Build settings from parsed arguments, falling back to the environment.

        Raises:
            MigrationError: If a version cannot be parsed.
        """
        env = os.environ if environ is None else environ
        source = getattr(args, "source_version", None) or env.get(SOURCE_VERSION_ENV_VAR) or DEFAULT_SOURCE_VERSION
        target = getattr(args, "target_version", None) or env.get(TARGET_VERSION_ENV_VAR) or DEFAULT_TARGET_VERSION
        try:
            source_version = parse_version(source)
            target_version = parse_version(target)
        except ValueError as e:
            raise MigrationError(str(e)) from e

        verbose: bool = getattr(args, "verbose", False) or env.get(LOG_LEVEL_ENV_VAR, "").upper() == "DEBUG"

        def _path(name: str) -> Path | None:
            value: str | None = getattr(args, name, None)
            return Path(value) if value else None

        return cls(
            config_dir=_path("config_dir"),
            state_file=_path("state_file"),
            output_dir=_path("output_dir"),
            output_state=_path("output_state"),
            resources=parse_resource_list(getattr(args, "resources", None)),
            source_version=source_version,
            target_version=target_version,
            recursive=getattr(args, "recursive", False),
            dry_run=getattr(args, "dry_run", False),
            backup=not getattr(args, "no_backup", False),
            verbose=verbose,
            max_workers=getattr(args, "workers", None),
        )

    def validate(self, registry: RuleRegistry) -> None:
        """Check that the run can start.

        Raises:
            MigrationError: On an unsupported version path, missing inputs or
                input paths that do not exist.
        """
        path = (self.source_version, self.target_version)
        if path not in registry.version_paths():
            supported = ", ".join(f"v{s} -> v{t}" for s, t in registry.version_paths()) or "none"
            msg = f"Unsupported migration path v{path[0]} -> v{path[1]} (supported: {supported})"
            raise MigrationError(msg)
        if self.config_dir is None and self.state_file is None:
            msg = "Nothing to migrate: pass --config-dir and/or --state-file"
            raise MigrationError(msg)
        if self.config_dir is not None and not self.config_dir.is_dir():
            msg = f"Configuration directory not found: {self.config_dir}"
            raise MigrationError(msg)
        if self.state_file is not None and not self.state_file.is_file():
            msg = f"State file not found: {self.state_file}"
            raise MigrationError(msg)
        if self.max_workers is not None and self.max_workers < 1:
            msg = f"Invalid number of workers: {self.max_workers}"
            raise MigrationError(msg)
        logger.debug(f"Settings validated: {self}")
