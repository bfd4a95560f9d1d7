"""
Terraform Schema Migration Tool

Upgrades Terraform configuration (.tf) and state (.tfstate) written against
one provider schema version to the next, rule by rule and resource by
resource, reporting anything that could not be migrated automatically.
"""

from __future__ import annotations

# Package version
__version__ = "0.1.0"

from .cli import main
from .config_pipeline import ConfigMigrationResult, ConfigPipeline, ProjectMigrationResult
from .context import MigrationContext
from .diagnostics import Diagnostic
from .exceptions import MigrationError, ParseError, RegistrationError
from .migrator import MigrationReport, TerraformMigrator
from .registry import RuleRegistry
from .rule import Rule
from .rules import build_registry
from .state_pipeline import StateMigrationResult, StatePipeline
from .utils import setup_logging

__all__ = [
    "ConfigMigrationResult",
    "ConfigPipeline",
    "Diagnostic",
    "MigrationContext",
    "MigrationError",
    "MigrationReport",
    "ParseError",
    "ProjectMigrationResult",
    "RegistrationError",
    "Rule",
    "RuleRegistry",
    "StateMigrationResult",
    "StatePipeline",
    "TerraformMigrator",
    "build_registry",
    "main",
    "setup_logging",
]
