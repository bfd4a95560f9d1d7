"""
Utility functions for the tf-migrate tool.
"""

from __future__ import annotations

import logging
import re

LOG_FILE = "tf-migrate.log"

_VERSION_RE = re.compile(r"[vV]?(\d+)")


def setup_logging(*, verbose: bool = False, log_file: str | None = LOG_FILE) -> None:
    """Configure logging for the migration process."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def parse_version(value: str | int) -> int:
    """Parse a schema version given as ``4``, ``"4"`` or ``"v4"``."""
    if isinstance(value, int):
        return value
    match = _VERSION_RE.fullmatch(value.strip())
    if match is None:
        msg = f"Invalid version: {value!r} (expected e.g. 'v4' or '4')"
        raise ValueError(msg)
    return int(match.group(1))


def parse_resource_list(value: str | None) -> frozenset[str]:
    """Split a comma separated resource allowlist; empty input allows everything."""
    if not value:
        return frozenset()
    return frozenset(item.strip() for item in value.split(",") if item.strip())
