"""
Diagnostics returned alongside migrated artifacts.

Diagnostics are the only channel through which the engine reports information
loss (dropped fields, values that could not be reversed, fallback expressions).
They never abort a run; only parse failures do.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Severity = Literal["warning", "error"]


@dataclass(frozen=True)
class Diagnostic:
    """A single warning or error produced while migrating a file or document."""

    severity: Severity
    summary: str
    detail: str = ""
    filename: str = ""
    line: int | None = None
    column: int | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def location(self) -> str:
        """Return ``file:line:column`` with the unknown parts left out."""
        parts = [self.filename] if self.filename else []
        if self.line is not None:
            parts.append(str(self.line))
            if self.column is not None:
                parts.append(str(self.column))
        return ":".join(parts)

    def __str__(self) -> str:
        text = f"{self.severity}: "
        location = self.location()
        if location:
            text += f"{location}: "
        text += self.summary
        if self.detail:
            text += f": {self.detail}"
        return text


def count_by_severity(diagnostics: list[Diagnostic]) -> dict[str, int]:
    """Count diagnostics per severity, e.g. ``{"warning": 2, "error": 0}``."""
    counts = {"warning": 0, "error": 0}
    for diagnostic in diagnostics:
        counts[diagnostic.severity] += 1
    return counts
