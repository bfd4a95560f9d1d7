"""
Custom exception classes for the tf-migrate engine.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""


class ParseError(MigrationError):
    """Raised when a configuration file or state document cannot be parsed."""

    filename: str
    line: int | None
    column: int | None

    def __init__(self, message: str, *, filename: str = "", line: int | None = None, column: int | None = None) -> None:
        self.filename = filename
        self.line = line
        self.column = column
        self.reason = message
        location = filename or "<input>"
        if line is not None:
            location += f":{line}"
            if column is not None:
                location += f":{column}"
        super().__init__(f"{location}: {message}")


class RegistrationError(MigrationError):
    """Raised when a rule registration is ambiguous or happens after the registry was frozen."""


class CoercionError(MigrationError, ValueError):
    """Raised when a state value is not valid for the requested type coercion."""
