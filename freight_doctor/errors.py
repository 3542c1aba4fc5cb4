"""Structural errors that abort a whole run instead of a single row."""

from __future__ import annotations


class StructuralError(ValueError):
    """Base class for run-fatal configuration or invariant failures."""


class SchemaError(StructuralError):
    """A broker schema or synonym table is misconfigured."""


class HeaderConflictError(StructuralError):
    """The same source column resolved to different unified slots."""

    def __init__(self, message: str, *, column: str, slots: tuple[int, int]) -> None:
        super().__init__(message)
        self.column = column
        self.slots = slots
