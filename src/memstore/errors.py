"""
Error types raised by the memory engine.

Every error carries the failing *operation* and, where one is involved,
the store *path*, so the command layer can print a one-line diagnosis
without a traceback.
"""

from __future__ import annotations

from pathlib import Path


class MemstoreError(Exception):
    """Base class for all memstore errors."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        path: str | Path | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.path = str(path) if path is not None else None

    def describe(self) -> str:
        """Human-readable one-liner: ``<operation> <path>: <message>``."""
        prefix = " ".join(p for p in (self.operation, self.path) if p)
        return f"{prefix}: {self.message}" if prefix else self.message


class CorruptStore(MemstoreError):
    """The store file exists but cannot be decoded into a valid Store."""


class ValidationError(MemstoreError, ValueError):
    """Invalid command input, rejected before touching disk."""


class StoreIOError(MemstoreError, OSError):
    """Writing or renaming the store file failed."""


class ConcurrentModification(MemstoreError):
    """Another process saved the store after this one loaded it."""
