"""Failure taxonomy.

Every error raised by the package derives from SQLiteWriterError so callers can
catch the whole family at one seam.
"""
from __future__ import annotations
from typing import Any, Optional, Sequence


class SQLiteWriterError(Exception):
    """Base class for sqlite_writer failures."""


class InvalidConfiguration(SQLiteWriterError, ValueError):
    """Bad construction arguments or a builder shape mismatch (nothing was sent)."""


class ConnectionError(SQLiteWriterError):  # noqa: A001 - shadows builtin inside the package only
    """The native handle could not be opened."""


class ClosedHandle(SQLiteWriterError):
    """An operation was attempted after close()."""


class StatementError(SQLiteWriterError):
    """SQLite rejected a statement (syntax, constraint, locking...).

    Carries the attempted statement text and parameters plus the driver error.
    """

    def __init__(self, sql: str, params: Sequence[Any] = (), cause: Optional[BaseException] = None):
        self.sql = sql
        self.params = tuple(params)
        self.cause = cause
        super().__init__(f"{cause} [sql: {sql}]" if cause is not None else f"statement failed [sql: {sql}]")
