"""sqlite_writer package initialization.

Async SQLite handle plus a parameterized statement builder. The package version
lives here so code, tests, and scripts can import it without duplicating literals.
"""

PACKAGE_VERSION = "0.1.0"  # Keep in sync with pyproject version.

from .errors import (  # noqa: E402
    SQLiteWriterError,
    InvalidConfiguration,
    ConnectionError,
    ClosedHandle,
    StatementError,
)
from .connection import ConnectionHandle, HandleConfig, OpenMode, ExecResult, UnitOfWork  # noqa: E402
from .statements import SqlStatement, Ordered, Keyed  # noqa: E402
from .writer import SQLiteWriter  # noqa: E402

__all__ = [
    "PACKAGE_VERSION",
    "SQLiteWriterError", "InvalidConfiguration", "ConnectionError", "ClosedHandle", "StatementError",
    "ConnectionHandle", "HandleConfig", "OpenMode", "ExecResult", "UnitOfWork",
    "SqlStatement", "Ordered", "Keyed",
    "SQLiteWriter",
]
