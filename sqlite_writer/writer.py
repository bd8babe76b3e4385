"""Statement builder for SQLite tables.

SQLiteWriter turns table/column/value descriptions into parameterized SQL
(see statements.py) and hands them to its executor. It keeps no state besides
that executor, so one writer can be shared freely.

Shape problems (column/value count mismatches, empty column lists, bad
identifiers) are detected synchronously, before anything reaches SQLite:
create_table answers False, every other builder raises InvalidConfiguration.
Valid requests return the executor's awaitable (a coroutine on a
ConnectionHandle, a Task inside a unit of work).
"""
from __future__ import annotations
from typing import Any, Awaitable, Callable, Mapping, Sequence, Union

from . import statements
from .base import Executor
from .errors import InvalidConfiguration
from .logging_util import DiagnosticLog, Sink, as_log


class SQLiteWriter:
    """Writer for SQLite databases."""

    def __init__(self, executor: Executor, log: Union[DiagnosticLog, Sink, None] = None):
        self.executor = executor
        if log is None:
            log = getattr(executor, "log", None)
        self.log = as_log(log)

    def _run(self, stmt: statements.SqlStatement) -> Awaitable[Any]:
        return self.executor.execute(stmt.sql, stmt.params)

    # --- Connection level ---------------------------------------------------------------
    def set_wal_mode(self) -> Awaitable[Any]:
        """Turn on WAL (write-ahead logging). Meant to run once at setup."""
        return self._run(statements.SqlStatement("PRAGMA journal_mode = WAL;"))

    def serialize(self, work: Callable[["SQLiteWriter"], Any]):
        """Run ``work`` with a writer whose statements execute strictly in order."""
        return self._unit("run_ordered", work)

    def parallelize(self, work: Callable[["SQLiteWriter"], Any]):
        """Run ``work`` with a writer whose statements may interleave."""
        return self._unit("run_unordered", work)

    def _unit(self, runner: str, work):
        run = getattr(self.executor, runner, None)
        if run is None:
            raise TypeError(f"{type(self.executor).__name__} does not support units of work")
        return run(lambda unit: work(SQLiteWriter(unit, self.log)))

    def close_db(self) -> Awaitable[None]:
        """Close the underlying handle. Not available inside a unit of work."""
        close = getattr(self.executor, "close", None)
        if close is None:
            raise TypeError(f"{type(self.executor).__name__} cannot be closed from a writer")
        return close()

    # --- Tables -------------------------------------------------------------------------
    def create_table(self, name: str, column_names: Sequence[str], column_types: Sequence[str]):
        """Create ``name`` with an autoincrement ``id`` key plus the given columns.

        Returns False (and sends nothing) when the name/type lists differ in
        length, are empty, or hold an invalid identifier or type.
        """
        try:
            stmt = statements.create_table(name, column_names, column_types)
        except InvalidConfiguration as e:
            self.log.warn("create_table_rejected", table=str(name), error=str(e))
            return False
        return self._run(stmt)

    def drop_table(self, name: str) -> Awaitable[Any]:
        return self._run(statements.drop_table(name))

    # --- Rows ---------------------------------------------------------------------------
    def insert_row(self, table: str, columns: Sequence[str], values: Sequence[Any]) -> Awaitable[Any]:
        """Insert one row; ``values`` must line up with ``columns`` one to one."""
        return self._run(statements.insert_row(table, columns, values))

    def insert_multiple_rows(self, table: str, columns: Sequence[str],
                             rows: Sequence[Sequence[Any]]) -> Awaitable[Any]:
        """Insert all ``rows`` with a single INSERT statement.

        Every row must have exactly len(columns) values, otherwise nothing is
        inserted. Rows receive ids in the order given.
        """
        return self._run(statements.insert_multiple_rows(table, columns, rows))

    def update_row(self, table: str, columns: Sequence[str], data: Union[Sequence[Any], Mapping[str, Any]],
                   where_column: str, where_value: Any) -> Awaitable[Any]:
        """Set ``columns`` to ``data`` on rows where ``where_column`` equals ``where_value``.

        ``data`` is either a sequence aligned with ``columns`` or a mapping
        keyed by column name. ``where_value`` is bound as a parameter, so text
        values must not be pre-quoted by the caller.
        """
        return self._run(statements.update_row(table, columns, data, where_column, where_value))

    def delete_row(self, table: str, where_column: str, where_value: Any) -> Awaitable[Any]:
        """Delete rows where ``where_column`` equals ``where_value`` (bound, not interpolated)."""
        return self._run(statements.delete_row(table, where_column, where_value))
