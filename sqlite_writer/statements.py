"""SQL rendering for the statement builder.

Only identifiers (table and column names, column types) are interpolated into
the SQL text, after validation. Values always travel as positional parameters.
Every function here is pure: it returns a SqlStatement or raises
InvalidConfiguration, it never touches a connection.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Tuple, Union

from .errors import InvalidConfiguration

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# Column types may carry constraints ("TEXT NOT NULL", "NUMERIC(10,2)") but no
# quotes, statement separators or placeholders.
COLUMN_TYPE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_ (),.+-]*$")

ID_COLUMN = "id INTEGER PRIMARY KEY AUTOINCREMENT"


@dataclass(frozen=True)
class SqlStatement:
    """Rendered SQL text plus its positional parameters."""
    sql: str
    params: Tuple[Any, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "params", tuple(self.params))
        placeholders = self.sql.count("?")
        if placeholders != len(self.params):
            raise InvalidConfiguration(
                f"statement has {placeholders} placeholders but {len(self.params)} parameters: {self.sql}"
            )


# --- Row data variant ---------------------------------------------------------------

@dataclass(frozen=True)
class Ordered:
    """Values aligned positionally with the column list."""
    values: Tuple[Any, ...]

    def values_for(self, columns: Sequence[str]) -> Tuple[Any, ...]:
        if len(self.values) != len(columns):
            raise InvalidConfiguration(
                f"expected {len(columns)} values for columns {list(columns)}, got {len(self.values)}"
            )
        return self.values


@dataclass(frozen=True)
class Keyed:
    """Values looked up by column name."""
    mapping: Mapping[str, Any]

    def values_for(self, columns: Sequence[str]) -> Tuple[Any, ...]:
        missing = [c for c in columns if c not in self.mapping]
        if missing:
            raise InvalidConfiguration(f"row mapping is missing columns: {missing}")
        return tuple(self.mapping[c] for c in columns)


RowData = Union[Ordered, Keyed]


def row_data(data: Union[Sequence[Any], Mapping[str, Any], Ordered, Keyed]) -> RowData:
    """Tag raw row data once; mappings become Keyed, sequences Ordered."""
    if isinstance(data, (Ordered, Keyed)):
        return data
    if isinstance(data, Mapping):
        return Keyed(data)
    if isinstance(data, (str, bytes)) or not isinstance(data, Sequence):
        raise InvalidConfiguration(f"row data must be a sequence or a mapping, got {type(data).__name__}")
    return Ordered(tuple(data))


# --- Validation helpers -------------------------------------------------------------

def check_identifier(name: Any, what: str = "identifier") -> str:
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise InvalidConfiguration(f"Invalid {what}: {name!r}")
    return name


def check_columns(columns: Sequence[str]) -> Tuple[str, ...]:
    if isinstance(columns, str):
        raise InvalidConfiguration("columns must be a sequence of names, not a string")
    cols = tuple(check_identifier(c, "column name") for c in columns)
    if not cols:
        raise InvalidConfiguration("at least one column is required")
    if len(set(c.lower() for c in cols)) != len(cols):
        raise InvalidConfiguration(f"duplicate column names: {list(cols)}")
    return cols


def _placeholders(n: int) -> str:
    return "(" + ", ".join("?" * n) + ")"


# --- Renderers ----------------------------------------------------------------------

def create_table(name: str, column_names: Sequence[str], column_types: Sequence[str]) -> SqlStatement:
    check_identifier(name, "table name")
    if isinstance(column_names, str) or isinstance(column_types, str):
        raise InvalidConfiguration("column names and types must be sequences, not strings")
    try:
        column_names, column_types = tuple(column_names), tuple(column_types)
    except TypeError:
        raise InvalidConfiguration("column names and types must be iterables") from None
    if len(column_names) != len(column_types):
        raise InvalidConfiguration(
            f"column_names ({len(column_names)}) and column_types ({len(column_types)}) differ in length"
        )
    cols = check_columns(column_names)
    if "id" in (c.lower() for c in cols):
        raise InvalidConfiguration("column 'id' is reserved for the primary key")
    types = []
    for t in column_types:
        if not isinstance(t, str) or not COLUMN_TYPE_RE.match(t.strip()):
            raise InvalidConfiguration(f"Invalid column type: {t!r}")
        types.append(t.strip())
    clauses = [ID_COLUMN] + [f"{c} {t}" for c, t in zip(cols, types)]
    return SqlStatement(f"CREATE TABLE IF NOT EXISTS {name}(" + ", ".join(clauses) + ")")


def drop_table(name: str) -> SqlStatement:
    check_identifier(name, "table name")
    return SqlStatement(f"DROP TABLE IF EXISTS {name};")


def insert_row(table: str, columns: Sequence[str], values: Sequence[Any]) -> SqlStatement:
    check_identifier(table, "table name")
    cols = check_columns(columns)
    params = row_data(values).values_for(cols)
    return SqlStatement(
        f"INSERT INTO {table}(" + ", ".join(cols) + ") VALUES " + _placeholders(len(cols)),
        params,
    )


def insert_multiple_rows(table: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> SqlStatement:
    """One INSERT with a VALUES group per row; parameters flattened row-major.

    A single bad row rejects the whole batch.
    """
    check_identifier(table, "table name")
    cols = check_columns(columns)
    if isinstance(rows, (str, bytes)) or not rows:
        raise InvalidConfiguration("at least one row is required")
    flattened = []
    for i, row in enumerate(rows):
        try:
            flattened.extend(row_data(row).values_for(cols))
        except InvalidConfiguration as e:
            raise InvalidConfiguration(f"row {i}: {e}") from e
    group = _placeholders(len(cols))
    return SqlStatement(
        f"INSERT INTO {table}(" + ", ".join(cols) + ") VALUES " + ", ".join([group] * len(rows)),
        flattened,
    )


def update_row(table: str, columns: Sequence[str], data, where_column: str, where_value: Any) -> SqlStatement:
    """UPDATE with SET values and the WHERE value all bound as parameters."""
    check_identifier(table, "table name")
    cols = check_columns(columns)
    check_identifier(where_column, "where column")
    values = row_data(data).values_for(cols)
    assignments = ", ".join(f"{c} = ?" for c in cols)
    return SqlStatement(
        f"UPDATE {table} SET {assignments} WHERE {where_column} = ?",
        values + (where_value,),
    )


def delete_row(table: str, where_column: str, where_value: Any) -> SqlStatement:
    check_identifier(table, "table name")
    check_identifier(where_column, "where column")
    return SqlStatement(f"DELETE FROM {table} WHERE {where_column} = ?", (where_value,))
