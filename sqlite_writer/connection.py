"""Async SQLite connection handle.

One ConnectionHandle owns one aiosqlite connection (a dedicated worker thread
running a sqlite3.Connection). It provides:
    - Read-only ("RO", mode=ro URI + query_only) or read-write-create ("CW") opening
    - execute / query_all / query_one coroutines with typed failures
    - Ordered and unordered units of work (run_ordered / run_unordered)
    - Environment driven tuning with clamping + diagnostic events
    - Health check helper and a small CLI

States: Open and Closed. open() is the only way in, close() the only way out,
and Closed is terminal. A handle built from a bad path or mode never opens.
"""
from __future__ import annotations
import asyncio, os, sqlite3
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import aiosqlite

from .errors import InvalidConfiguration, ConnectionError, ClosedHandle, StatementError
from .logging_util import DiagnosticLog, Sink, as_log

DB_SUFFIX = ".db"
MAX_BUSY_TIMEOUT_MS = 600_000
DEFAULT_BUSY_TIMEOUT_MS = 5000
MAX_CACHE_KIB = 512 * 1024        # 512 MiB upper clamp
MIN_CACHE_KIB = 16                # SQLite minimum practical
DEFAULT_CACHE_KIB = 64 * 1024     # 64 MiB


class OpenMode(str, Enum):
    READ_ONLY = "RO"
    READ_WRITE_CREATE = "CW"


@dataclass
class HandleConfig:
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    cache_kib: int = DEFAULT_CACHE_KIB
    foreign_keys: bool = True
    wal: bool = False

    @classmethod
    def from_env(cls, log: Union[DiagnosticLog, Sink, None] = None) -> "HandleConfig":
        log = as_log(log)

        def _int(name: str, default: int) -> int:
            raw = os.environ.get(name)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                log.warn("invalid_env_int", key=name, value=raw, default=default)
                return default
        busy = _int("SQLITE_BUSY_TIMEOUT_MS", DEFAULT_BUSY_TIMEOUT_MS)
        cache_kib = _int("CACHE_SIZE_KIB", DEFAULT_CACHE_KIB)
        foreign_keys = os.environ.get("SQLITE_FOREIGN_KEYS", "1") != "0"
        wal = os.environ.get("SQLITE_WAL", "0") == "1"
        # Clamp
        adjusted = {}
        if busy < 0 or busy > MAX_BUSY_TIMEOUT_MS:
            adjusted["busy_timeout_ms"] = busy
            busy = min(MAX_BUSY_TIMEOUT_MS, max(0, busy))
        if cache_kib < MIN_CACHE_KIB or cache_kib > MAX_CACHE_KIB:
            adjusted["cache_kib"] = cache_kib
            cache_kib = min(MAX_CACHE_KIB, max(MIN_CACHE_KIB, cache_kib))
        if adjusted:
            log.warn("handle_config_clamped", original=adjusted,
                     clamped={"busy_timeout_ms": busy, "cache_kib": cache_kib})
        return cls(busy_timeout_ms=busy, cache_kib=cache_kib, foreign_keys=foreign_keys, wal=wal)


def statement_kind(sql: str) -> str:
    """First meaningful keyword of ``sql`` (the statement after a leading WITH)."""
    stripped = sql.strip().lstrip(';')
    while stripped.startswith('--'):
        stripped = stripped.split('\n', 1)[1].strip() if '\n' in stripped else ''
    tokens = stripped.split()
    kind = tokens[0].upper() if tokens else 'UNKNOWN'
    if kind == 'WITH':
        for tok in tokens[1:]:
            if tok.upper() in {"SELECT", "INSERT", "REPLACE", "UPDATE", "DELETE"}:
                return tok.upper()
    return kind


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a statement that returns no rows."""
    last_row_id: int = 0
    changes: int = 0


class UnitOfWork:
    """A batch of statement submissions scheduled together.

    Each submission returns an asyncio.Task right away. In ordered mode a
    statement starts only once the previous one has finished (success or
    failure); in unordered mode every statement is dispatched immediately.
    """

    def __init__(self, handle: "ConnectionHandle", ordered: bool):
        self.handle = handle
        self.ordered = ordered
        self.tasks: List[asyncio.Task] = []

    def _submit(self, make: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        previous = self.tasks[-1] if self.ordered and self.tasks else None

        async def _step():
            if previous is not None:
                await asyncio.wait([previous])
            return await make()

        task = asyncio.get_running_loop().create_task(_step())
        self.tasks.append(task)
        return task

    def execute(self, sql: str, params: Sequence[Any] = ()) -> asyncio.Task:
        return self._submit(lambda: self.handle.execute(sql, params))

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> asyncio.Task:
        return self._submit(lambda: self.handle.query_all(sql, params))

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> asyncio.Task:
        return self._submit(lambda: self.handle.query_one(sql, params))

    def cancel(self) -> None:
        for task in self.tasks:
            task.cancel()

    async def join(self, return_exceptions: bool = False) -> List[Any]:
        """Wait for every submitted statement; results come back in submission order.

        All tasks are awaited even when some fail. With return_exceptions=False
        the first failure (in submission order) is raised afterwards.
        """
        if not self.tasks:
            return []
        results = await asyncio.gather(*self.tasks, return_exceptions=True)
        if not return_exceptions:
            for r in results:
                if isinstance(r, BaseException):
                    raise r
        return results


class ConnectionHandle:
    """Async SQLite handle.

    Construction never raises: a path without the .db suffix, a directory, or an
    unknown mode leave the handle unusable with the reason in ``error``. The
    native connection opens on ``await open()`` (or lazily on first use, or via
    ``async with``).
    """

    def __init__(self, path: Union[str, os.PathLike], mode: Union[OpenMode, str] = OpenMode.READ_WRITE_CREATE,
                 config: Optional[HandleConfig] = None, log: Union[DiagnosticLog, Sink, None] = None):
        self.log = as_log(log)
        self.path = os.fspath(path) if isinstance(path, (str, os.PathLike)) else path
        self.mode: Optional[OpenMode] = None
        self.error: Optional[Exception] = None
        self._conn: Optional[aiosqlite.Connection] = None
        self._closed = False
        self._open_lock = asyncio.Lock()
        try:
            self.mode = self._check_mode(mode)
            self._check_path(self.path)
        except InvalidConfiguration as e:
            self.error = e
            self.log.error("invalid_configuration", path=str(path), mode=str(mode), error=str(e))
        self.config = config or HandleConfig.from_env(self.log)

    # --- Construction checks --------------------------------------------------------
    @staticmethod
    def _check_mode(mode) -> OpenMode:
        try:
            return OpenMode(mode)
        except ValueError:
            raise InvalidConfiguration(f"Wrong mode: {mode!r} (expected 'RO' or 'CW')") from None

    @staticmethod
    def _check_path(path) -> None:
        if not isinstance(path, str) or not path.endswith(DB_SUFFIX):
            raise InvalidConfiguration(f"Wrong type of filename: {path!r} (expected a path ending in {DB_SUFFIX})")
        if os.path.isdir(path):  # directory misuse
            raise InvalidConfiguration(f"Path points to a directory, expected file: {path}")

    # --- State --------------------------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return self._conn is not None and not self._closed

    @property
    def read_only(self) -> bool:
        return self.mode is OpenMode.READ_ONLY

    def _unusable(self) -> Optional[ClosedHandle]:
        if self._closed:
            return ClosedHandle(f"handle is closed: {self.path}")
        if self.error is not None:
            exc = ClosedHandle(f"handle is not usable: {self.error}")
            exc.__cause__ = self.error
            return exc
        return None

    # --- Lifecycle ----------------------------------------------------------------------
    async def open(self) -> "ConnectionHandle":
        """Open the native connection; no-op when already open.

        Raises ConnectionError if SQLite cannot open the file (the handle then
        stays unusable) and ClosedHandle on a closed or misconfigured handle.
        """
        async with self._open_lock:
            exc = self._unusable()
            if exc is not None:
                raise exc
            if self._conn is not None:
                return self
            try:
                conn = await self._connect()
            except ConnectionError as e:
                self.error = e
                self.log.error("connect_failed", path=self.path, mode=self.mode.value, error=str(e))
                raise
            if self._closed:
                # close() ran while the connection was being set up
                await conn.close()
                raise ClosedHandle(f"handle is closed: {self.path}")
            self._conn = conn
            self.log.info("handle_opened", path=self.path, mode=self.mode.value)
            return self

    async def _connect(self) -> aiosqlite.Connection:
        if self.read_only and not os.path.exists(self.path):
            # Friendly pre-check before SQLite's cryptic error
            raise ConnectionError(f"Database not found and read-only open requested: {self.path}")
        try:
            if self.read_only:
                uri = Path(self.path).resolve().as_uri() + "?mode=ro"
                conn = await aiosqlite.connect(uri, uri=True, isolation_level=None)
            else:
                conn = await aiosqlite.connect(self.path, isolation_level=None)
        except sqlite3.Error as e:
            raise ConnectionError(f"Connect to db failed: {self.path}: {e}") from e
        conn.row_factory = aiosqlite.Row
        try:
            await self._apply_pragmas(conn)
        except BaseException:
            await conn.close()
            raise
        return conn

    async def _apply_pragmas(self, conn: aiosqlite.Connection) -> None:
        mode = self.mode.value
        pragmas = [
            (f"busy_timeout={self.config.busy_timeout_ms}", "busy_timeout"),
            (f"foreign_keys={'ON' if self.config.foreign_keys else 'OFF'}", "foreign_keys"),
            (f"cache_size=-{self.config.cache_kib}", "cache_size"),  # negative => KiB
        ]
        if self.read_only:
            pragmas.append(("query_only=ON", "query_only"))
        for p, tag in pragmas:
            try:
                await conn.execute(f"PRAGMA {p}")
            except sqlite3.Error as e:
                self.log.warn("pragma_failed", pragma=p, tag=tag, mode=mode, path=self.path, error=str(e))
        if self.config.wal and not self.read_only:
            try:
                async with conn.execute("PRAGMA journal_mode=WAL") as cur:
                    jm = (await cur.fetchone())[0]
                if str(jm).lower() != "wal":
                    self.log.warn("journal_mode_unexpected", got=jm, path=self.path)
            except sqlite3.Error as e:
                self.log.warn("pragma_failed", pragma="journal_mode=WAL", mode=mode, path=self.path, error=str(e))

    async def _require_open(self) -> aiosqlite.Connection:
        exc = self._unusable()
        if exc is not None:
            raise exc
        if self._conn is None:
            await self.open()
            exc = self._unusable()
            if exc is not None:
                raise exc
        return self._conn

    async def close(self) -> None:
        """Release the native handle. Closing twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        async with self._open_lock:
            conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.close()
        except sqlite3.Error as e:
            self.log.warn("close_failed", path=self.path, error=str(e))
        self.log.info("handle_closed", path=self.path)

    async def __aenter__(self) -> "ConnectionHandle":
        try:
            await self.open()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --- Statements ---------------------------------------------------------------------
    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        """Run a statement that returns no rows (DDL/DML).

        ``last_row_id`` is only reported for INSERT/REPLACE statements; it is 0
        for everything else, even though SQLite keeps the previous insert's rowid.
        """
        conn = await self._require_open()
        try:
            async with conn.execute(sql, tuple(params)) as cur:
                last_row_id = (cur.lastrowid or 0) if statement_kind(sql) in ("INSERT", "REPLACE") else 0
                return ExecResult(last_row_id=last_row_id, changes=max(cur.rowcount, 0))
        except sqlite3.Error as e:
            self.log.error("statement_failed", sql=sql, error=str(e))
            raise StatementError(sql, params, e) from e

    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Return every matching row as a dict; an empty list when nothing matches."""
        conn = await self._require_open()
        try:
            async with conn.execute(sql, tuple(params)) as cur:
                rows = await cur.fetchall()
        except sqlite3.Error as e:
            self.log.error("statement_failed", sql=sql, error=str(e))
            raise StatementError(sql, params, e) from e
        return [dict(r) for r in rows]

    async def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        """Return the first matching row, or None when nothing matches."""
        conn = await self._require_open()
        try:
            async with conn.execute(sql, tuple(params)) as cur:
                row = await cur.fetchone()
        except sqlite3.Error as e:
            self.log.error("statement_failed", sql=sql, error=str(e))
            raise StatementError(sql, params, e) from e
        return dict(row) if row is not None else None

    # --- Scheduling ---------------------------------------------------------------------
    def run_ordered(self, work: Callable[[UnitOfWork], Any]) -> UnitOfWork:
        """Run ``work`` with a unit whose statements execute strictly in submission order.

        Returns as soon as ``work`` has dispatched its statements; await
        ``unit.join()`` for the results. Must be called from a running event loop.
        """
        return self._run_unit(work, ordered=True)

    def run_unordered(self, work: Callable[[UnitOfWork], Any]) -> UnitOfWork:
        """Like run_ordered, but statements may interleave. Only for independent statements."""
        return self._run_unit(work, ordered=False)

    def _run_unit(self, work: Callable[[UnitOfWork], Any], ordered: bool) -> UnitOfWork:
        unit = UnitOfWork(self, ordered)
        try:
            work(unit)
        except BaseException:
            # work never awaited, so no submitted statement has started yet
            unit.cancel()
            raise
        return unit

    # --- Health -------------------------------------------------------------------------
    async def health_check(self) -> Dict[str, Any]:
        """Return current core pragma values and basic status."""
        try:
            conn = await self._require_open()
            values = {}
            for name in ("journal_mode", "foreign_keys", "busy_timeout", "cache_size", "query_only"):
                async with conn.execute(f"PRAGMA {name}") as cur:
                    values[name] = (await cur.fetchone())[0]
        except (sqlite3.Error, ClosedHandle, ConnectionError) as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "path": self.path, "mode": self.mode.value, **values}


def cli_dump_config():  # pragma: no cover - thin CLI wrapper
    """CLI helper: print resolved HandleConfig + health_check JSON."""
    import argparse, json
    from .logging_util import stderr_sink
    ap = argparse.ArgumentParser(description='Dump handle config and health info')
    ap.add_argument('db', help='Path to SQLite database (.db)')
    ap.add_argument('--write', action='store_true', help='Open read-write-create instead of read-only')
    args = ap.parse_args()

    async def _dump():
        mode = OpenMode.READ_WRITE_CREATE if args.write else OpenMode.READ_ONLY
        async with ConnectionHandle(args.db, mode, log=stderr_sink) as handle:
            return {'config': asdict(handle.config), 'health_check': await handle.health_check()}

    try:
        out = asyncio.run(_dump())
    except (ClosedHandle, ConnectionError) as e:
        out = {'health_check': {'ok': False, 'error': str(e)}}
    print(json.dumps(out, indent=2))
    return 0 if out['health_check'].get('ok') else 1


if __name__ == '__main__':  # pragma: no cover
    raise SystemExit(cli_dump_config())
