"""Executor abstraction.

The statement builder only needs three operations, so it accepts anything
shaped like this: a ConnectionHandle (coroutines) or a UnitOfWork (tasks).
"""
from __future__ import annotations
from typing import Protocol, Any, Awaitable, Sequence


class Executor(Protocol):  # pragma: no cover - structural typing helper
    def execute(self, sql: str, params: Sequence[Any] = ...) -> Awaitable[Any]: ...
    def query_all(self, sql: str, params: Sequence[Any] = ...) -> Awaitable[Any]: ...
    def query_one(self, sql: str, params: Sequence[Any] = ...) -> Awaitable[Any]: ...
