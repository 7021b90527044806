"""
bpd.repository — Read-only store access keyed by fiscal code.

A Repository answers exactly one question: which rows belong to this
fiscal code. SqlRepository answers it with a single filtered SELECT
against one view, run in the threadpool so the event loop never blocks
on the database driver.

execute_query() is the only caller-facing entry point. Any store-level
failure (connection, timeout, driver, serialization) becomes a QueryError
with a fixed, redacted message. The original exception is chained as
__cause__ for the caller to log; it never reaches the response.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from sqlalchemy import Engine, create_engine, select
from starlette.concurrency import run_in_threadpool

from bpd.errors import QueryError
from bpd.models import Base

Row = Mapping[str, Any]


class Repository(Protocol):
    async def find(self, fiscal_code: str) -> Sequence[Row]: ...


class SqlRepository:
    """Repository over one SQLAlchemy-mapped view or table."""

    def __init__(self, engine: Engine, model: type[Base]) -> None:
        self._engine = engine
        self._table = model.__table__

    async def find(self, fiscal_code: str) -> list[dict[str, Any]]:
        return await run_in_threadpool(self._find_sync, fiscal_code)

    def _find_sync(self, fiscal_code: str) -> list[dict[str, Any]]:
        stmt = select(self._table).where(self._table.c.fiscal_code == fiscal_code)
        with self._engine.connect() as conn:
            return [dict(row) for row in conn.execute(stmt).mappings()]


def build_engine(url: str) -> Engine:
    """Shared, long-lived engine. Built once at startup."""
    return create_engine(url, pool_pre_ping=True)


async def execute_query(repository: Repository, fiscal_code: str, error_message: str) -> list[Row]:
    """Run one lookup. Raises QueryError(error_message) on any store failure. No retry."""
    try:
        return list(await repository.find(fiscal_code))
    except Exception as exc:
        raise QueryError(error_message) from exc
