"""Persistence gateway: the only component that talks to SQLite.

:class:`PersistenceGateway` exposes five table-generic operations over plain
``dict`` rows:

* :meth:`~PersistenceGateway.get` — one row by id.
* :meth:`~PersistenceGateway.query` — equality filter plus an optional
  Python predicate.
* :meth:`~PersistenceGateway.insert` — new row, returns its id.
* :meth:`~PersistenceGateway.conditional_update` — compare-and-swap on the
  ``version`` column; returns ``False`` when another writer got there first.
* :meth:`~PersistenceGateway.delete` — hard delete by id.

Every call is bounded by a timeout (the gateway default, or the caller's
``timeout=`` override) and surfaces failures only as
:class:`~nestmate.core.exceptions.GatewayTimeout`,
:class:`~nestmate.core.exceptions.GatewayUnavailable` or, for unique-key
violations on insert, :class:`~nestmate.core.exceptions.DuplicateRecord`.
Raw ``sqlite3`` errors never leave this module.

Typical usage::

    gateway = PersistenceGateway(conn, timeout=settings.gateway_timeout_s)

    row = await gateway.get("listings", listing_id)
    ok = await gateway.conditional_update(
        "listings", listing_id, row["version"], {"manually_expired": 1}
    )
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import aiosqlite

from nestmate.core import events
from nestmate.core.exceptions import DuplicateRecord, GatewayTimeout, GatewayUnavailable
from nestmate.storage.database import TABLE_COLUMNS

__all__ = ["Row", "PersistenceGateway"]

logger = logging.getLogger(__name__)

#: A stored record as a column → value mapping.
Row = dict[str, Any]

_T = TypeVar("_T")


class PersistenceGateway:
    """Timeout-bounded, table-generic access to the SQLite store.

    The gateway owns no connection lifecycle: the caller opens the
    connection (see :func:`~nestmate.storage.database.open_db`) and closes it
    when done.

    Args:
        conn: Open :class:`aiosqlite.Connection` with ``row_factory`` set to
            :class:`aiosqlite.Row`.
        timeout: Default per-call bound in seconds.
    """

    def __init__(self, conn: aiosqlite.Connection, *, timeout: float = 5.0) -> None:
        self._conn = conn
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, table: str, record_id: str, *, timeout: float | None = None) -> Row | None:
        """Return the row with *record_id*, or ``None`` if it does not exist."""
        _check_table(table)

        async def _run() -> Row | None:
            cursor = await self._conn.execute(
                f"SELECT * FROM {table} WHERE id = ? LIMIT 1",  # noqa: S608
                (record_id,),
            )
            row = await cursor.fetchone()
            return dict(row) if row is not None else None

        return await self._call("get", table, _run, timeout)

    async def query(
        self,
        table: str,
        where: Mapping[str, Any] | None = None,
        *,
        predicate: Callable[[Row], bool] | None = None,
        timeout: float | None = None,
    ) -> list[Row]:
        """Return rows matching every ``column = value`` pair in *where*.

        A ``None`` value matches SQL ``NULL``.  When *predicate* is given it
        is applied to each fetched row in Python, after the SQL filter.

        Rows come back in ``id`` order so repeated queries are stable.
        """
        _check_table(table)
        where = dict(where or {})
        _check_columns(table, where)

        clauses: list[str] = []
        params: list[Any] = []
        for column, value in where.items():
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(value)
        sql = f"SELECT * FROM {table}"  # noqa: S608
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id"

        async def _run() -> list[Row]:
            cursor = await self._conn.execute(sql, params)
            rows = [dict(r) for r in await cursor.fetchall()]
            if predicate is not None:
                rows = [r for r in rows if predicate(r)]
            return rows

        return await self._call("query", table, _run, timeout)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, table: str, record: Mapping[str, Any], *, timeout: float | None = None) -> str:
        """Insert *record* and return its ``id``.

        The record must carry an ``id``.  ``version`` defaults to 1.

        Raises:
            DuplicateRecord: If the id or another unique column already exists.
        """
        _check_table(table)
        row = dict(record)
        if not row.get("id"):
            raise ValueError(f"insert into {table!r} requires an id")
        row.setdefault("version", 1)
        _check_columns(table, row)

        columns = ", ".join(row)
        placeholders = ", ".join("?" * len(row))
        sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"  # noqa: S608

        async def _run() -> str:
            await self._conn.execute(sql, list(row.values()))
            await self._conn.commit()
            return str(row["id"])

        record_id = await self._call("insert", table, _run, timeout)
        logger.debug("Inserted %s:%s", table, record_id)
        return record_id

    async def conditional_update(
        self,
        table: str,
        record_id: str,
        expected_version: int,
        patch: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> bool:
        """Apply *patch* only if the row is still at *expected_version*.

        On success the row's ``version`` becomes ``expected_version + 1``.

        Returns:
            ``True`` if the write happened, ``False`` on a version mismatch
            (a concurrent writer won) or if the row no longer exists.
        """
        _check_table(table)
        patch = {k: v for k, v in patch.items() if k not in ("id", "version")}
        _check_columns(table, patch)

        assignments = [f"{column} = ?" for column in patch]
        assignments.append("version = version + 1")
        sql = (
            f"UPDATE {table} SET {', '.join(assignments)} "  # noqa: S608
            "WHERE id = ? AND version = ?"
        )
        params = [*patch.values(), record_id, expected_version]

        async def _run() -> bool:
            cursor = await self._conn.execute(sql, params)
            await self._conn.commit()
            return cursor.rowcount == 1

        applied = await self._call("conditional_update", table, _run, timeout)
        if not applied:
            logger.debug(
                "Conditional update on %s:%s at version %d did not apply",
                table,
                record_id,
                expected_version,
            )
        return applied

    async def delete(self, table: str, record_id: str, *, timeout: float | None = None) -> bool:
        """Delete the row with *record_id*.  Returns ``False`` if it was absent."""
        _check_table(table)

        async def _run() -> bool:
            cursor = await self._conn.execute(
                f"DELETE FROM {table} WHERE id = ?",  # noqa: S608
                (record_id,),
            )
            await self._conn.commit()
            return cursor.rowcount == 1

        return await self._call("delete", table, _run, timeout)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(
        self,
        operation: str,
        table: str,
        run: Callable[[], Awaitable[_T]],
        timeout: float | None,
    ) -> _T:
        """Run one store call under the timeout and translate its failures."""
        bound = self._timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(run(), timeout=bound)
        except TimeoutError as exc:
            logger.warning(
                "Gateway %s on %s exceeded %.2fs",
                operation,
                table,
                bound,
                extra={"event": events.GATEWAY_TIMEOUT},
            )
            raise GatewayTimeout(operation, table, bound) from exc
        except aiosqlite.IntegrityError as exc:
            if "UNIQUE" in str(exc).upper():
                raise DuplicateRecord(table, str(exc)) from exc
            raise GatewayUnavailable(operation, table, str(exc)) from exc
        except aiosqlite.Error as exc:
            logger.error("Gateway %s on %s failed: %s", operation, table, exc)
            raise GatewayUnavailable(operation, table, str(exc)) from exc
        except ValueError as exc:
            # aiosqlite raises ValueError once the connection is closed.
            raise GatewayUnavailable(operation, table, str(exc)) from exc


def _check_table(table: str) -> None:
    if table not in TABLE_COLUMNS:
        raise ValueError(f"unknown table {table!r}")


def _check_columns(table: str, columns: Mapping[str, Any]) -> None:
    unknown = set(columns) - TABLE_COLUMNS[table]
    if unknown:
        raise ValueError(f"unknown column(s) for {table!r}: {sorted(unknown)}")
