"""Unit of Work: several statements on a single transaction.

PyPGKit's :class:`Database` single-statement helpers each borrow their
own connection, so a parent-row delete and the removal of its pool
memberships would not be atomic.  This wrapper keeps one connection
for the whole block.

Usage::

    from challenge_pool.db import UnitOfWork

    with UnitOfWork(db) as uow:
        uow.execute("DELETE FROM api_key_challenges_pool WHERE site_key = %s", (k,))
        uow.execute("DELETE FROM api_key WHERE site_key = %s", (k,))
        # COMMIT on clean exit; ROLLBACK on exception
"""

from __future__ import annotations

from typing import Any, Self

from psycopg.rows import dict_row
from pypgkit import Database


class UnitOfWork:
    """Transaction-scoped helper for multi-statement atomic work.

    Wraps :meth:`Database.transaction` and exposes low-level SQL helpers
    that all operate on the **same connection** within a single
    transaction.  The caller is responsible for building correct SQL.
    """

    def __init__(self, database: Database | None = None) -> None:
        self._db = database or Database.get_instance()
        self._conn = None

    # -- context manager -----------------------------------------------------

    def __enter__(self) -> Self:
        self._tx = self._db.transaction()
        self._conn = self._tx.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            self._tx.__exit__(exc_type, exc_val, exc_tb)
        finally:
            self._conn = None

    # -- helpers -------------------------------------------------------------

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """INSERT a single row and return the full row via RETURNING *.

        Parameters
        ----------
        table:
            Table name (unquoted).
        row:
            Column-name to value mapping.

        Returns
        -------
        dict
            The inserted row as returned by the database.

        """
        columns = list(row.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        col_list = ", ".join(columns)
        sql = f"INSERT INTO {table} ({col_list}) VALUES ({placeholders}) RETURNING *"
        assert self._conn is not None, "UnitOfWork must be used as a context manager"
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, list(row.values()))
            return cur.fetchone()

    def execute(self, sql: str, params: tuple | list | None = None) -> int:
        """Execute arbitrary SQL and return the rowcount.

        Use for DELETE or locking statements.
        """
        assert self._conn is not None, "UnitOfWork must be used as a context manager"
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount

    def fetch_one(
        self,
        sql: str,
        params: tuple | list | None = None,
    ) -> dict[str, Any] | None:
        """Execute a query and return the first row as a dict, or None."""
        assert self._conn is not None, "UnitOfWork must be used as a context manager"
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    def fetch_all(
        self,
        sql: str,
        params: tuple | list | None = None,
    ) -> list[dict[str, Any]]:
        """Execute a query and return all rows as dicts."""
        assert self._conn is not None, "UnitOfWork must be used as a context manager"
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return cur.fetchall()
