"""Integration test fixtures for challenge-pool.

Provides an in-memory stand-in for PostgreSQL that understands the
handful of statement shapes the repositories issue and enforces the
pool table's constraints: the composite primary key, both foreign keys
and ``ON DELETE CASCADE``.  It sits behind a real PyPGKit
:class:`~pypgkit.Database`, so :class:`UnitOfWork`, the repositories
and the registry run end to end.

Concurrency follows PostgreSQL's READ COMMITTED rules closely enough
for races to interleave.  The store's mutex is held per statement, not
per transaction.  Each row version records the transaction that created
it (``xmin``) and the one that deleted it (``xmax``).  Row locks are
taken the way PostgreSQL takes them:

* a foreign-key check holds ``FOR KEY SHARE`` on the parent row;
* ``SELECT ... FOR UPDATE`` and ``DELETE`` hold an exclusive row lock;
* an insert whose key collides with another transaction's uncommitted
  insert or delete waits for that transaction to finish.

A statement that must wait releases the mutex and blocks until the
other transaction commits or rolls back.  :attr:`InMemoryPostgres.waiting`
counts blocked statements so tests can hold one transaction open and
observe another queue behind it.
"""

from __future__ import annotations

import itertools
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import psycopg
import pytest
from psycopg import errors as pg_errors
from psycopg.pq import DiagnosticField
from pypgkit import Database, DatabaseConfig

from challenge_pool.context import Container

POOL = "api_key_challenges_pool"

# Primary key column of each parent table, and the pool column referencing it
_PARENTS = {"api_key": "site_key", "challenge": "url"}
_POOL_FK = {"api_key": "site_key", "challenge": "challenge_url"}

_BASE_TIME = datetime(2025, 11, 4, 15, 29, 27, tzinfo=UTC)

# Seconds a statement may wait on a row lock before failing
LOCK_TIMEOUT = 5.0

_INSERT_RE = re.compile(r"^INSERT INTO (\w+) \((.+?)\) VALUES \((.+?)\) RETURNING \*$")
_DELETE_RE = re.compile(r"^DELETE FROM (\w+) WHERE (.+?)(?: RETURNING (.+))?$")
_EXISTS_RE = re.compile(r"^SELECT EXISTS \( ?SELECT 1 FROM (\w+) WHERE (.+?)\) AS present$")
_SELECT_RE = re.compile(
    r"^SELECT (.+?) FROM (\w+) WHERE (.+?)(?: ORDER BY (.+?))?( FOR UPDATE)?$",
)

_KEY_SHARE = "key_share"
_EXCLUSIVE = "exclusive"


def _constraint_error(cls: type[psycopg.Error], constraint: str) -> psycopg.Error:
    return cls(
        f"violates constraint {constraint}",
        info={DiagnosticField.CONSTRAINT_NAME: constraint.encode()},
    )


def _parse_where(clause: str, params: list) -> dict[str, Any]:
    columns = [part.split(" = ")[0].strip() for part in clause.split(" AND ")]
    return dict(zip(columns, params, strict=True))


def _sort_key(column: str) -> str:
    # Python string order is code point order, which is what COLLATE "C" gives
    return column.strip().removesuffix(' COLLATE "C"')


@dataclass
class _Version:
    data: dict[str, Any]
    xmin: int
    xmax: int | None = None
    locks: dict[int, str] = field(default_factory=dict)


class _Cursor:
    def __init__(self, conn: _Connection, row_factory: Any) -> None:  # noqa: ANN401
        self._conn = conn
        self._as_dict = row_factory is not None
        self._rows: list[dict] = []
        self.rowcount = -1

    def __enter__(self) -> _Cursor:
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def _shape(self, row: dict) -> dict | tuple:
        return dict(row) if self._as_dict else tuple(row.values())

    def execute(self, sql: str, params: Any = None) -> None:  # noqa: ANN401
        self._rows, self.rowcount = self._conn.run(sql, list(params or []))

    def fetchone(self) -> dict | tuple | None:
        return self._shape(self._rows[0]) if self._rows else None

    def fetchall(self) -> list[dict | tuple]:
        return [self._shape(r) for r in self._rows]


class _Connection:
    """One pooled connection.  A transaction begins with its first statement."""

    def __init__(self, pg: InMemoryPostgres) -> None:
        self._pg = pg
        self.txid: int | None = None

    def cursor(self, row_factory: Any = None) -> _Cursor:  # noqa: ANN401
        return _Cursor(self, row_factory)

    def run(self, sql: str, params: list) -> tuple[list[dict], int]:
        if self.txid is None:
            self.txid = self._pg.begin()
        return self._pg.run(self.txid, sql, params)

    def commit(self) -> None:
        if self.txid is not None:
            self._pg.finish(self.txid, committed=True)
            self.txid = None

    def rollback(self) -> None:
        if self.txid is not None:
            self._pg.finish(self.txid, committed=False)
            self.txid = None


class _Pool:
    """Mimics :meth:`psycopg_pool.ConnectionPool.connection` semantics."""

    def __init__(self, pg: InMemoryPostgres) -> None:
        self._pg = pg
        self.closed = False

    @contextmanager
    def connection(self):
        conn = _Connection(self._pg)
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def close(self) -> None:
        self.closed = True


class InMemoryDatabase(Database):
    """A PyPGKit :class:`Database` whose pool is an :class:`InMemoryPostgres`."""

    def __init__(self, pg: InMemoryPostgres) -> None:
        super().__init__(DatabaseConfig(database="challenge_pool_test", user="test"))
        self._pool = pg.pool


class InMemoryPostgres:
    """The three tables the pool touches, with their constraints and row locks."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._versions: dict[str, list[_Version]] = {"api_key": [], "challenge": [], POOL: []}
        self._committed: set[int] = {0}
        self._active: set[int] = set()
        self._waits_for: dict[int, set[int]] = {}
        self._txids = itertools.count(1)
        self._clock = itertools.count(1)
        self._failures: list[tuple[str, Exception]] = []
        self.pool = _Pool(self)
        self.commits = 0
        self.rollbacks = 0
        self.waiting = 0
        self.statements: list[str] = []

    # -- seeding / inspection ------------------------------------------------

    def add_api_key(self, site_key: str) -> None:
        with self._cond:
            self._versions["api_key"].append(_Version({"site_key": site_key}, xmin=0))

    def add_challenge(self, url: str) -> None:
        with self._cond:
            self._versions["challenge"].append(_Version({"url": url}, xmin=0))

    @property
    def tables(self) -> dict[str, list[dict]]:
        """Committed contents of every table."""
        with self._cond:
            return {
                name: [dict(v.data) for v in versions if self._committed_live(v)]
                for name, versions in self._versions.items()
            }

    def pool_rows(self) -> list[tuple[str, str]]:
        return sorted((r["site_key"], r["challenge_url"]) for r in self.tables[POOL])

    def fail_on(self, fragment: str, exc: Exception) -> None:
        """Raise *exc* the next time a statement containing *fragment* runs."""
        with self._cond:
            self._failures.append((fragment, exc))

    def wait_for_blocked(self, count: int = 1, timeout: float = 2.0) -> None:
        """Return once *count* statements are waiting on a lock."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._cond:
                if self.waiting >= count:
                    return
            time.sleep(0.005)
        msg = f"expected {count} blocked statement(s), saw {self.waiting}"
        raise AssertionError(msg)

    # -- transactions --------------------------------------------------------

    def begin(self) -> int:
        with self._cond:
            txid = next(self._txids)
            self._active.add(txid)
            return txid

    def finish(self, txid: int, *, committed: bool) -> None:
        with self._cond:
            self._active.discard(txid)
            for name, versions in self._versions.items():
                kept = []
                for v in versions:
                    v.locks.pop(txid, None)
                    if committed and v.xmax == txid:
                        continue
                    if not committed and v.xmin == txid:
                        continue
                    if not committed and v.xmax == txid:
                        v.xmax = None
                    kept.append(v)
                self._versions[name] = kept
            if committed:
                self._committed.add(txid)
                self.commits += 1
            else:
                self.rollbacks += 1
            self._cond.notify_all()

    # -- visibility and locking ---------------------------------------------

    def _committed_live(self, v: _Version) -> bool:
        return v.xmin in self._committed and (v.xmax is None or v.xmax not in self._committed)

    def _visible(self, txid: int, v: _Version) -> bool:
        created = v.xmin == txid or v.xmin in self._committed
        deleted = v.xmax is not None and (v.xmax == txid or v.xmax in self._committed)
        return created and not deleted

    def _match(self, txid: int, table: str, where: dict[str, Any]) -> list[_Version]:
        return [
            v
            for v in self._versions[table]
            if self._visible(txid, v) and all(v.data[c] == val for c, val in where.items())
        ]

    def _conflicts(self, txid: int, v: _Version, mode: str) -> set[int]:
        """Transactions that *txid* must wait for before locking *v* in *mode*."""
        blockers = {
            holder
            for holder, held in v.locks.items()
            if holder != txid and (mode == _EXCLUSIVE or held == _EXCLUSIVE)
        }
        if v.xmax is not None and v.xmax != txid and v.xmax in self._active:
            blockers.add(v.xmax)
        return blockers

    def _deadlocked(self, txid: int) -> bool:
        seen: set[int] = set()
        stack = list(self._waits_for.get(txid, ()))
        while stack:
            other = stack.pop()
            if other == txid:
                return True
            if other not in seen:
                seen.add(other)
                stack.extend(self._waits_for.get(other, ()))
        return False

    def _wait(self, txid: int, blockers: set[int], deadline: float) -> None:
        self._waits_for[txid] = blockers
        try:
            if self._deadlocked(txid):
                msg = "deadlock detected"
                raise pg_errors.DeadlockDetected(msg)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                msg = "canceling statement due to lock timeout"
                raise pg_errors.LockNotAvailable(msg)
            self.waiting += 1
            try:
                self._cond.wait(remaining)
            finally:
                self.waiting -= 1
        finally:
            self._waits_for.pop(txid, None)

    def _lock(
        self,
        txid: int,
        table: str,
        where: dict[str, Any],
        mode: str,
        deadline: float,
    ) -> list[_Version]:
        """Lock every visible row matching *where*, waiting out conflicts."""
        while True:
            rows = self._match(txid, table, where)
            blockers = set().union(*(self._conflicts(txid, v, mode) for v in rows))
            if not blockers:
                break
            self._wait(txid, blockers, deadline)
        for v in rows:
            if v.locks.get(txid) != _EXCLUSIVE:
                v.locks[txid] = mode
        return rows

    # -- statement execution -------------------------------------------------

    def run(self, txid: int, sql: str, params: list) -> tuple[list[dict], int]:
        sql = " ".join(sql.split())
        with self._cond:
            self.statements.append(sql)

            for idx, (fragment, exc) in enumerate(self._failures):
                if fragment in sql:
                    del self._failures[idx]
                    raise exc

            deadline = time.monotonic() + LOCK_TIMEOUT

            if m := _INSERT_RE.match(sql):
                columns = [c.strip() for c in m.group(2).split(",")]
                row = dict(zip(columns, params, strict=True))
                return [self._insert(txid, m.group(1), row, deadline)], 1
            if m := _DELETE_RE.match(sql):
                where = _parse_where(m.group(2), params)
                return self._delete(txid, m.group(1), where, m.group(3), deadline)
            if m := _EXISTS_RE.match(sql):
                found = self._match(txid, m.group(1), _parse_where(m.group(2), params))
                return [{"present": bool(found)}], 1
            if m := _SELECT_RE.match(sql):
                return self._select(txid, m, params, deadline)

        msg = f"InMemoryPostgres does not understand: {sql}"
        raise AssertionError(msg)

    def _select(
        self,
        txid: int,
        m: re.Match,
        params: list,
        deadline: float,
    ) -> tuple[list[dict], int]:
        table = m.group(2)
        where = _parse_where(m.group(3), params)
        if m.group(5):
            rows = [v.data for v in self._lock(txid, table, where, _EXCLUSIVE, deadline)]
        else:
            rows = [v.data for v in self._match(txid, table, where)]
        if m.group(4):
            order = [_sort_key(c) for c in m.group(4).split(",")]
            rows.sort(key=lambda r: tuple(r[c] for c in order))
        columns = [c.strip() for c in m.group(1).split(",")]
        return [{c: r[c] for c in columns} for r in rows], len(rows)

    def _insert(self, txid: int, table: str, row: dict[str, Any], deadline: float) -> dict:
        assert table == POOL, f"unexpected insert into {table}"
        key = (row["site_key"], row["challenge_url"])

        # Unique index: wait for any in-flight insert or delete of the same key
        while True:
            same_key = [
                v
                for v in self._versions[POOL]
                if (v.data["site_key"], v.data["challenge_url"]) == key
            ]
            inserting = {
                v.xmin
                for v in same_key
                if v.xmin != txid and v.xmin in self._active and v.xmax is None
            }
            deleting = {
                v.xmax
                for v in same_key
                if v.xmax is not None and v.xmax != txid and v.xmax in self._active
            }
            blockers = inserting | deleting
            if not blockers:
                break
            self._wait(txid, blockers, deadline)
        if any(self._visible(txid, v) for v in same_key):
            raise _constraint_error(pg_errors.UniqueViolation, f"{POOL}_pkey")

        row.setdefault("created_at", _BASE_TIME + timedelta(microseconds=next(self._clock)))
        version = _Version(row, xmin=txid)
        self._versions[POOL].append(version)

        # Foreign keys: KEY SHARE on each parent row, waiting out FOR UPDATE
        try:
            for parent, column in _POOL_FK.items():
                where = {_PARENTS[parent]: row[column]}
                if not self._lock(txid, parent, where, _KEY_SHARE, deadline):
                    raise _constraint_error(
                        pg_errors.ForeignKeyViolation,
                        f"{POOL}_{column}_fkey",
                    )
        except psycopg.Error:
            self._versions[POOL].remove(version)
            raise
        return dict(row)

    def _delete(
        self,
        txid: int,
        table: str,
        where: dict[str, Any],
        returning: str | None,
        deadline: float,
    ) -> tuple[list[dict], int]:
        doomed = self._lock(txid, table, where, _EXCLUSIVE, deadline)
        for v in doomed:
            v.xmax = txid
        if table in _PARENTS:
            for v in doomed:
                key = {_POOL_FK[table]: v.data[_PARENTS[table]]}
                for child in self._lock(txid, POOL, key, _EXCLUSIVE, deadline):
                    child.xmax = txid
        rows = []
        if returning:
            columns = [c.strip() for c in returning.split(",")]
            rows = [{c: v.data[c] for c in columns} for v in doomed]
        return rows, len(doomed)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def pg() -> InMemoryPostgres:
    store = InMemoryPostgres()
    for key in ("K1", "K2"):
        store.add_api_key(key)
    for url in ("https://chal/1", "https://chal/2", "https://a", "https://b"):
        store.add_challenge(url)
    return store


@pytest.fixture()
def container(pg: InMemoryPostgres) -> Container:
    return Container(InMemoryDatabase(pg))


@pytest.fixture()
def registry(container: Container):
    return container.registry
