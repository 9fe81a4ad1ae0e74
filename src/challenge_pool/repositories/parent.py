"""Shared delete-with-cascade logic for the pool's two parent tables."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import psycopg
from pypgkit import BaseRepository

from challenge_pool.db.unit_of_work import UnitOfWork
from challenge_pool.errors import NotFound, translate_db_error
from challenge_pool.logging import audit

if TYPE_CHECKING:
    from pypgkit import Database

    from challenge_pool.services.registry import MembershipRegistry

log = logging.getLogger(__name__)


class ParentRepository(BaseRepository[str]):
    """Existence checks and atomic delete for a table the pool references.

    Subclasses set :attr:`table_name`, :attr:`primary_key` and
    :attr:`entity` and implement :meth:`_cascade`.  Entities are the
    bare key values.

    :meth:`delete` locks the parent row ``FOR UPDATE`` first.  A
    concurrent pool insert needs a ``FOR KEY SHARE`` lock on the same
    row to satisfy its foreign key, so it either commits before the
    lock is granted (and its membership is removed by the cascade) or
    waits and then fails its foreign-key check once the parent is gone.
    """

    entity: str

    def __init__(self, database: Database, registry: MembershipRegistry) -> None:
        super().__init__(database)
        self._registry = registry

    def _row_to_entity(self, row: dict) -> str:
        return row[self.primary_key]

    def _entity_to_row(self, entity: str) -> dict:
        return {self.primary_key: entity}

    def _cascade(self, key: str, uow: UnitOfWork) -> int:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        """Return whether a row with *key* exists."""
        try:
            row = self._db.fetch_one(
                f"SELECT EXISTS (SELECT 1 FROM {self.table_name} "  # noqa: S608
                f"WHERE {self.primary_key} = %s) AS present",
                (key,),
                as_dict=True,
            )
        except psycopg.OperationalError as exc:
            raise translate_db_error(exc) from exc
        return bool(row and row["present"])

    def delete(self, key: str) -> int:
        """Delete the parent row and all its pool memberships atomically.

        Returns the number of memberships removed.  Raises
        :class:`NotFound` if the row does not exist; nothing is
        committed in that case.
        """
        try:
            with UnitOfWork(self._db) as uow:
                locked = uow.fetch_one(
                    f"SELECT {self.primary_key} FROM {self.table_name} "  # noqa: S608
                    f"WHERE {self.primary_key} = %s FOR UPDATE",
                    (key,),
                )
                if locked is None:
                    raise NotFound(self.entity, key)
                removed = self._cascade(self._row_to_entity(locked), uow)
                uow.execute(
                    f"DELETE FROM {self.table_name} WHERE {self.primary_key} = %s",  # noqa: S608
                    (key,),
                )
        except NotFound as err:
            log.warning("Deleting %s %s failed: %s", self.entity, key, err.detail)
            raise
        except (psycopg.IntegrityError, psycopg.OperationalError) as exc:
            err = translate_db_error(exc)
            log.error("Deleting %s %s failed: %s", self.entity, key, err.detail)
            raise err from exc

        log.info("Deleted %s %s with %d pool memberships", self.entity, key, removed)
        audit.memberships_cascaded(self.entity, key, removed)
        return removed
