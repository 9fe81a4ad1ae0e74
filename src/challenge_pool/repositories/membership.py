"""Membership repository for the ``api_key_challenges_pool`` table.

Reads run on the repository's own :class:`Database` (one statement per
pooled connection).  Writes take a :class:`UnitOfWork` so they share a
transaction with other work.  Uniqueness and both foreign keys are
enforced by the table's own constraints; psycopg errors propagate
unchanged and are classified by the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pypgkit import BaseRepository

from challenge_pool.models.membership import _EPOCH, ChallengePoolMembership

if TYPE_CHECKING:
    from datetime import datetime

    from challenge_pool.db.unit_of_work import UnitOfWork


class MembershipRepository(BaseRepository[ChallengePoolMembership]):
    table_name = "api_key_challenges_pool"
    # Leading column of the composite key; pair lookups are explicit below.
    primary_key = "site_key"

    def _row_to_entity(self, row: dict) -> ChallengePoolMembership:
        return ChallengePoolMembership(
            site_key=row["site_key"],
            challenge_url=row["challenge_url"],
            created_at=row["created_at"],
        )

    def _entity_to_row(self, entity: ChallengePoolMembership) -> dict:
        row = {"site_key": entity.site_key, "challenge_url": entity.challenge_url}
        if entity.created_at is not _EPOCH:
            row["created_at"] = entity.created_at
        return row

    # -- writes --------------------------------------------------------------

    def insert(
        self,
        uow: UnitOfWork,
        site_key: str,
        challenge_url: str,
        created_at: datetime | None = None,
    ) -> ChallengePoolMembership:
        """Insert one membership and return it as stored.

        When *created_at* is None the column default (``now()``) applies.
        """
        draft = ChallengePoolMembership(site_key, challenge_url, created_at or _EPOCH)
        row = uow.insert(self.table_name, self._entity_to_row(draft))
        return self._row_to_entity(row)

    def delete_pair(self, uow: UnitOfWork, site_key: str, challenge_url: str) -> bool:
        """Delete one membership.  Returns False if the pair was absent."""
        row = uow.fetch_one(
            "DELETE FROM api_key_challenges_pool "
            "WHERE site_key = %s AND challenge_url = %s "
            "RETURNING site_key",
            (site_key, challenge_url),
        )
        return row is not None

    def delete_by_site_key(self, uow: UnitOfWork, site_key: str) -> int:
        """Delete every membership of *site_key*.  Returns count deleted."""
        return uow.execute(
            "DELETE FROM api_key_challenges_pool WHERE site_key = %s",
            (site_key,),
        )

    def delete_by_challenge(self, uow: UnitOfWork, challenge_url: str) -> int:
        """Delete every membership referencing *challenge_url*."""
        return uow.execute(
            "DELETE FROM api_key_challenges_pool WHERE challenge_url = %s",
            (challenge_url,),
        )

    # -- reads ---------------------------------------------------------------

    def find(self, site_key: str, challenge_url: str) -> ChallengePoolMembership | None:
        row = self._db.fetch_one(
            "SELECT site_key, challenge_url, created_at "
            "FROM api_key_challenges_pool "
            "WHERE site_key = %s AND challenge_url = %s",
            (site_key, challenge_url),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def pair_exists(self, site_key: str, challenge_url: str) -> bool:
        row = self._db.fetch_one(
            "SELECT EXISTS ("
            "  SELECT 1 FROM api_key_challenges_pool "
            "  WHERE site_key = %s AND challenge_url = %s"
            ") AS present",
            (site_key, challenge_url),
            as_dict=True,
        )
        return bool(row and row["present"])

    def find_by_site_key(self, site_key: str) -> list[ChallengePoolMembership]:
        """Return the pool of *site_key* in insertion order.

        Ties on ``created_at`` are broken by bytewise ``challenge_url``
        order, independent of the database's locale collation.
        """
        rows = self._db.fetch_all(
            "SELECT site_key, challenge_url, created_at "
            "FROM api_key_challenges_pool "
            "WHERE site_key = %s "
            'ORDER BY created_at, challenge_url COLLATE "C"',
            (site_key,),
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]

    def find_site_keys_by_challenge(self, challenge_url: str) -> list[str]:
        """Return the site keys whose pool contains *challenge_url*."""
        rows = self._db.fetch_all(
            "SELECT site_key FROM api_key_challenges_pool "
            "WHERE challenge_url = %s "
            'ORDER BY created_at, site_key COLLATE "C"',
            (challenge_url,),
            as_dict=True,
        )
        return [r["site_key"] for r in rows]
