"""Membership registry: which challenges are in a site key's pool.

The registry owns the ``(site_key, challenge_url)`` pairs.  It holds no
ownership over API keys or challenges; both are referenced through the
table's foreign keys, so an insert against a missing parent is rejected
by PostgreSQL in the same statement, with no check-then-write window.

Each mutating call runs in a single transaction.  Concurrent duplicate
adds resolve through the primary key (one success, one
:class:`AlreadyExists`); concurrent removes through ``DELETE ...
RETURNING`` (one success, one :class:`NotFound`).

The cascade hooks :meth:`MembershipRegistry.on_api_key_deleted` and
:meth:`MembershipRegistry.on_challenge_deleted` never open their own
transaction: they run on the :class:`UnitOfWork` of the parent's delete
so both commit or roll back together.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, NoReturn

import psycopg

from challenge_pool.db.unit_of_work import UnitOfWork
from challenge_pool.errors import (
    API_KEY,
    CHALLENGE,
    MEMBERSHIP,
    NotFound,
    translate_db_error,
)
from challenge_pool.logging import audit
from challenge_pool.repositories.membership import MembershipRepository

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime

    from pypgkit import Database

    from challenge_pool.models.membership import ChallengePoolMembership

log = logging.getLogger(__name__)


class MembershipRegistry:
    """Manage challenge pool memberships for site keys.

    Parameters
    ----------
    database:
        The database handle, shared by every caller.
    repository:
        SQL access for the membership table.  Defaults to a
        :class:`MembershipRepository` on *database*.

    """

    def __init__(
        self,
        database: Database,
        repository: MembershipRepository | None = None,
    ) -> None:
        self._db = database
        self._repo = repository or MembershipRepository(database)

    @contextmanager
    def _storage(
        self,
        operation: str,
        *,
        site_key: str | None = None,
        challenge_url: str | None = None,
    ) -> Iterator[None]:
        """Translate psycopg failures raised inside the block."""
        try:
            yield
        except (psycopg.IntegrityError, psycopg.OperationalError) as exc:
            err = translate_db_error(
                exc,
                site_key=site_key,
                challenge_url=challenge_url,
            )
            log.log(
                logging.ERROR if err.retryable else logging.WARNING,
                "%s failed for site_key=%s challenge_url=%s: %s",
                operation,
                site_key,
                challenge_url,
                err.detail,
            )
            raise err from exc

    def _missing(self, operation: str, site_key: str, challenge_url: str) -> NoReturn:
        err = NotFound(MEMBERSHIP, (site_key, challenge_url))
        log.warning(
            "%s failed for site_key=%s challenge_url=%s: %s",
            operation,
            site_key,
            challenge_url,
            err.detail,
        )
        raise err

    # -- mutations -----------------------------------------------------------

    def add(
        self,
        site_key: str,
        challenge_url: str,
        *,
        created_at: datetime | None = None,
    ) -> ChallengePoolMembership:
        """Link *challenge_url* into the pool of *site_key*.

        Parameters
        ----------
        created_at:
            Optional timezone-aware creation instant.  Defaults to the
            database's insertion time.

        Raises
        ------
        NotFound
            The API key or the challenge does not exist.
        AlreadyExists
            The pair is already a member.

        """
        if created_at is not None and created_at.utcoffset() is None:
            msg = "created_at must be timezone-aware"
            raise ValueError(msg)

        with (
            self._storage("add", site_key=site_key, challenge_url=challenge_url),
            UnitOfWork(self._db) as uow,
        ):
            membership = self._repo.insert(uow, site_key, challenge_url, created_at)

        log.info("Added challenge %s to pool of %s", challenge_url, site_key)
        audit.membership_added(site_key, challenge_url)
        return membership

    def remove(self, site_key: str, challenge_url: str) -> None:
        """Unlink *challenge_url* from the pool of *site_key*.

        Raises :class:`NotFound` if the pair is not currently a member.
        """
        with (
            self._storage("remove", site_key=site_key, challenge_url=challenge_url),
            UnitOfWork(self._db) as uow,
        ):
            deleted = self._repo.delete_pair(uow, site_key, challenge_url)

        if not deleted:
            self._missing("remove", site_key, challenge_url)

        log.info("Removed challenge %s from pool of %s", challenge_url, site_key)
        audit.membership_removed(site_key, challenge_url)

    # -- reads ---------------------------------------------------------------

    def exists(self, site_key: str, challenge_url: str) -> bool:
        """Return whether the pair is currently a member."""
        with self._storage("exists", site_key=site_key, challenge_url=challenge_url):
            return self._repo.pair_exists(site_key, challenge_url)

    def get(self, site_key: str, challenge_url: str) -> ChallengePoolMembership:
        """Return the full membership record, or raise :class:`NotFound`."""
        with self._storage("get", site_key=site_key, challenge_url=challenge_url):
            membership = self._repo.find(site_key, challenge_url)
        if membership is None:
            self._missing("get", site_key, challenge_url)
        return membership

    def list_for_site_key(self, site_key: str) -> list[str]:
        """Return the challenge URLs in the pool of *site_key*.

        Ordered by creation time, ties broken by URL.  An unknown site
        key yields an empty list rather than an error.
        """
        return [m.challenge_url for m in self.memberships_for_site_key(site_key)]

    def memberships_for_site_key(self, site_key: str) -> list[ChallengePoolMembership]:
        """Like :meth:`list_for_site_key` but with full records."""
        with self._storage("list", site_key=site_key):
            return self._repo.find_by_site_key(site_key)

    def list_site_keys_for_challenge(self, challenge_url: str) -> list[str]:
        """Return every site key whose pool contains *challenge_url*."""
        with self._storage("reverse lookup", challenge_url=challenge_url):
            return self._repo.find_site_keys_by_challenge(challenge_url)

    # -- cascade hooks -------------------------------------------------------

    def on_api_key_deleted(self, site_key: str, uow: UnitOfWork) -> int:
        """Remove every membership of *site_key* on the caller's transaction.

        Must be called by the API key store inside the same
        :class:`UnitOfWork` that deletes the key.  Returns the number of
        memberships removed.
        """
        removed = self._repo.delete_by_site_key(uow, site_key)
        log.debug("Cascade from %s %s removed %d memberships", API_KEY, site_key, removed)
        return removed

    def on_challenge_deleted(self, challenge_url: str, uow: UnitOfWork) -> int:
        """Remove *challenge_url* from every pool on the caller's transaction."""
        removed = self._repo.delete_by_challenge(uow, challenge_url)
        log.debug(
            "Cascade from %s %s removed %d memberships",
            CHALLENGE,
            challenge_url,
            removed,
        )
        return removed
