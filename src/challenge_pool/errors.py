"""Typed errors raised by the challenge pool registry.

Every failed operation surfaces as exactly one :class:`PoolError`
subclass.  Only :class:`Unavailable` is marked ``retryable``; the other
kinds describe caller logic or data state and must not be retried
blindly.

Storage failures are translated from psycopg exceptions by
:func:`translate_db_error`, matching on the constraint names declared
in ``db/schema.sql``::

    try:
        ...
    except (psycopg.IntegrityError, psycopg.OperationalError) as exc:
        raise translate_db_error(exc, site_key=k, challenge_url=u) from exc
"""

from __future__ import annotations

import psycopg
from psycopg import errors as pg_errors

# ---------------------------------------------------------------------------
# Constraint names of the api_key_challenges_pool table
# ---------------------------------------------------------------------------

POOL_PKEY = "api_key_challenges_pool_pkey"
POOL_SITE_KEY_FKEY = "api_key_challenges_pool_site_key_fkey"
POOL_CHALLENGE_URL_FKEY = "api_key_challenges_pool_challenge_url_fkey"

# Entity kinds reported by NotFound
API_KEY = "api_key"
CHALLENGE = "challenge"
MEMBERSHIP = "membership"


class PoolError(Exception):
    """Base class for all registry failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the operation may be retried.

    """

    retryable: bool = False

    def __init__(self, detail: str, *, retryable: bool | None = None) -> None:
        self.detail = detail
        if retryable is not None:
            self.retryable = retryable
        super().__init__(detail)


class NotFound(PoolError):
    """A referenced API key, challenge, or membership does not exist."""

    def __init__(self, entity: str, key: object) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key!r}")


class AlreadyExists(PoolError):
    """The ``(site_key, challenge_url)`` pair is already in the pool."""

    def __init__(self, site_key: str | None, challenge_url: str | None) -> None:
        self.site_key = site_key
        self.challenge_url = challenge_url
        super().__init__(
            f"challenge {challenge_url!r} is already in the pool of site key {site_key!r}",
        )


class ConstraintViolation(PoolError):
    """Storage-level integrity failure not otherwise classified."""

    def __init__(self, detail: str, *, constraint: str | None = None) -> None:
        self.constraint = constraint
        super().__init__(detail)


class Unavailable(PoolError):
    """Storage unreachable or transaction aborted for infrastructure reasons."""

    retryable = True


def translate_db_error(
    exc: psycopg.Error,
    *,
    site_key: str | None = None,
    challenge_url: str | None = None,
) -> PoolError:
    """Map a psycopg exception onto the registry's error kinds.

    Operational errors (lost connections, pool timeouts, serialization
    failures, deadlocks) become :class:`Unavailable`.  Integrity errors
    are classified by constraint name; anything unrecognised becomes
    :class:`ConstraintViolation`.
    """
    if isinstance(exc, psycopg.OperationalError):
        return Unavailable(f"storage unavailable: {exc}")

    constraint = exc.diag.constraint_name
    if isinstance(exc, pg_errors.UniqueViolation) and constraint == POOL_PKEY:
        return AlreadyExists(site_key, challenge_url)
    if isinstance(exc, pg_errors.ForeignKeyViolation):
        if constraint == POOL_SITE_KEY_FKEY:
            return NotFound(API_KEY, site_key)
        if constraint == POOL_CHALLENGE_URL_FKEY:
            return NotFound(CHALLENGE, challenge_url)

    return ConstraintViolation(
        str(exc) or type(exc).__name__,
        constraint=constraint,
    )
