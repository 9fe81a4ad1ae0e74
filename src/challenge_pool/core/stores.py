"""Collaborator contracts for the two parent entities.

The registry never creates or deletes API keys or challenges.  It only
relies on their stores honouring these protocols; the PostgreSQL
implementations live in :mod:`challenge_pool.repositories`.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ApiKeyStore(Protocol):
    """Owner of API keys, identified by site key.

    ``delete`` must invoke
    :meth:`~challenge_pool.services.registry.MembershipRegistry.on_api_key_deleted`
    inside the same transaction that removes the key.
    """

    def exists(self, site_key: str) -> bool: ...

    def delete(self, site_key: str) -> int: ...


@runtime_checkable
class ChallengeStore(Protocol):
    """Owner of challenges, identified by URL.

    ``delete`` must invoke
    :meth:`~challenge_pool.services.registry.MembershipRegistry.on_challenge_deleted`
    inside the same transaction that removes the challenge.
    """

    def exists(self, challenge_url: str) -> bool: ...

    def delete(self, challenge_url: str) -> int: ...
