"""Dependency container for challenge-pool.

Built once by the embedding service at startup.  Every component shares
the same :class:`Database` handle and its connection pool.

Usage::

    from challenge_pool.config import PoolConfig
    from challenge_pool.context import Container

    cfg = PoolConfig(config_file="config.yaml")
    c = Container.from_settings(cfg.settings)
    c.registry.add(site_key, url)
    c.api_keys.delete(site_key)     # cascades to the pool
    c.close()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

from challenge_pool.db.init import init_database
from challenge_pool.logging import configure_logging
from challenge_pool.repositories import (
    ApiKeyRepository,
    ChallengeRepository,
    MembershipRepository,
)
from challenge_pool.services.registry import MembershipRegistry

if TYPE_CHECKING:
    from pypgkit import Database

    from challenge_pool.config.settings import PoolSettings


class Container:
    """Application-wide dependency container."""

    def __init__(self, database: Database, settings: PoolSettings | None = None) -> None:
        self.db = database
        self.settings = settings
        self.memberships = MembershipRepository(database)
        self.registry = MembershipRegistry(database, self.memberships)
        self.api_keys = ApiKeyRepository(database, self.registry)
        self.challenges = ChallengeRepository(database, self.registry)

    @classmethod
    def from_settings(cls, settings: PoolSettings) -> Self:
        """Configure logging, open the database and wire every component."""
        configure_logging(settings.logging)
        return cls(init_database(settings.database), settings)

    def close(self) -> None:
        """Release the database connection pool."""
        self.db.disconnect()
