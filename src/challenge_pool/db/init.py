"""Database initialisation from challenge-pool configuration.

Usage::

    from challenge_pool.config import get_config
    from challenge_pool.db.init import init_database

    db = init_database(get_config().settings.database)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from pypgkit import Database, DatabaseConfig

if TYPE_CHECKING:
    from challenge_pool.config.settings import DatabaseSettings

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# libpq ``options`` values; spaces inside a setting must be backslash-escaped.
_ISOLATION_OPTIONS = {
    "read_committed": r"-c default_transaction_isolation=read\ committed",
    "repeatable_read": r"-c default_transaction_isolation=repeatable\ read",
    "serializable": "-c default_transaction_isolation=serializable",
}

log = logging.getLogger(__name__)


def _settings_to_config(settings: DatabaseSettings) -> DatabaseConfig:
    """Map challenge-pool DatabaseSettings to PyPGKit DatabaseConfig."""
    return DatabaseConfig(
        host=settings.host,
        port=settings.port,
        database=settings.database,
        user=settings.user,
        password=settings.password,
        sslmode=settings.sslmode,
        min_connections=settings.min_connections,
        max_connections=settings.max_connections,
        connection_timeout=settings.connection_timeout,
        options={"options": _ISOLATION_OPTIONS[settings.isolation_level]},
    )


def init_database(settings: DatabaseSettings) -> Database:
    """Initialise the PyPGKit :class:`Database` from config settings.

    If the database is already initialised, returns the existing
    instance.  When ``settings.auto_setup`` is true the bundled
    ``schema.sql`` is applied before the handle is returned.

    Parameters
    ----------
    settings:
        The ``database`` section from :class:`PoolSettings`.

    Returns
    -------
    Database
        The ready-to-use database handle.  Callers pass it explicitly
        to the registry and repositories and must
        :meth:`~pypgkit.Database.disconnect` it on shutdown.

    """
    if Database.is_initialized():
        log.debug("Database already initialised, returning existing instance")
        return Database.get_instance()

    config = _settings_to_config(settings)

    log.info(
        "Initialising database connection: %s@%s:%s/%s",
        settings.user,
        settings.host,
        settings.port,
        settings.database,
    )

    db = Database.init(
        config=config,
        schema_path=_SCHEMA_PATH if settings.auto_setup else None,
        auto_setup=settings.auto_setup,
        interactive=False,
    )

    log.info("Database initialised successfully")
    return db
