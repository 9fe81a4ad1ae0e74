"""Configuration subsystem for challenge-pool.

Public API::

    from challenge_pool.config import get_config, PoolConfig

    # At startup:
    PoolConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    host = cfg.settings.database.host    # typed access
    port = cfg.get("database.port")      # dynamic dot-path
"""

from challenge_pool.config.pool_config import (
    ConfigValidationError,
    PoolConfig,
    get_config,
)
from challenge_pool.config.settings import (
    AuditLogSettings,
    DatabaseSettings,
    LoggingSettings,
    PoolSettings,
    RetrySettings,
)

__all__ = [
    "AuditLogSettings",
    "ConfigValidationError",
    "DatabaseSettings",
    "LoggingSettings",
    "PoolConfig",
    "PoolSettings",
    "RetrySettings",
    "get_config",
]
