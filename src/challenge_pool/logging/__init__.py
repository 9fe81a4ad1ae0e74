"""Logging subsystem for challenge-pool.

Public API::

    from challenge_pool.logging import configure_logging

    configure_logging(settings.logging)
"""

from challenge_pool.logging.setup import configure_logging

__all__ = ["configure_logging"]
