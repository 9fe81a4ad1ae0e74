"""Database subsystem for challenge-pool.

Public API::

    from challenge_pool.db import UnitOfWork, init_database
"""

from challenge_pool.db.init import init_database
from challenge_pool.db.unit_of_work import UnitOfWork

__all__ = [
    "UnitOfWork",
    "init_database",
]
