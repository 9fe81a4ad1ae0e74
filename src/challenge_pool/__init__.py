"""challenge-pool: which challenges are offered for each API key.

Public API::

    from challenge_pool import Container, MembershipRegistry, NotFound
"""

from challenge_pool.context import Container
from challenge_pool.errors import (
    AlreadyExists,
    ConstraintViolation,
    NotFound,
    PoolError,
    Unavailable,
)
from challenge_pool.models import ChallengePoolMembership
from challenge_pool.services import MembershipRegistry, RetryPolicy, retry_unavailable

__all__ = [
    "AlreadyExists",
    "ChallengePoolMembership",
    "ConstraintViolation",
    "Container",
    "MembershipRegistry",
    "NotFound",
    "PoolError",
    "RetryPolicy",
    "Unavailable",
    "retry_unavailable",
]
