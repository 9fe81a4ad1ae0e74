"""Service layer for challenge-pool.

Public API::

    from challenge_pool.services import MembershipRegistry, RetryPolicy
"""

from challenge_pool.services.registry import MembershipRegistry
from challenge_pool.services.retry import RetryPolicy, retry_from_settings, retry_unavailable

__all__ = [
    "MembershipRegistry",
    "RetryPolicy",
    "retry_from_settings",
    "retry_unavailable",
]
