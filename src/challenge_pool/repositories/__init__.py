"""Repository classes for the challenge pool persistence layer.

:class:`MembershipRepository` owns the SQL for the pool table;
:class:`ApiKeyRepository` and :class:`ChallengeRepository` cover only
what the pool needs from its parent tables.
"""

from challenge_pool.repositories.api_key import ApiKeyRepository
from challenge_pool.repositories.challenge import ChallengeRepository
from challenge_pool.repositories.membership import MembershipRepository
from challenge_pool.repositories.parent import ParentRepository

__all__ = [
    "ApiKeyRepository",
    "ChallengeRepository",
    "MembershipRepository",
    "ParentRepository",
]
