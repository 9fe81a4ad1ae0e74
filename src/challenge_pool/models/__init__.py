"""Entity models for the challenge pool persistence layer.

All models are frozen dataclasses.  A membership is never updated in
place; its only state is whether the row exists.
"""

from challenge_pool.models.membership import ChallengePoolMembership

__all__ = [
    "ChallengePoolMembership",
]
