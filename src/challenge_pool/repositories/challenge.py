"""Challenge repository (existence and cascade-aware delete only)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from challenge_pool.errors import CHALLENGE
from challenge_pool.repositories.parent import ParentRepository

if TYPE_CHECKING:
    from challenge_pool.db.unit_of_work import UnitOfWork


class ChallengeRepository(ParentRepository):
    table_name = "challenge"
    primary_key = "url"
    entity = CHALLENGE

    def _cascade(self, key: str, uow: UnitOfWork) -> int:
        return self._registry.on_challenge_deleted(key, uow)
