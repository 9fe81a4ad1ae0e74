"""API key repository (existence and cascade-aware delete only)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from challenge_pool.errors import API_KEY
from challenge_pool.repositories.parent import ParentRepository

if TYPE_CHECKING:
    from challenge_pool.db.unit_of_work import UnitOfWork


class ApiKeyRepository(ParentRepository):
    table_name = "api_key"
    primary_key = "site_key"
    entity = API_KEY

    def _cascade(self, key: str, uow: UnitOfWork) -> int:
        return self._registry.on_api_key_deleted(key, uow)
