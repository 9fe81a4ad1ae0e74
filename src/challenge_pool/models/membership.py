"""ChallengePoolMembership entity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

# Sentinel for timestamps not yet assigned by the database.
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class ChallengePoolMembership:
    site_key: str
    challenge_url: str
    created_at: datetime = _EPOCH

    @property
    def key(self) -> tuple[str, str]:
        """The ``(site_key, challenge_url)`` identity of the membership."""
        return (self.site_key, self.challenge_url)
