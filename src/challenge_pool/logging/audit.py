"""Structured audit events for pool membership changes.

All events are logged to the ``challenge_pool.audit`` logger with a
consistent ``event_id`` field for filtering and alerting.  Events are
emitted only after the owning transaction has committed.
"""

from __future__ import annotations

import logging
from typing import Any

audit_log = logging.getLogger("challenge_pool.audit")


def _emit(
    event_id: str,
    message: str,
    *args: Any,  # noqa: ANN401
    severity: str = "INFO",
    **extra: Any,  # noqa: ANN401
) -> None:
    """Emit a structured audit event."""
    data: dict[str, object] = {
        "event_id": event_id,
        "severity": severity,
    }
    data.update(extra)
    level = getattr(logging, severity.upper(), logging.INFO)
    audit_log.log(level, message, *args, extra=data)


def membership_added(site_key: str, challenge_url: str) -> None:
    """Log a challenge joining a site key's pool."""
    _emit(
        "challenge_pool.audit.membership_added",
        "Challenge %s added to pool of %s",
        challenge_url,
        site_key,
        site_key=site_key,
        challenge_url=challenge_url,
    )


def membership_removed(site_key: str, challenge_url: str) -> None:
    """Log a challenge explicitly removed from a site key's pool."""
    _emit(
        "challenge_pool.audit.membership_removed",
        "Challenge %s removed from pool of %s",
        challenge_url,
        site_key,
        site_key=site_key,
        challenge_url=challenge_url,
    )


def memberships_cascaded(parent: str, key: str, count: int) -> None:
    """Log memberships removed because their parent *key* was deleted."""
    _emit(
        "challenge_pool.audit.memberships_cascaded",
        "Deleted %s %s and %d pool memberships",
        parent,
        key,
        count,
        severity="WARNING",
        parent=parent,
        parent_key=key,
        removed=count,
    )
