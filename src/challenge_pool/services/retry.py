"""Retry policy for transient storage failures.

Only :class:`~challenge_pool.errors.Unavailable` is retried; every other
error describes caller logic or data state and propagates on the first
attempt.

The policy is its own object, so every positional and keyword argument
given to :meth:`RetryPolicy.call` reaches the wrapped callable unchanged.

Usage::

    from challenge_pool.services.retry import RetryPolicy

    policy = RetryPolicy(max_retries=3, base_delay=0.1)
    policy.call(registry.add, site_key, url, created_at=ts)

    add = policy.wrap(registry.add)
    add(site_key, url)
"""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Self, TypeVar

from challenge_pool.errors import Unavailable

if TYPE_CHECKING:
    from collections.abc import Callable

    from challenge_pool.config.settings import RetrySettings

T = TypeVar("T")

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry :class:`Unavailable`.

    Waits ``base_delay * 2**attempt`` seconds between attempts and
    re-raises the last :class:`Unavailable` once *max_retries* retries
    are exhausted.
    """

    max_retries: int = 3
    base_delay: float = 0.1
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            msg = f"max_retries must be >= 0 (got {self.max_retries})"
            raise ValueError(msg)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> Self:
        """Build the policy from the ``retry`` config section."""
        return cls(max_retries=settings.max_retries, base_delay=settings.base_delay_seconds)

    def call(self, fn: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:  # noqa: ANN401
        """Call ``fn(*args, **kwargs)``, retrying on :class:`Unavailable`."""
        for attempt in range(self.max_retries + 1):
            try:
                return fn(*args, **kwargs)
            except Unavailable as exc:
                if attempt == self.max_retries:
                    raise
                log.warning(
                    "Storage attempt %d/%d failed: %s",
                    attempt + 1,
                    self.max_retries + 1,
                    exc.detail,
                )
                self.sleep(self.base_delay * (2**attempt))
        raise AssertionError("unreachable")

    def wrap(self, fn: Callable[..., T]) -> Callable[..., T]:
        """Decorator form of :meth:`call`."""

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:  # noqa: ANN401
            return self.call(fn, *args, **kwargs)

        return wrapper


def retry_unavailable(fn: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:  # noqa: ANN401
    """Call *fn* under the default :class:`RetryPolicy`."""
    return RetryPolicy().call(fn, *args, **kwargs)


def retry_from_settings(
    settings: RetrySettings,
    fn: Callable[..., T],
    /,
    *args: Any,  # noqa: ANN401
    **kwargs: Any,  # noqa: ANN401
) -> T:
    """Call *fn* under the policy from the ``retry`` config section."""
    return RetryPolicy.from_settings(settings).call(fn, *args, **kwargs)
