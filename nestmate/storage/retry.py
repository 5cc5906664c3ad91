"""Bounded retry of operations that lose conditional-write races.

Engines implement check-then-write as *read → validate → conditional write*.
When the write finds the row at a newer version the engine raises
:class:`~nestmate.core.exceptions.Conflict`; :func:`retry_on_conflict` re-runs
the whole operation from the read, so validation always sees the winner's
state.  After ``max_attempts`` the last ``Conflict`` is re-raised to the
caller.

Only ``Conflict`` is retried.  Gateway timeouts and unavailability propagate
immediately; the caller decides whether to try again.

Typical usage::

    boost = await retry_on_conflict(
        lambda: self._attach_boost_once(listing_id, user_id, amount),
        max_attempts=settings.conflict_max_attempts,
        operation="attach_boost",
    )
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from nestmate.core import events
from nestmate.core.exceptions import Conflict

__all__ = ["retry_on_conflict"]

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

#: Upper bound of the random pause between attempts (seconds).  A small
#: jitter keeps two racing callers from colliding again in lockstep.
_MAX_JITTER_S: float = 0.01


async def retry_on_conflict(
    operation_fn: Callable[[], Awaitable[_T]],
    *,
    max_attempts: int = 3,
    operation: str = "operation",
) -> _T:
    """Run *operation_fn*, re-running it on :class:`Conflict` up to *max_attempts* times.

    Args:
        operation_fn: Zero-argument coroutine factory; called once per attempt.
        max_attempts: Total attempts, including the first.
        operation: Name used in log lines.

    Returns:
        Whatever the first non-conflicting attempt returns.

    Raises:
        Conflict: If every attempt lost its race.
    """

    def _before_sleep(rs: RetryCallState) -> None:
        exc = rs.outcome.exception() if rs.outcome else None
        logger.info(
            "%s attempt %d/%d lost a write race (%s); retrying",
            operation,
            rs.attempt_number,
            max_attempts,
            exc,
            extra={"event": events.WRITE_CONFLICT_RETRY},
        )

    async for attempt in AsyncRetrying(
        wait=wait_random(0, _MAX_JITTER_S),
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception_type(Conflict),
        reraise=True,
        before_sleep=_before_sleep,
    ):
        with attempt:
            return await operation_fn()

    raise AssertionError("unreachable: tenacity exited without result or exception")  # pragma: no cover
