"""Result-or-error values returned across the caller boundary.

The engines raise :class:`~nestmate.core.exceptions.NestmateError`
subclasses.  :class:`~nestmate.service.marketplace.Marketplace` catches them
and hands the UI an :class:`OperationResult` instead, so no domain error
crosses the boundary as an exception.

Typical usage::

    result = await marketplace.attach_boost(listing_id, user_id, amount=49)
    if result.ok:
        show_boost(result.value)
    else:
        toast(result.message)          # short, user-facing
        if result.error_kind == "BoostCreditExhausted":
            offer_upgrade()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from nestmate.core.exceptions import NestmateError

__all__ = ["OperationResult"]

_V = TypeVar("_V")


@dataclass(frozen=True, slots=True)
class OperationResult(Generic[_V]):
    """Outcome of one facade operation.

    Attributes:
        value: The operation's return value on success.
        error: The domain error on failure.
        error_kind: Stable error identifier, e.g. ``"QuotaExceeded"``.
        message: Short human-readable message for the end user.
    """

    value: _V | None = None
    error: NestmateError | None = None
    error_kind: str | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: _V) -> OperationResult[_V]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: NestmateError) -> OperationResult[_V]:
        return cls(error=error, error_kind=error.kind, message=error.user_message)

    def unwrap(self) -> _V:
        """Return the value, or re-raise the error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
