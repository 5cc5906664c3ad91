"""Payment confirmations recorded on behalf of the payment collaborator.

Card/UPI capture happens outside Nestmate.  When the payment collaborator
confirms a purchase it calls :meth:`PaymentLedger.record_confirmation`; the
engines then ask :meth:`PaymentLedger.is_confirmed` before granting what was
paid for (a boost, a subscription, a contact disclosure).

A confirmation is bound to one user and one purpose, so a disclosure payment
cannot be replayed to buy a subscription, and one user's purchase reference
cannot unlock anything for another user.
"""

from __future__ import annotations

import logging

from nestmate.core import events
from nestmate.core.clock import Clock
from nestmate.core.exceptions import DuplicateRecord, PaymentNotConfirmed
from nestmate.core.models import PaymentConfirmation, PaymentPurpose
from nestmate.storage.repository import PaymentRepository

__all__ = ["PaymentLedger"]

logger = logging.getLogger(__name__)


class PaymentLedger:
    """Store and check confirmed payments.

    Args:
        payments: Repository for the ``payments`` table.
        clock: Source of the confirmation timestamp.
    """

    def __init__(self, payments: PaymentRepository, clock: Clock) -> None:
        self._payments = payments
        self._clock = clock

    async def record_confirmation(
        self,
        purchase_ref: str,
        user_id: str,
        purpose: PaymentPurpose,
        amount: int,
    ) -> PaymentConfirmation:
        """Record that *purchase_ref* was paid.  Idempotent per reference.

        A repeated confirmation for the same reference returns the record
        stored first.
        """
        confirmation = PaymentConfirmation(
            purchase_ref=purchase_ref,
            user_id=user_id,
            purpose=purpose,
            amount=amount,
            confirmed_at=self._clock.now(),
        )
        try:
            await self._payments.insert(confirmation)
        except DuplicateRecord:
            existing = await self._payments.require(purchase_ref)
            logger.debug("Payment %s was already confirmed", purchase_ref)
            return existing

        logger.info(
            "Payment %s confirmed for user %s (%s, amount=%d)",
            purchase_ref,
            user_id,
            purpose,
            amount,
            extra={"event": events.PAYMENT_CONFIRMED},
        )
        return confirmation

    async def is_confirmed(self, purchase_ref: str, user_id: str, purpose: PaymentPurpose) -> bool:
        confirmation = await self._payments.get(purchase_ref)
        return (
            confirmation is not None
            and confirmation.user_id == user_id
            and confirmation.purpose == purpose
        )

    async def require_confirmed(
        self,
        purchase_ref: str | None,
        user_id: str,
        purpose: PaymentPurpose,
        *,
        min_amount: int = 0,
    ) -> PaymentConfirmation:
        """Return the confirmation for *purchase_ref* or raise.

        Raises:
            PaymentNotConfirmed: If no confirmation is on record for this
                user and purpose, or it paid less than *min_amount*.
        """
        confirmation = await self._payments.get(purchase_ref) if purchase_ref else None
        if (
            confirmation is None
            or confirmation.user_id != user_id
            or confirmation.purpose != purpose
            or confirmation.amount < min_amount
        ):
            raise PaymentNotConfirmed(purchase_ref or "<missing>", str(purpose))
        return confirmation
