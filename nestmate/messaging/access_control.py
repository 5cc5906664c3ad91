"""Privacy-gated messaging.

Each chat carries an explicit disclosure state::

    anonymous ──request──▶ contact_requested ──confirm (paid)──▶ contact_shared
        │                        │
        └────────block───────────┴──▶ blocked

``contact_shared`` is terminal for disclosure: a chat never goes back to
anonymous and cannot be blocked afterwards.  ``blocked`` refuses new
messages.

Every message copies the chat's ``is_contact_shared`` flag at append time.
Appends are serialised against state changes by claiming the chat row after
inserting the message, and each message's ``created_at`` is strictly after
the previous one, so in ``(created_at, id)`` order the flag never goes from
``True`` back to ``False``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TypeVar

from nestmate.core import events
from nestmate.core.clock import Clock
from nestmate.core.exceptions import (
    ChatBlocked,
    Conflict,
    ContactNotShared,
    DuplicateRecord,
    InvalidChatTransition,
    InvalidMessage,
    InvalidReport,
    NotParticipant,
    PaymentNotConfirmed,
)
from nestmate.core.ids import new_id, pair_key
from nestmate.core.models import (
    Chat,
    ChatState,
    Message,
    PaymentPurpose,
    Report,
    ReportReason,
)
from nestmate.core.settings import Settings
from nestmate.payments.ledger import PaymentLedger
from nestmate.storage.repository import Repositories
from nestmate.storage.retry import retry_on_conflict

__all__ = ["ContactDetails", "MessagingEngine"]

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

#: Smallest step between two messages of the same chat.
_TICK = timedelta(microseconds=1)


@dataclass(frozen=True, slots=True)
class ContactDetails:
    """What a participant sees of the counterpart once contact is shared."""

    user_id: str
    display_name: str
    phone_number: str | None


class MessagingEngine:
    """Chat state machine, message appends and user reports.

    Args:
        repos: Repository bundle.
        ledger: Confirmed disclosure payments.
        clock: Time source; read once per operation attempt.
        settings: Disclosure fee and retry bound.
    """

    def __init__(
        self,
        repos: Repositories,
        ledger: PaymentLedger,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._repos = repos
        self._ledger = ledger
        self._clock = clock
        self._settings = settings

    async def _retry(self, fn: Callable[[], Awaitable[_T]], operation: str) -> _T:
        return await retry_on_conflict(
            fn,
            max_attempts=self._settings.conflict_max_attempts,
            operation=operation,
        )

    async def _participant_chat(self, chat_id: str, user_id: str) -> Chat:
        chat = await self._repos.chats.require(chat_id)
        if not chat.has_participant(user_id):
            raise NotParticipant(chat_id, user_id)
        return chat

    # ------------------------------------------------------------------
    # Chats and messages
    # ------------------------------------------------------------------

    async def open_chat(self, user_a: str, user_b: str) -> Chat:
        """Return the chat between two users, creating it on first contact.

        Safe to call concurrently: the pair key is unique, so racing callers
        all get the same chat.
        """
        try:
            key = pair_key(user_a, user_b)
        except ValueError as exc:
            raise InvalidMessage("You cannot start a chat with yourself") from exc

        existing = await self._repos.chats.by_pair_key(key)
        if existing is not None:
            return existing

        chat = Chat(
            id=new_id(),
            pair_key=key,
            user1=user_a,
            user2=user_b,
            created_at=self._clock.now(),
        )
        try:
            await self._repos.chats.insert(chat)
        except DuplicateRecord:
            winner = await self._repos.chats.by_pair_key(key)
            if winner is None:
                raise
            return winner

        logger.info(
            "Chat %s opened between %s and %s",
            chat.id,
            user_a,
            user_b,
            extra={"event": events.CHAT_CREATED},
        )
        return chat

    async def send_message(
        self,
        chat_id: str | None,
        from_user: str,
        to_user: str,
        content: str | None = None,
        image_url: str | None = None,
    ) -> Message:
        """Append a message, opening the chat first when *chat_id* is ``None``.

        Raises:
            InvalidMessage: If sender and recipient are the same user, or
                the message has neither text nor an image.
            ChatNotFound: If *chat_id* does not exist.
            NotParticipant: If sender or recipient is not in the chat.
            ChatBlocked: If the chat has been blocked.
        """
        if from_user == to_user:
            raise InvalidMessage("Sender and recipient must be different users")
        if not (content and content.strip()) and not (image_url and image_url.strip()):
            raise InvalidMessage("A message needs text or an image")

        return await self._retry(
            lambda: self._send_once(chat_id, from_user, to_user, content, image_url),
            "send_message",
        )

    async def _send_once(
        self,
        chat_id: str | None,
        from_user: str,
        to_user: str,
        content: str | None,
        image_url: str | None,
    ) -> Message:
        now = self._clock.now()
        if chat_id is None:
            chat = await self.open_chat(from_user, to_user)
        else:
            chat = await self._participant_chat(chat_id, from_user)
            if chat.counterpart_of(from_user) != to_user:
                raise NotParticipant(chat.id, to_user)
        if chat.state is ChatState.BLOCKED:
            raise ChatBlocked(chat.id)

        history = await self._repos.messages.by_chat(chat.id)
        created_at = max(now, history[-1].created_at + _TICK) if history else now

        message = Message(
            id=new_id(),
            chat_id=chat.id,
            from_user=from_user,
            to_user=to_user,
            content=content,
            image_url=image_url,
            is_contact_shared=chat.is_contact_shared,
            created_at=created_at,
        )
        # A disclosure or block that landed since the read bumped the version.
        async with self._repos.messages.reserved(message):
            if not await self._repos.chats.compare_and_set(chat, chat):
                raise Conflict("chats", chat.id)

        logger.debug(
            "Message %s appended to chat %s (contact shared: %s)",
            message.id,
            chat.id,
            message.is_contact_shared,
            extra={"event": events.MESSAGE_SENT},
        )
        return message

    async def history(self, chat_id: str, viewer_id: str) -> list[Message]:
        """Return the chat's messages in ``(created_at, id)`` order."""
        chat = await self._participant_chat(chat_id, viewer_id)
        return await self._repos.messages.by_chat(chat.id)

    async def chats_for(self, user_id: str) -> list[Chat]:
        """Return every chat *user_id* takes part in, newest first."""
        chats = await self._repos.chats.for_user(user_id)
        return sorted(chats, key=lambda c: (c.created_at, c.id), reverse=True)

    # ------------------------------------------------------------------
    # Disclosure
    # ------------------------------------------------------------------

    async def request_contact_disclosure(self, chat_id: str, requester_id: str) -> Chat:
        """Record that *requester_id* would like contact details revealed.

        Advisory only.  Once the chat is past ``anonymous`` this is a no-op.

        Raises:
            ChatBlocked: If the chat has been blocked.
        """
        return await self._retry(
            lambda: self._request_once(chat_id, requester_id),
            "request_contact_disclosure",
        )

    async def _request_once(self, chat_id: str, requester_id: str) -> Chat:
        chat = await self._participant_chat(chat_id, requester_id)
        if chat.state is ChatState.BLOCKED:
            raise ChatBlocked(chat_id)
        if chat.state is not ChatState.ANONYMOUS:
            return chat

        requested = await self._repos.chats.replace(
            chat,
            chat.model_copy(
                update={"state": ChatState.CONTACT_REQUESTED, "requested_by": requester_id}
            ),
        )
        logger.info(
            "Contact disclosure requested in chat %s by %s",
            chat_id,
            requester_id,
            extra={"event": events.CONTACT_REQUESTED},
        )
        return requested

    async def confirm_disclosure(self, chat_id: str, paying_user_id: str, purchase_ref: str | None) -> Chat:
        """Unlock contact details after a confirmed disclosure payment.

        Irreversible.  Confirming an already shared chat returns it unchanged.

        Raises:
            NotParticipant: If the payer is not in the chat.
            ChatBlocked: If the chat has been blocked.
            PaymentNotConfirmed: If *purchase_ref* is not a confirmed
                ``disclosure`` payment by the payer, or already unlocked
                another chat.
        """
        return await self._retry(
            lambda: self._confirm_once(chat_id, paying_user_id, purchase_ref),
            "confirm_disclosure",
        )

    async def _confirm_once(self, chat_id: str, paying_user_id: str, purchase_ref: str | None) -> Chat:
        chat = await self._participant_chat(chat_id, paying_user_id)
        if chat.state is ChatState.CONTACT_SHARED:
            return chat
        if chat.state is ChatState.BLOCKED:
            raise ChatBlocked(chat_id)

        await self._ledger.require_confirmed(
            purchase_ref,
            paying_user_id,
            PaymentPurpose.DISCLOSURE,
            min_amount=self._settings.disclosure_fee,
        )
        shared = chat.model_copy(
            update={
                "state": ChatState.CONTACT_SHARED,
                "shared_by": paying_user_id,
                "disclosure_ref": purchase_ref,
            }
        )
        try:
            shared = await self._repos.chats.replace(chat, shared)
        except DuplicateRecord as exc:
            raise PaymentNotConfirmed(purchase_ref or "<missing>", str(PaymentPurpose.DISCLOSURE)) from exc

        logger.info(
            "Contact details shared in chat %s (paid by %s)",
            chat_id,
            paying_user_id,
            extra={"event": events.CONTACT_SHARED},
        )
        return shared

    async def contact_details(self, chat_id: str, viewer_id: str) -> ContactDetails:
        """Return the counterpart's contact details.

        Raises:
            ContactNotShared: Unless the chat is in ``contact_shared``.
        """
        chat = await self._participant_chat(chat_id, viewer_id)
        if not chat.is_contact_shared:
            raise ContactNotShared(chat_id)
        other = await self._repos.profiles.require(chat.counterpart_of(viewer_id))
        return ContactDetails(
            user_id=other.id,
            display_name=other.display_name,
            phone_number=other.phone_number,
        )

    # ------------------------------------------------------------------
    # Moderation
    # ------------------------------------------------------------------

    async def block_chat(self, chat_id: str) -> Chat:
        """Block a chat so no further messages can be sent.

        Idempotent.  Moderation hook: nothing in this engine calls it on
        its own.

        Raises:
            InvalidChatTransition: If contact details were already shared.
        """
        return await self._retry(lambda: self._block_once(chat_id), "block_chat")

    async def _block_once(self, chat_id: str) -> Chat:
        chat = await self._repos.chats.require(chat_id)
        if chat.state is ChatState.BLOCKED:
            return chat
        if chat.state is ChatState.CONTACT_SHARED:
            raise InvalidChatTransition(chat_id, chat.state, ChatState.BLOCKED)

        blocked = await self._repos.chats.replace(
            chat, chat.model_copy(update={"state": ChatState.BLOCKED})
        )
        logger.warning(
            "Chat %s blocked",
            chat_id,
            extra={"event": events.CHAT_BLOCKED},
        )
        return blocked

    async def report(
        self,
        reporter_id: str,
        reason: ReportReason | str,
        target_user: str | None = None,
        target_listing: str | None = None,
        details: str = "",
    ) -> Report:
        """File a ``pending`` report.  Chat state is not touched.

        *reason* is one of :class:`~nestmate.core.models.ReportReason` or
        free text.

        Raises:
            InvalidReport: If the reason is blank, there is no target, or
                the reporter names themselves.
        """
        reason_text = str(reason).strip()
        if not reason_text:
            raise InvalidReport("A report needs a reason")
        if target_user is None and target_listing is None:
            raise InvalidReport("A report needs a user or a listing to report")
        if target_user is not None and target_user == reporter_id:
            raise InvalidReport("You cannot report yourself")

        report = Report(
            id=new_id(),
            reason=reason_text,
            details=details.strip(),
            reported_by=reporter_id,
            target_user=target_user,
            target_listing=target_listing,
            created_at=self._clock.now(),
        )
        await self._repos.reports.insert(report)
        logger.info(
            "Report %s filed by %s (reason=%s, user=%s, listing=%s)",
            report.id,
            reporter_id,
            reason_text,
            target_user,
            target_listing,
            extra={"event": events.REPORT_FILED},
        )
        return report
