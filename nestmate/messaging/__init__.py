"""Chats, messages, contact disclosure and reports."""

from nestmate.messaging.access_control import ContactDetails, MessagingEngine

__all__ = ["ContactDetails", "MessagingEngine"]
