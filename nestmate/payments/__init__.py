"""Confirmed-payment records consumed by the boost, plan and disclosure flows."""

from nestmate.payments.ledger import PaymentLedger

__all__ = ["PaymentLedger"]
