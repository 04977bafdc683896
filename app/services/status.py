# app/services/status.py
"""
Invoice status state machine.

All legal status changes live in ``TRANSITIONS``; services never assign a
status string directly, they apply an ``InvoiceEvent`` through
``transition()``.

    draft -> sent -> viewed -> partial / paid
                \\-> overdue -> paid
    sent / viewed / partial / overdue -> cancelled (void)

Paid invoices are protected: voiding one raises ``ProtectedStateError``.
"""

from enum import Enum
from typing import Dict, Tuple

from app.errors import InvalidTransitionError, ProtectedStateError


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class InvoiceEvent(str, Enum):
    SEND = "send"
    VIEW = "view"
    PARTIAL_PAYMENT = "partial_payment"
    FULL_PAYMENT = "full_payment"
    MARK_OVERDUE = "mark_overdue"
    VOID = "void"


S = InvoiceStatus
E = InvoiceEvent

TRANSITIONS: Dict[Tuple[InvoiceStatus, InvoiceEvent], InvoiceStatus] = {
    (S.DRAFT, E.SEND): S.SENT,
    (S.DRAFT, E.PARTIAL_PAYMENT): S.PARTIAL,
    (S.DRAFT, E.FULL_PAYMENT): S.PAID,

    (S.SENT, E.VIEW): S.VIEWED,
    (S.SENT, E.PARTIAL_PAYMENT): S.PARTIAL,
    (S.SENT, E.FULL_PAYMENT): S.PAID,
    (S.SENT, E.MARK_OVERDUE): S.OVERDUE,
    (S.SENT, E.VOID): S.CANCELLED,

    (S.VIEWED, E.VIEW): S.VIEWED,
    (S.VIEWED, E.PARTIAL_PAYMENT): S.PARTIAL,
    (S.VIEWED, E.FULL_PAYMENT): S.PAID,
    (S.VIEWED, E.MARK_OVERDUE): S.OVERDUE,
    (S.VIEWED, E.VOID): S.CANCELLED,

    (S.PARTIAL, E.VIEW): S.PARTIAL,
    (S.PARTIAL, E.PARTIAL_PAYMENT): S.PARTIAL,
    (S.PARTIAL, E.FULL_PAYMENT): S.PAID,
    (S.PARTIAL, E.MARK_OVERDUE): S.OVERDUE,
    (S.PARTIAL, E.VOID): S.CANCELLED,

    # an overdue invoice stays overdue until it is settled in full
    (S.OVERDUE, E.VIEW): S.OVERDUE,
    (S.OVERDUE, E.PARTIAL_PAYMENT): S.OVERDUE,
    (S.OVERDUE, E.FULL_PAYMENT): S.PAID,
    (S.OVERDUE, E.VOID): S.CANCELLED,

    (S.PAID, E.VIEW): S.PAID,
}

# Statuses that still expect money and can receive payments or credits.
OPEN_STATUSES = frozenset({S.DRAFT, S.SENT, S.VIEWED, S.PARTIAL, S.OVERDUE})

# Statuses the overdue sweep may move to ``overdue``.
OVERDUE_CANDIDATES = frozenset({S.SENT, S.VIEWED, S.PARTIAL})

# Statuses that are voided rather than deleted.
VOIDABLE_STATUSES = frozenset({S.SENT, S.VIEWED, S.PARTIAL, S.OVERDUE})

# Statuses that are removed permanently on delete.
DELETABLE_STATUSES = frozenset({S.DRAFT, S.CANCELLED})

# Statuses whose pending reminders must not go out.
REMINDER_STOP_STATUSES = frozenset({S.PAID, S.CANCELLED})


def transition(current, event) -> InvoiceStatus:
    """Return the status reached by applying ``event`` to ``current``."""
    status = InvoiceStatus(current)
    event = InvoiceEvent(event)
    if status is S.PAID and event is E.VOID:
        raise ProtectedStateError("Paid invoices cannot be deleted or voided")
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTransitionError(status.value, event.value) from None


def can_transition(current, event) -> bool:
    return (InvoiceStatus(current), InvoiceEvent(event)) in TRANSITIONS


def payment_event(new_amount_paid, amount_total) -> InvoiceEvent:
    """Which payment event a new paid amount represents."""
    if new_amount_paid >= amount_total:
        return E.FULL_PAYMENT
    return E.PARTIAL_PAYMENT
