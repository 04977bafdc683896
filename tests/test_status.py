"""
Status state machine: the transition table is the only place statuses change.
"""

from decimal import Decimal

import pytest

from app.errors import InvalidTransitionError, NotEditableError, ProtectedStateError
from app.services.status import (
    TRANSITIONS,
    InvoiceEvent,
    InvoiceStatus,
    can_transition,
    payment_event,
    transition,
)

S = InvoiceStatus
E = InvoiceEvent


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current, event, expected",
        [
            (S.DRAFT, E.SEND, S.SENT),
            (S.SENT, E.VIEW, S.VIEWED),
            (S.VIEWED, E.PARTIAL_PAYMENT, S.PARTIAL),
            (S.PARTIAL, E.FULL_PAYMENT, S.PAID),
            (S.SENT, E.MARK_OVERDUE, S.OVERDUE),
            (S.PARTIAL, E.MARK_OVERDUE, S.OVERDUE),
            (S.OVERDUE, E.PARTIAL_PAYMENT, S.OVERDUE),
            (S.OVERDUE, E.FULL_PAYMENT, S.PAID),
            (S.OVERDUE, E.VOID, S.CANCELLED),
            (S.DRAFT, E.FULL_PAYMENT, S.PAID),
        ],
    )
    def test_legal_transitions(self, current, event, expected):
        assert transition(current, event) is expected

    def test_accepts_plain_strings(self):
        assert transition("sent", "view") is S.VIEWED

    @pytest.mark.parametrize(
        "current, event",
        [
            (S.DRAFT, E.VIEW),
            (S.DRAFT, E.VOID),
            (S.SENT, E.SEND),
            (S.OVERDUE, E.MARK_OVERDUE),
            (S.CANCELLED, E.VIEW),
            (S.CANCELLED, E.FULL_PAYMENT),
            (S.PAID, E.MARK_OVERDUE),
        ],
    )
    def test_illegal_transitions_raise(self, current, event):
        with pytest.raises(InvalidTransitionError):
            transition(current, event)

    def test_invalid_transition_is_not_editable(self):
        with pytest.raises(NotEditableError):
            transition(S.CANCELLED, E.SEND)

    def test_voiding_paid_invoice_is_protected(self):
        with pytest.raises(ProtectedStateError):
            transition(S.PAID, E.VOID)

    def test_cancelled_is_terminal(self):
        assert not any(current is S.CANCELLED for current, _ in TRANSITIONS)

    def test_can_transition(self):
        assert can_transition("sent", "mark_overdue")
        assert not can_transition("draft", "mark_overdue")
        assert not can_transition("paid", "void")


class TestPaymentEvent:
    def test_partial(self):
        assert payment_event(Decimal("400.00"), Decimal("1000.00")) is E.PARTIAL_PAYMENT

    def test_full(self):
        assert payment_event(Decimal("1000.00"), Decimal("1000.00")) is E.FULL_PAYMENT
