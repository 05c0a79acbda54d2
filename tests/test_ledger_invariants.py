"""
Test Ledger Invariants
Derived fields, payment status rules, strict vs. clamping enforcement
"""
import pytest

from orderledger.common.config import get_settings
from orderledger.common.errors import InvariantViolation
from orderledger.ledger.derived import derive_payment_status, enforce_invariants, find_violations, rederive
from orderledger.models.orders import Order, PaymentStatus


@pytest.mark.parametrize("total,paid,refunded,expected", [
    (1000, 0, 0, PaymentStatus.PENDING),
    (1000, 400, 0, PaymentStatus.PARTIAL),
    (1000, 1000, 0, PaymentStatus.PAID),
    (1000, 1000, 1000, PaymentStatus.REFUNDED),
    (1000, 1000, 200, PaymentStatus.PAID),
    (0, 0, 0, PaymentStatus.PAID),
])
def test_derive_payment_status(total, paid, refunded, expected):
    assert derive_payment_status(total, paid, refunded) == expected


def test_rederive_fills_pending_and_net():
    order = rederive(Order(id="ORD-1", total_amount=500.0, paid_amount=100.0, refunded_amount=25.0))

    assert order.pending_amount == 400.0
    assert order.net_amount == 475.0
    assert order.payment_status == PaymentStatus.PARTIAL
    assert find_violations(order) == []


def broken_order():
    # Refunded more than was ever paid
    return Order(id="ORD-BROKEN", total_amount=100.0, paid_amount=150.0,
                 pending_amount=0.0, refunded_amount=200.0, net_amount=0.0)


def test_violation_fails_loudly_in_development():
    assert get_settings().STRICT_INVARIANTS is True

    with pytest.raises(InvariantViolation):
        enforce_invariants(broken_order())


def test_violation_is_clamped_in_production(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    get_settings.cache_clear()
    assert get_settings().STRICT_INVARIANTS is False

    order = enforce_invariants(broken_order())

    assert order.refunded_amount == 150.0
    assert order.pending_amount == 0.0
    assert order.net_amount == 0.0
    assert order.payment_status == PaymentStatus.REFUNDED


def test_strict_flag_can_be_forced(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("STRICT_INVARIANTS", "true")
    get_settings.cache_clear()

    with pytest.raises(AssertionError):
        enforce_invariants(broken_order())
