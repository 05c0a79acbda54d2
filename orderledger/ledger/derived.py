"""
Derived ledger fields and money-conservation invariants.

paid_amount and refunded_amount are the two monotonically increasing ledgers
("money ever received" and "money ever returned"); every other ledger field
on an Order is derived from them and total_amount here.
"""
from typing import List

from orderledger.common.config import get_settings
from orderledger.common.errors import InvariantViolation
from orderledger.common.logging import get_logger
from orderledger.models.orders import Order, PaymentStatus, round_money

logger = get_logger(__name__)


def derive_payment_status(total: float, paid: float, refunded: float) -> PaymentStatus:
    pending = max(0.0, round_money(total - paid))
    if refunded > 0 and refunded >= total:
        return PaymentStatus.REFUNDED
    if pending <= 0:
        return PaymentStatus.PAID
    if paid > 0:
        return PaymentStatus.PARTIAL
    return PaymentStatus.PENDING


def rederive(order: Order) -> Order:
    """Return a copy with pending, net and payment_status recomputed from the ledgers."""
    total = round_money(order.total_amount)
    paid = round_money(order.paid_amount)
    refunded = round_money(order.refunded_amount)
    updated = order.model_copy(update={
        "paid_amount": paid,
        "refunded_amount": refunded,
        "pending_amount": max(0.0, round_money(total - paid)),
        "net_amount": max(0.0, round_money(total - refunded)),
        "payment_status": derive_payment_status(total, paid, refunded),
    })
    return enforce_invariants(updated)


def find_violations(order: Order) -> List[str]:
    """List every broken invariant on an order (empty when consistent)."""
    eps = get_settings().MONEY_EPSILON
    problems = []

    components = {
        "subtotal_amount": order.subtotal_amount,
        "discount_amount": order.discount_amount,
        "delivery_charges": order.delivery_charges,
        "surge_charges": order.surge_charges,
        "gst_amount": order.gst_amount,
    }
    for name, value in components.items():
        if value < 0:
            problems.append(f"{name} is negative ({value})")

    expected_total = (order.subtotal_amount - order.discount_amount + order.delivery_charges
                      + order.surge_charges + order.gst_amount)
    if order.items and abs(expected_total - order.total_amount) > eps:
        problems.append(f"total_amount {order.total_amount} != components {round_money(expected_total)}")

    if order.pending_amount < 0:
        problems.append(f"pending_amount is negative ({order.pending_amount})")
    if order.paid_amount <= order.total_amount + eps:
        if abs(order.paid_amount + order.pending_amount - order.total_amount) > eps:
            problems.append("paid_amount + pending_amount != total_amount")
    if order.refunded_amount < 0:
        problems.append(f"refunded_amount is negative ({order.refunded_amount})")
    if order.refunded_amount > order.paid_amount + eps:
        problems.append(
            f"refunded_amount {order.refunded_amount} exceeds paid_amount {order.paid_amount}"
        )

    recorded_paid = round_money(sum(r.amount for r in order.payment_records))
    if order.payment_records and abs(recorded_paid - order.paid_amount) > eps:
        problems.append(f"payment records sum {recorded_paid} != paid_amount {order.paid_amount}")
    recorded_refunds = round_money(sum(r.amount for r in order.refund_records))
    if order.refund_records and abs(recorded_refunds - order.refunded_amount) > eps:
        problems.append(f"refund records sum {recorded_refunds} != refunded_amount {order.refunded_amount}")

    return problems


def enforce_invariants(order: Order) -> Order:
    """
    Raise InvariantViolation in strict mode; otherwise log and clamp the
    derived fields back into range.
    """
    problems = find_violations(order)
    if not problems:
        return order

    message = f"Order {order.id} violates ledger invariants: " + "; ".join(problems)
    if get_settings().STRICT_INVARIANTS:
        raise InvariantViolation(message)

    logger.error(message)
    paid = max(0.0, order.paid_amount)
    refunded = min(max(0.0, order.refunded_amount), paid)
    total = max(0.0, order.total_amount)
    return order.model_copy(update={
        "subtotal_amount": max(0.0, order.subtotal_amount),
        "discount_amount": max(0.0, order.discount_amount),
        "delivery_charges": max(0.0, order.delivery_charges),
        "surge_charges": max(0.0, order.surge_charges),
        "gst_amount": max(0.0, order.gst_amount),
        "total_amount": total,
        "paid_amount": paid,
        "refunded_amount": refunded,
        "pending_amount": max(0.0, round_money(total - paid)),
        "net_amount": max(0.0, round_money(total - refunded)),
        "payment_status": derive_payment_status(total, paid, refunded),
    })
