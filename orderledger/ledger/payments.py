"""
Payment ledger.
Appends payment records to an order and re-derives paid, pending and
payment status. Functions never mutate their input: they return a new Order
that the synchronizer swaps in as one step.
"""
import math
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel

from orderledger.common.config import get_settings
from orderledger.common.errors import ValidationError
from orderledger.common.logging import get_logger
from orderledger.ingestion.id_generator import IDGenerator
from orderledger.ledger.derived import rederive
from orderledger.models.orders import (
    Order, OrderStatus, PaymentMethod, PaymentMode, PaymentRecord,
    PaymentRecordStatus, round_money, utcnow
)

logger = get_logger(__name__)


class PaymentRequest(BaseModel):
    """What an operator submits when recording a payment"""
    amount: float
    method: PaymentMethod
    mode: PaymentMode = PaymentMode.PARTIAL
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    received_by: str = "System"
    idempotency_key: Optional[str] = None


def find_payment_by_key(order: Order, idempotency_key: Optional[str]) -> Optional[PaymentRecord]:
    if not idempotency_key:
        return None
    for record in order.payment_records:
        if record.idempotency_key == idempotency_key:
            return record
    return None


def validate_payment(order: Order, request: PaymentRequest) -> float:
    """Return the amount to record, or raise ValidationError."""
    eps = get_settings().MONEY_EPSILON

    if order.status == OrderStatus.CANCELLED:
        raise ValidationError(f"Order {order.id} is cancelled; payments cannot be recorded", field="order")

    amount = request.amount
    if amount is None or math.isnan(amount) or amount <= 0:
        raise ValidationError("Amount must be greater than 0", field="amount")

    amount = round_money(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than 0", field="amount")

    pending = order.pending_amount
    if amount > pending + eps:
        raise ValidationError(
            f"Amount {amount} exceeds pending amount {pending}", field="amount"
        )

    # Within rounding tolerance of the balance: settle exactly
    return min(amount, pending)


def record_payment(order: Order, request: PaymentRequest, now: Optional[datetime] = None) -> Order:
    """
    Record a confirmed payment against an order.

    Raises ValidationError when the amount is not positive or exceeds the
    pending balance. A request whose idempotency_key was already recorded on
    this order returns the order unchanged.
    """
    if find_payment_by_key(order, request.idempotency_key):
        logger.info(
            "Payment attempt %s already recorded on order %s", request.idempotency_key, order.id
        )
        return order

    amount = validate_payment(order, request)
    received_at = now or utcnow()

    record = PaymentRecord(
        id=IDGenerator.generate_record_id("payment"),
        order_id=order.id,
        amount=amount,
        method=request.method,
        mode=request.mode,
        transaction_id=request.transaction_id,
        reference_number=request.reference_number,
        notes=request.notes,
        received_by=request.received_by,
        received_at=received_at,
        status=PaymentRecordStatus.CONFIRMED,
        idempotency_key=request.idempotency_key,
    )

    updated = order.model_copy(update={
        "paid_amount": round_money(order.paid_amount + amount),
        "payment_records": [*order.payment_records, record],
        "updated_at": received_at,
    })
    updated = rederive(updated)

    logger.info(
        "Recorded payment %s of %s on order %s (paid=%s pending=%s status=%s)",
        record.id, amount, order.id, updated.paid_amount, updated.pending_amount,
        updated.payment_status.value,
    )
    return updated


def quick_amounts(order: Order) -> Dict[str, float]:
    """Shortcut amounts offered next to the payment form."""
    pending = max(0.0, order.pending_amount)
    return {
        "full": round_money(pending),
        "half": round_money(pending / 2),
    }
