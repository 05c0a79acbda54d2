"""
Refund ledger.
Refunds are capped by what the payment ledger has collected and never
reduce paid_amount: paid and refunded are separate increasing ledgers.
"""
import math
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from orderledger.common.config import get_settings
from orderledger.common.errors import ValidationError
from orderledger.common.logging import get_logger
from orderledger.ingestion.id_generator import IDGenerator
from orderledger.ledger.derived import rederive
from orderledger.models.orders import (
    Order, RefundedItem, RefundMethod, RefundRecord, RefundRecordStatus,
    RefundType, round_money, utcnow
)

logger = get_logger(__name__)


class RefundRequest(BaseModel):
    """What an operator submits when recording a refund"""
    amount: Optional[float] = None  # None on a full refund -> everything refundable
    refund_type: RefundType = RefundType.PARTIAL
    refund_method: RefundMethod = RefundMethod.ORIGINAL_PAYMENT
    reason: str = ""
    items_refunded: Optional[List[RefundedItem]] = None
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    processed_by: str = "System"
    idempotency_key: Optional[str] = None


def max_refundable(order: Order) -> float:
    return max(0.0, round_money(order.paid_amount - order.refunded_amount))


def find_refund_by_key(order: Order, idempotency_key: Optional[str]) -> Optional[RefundRecord]:
    if not idempotency_key:
        return None
    for record in order.refund_records:
        if record.idempotency_key == idempotency_key:
            return record
    return None


def validate_refund(order: Order, request: RefundRequest) -> float:
    """Return the amount to refund, or raise ValidationError."""
    settings = get_settings()
    eps = settings.MONEY_EPSILON
    refundable = max_refundable(order)

    amount = request.amount
    if amount is None and request.refund_type == RefundType.FULL:
        amount = refundable

    if amount is None or math.isnan(amount) or amount <= 0:
        raise ValidationError("Refund amount must be greater than 0", field="amount")

    amount = round_money(amount)
    if amount <= 0:
        raise ValidationError("Refund amount must be greater than 0", field="amount")

    if amount > refundable + eps:
        raise ValidationError(
            f"Refund amount {amount} exceeds refundable amount {refundable}", field="amount"
        )

    reason = (request.reason or "").strip()
    if len(reason) < settings.MIN_REFUND_REASON_LENGTH:
        raise ValidationError(
            f"Reason must be at least {settings.MIN_REFUND_REASON_LENGTH} characters", field="reason"
        )

    items = request.items_refunded or []
    if request.refund_type == RefundType.ITEM_RETURN and not items:
        raise ValidationError("Item return refunds must list the items refunded", field="items_refunded")

    items_total = round_money(sum(item.refund_amount for item in items))
    if items_total > amount + eps:
        raise ValidationError(
            f"Items refunded total {items_total} exceeds refund amount {amount}", field="items_refunded"
        )

    return min(amount, refundable)


def record_refund(order: Order, request: RefundRequest, now: Optional[datetime] = None) -> Order:
    """
    Record a completed refund against an order.

    Raises ValidationError when the amount is not positive, exceeds what was
    paid and not yet refunded, the reason is too short, or the item breakdown
    is missing or larger than the refund. A repeated idempotency_key returns
    the order unchanged.
    """
    if find_refund_by_key(order, request.idempotency_key):
        logger.info(
            "Refund attempt %s already recorded on order %s", request.idempotency_key, order.id
        )
        return order

    amount = validate_refund(order, request)
    processed_at = now or utcnow()

    record = RefundRecord(
        id=IDGenerator.generate_record_id("refund"),
        order_id=order.id,
        amount=amount,
        refund_type=request.refund_type,
        refund_method=request.refund_method,
        reason=request.reason.strip(),
        items_refunded=request.items_refunded or None,
        transaction_id=request.transaction_id,
        reference_number=request.reference_number,
        notes=request.notes,
        processed_by=request.processed_by,
        processed_at=processed_at,
        approved_by=request.processed_by,
        approved_at=processed_at,
        status=RefundRecordStatus.COMPLETED,
        idempotency_key=request.idempotency_key,
    )

    updated = order.model_copy(update={
        "refunded_amount": round_money(order.refunded_amount + amount),
        "refund_records": [*order.refund_records, record],
        "updated_at": processed_at,
    })
    updated = rederive(updated)

    logger.info(
        "Recorded %s refund %s of %s on order %s (refunded=%s net=%s status=%s)",
        request.refund_type.value, record.id, amount, order.id,
        updated.refunded_amount, updated.net_amount, updated.payment_status.value,
    )
    return updated
