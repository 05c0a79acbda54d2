"""
Order domain models held by the ledger and the synchronizer.
Attributes are snake_case in Python; the REST wire format is camelCase,
so every model accepts and emits the camelCase aliases.
"""
import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ELITE_DISCOUNT_RATE = 0.05


def round_money(value) -> float:
    """Round to paise (2 dp, half-up). None and NaN become 0."""
    if value is None:
        return 0.0
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LedgerModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OrderStatus(str, Enum):
    """Fulfilment lifecycle"""
    RECEIVED = "received"
    PROCESSING = "processing"
    PACKED = "packed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Forward-only lifecycle; cancelled sits outside the ranking and is terminal
STATUS_RANK = {
    OrderStatus.RECEIVED: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.PACKED: 2,
    OrderStatus.OUT_FOR_DELIVERY: 3,
    OrderStatus.DELIVERED: 4,
}

TERMINAL_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    REFUNDED = "refunded"


class OrderSource(str, Enum):
    APP = "app"
    WEBSITE = "website"
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    MANUAL = "manual"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    AMOUNT = "amount"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    ONLINE = "online"


class PaymentMode(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    ADVANCE = "advance"  # Collected before fulfilment, e.g. pre-orders


class PaymentRecordStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING_VERIFICATION = "pending_verification"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    ITEM_RETURN = "item_return"
    CANCELLATION = "cancellation"
    QUALITY_ISSUE = "quality_issue"


class RefundMethod(str, Enum):
    ORIGINAL_PAYMENT = "original_payment"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    WALLET_CREDIT = "wallet_credit"
    STORE_CREDIT = "store_credit"


class RefundRecordStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSED = "processed"
    COMPLETED = "completed"
    REJECTED = "rejected"


class LineItem(LedgerModel):
    """One product line on an order"""
    product_id: str
    name: str
    variant: str = ""  # e.g. "500g", "Curry cut"
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)

    @property
    def line_total(self) -> float:
        return round_money(self.unit_price * self.quantity)


class DiscountSpec(LedgerModel):
    """
    Manual discount entered by an operator.
    Only the inputs are stored; the amount is always derived from a subtotal.
    """
    type: DiscountType = DiscountType.PERCENTAGE
    value: float = 0.0

    def _clean_value(self) -> float:
        if self.value is None or math.isnan(self.value) or self.value < 0:
            return 0.0
        return float(self.value)

    def discount_amount(self, subtotal: float) -> float:
        subtotal = max(0.0, round_money(subtotal))
        value = self._clean_value()
        if self.type == DiscountType.PERCENTAGE:
            amount = subtotal * min(value, 100.0) / 100
        else:
            amount = value
        return round_money(min(max(amount, 0.0), subtotal))

    def effective_percentage(self, subtotal: float) -> float:
        if subtotal <= 0:
            return 0.0
        return round(self.discount_amount(subtotal) / subtotal * 100, 2)


class MembershipBenefit(LedgerModel):
    """Elite membership benefits applied at pricing time"""
    elite_discount_rate: float = ELITE_DISCOUNT_RATE
    free_delivery_threshold: Optional[float] = None  # None -> configured default
    surge_waived: bool = True


class PricingInputs(LedgerModel):
    """
    Everything the pricing engine needs besides line items.
    Kept on the order so an edit can re-run full pricing.
    """
    discount: Optional[DiscountSpec] = None
    membership: Optional[MembershipBenefit] = None
    delivery_charges: Optional[float] = None  # Base charge; None -> configured default
    surge_enabled: bool = False
    surge_charges: Optional[float] = None  # Base surge; None -> configured default
    gst_rate: Optional[float] = None  # None -> configured default
    gst_overridden: bool = False  # Manual GST edit is authoritative once set
    gst_override: Optional[float] = None  # The manual GST value itself


class PaymentRecord(LedgerModel):
    """Append-only payment entry. Never mutated after confirmation."""
    id: str
    order_id: str
    amount: float
    method: PaymentMethod
    mode: PaymentMode
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    received_by: str
    received_at: datetime
    status: PaymentRecordStatus = PaymentRecordStatus.CONFIRMED
    idempotency_key: Optional[str] = None  # Client token per payment attempt


class RefundedItem(LedgerModel):
    """Per-item breakdown inside a refund"""
    product_id: str
    product_name: str
    variant: str = ""
    quantity: int = Field(ge=1)
    refund_amount: float = Field(ge=0)


class RefundRecord(LedgerModel):
    """Append-only refund entry"""
    id: str
    order_id: str
    amount: float
    refund_type: RefundType
    refund_method: RefundMethod
    reason: str
    items_refunded: Optional[List[RefundedItem]] = None
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    processed_by: str
    processed_at: datetime
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    status: RefundRecordStatus = RefundRecordStatus.COMPLETED
    idempotency_key: Optional[str] = None


class Order(LedgerModel):
    """
    Canonical order shape shared by the ledger, the synchronizer and the REST API.

    Derived amounts (subtotal through payment_status) are written only by the
    pricing engine and the ledgers; see ledger.derived for the invariants.
    """
    id: str
    customer_name: str = ""
    customer_phone: Optional[str] = None
    source: OrderSource = OrderSource.MANUAL
    items: List[LineItem] = Field(default_factory=list)
    pricing: PricingInputs = Field(default_factory=PricingInputs)

    subtotal_amount: float = 0.0
    discount_amount: float = 0.0  # Manual discount + elite discount
    elite_discount_amount: float = 0.0  # Informational split of discount_amount
    delivery_charges: float = 0.0
    surge_charges: float = 0.0
    gst_amount: float = 0.0
    total_amount: float = 0.0

    paid_amount: float = 0.0
    pending_amount: float = 0.0
    refunded_amount: float = 0.0
    net_amount: float = 0.0
    payment_status: PaymentStatus = PaymentStatus.PENDING

    status: OrderStatus = OrderStatus.RECEIVED
    payment_records: List[PaymentRecord] = Field(default_factory=list)
    refund_records: List[RefundRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
