"""
Push-channel event models.
These are the raw payloads the server emits on the order channel; the
pipeline validates them here before anything touches canonical state.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from orderledger.models.orders import (
    LedgerModel, LineItem, OrderSource, OrderStatus, PricingInputs, as_utc
)


class EventType(str, Enum):
    """Channel topics"""
    NEW_ORDER = "new_order"
    ORDER_UPDATE = "order_update"
    STOCK_UPDATE = "stock_update"


class NewOrderSummary(LedgerModel):
    """Order summary carried by new_order"""
    id: str
    customer_name: str
    total_amount: float = Field(ge=0)
    source: OrderSource = OrderSource.APP
    client_reference: Optional[str] = None  # Provisional id echoed back for orders created here


class NewOrderEvent(LedgerModel):
    """new_order -> {order: {...}}"""
    order: NewOrderSummary


class OrderUpdateEvent(LedgerModel):
    """order_update -> {orderId, status, updatedAt}"""
    order_id: str
    status: OrderStatus
    updated_at: datetime

    @field_validator("updated_at")
    @classmethod
    def normalise_updated_at(cls, value: datetime) -> datetime:
        return as_utc(value)


class StockUpdateEvent(LedgerModel):
    """stock_update -> {productId, variantId, newStock}"""
    product_id: str
    variant_id: str
    new_stock: int


class OrderPatch(LedgerModel):
    """
    Local edit to an order.
    Any pricing-relevant field triggers full repricing; status goes through
    the same staleness rules as remote status changes.
    """
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: Optional[List[LineItem]] = None
    pricing: Optional[PricingInputs] = None
    gst_amount: Optional[float] = None  # Manual GST override
    status: Optional[OrderStatus] = None
    updated_at: Optional[datetime] = None

    @field_validator("updated_at")
    @classmethod
    def normalise_updated_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    def touches_pricing(self) -> bool:
        return self.items is not None or self.pricing is not None or self.gst_amount is not None


class DLQEntry(BaseModel):
    """Dead Letter Queue entry for channel payloads that failed validation or routing"""
    dlq_id: str
    event_type: str
    order_id: Optional[str] = None
    raw_event: str  # JSON string
    error_type: str
    error_message: str
    failed_at: datetime
    retry_count: int = 0
    meta: Optional[Dict[str, Any]] = None
