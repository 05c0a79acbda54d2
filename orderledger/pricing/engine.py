"""
Pricing engine.
Turns line items plus discount, membership and surcharge configuration into
the payable amount. Stateless: every call recomputes from scratch, so
quantity edits never accumulate rounding drift.
"""
from typing import Iterable, Optional

from pydantic import BaseModel

from orderledger.common.config import get_settings
from orderledger.common.logging import get_logger
from orderledger.models.orders import (
    DiscountSpec, LineItem, MembershipBenefit, Order, PricingInputs, round_money
)

logger = get_logger(__name__)


class PricingResult(BaseModel):
    """Output of one pricing run"""
    subtotal_amount: float = 0.0
    discount_amount: float = 0.0  # Manual discount only
    elite_discount_amount: float = 0.0
    final_delivery_charges: float = 0.0
    final_surge_charges: float = 0.0
    gst_amount: float = 0.0
    total_amount: float = 0.0
    gst_overridden: bool = False

    @property
    def total_discount(self) -> float:
        return round_money(self.discount_amount + self.elite_discount_amount)


def compute_subtotal(items: Iterable[LineItem]) -> float:
    return round_money(sum(item.unit_price * item.quantity for item in items))


def price_order(
    items: Iterable[LineItem],
    discount: Optional[DiscountSpec] = None,
    membership: Optional[MembershipBenefit] = None,
    delivery_charges: Optional[float] = None,
    surge_enabled: bool = False,
    surge_charges: Optional[float] = None,
    gst_rate: Optional[float] = None,
    gst_override: Optional[float] = None,
) -> PricingResult:
    """
    Price a basket.

    Manual discount and elite discount stack: both are taken off the subtotal
    independently, capped together at the subtotal. GST applies to the
    discounted subtotal unless gst_override is given, in which case the
    override is used as-is.
    """
    settings = get_settings()
    items = list(items)

    base_delivery = settings.DELIVERY_CHARGES if delivery_charges is None else delivery_charges
    base_surge = settings.SURGE_CHARGES if surge_charges is None else surge_charges
    rate = settings.GST_RATE if gst_rate is None else gst_rate
    base_delivery = max(0.0, round_money(base_delivery))
    base_surge = max(0.0, round_money(base_surge))
    rate = max(0.0, rate)

    if not items:
        # Nothing to price, but a manual GST stays authoritative for when items return
        return PricingResult(gst_overridden=gst_override is not None)

    subtotal = compute_subtotal(items)

    discount_amount = discount.discount_amount(subtotal) if discount else 0.0

    elite_discount = 0.0
    if membership is not None:
        elite_discount = round_money(subtotal * membership.elite_discount_rate)
        elite_discount = min(elite_discount, round_money(subtotal - discount_amount))

    final_delivery = base_delivery
    if membership is not None:
        threshold = membership.free_delivery_threshold
        if threshold is None:
            threshold = settings.FREE_DELIVERY_THRESHOLD
        if subtotal >= threshold:
            final_delivery = 0.0

    if not surge_enabled or (membership is not None and membership.surge_waived):
        final_surge = 0.0
    else:
        final_surge = base_surge

    taxable = max(0.0, subtotal - discount_amount - elite_discount)
    if gst_override is not None:
        gst_amount = max(0.0, round_money(gst_override))
    else:
        gst_amount = round_money(taxable * rate)

    total = round_money(
        subtotal - discount_amount - elite_discount + final_delivery + final_surge + gst_amount
    )

    return PricingResult(
        subtotal_amount=subtotal,
        discount_amount=discount_amount,
        elite_discount_amount=elite_discount,
        final_delivery_charges=final_delivery,
        final_surge_charges=final_surge,
        gst_amount=gst_amount,
        total_amount=max(0.0, total),
        gst_overridden=gst_override is not None,
    )


def price_with_inputs(items: Iterable[LineItem], pricing: PricingInputs,
                      gst_override: Optional[float] = None) -> PricingResult:
    return price_order(
        items,
        discount=pricing.discount,
        membership=pricing.membership,
        delivery_charges=pricing.delivery_charges,
        surge_enabled=pricing.surge_enabled,
        surge_charges=pricing.surge_charges,
        gst_rate=pricing.gst_rate,
        gst_override=gst_override,
    )


def apply_pricing(order: Order, result: PricingResult, gst_override: Optional[float] = None) -> Order:
    """Return a copy of the order carrying the priced amounts (ledger fields untouched)."""
    override = None
    if result.gst_overridden:
        override = order.pricing.gst_override if gst_override is None else max(0.0, round_money(gst_override))
    pricing = order.pricing.model_copy(update={
        "gst_overridden": result.gst_overridden,
        "gst_override": override,
    })
    return order.model_copy(update={
        "pricing": pricing,
        "subtotal_amount": result.subtotal_amount,
        "discount_amount": result.total_discount,
        "elite_discount_amount": result.elite_discount_amount,
        "delivery_charges": result.final_delivery_charges,
        "surge_charges": result.final_surge_charges,
        "gst_amount": result.gst_amount,
        "total_amount": result.total_amount,
    })


def reprice_order(order: Order, gst_override: Optional[float] = None) -> Order:
    """
    Full recomputation of an order's price from its items and pricing inputs.

    An order whose GST was overridden keeps the manual value, even through
    an edit that empties its items; passing a new gst_override replaces it.
    """
    if gst_override is None and order.pricing.gst_overridden:
        gst_override = order.pricing.gst_override
        if gst_override is None:
            # Server copies carry only the flag; the stored GST is the override
            gst_override = order.gst_amount

    result = price_with_inputs(order.items, order.pricing, gst_override=gst_override)
    logger.debug(
        "Repriced order %s: subtotal=%s total=%s", order.id, result.subtotal_amount, result.total_amount
    )
    return apply_pricing(order, result, gst_override=gst_override)


def membership_savings(result: PricingResult, membership: Optional[MembershipBenefit],
                       delivery_charges: Optional[float] = None,
                       surge_enabled: bool = False,
                       surge_charges: Optional[float] = None) -> float:
    """Elite savings as shown on the order summary: discount plus waived delivery and surge."""
    if membership is None:
        return 0.0
    settings = get_settings()
    base_delivery = settings.DELIVERY_CHARGES if delivery_charges is None else delivery_charges
    base_surge = settings.SURGE_CHARGES if surge_charges is None else surge_charges

    savings = result.elite_discount_amount + (base_delivery - result.final_delivery_charges)
    if surge_enabled and membership.surge_waived:
        savings += base_surge
    return round_money(max(0.0, savings))


def free_delivery_shortfall(subtotal: float, threshold: Optional[float] = None) -> float:
    """How much more must be added to reach the free delivery threshold."""
    if threshold is None:
        threshold = get_settings().FREE_DELIVERY_THRESHOLD
    return round_money(max(0.0, threshold - subtotal))
