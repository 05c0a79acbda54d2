"""
Order Console UI component
Browse orders, their pricing breakdown and ledgers, and record payments/refunds
"""
import streamlit as st
import pandas as pd

from orderledger.common.errors import ValidationError
from orderledger.ledger.payments import PaymentRequest, quick_amounts
from orderledger.ledger.refunds import RefundRequest, max_refundable
from orderledger.models.orders import (
    PaymentMethod, PaymentMode, RefundMethod, RefundType
)
from orderledger.policy.access import ORDERS_EDIT, PAYMENTS_RECORD, REFUNDS_RECORD, guard_route
from orderledger.pricing.engine import PricingResult, free_delivery_shortfall, membership_savings


def render_order_console(service, user):
    """Render the Order Console page"""
    sync = service.sync

    st.markdown("## 🔍 Order Console")
    st.markdown("Canonical order list, pricing breakdowns and money ledgers")

    render_ledger_totals(sync)

    rows = sync.snapshot()
    if not rows:
        st.info("📭 No orders yet. Go to Event Playground to emit some events!")
        return

    st.dataframe(pd.DataFrame(rows), use_container_width=True)

    order_id = st.selectbox("Select Order", [row["id"] for row in rows])
    if not order_id:
        return

    order = sync.get(order_id)
    entry = sync.get_entry(order_id)
    if getattr(entry, "offline", False):
        st.warning("📴 Local-only order: the server was unreachable when it was created")
    elif sync.is_provisional(order_id):
        st.warning("⏳ Provisional order: not yet confirmed by the server and excluded from totals")

    render_cancel(service, user, order)

    tab1, tab2, tab3 = st.tabs([
        "💰 Pricing Breakdown",
        "💳 Payments",
        "↩️ Refunds",
    ])

    with tab1:
        render_pricing_breakdown(order)

    with tab2:
        render_payments(service, user, order)

    with tab3:
        render_refunds(service, user, order)


def render_ledger_totals(sync):
    totals = sync.ledger_totals()
    col1, col2, col3, col4, col5 = st.columns(5)
    with col1:
        st.metric("Confirmed Orders", totals.order_count)
    with col2:
        st.metric("Total", format_currency(totals.total_amount))
    with col3:
        st.metric("Paid", format_currency(totals.paid_amount))
    with col4:
        st.metric("Pending", format_currency(totals.pending_amount))
    with col5:
        st.metric("Refunded", format_currency(totals.refunded_amount))


def render_pricing_breakdown(order):
    """Show how the total was built up"""

    st.markdown("### Pricing Breakdown")

    if order.items:
        items = pd.DataFrame([
            {
                "Product": item.name,
                "Variant": item.variant or "-",
                "Qty": item.quantity,
                "Unit Price": format_currency(item.unit_price),
                "Line Total": format_currency(item.line_total),
            }
            for item in order.items
        ])
        st.dataframe(items, use_container_width=True)
    else:
        st.caption("Summary order: line items not loaded")

    manual_discount = order.discount_amount - order.elite_discount_amount
    lines = [
        ("Subtotal", order.subtotal_amount),
        ("Discount", -manual_discount),
        ("Elite discount", -order.elite_discount_amount),
        ("Delivery", order.delivery_charges),
        ("Surge", order.surge_charges),
        ("GST (manual)" if order.pricing.gst_overridden else "GST", order.gst_amount),
    ]
    for label, amount in lines:
        st.write(f"• {label}: {format_currency(amount)}")
    st.markdown(f"### Total: **{format_currency(order.total_amount)}**")

    if order.pricing.membership is not None and order.items:
        savings = membership_savings(
            PricingResult(
                elite_discount_amount=order.elite_discount_amount,
                final_delivery_charges=order.delivery_charges,
                final_surge_charges=order.surge_charges,
            ),
            order.pricing.membership,
            delivery_charges=order.pricing.delivery_charges,
            surge_enabled=order.pricing.surge_enabled,
            surge_charges=order.pricing.surge_charges,
        )
        if savings > 0:
            st.success(f"👑 Elite savings on this order: {format_currency(savings)}")
        shortfall = free_delivery_shortfall(order.subtotal_amount, order.pricing.membership.free_delivery_threshold)
        if shortfall > 0:
            st.info(f"💡 Add {format_currency(shortfall)} more for free delivery")


def render_payments(service, user, order):
    """Payment history plus the record-payment form"""

    st.markdown("### Payment Ledger")

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Paid", format_currency(order.paid_amount))
    with col2:
        st.metric("Pending", format_currency(order.pending_amount))
    with col3:
        st.metric("Status", order.payment_status.value)

    if order.payment_records:
        st.dataframe(pd.DataFrame([
            {
                "Record": r.id,
                "Amount": format_currency(r.amount),
                "Method": r.method.value,
                "Mode": r.mode.value,
                "Received By": r.received_by,
                "Received At": r.received_at.strftime("%Y-%m-%d %H:%M:%S"),
            }
            for r in order.payment_records
        ]), use_container_width=True)

    if order.pending_amount <= 0:
        st.success("✅ Nothing pending on this order")
        return

    if not allowed(user, PAYMENTS_RECORD):
        return

    shortcuts = quick_amounts(order)
    with st.form(f"payment_{order.id}"):
        amount = st.number_input("Amount", min_value=0.0, value=shortcuts["full"], step=1.0)
        method = st.selectbox("Method", [m.value for m in PaymentMethod])
        mode = st.selectbox("Mode", [m.value for m in PaymentMode], index=1)
        transaction_id = st.text_input("Transaction ID")
        notes = st.text_input("Notes")
        submitted = st.form_submit_button("Record Payment")

    if submitted:
        request = PaymentRequest(
            amount=amount,
            method=PaymentMethod(method),
            mode=PaymentMode(mode),
            transaction_id=transaction_id or None,
            notes=notes or None,
            received_by=user.name,
        )
        try:
            service.record_payment(order.id, request)
            st.success(f"✅ Recorded {format_currency(amount)}")
            st.rerun()
        except ValidationError as e:
            st.error(f"❌ {e.message}")


def render_refunds(service, user, order):
    """Refund history plus the record-refund form"""

    st.markdown("### Refund Ledger")

    refundable = max_refundable(order)
    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Refunded", format_currency(order.refunded_amount))
    with col2:
        st.metric("Refundable", format_currency(refundable))
    with col3:
        st.metric("Net", format_currency(order.net_amount))

    if order.refund_records:
        st.dataframe(pd.DataFrame([
            {
                "Record": r.id,
                "Amount": format_currency(r.amount),
                "Type": r.refund_type.value,
                "Method": r.refund_method.value,
                "Reason": r.reason,
                "Processed At": r.processed_at.strftime("%Y-%m-%d %H:%M:%S"),
            }
            for r in order.refund_records
        ]), use_container_width=True)

    if refundable <= 0:
        st.info("Nothing left to refund on this order")
        return

    if not allowed(user, REFUNDS_RECORD):
        return

    with st.form(f"refund_{order.id}"):
        refund_type = st.selectbox(
            "Refund Type", [t.value for t in RefundType if t != RefundType.ITEM_RETURN]
        )
        amount = st.number_input("Amount", min_value=0.0, max_value=refundable, value=refundable, step=1.0)
        method = st.selectbox("Refund Method", [m.value for m in RefundMethod])
        reason = st.text_area("Reason")
        submitted = st.form_submit_button("Record Refund")

    if submitted:
        request = RefundRequest(
            amount=amount,
            refund_type=RefundType(refund_type),
            refund_method=RefundMethod(method),
            reason=reason,
            processed_by=user.name,
        )
        try:
            service.record_refund(order.id, request)
            st.success(f"✅ Refunded {format_currency(amount)}")
            st.rerun()
        except ValidationError as e:
            st.error(f"❌ {e.message}")


def render_cancel(service, user, order):
    if order.is_terminal or not allowed(user, ORDERS_EDIT, quiet=True):
        return
    if st.button("🚫 Cancel Order", key=f"cancel_{order.id}"):
        result = service.cancel_order(order.id)
        if result.success:
            st.success(f"✅ {result.message}")
            st.rerun()
        else:
            st.info(result.message)


# Utility functions

def allowed(user, permission, quiet=False):
    """True when the user holds the permission; otherwise explains where they would be sent"""
    decision = guard_route(user, permission)
    if decision is None:
        return True
    if not quiet:
        st.warning(f"🔒 {decision.reason} (redirect to {decision.path})")
    return False


def format_currency(amount):
    """Rupees with paise"""
    return f"₹{amount:,.2f}"
