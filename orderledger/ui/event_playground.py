"""
Event Playground UI component
Emit push-channel events and run edge-case scenarios against the synchronizer
"""
import uuid
from datetime import datetime, timedelta, timezone

import streamlit as st

from orderledger.models.events import EventType
from orderledger.models.orders import LineItem, MembershipBenefit, Order, OrderStatus, PricingInputs


def render_event_playground(channel, pipeline, service):
    """Render the Event Playground page"""

    st.markdown("## 🎮 Event Playground")
    st.markdown("Emit server events on the order channel and watch how they are merged.")

    col1, col2 = st.columns(2)
    with col1:
        st.metric("Channel", "🟢 connected" if channel.connected else "🔴 disconnected")
    with col2:
        st.metric("Events Emitted", len(channel.history))

    tab1, tab2, tab3, tab4 = st.tabs([
        "🆕 New Order",
        "🚚 Status Update",
        "📦 Stock Update",
        "🧪 Stress Tests",
    ])

    with tab1:
        render_new_order(channel, pipeline, service)

    with tab2:
        render_status_update(channel, pipeline)

    with tab3:
        render_stock_update(channel, pipeline)

    with tab4:
        render_stress_tests(channel, pipeline)


def render_new_order(channel, pipeline, service):
    st.markdown("### new_order")

    order_id = st.text_input("Order ID", value=f"ORD-{uuid.uuid4().hex[:6].upper()}")
    customer = st.text_input("Customer", value="Walk-in customer")
    total = st.number_input("Total Amount", min_value=0.0, value=499.0, step=1.0)

    if st.button("Emit new_order"):
        emit(channel, pipeline, EventType.NEW_ORDER.value, {
            "order": {"id": order_id, "customerName": customer, "totalAmount": total, "source": "app"}
        })

    st.markdown("### Local create (optimistic)")
    st.caption("Inserts a provisional order, then POSTs it; an unreachable server leaves it local-only")
    if st.button("Create Elite Order"):
        result = service.create_order(sample_elite_order())
        show_result(result)


def render_status_update(channel, pipeline):
    st.markdown("### order_update")

    order_ids = [order.id for order in pipeline.synchronizer.orders()]
    if not order_ids:
        st.info("📭 No orders yet")
        return

    order_id = st.selectbox("Order", order_ids, key="status_order")
    status = st.selectbox("Status", [s.value for s in OrderStatus])

    if st.button("Emit order_update"):
        emit(channel, pipeline, EventType.ORDER_UPDATE.value, {
            "orderId": order_id,
            "status": status,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        })


def render_stock_update(channel, pipeline):
    st.markdown("### stock_update")

    product_id = st.text_input("Product ID", value="chicken-curry-cut")
    variant_id = st.text_input("Variant ID", value="500g")
    new_stock = st.number_input("New Stock", min_value=0, value=4, step=1)

    if st.button("Emit stock_update"):
        emit(channel, pipeline, EventType.STOCK_UPDATE.value, {
            "productId": product_id, "variantId": variant_id, "newStock": int(new_stock),
        })

    low = pipeline.synchronizer.low_stock_items()
    if low:
        st.warning(f"⚠️ {len(low)} low stock variants")
        st.json(low)


def render_stress_tests(channel, pipeline):
    """Replay, duplicates, stale updates and bad payloads"""

    scenario = st.selectbox(
        "Select Test Scenario",
        [
            "Duplicate new_order (Idempotency)",
            "Out-of-Order Status Updates",
            "Reconnect With Replay",
            "Invalid Event Schema",
        ]
    )

    if scenario == "Duplicate new_order (Idempotency)":
        st.markdown("The same new_order is delivered twice; the list must hold one entry.")
        if st.button("Run Duplicate Test"):
            payload = {"order": {"id": f"ORD-DUP-{uuid.uuid4().hex[:4]}",
                                 "customerName": "Duplicate", "totalAmount": 250.0}}
            emit(channel, pipeline, EventType.NEW_ORDER.value, payload)
            emit(channel, pipeline, EventType.NEW_ORDER.value, payload)

    elif scenario == "Out-of-Order Status Updates":
        st.markdown("delivered arrives before an older processing update; processing must be dropped.")
        if st.button("Run Out-of-Order Test"):
            order_id = f"ORD-OOO-{uuid.uuid4().hex[:4]}"
            now = datetime.now(timezone.utc)
            emit(channel, pipeline, EventType.NEW_ORDER.value, {
                "order": {"id": order_id, "customerName": "Out of order", "totalAmount": 300.0}
            })
            emit(channel, pipeline, EventType.ORDER_UPDATE.value, {
                "orderId": order_id, "status": "delivered", "updatedAt": now.isoformat(),
            })
            emit(channel, pipeline, EventType.ORDER_UPDATE.value, {
                "orderId": order_id, "status": "processing",
                "updatedAt": (now - timedelta(minutes=5)).isoformat(),
            })

    elif scenario == "Reconnect With Replay":
        st.markdown("Drop the connection and redeliver every event seen so far.")
        if st.button("Reconnect"):
            replayed = len(channel.history)
            channel.reconnect(replay=True)
            if replayed:
                for result in list(pipeline.results)[-replayed:]:
                    show_result(result)

    elif scenario == "Invalid Event Schema":
        st.markdown("A new_order without an order body goes to the dead letter queue.")
        if st.button("Emit Invalid Event"):
            emit(channel, pipeline, EventType.NEW_ORDER.value, {"orderId": "ORD-BROKEN"})


# Utility functions

def emit(channel, pipeline, event_type, payload):
    if not channel.connected:
        st.error("❌ Channel disconnected; event dropped")
        return
    channel.emit(event_type, payload)
    show_result(pipeline.results[-1])


def show_result(result):
    if result.success:
        st.success(f"✅ {result.message}")
    elif result.outcome.value in ("duplicate", "stale", "noop"):
        st.info(f"↩️ {result.outcome.value}: {result.message}")
    else:
        st.error(f"❌ {result.message}")


def sample_elite_order():
    return Order(
        id="draft",
        customer_name="Elite customer",
        items=[
            LineItem(product_id="chicken-curry-cut", name="Chicken Curry Cut", variant="500g",
                     quantity=2, unit_price=180.0),
            LineItem(product_id="mutton-boneless", name="Mutton Boneless", variant="250g",
                     quantity=1, unit_price=240.0),
        ],
        pricing=PricingInputs(membership=MembershipBenefit(), surge_enabled=True),
    )
