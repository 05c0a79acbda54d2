"""
Order Ledger Console
Interactive Streamlit application for the order synchronizer and money ledgers
"""
import streamlit as st

from orderledger.common.config import get_settings
from orderledger.api.orders_api import OrdersApi
from orderledger.common.errors import NetworkError
from orderledger.common.logging import configure_logging
from orderledger.ingestion.pipeline import EventPipeline
from orderledger.policy.access import (
    ALL_ACCESS, PAYMENTS_RECORD, REFUNDS_RECORD, User, resolve_landing_route
)
from orderledger.sync.channel import InMemoryChannel
from orderledger.sync.service import OrderService
from orderledger.sync.synchronizer import OrderSynchronizer

# Page configuration
st.set_page_config(
    page_title="Order Ledger",
    page_icon="🧾",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Operators to switch between in the sidebar
DEMO_USERS = {
    "Admin": User(id="u-admin", name="Admin", role="admin", permissions=[ALL_ACCESS]),
    "Cashier": User(id="u-cashier", name="Cashier", role="store_dispatch",
                    permissions=[PAYMENTS_RECORD, REFUNDS_RECORD]),
    "Packer": User(id="u-packer", name="Packer", role="hub_packing", permissions=[]),
}


def init_session():
    configure_logging()
    sync = OrderSynchronizer()
    channel = InMemoryChannel()
    pipeline = EventPipeline(sync)
    channel.connect()
    pipeline.bind(channel)
    st.session_state.sync = sync
    st.session_state.service = OrderService(OrdersApi(), sync)
    st.session_state.channel = channel
    st.session_state.pipeline = pipeline


# One synchronizer per browser session
if 'sync' not in st.session_state:
    init_session()

sync = st.session_state.sync
channel = st.session_state.channel
pipeline = st.session_state.pipeline
service = st.session_state.service

st.markdown("""
    <style>
    .main-header {
        font-size: 2.5rem;
        font-weight: 700;
        color: #58a6ff;
        margin-bottom: 0.5rem;
    }
    .sub-header {
        font-size: 1.2rem;
        color: #8b949e;
        margin-bottom: 2rem;
    }
    </style>
""", unsafe_allow_html=True)

st.markdown('<div class="main-header">🧾 Order Ledger</div>', unsafe_allow_html=True)
st.markdown('<div class="sub-header">Pricing, payments, refunds and live order sync</div>', unsafe_allow_html=True)

# Sidebar navigation
st.sidebar.title("Navigation")
page = st.sidebar.radio(
    "Select Page",
    [
        "🏠 Home",
        "🎮 Event Playground",
        "⚙️ Ingestion Console",
        "🔍 Order Console",
        "⚙️ Settings"
    ]
)

st.sidebar.markdown("---")
operator = st.sidebar.selectbox("Signed in as", list(DEMO_USERS))
user = DEMO_USERS[operator]
st.sidebar.caption(f"Landing route: {resolve_landing_route(user).path}")

if st.sidebar.button("🔄 Load from server"):
    try:
        loaded = service.load()
        st.sidebar.success(f"Loaded {loaded} orders")
    except NetworkError as e:
        st.sidebar.error(f"❌ {e.message}")

if page == "🏠 Home":
    st.markdown("## Welcome")

    st.markdown("""
    Every order change, local or remote, goes through one synchronizer:

    ```
    Operator edits ──► OrderService ──► REST /orders
          │                  │
          ▼                  ▼
    Pricing engine ──► OrderSynchronizer ◄── EventPipeline ◄── channel
                             │              (new_order / order_update / stock_update)
                             ▼
                  Payment & refund ledgers
    ```

    - **🎮 Event Playground**: emit channel events and run duplicate/stale/replay scenarios
    - **⚙️ Ingestion Console**: dead-lettered payloads and per-outcome counts
    - **🔍 Order Console**: pricing breakdowns; payments, refunds and cancels for permitted operators
    """)

    totals = sync.ledger_totals()
    col1, col2, col3, col4, col5 = st.columns(5)
    with col1:
        st.metric("Orders", len(sync.orders()))
    with col2:
        st.metric("Confirmed Total", f"₹{totals.total_amount:,.2f}")
    with col3:
        st.metric("Pending", f"₹{totals.pending_amount:,.2f}")
    with col4:
        st.metric("DLQ Entries", len(pipeline.dlq))
    with col5:
        st.metric("Offline Changes", service.offline_mutations)

elif page == "🎮 Event Playground":
    from orderledger.ui.event_playground import render_event_playground
    render_event_playground(channel, pipeline, service)

elif page == "⚙️ Ingestion Console":
    st.markdown("## ⚙️ Ingestion Console")
    st.markdown("View DLQ entries and ingestion statistics")

    if pipeline.dlq:
        st.warning(f"Found {len(pipeline.dlq)} failed events in DLQ")

        for entry in reversed(pipeline.dlq):
            with st.expander(f"❌ {entry.event_type} - {entry.error_type} ({entry.failed_at:%H:%M:%S})"):
                st.markdown(f"**DLQ ID**: `{entry.dlq_id}`")
                st.markdown(f"**Order ID**: `{entry.order_id or 'N/A'}`")
                st.markdown(f"**Retries**: {entry.retry_count}")
                st.markdown(f"**Error Message**: {entry.error_message}")
                st.markdown("**Raw Event**:")
                st.json(entry.raw_event)

        if st.button("🔁 Retry DLQ"):
            results = pipeline.retry_dlq()
            recovered = sum(1 for r in results if r.success)
            st.info(f"Recovered {recovered} of {len(results)} events")
            st.rerun()
    else:
        st.success("✅ No failed events in DLQ")

    st.markdown("### Ingestion Statistics")

    counts = {}
    for result in pipeline.results:
        counts[result.outcome.value] = counts.get(result.outcome.value, 0) + 1

    col1, col2, col3, col4, col5 = st.columns(5)
    with col1:
        st.metric("Applied", counts.get("applied", 0))
    with col2:
        st.metric("Duplicate", counts.get("duplicate", 0))
    with col3:
        st.metric("Stale", counts.get("stale", 0))
    with col4:
        st.metric("No-op", counts.get("noop", 0))
    with col5:
        st.metric("Rejected", counts.get("rejected", 0))

    if sync.stale_events:
        st.markdown("### Dropped Stale Updates")
        st.dataframe(list(sync.stale_events), use_container_width=True)

elif page == "🔍 Order Console":
    from orderledger.ui.order_console import render_order_console
    render_order_console(service, user)

elif page == "⚙️ Settings":
    st.markdown("## Settings")

    settings = get_settings()
    st.json({
        "ENVIRONMENT": settings.ENVIRONMENT,
        "API_BASE_URL": settings.API_BASE_URL,
        "GST_RATE": settings.GST_RATE,
        "DELIVERY_CHARGES": settings.DELIVERY_CHARGES,
        "SURGE_CHARGES": settings.SURGE_CHARGES,
        "FREE_DELIVERY_THRESHOLD": settings.FREE_DELIVERY_THRESHOLD,
        "STRICT_INVARIANTS": settings.STRICT_INVARIANTS,
        "EVENT_HISTORY_LIMIT": settings.EVENT_HISTORY_LIMIT,
    })

    if st.button("🗑️ Reset Session"):
        pipeline.unbind()
        service.api.close()
        init_session()
        st.success("Session state cleared")
        st.rerun()
