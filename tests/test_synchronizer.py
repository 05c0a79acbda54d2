"""
Test Order Synchronizer
Idempotent inserts, stale status drops, provisional reconciliation and local edits
"""
from datetime import datetime, timedelta, timezone

import pytest

from orderledger.common.config import get_settings
from orderledger.common.errors import ValidationError
from orderledger.ledger.payments import PaymentRequest
from orderledger.models.events import NewOrderSummary, OrderPatch, OrderUpdateEvent, StockUpdateEvent
from orderledger.models.orders import LineItem, Order, OrderStatus, PaymentMethod, PaymentStatus, PricingInputs
from orderledger.sync.synchronizer import ApplyOutcome, ConfirmedOrder, OrderSynchronizer, ProvisionalOrder

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def sync():
    return OrderSynchronizer(low_stock_threshold=10)


def summary(order_id, total=300.0, client_reference=None):
    return NewOrderSummary(id=order_id, customer_name="Meera", total_amount=total,
                           client_reference=client_reference)


def status_event(order_id, status, minutes=0):
    return OrderUpdateEvent(order_id=order_id, status=status, updated_at=T0 + timedelta(minutes=minutes))


# =========================================================================
# Remote new_order
# =========================================================================

def test_new_order_is_inserted_at_head(sync):
    sync.apply_remote_new_order(summary("ORD-1"))
    sync.apply_remote_new_order(summary("ORD-2"))

    assert [o.id for o in sync.orders()] == ["ORD-2", "ORD-1"]
    assert sync.get("ORD-1").pending_amount == 300.0
    assert sync.get("ORD-1").status == OrderStatus.RECEIVED


def test_duplicate_new_order_is_ignored(sync):
    first = sync.apply_remote_new_order(summary("ORD-1"))
    second = sync.apply_remote_new_order(summary("ORD-1", total=999.0))

    assert first.outcome == ApplyOutcome.APPLIED
    assert second.outcome == ApplyOutcome.DUPLICATE
    assert len(sync.orders()) == 1
    assert sync.get("ORD-1").total_amount == 300.0


# =========================================================================
# Status ordering
# =========================================================================

def test_forward_status_changes_apply(sync):
    sync.apply_remote_new_order(summary("ORD-1"))

    for minutes, status in enumerate([OrderStatus.PROCESSING, OrderStatus.PACKED,
                                      OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED]):
        result = sync.apply_remote_status(status_event("ORD-1", status, minutes))
        assert result.success

    assert sync.get("ORD-1").status == OrderStatus.DELIVERED


def test_older_processing_after_delivered_is_stale(sync):
    sync.apply_remote_new_order(summary("ORD-1"))
    sync.apply_remote_status(status_event("ORD-1", OrderStatus.DELIVERED, minutes=10))

    result = sync.apply_remote_status(status_event("ORD-1", OrderStatus.PROCESSING, minutes=5))

    assert result.outcome == ApplyOutcome.STALE
    assert sync.get("ORD-1").status == OrderStatus.DELIVERED
    assert len(sync.stale_events) == 1
    assert sync.stale_events[0]["status"] == "processing"


def test_backwards_move_is_stale_even_with_newer_timestamp(sync):
    sync.apply_remote_new_order(summary("ORD-1"))
    sync.apply_remote_status(status_event("ORD-1", OrderStatus.PACKED, minutes=1))

    result = sync.apply_remote_status(status_event("ORD-1", OrderStatus.PROCESSING, minutes=2))

    assert result.outcome == ApplyOutcome.STALE
    assert sync.get("ORD-1").status == OrderStatus.PACKED


def test_terminal_orders_ignore_further_transitions(sync):
    sync.apply_remote_new_order(summary("ORD-1"))
    sync.apply_remote_status(status_event("ORD-1", OrderStatus.CANCELLED, minutes=1))

    result = sync.apply_remote_status(status_event("ORD-1", OrderStatus.PROCESSING, minutes=2))
    assert result.outcome == ApplyOutcome.NOOP

    repeat = sync.apply_remote_status(status_event("ORD-1", OrderStatus.CANCELLED, minutes=3))
    assert repeat.outcome == ApplyOutcome.DUPLICATE
    assert sync.get("ORD-1").status == OrderStatus.CANCELLED


def test_status_for_unknown_order_is_noop(sync):
    result = sync.apply_remote_status(status_event("ORD-404", OrderStatus.PACKED))
    assert result.outcome == ApplyOutcome.NOOP


def test_stale_event_history_is_bounded(monkeypatch):
    monkeypatch.setenv("EVENT_HISTORY_LIMIT", "2")
    get_settings.cache_clear()
    sync = OrderSynchronizer()
    sync.apply_remote_new_order(summary("ORD-1"))
    sync.apply_remote_status(status_event("ORD-1", OrderStatus.DELIVERED, minutes=10))

    for minutes in (1, 2, 3):
        sync.apply_remote_status(status_event("ORD-1", OrderStatus.PACKED, minutes=minutes))

    assert len(sync.stale_events) == 2


# =========================================================================
# Provisional orders
# =========================================================================

def test_local_create_is_provisional_and_left_out_of_totals(sync, elite_items, elite_pricing):
    sync.apply_remote_new_order(summary("ORD-1", total=300.0))
    result = sync.local_create(Order(id="draft", items=elite_items, pricing=elite_pricing))
    client_id = result.details["client_id"]

    assert client_id.startswith("tmp-")
    assert isinstance(sync.get_entry(client_id), ProvisionalOrder)
    assert sync.orders()[0].id == client_id
    assert sync.get(client_id).total_amount == 501.5

    totals = sync.ledger_totals()
    assert totals.order_count == 1
    assert totals.total_amount == 300.0


def test_new_order_echo_reconciles_provisional_in_place(sync, elite_items, elite_pricing):
    client_id = sync.local_create(Order(id="draft", items=elite_items, pricing=elite_pricing)).details["client_id"]
    sync.apply_remote_new_order(summary("ORD-OLD"))
    sync.record_payment(client_id, PaymentRequest(amount=100, method=PaymentMethod.CASH))

    result = sync.apply_remote_new_order(summary("ORD-77", total=501.5, client_reference=client_id))

    assert result.success
    assert result.details["reconciled"] is True
    assert sync.get(client_id) is None
    assert [o.id for o in sync.orders()] == ["ORD-OLD", "ORD-77"]

    entry = sync.get_entry("ORD-77")
    assert isinstance(entry, ConfirmedOrder)
    assert entry.client_reference == client_id
    assert entry.order.paid_amount == 100.0
    assert entry.order.payment_records[0].order_id == "ORD-77"
    assert sync.ledger_totals().order_count == 2


def test_acknowledge_swaps_variant_and_folds_channel_copy(sync, elite_items, elite_pricing):
    client_id = sync.local_create(Order(id="draft", items=elite_items, pricing=elite_pricing)).details["client_id"]
    provisional = sync.get(client_id)

    # The channel delivered the server's new_order before the POST answered
    sync.apply_remote_new_order(summary("ORD-9", total=501.5))
    server_order = provisional.model_copy(update={"id": "ORD-9"})

    result = sync.acknowledge(client_id, server_order)

    assert result.success
    assert [o.id for o in sync.orders()] == ["ORD-9"]
    assert isinstance(sync.get_entry("ORD-9"), ConfirmedOrder)
    assert sync.acknowledge(client_id, server_order).outcome == ApplyOutcome.DUPLICATE


def test_rollback_and_mark_offline(sync):
    first = sync.local_create(Order(id="draft")).details["client_id"]
    second = sync.local_create(Order(id="draft")).details["client_id"]

    assert sync.rollback(first).success
    assert sync.get(first) is None

    assert sync.mark_offline(second).success
    assert sync.get_entry(second).offline is True
    assert sync.rollback("tmp-missing").outcome == ApplyOutcome.NOOP


def test_load_keeps_provisional_orders(sync):
    client_id = sync.local_create(Order(id="draft")).details["client_id"]

    loaded = sync.load([Order(id="ORD-1", total_amount=100.0), Order(id="ORD-2", total_amount=50.0)])

    assert loaded == 2
    assert [o.id for o in sync.orders()] == [client_id, "ORD-1", "ORD-2"]
    assert sync.get("ORD-2").pending_amount == 50.0


# =========================================================================
# Local edits
# =========================================================================

def test_item_edit_reprices_the_order(sync, elite_items, elite_pricing):
    client_id = sync.local_create(Order(id="draft", items=elite_items, pricing=elite_pricing)).details["client_id"]
    items = [LineItem(product_id="chicken-breast", name="Chicken Breast", quantity=1, unit_price=250.0)]

    result = sync.local_update(client_id, OrderPatch(items=items))

    order = sync.get(client_id)
    assert result.success
    assert order.subtotal_amount == 250.0
    assert order.elite_discount_amount == 12.5
    assert order.delivery_charges == 50.0  # Below the free delivery threshold
    assert order.total_amount == 300.75


def test_edit_below_paid_amount_is_rejected(sync, elite_items, elite_pricing):
    client_id = sync.local_create(Order(id="draft", items=elite_items, pricing=elite_pricing)).details["client_id"]
    sync.record_payment(client_id, PaymentRequest(amount=501.5, method=PaymentMethod.CARD))
    items = [LineItem(product_id="chicken-breast", name="Chicken Breast", quantity=1, unit_price=250.0)]

    with pytest.raises(ValidationError):
        sync.local_update(client_id, OrderPatch(items=items))

    assert sync.get(client_id).total_amount == 501.5


def test_items_locked_on_delivered_orders(sync):
    sync.apply_remote_new_order(summary("ORD-1"))
    sync.apply_remote_status(status_event("ORD-1", OrderStatus.DELIVERED))
    items = [LineItem(product_id="eggs", name="Eggs", quantity=1, unit_price=90.0)]

    with pytest.raises(ValidationError):
        sync.local_update("ORD-1", OrderPatch(items=items))

    renamed = sync.local_update("ORD-1", OrderPatch(customer_name="Meera K"))
    assert renamed.success
    assert sync.get("ORD-1").customer_name == "Meera K"


def test_local_status_change_obeys_ordering(sync):
    sync.apply_remote_new_order(summary("ORD-1"))
    sync.apply_remote_status(status_event("ORD-1", OrderStatus.PACKED, minutes=5))

    stale = sync.local_update("ORD-1", OrderPatch(status=OrderStatus.PROCESSING))
    assert stale.outcome == ApplyOutcome.STALE

    moved = sync.local_update("ORD-1", OrderPatch(status=OrderStatus.OUT_FOR_DELIVERY,
                                                  updated_at=T0 + timedelta(minutes=6)))
    assert moved.success


def test_naive_patch_timestamp_is_read_as_utc(sync):
    sync.apply_remote_new_order(summary("ORD-1"))
    sync.apply_remote_status(status_event("ORD-1", OrderStatus.PROCESSING))

    patch = OrderPatch(status=OrderStatus.PACKED, updated_at=datetime(2026, 3, 1, 9, 5))
    assert patch.updated_at.tzinfo == timezone.utc

    result = sync.local_update("ORD-1", patch)

    assert result.success
    assert sync.get("ORD-1").status == OrderStatus.PACKED


def test_pricing_edit_on_summary_order_is_rejected(sync):
    sync.apply_remote_new_order(summary("ORD-1", total=300.0))

    with pytest.raises(ValidationError) as exc:
        sync.local_update("ORD-1", OrderPatch(pricing=PricingInputs(surge_enabled=True)))
    assert exc.value.field == "items"
    assert exc.value.message == "line items not loaded"

    with pytest.raises(ValidationError):
        sync.local_update("ORD-1", OrderPatch(gst_amount=10))

    order = sync.get("ORD-1")
    assert order.total_amount == 300.0
    assert order.pending_amount == 300.0
    assert order.payment_status == PaymentStatus.PENDING


def test_gst_only_edit_reprices(sync, elite_items, elite_pricing):
    client_id = sync.local_create(Order(id="draft", items=elite_items, pricing=elite_pricing)).details["client_id"]

    result = sync.local_update(client_id, OrderPatch(gst_amount=20))

    order = sync.get(client_id)
    assert result.success
    assert order.gst_amount == 20.0
    assert order.pricing.gst_overridden is True
    assert order.total_amount == 445.0


def test_gst_override_survives_item_removal_and_restore(sync, elite_items, elite_pricing):
    client_id = sync.local_create(Order(id="draft", items=elite_items, pricing=elite_pricing)).details["client_id"]
    sync.local_update(client_id, OrderPatch(gst_amount=5))

    sync.local_update(client_id, OrderPatch(items=[]))
    sync.local_update(client_id, OrderPatch(items=elite_items))

    order = sync.get(client_id)
    assert order.gst_amount == 5.0
    assert order.pricing.gst_overridden is True
    assert order.total_amount == 430.0


def test_unknown_order_rejected(sync):
    with pytest.raises(ValidationError):
        sync.local_update("ORD-404", OrderPatch(customer_name="Nobody"))
    with pytest.raises(ValidationError):
        sync.record_payment("ORD-404", PaymentRequest(amount=1, method=PaymentMethod.CASH))


# =========================================================================
# Stock
# =========================================================================

def test_stock_updates_track_low_stock(sync):
    low = sync.apply_remote_stock(StockUpdateEvent(product_id="prawns", variant_id="250g", new_stock=4))
    assert low.details["low_stock"] is True
    assert sync.low_stock_items() == [{"product_id": "prawns", "variant_id": "250g", "stock": 4}]

    same = sync.apply_remote_stock(StockUpdateEvent(product_id="prawns", variant_id="250g", new_stock=4))
    assert same.outcome == ApplyOutcome.DUPLICATE

    sync.apply_remote_stock(StockUpdateEvent(product_id="prawns", variant_id="250g", new_stock=40))
    assert sync.low_stock_items() == []
    assert sync.stock[("prawns", "250g")] == 40
