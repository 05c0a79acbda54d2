"""
Order synchronizer.

Single writer of the canonical, in-memory order list for a session. Local
mutations (create, edit, ledger updates) and remote channel events (new
order, status change, stock change) are both merged here, under these rules:

- order id is the idempotency key: a new_order for a known id is a no-op;
- a locally created order stays Provisional until the server acknowledges it
  and is left out of ledger totals until then;
- a status change older than one already applied, or one that moves the
  lifecycle backwards, is stale and dropped;
- delivered and cancelled are terminal: further transitions are no-ops.
"""
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel

from orderledger.common.config import get_settings
from orderledger.common.errors import StaleEventError, ValidationError
from orderledger.common.logging import get_logger
from orderledger.ingestion.id_generator import IDGenerator
from orderledger.ledger.derived import rederive
from orderledger.ledger.payments import PaymentRequest, record_payment
from orderledger.ledger.refunds import RefundRequest, record_refund
from orderledger.models.events import (
    NewOrderSummary, OrderPatch, OrderUpdateEvent, StockUpdateEvent
)
from orderledger.models.orders import (
    Order, OrderStatus, STATUS_RANK, as_utc, round_money, utcnow
)
from orderledger.pricing.engine import reprice_order

logger = get_logger(__name__)


class ProvisionalOrder(BaseModel):
    """Created here, not yet acknowledged by the server"""
    state: Literal["provisional"] = "provisional"
    client_id: str
    order: Order
    offline: bool = False  # Server unreachable; kept as a local-only order


class ConfirmedOrder(BaseModel):
    """Known to the server under its own id"""
    state: Literal["confirmed"] = "confirmed"
    order: Order
    client_reference: Optional[str] = None  # Provisional id it replaced, if any


OrderEntry = Union[ProvisionalOrder, ConfirmedOrder]


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    NOOP = "noop"
    REJECTED = "rejected"


class ApplyResult:
    """Result of applying one event or mutation"""

    def __init__(self, outcome: ApplyOutcome, message: str, details: Dict[str, Any] = None):
        self.outcome = outcome
        self.message = message
        self.details = details or {}

    @property
    def success(self) -> bool:
        return self.outcome == ApplyOutcome.APPLIED

    def __repr__(self) -> str:
        return f"ApplyResult({self.outcome.value}, {self.message!r})"


class LedgerTotals(BaseModel):
    """Money totals over confirmed orders"""
    order_count: int = 0
    total_amount: float = 0.0
    paid_amount: float = 0.0
    pending_amount: float = 0.0
    refunded_amount: float = 0.0
    net_amount: float = 0.0


class OrderSynchronizer:
    """Canonical order state for one session"""

    def __init__(self, low_stock_threshold: Optional[int] = None):
        self._entries: Dict[str, OrderEntry] = {}
        self._ids: List[str] = []  # Newest first
        self._status_clock: Dict[str, datetime] = {}
        self.low_stock_threshold = (
            get_settings().LOW_STOCK_THRESHOLD if low_stock_threshold is None else low_stock_threshold
        )
        self.stock: Dict[Tuple[str, str], int] = {}
        self.low_stock: Dict[Tuple[str, str], int] = {}
        self.stale_events: Deque[Dict[str, Any]] = deque(maxlen=get_settings().EVENT_HISTORY_LIMIT)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def orders(self) -> List[Order]:
        return [self._entries[key].order for key in self._ids]

    def entries(self) -> List[OrderEntry]:
        return [self._entries[key] for key in self._ids]

    def get_entry(self, order_id: str) -> Optional[OrderEntry]:
        return self._entries.get(order_id)

    def get(self, order_id: str) -> Optional[Order]:
        entry = self._entries.get(order_id)
        return entry.order if entry else None

    def is_provisional(self, order_id: str) -> bool:
        return isinstance(self._entries.get(order_id), ProvisionalOrder)

    def ledger_totals(self) -> LedgerTotals:
        """Totals over confirmed orders; provisional ones are not counted."""
        confirmed = [e.order for e in self.entries() if isinstance(e, ConfirmedOrder)]
        return LedgerTotals(
            order_count=len(confirmed),
            total_amount=round_money(sum(o.total_amount for o in confirmed)),
            paid_amount=round_money(sum(o.paid_amount for o in confirmed)),
            pending_amount=round_money(sum(o.pending_amount for o in confirmed)),
            refunded_amount=round_money(sum(o.refunded_amount for o in confirmed)),
            net_amount=round_money(sum(o.net_amount for o in confirmed)),
        )

    def low_stock_items(self) -> List[Dict[str, Any]]:
        return [
            {"product_id": product_id, "variant_id": variant_id, "stock": stock}
            for (product_id, variant_id), stock in self.low_stock.items()
        ]

    def snapshot(self) -> List[Dict[str, Any]]:
        """Flat rows for display"""
        rows = []
        for entry in self.entries():
            order = entry.order
            rows.append({
                "id": order.id,
                "state": entry.state,
                "offline": getattr(entry, "offline", False),
                "customer": order.customer_name,
                "status": order.status.value,
                "payment_status": order.payment_status.value,
                "total": order.total_amount,
                "paid": order.paid_amount,
                "pending": order.pending_amount,
                "refunded": order.refunded_amount,
                "net": order.net_amount,
                "created_at": order.created_at.isoformat(),
            })
        return rows

    # ------------------------------------------------------------------
    # Rehydration
    # ------------------------------------------------------------------

    def load(self, orders: Iterable[Order]) -> int:
        """
        Replace confirmed state with the server's list. Provisional entries
        stay at the head; they have not reached the server yet.
        """
        provisional_ids = [key for key in self._ids if self.is_provisional(key)]
        entries: Dict[str, OrderEntry] = {key: self._entries[key] for key in provisional_ids}
        ids = list(provisional_ids)

        for order in orders:
            if order.id in entries:
                continue
            entries[order.id] = ConfirmedOrder(order=rederive(order))
            ids.append(order.id)

        self._entries = entries
        self._ids = ids
        self._status_clock = {
            key: clock for key, clock in self._status_clock.items() if key in entries
        }
        logger.info("Loaded %d orders (%d provisional kept)", len(ids) - len(provisional_ids), len(provisional_ids))
        return len(ids) - len(provisional_ids)

    # ------------------------------------------------------------------
    # Local creates
    # ------------------------------------------------------------------

    def local_create(self, order: Order) -> ApplyResult:
        """Insert a new order at the head under a provisional client id."""
        client_id = IDGenerator.generate_provisional_id()
        priced = rederive(reprice_order(order.model_copy(update={"id": client_id})))

        self._entries[client_id] = ProvisionalOrder(client_id=client_id, order=priced)
        self._ids.insert(0, client_id)

        logger.info("Created provisional order %s (total=%s)", client_id, priced.total_amount)
        return ApplyResult(
            ApplyOutcome.APPLIED,
            f"Created provisional order {client_id}",
            {"client_id": client_id, "total_amount": priced.total_amount},
        )

    def acknowledge(self, client_id: str, server_order: Order) -> ApplyResult:
        """
        Swap a provisional entry for the server's confirmed order, in place.
        A confirmed entry for the same server id that arrived over the
        channel first is folded into this one.
        """
        entry = self._entries.get(client_id)
        if not isinstance(entry, ProvisionalOrder):
            if server_order.id in self._entries:
                return ApplyResult(ApplyOutcome.DUPLICATE, f"Order {server_order.id} already confirmed")
            return ApplyResult(ApplyOutcome.REJECTED, f"No provisional order {client_id}")

        confirmed_order = self._merge_local_ledger(entry.order, server_order)
        position = self._ids.index(client_id)

        if server_order.id in self._entries and server_order.id != client_id:
            self._ids.remove(server_order.id)
            del self._entries[server_order.id]
            position = self._ids.index(client_id)

        self._ids[position] = server_order.id
        del self._entries[client_id]
        self._entries[server_order.id] = ConfirmedOrder(order=confirmed_order, client_reference=client_id)

        logger.info("Provisional order %s confirmed as %s", client_id, server_order.id)
        return ApplyResult(
            ApplyOutcome.APPLIED,
            f"Confirmed {client_id} as {server_order.id}",
            {"client_id": client_id, "order_id": server_order.id},
        )

    def rollback(self, client_id: str) -> ApplyResult:
        """Drop a provisional order whose create failed."""
        entry = self._entries.get(client_id)
        if not isinstance(entry, ProvisionalOrder):
            return ApplyResult(ApplyOutcome.NOOP, f"No provisional order {client_id}")
        self._ids.remove(client_id)
        del self._entries[client_id]
        logger.info("Rolled back provisional order %s", client_id)
        return ApplyResult(ApplyOutcome.APPLIED, f"Rolled back {client_id}")

    def mark_offline(self, client_id: str) -> ApplyResult:
        """Keep a provisional order as an explicit local-only order."""
        entry = self._entries.get(client_id)
        if not isinstance(entry, ProvisionalOrder):
            return ApplyResult(ApplyOutcome.NOOP, f"No provisional order {client_id}")
        self._entries[client_id] = entry.model_copy(update={"offline": True})
        logger.warning("Order %s kept as local-only (offline)", client_id)
        return ApplyResult(ApplyOutcome.APPLIED, f"Order {client_id} kept offline")

    # ------------------------------------------------------------------
    # Remote events
    # ------------------------------------------------------------------

    def apply_remote_new_order(self, summary: NewOrderSummary) -> ApplyResult:
        if summary.id in self._entries:
            logger.info("Duplicate new_order for %s ignored", summary.id)
            return ApplyResult(ApplyOutcome.DUPLICATE, f"Order {summary.id} already present",
                               {"order_id": summary.id})

        reference = summary.client_reference
        entry = self._entries.get(reference) if reference else None
        if isinstance(entry, ProvisionalOrder):
            position = self._ids.index(reference)
            order = entry.order.model_copy(update={"id": summary.id})
            order = self._rekey_records(order)
            self._ids[position] = summary.id
            del self._entries[reference]
            self._entries[summary.id] = ConfirmedOrder(order=order, client_reference=reference)
            logger.info("new_order %s reconciled with provisional %s", summary.id, reference)
            return ApplyResult(
                ApplyOutcome.APPLIED,
                f"Reconciled provisional {reference} as {summary.id}",
                {"order_id": summary.id, "client_id": reference, "reconciled": True},
            )

        order = rederive(Order(
            id=summary.id,
            customer_name=summary.customer_name,
            source=summary.source,
            total_amount=round_money(summary.total_amount),
            status=OrderStatus.RECEIVED,
        ))
        self._entries[summary.id] = ConfirmedOrder(order=order)
        self._ids.insert(0, summary.id)
        logger.info("new_order %s inserted (total=%s)", summary.id, order.total_amount)
        return ApplyResult(ApplyOutcome.APPLIED, f"Inserted order {summary.id}",
                           {"order_id": summary.id, "reconciled": False})

    def apply_remote_status(self, event: OrderUpdateEvent) -> ApplyResult:
        return self._transition_status(event.order_id, event.status, event.updated_at, origin="remote")

    def apply_remote_stock(self, event: StockUpdateEvent) -> ApplyResult:
        key = (event.product_id, event.variant_id)
        if self.stock.get(key) == event.new_stock:
            return ApplyResult(ApplyOutcome.DUPLICATE, f"Stock for {key} unchanged")

        self.stock[key] = event.new_stock
        if event.new_stock < self.low_stock_threshold:
            self.low_stock[key] = event.new_stock
            logger.info("Low stock: %s/%s at %d", event.product_id, event.variant_id, event.new_stock)
        else:
            self.low_stock.pop(key, None)

        return ApplyResult(ApplyOutcome.APPLIED, f"Stock for {key} set to {event.new_stock}",
                           {"product_id": event.product_id, "variant_id": event.variant_id,
                            "new_stock": event.new_stock, "low_stock": key in self.low_stock})

    # ------------------------------------------------------------------
    # Local edits and ledger operations
    # ------------------------------------------------------------------

    def local_update(self, order_id: str, patch: OrderPatch) -> ApplyResult:
        """
        Apply an operator edit. Pricing-relevant fields trigger a full
        reprice; a status in the patch obeys the same staleness rules as a
        remote status change. Raises ValidationError when the edit is not
        allowed; the order is left unchanged.
        """
        entry = self._require(order_id)
        order = entry.order
        changed = False

        updates: Dict[str, Any] = {}
        if patch.customer_name is not None:
            updates["customer_name"] = patch.customer_name
        if patch.customer_phone is not None:
            updates["customer_phone"] = patch.customer_phone

        if patch.touches_pricing():
            if patch.items is not None and order.is_terminal:
                raise ValidationError(
                    f"Items on {order.status.value} order {order_id} cannot be edited", field="items"
                )
            # Summary orders from new_order carry a total but no items to reprice from
            if patch.items is None and not order.items and order.total_amount > 0:
                raise ValidationError("line items not loaded", field="items")
            if patch.items is not None:
                updates["items"] = patch.items
            if patch.pricing is not None:
                pricing = patch.pricing
                if patch.gst_amount is None and order.pricing.gst_overridden:
                    pricing = pricing.model_copy(update={
                        "gst_overridden": True,
                        "gst_override": order.pricing.gst_override,
                    })
                updates["pricing"] = pricing

        if updates or patch.touches_pricing():
            candidate = order.model_copy(update=updates)
            if patch.touches_pricing():
                candidate = reprice_order(candidate, gst_override=patch.gst_amount)
                eps = get_settings().MONEY_EPSILON
                if candidate.total_amount + eps < candidate.paid_amount:
                    raise ValidationError(
                        f"New total {candidate.total_amount} is below the {candidate.paid_amount} "
                        f"already paid; record a refund first",
                        field="total_amount",
                    )
            candidate = rederive(candidate.model_copy(update={"updated_at": patch.updated_at or utcnow()}))
            self._replace(order_id, candidate)
            changed = True

        if patch.status is not None:
            status_result = self._transition_status(order_id, patch.status, patch.updated_at, origin="local")
            if not changed:
                return status_result
            if status_result.success:
                return ApplyResult(ApplyOutcome.APPLIED, f"Updated order {order_id}",
                                   {"order_id": order_id, "status": patch.status.value})
            return ApplyResult(
                ApplyOutcome.APPLIED,
                f"Updated order {order_id}; status change {status_result.outcome.value}",
                {"order_id": order_id, "status_outcome": status_result.outcome.value},
            )

        if not changed:
            return ApplyResult(ApplyOutcome.NOOP, f"Nothing to update on {order_id}")
        return ApplyResult(ApplyOutcome.APPLIED, f"Updated order {order_id}", {"order_id": order_id})

    def record_payment(self, order_id: str, request: PaymentRequest) -> Order:
        entry = self._require(order_id)
        updated = record_payment(entry.order, request)
        self._replace(order_id, updated)
        return updated

    def record_refund(self, order_id: str, request: RefundRequest) -> Order:
        entry = self._require(order_id)
        updated = record_refund(entry.order, request)
        self._replace(order_id, updated)
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, order_id: str) -> OrderEntry:
        entry = self._entries.get(order_id)
        if entry is None:
            raise ValidationError(f"Unknown order {order_id}", field="order_id")
        return entry

    def _replace(self, order_id: str, order: Order) -> None:
        entry = self._entries[order_id]
        self._entries[order_id] = entry.model_copy(update={"order": order})

    def _transition_status(self, order_id: str, status: OrderStatus,
                           updated_at: Optional[datetime], origin: str) -> ApplyResult:
        updated_at = as_utc(updated_at)
        entry = self._entries.get(order_id)
        if entry is None:
            logger.info("%s status %s for unknown order %s ignored", origin, status.value, order_id)
            return ApplyResult(ApplyOutcome.NOOP, f"Unknown order {order_id}", {"order_id": order_id})

        order = entry.order
        if order.status == status:
            return ApplyResult(ApplyOutcome.DUPLICATE, f"Order {order_id} already {status.value}",
                               {"order_id": order_id})

        try:
            self._check_ordering(order, status, updated_at)
        except StaleEventError as e:
            logger.info("Dropped stale %s status event: %s", origin, e.message,
                        extra={"order_id": order_id, "outcome": ApplyOutcome.STALE.value})
            self.stale_events.append({
                "order_id": order_id,
                "status": status.value,
                "updated_at": updated_at.isoformat() if updated_at else None,
                "origin": origin,
                "reason": e.message,
            })
            return ApplyResult(ApplyOutcome.STALE, e.message, {"order_id": order_id})

        if order.is_terminal:
            logger.info("Order %s is %s; %s ignored", order_id, order.status.value, status.value)
            return ApplyResult(ApplyOutcome.NOOP, f"Order {order_id} is {order.status.value}",
                               {"order_id": order_id})

        stamp = updated_at or utcnow()
        self._replace(order_id, order.model_copy(update={"status": status, "updated_at": stamp}))
        last = self._status_clock.get(order_id)
        if updated_at is not None and (last is None or updated_at > last):
            self._status_clock[order_id] = updated_at

        logger.info("Order %s: %s -> %s (%s)", order_id, order.status.value, status.value, origin)
        return ApplyResult(ApplyOutcome.APPLIED, f"Order {order_id} now {status.value}",
                           {"order_id": order_id, "from": order.status.value, "to": status.value})

    def _check_ordering(self, order: Order, status: OrderStatus, updated_at: Optional[datetime]) -> None:
        last = self._status_clock.get(order.id)
        if updated_at is not None and last is not None and updated_at < last:
            raise StaleEventError(
                order.id,
                f"{status.value} at {updated_at.isoformat()} is older than last applied {last.isoformat()}",
            )
        if status in STATUS_RANK and order.status in STATUS_RANK:
            if STATUS_RANK[status] < STATUS_RANK[order.status]:
                raise StaleEventError(
                    order.id, f"{status.value} would move order {order.id} back from {order.status.value}"
                )

    @staticmethod
    def _rekey_records(order: Order) -> Order:
        """Point ledger records at the order's current id."""
        return order.model_copy(update={
            "payment_records": [r.model_copy(update={"order_id": order.id}) for r in order.payment_records],
            "refund_records": [r.model_copy(update={"order_id": order.id}) for r in order.refund_records],
        })

    def _merge_local_ledger(self, local: Order, server: Order) -> Order:
        """
        Keep ledger entries recorded while the order was provisional when
        the server copy has none of its own.
        """
        if (local.payment_records or local.refund_records) and not (
                server.payment_records or server.refund_records):
            server = server.model_copy(update={
                "paid_amount": local.paid_amount,
                "refunded_amount": local.refunded_amount,
                "payment_records": local.payment_records,
                "refund_records": local.refund_records,
            })
        return rederive(self._rekey_records(server))
