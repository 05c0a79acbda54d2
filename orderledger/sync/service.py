"""
Order service: optimistic REST mutations on top of the synchronizer.

Every mutation is applied locally first, with the full ledger rules, and then
pushed to the server. A NetworkError never loses the operator's input: the
local result is kept as an offline mutation and the failure is logged.
"""
from typing import Any, Dict, Optional

from pydantic.alias_generators import to_camel

from orderledger.api.orders_api import OrdersApi
from orderledger.common.errors import NetworkError
from orderledger.common.logging import get_logger
from orderledger.ledger.payments import PaymentRequest
from orderledger.ledger.refunds import RefundRequest
from orderledger.models.events import OrderPatch
from orderledger.models.orders import Order, OrderStatus
from orderledger.sync.synchronizer import ApplyOutcome, ApplyResult, OrderSynchronizer

logger = get_logger(__name__)

LEDGER_FIELDS = (
    "paid_amount", "pending_amount", "refunded_amount", "net_amount", "payment_status",
)


class OrderService:
    """Glue between the orders API and the canonical order list"""

    def __init__(self, api: OrdersApi, synchronizer: OrderSynchronizer):
        self.api = api
        self.sync = synchronizer
        self.offline_mutations = 0

    def load(self) -> int:
        """Rehydrate canonical state from GET /orders."""
        orders = self.api.list_orders()
        return self.sync.load(orders)

    def create_order(self, order: Order) -> ApplyResult:
        """
        Insert the order as provisional, then POST it. On success the entry is
        confirmed under the server id; on NetworkError it stays as a
        local-only order.
        """
        created = self.sync.local_create(order)
        client_id = created.details["client_id"]
        provisional = self.sync.get(client_id)

        try:
            server_order = self.api.create_order(provisional, client_reference=client_id)
        except NetworkError as e:
            self.offline_mutations += 1
            logger.warning("Create failed (%s); order %s kept offline", e.message, client_id)
            self.sync.mark_offline(client_id)
            return ApplyResult(
                ApplyOutcome.APPLIED,
                f"Order {client_id} saved locally (offline)",
                {"client_id": client_id, "offline": True},
            )

        return self.sync.acknowledge(client_id, server_order)

    def update_order(self, order_id: str, patch: OrderPatch) -> ApplyResult:
        result = self.sync.local_update(order_id, patch)
        if result.success:
            self._push(order_id, patch.to_wire())
        return result

    def cancel_order(self, order_id: str, reason: str = "Cancelled by operator") -> ApplyResult:
        """Cancel an order. Cancelling a cancelled or delivered order is a no-op."""
        result = self.sync.local_update(order_id, OrderPatch(status=OrderStatus.CANCELLED))
        if not result.success:
            return result

        if self.sync.is_provisional(order_id):
            return result
        try:
            self.api.cancel_order(order_id, reason)
        except NetworkError as e:
            self._went_offline(order_id, e)
        return result

    def record_payment(self, order_id: str, request: PaymentRequest) -> Order:
        before = self.sync.get(order_id)
        updated = self.sync.record_payment(order_id, request)
        if updated is not before:
            self._push(order_id, self._ledger_payload(updated, "paymentRecords"))
        return updated

    def record_refund(self, order_id: str, request: RefundRequest) -> Order:
        before = self.sync.get(order_id)
        updated = self.sync.record_refund(order_id, request)
        if updated is not before:
            self._push(order_id, self._ledger_payload(updated, "refundRecords"))
        return updated

    def _push(self, order_id: str, payload: Dict[str, Any]) -> Optional[Order]:
        if self.sync.is_provisional(order_id):
            # Travels with the create once the server acknowledges it
            return None
        try:
            return self.api.update_order(order_id, payload)
        except NetworkError as e:
            self._went_offline(order_id, e)
            return None

    def _went_offline(self, order_id: str, error: NetworkError) -> None:
        self.offline_mutations += 1
        logger.warning("Server update for %s failed (%s); keeping local change", order_id, error.message)

    @staticmethod
    def _ledger_payload(order: Order, records_key: str) -> Dict[str, Any]:
        wire = order.to_wire()
        keys = [to_camel(name) for name in LEDGER_FIELDS] + [records_key]
        return {key: wire[key] for key in keys if key in wire}
