"""
Test Order Service
Optimistic creates, server acknowledgement and the offline fallback
"""
import json

import httpx
import pytest

from orderledger.api.orders_api import OrdersApi
from orderledger.ledger.payments import PaymentRequest
from orderledger.models.events import OrderPatch
from orderledger.models.orders import Order, OrderStatus, PaymentMethod
from orderledger.sync.service import OrderService
from orderledger.sync.synchronizer import ApplyOutcome, ConfirmedOrder, OrderSynchronizer, ProvisionalOrder


class FakeServer:
    """Minimal orders backend behind httpx.MockTransport"""

    def __init__(self):
        self.online = True
        self.requests = []
        self.next_id = 100

    def __call__(self, request):
        if not self.online:
            raise httpx.ConnectError("server unreachable", request=request)

        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))

        if request.method == "GET":
            return httpx.Response(200, json=[{"id": "ORD-1", "customerName": "Kiran", "totalAmount": 600.0}])
        if request.method == "POST" and request.url.path.endswith("/orders"):
            self.next_id += 1
            body["id"] = f"ORD-{self.next_id}"
            return httpx.Response(201, json=body)
        return httpx.Response(200, json={"id": "ORD-1", "totalAmount": 600.0})


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def service(server):
    api = OrdersApi(base_url="http://orders.test/api", transport=httpx.MockTransport(server))
    return OrderService(api, OrderSynchronizer())


def test_load_rehydrates_from_server(service):
    assert service.load() == 1
    assert service.sync.get("ORD-1").pending_amount == 600.0


def test_create_is_confirmed_by_server(service, server, elite_items, elite_pricing):
    result = service.create_order(Order(id="draft", customer_name="Ravi", items=elite_items,
                                        pricing=elite_pricing))

    assert result.success
    order_id = result.details["order_id"]
    assert order_id == "ORD-101"
    assert isinstance(service.sync.get_entry(order_id), ConfirmedOrder)
    assert server.requests[0][2]["clientReference"] == result.details["client_id"]
    assert service.sync.ledger_totals().total_amount == 501.5


def test_create_offline_keeps_local_order(service, server, elite_items, elite_pricing):
    server.online = False

    result = service.create_order(Order(id="draft", items=elite_items, pricing=elite_pricing))

    client_id = result.details["client_id"]
    entry = service.sync.get_entry(client_id)
    assert result.details["offline"] is True
    assert isinstance(entry, ProvisionalOrder)
    assert entry.offline is True
    assert service.offline_mutations == 1

    # Ledger rules still hold for the local-only order
    order = service.record_payment(client_id, PaymentRequest(amount=200, method=PaymentMethod.CASH))
    assert order.pending_amount == 301.5
    assert service.offline_mutations == 1


def test_payment_is_pushed_with_ledger_fields(service, server):
    service.load()

    service.record_payment("ORD-1", PaymentRequest(amount=250, method=PaymentMethod.UPI))

    method, path, body = server.requests[-1]
    assert (method, path) == ("PATCH", "/api/orders/ORD-1")
    assert body["paidAmount"] == 250.0
    assert body["pendingAmount"] == 350.0
    assert body["paymentStatus"] == "partial"
    assert len(body["paymentRecords"]) == 1


def test_update_survives_network_failure(service, server):
    service.load()
    server.online = False

    result = service.update_order("ORD-1", OrderPatch(customer_name="Kiran R"))

    assert result.success
    assert service.sync.get("ORD-1").customer_name == "Kiran R"
    assert service.offline_mutations == 1


def test_cancel_is_local_first_and_idempotent(service, server):
    service.load()

    first = service.cancel_order("ORD-1")
    second = service.cancel_order("ORD-1")

    assert first.success
    assert second.outcome == ApplyOutcome.DUPLICATE
    assert service.sync.get("ORD-1").status == OrderStatus.CANCELLED
    assert [r[:2] for r in server.requests].count(("POST", "/api/orders/ORD-1/cancel")) == 1
