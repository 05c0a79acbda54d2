"""
Channel event pipeline.
Validates raw push-channel payloads and routes them to the order synchronizer.
Anything that cannot be validated or routed goes to the dead letter queue
instead of raising into the channel's callback.
"""
import json
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import ValidationError as SchemaError

from orderledger.common.config import get_settings
from orderledger.common.logging import get_logger
from orderledger.models.events import (
    DLQEntry, EventType, NewOrderEvent, OrderUpdateEvent, StockUpdateEvent
)
from orderledger.models.orders import utcnow
from orderledger.sync.channel import ChannelClient
from orderledger.sync.synchronizer import ApplyOutcome, ApplyResult, OrderSynchronizer

logger = get_logger(__name__)


class EventPipeline:
    """Push-channel ingestion for one synchronizer"""

    def __init__(self, synchronizer: OrderSynchronizer):
        self.synchronizer = synchronizer
        self.dlq: List[DLQEntry] = []
        self.results: Deque[ApplyResult] = deque(maxlen=get_settings().EVENT_HISTORY_LIMIT)
        self._unsubscribers: List[Callable[[], None]] = []

    def bind(self, channel: ChannelClient) -> None:
        """Subscribe to every order topic on a channel."""
        for event_type in EventType:
            unsubscribe = channel.on(
                event_type.value,
                lambda payload, topic=event_type.value: self.ingest_event(topic, payload),
            )
            self._unsubscribers.append(unsubscribe)

    def unbind(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def ingest_event(self, event_type: Optional[str], event_data: Dict[str, Any]) -> ApplyResult:
        """
        Main ingestion entry point.
        Routes the payload to the handler for its topic.
        """
        try:
            if not event_type:
                result = self._send_to_dlq(
                    event_type, event_data, "MISSING_EVENT_TYPE", "Event has no topic"
                )
            elif event_type == EventType.NEW_ORDER:
                result = self._ingest_new_order(event_data)
            elif event_type == EventType.ORDER_UPDATE:
                result = self._ingest_order_update(event_data)
            elif event_type == EventType.STOCK_UPDATE:
                result = self._ingest_stock_update(event_data)
            else:
                result = self._send_to_dlq(
                    event_type, event_data, "UNKNOWN_EVENT_TYPE", f"Unknown event_type: {event_type}"
                )

        except SchemaError as e:
            result = self._send_to_dlq(
                event_type, event_data, "VALIDATION_ERROR", f"Pydantic validation failed: {str(e)}"
            )
        except Exception as e:
            logger.exception("Pipeline error on %s", event_type)
            result = self._send_to_dlq(
                event_type, event_data, "PIPELINE_ERROR", f"Pipeline error: {str(e)}"
            )

        self.results.append(result)
        return result

    def _ingest_new_order(self, event_data: Dict[str, Any]) -> ApplyResult:
        event = NewOrderEvent.model_validate(event_data)
        return self.synchronizer.apply_remote_new_order(event.order)

    def _ingest_order_update(self, event_data: Dict[str, Any]) -> ApplyResult:
        event = OrderUpdateEvent.model_validate(event_data)
        return self.synchronizer.apply_remote_status(event)

    def _ingest_stock_update(self, event_data: Dict[str, Any]) -> ApplyResult:
        event = StockUpdateEvent.model_validate(event_data)
        return self.synchronizer.apply_remote_stock(event)

    def _send_to_dlq(self, event_type: Optional[str], event_data: Dict[str, Any],
                     error_type: str, error_message: str) -> ApplyResult:
        """Park a failed payload in the dead letter queue"""
        order_id = None
        if isinstance(event_data, dict):
            order_id = event_data.get("orderId")
            nested = event_data.get("order")
            if order_id is None and isinstance(nested, dict):
                order_id = nested.get("id")

        dlq_entry = DLQEntry(
            dlq_id=str(uuid.uuid4()),
            event_type=event_type or "unknown",
            order_id=str(order_id) if order_id is not None else None,
            raw_event=json.dumps(event_data, default=str),
            error_type=error_type,
            error_message=error_message,
            failed_at=utcnow(),
            retry_count=0,
        )
        self.dlq.append(dlq_entry)
        logger.warning("Event sent to DLQ (%s): %s", error_type, error_message,
                       extra={"order_id": dlq_entry.order_id, "event_type": dlq_entry.event_type})

        return ApplyResult(
            ApplyOutcome.REJECTED,
            f"Event sent to DLQ: {error_message}",
            {"dlq_id": dlq_entry.dlq_id, "error_type": error_type},
        )

    def retry_dlq(self) -> List[ApplyResult]:
        """Re-run every dead-lettered payload once; entries that fail again stay parked."""
        parked, self.dlq = self.dlq, []
        results = []
        for entry in parked:
            result = self.ingest_event(entry.event_type, json.loads(entry.raw_event))
            if result.outcome == ApplyOutcome.REJECTED and self.dlq:
                self.dlq[-1] = self.dlq[-1].model_copy(update={"retry_count": entry.retry_count + 1})
            results.append(result)
        return results
