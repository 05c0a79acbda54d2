"""
Client-side ID generation.
Provisional order ids for optimistic creates, ledger record ids, and
idempotency tokens for payment/refund attempts.
"""
import hashlib
import json
import uuid
from typing import Any, Dict, Optional

PROVISIONAL_PREFIX = "tmp-"


class IDGenerator:
    """Generates client-side identifiers"""

    @staticmethod
    def generate_provisional_id() -> str:
        """
        Id for an order created locally before the server has answered.

        Format: tmp-{uuid4 hex[:12]}
        Example: tmp-3f9a1c2b7d4e
        """
        return f"{PROVISIONAL_PREFIX}{uuid.uuid4().hex[:12]}"

    @staticmethod
    def is_provisional_id(order_id: str) -> bool:
        return order_id.startswith(PROVISIONAL_PREFIX)

    @staticmethod
    def generate_record_id(kind: str) -> str:
        """
        Id for a payment or refund record.

        Format: {kind}_{uuid4 hex[:16]}
        Example: payment_0f3c9e1a2b4d5e6f
        """
        return f"{kind}_{uuid.uuid4().hex[:16]}"

    @staticmethod
    def generate_idempotency_key(
        order_id: str,
        kind: str,
        payload: Dict[str, Any],
        attempt_id: Optional[str] = None
    ) -> str:
        """
        Stable token for one logical payment or refund attempt.

        Format: ik_{kind}_{hash(order_id + kind + canonical payload + attempt)[:16]}

        The same form submission retried after a timeout produces the same
        key, so the ledger can absorb the retry. attempt_id separates two
        genuinely distinct attempts with identical payloads (e.g. two cash
        instalments of the same amount).
        """
        canonical = json.dumps(payload, sort_keys=True, default=str)
        combined = f"{order_id}|{kind}|{canonical}|{attempt_id or ''}"
        hash_hex = hashlib.sha256(combined.encode()).hexdigest()[:16]
        return f"ik_{kind}_{hash_hex}"
