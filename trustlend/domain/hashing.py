"""
Deterministic content hashing for audit payloads.

Payloads are normalized before hashing:
- mapping keys are sorted recursively (arrays keep their order)
- enums, datetimes, decimals and UUIDs are reduced to JSON scalars
- serialization is compact JSON (no whitespace), UTF-8 encoded

The decision payload shape {inputs, outputs, version, type: "decision"} is part
of the audit contract and must not change.
"""

import hashlib
import hmac
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping
from uuid import UUID

from trustlend.utils.date_utils import ensure_utc

DEFAULT_SHORT_LENGTH = 8


def normalize(payload: Any) -> Any:
    """Recursively sort mapping keys and reduce values to JSON-native types"""
    if isinstance(payload, Mapping):
        return {str(key): normalize(payload[key]) for key in sorted(payload, key=str)}
    if isinstance(payload, (list, tuple)):
        return [normalize(item) for item in payload]
    if isinstance(payload, Enum):
        return normalize(payload.value)
    if isinstance(payload, datetime):
        return ensure_utc(payload).isoformat()
    if isinstance(payload, date):
        return payload.isoformat()
    if isinstance(payload, Decimal):
        return format(payload.normalize(), "f")
    if isinstance(payload, UUID):
        return str(payload)
    if isinstance(payload, bytes):
        return payload.hex()
    if payload is None or isinstance(payload, (str, int, float, bool)):
        return payload
    raise TypeError(f"Object of type {type(payload).__name__} cannot be hashed")


def canonicalize_json(payload: Any) -> str:
    return json.dumps(normalize(payload), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class HashingService:
    """SHA-256 over canonical JSON; pure and stateless"""

    def __init__(self, short_length: int = DEFAULT_SHORT_LENGTH):
        self.short_length = short_length

    def hash(self, payload: Any) -> str:
        """Hex digest (64 chars) of the normalized payload"""
        canonical = canonicalize_json(payload)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def short_hash(self, payload: Any, length: int | None = None) -> str:
        """Truncated form of hash(); for display only"""
        return self.hash(payload)[: length or self.short_length]

    def verify(self, payload: Any, expected: str) -> bool:
        return hmac.compare_digest(self.hash(payload), expected)

    def decision_hash(self, inputs: Mapping[str, Any], outputs: Mapping[str, Any], version: str) -> str:
        return self.hash(decision_payload(inputs, outputs, version))

    def event_hash(
        self,
        event_type: str,
        reference_id: str,
        detail: Mapping[str, Any],
        timestamp: datetime,
    ) -> str:
        return self.hash(
            {
                "eventType": event_type,
                "referenceId": reference_id,
                "detail": normalize(detail),
                "timestamp": ensure_utc(timestamp).isoformat(),
            }
        )


def decision_payload(inputs: Mapping[str, Any], outputs: Mapping[str, Any], version: str) -> Dict[str, Any]:
    return {
        "inputs": normalize(inputs),
        "outputs": normalize(outputs),
        "version": version,
        "type": "decision",
    }
