"""Append-only event log with per-event integrity hashes"""

import uuid
from typing import Any, List, Mapping

from trustlend.domain.clock import Clock
from trustlend.domain.exceptions import IntegrityViolation, NotFound
from trustlend.domain.hashing import HashingService, normalize
from trustlend.domain.models import Event, EventType
from trustlend.domain.storage import EventStore
from trustlend.infrastructure.observability.logging import log_integrity_violation
from trustlend.infrastructure.observability.metrics import event_counter, integrity_violation_counter


class EventLog:
    """
    Records occurrences, not state: appending the same arguments twice
    produces two events. The hash covers {eventType, referenceId, detail,
    timestamp} and is stored beside the event; it is not the identifier.
    """

    def __init__(self, store: EventStore, hasher: HashingService, clock: Clock):
        self.store = store
        self.hasher = hasher
        self.clock = clock

    def append(self, reference_id: str, event_type: EventType | str, detail: Mapping[str, Any]) -> Event:
        event_type = event_type.value if isinstance(event_type, EventType) else event_type
        detail = normalize(detail)
        timestamp = self.clock.now()

        event = Event(
            id=str(uuid.uuid4()),
            reference_id=reference_id,
            event_type=event_type,
            detail=detail,
            timestamp=timestamp,
            integrity_hash=self.hasher.event_hash(event_type, reference_id, detail, timestamp),
        )
        stored = self.store.append(event)
        event_counter.labels(event_type=event_type).inc()
        return stored

    def list_for_reference(self, reference_id: str) -> List[Event]:
        """Events in append order (timestamp, then insertion sequence)"""
        return self.store.for_reference(reference_id)

    def verify(self, event_id: str) -> Event:
        """Re-hash a stored event; raises IntegrityViolation on mismatch"""
        event = self.store.get(event_id)
        if event is None:
            raise NotFound("Event", event_id)

        computed = self.hasher.event_hash(event.event_type, event.reference_id, event.detail, event.timestamp)
        if computed != event.integrity_hash:
            integrity_violation_counter.labels(kind="event").inc()
            log_integrity_violation("event", event.id, event.integrity_hash, computed)
            raise IntegrityViolation(f"event {event.id} hash mismatch")
        return event
