"""Append-only log of automated judgments"""

import uuid
from typing import List, Optional

from trustlend.domain.clock import Clock
from trustlend.domain.decisions import DecisionPayload
from trustlend.domain.exceptions import IntegrityViolation, NotFound, ValidationError
from trustlend.domain.hashing import HashingService, normalize
from trustlend.domain.models import DecisionLogEntry, DecisionType
from trustlend.domain.storage import DecisionStore
from trustlend.infrastructure.observability.logging import log_decision, log_integrity_violation
from trustlend.infrastructure.observability.metrics import decision_counter, integrity_violation_counter


class DecisionLog:
    """
    Every entry stores its inputs, outputs and parameter version next to
    decision_hash(inputs, outputs, version), so a dispute can re-derive the
    hash from the entry alone.
    """

    def __init__(self, store: DecisionStore, hasher: HashingService, clock: Clock):
        self.store = store
        self.hasher = hasher
        self.clock = clock

    def record(
        self,
        decision_type: DecisionType,
        inputs: DecisionPayload,
        outputs: DecisionPayload,
        parameters_version: str,
        reference_id: Optional[str] = None,
    ) -> DecisionLogEntry:
        for payload in (inputs, outputs):
            if payload.decision_type != decision_type:
                raise ValidationError(
                    f"{type(payload).__name__} is a {payload.decision_type.value} payload, "
                    f"not {decision_type.value}"
                )

        inputs_data = normalize(inputs.to_dict())
        outputs_data = normalize(outputs.to_dict())
        entry = DecisionLogEntry(
            id=str(uuid.uuid4()),
            decision_type=decision_type,
            inputs=inputs_data,
            outputs=outputs_data,
            parameters_version=parameters_version,
            integrity_hash=self.hasher.decision_hash(inputs_data, outputs_data, parameters_version),
            timestamp=self.clock.now(),
            reference_id=reference_id,
        )
        self.store.append(entry)

        decision_counter.labels(decision_type=decision_type.value).inc()
        log_decision(decision_type.value, reference_id, parameters_version, entry.integrity_hash)
        return entry

    def verify(self, entry_id: str) -> DecisionLogEntry:
        """Recompute the hash from the stored fields; raises IntegrityViolation on mismatch"""
        entry = self.store.get(entry_id)
        if entry is None:
            raise NotFound("DecisionLogEntry", entry_id)

        computed = self.hasher.decision_hash(entry.inputs, entry.outputs, entry.parameters_version)
        if computed != entry.integrity_hash:
            integrity_violation_counter.labels(kind="decision").inc()
            log_integrity_violation("decision", entry.id, entry.integrity_hash, computed)
            raise IntegrityViolation(f"decision {entry.id} hash mismatch")
        return entry

    def list_for_reference(self, reference_id: str) -> List[DecisionLogEntry]:
        return self.store.for_reference(reference_id)
