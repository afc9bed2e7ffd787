"""Request-scoped transaction wiring shared by the ledger services"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy.orm import sessionmaker

from trustlend.domain.clock import Clock
from trustlend.domain.hashing import HashingService
from trustlend.domain.storage import Storage
from trustlend.infrastructure.database.repositories import SqlAlchemyStorage
from trustlend.infrastructure.database.session import session_scope
from trustlend.services.decision_log import DecisionLog
from trustlend.services.event_log import EventLog


@dataclass
class Transaction:
    """Storage plus the audit logs, all bound to the same transaction"""

    storage: Storage
    events: EventLog
    decisions: DecisionLog


class UnitOfWork:
    """
    Opens one transaction per operation. A failure anywhere, including an
    event or decision append, rolls back the primary entity write too.
    """

    def __init__(self, session_factory: sessionmaker, hasher: HashingService, clock: Clock):
        self.session_factory = session_factory
        self.hasher = hasher
        self.clock = clock

    @contextmanager
    def begin(self) -> Iterator[Transaction]:
        with session_scope(self.session_factory) as session:
            storage = SqlAlchemyStorage(session)
            yield Transaction(
                storage=storage,
                events=EventLog(storage.events, self.hasher, self.clock),
                decisions=DecisionLog(storage.decisions, self.hasher, self.clock),
            )
