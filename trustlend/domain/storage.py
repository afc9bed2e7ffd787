"""
Repository interfaces the core depends on.

Implementations run inside one request-scoped transaction and return domain
dataclasses. Storage failures surface as StorageUnavailable; unique-key
violations as Conflict.
"""

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from trustlend.domain.models import (
    DecisionLogEntry,
    Endorsement,
    Event,
    FraudFlag,
    Installment,
    InstallmentStatus,
    Loan,
    LoanState,
    SystemParameters,
    User,
    UserRole,
    UserStatus,
)


class UserStore(Protocol):
    def add(self, user: User) -> User: ...

    def get(self, user_id: str) -> Optional[User]: ...

    def find_by_wallet(self, wallet: str) -> Optional[User]: ...

    def created_between(self, start: datetime, end: datetime) -> List[User]: ...

    def set_role(self, user_id: str, role: UserRole) -> None: ...

    def set_status(self, user_id: str, status: UserStatus) -> None: ...

    def set_score(self, user_id: str, score: int) -> None: ...


class ParameterStore(Protocol):
    def add(self, parameters: SystemParameters) -> SystemParameters: ...

    def get(self, version: str) -> Optional[SystemParameters]: ...

    def get_active(self) -> Optional[SystemParameters]: ...

    def set_active(self, version: str) -> None: ...

    def versions(self) -> List[str]: ...


class LoanStore(Protocol):
    def add(self, loan: Loan) -> Loan: ...

    def get(self, loan_id: str) -> Optional[Loan]: ...

    def get_for_update(self, loan_id: str) -> Optional[Loan]:
        """Read the loan under a row lock held until the transaction ends"""
        ...

    def transition(
        self,
        loan_id: str,
        expected: LoanState,
        target: LoanState,
        at: Optional[datetime] = None,
    ) -> bool:
        """Compare-and-set the state; False when another writer got there first"""
        ...

    def for_borrower(self, borrower_id: str) -> List[Loan]: ...


class InstallmentStore(Protocol):
    def add_all(self, installments: Sequence[Installment]) -> None: ...

    def for_loan(self, loan_id: str) -> List[Installment]: ...

    def transition(
        self,
        installment_id: str,
        expected: Sequence[InstallmentStatus],
        target: InstallmentStatus,
        paid_at: Optional[datetime] = None,
    ) -> bool: ...


class EndorsementStore(Protocol):
    def add(self, endorsement: Endorsement) -> Endorsement: ...

    def for_loan(self, loan_id: str) -> List[Endorsement]: ...

    def for_supporter(self, supporter_id: str) -> List[Endorsement]: ...

    def find(self, loan_id: str, supporter_id: str) -> Optional[Endorsement]: ...


class EventStore(Protocol):
    def append(self, event: Event) -> Event: ...

    def get(self, event_id: str) -> Optional[Event]: ...

    def for_reference(self, reference_id: str) -> List[Event]: ...


class DecisionStore(Protocol):
    def append(self, entry: DecisionLogEntry) -> DecisionLogEntry: ...

    def get(self, entry_id: str) -> Optional[DecisionLogEntry]: ...

    def for_reference(self, reference_id: str) -> List[DecisionLogEntry]: ...


class FraudFlagStore(Protocol):
    def add(self, flag: FraudFlag) -> FraudFlag: ...

    def for_user(self, user_id: str) -> List[FraudFlag]: ...


class Storage(Protocol):
    """One transaction's view of every repository"""

    users: UserStore
    parameters: ParameterStore
    loans: LoanStore
    installments: InstallmentStore
    endorsements: EndorsementStore
    events: EventStore
    decisions: DecisionStore
    fraud_flags: FraudFlagStore
