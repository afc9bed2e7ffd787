"""Data access layer - SQLAlchemy implementations of the storage protocols"""

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session

from trustlend.domain.models import (
    DecisionLogEntry,
    DecisionType,
    Endorsement,
    Event,
    FraudFlag,
    FraudType,
    Installment,
    InstallmentStatus,
    Loan,
    LoanState,
    PricingTier,
    Severity,
    SystemParameters,
    TierSnapshot,
    User,
    UserRole,
    UserStatus,
)
from trustlend.infrastructure.database.models import (
    DecisionLogRow,
    EndorsementRow,
    EventRow,
    FraudFlagRow,
    InstallmentRow,
    LoanRow,
    SystemParametersRow,
    UserRow,
)
from trustlend.utils.date_utils import ensure_utc


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        name=row.name,
        wallet=row.wallet,
        role=UserRole(row.role),
        score=row.score,
        status=UserStatus(row.status),
        created_at=_utc(row.created_at),
    )


def _to_parameters(row: SystemParametersRow) -> SystemParameters:
    return SystemParameters(
        version=row.version,
        tiers=tuple(PricingTier.from_dict(t) for t in row.pricing_table),
        grace_period_seconds=row.grace_period_seconds,
        installment_cadence_seconds=row.installment_cadence_seconds,
        default_after_consecutive_overdue=row.default_after_consecutive_overdue,
        is_active=row.is_active,
        created_at=_utc(row.created_at),
    )


def _to_loan(row: LoanRow) -> Loan:
    return Loan(
        id=row.id,
        borrower_id=row.borrower_id,
        principal=row.principal,
        pricing=TierSnapshot(
            tier_name=row.tier_name,
            rate_bps=row.rate_bps,
            max_principal=row.max_principal,
            min_coverage_pct=row.min_coverage_pct,
            parameters_version=row.parameters_version,
        ),
        installment_count=row.installment_count,
        state=LoanState(row.state),
        created_at=_utc(row.created_at),
        funding_deadline=_utc(row.funding_deadline),
        activated_at=_utc(row.activated_at),
        closed_at=_utc(row.closed_at),
    )


def _to_installment(row: InstallmentRow) -> Installment:
    return Installment(
        id=row.id,
        loan_id=row.loan_id,
        sequence=row.sequence,
        amount_due=row.amount_due,
        status=InstallmentStatus(row.status),
        due_at=_utc(row.due_at),
        paid_at=_utc(row.paid_at),
    )


def _to_endorsement(row: EndorsementRow) -> Endorsement:
    return Endorsement(
        id=row.id,
        loan_id=row.loan_id,
        supporter_id=row.supporter_id,
        staked_amount=row.staked_amount,
        created_at=_utc(row.created_at),
    )


def _to_event(row: EventRow) -> Event:
    return Event(
        id=row.id,
        reference_id=row.reference_id,
        event_type=row.event_type,
        detail=row.detail,
        timestamp=_utc(row.timestamp),
        integrity_hash=row.integrity_hash,
        sequence=row.seq,
    )


def _to_decision(row: DecisionLogRow) -> DecisionLogEntry:
    return DecisionLogEntry(
        id=row.id,
        decision_type=DecisionType(row.decision_type),
        inputs=row.inputs,
        outputs=row.outputs,
        parameters_version=row.parameters_version,
        integrity_hash=row.integrity_hash,
        timestamp=_utc(row.timestamp),
        reference_id=row.reference_id,
    )


def _to_flag(row: FraudFlagRow) -> FraudFlag:
    return FraudFlag(
        id=row.id,
        user_id=row.user_id,
        fraud_type=FraudType(row.fraud_type),
        severity=Severity(row.severity),
        created_at=_utc(row.created_at),
        details=row.details,
    )


class UserRepository:
    """Repository for users"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, user: User) -> User:
        self.db.add(
            UserRow(
                id=user.id,
                name=user.name,
                wallet=user.wallet,
                role=user.role.value,
                score=user.score,
                status=user.status.value,
                created_at=user.created_at,
            )
        )
        self.db.flush()  # surface unique-wallet violations inside the transaction
        return user

    def get(self, user_id: str) -> Optional[User]:
        row = self.db.get(UserRow, user_id)
        return _to_user(row) if row else None

    def find_by_wallet(self, wallet: str) -> Optional[User]:
        row = self.db.query(UserRow).filter(UserRow.wallet == wallet).first()
        return _to_user(row) if row else None

    def created_between(self, start: datetime, end: datetime) -> List[User]:
        rows = (
            self.db.query(UserRow)
            .filter(UserRow.created_at >= start, UserRow.created_at <= end)
            .order_by(UserRow.created_at)
            .all()
        )
        return [_to_user(r) for r in rows]

    def _update(self, user_id: str, **values) -> None:
        self.db.execute(update(UserRow).where(UserRow.id == user_id).values(**values))

    def set_role(self, user_id: str, role: UserRole) -> None:
        self._update(user_id, role=role.value)

    def set_status(self, user_id: str, status: UserStatus) -> None:
        self._update(user_id, status=status.value)

    def set_score(self, user_id: str, score: int) -> None:
        self._update(user_id, score=score)


class ParameterRepository:
    """Repository for versioned system parameters"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, parameters: SystemParameters) -> SystemParameters:
        self.db.add(
            SystemParametersRow(
                version=parameters.version,
                pricing_table=[t.to_dict() for t in parameters.tiers],
                grace_period_seconds=parameters.grace_period_seconds,
                installment_cadence_seconds=parameters.installment_cadence_seconds,
                default_after_consecutive_overdue=parameters.default_after_consecutive_overdue,
                is_active=False,
                created_at=parameters.created_at,
            )
        )
        self.db.flush()
        return parameters

    def get(self, version: str) -> Optional[SystemParameters]:
        row = self.db.get(SystemParametersRow, version)
        return _to_parameters(row) if row else None

    def get_active(self) -> Optional[SystemParameters]:
        row = self.db.query(SystemParametersRow).filter(SystemParametersRow.is_active.is_(True)).first()
        return _to_parameters(row) if row else None

    def set_active(self, version: str) -> None:
        self.db.execute(
            update(SystemParametersRow)
            .where(SystemParametersRow.version != version)
            .values(is_active=False)
        )
        self.db.execute(
            update(SystemParametersRow)
            .where(SystemParametersRow.version == version)
            .values(is_active=True)
        )

    def versions(self) -> List[str]:
        rows = self.db.query(SystemParametersRow.version).order_by(SystemParametersRow.created_at).all()
        return [r.version for r in rows]


class LoanRepository:
    """Repository for loans"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, loan: Loan) -> Loan:
        self.db.add(
            LoanRow(
                id=loan.id,
                borrower_id=loan.borrower_id,
                principal=loan.principal,
                tier_name=loan.pricing.tier_name,
                rate_bps=loan.pricing.rate_bps,
                max_principal=loan.pricing.max_principal,
                min_coverage_pct=loan.pricing.min_coverage_pct,
                parameters_version=loan.pricing.parameters_version,
                installment_count=loan.installment_count,
                state=loan.state.value,
                created_at=loan.created_at,
                funding_deadline=loan.funding_deadline,
                activated_at=loan.activated_at,
                closed_at=loan.closed_at,
            )
        )
        self.db.flush()
        return loan

    def get(self, loan_id: str) -> Optional[Loan]:
        row = self.db.query(LoanRow).filter(LoanRow.id == loan_id).populate_existing().first()
        return _to_loan(row) if row else None

    def get_for_update(self, loan_id: str) -> Optional[Loan]:
        """
        Lock the loan row for the rest of the transaction.

        The no-op UPDATE takes the row lock on server databases and the
        database write lock on SQLite, which ignores FOR UPDATE. Writers on
        the same loan therefore queue here, before any of them reads
        endorsements or installments.
        """
        self.db.execute(
            update(LoanRow)
            .where(LoanRow.id == loan_id)
            .values(state=LoanRow.state)
            .execution_options(synchronize_session=False)
        )
        row = (
            self.db.query(LoanRow)
            .filter(LoanRow.id == loan_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        return _to_loan(row) if row else None

    def transition(
        self,
        loan_id: str,
        expected: LoanState,
        target: LoanState,
        at: Optional[datetime] = None,
    ) -> bool:
        values = {"state": target.value}
        if target == LoanState.ACTIVE:
            values["activated_at"] = at
        elif target in (LoanState.REPAID, LoanState.DEFAULTED, LoanState.CANCELLED):
            values["closed_at"] = at

        result = self.db.execute(
            update(LoanRow)
            .where(LoanRow.id == loan_id, LoanRow.state == expected.value)
            .values(**values)
        )
        return result.rowcount == 1

    def for_borrower(self, borrower_id: str) -> List[Loan]:
        rows = (
            self.db.query(LoanRow)
            .filter(LoanRow.borrower_id == borrower_id)
            .order_by(LoanRow.created_at.desc())
            .all()
        )
        return [_to_loan(r) for r in rows]


class InstallmentRepository:
    """Repository for installment schedules"""

    def __init__(self, db: Session):
        self.db = db

    def add_all(self, installments: Sequence[Installment]) -> None:
        for inst in installments:
            self.db.add(
                InstallmentRow(
                    id=inst.id,
                    loan_id=inst.loan_id,
                    sequence=inst.sequence,
                    amount_due=inst.amount_due,
                    status=inst.status.value,
                    due_at=inst.due_at,
                    paid_at=inst.paid_at,
                )
            )
        self.db.flush()

    def for_loan(self, loan_id: str) -> List[Installment]:
        rows = (
            self.db.query(InstallmentRow)
            .filter(InstallmentRow.loan_id == loan_id)
            .order_by(InstallmentRow.sequence)
            .populate_existing()
            .all()
        )
        return [_to_installment(r) for r in rows]

    def transition(
        self,
        installment_id: str,
        expected: Sequence[InstallmentStatus],
        target: InstallmentStatus,
        paid_at: Optional[datetime] = None,
    ) -> bool:
        values = {"status": target.value}
        if paid_at is not None:
            values["paid_at"] = paid_at

        result = self.db.execute(
            update(InstallmentRow)
            .where(
                InstallmentRow.id == installment_id,
                InstallmentRow.status.in_([s.value for s in expected]),
            )
            .values(**values)
        )
        return result.rowcount == 1


class EndorsementRepository:
    """Repository for supporter stakes"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, endorsement: Endorsement) -> Endorsement:
        self.db.add(
            EndorsementRow(
                id=endorsement.id,
                loan_id=endorsement.loan_id,
                supporter_id=endorsement.supporter_id,
                staked_amount=endorsement.staked_amount,
                created_at=endorsement.created_at,
            )
        )
        self.db.flush()
        return endorsement

    def for_loan(self, loan_id: str) -> List[Endorsement]:
        rows = (
            self.db.query(EndorsementRow)
            .filter(EndorsementRow.loan_id == loan_id)
            .order_by(EndorsementRow.created_at, EndorsementRow.id)
            .all()
        )
        return [_to_endorsement(r) for r in rows]

    def for_supporter(self, supporter_id: str) -> List[Endorsement]:
        rows = (
            self.db.query(EndorsementRow)
            .filter(EndorsementRow.supporter_id == supporter_id)
            .order_by(EndorsementRow.created_at)
            .all()
        )
        return [_to_endorsement(r) for r in rows]

    def find(self, loan_id: str, supporter_id: str) -> Optional[Endorsement]:
        row = (
            self.db.query(EndorsementRow)
            .filter(EndorsementRow.loan_id == loan_id, EndorsementRow.supporter_id == supporter_id)
            .first()
        )
        return _to_endorsement(row) if row else None


class EventRepository:
    """Append-only event storage"""

    def __init__(self, db: Session):
        self.db = db

    def append(self, event: Event) -> Event:
        row = EventRow(
            id=event.id,
            reference_id=event.reference_id,
            event_type=event.event_type,
            detail=event.detail,
            timestamp=event.timestamp,
            integrity_hash=event.integrity_hash,
        )
        self.db.add(row)
        self.db.flush()  # assigns seq
        return _to_event(row)

    def get(self, event_id: str) -> Optional[Event]:
        row = self.db.query(EventRow).filter(EventRow.id == event_id).first()
        return _to_event(row) if row else None

    def for_reference(self, reference_id: str) -> List[Event]:
        rows = (
            self.db.query(EventRow)
            .filter(EventRow.reference_id == reference_id)
            .order_by(EventRow.timestamp, EventRow.seq)
            .all()
        )
        return [_to_event(r) for r in rows]


class DecisionRepository:
    """Append-only decision log storage"""

    def __init__(self, db: Session):
        self.db = db

    def append(self, entry: DecisionLogEntry) -> DecisionLogEntry:
        self.db.add(
            DecisionLogRow(
                id=entry.id,
                decision_type=entry.decision_type.value,
                reference_id=entry.reference_id,
                inputs=entry.inputs,
                outputs=entry.outputs,
                parameters_version=entry.parameters_version,
                integrity_hash=entry.integrity_hash,
                timestamp=entry.timestamp,
            )
        )
        self.db.flush()
        return entry

    def get(self, entry_id: str) -> Optional[DecisionLogEntry]:
        row = self.db.query(DecisionLogRow).filter(DecisionLogRow.id == entry_id).first()
        return _to_decision(row) if row else None

    def for_reference(self, reference_id: str) -> List[DecisionLogEntry]:
        rows = (
            self.db.query(DecisionLogRow)
            .filter(DecisionLogRow.reference_id == reference_id)
            .order_by(DecisionLogRow.timestamp, DecisionLogRow.seq)
            .all()
        )
        return [_to_decision(r) for r in rows]


class FraudFlagRepository:
    """Repository for fraud flags"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, flag: FraudFlag) -> FraudFlag:
        self.db.add(
            FraudFlagRow(
                id=flag.id,
                user_id=flag.user_id,
                fraud_type=flag.fraud_type.value,
                severity=flag.severity.value,
                details=flag.details,
                created_at=flag.created_at,
            )
        )
        self.db.flush()
        return flag

    def for_user(self, user_id: str) -> List[FraudFlag]:
        rows = (
            self.db.query(FraudFlagRow)
            .filter(FraudFlagRow.user_id == user_id)
            .order_by(FraudFlagRow.created_at)
            .all()
        )
        return [_to_flag(r) for r in rows]


class SqlAlchemyStorage:
    """All repositories bound to one session (one transaction)"""

    def __init__(self, db: Session):
        self.db = db
        self.users = UserRepository(db)
        self.parameters = ParameterRepository(db)
        self.loans = LoanRepository(db)
        self.installments = InstallmentRepository(db)
        self.endorsements = EndorsementRepository(db)
        self.events = EventRepository(db)
        self.decisions = DecisionRepository(db)
        self.fraud_flags = FraudFlagRepository(db)
