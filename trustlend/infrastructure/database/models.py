"""SQLAlchemy ORM models for the ledger tables"""

import uuid
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class UserRow(Base):
    """Registered participant"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(Text, nullable=False)
    wallet = Column(String(128), nullable=False, unique=True)  # lowercase
    role = Column(String(16), nullable=False)
    score = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class SystemParametersRow(Base):
    """Published parameter version; rows are never updated except is_active"""

    __tablename__ = "system_parameters"

    version = Column(String(32), primary_key=True)
    pricing_table = Column(JSON, nullable=False)  # tiers in table order
    grace_period_seconds = Column(Integer, nullable=False)
    installment_cadence_seconds = Column(Integer, nullable=False)
    default_after_consecutive_overdue = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class LoanRow(Base):
    """Loan with its pricing snapshot"""

    __tablename__ = "loans"

    id = Column(String(36), primary_key=True, default=_uuid)
    borrower_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    principal = Column(BigInteger, nullable=False)
    tier_name = Column(String(32), nullable=False)
    rate_bps = Column(Integer, nullable=False)
    max_principal = Column(BigInteger, nullable=False)
    min_coverage_pct = Column(Integer, nullable=False)
    parameters_version = Column(String(32), ForeignKey("system_parameters.version"), nullable=False)
    installment_count = Column(Integer, nullable=False)
    state = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    funding_deadline = Column(DateTime(timezone=True), nullable=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)


class InstallmentRow(Base):
    """Single installment within a loan schedule"""

    __tablename__ = "installments"
    __table_args__ = (UniqueConstraint("loan_id", "sequence", name="uq_installment_loan_sequence"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    loan_id = Column(String(36), ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    amount_due = Column(BigInteger, nullable=False)
    status = Column(String(16), nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)


class EndorsementRow(Base):
    """Supporter stake; one per supporter per loan"""

    __tablename__ = "endorsements"
    __table_args__ = (UniqueConstraint("loan_id", "supporter_id", name="uq_endorsement_loan_supporter"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    loan_id = Column(String(36), ForeignKey("loans.id"), nullable=False, index=True)
    supporter_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    staked_amount = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class EventRow(Base):
    """Append-only event log; seq breaks timestamp ties in insertion order"""

    __tablename__ = "events"
    __table_args__ = (Index("ix_events_reference_order", "reference_id", "timestamp", "seq"),)

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True, default=_uuid)
    reference_id = Column(String(64), nullable=False)
    event_type = Column(String(32), nullable=False)
    detail = Column(JSON, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    integrity_hash = Column(String(64), nullable=False)


class DecisionLogRow(Base):
    """Append-only record of automated judgments"""

    __tablename__ = "decision_log"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True, default=_uuid)
    decision_type = Column(String(32), nullable=False)
    reference_id = Column(String(64), nullable=True, index=True)
    inputs = Column(JSON, nullable=False)
    outputs = Column(JSON, nullable=False)
    parameters_version = Column(String(32), nullable=False)
    integrity_hash = Column(String(64), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)


class FraudFlagRow(Base):
    """Fraud signal raised against a user; cleared only by an operator"""

    __tablename__ = "fraud_flags"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    fraud_type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    details = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
