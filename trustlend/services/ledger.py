"""
Ledger service - the operations exposed to the outer layer.

Every public method runs in its own transaction. A failure at any step,
including an event or decision append, rolls back every write the
operation made.
"""

import logging
import uuid
from typing import List, Optional, Tuple

from trustlend.config import Settings, settings
from trustlend.domain.aggregator import (
    DeadlineCheck,
    LoanAggregator,
    amounts_owed,
    check_installment_transition,
    check_loan_transition,
    coverage_pct,
    default_justification,
    funding_deadline_passed,
    newly_overdue,
    overdue_amount,
    total_staked,
    with_effective_status,
)
from trustlend.domain.decisions import (
    ConcentrationInputs,
    ConcentrationOutputs,
    DefaultInputs,
    DefaultOutputs,
    MultiAccountInputs,
    MultiAccountOutputs,
    PricingInputs,
    PricingOutputs,
    ScoreAdjustmentInputs,
    ScoreAdjustmentOutputs,
    WaterfallInputs,
    WaterfallOutputs,
)
from trustlend.domain.exceptions import Conflict, NotFound, ValidationError
from trustlend.domain.fraud import FraudDetector, should_trigger_review, stakes_by_supporter
from trustlend.domain.hashing import normalize
from trustlend.domain.installments import generate_installment_plan
from trustlend.domain.models import (
    DecisionLogEntry,
    DecisionType,
    Endorsement,
    Event,
    EventType,
    FraudAlert,
    FraudFlag,
    Installment,
    InstallmentStatus,
    Loan,
    LoanState,
    LoanSummary,
    LoanView,
    SystemParameters,
    TierSnapshot,
    User,
    UserRole,
    UserStatus,
    UserView,
)
from trustlend.domain.pricing import PricingEngine
from trustlend.domain.scoring import ScoreChange, adjust_score
from trustlend.domain.waterfall import WaterfallResult, execute_waterfall, simulate_waterfall
from trustlend.infrastructure.observability.logging import log_fraud_alert, log_loan_transition
from trustlend.infrastructure.observability.metrics import record_fraud_alert, record_loan_transition, timed
from trustlend.services.parameters import load_active_parameters, load_parameters
from trustlend.services.schemas import (
    CreateLoanRequest,
    EndorseRequest,
    LiquidateRequest,
    LoginRequest,
    MarkDefaultRequest,
    PaymentRequest,
    RegisterUserRequest,
    parse,
)
from trustlend.services.unit_of_work import Transaction, UnitOfWork
from trustlend.utils.date_utils import add_seconds, seconds_between

logger = logging.getLogger(__name__)

UNVERSIONED = "unversioned"


class LedgerService:
    """Registration, loans, endorsements, servicing and audit reads"""

    def __init__(
        self,
        uow: UnitOfWork,
        engine: PricingEngine,
        fraud_detector: FraudDetector,
        aggregator: Optional[LoanAggregator] = None,
        config: Settings = settings,
        deadline_check: DeadlineCheck = funding_deadline_passed,
    ):
        self.uow = uow
        self.clock = uow.clock
        self.engine = engine
        self.fraud_detector = fraud_detector
        self.aggregator = aggregator or LoanAggregator()
        self.config = config
        self.deadline_check = deadline_check

    # ---------------------------------------------------------------- users

    @timed("register_user")
    def register_user(self, name: str, wallet: str, role: UserRole = UserRole.BORROWER) -> User:
        """
        Create an account and run the multi-account check against it.

        Flow:
        1. Normalize the wallet and reject duplicates
        2. Persist the user with the default score
        3. Evaluate the registration burst and log the judgment
        4. Persist any alert as a FraudFlag; HIGH risk puts the user under review
        """
        request = parse(RegisterUserRequest, name=name, wallet=wallet, role=role)
        wallet = request.wallet.lower()

        with self.uow.begin() as tx:
            # 1. Duplicate wallets, whatever their case, are rejected
            if tx.storage.users.find_by_wallet(wallet) is not None:
                raise Conflict(f"wallet {wallet} is already registered")

            # 2. Persist
            now = self.clock.now()
            user = User(
                id=str(uuid.uuid4()),
                name=request.name,
                wallet=wallet,
                role=request.role,
                score=self.config.default_user_score,
                status=UserStatus.ACTIVE,
                created_at=now,
            )
            tx.storage.users.add(user)
            tx.events.append(
                user.id,
                EventType.USER_REGISTERED,
                {"wallet": wallet, "role": user.role, "score": user.score},
            )

            # 3. Multi-account heuristic over everyone registered inside the window
            window = self.fraud_detector.window_seconds
            snapshot = tx.storage.users.created_between(add_seconds(now, -window), add_seconds(now, window))
            alert = self.fraud_detector.detect_multi_account(snapshot, user.id)
            version = self._active_version(tx)
            tx.decisions.record(
                DecisionType.FRAUD_MULTI_ACCOUNT,
                MultiAccountInputs(
                    user_id=user.id,
                    created_at=now.isoformat(),
                    window_seconds=window,
                    high_severity_threshold=self.fraud_detector.high_severity_threshold,
                    candidate_user_ids=tuple(sorted(u.id for u in snapshot if u.id != user.id)),
                ),
                MultiAccountOutputs(
                    alert=alert is not None,
                    severity=alert.severity.value if alert else None,
                    correlated_user_ids=tuple(alert.details["correlated_user_ids"]) if alert else (),
                ),
                version,
                reference_id=user.id,
            )

            # 4. Flag and review
            if alert is not None:
                self._raise_flag(tx, alert)
                review = should_trigger_review([alert])
                if review.under_review:
                    tx.storage.users.set_status(user.id, UserStatus.UNDER_REVIEW)
                    tx.events.append(
                        user.id,
                        EventType.USER_STATUS_CHANGED,
                        {
                            "previous_status": user.status,
                            "new_status": UserStatus.UNDER_REVIEW,
                            "risk_score": review.risk_score,
                            "reason": review.reason,
                        },
                    )
                    user.status = UserStatus.UNDER_REVIEW
                    user.score = self._apply_score_change(
                        tx, user, ScoreChange(under_review=True), version, "under_review"
                    )
                log_fraud_alert(user.id, alert.fraud_type.value, alert.severity.value, review.under_review)

        logger.info("User registered", extra={"user_id": user.id, "role": user.role.value, "status": user.status.value})
        return user

    @timed("login_or_switch_role")
    def login_or_switch_role(self, wallet: str, role: UserRole) -> User:
        """Log a user in; acting under a different role is recorded as ROLE_CHANGED"""
        request = parse(LoginRequest, wallet=wallet, role=role)
        wallet = request.wallet.lower()

        with self.uow.begin() as tx:
            user = tx.storage.users.find_by_wallet(wallet)
            if user is None:
                raise NotFound("User", wallet)
            if user.status == UserStatus.BLOCKED:
                raise Conflict(f"user {user.id} is blocked")

            if user.role != request.role:
                tx.storage.users.set_role(user.id, request.role)
                tx.events.append(
                    user.id,
                    EventType.ROLE_CHANGED,
                    {"previous_role": user.role, "new_role": request.role},
                )
                logger.info(
                    "Role changed",
                    extra={"user_id": user.id, "previous_role": user.role.value, "new_role": request.role.value},
                )
                user.role = request.role

        return user

    # ---------------------------------------------------------------- loans

    @timed("create_loan")
    def create_loan(self, borrower_id: str, principal: int, installment_count: int) -> Loan:
        """
        Price and open a loan for funding.

        The tier is chosen from the active parameter version and copied onto
        the loan. A tier with no coverage requirement activates immediately.
        """
        request = parse(
            CreateLoanRequest,
            borrower_id=borrower_id,
            principal=principal,
            installment_count=installment_count,
        )

        with self.uow.begin() as tx:
            borrower = self._require_user(tx, request.borrower_id)
            if borrower.role != UserRole.BORROWER:
                raise ValidationError(f"user {borrower.id} is not acting as a borrower")
            if borrower.status != UserStatus.ACTIVE:
                raise Conflict(f"borrower {borrower.id} is {borrower.status.value}")

            parameters = load_active_parameters(tx.storage, self.engine)
            quote = self.engine.quote(borrower.score, request.principal, parameters.version)

            now = self.clock.now()
            loan = Loan(
                id=str(uuid.uuid4()),
                borrower_id=borrower.id,
                principal=request.principal,
                pricing=TierSnapshot.from_tier(quote.tier, parameters.version),
                installment_count=request.installment_count,
                state=LoanState.PROPOSED,
                created_at=now,
                funding_deadline=add_seconds(now, self.config.funding_window_seconds),
            )

            tx.decisions.record(
                DecisionType.PRICING,
                PricingInputs(
                    borrower_id=borrower.id,
                    score=borrower.score,
                    principal=request.principal,
                    installment_count=request.installment_count,
                ),
                PricingOutputs(
                    tier_name=quote.tier.name,
                    rate_bps=quote.tier.rate_bps,
                    max_principal=quote.tier.max_principal,
                    min_coverage_pct=quote.tier.min_coverage_pct,
                    required_stake=quote.required_stake,
                ),
                parameters.version,
                reference_id=loan.id,
            )

            tx.storage.loans.add(loan)
            tx.events.append(
                loan.id,
                EventType.LOAN_CREATED,
                {
                    "borrower_id": borrower.id,
                    "principal": loan.principal,
                    "installment_count": loan.installment_count,
                    "tier_name": loan.pricing.tier_name,
                    "rate_bps": loan.pricing.rate_bps,
                    "min_coverage_pct": loan.pricing.min_coverage_pct,
                    "required_stake": quote.required_stake,
                    "parameters_version": parameters.version,
                    "funding_deadline": loan.funding_deadline,
                },
            )
            self._change_state(tx, loan, LoanState.FUNDING)
            self._try_activate(tx, loan, [])

            return tx.storage.loans.get(loan.id)

    @timed("add_endorsement")
    def add_endorsement(self, loan_id: str, supporter_id: str, staked_amount: int) -> Endorsement:
        """
        Stake on a FUNDING loan.

        The loan row is locked for the rest of the transaction. The writer
        whose stake crosses the coverage requirement activates the loan;
        anyone arriving after sees it ACTIVE and changes nothing.
        """
        request = parse(EndorseRequest, loan_id=loan_id, supporter_id=supporter_id, staked_amount=staked_amount)

        with self.uow.begin() as tx:
            loan = tx.storage.loans.get_for_update(request.loan_id)
            if loan is None:
                raise NotFound("Loan", request.loan_id)
            if loan.state != LoanState.FUNDING:
                raise Conflict(f"loan {loan.id} is {loan.state.value}, not accepting endorsements")

            now = self.clock.now()
            if self.deadline_check(loan, now):
                raise Conflict(f"funding window for loan {loan.id} has closed")

            supporter = self._require_user(tx, request.supporter_id)
            if supporter.role != UserRole.SUPPORTER:
                raise ValidationError(f"user {supporter.id} is not acting as a supporter")
            if supporter.status != UserStatus.ACTIVE:
                raise Conflict(f"supporter {supporter.id} is {supporter.status.value}")
            if supporter.id == loan.borrower_id:
                raise ValidationError("borrowers cannot endorse their own loan")
            if tx.storage.endorsements.find(loan.id, supporter.id) is not None:
                raise Conflict(f"supporter {supporter.id} already endorsed loan {loan.id}")

            cap_pct = self.config.max_stake_per_supporter_pct
            if request.staked_amount * 100 > loan.principal * cap_pct:
                raise ValidationError(f"a single stake may not exceed {cap_pct}% of the principal")

            existing = tx.storage.endorsements.for_loan(loan.id)
            endorsement = Endorsement(
                id=str(uuid.uuid4()),
                loan_id=loan.id,
                supporter_id=supporter.id,
                staked_amount=request.staked_amount,
                created_at=now,
            )
            tx.storage.endorsements.add(endorsement)
            endorsements = existing + [endorsement]

            tx.events.append(
                loan.id,
                EventType.ENDORSEMENT_ADDED,
                {
                    "endorsement_id": endorsement.id,
                    "supporter_id": supporter.id,
                    "staked_amount": endorsement.staked_amount,
                    "total_staked": total_staked(endorsements),
                    "coverage_before": round(coverage_pct(loan, existing), 4),
                    "coverage_after": round(coverage_pct(loan, endorsements), 4),
                },
            )
            self._try_activate(tx, loan, endorsements)

        return endorsement

    @timed("record_payment")
    def record_payment(self, loan_id: str, sequence: Optional[int] = None) -> Installment:
        """
        Pay one installment in full: the given sequence, or the earliest unpaid.

        Overdue marking runs first so a late payment is recorded as late.
        The loan closes as REPAID once every installment is PAID; concurrent
        payers re-evaluate that safely and only one transition happens.
        """
        request = parse(PaymentRequest, loan_id=loan_id, sequence=sequence)

        with self.uow.begin() as tx:
            loan = tx.storage.loans.get_for_update(request.loan_id)
            if loan is None:
                raise NotFound("Loan", request.loan_id)
            if loan.state != LoanState.ACTIVE:
                raise Conflict(f"loan {loan.id} is {loan.state.value}, not accepting payments")

            parameters = load_parameters(tx.storage, self.engine, loan.pricing.parameters_version)
            self._mark_overdue(tx, loan, parameters)

            installments = tx.storage.installments.for_loan(loan.id)
            target = self._payment_target(loan, installments, request.sequence)
            check_installment_transition(target.status, InstallmentStatus.PAID)

            now = self.clock.now()
            paid = tx.storage.installments.transition(
                target.id,
                [InstallmentStatus.PENDING, InstallmentStatus.OVERDUE],
                InstallmentStatus.PAID,
                paid_at=now,
            )
            if not paid:
                raise Conflict(f"installment {target.sequence} of loan {loan.id} is already paid")

            late = target.status == InstallmentStatus.OVERDUE
            tx.events.append(
                loan.id,
                EventType.PAYMENT_RECORDED,
                {
                    "installment_id": target.id,
                    "sequence": target.sequence,
                    "amount": target.amount_due,
                    "previous_status": target.status,
                    "late": late,
                    "seconds_past_due": max(0, int(seconds_between(target.due_at, now))),
                },
            )

            if not late:
                borrower = self._require_user(tx, loan.borrower_id)
                self._apply_score_change(
                    tx, borrower, ScoreChange(on_time_payments=1), loan.pricing.parameters_version, "on_time_payment"
                )

            installments = tx.storage.installments.for_loan(loan.id)
            if self.aggregator.is_fully_repaid(loan, installments):
                self._change_state(tx, loan, LoanState.REPAID)

            target.status = InstallmentStatus.PAID
            target.paid_at = now

        logger.info(
            "Payment recorded",
            extra={"loan_id": loan_id, "sequence": target.sequence, "late": late},
        )
        return target

    @timed("refresh_loan")
    def refresh_loan(self, loan_id: str) -> LoanView:
        """
        Persist installments that slipped past their grace period, then apply
        the default policy of the loan's parameter version.
        """
        with self.uow.begin() as tx:
            loan = tx.storage.loans.get_for_update(loan_id)
            if loan is None:
                raise NotFound("Loan", loan_id)

            if loan.state == LoanState.ACTIVE:
                parameters = load_parameters(tx.storage, self.engine, loan.pricing.parameters_version)
                marked = self._mark_overdue(tx, loan, parameters)
                self._apply_default_policy(tx, loan, parameters, evaluated=bool(marked))

            return self._loan_view(tx, loan_id)

    @timed("expire_funding")
    def expire_funding(self, loan_id: str, deadline_passed: Optional[DeadlineCheck] = None) -> Loan:
        """Cancel a FUNDING loan whose deadline passed while coverage is still short; otherwise no-op"""
        check = deadline_passed or self.deadline_check

        with self.uow.begin() as tx:
            loan = tx.storage.loans.get_for_update(loan_id)
            if loan is None:
                raise NotFound("Loan", loan_id)

            endorsements = tx.storage.endorsements.for_loan(loan.id)
            if self.aggregator.should_cancel(loan, endorsements, self.clock.now(), check):
                self._change_state(
                    tx,
                    loan,
                    LoanState.CANCELLED,
                    {
                        "reason": "funding_expired",
                        "total_staked": total_staked(endorsements),
                        "coverage_pct": round(coverage_pct(loan, endorsements), 4),
                    },
                )

            return tx.storage.loans.get(loan.id)

    # ---------------------------------------------------------------- defaults

    @timed("mark_default")
    def mark_default(self, loan_id: str, reason: str) -> Loan:
        """
        Operator default of an ACTIVE loan.

        Overdue marking runs first, then the default must be justified: at
        least two installments overdue, or one overdue by more than three
        grace periods. An unjustified request is rejected and writes nothing.
        """
        request = parse(MarkDefaultRequest, loan_id=loan_id, reason=reason)

        with self.uow.begin() as tx:
            loan = tx.storage.loans.get_for_update(request.loan_id)
            if loan is None:
                raise NotFound("Loan", request.loan_id)
            if loan.state != LoanState.ACTIVE:
                raise Conflict(f"loan {loan.id} is {loan.state.value}, only ACTIVE loans can default")

            parameters = load_parameters(tx.storage, self.engine, loan.pricing.parameters_version)
            self._mark_overdue(tx, loan, parameters)

            installments = tx.storage.installments.for_loan(loan.id)
            justification = default_justification(installments, self.clock.now(), parameters.grace_period_seconds)
            if not justification.justified:
                raise Conflict(
                    f"default of loan {loan.id} is not justified: "
                    f"{justification.overdue_installments} overdue installment(s), none severely late"
                )

            _, run = self.aggregator.default_assessment(
                loan, installments, parameters.default_after_consecutive_overdue
            )
            tx.decisions.record(
                DecisionType.DEFAULT,
                DefaultInputs(
                    loan_id=loan.id,
                    consecutive_overdue=run,
                    threshold=parameters.default_after_consecutive_overdue,
                    overdue_installments=justification.overdue_installments,
                    severely_overdue=justification.severely_overdue,
                    operator_reason=request.reason,
                ),
                DefaultOutputs(defaulted=True, trigger="operator"),
                parameters.version,
                reference_id=loan.id,
            )
            self._change_state(
                tx,
                loan,
                LoanState.DEFAULTED,
                {
                    "trigger": "operator",
                    "reason": request.reason,
                    "overdue_installments": justification.overdue_installments,
                },
            )

            borrower = self._require_user(tx, loan.borrower_id)
            self._apply_score_change(tx, borrower, ScoreChange(defaulted=True), parameters.version, "loan_defaulted")

            return tx.storage.loans.get(loan.id)

    @timed("liquidate_loan")
    def liquidate_loan(self, loan_id: str, borrower_collateral: int = 0) -> WaterfallResult:
        """
        Run the loss waterfall over a DEFAULTED loan and close it as LIQUIDATED.

        The loss is the unpaid installment balance. The breakdown is logged
        as a WATERFALL decision; moving the funds is left to the caller.
        """
        request = parse(LiquidateRequest, loan_id=loan_id, borrower_collateral=borrower_collateral)

        with self.uow.begin() as tx:
            loan = tx.storage.loans.get_for_update(request.loan_id)
            if loan is None:
                raise NotFound("Loan", request.loan_id)
            if loan.state != LoanState.DEFAULTED:
                raise Conflict(f"loan {loan.id} is {loan.state.value}, only DEFAULTED loans can be liquidated")

            outstanding, stakes = self._loss_inputs(tx, loan)
            result = execute_waterfall(
                outstanding, request.borrower_collateral, stakes, self.config.mutual_fund_available
            )

            tx.decisions.record(
                DecisionType.WATERFALL,
                WaterfallInputs(
                    loan_id=loan.id,
                    outstanding_balance=outstanding,
                    borrower_collateral=request.borrower_collateral,
                    stakes_by_supporter=stakes,
                    mutual_fund_available=self.config.mutual_fund_available,
                ),
                WaterfallOutputs(
                    collateral_used=result.collateral_used,
                    cuts_by_supporter=tuple((c.supporter_id, c.cut) for c in result.cuts),
                    fund_used=result.fund_used,
                    total_recovered=result.total_recovered,
                    shortfall=result.shortfall,
                ),
                loan.pricing.parameters_version,
                reference_id=loan.id,
            )
            tx.events.append(
                loan.id,
                EventType.WATERFALL_EXECUTED,
                {
                    "outstanding_balance": outstanding,
                    "collateral_used": result.collateral_used,
                    "cuts": [
                        {"supporter_id": c.supporter_id, "staked": c.staked, "cut": c.cut, "released": c.released}
                        for c in result.cuts
                    ],
                    "fund_used": result.fund_used,
                    "total_recovered": result.total_recovered,
                    "shortfall": result.shortfall,
                },
            )
            self._change_state(tx, loan, LoanState.LIQUIDATED, {"shortfall": result.shortfall})

        logger.info(
            "Loan liquidated",
            extra={"loan_id": loan_id, "total_recovered": result.total_recovered, "shortfall": result.shortfall},
        )
        return result

    def preview_liquidation(
        self, loan_id: str, borrower_collateral: int = 0, expected_recovery: int = 0
    ) -> WaterfallResult:
        """Waterfall breakdown for an ACTIVE or DEFAULTED loan as it stands now; nothing is written"""
        request = parse(LiquidateRequest, loan_id=loan_id, borrower_collateral=borrower_collateral)
        if expected_recovery < 0:
            raise ValidationError("expected recovery must be non-negative")

        with self.uow.begin() as tx:
            loan = tx.storage.loans.get(request.loan_id)
            if loan is None:
                raise NotFound("Loan", request.loan_id)
            if loan.state not in (LoanState.ACTIVE, LoanState.DEFAULTED):
                raise Conflict(f"loan {loan.id} is {loan.state.value}, nothing to liquidate")

            outstanding, stakes = self._loss_inputs(tx, loan)
            return simulate_waterfall(
                outstanding,
                expected_recovery,
                request.borrower_collateral,
                stakes,
                self.config.mutual_fund_available,
            )

    # ---------------------------------------------------------------- reads

    def get_loan_view(self, loan_id: str) -> LoanView:
        """Loan with figures computed at the current time; nothing is written"""
        with self.uow.begin() as tx:
            return self._loan_view(tx, loan_id)

    def get_user_view(self, user_id: str) -> UserView:
        with self.uow.begin() as tx:
            user = self._require_user(tx, user_id)
            now = self.clock.now()

            summaries = []
            for loan in tx.storage.loans.for_borrower(user.id):
                installments = self._effective_installments(tx, loan, now)
                summaries.append(
                    LoanSummary(
                        loan_id=loan.id,
                        state=loan.state,
                        principal=loan.principal,
                        amounts_owed=amounts_owed(installments),
                        overdue_amount=overdue_amount(installments),
                    )
                )

            endorsements = tx.storage.endorsements.for_supporter(user.id)
            return UserView(
                user=user,
                fraud_flags=tx.storage.fraud_flags.for_user(user.id),
                borrowed=summaries,
                endorsements=endorsements,
                total_borrowed=sum(s.principal for s in summaries if s.state != LoanState.CANCELLED),
                total_staked=total_staked(endorsements),
            )

    def list_events_for_reference(self, reference_id: str) -> List[Event]:
        with self.uow.begin() as tx:
            return tx.events.list_for_reference(reference_id)

    def list_decisions_for_reference(self, reference_id: str) -> List[DecisionLogEntry]:
        with self.uow.begin() as tx:
            return tx.decisions.list_for_reference(reference_id)

    def verify_decision(self, entry_id: str) -> DecisionLogEntry:
        with self.uow.begin() as tx:
            return tx.decisions.verify(entry_id)

    def verify_event(self, event_id: str) -> Event:
        with self.uow.begin() as tx:
            return tx.events.verify(event_id)

    # ---------------------------------------------------------------- helpers

    def _require_user(self, tx: Transaction, user_id: str) -> User:
        user = tx.storage.users.get(user_id)
        if user is None:
            raise NotFound("User", user_id)
        return user

    def _active_version(self, tx: Transaction) -> str:
        active = tx.storage.parameters.get_active()
        return active.version if active else UNVERSIONED

    def _change_state(self, tx: Transaction, loan: Loan, target: LoanState, detail: Optional[dict] = None) -> bool:
        """Compare-and-set the loan state; False when a concurrent writer already moved it"""
        check_loan_transition(loan.state, target)
        now = self.clock.now()
        if not tx.storage.loans.transition(loan.id, loan.state, target, at=now):
            logger.info(
                "Loan transition lost to a concurrent writer",
                extra={"loan_id": loan.id, "from_state": loan.state.value, "to_state": target.value},
            )
            return False

        previous = loan.state
        tx.events.append(
            loan.id,
            EventType.LOAN_STATE_CHANGED,
            {"from_state": previous, "to_state": target, **(detail or {})},
        )
        loan.state = target
        if target == LoanState.ACTIVE:
            loan.activated_at = now
        elif target in (LoanState.REPAID, LoanState.DEFAULTED, LoanState.CANCELLED):
            loan.closed_at = now

        log_loan_transition(loan.id, previous.value, target.value)
        record_loan_transition(target.value)
        return True

    def _try_activate(self, tx: Transaction, loan: Loan, endorsements: List[Endorsement]) -> bool:
        """FUNDING -> ACTIVE once coverage is met; schedules installments and checks concentration"""
        if not self.aggregator.can_activate(loan, endorsements):
            return False
        if not self._change_state(
            tx,
            loan,
            LoanState.ACTIVE,
            {"coverage_pct": round(coverage_pct(loan, endorsements), 4)},
        ):
            return False

        parameters = load_parameters(tx.storage, self.engine, loan.pricing.parameters_version)
        installments = generate_installment_plan(
            loan.id,
            loan.principal,
            loan.pricing.rate_bps,
            loan.installment_count,
            parameters.installment_cadence_seconds,
            loan.activated_at,
        )
        tx.storage.installments.add_all(installments)
        tx.events.append(
            loan.id,
            EventType.INSTALLMENTS_SCHEDULED,
            {
                "installment_count": len(installments),
                "total_repayable": sum(i.amount_due for i in installments),
                "cadence_seconds": parameters.installment_cadence_seconds,
                "first_due_at": installments[0].due_at if installments else None,
            },
        )

        if endorsements:
            self._check_concentration(tx, loan, endorsements)
        return True

    def _check_concentration(self, tx: Transaction, loan: Loan, endorsements: List[Endorsement]) -> None:
        alert = self.fraud_detector.detect_concentration(loan.id, endorsements)
        stakes = stakes_by_supporter(endorsements)
        tx.decisions.record(
            DecisionType.FRAUD_CONCENTRATION,
            ConcentrationInputs(
                loan_id=loan.id,
                stakes_by_supporter=tuple(sorted(stakes.items())),
                threshold=self.fraud_detector.concentration_threshold,
            ),
            ConcentrationOutputs(
                alert=alert is not None,
                severity=alert.severity.value if alert else None,
                dominant_supporter_id=alert.subject_user_id if alert else None,
                concentration_ratio=alert.details["concentration_ratio"] if alert else 0.0,
            ),
            loan.pricing.parameters_version,
            reference_id=loan.id,
        )
        if alert is not None:
            self._raise_flag(tx, alert)
            log_fraud_alert(alert.subject_user_id, alert.fraud_type.value, alert.severity.value, False)

    def _raise_flag(self, tx: Transaction, alert: FraudAlert) -> FraudFlag:
        flag = FraudFlag(
            id=str(uuid.uuid4()),
            user_id=alert.subject_user_id,
            fraud_type=alert.fraud_type,
            severity=alert.severity,
            created_at=self.clock.now(),
            details=normalize(alert.details),
        )
        tx.storage.fraud_flags.add(flag)
        tx.events.append(
            alert.subject_user_id,
            EventType.FRAUD_FLAG_RAISED,
            {"flag_id": flag.id, "fraud_type": flag.fraud_type, "severity": flag.severity, "details": flag.details},
        )
        record_fraud_alert(flag.fraud_type.value, flag.severity.value)
        return flag

    def _apply_score_change(
        self, tx: Transaction, user: User, change: ScoreChange, version: str, reason: str
    ) -> int:
        """Write the adjusted score with its decision entry and event; returns the new score"""
        if change.is_empty:
            return user.score

        new_score = adjust_score(user.score, change)
        tx.decisions.record(
            DecisionType.SCORE_ADJUSTMENT,
            ScoreAdjustmentInputs(
                user_id=user.id,
                previous_score=user.score,
                on_time_payments=change.on_time_payments,
                overdue_installments=change.overdue_installments,
                defaulted=change.defaulted,
                under_review=change.under_review,
            ),
            ScoreAdjustmentOutputs(new_score=new_score),
            version,
            reference_id=user.id,
        )
        tx.storage.users.set_score(user.id, new_score)
        tx.events.append(
            user.id,
            EventType.SCORE_RECALCULATED,
            {"previous_score": user.score, "new_score": new_score, "reason": reason},
        )
        return new_score

    def _mark_overdue(self, tx: Transaction, loan: Loan, parameters: SystemParameters) -> List[Installment]:
        """Persist PENDING -> OVERDUE for every installment past its grace period"""
        now = self.clock.now()
        marked = []
        for installment in newly_overdue(
            tx.storage.installments.for_loan(loan.id), now, parameters.grace_period_seconds
        ):
            if not tx.storage.installments.transition(
                installment.id, [InstallmentStatus.PENDING], InstallmentStatus.OVERDUE
            ):
                continue
            tx.events.append(
                loan.id,
                EventType.INSTALLMENT_OVERDUE,
                {
                    "installment_id": installment.id,
                    "sequence": installment.sequence,
                    "amount_due": installment.amount_due,
                    "due_at": installment.due_at,
                    "seconds_late": int(seconds_between(installment.due_at, now)),
                },
            )
            marked.append(installment)

        if marked:
            borrower = self._require_user(tx, loan.borrower_id)
            self._apply_score_change(
                tx,
                borrower,
                ScoreChange(overdue_installments=len(marked)),
                parameters.version,
                "installments_overdue",
            )
        return marked

    def _apply_default_policy(
        self, tx: Transaction, loan: Loan, parameters: SystemParameters, evaluated: bool
    ) -> bool:
        """
        ACTIVE -> DEFAULTED when the consecutive-overdue run reaches the
        version's threshold. No threshold means no automatic default. The
        judgment is logged whenever something new went overdue or the loan
        defaults.
        """
        threshold = parameters.default_after_consecutive_overdue
        if threshold is None:
            return False

        installments = tx.storage.installments.for_loan(loan.id)
        should_default, run = self.aggregator.default_assessment(loan, installments, threshold)
        if not (evaluated or should_default):
            return False

        tx.decisions.record(
            DecisionType.DEFAULT,
            DefaultInputs(loan_id=loan.id, consecutive_overdue=run, threshold=threshold),
            DefaultOutputs(defaulted=should_default),
            parameters.version,
            reference_id=loan.id,
        )
        if not should_default:
            return False

        if not self._change_state(
            tx, loan, LoanState.DEFAULTED, {"consecutive_overdue": run, "threshold": threshold}
        ):
            return False

        borrower = self._require_user(tx, loan.borrower_id)
        self._apply_score_change(tx, borrower, ScoreChange(defaulted=True), parameters.version, "loan_defaulted")
        return True

    def _loss_inputs(self, tx: Transaction, loan: Loan) -> Tuple[int, Tuple[Tuple[str, int], ...]]:
        """(unpaid balance, stakes ordered by supporter id) for the loss waterfall"""
        outstanding = amounts_owed(tx.storage.installments.for_loan(loan.id))
        stakes = tuple(sorted(stakes_by_supporter(tx.storage.endorsements.for_loan(loan.id)).items()))
        return outstanding, stakes

    def _payment_target(self, loan: Loan, installments: List[Installment], sequence: Optional[int]) -> Installment:
        if sequence is not None:
            for installment in installments:
                if installment.sequence == sequence:
                    if installment.status == InstallmentStatus.PAID:
                        raise Conflict(f"installment {sequence} of loan {loan.id} is already paid")
                    return installment
            raise NotFound("Installment", f"{loan.id}#{sequence}")

        unpaid = [i for i in installments if i.status != InstallmentStatus.PAID]
        if not unpaid:
            raise Conflict(f"loan {loan.id} has no unpaid installments")
        return min(unpaid, key=lambda i: i.sequence)

    def _effective_installments(self, tx: Transaction, loan: Loan, now) -> List[Installment]:
        installments = tx.storage.installments.for_loan(loan.id)
        if loan.state != LoanState.ACTIVE or not installments:
            return installments
        parameters = load_parameters(tx.storage, self.engine, loan.pricing.parameters_version)
        return with_effective_status(installments, now, parameters.grace_period_seconds)

    def _loan_view(self, tx: Transaction, loan_id: str) -> LoanView:
        loan = tx.storage.loans.get(loan_id)
        if loan is None:
            raise NotFound("Loan", loan_id)

        installments = self._effective_installments(tx, loan, self.clock.now())
        endorsements = tx.storage.endorsements.for_loan(loan.id)
        return LoanView(
            loan=loan,
            installments=installments,
            endorsements=endorsements,
            figures=self.aggregator.figures(loan, installments, endorsements),
        )
