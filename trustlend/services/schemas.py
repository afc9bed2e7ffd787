"""Pydantic schemas validating ledger commands before they reach the core"""

from typing import List, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, Field

from trustlend.domain.exceptions import ValidationError
from trustlend.domain.models import PricingTier, UserRole

WALLET_PATTERN = r"^0x[a-fA-F0-9]{40}$"
VERSION_PATTERN = r"^v\d+\.\d+\.\d+$"

Command = TypeVar("Command", bound=BaseModel)


def parse(model: Type[Command], **data) -> Command:
    """Build a command, reporting pydantic failures as a domain ValidationError"""
    try:
        return model(**data)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"invalid {model.__name__}: {problems}") from e


class RegisterUserRequest(BaseModel):
    """New account registration"""

    name: str = Field(..., min_length=1, max_length=100)
    wallet: str = Field(..., pattern=WALLET_PATTERN, description="Wallet address, any case")
    role: UserRole


class LoginRequest(BaseModel):
    """Login with the role the user wants to act as"""

    wallet: str = Field(..., pattern=WALLET_PATTERN)
    role: UserRole


class CreateLoanRequest(BaseModel):
    borrower_id: str = Field(..., min_length=1)
    principal: int = Field(..., gt=0, description="Principal in micro-units")
    installment_count: int = Field(..., gt=0, le=365)


class EndorseRequest(BaseModel):
    loan_id: str = Field(..., min_length=1)
    supporter_id: str = Field(..., min_length=1)
    staked_amount: int = Field(..., gt=0)


class PaymentRequest(BaseModel):
    loan_id: str = Field(..., min_length=1)
    sequence: Optional[int] = Field(None, ge=1, description="Installment to pay; earliest unpaid by default")


class MarkDefaultRequest(BaseModel):
    loan_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=500, description="Operator justification")


class LiquidateRequest(BaseModel):
    loan_id: str = Field(..., min_length=1)
    borrower_collateral: int = Field(0, ge=0, description="Collateral seized from the borrower, micro-units")


class TierSchema(BaseModel):
    name: str = Field(..., min_length=1, max_length=32)
    score_min: int = Field(..., ge=0, le=100)
    score_max: int = Field(..., ge=0, le=100)
    rate_bps: int = Field(..., ge=0, le=10_000)
    max_principal: int = Field(..., gt=0)
    min_coverage_pct: int = Field(..., ge=0, le=100)

    def to_tier(self) -> PricingTier:
        return PricingTier(**self.model_dump())


class PublishParametersRequest(BaseModel):
    version: str = Field(..., pattern=VERSION_PATTERN)
    tiers: List[TierSchema] = Field(..., min_length=1)
    grace_period_seconds: int = Field(..., gt=0)
    installment_cadence_seconds: int = Field(..., gt=0)
    default_after_consecutive_overdue: Optional[int] = Field(None, ge=1)
