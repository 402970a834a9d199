"""
Prepayment Module

Early settlement quotes and the benefit a borrower gets from settling a loan
before maturity.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Dict, Optional
from enum import Enum
import logging

from .config import EngineConfig, get_config
from .currency import Money
from .exceptions import StateError, ValidationError
from .generator import ScheduleGenerator
from .logging_config import log_action
from .terms import LoanApplicationTerms, InterestMethod, coerce_date, coerce_decimal

logger = logging.getLogger(__name__)


class LoanStatus(Enum):
    """Loan lifecycle states"""
    SUBMITTED_AND_PENDING_APPROVAL = "submitted_and_pending_approval"
    APPROVED = "approved"
    ACTIVE = "active"                              # Disbursed and repaying
    WITHDRAWN_BY_CLIENT = "withdrawn_by_client"
    REJECTED = "rejected"
    CLOSED_OBLIGATIONS_MET = "closed_obligations_met"
    CLOSED_WRITTEN_OFF = "closed_written_off"
    CLOSED_RESCHEDULE = "closed_reschedule"
    OVERPAID = "overpaid"


@dataclass(frozen=True)
class Loan:
    """Snapshot of a loan's balances as kept by the loan ledger"""
    loan_id: str
    status: LoanStatus
    terms: LoanApplicationTerms
    principal_outstanding: Money
    interest_outstanding: Money = None
    fee_charges_outstanding: Money = None
    penalty_charges_outstanding: Money = None
    interest_paid: Money = None
    annual_interest_rate: Optional[Decimal] = None   # Percent; defaults to the terms rate
    disbursed_on: Optional[date] = None              # Defaults to the expected disbursement date
    last_accrued_on: Optional[date] = None           # Defaults to the disbursement date
    early_repayment_penalty_applicable: bool = False
    early_repayment_penalty_percentage: Decimal = Decimal('0')

    def __post_init__(self):
        currency = self.terms.currency
        if not isinstance(self.status, LoanStatus):
            try:
                object.__setattr__(self, 'status', LoanStatus(self.status))
            except ValueError:
                raise ValidationError(f"Invalid loan status: {self.status!r}") from None

        for name in ('interest_outstanding', 'fee_charges_outstanding',
                     'penalty_charges_outstanding', 'interest_paid'):
            if getattr(self, name) is None:
                object.__setattr__(self, name, Money.zero(currency))

        # Validate currency consistency
        for name in ('principal_outstanding', 'interest_outstanding', 'fee_charges_outstanding',
                     'penalty_charges_outstanding', 'interest_paid'):
            if getattr(self, name).currency != currency:
                raise ValidationError(f"{name} currency must match loan currency {currency.code}")

        if self.annual_interest_rate is None:
            object.__setattr__(self, 'annual_interest_rate', self.terms.interest_rate_per_period)
        else:
            object.__setattr__(self, 'annual_interest_rate',
                               coerce_decimal(self.annual_interest_rate, "annual interest rate"))
        object.__setattr__(self, 'early_repayment_penalty_percentage', coerce_decimal(
            self.early_repayment_penalty_percentage, "early repayment penalty percentage"))

        if self.disbursed_on is None:
            object.__setattr__(self, 'disbursed_on', self.terms.expected_disbursement_date)
        else:
            object.__setattr__(self, 'disbursed_on', coerce_date(self.disbursed_on, "disbursed on"))
        if self.last_accrued_on is None:
            object.__setattr__(self, 'last_accrued_on', self.disbursed_on)
        else:
            object.__setattr__(self, 'last_accrued_on',
                               coerce_date(self.last_accrued_on, "last accrued on"))

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE


@dataclass(frozen=True)
class SettlementBreakdown:
    """Amount needed to close a loan on a given date"""
    transaction_date: date
    principal_portion: Money
    interest_portion: Money          # Includes interest accrued since the last accrual
    fee_charges_portion: Money
    penalty_charges_portion: Money   # Includes the early repayment penalty
    accrued_interest: Money
    early_repayment_penalty: Money
    total_settlement_amount: Money
    additional_principal_required: Money

    def to_dict(self) -> Dict:
        return {
            'transaction_date': self.transaction_date.isoformat(),
            'currency': self.total_settlement_amount.currency.code,
            'principal_portion': str(self.principal_portion.amount),
            'interest_portion': str(self.interest_portion.amount),
            'fee_charges_portion': str(self.fee_charges_portion.amount),
            'penalty_charges_portion': str(self.penalty_charges_portion.amount),
            'accrued_interest': str(self.accrued_interest.amount),
            'early_repayment_penalty': str(self.early_repayment_penalty.amount),
            'total_settlement_amount': str(self.total_settlement_amount.amount),
            'additional_principal_required': str(self.additional_principal_required.amount),
        }


@dataclass(frozen=True)
class BenefitBreakdown:
    """What a borrower saves by settling early"""
    original_loan_end_date: date
    proposed_prepayment_date: date
    total_scheduled_interest: Money
    interest_paid_to_date: Money
    remaining_interest_to_pay: Money
    interest_savings: Money
    days_saved: int
    payments_remaining: int

    def to_dict(self) -> Dict:
        return {
            'original_loan_end_date': self.original_loan_end_date.isoformat(),
            'proposed_prepayment_date': self.proposed_prepayment_date.isoformat(),
            'total_scheduled_interest': str(self.total_scheduled_interest.amount),
            'interest_paid_to_date': str(self.interest_paid_to_date.amount),
            'remaining_interest_to_pay': str(self.remaining_interest_to_pay.amount),
            'interest_savings': str(self.interest_savings.amount),
            'days_saved': self.days_saved,
            'payments_remaining': self.payments_remaining,
        }


class PrepaymentCalculator:
    """Calculates early settlement amounts and savings"""

    def __init__(self, engine_config: Optional[EngineConfig] = None,
                 generator: Optional[ScheduleGenerator] = None):
        self.config = engine_config or get_config()
        self.generator = generator or ScheduleGenerator(self.config)

    def _require_active(self, loan: Loan) -> None:
        if not loan.is_active:
            message = f"Loan {loan.loan_id} is not active (status: {loan.status.value})"
            logger.error(message)
            raise StateError(message, status=loan.status)

    def calculate_settlement(self, loan: Loan, on_date: date, proposed_amount=None,
                             include_early_penalty: bool = True) -> SettlementBreakdown:
        """
        Amount required to settle a loan in full

        Args:
            loan: Loan snapshot
            on_date: Date of the proposed settlement
            proposed_amount: Optional amount the borrower offers
            include_early_penalty: Whether to charge the early repayment penalty

        Returns:
            SettlementBreakdown with the shortfall against the proposed amount

        Raises:
            StateError: If the loan is not active
        """
        self._require_active(loan)
        on_date = coerce_date(on_date, "settlement date")
        currency = loan.terms.currency
        principal = loan.principal_outstanding

        accrued = Money.zero(currency)
        if loan.terms.interest_method == InterestMethod.DECLINING_BALANCE:
            days = (on_date - loan.last_accrued_on).days
            if days > 0:
                daily_rate = (loan.annual_interest_rate / Decimal('100')
                              / Decimal(self.config.accrual_days_in_year))
                accrued = principal * (daily_rate * Decimal(days))

        penalty = Money.zero(currency)
        if (include_early_penalty and loan.early_repayment_penalty_applicable
                and loan.early_repayment_penalty_percentage > 0):
            penalty = principal * (loan.early_repayment_penalty_percentage / Decimal('100'))

        interest = loan.interest_outstanding + accrued
        penalties = loan.penalty_charges_outstanding + penalty
        total = principal + interest + loan.fee_charges_outstanding + penalties

        shortfall = Money.zero(currency)
        if proposed_amount is not None:
            if not isinstance(proposed_amount, Money):
                proposed_amount = Money.of(currency, proposed_amount)
            if proposed_amount < total:
                shortfall = total - proposed_amount

        log_action(logger, "info", "Calculated settlement amount",
                   action="calculate_settlement", resource=loan.loan_id,
                   extra={
                       "transaction_date": on_date.isoformat(),
                       "total_settlement_amount": total.to_string(),
                       "accrued_interest": str(accrued.amount),
                       "early_repayment_penalty": str(penalty.amount),
                   })

        return SettlementBreakdown(
            transaction_date=on_date,
            principal_portion=principal,
            interest_portion=interest,
            fee_charges_portion=loan.fee_charges_outstanding,
            penalty_charges_portion=penalties,
            accrued_interest=accrued,
            early_repayment_penalty=penalty,
            total_settlement_amount=total,
            additional_principal_required=shortfall,
        )

    def calculate_benefit(self, loan: Loan, on_date: date) -> BenefitBreakdown:
        """
        Interest and time saved by settling on a date

        Raises:
            StateError: If the loan is not active
        """
        self._require_active(loan)
        on_date = coerce_date(on_date, "prepayment date")
        currency = loan.terms.currency

        schedule = self.generator.generate(loan.terms)
        settlement = self.calculate_settlement(loan, on_date)

        scheduled_interest = Money(schedule.total_interest, currency)
        savings = scheduled_interest - loan.interest_paid - settlement.interest_portion
        if savings.is_negative():
            savings = Money.zero(currency)

        end_date = schedule.maturity_date
        payments_remaining = sum(1 for p in schedule.repayment_periods if p.due_date > on_date)

        return BenefitBreakdown(
            original_loan_end_date=end_date,
            proposed_prepayment_date=on_date,
            total_scheduled_interest=scheduled_interest,
            interest_paid_to_date=loan.interest_paid,
            remaining_interest_to_pay=settlement.interest_portion,
            interest_savings=savings,
            days_saved=max(0, (end_date - on_date).days),
            payments_remaining=payments_remaining,
        )
