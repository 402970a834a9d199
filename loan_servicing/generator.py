"""
Schedule Generator Module

Turns loan application terms into a full repayment schedule: disbursement
period, optional down payment, and one repayment period per installment under
flat or declining-balance interest and equal-installment or equal-principal
amortization.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
import logging

from .config import EngineConfig, get_config
from .currency import Money
from .exceptions import CalculationError, LoanEngineError
from .logging_config import log_action
from .schedule import (
    LoanSchedule, SchedulePeriod, ComponentBalance, PeriodType, round_amount, ZERO
)
from .terms import (
    LoanApplicationTerms, InterestMethod, AmortizationMethod, DownPaymentType,
    add_periods, days_between
)
from .charges import LoanCharge, apply_charges

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownPaymentDetails:
    """Down payment taken at disbursement"""
    down_payment_amount: Money
    down_payment_type: DownPaymentType
    effective_principal_amount: Money
    total_loan_amount: Money
    transaction_date: date
    down_payment_percentage: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            'down_payment_amount': str(self.down_payment_amount.amount),
            'down_payment_type': self.down_payment_type.value,
            'down_payment_percentage': (str(self.down_payment_percentage)
                                        if self.down_payment_percentage is not None else None),
            'effective_principal_amount': str(self.effective_principal_amount.amount),
            'total_loan_amount': str(self.total_loan_amount.amount),
            'transaction_date': self.transaction_date.isoformat(),
            'currency': self.total_loan_amount.currency.code,
        }


def annuity_installment(principal: Decimal, rate: Decimal, count: int) -> Decimal:
    """
    Level installment that amortizes principal over count periods

    Args:
        principal: Amount to amortize
        rate: Periodic rate as a fraction
        count: Number of installments

    Returns:
        Unrounded installment; principal / count when the rate is zero
    """
    if rate == 0:
        return principal / Decimal(count)
    growth = (Decimal('1') + rate) ** count
    return principal * rate * growth / (growth - Decimal('1'))


class ScheduleGenerator:
    """Generates repayment schedules from loan application terms"""

    def __init__(self, engine_config: Optional[EngineConfig] = None):
        self.config = engine_config or get_config()

    def _round(self, value: Decimal) -> Decimal:
        return round_amount(value, self.config.schedule_amount_places)

    def generate(self, terms: LoanApplicationTerms,
                 charges: Iterable[LoanCharge] = ()) -> LoanSchedule:
        """
        Generate the repayment schedule for a loan

        Args:
            terms: Validated loan application terms
            charges: Charges to place on the schedule

        Returns:
            Schedule with period 0 for disbursement followed by the
            installments

        Raises:
            CalculationError: If a term value has no calculation rule
        """
        log_action(logger, "info", "Generating repayment schedule",
                   action="generate_schedule",
                   extra={
                       "principal": str(terms.principal_amount.amount),
                       "currency": terms.currency.code,
                       "number_of_repayments": terms.number_of_repayments,
                       "interest_method": terms.interest_method.value,
                       "amortization_method": terms.amortization_method.value,
                   })

        principal = terms.principal_amount.amount
        disbursement_date = terms.expected_disbursement_date

        periods = [SchedulePeriod(
            period_number=0,
            period_type=PeriodType.DISBURSEMENT,
            from_date=disbursement_date,
            due_date=disbursement_date,
            principal_disbursed=principal,
            principal_balance_outstanding=principal,
        )]

        down_payment = self.calculate_down_payment(terms)
        amortized = principal
        if down_payment is not None:
            amortized = down_payment.effective_principal_amount.amount
            periods.append(SchedulePeriod(
                period_number=1,
                period_type=PeriodType.DOWN_PAYMENT,
                from_date=disbursement_date,
                due_date=disbursement_date,
                principal_balance_outstanding=amortized,
                principal=ComponentBalance.of(down_payment.down_payment_amount.amount),
            ))

        try:
            periods.extend(self._repayment_periods(terms, amortized, first_number=len(periods)))

            schedule = LoanSchedule(
                currency=terms.currency,
                loan_term_in_days=terms.loan_term_in_days,
                principal_disbursed=principal,
                periods=tuple(periods),
                down_payment_amount=(down_payment.down_payment_amount.amount
                                     if down_payment is not None else None),
            )
            schedule = apply_charges(schedule, charges)
        except LoanEngineError as e:
            logger.error(f"Failed to generate repayment schedule: {e}")
            raise

        logger.debug("Generated %d periods, total repayment expected %s",
                     len(schedule.periods), schedule.total_repayment_expected)
        return schedule

    def repayment_dates(self, terms: LoanApplicationTerms) -> List[date]:
        """
        Due dates of all installments

        The first due date sits one repayment interval after the principal
        grace; each later date is measured from that same anchor so that
        month-end clamping never drifts.
        """
        unit = terms.repayment_frequency_type
        anchor = add_periods(terms.expected_disbursement_date, terms.grace_on_principal_payment,
                             unit, terms.days_in_month_type)
        return [
            add_periods(anchor, number * terms.repayment_every, unit, terms.days_in_month_type)
            for number in range(1, terms.number_of_repayments + 1)
        ]

    def calculate_emi(self, terms: LoanApplicationTerms,
                      principal: Optional[Decimal] = None) -> Money:
        """
        Equated installment rounded to currency precision

        Args:
            terms: Loan terms supplying rate, count and interest method
            principal: Amount to amortize, defaults to the terms principal

        Returns:
            Installment amount
        """
        if principal is None:
            principal = terms.principal_amount.amount
        count = terms.number_of_repayments
        rate = terms.periodic_rate

        if terms.interest_method == InterestMethod.FLAT:
            emi = (principal + principal * rate * Decimal(count)) / Decimal(count)
        elif terms.interest_method == InterestMethod.DECLINING_BALANCE:
            emi = annuity_installment(principal, rate, count)
        else:
            raise CalculationError(f"Unsupported interest method: {terms.interest_method}")
        return Money(emi, terms.currency)

    def calculate_down_payment(self, terms: LoanApplicationTerms) -> Optional[DownPaymentDetails]:
        """Down payment details, or None when the terms do not take one"""
        if not terms.enable_down_payment:
            return None

        total = terms.principal_amount
        if terms.down_payment_type == DownPaymentType.FIXED_AMOUNT:
            amount = terms.down_payment_amount.amount
            percentage = None
        else:
            percentage = terms.down_payment_percentage
            amount = self._round(percentage / Decimal('100') * total.amount)

        down_payment = Money(amount, total.currency)
        return DownPaymentDetails(
            down_payment_amount=down_payment,
            down_payment_type=terms.down_payment_type,
            down_payment_percentage=percentage,
            effective_principal_amount=total - down_payment,
            total_loan_amount=total,
            transaction_date=terms.expected_disbursement_date,
        )

    def _repayment_periods(self, terms: LoanApplicationTerms, principal: Decimal,
                           first_number: int) -> List[SchedulePeriod]:
        if terms.interest_method not in (InterestMethod.FLAT, InterestMethod.DECLINING_BALANCE):
            raise CalculationError(f"Unsupported interest method: {terms.interest_method}")
        if terms.amortization_method not in (AmortizationMethod.EQUAL_INSTALLMENTS,
                                             AmortizationMethod.EQUAL_PRINCIPAL):
            raise CalculationError(f"Unsupported amortization method: {terms.amortization_method}")

        count = terms.number_of_repayments
        rate = terms.periodic_rate
        emi = self.calculate_emi(terms, principal).amount
        is_flat = terms.interest_method == InterestMethod.FLAT

        periods = []
        balance = principal
        from_date = terms.expected_disbursement_date
        for index, due_date in enumerate(self.repayment_dates(terms)):
            is_last = index == count - 1
            principal_part, interest = self._split_installment(
                terms, principal, balance, emi, rate, is_flat, is_last)
            balance -= principal_part

            periods.append(SchedulePeriod(
                period_number=first_number + index,
                period_type=PeriodType.REPAYMENT,
                from_date=from_date,
                due_date=due_date,
                principal_balance_outstanding=balance,
                principal=ComponentBalance.of(principal_part),
                interest=ComponentBalance.of(interest),
                days_in_period=days_between(from_date, due_date),
            ))
            from_date = due_date
        return periods

    def _split_installment(self, terms: LoanApplicationTerms, principal: Decimal,
                           balance: Decimal, emi: Decimal, rate: Decimal,
                           is_flat: bool, is_last: bool) -> Tuple[Decimal, Decimal]:
        """Principal and interest of one installment, both rounded"""
        count = Decimal(terms.number_of_repayments)

        if is_flat:
            principal_part = principal / count
            interest = principal * rate
        elif terms.amortization_method == AmortizationMethod.EQUAL_PRINCIPAL:
            principal_part = principal / count
            interest = balance * rate
        else:
            interest = balance * rate
            principal_part = emi - interest

        principal_part = min(max(self._round(principal_part), ZERO), balance)
        interest = self._round(interest)

        if is_last and principal_part != balance:
            # Final installment settles whatever the rounding left behind
            principal_part = balance
            if not is_flat:
                interest = self._round(balance * rate)
        return principal_part, interest
