"""
Loan Charges Module

Fees and penalties attached to a loan and their placement on a freshly
generated repayment schedule.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, replace
from typing import Iterable, Optional
from enum import Enum
import logging

from .exceptions import CalculationError, ValidationError
from .schedule import LoanSchedule, SchedulePeriod, PeriodType, round_amount, ZERO
from .terms import coerce_enum, coerce_date, coerce_decimal

logger = logging.getLogger(__name__)


class ChargeTimeType(Enum):
    """When a charge falls due"""
    DISBURSEMENT = "disbursement"
    SPECIFIED_DUE_DATE = "specified_due_date"
    INSTALLMENT_FEE = "installment_fee"
    OVERDUE_INSTALLMENT = "overdue_installment"            # Applied as installments fall overdue
    OVERDUE_MATURITY = "overdue_maturity"                  # Applied after maturity
    OVERDUE_ON_LOAN_MATURITY = "overdue_on_loan_maturity"
    TRANCHE_DISBURSEMENT = "tranche_disbursement"


class ChargeCalculationType(Enum):
    FLAT = "flat"
    PERCENT_OF_AMOUNT = "percent_of_amount"
    PERCENT_OF_AMOUNT_AND_INTEREST = "percent_of_amount_and_interest"
    PERCENT_OF_INTEREST = "percent_of_interest"
    PERCENT_OF_DISBURSEMENT_AMOUNT = "percent_of_disbursement_amount"
    PERCENT_OF_TOTAL_OUTSTANDING = "percent_of_total_outstanding"


# Time types that are only known once the loan runs late
DYNAMIC_CHARGE_TIME_TYPES = frozenset({
    ChargeTimeType.OVERDUE_INSTALLMENT,
    ChargeTimeType.OVERDUE_MATURITY,
    ChargeTimeType.OVERDUE_ON_LOAN_MATURITY,
    ChargeTimeType.TRANCHE_DISBURSEMENT,
})


@dataclass(frozen=True)
class LoanCharge:
    """A fee or penalty attached to a loan"""
    name: str
    charge_time_type: ChargeTimeType
    calculation_type: ChargeCalculationType = ChargeCalculationType.FLAT
    amount: Decimal = ZERO                  # Used by flat charges
    percentage: Optional[Decimal] = None    # Used by percentage charges
    is_penalty: bool = False
    due_date: Optional[date] = None         # Required for specified due date charges

    def __post_init__(self):
        object.__setattr__(self, 'charge_time_type', coerce_enum(
            ChargeTimeType, self.charge_time_type, "charge time type"))
        object.__setattr__(self, 'calculation_type', coerce_enum(
            ChargeCalculationType, self.calculation_type, "charge calculation type"))
        object.__setattr__(self, 'amount', coerce_decimal(self.amount, "charge amount"))
        if self.percentage is not None:
            object.__setattr__(self, 'percentage', coerce_decimal(self.percentage, "charge percentage"))
        if self.due_date is not None:
            object.__setattr__(self, 'due_date', coerce_date(self.due_date, "charge due date"))

        if self.amount < 0:
            raise ValidationError(f"Charge '{self.name}' amount cannot be negative")
        if self.percentage is not None and self.percentage < 0:
            raise ValidationError(f"Charge '{self.name}' percentage cannot be negative")
        if self.charge_time_type == ChargeTimeType.SPECIFIED_DUE_DATE and self.due_date is None:
            raise ValidationError("Specified due date charge must have a due date")

    @property
    def is_percentage_based(self) -> bool:
        return self.calculation_type != ChargeCalculationType.FLAT

    def calculate(self, base_amount: Decimal) -> Decimal:
        """Charge amount for a base; flat charges ignore the base"""
        if not self.is_percentage_based:
            return self.amount
        return (self.percentage or ZERO) / Decimal('100') * base_amount


def _add_charge(period: SchedulePeriod, amount: Decimal, is_penalty: bool) -> SchedulePeriod:
    if is_penalty:
        return replace(period, penalties=period.penalties.with_due_added(amount))
    return replace(period, fees=period.fees.with_due_added(amount))


def _charge_base(schedule: LoanSchedule, charge: LoanCharge,
                 outstanding_base: Decimal) -> Decimal:
    calculation_type = charge.calculation_type
    if calculation_type in (ChargeCalculationType.PERCENT_OF_AMOUNT,
                            ChargeCalculationType.PERCENT_OF_DISBURSEMENT_AMOUNT):
        return schedule.principal_disbursed
    elif calculation_type == ChargeCalculationType.PERCENT_OF_AMOUNT_AND_INTEREST:
        return schedule.total_principal + schedule.total_interest
    elif calculation_type == ChargeCalculationType.PERCENT_OF_INTEREST:
        return schedule.total_interest
    elif calculation_type == ChargeCalculationType.PERCENT_OF_TOTAL_OUTSTANDING:
        return outstanding_base
    return ZERO


def _apply_disbursement_charge(schedule: LoanSchedule, charge: LoanCharge) -> LoanSchedule:
    periods = list(schedule.periods)
    if not periods or periods[0].period_type != PeriodType.DISBURSEMENT:
        raise CalculationError("First period must be disbursement period")

    # No interest exists at disbursement, so every percentage applies to the amount disbursed
    amount = round_amount(charge.calculate(periods[0].principal_disbursed))
    periods[0] = _add_charge(periods[0], amount, charge.is_penalty)
    return schedule.with_periods(periods)


def _apply_specified_due_date_charge(schedule: LoanSchedule, charge: LoanCharge) -> LoanSchedule:
    periods = list(schedule.periods)
    repayment_indexes = [i for i, p in enumerate(periods) if p.is_repayment]
    if not repayment_indexes:
        raise CalculationError("No suitable repayment period found for specified due date charge")

    target = next((i for i in repayment_indexes if charge.due_date <= periods[i].due_date),
                  repayment_indexes[-1])
    base = _charge_base(schedule, charge, periods[target].principal_balance_outstanding)
    amount = round_amount(charge.calculate(base))
    periods[target] = _add_charge(periods[target], amount, charge.is_penalty)
    return schedule.with_periods(periods)


def _apply_installment_fee(schedule: LoanSchedule, charge: LoanCharge) -> LoanSchedule:
    periods = list(schedule.periods)
    repayment_indexes = [i for i, p in enumerate(periods) if p.is_repayment]
    if not repayment_indexes:
        raise CalculationError("No repayment periods found for installment fee charge")

    count = Decimal(len(repayment_indexes))
    average_balance = sum((periods[i].principal_balance_outstanding for i in repayment_indexes),
                          ZERO) / count
    total = round_amount(charge.calculate(_charge_base(schedule, charge, average_balance)))
    per_installment = round_amount(total / count)

    remaining = total
    for position, index in enumerate(repayment_indexes):
        if position == len(repayment_indexes) - 1:
            amount = remaining  # Last installment takes the rounding remainder
        else:
            amount = per_installment
            remaining -= amount
        periods[index] = _add_charge(periods[index], amount, charge.is_penalty)
    return schedule.with_periods(periods)


_CHARGE_HANDLERS = {
    ChargeTimeType.DISBURSEMENT: _apply_disbursement_charge,
    ChargeTimeType.SPECIFIED_DUE_DATE: _apply_specified_due_date_charge,
    ChargeTimeType.INSTALLMENT_FEE: _apply_installment_fee,
}


def apply_charges(schedule: LoanSchedule, charges: Iterable[LoanCharge]) -> LoanSchedule:
    """
    Place charges on a schedule

    Args:
        schedule: Freshly generated schedule
        charges: Charges in the order they should be applied

    Returns:
        New schedule carrying the charges as fee or penalty dues
    """
    charges = list(charges)
    if not charges:
        return schedule

    logger.info("Applying %d charges to loan schedule", len(charges))
    for charge in charges:
        if charge.charge_time_type in DYNAMIC_CHARGE_TIME_TYPES:
            logger.debug("Skipping charge %s applied at runtime (%s)",
                         charge.name, charge.charge_time_type.value)
            continue
        schedule = _CHARGE_HANDLERS[charge.charge_time_type](schedule, charge)
    return schedule
