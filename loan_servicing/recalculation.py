"""
Interest Recalculation Module

Re-derives the future part of a repayment schedule after a mid-life event
such as a prepayment. Periods already due are kept as they are; the remaining
principal is re-amortized under one of three reschedule strategies.
"""

from decimal import Decimal, ROUND_CEILING
from datetime import date
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple, Union
from enum import Enum
import logging

from .config import EngineConfig, get_config
from .currency import Money
from .exceptions import CalculationError, LoanEngineError, ValidationError
from .generator import annuity_installment
from .logging_config import log_action
from .schedule import LoanSchedule, SchedulePeriod, ComponentBalance, PeriodType, round_amount, ZERO
from .terms import (
    LoanApplicationTerms, InterestMethod, PeriodFrequencyType,
    add_periods, days_between, days_in_year, coerce_enum, coerce_date
)

logger = logging.getLogger(__name__)


class CompoundingMethod(Enum):
    NONE = "none"
    INTEREST = "interest"
    FEE = "fee"
    INTEREST_AND_FEE = "interest_and_fee"


class RescheduleStrategy(Enum):
    REDUCE_NUMBER_OF_INSTALLMENTS = "reduce_number_of_installments"  # Keep EMI, shorten the loan
    REDUCE_EMI_AMOUNT = "reduce_emi_amount"                          # Keep the term, lower the EMI
    RESCHEDULE_NEXT_REPAYMENTS = "reschedule_next_repayments"        # Re-date from the transaction


class RecalculationFrequency(Enum):
    """Rest and compounding frequencies"""
    SAME_AS_REPAYMENT_PERIOD = "same_as_repayment_period"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


_FREQUENCY_UNITS = {
    RecalculationFrequency.DAILY: PeriodFrequencyType.DAYS,
    RecalculationFrequency.WEEKLY: PeriodFrequencyType.WEEKS,
    RecalculationFrequency.MONTHLY: PeriodFrequencyType.MONTHS,
}


def frequency_to_period_type(frequency) -> PeriodFrequencyType:
    """Calendar unit of a recalculation frequency; anything unknown counts as monthly"""
    unit = _FREQUENCY_UNITS.get(frequency)
    if unit is None:
        logger.debug("Unknown recalculation frequency %r, using months", frequency)
        return PeriodFrequencyType.MONTHS
    return unit


def _lenient_frequency(value):
    if value is None or isinstance(value, RecalculationFrequency):
        return value
    try:
        return RecalculationFrequency(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class InterestRecalculationConfig:
    """Interest recalculation settings of a loan product"""
    compounding_method: CompoundingMethod
    reschedule_strategy: RescheduleStrategy
    rest_frequency_type: Union[RecalculationFrequency, str] = RecalculationFrequency.SAME_AS_REPAYMENT_PERIOD
    rest_frequency_interval: int = 1
    compounding_frequency_type: Optional[Union[RecalculationFrequency, str]] = None
    compounding_frequency_interval: Optional[int] = None
    allow_compounding_on_eod: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'compounding_method', coerce_enum(
            CompoundingMethod, self.compounding_method, "compounding method"))
        object.__setattr__(self, 'reschedule_strategy', coerce_enum(
            RescheduleStrategy, self.reschedule_strategy, "reschedule strategy"))
        # Unknown frequencies are kept and resolved to monthly when dates are laid out
        object.__setattr__(self, 'rest_frequency_type', _lenient_frequency(self.rest_frequency_type))
        object.__setattr__(self, 'compounding_frequency_type',
                           _lenient_frequency(self.compounding_frequency_type))

        if self.rest_frequency_interval <= 0:
            raise ValidationError("Rest frequency interval must be greater than zero")
        if self.compounding_frequency_interval is not None and self.compounding_frequency_interval <= 0:
            raise ValidationError("Compounding frequency interval must be greater than zero")

    @property
    def is_enabled(self) -> bool:
        return self.compounding_method != CompoundingMethod.NONE


# Signature shared by the reschedule strategies
StrategyFn = Callable[[List[SchedulePeriod], Decimal, LoanApplicationTerms, date], List[SchedulePeriod]]


class InterestRecalculationEngine:
    """Recalculates schedules after payments and other mid-life events"""

    def __init__(self, engine_config: Optional[EngineConfig] = None):
        self.config = engine_config or get_config()
        self._strategies: Dict[RescheduleStrategy, StrategyFn] = {
            RescheduleStrategy.REDUCE_NUMBER_OF_INSTALLMENTS: self._reduce_number_of_installments,
            RescheduleStrategy.REDUCE_EMI_AMOUNT: self._reduce_emi_amount,
            RescheduleStrategy.RESCHEDULE_NEXT_REPAYMENTS: self._reschedule_next_repayments,
        }

    def _round(self, value: Decimal) -> Decimal:
        return round_amount(value, self.config.schedule_amount_places)

    def recalculate(self, schedule: LoanSchedule, terms: LoanApplicationTerms,
                    recalculation_config: Optional[InterestRecalculationConfig],
                    transaction_date: date, transaction_amount,
                    is_payment: bool = True) -> LoanSchedule:
        """
        Recalculate the schedule after a transaction

        Args:
            schedule: Current schedule; it is not modified
            terms: Loan terms the schedule was generated from
            recalculation_config: Product settings; None disables recalculation
            transaction_date: Date of the event
            transaction_amount: Money or number in the schedule currency
            is_payment: Whether the amount reduces outstanding principal

        Returns:
            New schedule with past periods kept and future periods
            re-derived; the input schedule when recalculation is disabled

        Raises:
            CalculationError: If the reschedule strategy is unsupported
            CurrencyMismatchError: If the amount is in another currency
        """
        if recalculation_config is None or not recalculation_config.is_enabled:
            logger.debug("Interest recalculation disabled, schedule unchanged")
            return schedule

        transaction_date = coerce_date(transaction_date, "transaction date")
        strategy = self._strategies.get(recalculation_config.reschedule_strategy)
        if strategy is None:
            message = f"Unsupported reschedule strategy: {recalculation_config.reschedule_strategy}"
            logger.error(message)
            raise CalculationError(message)

        past, future = self._partition(schedule, transaction_date)
        try:
            outstanding = self._outstanding_principal(schedule, past, transaction_amount, is_payment)
        except LoanEngineError as e:
            logger.error(f"Failed to recalculate loan schedule: {e}")
            raise

        log_action(logger, "info", "Recalculating loan schedule",
                   action="recalculate_schedule",
                   extra={
                       "strategy": recalculation_config.reschedule_strategy.value,
                       "transaction_date": transaction_date.isoformat(),
                       "outstanding_principal": str(outstanding),
                       "future_periods": len(future),
                   })

        if outstanding <= 0 or not future:
            new_future = []
        else:
            new_future = strategy(future, outstanding, terms, transaction_date)
        return schedule.with_periods(past + new_future)

    def _partition(self, schedule: LoanSchedule,
                   transaction_date: date) -> Tuple[List[SchedulePeriod], List[SchedulePeriod]]:
        past, future = [], []
        for period in schedule.periods:
            if period.period_type == PeriodType.DISBURSEMENT or period.due_date <= transaction_date:
                past.append(period)
            else:
                future.append(period)
        return past, future

    def _outstanding_principal(self, schedule: LoanSchedule, past: List[SchedulePeriod],
                               transaction_amount, is_payment: bool) -> Decimal:
        balance = schedule.money(past[-1].principal_balance_outstanding)
        if is_payment:
            if not isinstance(transaction_amount, Money):
                transaction_amount = Money.of(schedule.currency, transaction_amount)
            balance = balance - transaction_amount
        return max(balance.amount, ZERO)

    def _rebuilt(self, period: SchedulePeriod, principal: Decimal, interest: Decimal,
                 balance: Decimal, **changes) -> SchedulePeriod:
        """Copy of a future period with fresh principal and interest dues"""
        updated = replace(
            period,
            principal=ComponentBalance.of(principal),
            interest=ComponentBalance.of(interest),
            principal_balance_outstanding=balance,
            **changes
        )
        return replace(updated, days_in_period=days_between(updated.from_date, updated.due_date))

    def _declining_split(self, balance: Decimal, emi: Decimal,
                         rate: Decimal) -> Tuple[Decimal, Decimal]:
        interest = self._round(balance * rate)
        principal = min(max(self._round(emi - interest), ZERO), balance)
        return principal, interest

    def _reduce_number_of_installments(self, future: List[SchedulePeriod], outstanding: Decimal,
                                       terms: LoanApplicationTerms,
                                       transaction_date: date) -> List[SchedulePeriod]:
        first = future[0]
        emi = first.principal.due + first.interest.due
        rate = terms.periodic_rate
        is_flat = terms.interest_method == InterestMethod.FLAT

        if is_flat:
            per_period = first.principal.due
            if per_period > 0:
                needed = int((outstanding / per_period).to_integral_value(rounding=ROUND_CEILING))
            else:
                needed = len(future)
        else:
            needed, remaining = 0, outstanding
            while remaining > 0 and needed < len(future):
                principal, _ = self._declining_split(remaining, emi, rate)
                remaining -= principal
                needed += 1
        needed = min(needed, len(future))

        periods = []
        balance = outstanding
        for index, period in enumerate(future[:needed]):
            if is_flat:
                interest = period.interest.due
                principal = min(max(emi - interest, ZERO), balance)
            else:
                principal, interest = self._declining_split(balance, emi, rate)
            if index == needed - 1:
                principal = balance
            balance -= principal
            periods.append(self._rebuilt(period, principal, interest, balance))
        return periods

    def _reduce_emi_amount(self, future: List[SchedulePeriod], outstanding: Decimal,
                           terms: LoanApplicationTerms,
                           transaction_date: date) -> List[SchedulePeriod]:
        count = len(future)
        rate = terms.periodic_rate
        is_flat = terms.interest_method == InterestMethod.FLAT

        if is_flat:
            emi = outstanding / Decimal(count) + future[0].interest.due
        else:
            emi = annuity_installment(outstanding, rate, count)
        emi = self._round(emi)

        periods = []
        balance = outstanding
        for index, period in enumerate(future):
            if is_flat:
                interest = period.interest.due
                principal = max(self._round(emi - interest), ZERO)
            else:
                interest = self._round(balance * rate)
                principal = max(self._round(emi - interest), ZERO)
            if index == count - 1 or principal > balance:
                principal = balance
            balance -= principal
            periods.append(self._rebuilt(period, principal, interest, balance))
        return periods

    def _reschedule_next_repayments(self, future: List[SchedulePeriod], outstanding: Decimal,
                                    terms: LoanApplicationTerms,
                                    transaction_date: date) -> List[SchedulePeriod]:
        first = future[0]
        total = first.total_due
        if total > 0:
            principal_share = first.principal.due / total
            interest_share = first.interest.due / total
        else:
            principal_share = interest_share = ZERO
        rate = terms.periodic_rate
        is_flat = terms.interest_method == InterestMethod.FLAT
        unit = terms.repayment_frequency_type

        periods = []
        balance = outstanding
        from_date = transaction_date
        for index, period in enumerate(future):
            if balance <= 0:
                break
            due_date = add_periods(transaction_date, (index + 1) * terms.repayment_every,
                                   unit, terms.days_in_month_type)
            if is_flat:
                interest = self._round(total * interest_share)
                principal = self._round(total * principal_share)
            else:
                daily_rate = rate / Decimal(days_in_year(terms.days_in_year_type, due_date.year))
                interest = self._round(balance * daily_rate * Decimal(days_between(from_date, due_date)))
                principal = self._round(total - interest)
            principal = min(max(principal, ZERO), balance)
            balance -= principal
            periods.append(self._rebuilt(period, principal, interest, balance,
                                         from_date=from_date, due_date=due_date))
            from_date = due_date
        return periods

    def recalculation_dates(self, terms: LoanApplicationTerms,
                            recalculation_config: Optional[InterestRecalculationConfig],
                            start_date: date, end_date: date) -> List[date]:
        """
        Compounding dates between two dates, both inclusive

        Args:
            terms: Loan terms, used when compounding follows the repayment period
            recalculation_config: Product settings
            start_date: First date, normally the disbursement date
            end_date: Last date that may be included

        Returns:
            Ordered dates; empty when compounding is disabled
        """
        if recalculation_config is None or not recalculation_config.is_enabled:
            return []

        frequency = recalculation_config.compounding_frequency_type
        if frequency == RecalculationFrequency.SAME_AS_REPAYMENT_PERIOD:
            unit = terms.repayment_frequency_type
            interval = recalculation_config.compounding_frequency_interval or terms.repayment_every
        else:
            unit = frequency_to_period_type(frequency)
            interval = recalculation_config.compounding_frequency_interval or 1

        start_date = coerce_date(start_date, "start date")
        end_date = coerce_date(end_date, "end date")
        dates = []
        step = 0
        current = start_date
        while current <= end_date:
            dates.append(current)
            step += 1
            current = add_periods(start_date, step * interval, unit, terms.days_in_month_type)
        return dates
