"""
Repayment Schedule Module

Immutable schedule periods and the schedule that owns them. Schedule totals
are always derived from the repayment periods, so a schedule can never carry
totals that disagree with its period list.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Tuple
from enum import Enum

from .currency import Money, Currency
from .exceptions import CalculationError

ZERO = Decimal('0')

# Per-period principal and interest are stored at this scale whatever the
# currency precision.
SCHEDULE_AMOUNT_PLACES = 2


def round_amount(value: Decimal, places: int = SCHEDULE_AMOUNT_PLACES) -> Decimal:
    """Round a schedule amount half-up to a fixed number of places"""
    return value.quantize(Decimal('0.1') ** places, rounding=ROUND_HALF_UP)


class PeriodType(Enum):
    DISBURSEMENT = "disbursement"
    DOWN_PAYMENT = "down_payment"
    REPAYMENT = "repayment"


class ComponentType(Enum):
    """Portions of an installment that a payment can settle"""
    PRINCIPAL = "principal"
    INTEREST = "interest"
    FEES = "fees"
    PENALTIES = "penalties"


@dataclass(frozen=True)
class ComponentBalance:
    """Due, paid and forgiven amounts of one installment component"""
    original_due: Decimal = ZERO
    due: Decimal = ZERO
    paid: Decimal = ZERO
    waived: Decimal = ZERO
    written_off: Decimal = ZERO

    def __post_init__(self):
        if self.outstanding_raw < 0:
            raise CalculationError(
                f"Component settled beyond its due amount: due {self.due}, "
                f"paid {self.paid}, waived {self.waived}, written off {self.written_off}"
            )

    @classmethod
    def of(cls, amount: Decimal) -> 'ComponentBalance':
        """Fresh component with nothing paid"""
        return cls(original_due=amount, due=amount)

    @property
    def outstanding_raw(self) -> Decimal:
        return self.due - self.paid - self.waived - self.written_off

    @property
    def outstanding(self) -> Decimal:
        return max(self.outstanding_raw, ZERO)

    def with_due_added(self, amount: Decimal) -> 'ComponentBalance':
        return replace(self, original_due=self.original_due + amount, due=self.due + amount)


_COMPONENT_FIELDS = {
    ComponentType.PRINCIPAL: 'principal',
    ComponentType.INTEREST: 'interest',
    ComponentType.FEES: 'fees',
    ComponentType.PENALTIES: 'penalties',
}


@dataclass(frozen=True)
class SchedulePeriod:
    """One period of a repayment schedule"""
    period_number: int
    period_type: PeriodType
    from_date: date
    due_date: date
    principal_balance_outstanding: Decimal   # Balance after this period
    principal_disbursed: Decimal = ZERO
    principal: ComponentBalance = field(default_factory=ComponentBalance)
    interest: ComponentBalance = field(default_factory=ComponentBalance)
    fees: ComponentBalance = field(default_factory=ComponentBalance)
    penalties: ComponentBalance = field(default_factory=ComponentBalance)
    days_in_period: int = 0

    @property
    def is_repayment(self) -> bool:
        return self.period_type == PeriodType.REPAYMENT

    def component(self, component_type: ComponentType) -> ComponentBalance:
        return getattr(self, _COMPONENT_FIELDS[component_type])

    def _components(self) -> Tuple[ComponentBalance, ...]:
        return (self.principal, self.interest, self.fees, self.penalties)

    @property
    def total_original_due(self) -> Decimal:
        return sum((c.original_due for c in self._components()), ZERO)

    @property
    def total_due(self) -> Decimal:
        return sum((c.due for c in self._components()), ZERO)

    @property
    def total_paid(self) -> Decimal:
        return sum((c.paid for c in self._components()), ZERO)

    @property
    def total_waived(self) -> Decimal:
        return sum((c.waived for c in self._components()), ZERO)

    @property
    def total_written_off(self) -> Decimal:
        return sum((c.written_off for c in self._components()), ZERO)

    @property
    def total_outstanding(self) -> Decimal:
        return sum((c.outstanding for c in self._components()), ZERO)

    @property
    def total_actual_cost(self) -> Decimal:
        """Interest and charges due for the period"""
        return self.interest.due + self.fees.due + self.penalties.due

    def apply_payment(self, component_type: ComponentType, amount: Decimal) -> 'SchedulePeriod':
        """Return a copy with amount paid against one component"""
        balance = self.component(component_type)
        updated = replace(balance, paid=balance.paid + amount)
        return replace(self, **{_COMPONENT_FIELDS[component_type]: updated})

    def waive(self, component_type: ComponentType, amount: Decimal) -> 'SchedulePeriod':
        """Return a copy with amount waived on one component"""
        balance = self.component(component_type)
        updated = replace(balance, waived=balance.waived + amount)
        return replace(self, **{_COMPONENT_FIELDS[component_type]: updated})

    def to_dict(self) -> Dict:
        result = {
            'period_number': self.period_number,
            'period_type': self.period_type.value,
            'from_date': self.from_date.isoformat(),
            'due_date': self.due_date.isoformat(),
            'days_in_period': self.days_in_period,
            'principal_disbursed': str(self.principal_disbursed),
            'principal_balance_outstanding': str(self.principal_balance_outstanding),
            'total_due': str(self.total_due),
            'total_outstanding': str(self.total_outstanding),
        }
        for component_type, name in _COMPONENT_FIELDS.items():
            balance = self.component(component_type)
            result[name] = {
                'original_due': str(balance.original_due),
                'due': str(balance.due),
                'paid': str(balance.paid),
                'waived': str(balance.waived),
                'written_off': str(balance.written_off),
                'outstanding': str(balance.outstanding),
            }
        return result


@dataclass(frozen=True)
class LoanSchedule:
    """Repayment schedule; periods are kept sorted by period number"""
    currency: Currency
    loan_term_in_days: int
    principal_disbursed: Decimal
    periods: Tuple[SchedulePeriod, ...]
    down_payment_amount: Optional[Decimal] = None

    def __post_init__(self):
        ordered = tuple(sorted(self.periods, key=lambda p: (p.period_number, p.due_date)))
        object.__setattr__(self, 'periods', ordered)

    def with_periods(self, periods: Iterable[SchedulePeriod]) -> 'LoanSchedule':
        """New schedule over a different period list; totals follow automatically"""
        return replace(self, periods=tuple(periods))

    @property
    def repayment_periods(self) -> List[SchedulePeriod]:
        return [p for p in self.periods if p.is_repayment]

    def period(self, period_number: int) -> SchedulePeriod:
        for candidate in self.periods:
            if candidate.period_number == period_number:
                return candidate
        raise KeyError(f"No period {period_number} in schedule")

    def outstanding_periods(self) -> List[SchedulePeriod]:
        return [p for p in self.periods if p.total_outstanding > 0]

    @property
    def maturity_date(self) -> date:
        return self.periods[-1].due_date

    @property
    def total_principal(self) -> Decimal:
        return sum((p.principal.original_due for p in self.repayment_periods), ZERO)

    @property
    def total_interest(self) -> Decimal:
        return sum((p.interest.original_due for p in self.repayment_periods), ZERO)

    @property
    def total_fee_charges(self) -> Decimal:
        return sum((p.fees.original_due for p in self.repayment_periods), ZERO)

    @property
    def total_penalty_charges(self) -> Decimal:
        return sum((p.penalties.original_due for p in self.repayment_periods), ZERO)

    @property
    def total_repayment_expected(self) -> Decimal:
        return (self.total_principal + self.total_interest
                + self.total_fee_charges + self.total_penalty_charges)

    @property
    def total_outstanding(self) -> Decimal:
        return sum((p.total_outstanding for p in self.repayment_periods), ZERO)

    def money(self, amount: Decimal) -> Money:
        """Wrap a schedule amount in the schedule currency"""
        return Money(amount, self.currency)

    def to_dict(self) -> Dict:
        return {
            'currency': self.currency.code,
            'loan_term_in_days': self.loan_term_in_days,
            'principal_disbursed': str(self.principal_disbursed),
            'down_payment_amount': (str(self.down_payment_amount)
                                    if self.down_payment_amount is not None else None),
            'total_principal': str(self.total_principal),
            'total_interest': str(self.total_interest),
            'total_fee_charges': str(self.total_fee_charges),
            'total_penalty_charges': str(self.total_penalty_charges),
            'total_repayment_expected': str(self.total_repayment_expected),
            'total_outstanding': str(self.total_outstanding),
            'periods': [p.to_dict() for p in self.periods],
        }
