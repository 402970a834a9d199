"""
Payment Allocation Module

Splits a repayment across the outstanding principal, interest, fee and
penalty components of a loan's installments. The order in which components
and installments are settled is a data table keyed by repayment strategy.
"""

from decimal import Decimal, ROUND_DOWN
from datetime import date
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union
from enum import Enum
import logging

from .config import EngineConfig, get_config
from .currency import Money, Currency
from .logging_config import log_action
from .schedule import LoanSchedule, SchedulePeriod, ComponentType

logger = logging.getLogger(__name__)


class RepaymentStrategy(Enum):
    PRINCIPAL_INTEREST_PENALTIES_FEES = "principal_interest_penalties_fees"
    HEAVINESS_PRINCIPAL_INTEREST_PENALTIES_FEES = "heaviness_principal_interest_penalties_fees"
    INTEREST_PRINCIPAL_PENALTIES_FEES = "interest_principal_penalties_fees"
    PRINCIPAL_INTEREST_FEES_PENALTIES = "principal_interest_fees_penalties"
    DUE_DATE_PRINCIPAL_INTEREST_PENALTIES_FEES = "due_date_principal_interest_penalties_fees"
    INTEREST_PRINCIPAL_FEES_PENALTIES_OVERDUE_DUE = "interest_principal_fees_penalties_overdue_due"
    OVERDUE_DUE_INTEREST_PRINCIPAL_PENALTIES_FEES = "overdue_due_interest_principal_penalties_fees"


@dataclass(frozen=True)
class AllocationRule:
    """Component order and installment ordering of one strategy"""
    strategy: RepaymentStrategy
    name: str
    description: str
    component_order: Tuple[ComponentType, ...]
    due_date_ordering: bool = False
    is_default: bool = False

    @property
    def ordered_components(self) -> List[Tuple[ComponentType, int]]:
        """Components paired with their 1-based settlement order"""
        return [(component, order) for order, component in enumerate(self.component_order, start=1)]


PRINCIPAL, INTEREST, FEES, PENALTIES = (ComponentType.PRINCIPAL, ComponentType.INTEREST,
                                       ComponentType.FEES, ComponentType.PENALTIES)

ALLOCATION_RULES: Dict[RepaymentStrategy, AllocationRule] = {rule.strategy: rule for rule in (
    AllocationRule(RepaymentStrategy.PRINCIPAL_INTEREST_PENALTIES_FEES,
                   "Principal, Interest, Penalties, Fees",
                   "Standard strategy that allocates to principal first, then interest, penalties, and fees",
                   (PRINCIPAL, INTEREST, PENALTIES, FEES), is_default=True),
    AllocationRule(RepaymentStrategy.HEAVINESS_PRINCIPAL_INTEREST_PENALTIES_FEES,
                   "Heaviness Principal, Interest, Penalties, Fees",
                   "Allocates to principal first, weighting installments with the heaviest principal",
                   (PRINCIPAL, INTEREST, PENALTIES, FEES)),
    AllocationRule(RepaymentStrategy.INTEREST_PRINCIPAL_PENALTIES_FEES,
                   "Interest, Principal, Penalties, Fees",
                   "Allocates to interest first, then principal, penalties, and fees",
                   (INTEREST, PRINCIPAL, PENALTIES, FEES)),
    AllocationRule(RepaymentStrategy.PRINCIPAL_INTEREST_FEES_PENALTIES,
                   "Principal, Interest, Fees, Penalties",
                   "Allocates to principal first, then interest, fees, and penalties",
                   (PRINCIPAL, INTEREST, FEES, PENALTIES)),
    AllocationRule(RepaymentStrategy.DUE_DATE_PRINCIPAL_INTEREST_PENALTIES_FEES,
                   "Due Date, Principal, Interest, Penalties, Fees",
                   "Settles installments in due date order, principal first within each",
                   (PRINCIPAL, INTEREST, PENALTIES, FEES), due_date_ordering=True),
    AllocationRule(RepaymentStrategy.INTEREST_PRINCIPAL_FEES_PENALTIES_OVERDUE_DUE,
                   "Interest, Principal, Fees, Penalties (Overdue/Due)",
                   "Settles overdue then due installments, interest first within each",
                   (INTEREST, PRINCIPAL, FEES, PENALTIES), due_date_ordering=True),
    AllocationRule(RepaymentStrategy.OVERDUE_DUE_INTEREST_PRINCIPAL_PENALTIES_FEES,
                   "Overdue/Due, Interest, Principal, Penalties, Fees",
                   "Settles overdue then due installments, interest then principal, penalties and fees",
                   (INTEREST, PRINCIPAL, PENALTIES, FEES), due_date_ordering=True),
)}

DEFAULT_STRATEGY = RepaymentStrategy.PRINCIPAL_INTEREST_PENALTIES_FEES


def resolve_strategy(strategy: Union[RepaymentStrategy, str, None],
                     default: RepaymentStrategy = DEFAULT_STRATEGY) -> RepaymentStrategy:
    """Strategy for a member or code; unknown codes resolve to the default"""
    if isinstance(strategy, RepaymentStrategy):
        return strategy
    try:
        return RepaymentStrategy(strategy)
    except ValueError:
        logger.debug("Unknown repayment strategy %r, using %s", strategy, default.value)
        return default


def _payable(outstanding: Decimal, currency: Currency) -> Money:
    """Outstanding amount truncated to the currency's minor unit"""
    truncated = outstanding.quantize(Decimal('0.1') ** currency.precision, rounding=ROUND_DOWN)
    return Money(truncated, currency)


@dataclass(frozen=True)
class PeriodAllocation:
    """Amounts allocated to one installment"""
    period_number: int
    due_date: date
    principal: Money
    interest: Money
    fee_charges: Money
    penalty_charges: Money

    @property
    def total(self) -> Money:
        return self.principal + self.interest + self.fee_charges + self.penalty_charges

    def amount_for(self, component_type: ComponentType) -> Money:
        return {
            ComponentType.PRINCIPAL: self.principal,
            ComponentType.INTEREST: self.interest,
            ComponentType.FEES: self.fee_charges,
            ComponentType.PENALTIES: self.penalty_charges,
        }[component_type]

    def to_dict(self) -> Dict:
        return {
            'period_number': self.period_number,
            'due_date': self.due_date.isoformat(),
            'principal': str(self.principal.amount),
            'interest': str(self.interest.amount),
            'fee_charges': str(self.fee_charges.amount),
            'penalty_charges': str(self.penalty_charges.amount),
            'total': str(self.total.amount),
        }


@dataclass(frozen=True)
class AllocationResult:
    """Outcome of allocating one payment"""
    payment_amount: Money
    strategy: RepaymentStrategy
    period_allocations: Tuple[PeriodAllocation, ...]
    total_principal_allocated: Money
    total_interest_allocated: Money
    total_fee_charges_allocated: Money
    total_penalty_charges_allocated: Money
    unallocated_amount: Money
    loan_id: Optional[str] = None

    @property
    def total_allocated(self) -> Money:
        return (self.total_principal_allocated + self.total_interest_allocated
                + self.total_fee_charges_allocated + self.total_penalty_charges_allocated)

    def to_dict(self) -> Dict:
        return {
            'loan_id': self.loan_id,
            'strategy': self.strategy.value,
            'currency': self.payment_amount.currency.code,
            'payment_amount': str(self.payment_amount.amount),
            'principal_portion': str(self.total_principal_allocated.amount),
            'interest_portion': str(self.total_interest_allocated.amount),
            'fee_charges_portion': str(self.total_fee_charges_allocated.amount),
            'penalty_charges_portion': str(self.total_penalty_charges_allocated.amount),
            'unallocated_amount': str(self.unallocated_amount.amount),
            'period_allocations': [a.to_dict() for a in self.period_allocations],
        }


class PaymentAllocationEngine:
    """Allocates payments across installments by repayment strategy"""

    def __init__(self, engine_config: Optional[EngineConfig] = None):
        self.config = engine_config or get_config()
        self.default_strategy = resolve_strategy(self.config.default_repayment_strategy)

    def rule_for(self, strategy: Union[RepaymentStrategy, str, None]) -> AllocationRule:
        return ALLOCATION_RULES[resolve_strategy(strategy, self.default_strategy)]

    def available_strategies(self) -> List[Dict]:
        """Strategies offered to loan products, default flagged"""
        return [
            {
                'code': rule.strategy.value,
                'name': rule.name,
                'description': rule.description,
                'is_default': rule.strategy == self.default_strategy,
            }
            for rule in ALLOCATION_RULES.values()
        ]

    def allocate(self, payment_amount, currency: Union[Currency, str],
                 strategy: Union[RepaymentStrategy, str, None],
                 outstanding_periods: Iterable[SchedulePeriod],
                 loan_id: Optional[str] = None) -> AllocationResult:
        """
        Allocate a payment across outstanding installments

        Args:
            payment_amount: Money or number in the given currency
            currency: Currency of the loan
            strategy: Repayment strategy or its code; unknown codes use the default
            outstanding_periods: Installments that may receive the payment
            loan_id: Optional loan identifier for logs and output

        Returns:
            AllocationResult whose allocated and unallocated amounts add up
            to the payment

        Raises:
            CurrencyMismatchError: If the payment is in another currency
        """
        currency = Currency.from_code(currency)
        zero = Money.zero(currency)
        if isinstance(payment_amount, Money):
            payment = zero + payment_amount
        else:
            payment = Money.of(currency, payment_amount)
        rule = self.rule_for(strategy)

        periods = list(outstanding_periods)
        if rule.due_date_ordering:
            periods.sort(key=lambda p: p.due_date)

        totals = {component: zero for component in ComponentType}
        allocations = []
        remaining = payment

        for period in periods:
            if not remaining.is_positive():
                break
            if period.total_outstanding <= 0:
                continue

            allocated = {component: zero for component in ComponentType}
            for component in rule.component_order:
                if not remaining.is_positive():
                    break
                outstanding = _payable(period.component(component).outstanding, currency)
                if outstanding.is_positive():
                    amount = min(remaining, outstanding)
                    allocated[component] = amount
                    totals[component] = totals[component] + amount
                    remaining = remaining - amount

            if any(amount.is_positive() for amount in allocated.values()):
                allocations.append(PeriodAllocation(
                    period_number=period.period_number,
                    due_date=period.due_date,
                    principal=allocated[ComponentType.PRINCIPAL],
                    interest=allocated[ComponentType.INTEREST],
                    fee_charges=allocated[ComponentType.FEES],
                    penalty_charges=allocated[ComponentType.PENALTIES],
                ))

        result = AllocationResult(
            payment_amount=payment,
            strategy=rule.strategy,
            period_allocations=tuple(allocations),
            total_principal_allocated=totals[ComponentType.PRINCIPAL],
            total_interest_allocated=totals[ComponentType.INTEREST],
            total_fee_charges_allocated=totals[ComponentType.FEES],
            total_penalty_charges_allocated=totals[ComponentType.PENALTIES],
            unallocated_amount=remaining,
            loan_id=loan_id,
        )

        log_action(logger, "info", "Allocated loan repayment",
                   action="allocate_payment", resource=loan_id,
                   extra={
                       "strategy": rule.strategy.value,
                       "payment_amount": payment.to_string(),
                       "periods_touched": len(allocations),
                       "unallocated_amount": str(remaining.amount),
                   })
        return result

    def apply_allocation(self, schedule: LoanSchedule, result: AllocationResult) -> LoanSchedule:
        """
        Record an allocation as payments on the schedule

        Returns:
            New schedule whose periods carry the allocated amounts as paid
        """
        by_number = {a.period_number: a for a in result.period_allocations}
        periods = []
        for period in schedule.periods:
            allocation = by_number.get(period.period_number)
            if allocation is not None:
                for component in ComponentType:
                    amount = allocation.amount_for(component)
                    if amount.is_positive():
                        period = period.apply_payment(component, amount.amount)
            periods.append(period)
        return schedule.with_periods(periods)
