"""
Loan Terms Module

Loan application terms, the enumerations they draw from, and the calendar
arithmetic used to lay out due dates.
"""

from decimal import Decimal, InvalidOperation
from datetime import date, datetime, timedelta
from dataclasses import dataclass
from typing import Optional
from enum import Enum
import calendar

from .currency import Money, Currency
from .exceptions import ValidationError, CalculationError


class PeriodFrequencyType(Enum):
    """Units for loan terms and repayment frequency"""
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class InterestMethod(Enum):
    """How interest is charged per period"""
    FLAT = "flat"                            # Fraction of original principal
    DECLINING_BALANCE = "declining_balance"  # Fraction of outstanding balance


class AmortizationMethod(Enum):
    """How principal is spread across installments"""
    EQUAL_INSTALLMENTS = "equal_installments"  # Constant EMI
    EQUAL_PRINCIPAL = "equal_principal"        # Constant principal, declining installment


class DaysInYearType(Enum):
    ACTUAL = "actual"
    DAYS_360 = "days_360"
    DAYS_365 = "days_365"


class DaysInMonthType(Enum):
    ACTUAL = "actual"    # Calendar months
    DAYS_30 = "days_30"  # Every month counts as 30 days


class DownPaymentType(Enum):
    FIXED_AMOUNT = "fixed_amount"
    PERCENTAGE = "percentage"


def coerce_enum(enum_cls, value, label: str):
    """
    Resolve an enum member from a member or its value

    Raises:
        ValidationError: If value is outside the enum's closed set
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label}: {value!r} (expected one of {allowed})") from None


def coerce_date(value, label: str) -> date:
    """Accept a date, datetime or ISO-8601 string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise ValidationError(f"Invalid {label}: {value!r}")


def coerce_decimal(value, label: str) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid {label}: {value!r}") from None
    if not result.is_finite():
        raise ValidationError(f"Invalid {label}: {value!r}")
    return result


def coerce_int(value, label: str) -> int:
    """Accept a plain int; bools and other types are rejected"""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Invalid {label}: {value!r} (expected an integer)")
    return value


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_periods(start_date: date, count: int, frequency_type,
                days_in_month_type: DaysInMonthType = DaysInMonthType.ACTUAL) -> date:
    """
    Advance a date by a number of frequency units

    Args:
        start_date: Date to advance from
        count: Number of units (may be zero)
        frequency_type: PeriodFrequencyType unit
        days_in_month_type: DAYS_30 treats a month as exactly 30 days

    Returns:
        Advanced date, clamped to the last day of the target month for
        month and year units

    Raises:
        CalculationError: If the unit is not a supported frequency
    """
    if frequency_type == PeriodFrequencyType.DAYS:
        return start_date + timedelta(days=count)
    elif frequency_type == PeriodFrequencyType.WEEKS:
        return start_date + timedelta(days=7 * count)
    elif frequency_type == PeriodFrequencyType.MONTHS:
        if days_in_month_type == DaysInMonthType.DAYS_30:
            return start_date + timedelta(days=30 * count)
        return add_months(start_date, count)
    elif frequency_type == PeriodFrequencyType.YEARS:
        return add_months(start_date, 12 * count)
    raise CalculationError(f"Unsupported frequency type: {frequency_type}")


def days_between(start_date: date, end_date: date) -> int:
    return (end_date - start_date).days


def days_in_year(days_in_year_type: DaysInYearType, year: int) -> int:
    """Day count of a year under the given day basis"""
    if days_in_year_type == DaysInYearType.DAYS_360:
        return 360
    if days_in_year_type == DaysInYearType.ACTUAL:
        return 366 if calendar.isleap(year) else 365
    return 365


def loan_term_in_days(term_frequency: int, frequency_type) -> int:
    """
    Nominal loan term length in days

    Months count as 30 days and years as 365, regardless of the calendar.
    """
    if frequency_type == PeriodFrequencyType.DAYS:
        return term_frequency
    elif frequency_type == PeriodFrequencyType.WEEKS:
        return term_frequency * 7
    elif frequency_type == PeriodFrequencyType.MONTHS:
        return term_frequency * 30
    elif frequency_type == PeriodFrequencyType.YEARS:
        return term_frequency * 365
    raise CalculationError(f"Unsupported loan term frequency type: {frequency_type}")


@dataclass(frozen=True)
class LoanApplicationTerms:
    """Loan terms validated once at construction and trusted afterwards"""
    principal_amount: Money
    loan_term_frequency: int
    loan_term_frequency_type: PeriodFrequencyType
    number_of_repayments: int
    repayment_every: int
    repayment_frequency_type: PeriodFrequencyType
    interest_rate_per_period: Decimal            # Percent, e.g. 1.5 for 1.5%
    interest_method: InterestMethod
    amortization_method: AmortizationMethod
    expected_disbursement_date: date
    submitted_on_date: Optional[date] = None
    grace_on_principal_payment: int = 0          # Repayment units before the first due date
    grace_on_interest_payment: int = 0
    grace_on_interest_charged: int = 0
    in_arrears_tolerance: Optional[Money] = None
    days_in_year_type: DaysInYearType = DaysInYearType.DAYS_365
    days_in_month_type: DaysInMonthType = DaysInMonthType.ACTUAL
    enable_down_payment: bool = False
    down_payment_type: Optional[DownPaymentType] = None
    down_payment_amount: Optional[Money] = None
    down_payment_percentage: Optional[Decimal] = None

    def __post_init__(self):
        if not isinstance(self.principal_amount, Money):
            raise ValidationError("Principal amount must be Money")

        def set_(name, value):
            object.__setattr__(self, name, value)

        set_('loan_term_frequency_type', coerce_enum(
            PeriodFrequencyType, self.loan_term_frequency_type, "loan term frequency type"))
        set_('repayment_frequency_type', coerce_enum(
            PeriodFrequencyType, self.repayment_frequency_type, "repayment frequency type"))
        set_('interest_method', coerce_enum(
            InterestMethod, self.interest_method, "interest method"))
        set_('amortization_method', coerce_enum(
            AmortizationMethod, self.amortization_method, "amortization method"))
        set_('days_in_year_type', coerce_enum(
            DaysInYearType, self.days_in_year_type, "days in year type"))
        set_('days_in_month_type', coerce_enum(
            DaysInMonthType, self.days_in_month_type, "days in month type"))
        if self.down_payment_type is not None:
            set_('down_payment_type', coerce_enum(
                DownPaymentType, self.down_payment_type, "down payment type"))

        for name in ("loan_term_frequency", "number_of_repayments", "repayment_every",
                     "grace_on_principal_payment", "grace_on_interest_payment",
                     "grace_on_interest_charged"):
            set_(name, coerce_int(getattr(self, name), name.replace("_", " ")))

        set_('interest_rate_per_period', coerce_decimal(
            self.interest_rate_per_period, "interest rate per period"))
        if self.down_payment_percentage is not None:
            set_('down_payment_percentage', coerce_decimal(
                self.down_payment_percentage, "down payment percentage"))

        set_('expected_disbursement_date', coerce_date(
            self.expected_disbursement_date, "expected disbursement date"))
        if self.submitted_on_date is not None:
            set_('submitted_on_date', coerce_date(self.submitted_on_date, "submitted on date"))

        self.validate()

    def validate(self) -> None:
        """
        Check the business rules on the terms

        Raises:
            ValidationError: On the first rule that fails
        """
        currency = self.principal_amount.currency

        if not self.principal_amount.is_positive():
            raise ValidationError("Principal amount must be greater than zero")
        if self.loan_term_frequency <= 0:
            raise ValidationError("Loan term frequency must be greater than zero")
        if self.number_of_repayments <= 0:
            raise ValidationError("Number of repayments must be greater than zero")
        if self.repayment_every <= 0:
            raise ValidationError("Repayment every must be greater than zero")
        if self.interest_rate_per_period < 0:
            raise ValidationError("Interest rate cannot be negative")

        for name in ("grace_on_principal_payment", "grace_on_interest_payment",
                     "grace_on_interest_charged"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name.replace('_', ' ').capitalize()} cannot be negative")

        if self.in_arrears_tolerance is not None:
            if self.in_arrears_tolerance.currency != currency:
                raise ValidationError("In arrears tolerance currency must match principal currency")
            if self.in_arrears_tolerance.is_negative():
                raise ValidationError("In arrears tolerance cannot be negative")

        if (self.submitted_on_date is not None
                and self.submitted_on_date > self.expected_disbursement_date):
            raise ValidationError("Submitted on date cannot be after expected disbursement date")

        if self.enable_down_payment:
            self._validate_down_payment()

    def _validate_down_payment(self) -> None:
        if self.down_payment_type is None:
            raise ValidationError("Down payment type is required when down payment is enabled")

        if self.down_payment_type == DownPaymentType.FIXED_AMOUNT:
            amount = self.down_payment_amount
            if amount is None or not amount.is_positive():
                raise ValidationError("Down payment amount must be greater than zero")
            if amount.currency != self.principal_amount.currency:
                raise ValidationError("Down payment currency must match principal currency")
            if amount >= self.principal_amount:
                raise ValidationError("Down payment amount must be less than principal amount")
        else:
            percentage = self.down_payment_percentage
            if percentage is None or percentage <= 0:
                raise ValidationError("Down payment percentage must be greater than zero")
            if percentage >= 100:
                raise ValidationError("Down payment percentage must be less than 100")

    @property
    def currency(self) -> Currency:
        return self.principal_amount.currency

    @property
    def periodic_rate(self) -> Decimal:
        """Interest rate per period as a fraction"""
        return self.interest_rate_per_period / Decimal('100')

    @property
    def loan_term_in_days(self) -> int:
        return loan_term_in_days(self.loan_term_frequency, self.loan_term_frequency_type)

    def to_dict(self) -> dict:
        """Convert terms to dictionary"""
        return {
            'principal_amount': str(self.principal_amount.amount),
            'currency': self.currency.code,
            'loan_term_frequency': self.loan_term_frequency,
            'loan_term_frequency_type': self.loan_term_frequency_type.value,
            'number_of_repayments': self.number_of_repayments,
            'repayment_every': self.repayment_every,
            'repayment_frequency_type': self.repayment_frequency_type.value,
            'interest_rate_per_period': str(self.interest_rate_per_period),
            'interest_method': self.interest_method.value,
            'amortization_method': self.amortization_method.value,
            'expected_disbursement_date': self.expected_disbursement_date.isoformat(),
            'grace_on_principal_payment': self.grace_on_principal_payment,
            'days_in_year_type': self.days_in_year_type.value,
            'enable_down_payment': self.enable_down_payment,
        }
