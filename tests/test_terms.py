"""
Test suite for loan terms module

Tests validation of loan application terms and the calendar arithmetic
used for due dates.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_servicing.currency import Money, Currency
from loan_servicing.exceptions import ValidationError, CalculationError
from loan_servicing.terms import (
    LoanApplicationTerms, PeriodFrequencyType, InterestMethod, AmortizationMethod,
    DaysInYearType, DaysInMonthType, DownPaymentType,
    add_periods, add_months, days_in_year, loan_term_in_days
)


def make_terms(**overrides):
    values = dict(
        principal_amount=Money(Decimal('12000'), Currency.USD),
        loan_term_frequency=12,
        loan_term_frequency_type=PeriodFrequencyType.MONTHS,
        number_of_repayments=12,
        repayment_every=1,
        repayment_frequency_type=PeriodFrequencyType.MONTHS,
        interest_rate_per_period=Decimal('1'),
        interest_method=InterestMethod.DECLINING_BALANCE,
        amortization_method=AmortizationMethod.EQUAL_INSTALLMENTS,
        expected_disbursement_date=date(2024, 1, 1),
    )
    values.update(overrides)
    return LoanApplicationTerms(**values)


class TestLoanApplicationTerms:
    """Test loan terms construction and validation"""

    def test_valid_terms(self):
        """Test creating valid terms"""
        terms = make_terms()
        assert terms.currency == Currency.USD
        assert terms.periodic_rate == Decimal('0.01')
        assert terms.loan_term_in_days == 360
        assert terms.days_in_year_type == DaysInYearType.DAYS_365
        assert terms.grace_on_principal_payment == 0

    def test_string_values_are_coerced(self):
        """Test that enum values, rates and dates may be given as strings"""
        terms = make_terms(
            loan_term_frequency_type="weeks",
            repayment_frequency_type="weeks",
            interest_method="flat",
            amortization_method="equal_principal",
            interest_rate_per_period="2.5",
            expected_disbursement_date="2024-03-15",
        )
        assert terms.loan_term_frequency_type == PeriodFrequencyType.WEEKS
        assert terms.interest_method == InterestMethod.FLAT
        assert terms.amortization_method == AmortizationMethod.EQUAL_PRINCIPAL
        assert terms.interest_rate_per_period == Decimal('2.5')
        assert terms.expected_disbursement_date == date(2024, 3, 15)

    def test_terms_are_immutable(self):
        """Test that terms cannot be changed after validation"""
        terms = make_terms()
        with pytest.raises(AttributeError):
            terms.number_of_repayments = 6

    @pytest.mark.parametrize("overrides,message", [
        ({"principal_amount": Money(Decimal('0'), Currency.USD)}, "Principal amount must be greater than zero"),
        ({"loan_term_frequency": 0}, "Loan term frequency must be greater than zero"),
        ({"number_of_repayments": 0}, "Number of repayments must be greater than zero"),
        ({"repayment_every": 0}, "Repayment every must be greater than zero"),
        ({"interest_rate_per_period": Decimal('-1')}, "Interest rate cannot be negative"),
        ({"grace_on_principal_payment": -1}, "Grace on principal payment cannot be negative"),
        ({"in_arrears_tolerance": Money(Decimal('-1'), Currency.USD)}, "In arrears tolerance cannot be negative"),
        ({"in_arrears_tolerance": Money(Decimal('1'), Currency.EUR)}, "currency must match"),
        ({"submitted_on_date": date(2024, 2, 1)}, "Submitted on date cannot be after"),
    ])
    def test_validation_errors(self, overrides, message):
        """Test business rule violations"""
        with pytest.raises(ValidationError, match=message):
            make_terms(**overrides)

    def test_invalid_enum_value(self):
        """Test that values outside the closed enum sets are rejected"""
        with pytest.raises(ValidationError, match="Invalid interest method"):
            make_terms(interest_method="compound")
        with pytest.raises(ValidationError, match="Invalid repayment frequency type"):
            make_terms(repayment_frequency_type="fortnights")

    def test_invalid_date(self):
        """Test that impossible calendar dates are rejected"""
        with pytest.raises(ValidationError, match="Invalid expected disbursement date"):
            make_terms(expected_disbursement_date="2024-02-30")

    def test_principal_must_be_money(self):
        """Test that a bare number is not accepted as principal"""
        with pytest.raises(ValidationError, match="Principal amount must be Money"):
            make_terms(principal_amount=Decimal('1000'))

    @pytest.mark.parametrize("overrides,message", [
        ({"number_of_repayments": "12"}, "Invalid number of repayments"),
        ({"loan_term_frequency": 12.0}, "Invalid loan term frequency"),
        ({"repayment_every": True}, "Invalid repayment every"),
        ({"grace_on_principal_payment": None}, "Invalid grace on principal payment"),
        ({"grace_on_interest_charged": "1"}, "Invalid grace on interest charged"),
    ])
    def test_integer_fields_must_be_integers(self, overrides, message):
        """Test that counts of the wrong type fail validation"""
        with pytest.raises(ValidationError, match=message):
            make_terms(**overrides)


class TestDownPaymentTerms:
    """Test down payment validation"""

    def test_type_required(self):
        with pytest.raises(ValidationError, match="Down payment type is required"):
            make_terms(enable_down_payment=True)

    def test_fixed_amount_must_be_below_principal(self):
        with pytest.raises(ValidationError, match="must be less than principal"):
            make_terms(enable_down_payment=True,
                       down_payment_type=DownPaymentType.FIXED_AMOUNT,
                       down_payment_amount=Money(Decimal('12000'), Currency.USD))

    def test_percentage_range(self):
        with pytest.raises(ValidationError, match="must be less than 100"):
            make_terms(enable_down_payment=True, down_payment_type="percentage",
                       down_payment_percentage=Decimal('100'))
        with pytest.raises(ValidationError, match="must be greater than zero"):
            make_terms(enable_down_payment=True, down_payment_type="percentage",
                       down_payment_percentage=Decimal('0'))

    def test_valid_percentage(self):
        terms = make_terms(enable_down_payment=True, down_payment_type="percentage",
                           down_payment_percentage="20")
        assert terms.down_payment_type == DownPaymentType.PERCENTAGE
        assert terms.down_payment_percentage == Decimal('20')


class TestDateArithmetic:
    """Test due date helpers"""

    def test_add_days_and_weeks(self):
        assert add_periods(date(2024, 1, 1), 10, PeriodFrequencyType.DAYS) == date(2024, 1, 11)
        assert add_periods(date(2024, 1, 1), 2, PeriodFrequencyType.WEEKS) == date(2024, 1, 15)

    def test_add_months_clamps_to_month_end(self):
        """Test that a missing day clamps to the last day of the month"""
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 1, 31), 3) == date(2024, 4, 30)
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_add_years_handles_leap_day(self):
        assert add_periods(date(2024, 2, 29), 1, PeriodFrequencyType.YEARS) == date(2025, 2, 28)

    def test_thirty_day_months(self):
        assert add_periods(date(2024, 1, 31), 1, PeriodFrequencyType.MONTHS,
                           DaysInMonthType.DAYS_30) == date(2024, 3, 1)

    def test_unsupported_unit(self):
        with pytest.raises(CalculationError, match="Unsupported frequency type"):
            add_periods(date(2024, 1, 1), 1, "fortnights")

    def test_days_in_year(self):
        assert days_in_year(DaysInYearType.DAYS_360, 2024) == 360
        assert days_in_year(DaysInYearType.DAYS_365, 2024) == 365
        assert days_in_year(DaysInYearType.ACTUAL, 2024) == 366
        assert days_in_year(DaysInYearType.ACTUAL, 2023) == 365

    def test_loan_term_in_days(self):
        assert loan_term_in_days(10, PeriodFrequencyType.DAYS) == 10
        assert loan_term_in_days(4, PeriodFrequencyType.WEEKS) == 28
        assert loan_term_in_days(12, PeriodFrequencyType.MONTHS) == 360
        assert loan_term_in_days(2, PeriodFrequencyType.YEARS) == 730
        with pytest.raises(CalculationError):
            loan_term_in_days(2, "decades")
