"""
Test suite for schedule generator module

Tests EMI calculation, flat and declining-balance schedules, equal principal
amortization, due date layout and down payments. All financial math must be
precise to the cent.
"""

import logging
import pytest
from decimal import Decimal
from datetime import date

from loan_servicing.currency import Money, Currency
from loan_servicing.exceptions import CalculationError
from loan_servicing.generator import ScheduleGenerator, annuity_installment
from loan_servicing.schedule import PeriodType
from loan_servicing.terms import (
    LoanApplicationTerms, PeriodFrequencyType, InterestMethod, AmortizationMethod,
    DownPaymentType
)


def make_terms(principal='12000', rate='1', repayments=12, **overrides):
    values = dict(
        principal_amount=Money(Decimal(principal), Currency.USD),
        loan_term_frequency=repayments,
        loan_term_frequency_type=PeriodFrequencyType.MONTHS,
        number_of_repayments=repayments,
        repayment_every=1,
        repayment_frequency_type=PeriodFrequencyType.MONTHS,
        interest_rate_per_period=Decimal(rate),
        interest_method=InterestMethod.DECLINING_BALANCE,
        amortization_method=AmortizationMethod.EQUAL_INSTALLMENTS,
        expected_disbursement_date=date(2024, 1, 1),
    )
    values.update(overrides)
    return LoanApplicationTerms(**values)


class TestEMICalculation:
    """Test installment amount calculation"""

    def setup_method(self):
        self.generator = ScheduleGenerator()

    def test_declining_balance_emi(self):
        """Test the annuity formula for 12000 at 1% over 12 periods"""
        emi = self.generator.calculate_emi(make_terms())
        assert emi == Money(Decimal('1066.19'), Currency.USD)

    def test_annuity_identity(self):
        """Test that the EMI discounts back to the principal"""
        principal = Decimal('12000')
        rate = Decimal('0.01')
        emi = annuity_installment(principal, rate, 12)
        present_value = sum(emi / (1 + rate) ** k for k in range(1, 13))
        assert abs(present_value - principal) < Decimal('0.000001')

    def test_zero_rate_emi(self):
        """Test that a zero rate splits the principal evenly"""
        emi = self.generator.calculate_emi(make_terms(principal='1200', rate='0'))
        assert emi.amount == Decimal('100.00')

    def test_flat_emi(self):
        """Test flat EMI = (P + P*r*n) / n"""
        terms = make_terms(principal='10000', rate='2', repayments=5,
                           interest_method=InterestMethod.FLAT)
        assert self.generator.calculate_emi(terms).amount == Decimal('2400.00')

    def test_emi_rounded_to_currency_precision(self):
        """Test that JPY installments carry no minor unit"""
        terms = make_terms(principal_amount=Money(Decimal('100000'), Currency.JPY), rate='1')
        emi = self.generator.calculate_emi(terms)
        assert emi.currency == Currency.JPY
        assert emi.amount == emi.amount.to_integral_value()


class TestDecliningBalanceSchedule:
    """Test declining balance, equal installment schedules"""

    def setup_method(self):
        self.generator = ScheduleGenerator()
        self.terms = make_terms()
        self.schedule = self.generator.generate(self.terms)

    def test_period_count(self):
        """Test disbursement period plus one period per repayment"""
        assert len(self.schedule.periods) == 13
        assert len(self.schedule.repayment_periods) == 12

    def test_disbursement_period(self):
        """Test period zero"""
        period = self.schedule.periods[0]
        assert period.period_number == 0
        assert period.period_type == PeriodType.DISBURSEMENT
        assert period.principal_disbursed == Decimal('12000')
        assert period.principal_balance_outstanding == Decimal('12000')
        assert period.total_due == Decimal('0')
        assert period.due_date == date(2024, 1, 1)

    def test_first_installment(self):
        """Test the split of the first installment"""
        period = self.schedule.periods[1]
        assert period.interest.due == Decimal('120.00')
        assert period.principal.due == Decimal('946.19')
        assert period.principal_balance_outstanding == Decimal('11053.81')
        assert period.total_due == Decimal('1066.19')
        assert period.days_in_period == 31

    def test_second_installment(self):
        period = self.schedule.periods[2]
        assert period.interest.due == Decimal('110.54')
        assert period.principal.due == Decimal('955.65')
        assert period.principal_balance_outstanding == Decimal('10098.16')

    def test_principal_sums_to_loan_amount(self):
        """Test that principal dues add up to the principal exactly"""
        assert self.schedule.total_principal == Decimal('12000')

    def test_balance_declines_to_zero(self):
        """Test that outstanding balance never increases and ends at zero"""
        balances = [p.principal_balance_outstanding for p in self.schedule.periods]
        assert all(later <= earlier for earlier, later in zip(balances, balances[1:]))
        assert balances[-1] == Decimal('0')

    def test_amounts_rounded_to_cents(self):
        for period in self.schedule.repayment_periods:
            assert period.principal.due == period.principal.due.quantize(Decimal('0.01'))
            assert period.interest.due == period.interest.due.quantize(Decimal('0.01'))

    def test_totals(self):
        """Test derived schedule totals"""
        schedule = self.schedule
        assert schedule.total_interest == sum(p.interest.due for p in schedule.repayment_periods)
        assert schedule.total_repayment_expected == schedule.total_principal + schedule.total_interest
        assert schedule.total_outstanding == schedule.total_repayment_expected
        assert schedule.loan_term_in_days == 360
        assert schedule.currency == Currency.USD

    def test_installments_level_until_last(self):
        totals = {p.total_due for p in self.schedule.repayment_periods[:-1]}
        assert totals == {Decimal('1066.19')}
        assert abs(self.schedule.repayment_periods[-1].total_due - Decimal('1066.19')) < Decimal('0.10')


class TestFlatSchedule:
    """Test flat interest schedules"""

    def setup_method(self):
        self.generator = ScheduleGenerator()

    def test_flat_periods(self):
        """Test constant principal and interest per period"""
        terms = make_terms(principal='10000', rate='2', repayments=5,
                           interest_method=InterestMethod.FLAT)
        schedule = self.generator.generate(terms)

        for period in schedule.repayment_periods:
            assert period.principal.due == Decimal('2000.00')
            assert period.interest.due == Decimal('200.00')
        assert schedule.total_interest == Decimal('1000.00')
        assert schedule.total_repayment_expected == Decimal('11000.00')

    def test_flat_last_period_absorbs_rounding(self):
        """Test that the final period settles the rounding remainder"""
        terms = make_terms(principal='1000', rate='0', repayments=3,
                           interest_method=InterestMethod.FLAT)
        schedule = self.generator.generate(terms)

        dues = [p.principal.due for p in schedule.repayment_periods]
        assert dues == [Decimal('333.33'), Decimal('333.33'), Decimal('333.34')]
        assert schedule.total_principal == Decimal('1000')


class TestEqualPrincipalSchedule:
    """Test equal principal amortization"""

    def setup_method(self):
        self.generator = ScheduleGenerator()

    def test_declining_interest(self):
        terms = make_terms(principal='1200', rate='1', repayments=3,
                           amortization_method=AmortizationMethod.EQUAL_PRINCIPAL)
        schedule = self.generator.generate(terms)

        assert [p.principal.due for p in schedule.repayment_periods] == [Decimal('400.00')] * 3
        assert [p.interest.due for p in schedule.repayment_periods] == [
            Decimal('12.00'), Decimal('8.00'), Decimal('4.00')
        ]
        assert schedule.periods[-1].principal_balance_outstanding == Decimal('0')

    def test_flat_interest(self):
        terms = make_terms(principal='1200', rate='1', repayments=3,
                           interest_method=InterestMethod.FLAT,
                           amortization_method=AmortizationMethod.EQUAL_PRINCIPAL)
        schedule = self.generator.generate(terms)
        assert [p.interest.due for p in schedule.repayment_periods] == [Decimal('12.00')] * 3


class TestRepaymentDates:
    """Test due date layout"""

    def setup_method(self):
        self.generator = ScheduleGenerator()

    def test_month_end_does_not_drift(self):
        """Test month-end disbursement keeps landing on month ends"""
        terms = make_terms(repayments=3, expected_disbursement_date=date(2024, 1, 31))
        assert self.generator.repayment_dates(terms) == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)
        ]

    def test_grace_on_principal_shifts_first_due_date(self):
        terms = make_terms(repayments=2, grace_on_principal_payment=2,
                           expected_disbursement_date=date(2024, 1, 15))
        assert self.generator.repayment_dates(terms) == [date(2024, 4, 15), date(2024, 5, 15)]

    def test_weekly_repayments(self):
        terms = make_terms(repayments=3, repayment_every=2,
                           loan_term_frequency=6,
                           loan_term_frequency_type=PeriodFrequencyType.WEEKS,
                           repayment_frequency_type=PeriodFrequencyType.WEEKS)
        assert self.generator.repayment_dates(terms) == [
            date(2024, 1, 15), date(2024, 1, 29), date(2024, 2, 12)
        ]
        schedule = self.generator.generate(terms)
        assert schedule.loan_term_in_days == 42
        assert [p.days_in_period for p in schedule.repayment_periods] == [14, 14, 14]

    def test_period_dates_chain(self):
        """Test each period starts where the previous one ended"""
        schedule = self.generator.generate(make_terms())
        for previous, current in zip(schedule.periods, schedule.periods[1:]):
            assert current.from_date == previous.due_date


class TestDownPayment:
    """Test schedules with a down payment"""

    def setup_method(self):
        self.generator = ScheduleGenerator()

    def test_percentage_down_payment(self):
        terms = make_terms(principal='10000', rate='0', repayments=4,
                           enable_down_payment=True,
                           down_payment_type=DownPaymentType.PERCENTAGE,
                           down_payment_percentage=Decimal('20'))
        details = self.generator.calculate_down_payment(terms)
        assert details.down_payment_amount == Money(Decimal('2000'), Currency.USD)
        assert details.effective_principal_amount == Money(Decimal('8000'), Currency.USD)
        assert details.transaction_date == date(2024, 1, 1)

        schedule = self.generator.generate(terms)
        assert len(schedule.periods) == 6
        down_payment = schedule.periods[1]
        assert down_payment.period_type == PeriodType.DOWN_PAYMENT
        assert down_payment.due_date == date(2024, 1, 1)
        assert down_payment.principal.due == Decimal('2000.00')
        assert down_payment.principal_balance_outstanding == Decimal('8000.00')

        assert [p.period_number for p in schedule.repayment_periods] == [2, 3, 4, 5]
        assert [p.principal.due for p in schedule.repayment_periods] == [Decimal('2000.00')] * 4
        assert schedule.total_principal == Decimal('8000.00')
        assert schedule.down_payment_amount == Decimal('2000.00')

    def test_fixed_down_payment(self):
        terms = make_terms(principal='10000', repayments=4,
                           enable_down_payment=True,
                           down_payment_type=DownPaymentType.FIXED_AMOUNT,
                           down_payment_amount=Money(Decimal('1500'), Currency.USD))
        schedule = self.generator.generate(terms)
        assert schedule.total_principal == Decimal('8500.00')
        assert schedule.down_payment_amount == Decimal('1500.00')

    def test_no_down_payment(self):
        assert self.generator.calculate_down_payment(make_terms()) is None


class TestScheduleSerialization:
    """Test dictionary rendering"""

    def test_to_dict(self):
        schedule = ScheduleGenerator().generate(make_terms(repayments=2))
        data = schedule.to_dict()
        assert data['currency'] == 'USD'
        assert len(data['periods']) == 3
        assert data['periods'][0]['period_type'] == 'disbursement'
        assert data['periods'][1]['interest']['due'] == '120.00'
        assert data['total_principal'] == str(schedule.total_principal)


class TestGenerationFailure:
    """Test failures while building installments"""

    def test_failure_logged_and_raised(self, monkeypatch, caplog):
        generator = ScheduleGenerator()

        def failing_periods(*args, **kwargs):
            raise CalculationError("Unsupported amortization method: balloon")

        monkeypatch.setattr(generator, "_repayment_periods", failing_periods)
        with caplog.at_level(logging.ERROR, logger="loan_servicing"):
            with pytest.raises(CalculationError, match="balloon"):
                generator.generate(make_terms())
        assert any(r.levelno == logging.ERROR and "Failed to generate repayment schedule" in r.getMessage()
                   for r in caplog.records)
