"""
Loan Servicing Engine

Calculation core for microfinance and core banking loan servicing:
repayment schedule generation, interest recalculation, payment allocation
and early settlement. All monetary math uses Decimal.
"""

__version__ = "1.0.0"
