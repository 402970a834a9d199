"""
Loan Engine Exceptions

Error taxonomy shared by every calculation module. All errors derive from
ValueError so callers that only know about ValueError keep working.
"""


class LoanEngineError(ValueError):
    """Base class for all loan engine errors"""


class ValidationError(LoanEngineError):
    """Malformed loan terms or engine configuration"""


class CalculationError(LoanEngineError):
    """Unsupported value reached a calculation switch"""


class StateError(LoanEngineError):
    """Loan is not in the status required by the operation"""

    def __init__(self, message: str, status=None):
        super().__init__(message)
        self.status = status


class MoneyError(LoanEngineError):
    """Base class for money arithmetic errors"""


class CurrencyMismatchError(MoneyError):
    """Binary money operation across two currencies"""

    def __init__(self, message: str, left=None, right=None):
        super().__init__(message)
        self.left = left
        self.right = right


class DivisionByZeroError(MoneyError):
    """Money divided by zero"""


class InvalidCurrencyError(MoneyError):
    """Unknown or malformed ISO 4217 currency code"""
