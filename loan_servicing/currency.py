"""
Currency and Money Module

Handles ISO 4217 currency codes and proper Decimal precision for loan
calculations. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from typing import Union
from enum import Enum
import re

from .exceptions import CurrencyMismatchError, DivisionByZeroError, InvalidCurrencyError

# Set global decimal context for financial precision
getcontext().prec = 28  # High precision for financial calculations

_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    GBP = ("GBP", 2)  # British Pound
    CAD = ("CAD", 2)  # Canadian Dollar
    CHF = ("CHF", 2)  # Swiss Franc
    AUD = ("AUD", 2)  # Australian Dollar
    INR = ("INR", 2)  # Indian Rupee
    ZAR = ("ZAR", 2)  # South African Rand
    KES = ("KES", 2)  # Kenyan Shilling
    TZS = ("TZS", 2)  # Tanzanian Shilling
    NGN = ("NGN", 2)  # Nigerian Naira
    GHS = ("GHS", 2)  # Ghanaian Cedi
    PHP = ("PHP", 2)  # Philippine Peso
    UGX = ("UGX", 0)  # Ugandan Shilling, no minor unit
    JPY = ("JPY", 0)  # Japanese Yen
    KRW = ("KRW", 0)  # South Korean Won
    HUF = ("HUF", 0)  # Hungarian Forint, cash rounding
    ISK = ("ISK", 0)  # Icelandic Krona
    BHD = ("BHD", 3)  # Bahraini Dinar
    IQD = ("IQD", 3)  # Iraqi Dinar
    JOD = ("JOD", 3)  # Jordanian Dinar
    KWD = ("KWD", 3)  # Kuwaiti Dinar
    LYD = ("LYD", 3)  # Libyan Dinar
    OMR = ("OMR", 3)  # Omani Rial
    TND = ("TND", 3)  # Tunisian Dinar

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: Union[str, 'Currency']) -> 'Currency':
        """
        Resolve an ISO 4217 code to a Currency

        Raises:
            InvalidCurrencyError: If the code is malformed or not supported
        """
        if isinstance(code, Currency):
            return code
        if not isinstance(code, str) or not _CODE_PATTERN.match(code.strip().upper()):
            raise InvalidCurrencyError(f"Invalid currency code: {code!r}")
        try:
            return cls[code.strip().upper()]
        except KeyError:
            raise InvalidCurrencyError(f"Unsupported currency code: {code}") from None


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.currency, Currency):
            object.__setattr__(self, 'currency', Currency.from_code(self.currency))
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        # Round to currency precision
        rounded = self.amount.quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def of(cls, currency: Union[str, Currency], amount) -> 'Money':
        """Build money from a currency (or ISO code) and any numeric value"""
        return cls(_to_decimal(amount), Currency.from_code(currency))

    @classmethod
    def zero(cls, currency: Union[str, Currency]) -> 'Money':
        return cls(Decimal('0'), Currency.from_code(currency))

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Cannot {verb} {self.currency.code} and {other.currency.code}",
                left=self.currency, right=other.currency
            )

    def plus(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def minus(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def multiplied_by(self, multiplier) -> 'Money':
        return Money(self.amount * _to_decimal(multiplier), self.currency)

    def divided_by(self, divisor) -> 'Money':
        divisor = _to_decimal(divisor)
        if divisor == 0:
            raise DivisionByZeroError("Cannot divide by zero")
        return Money(self.amount / divisor, self.currency)

    def negated(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def absolute(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def is_greater_than(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def is_less_than(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def is_equal_to(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount == other.amount

    def round_to_multiples_of(self, multiple) -> 'Money':
        """
        Round to the nearest multiple, halves rounding away from zero

        Args:
            multiple: Rounding step, e.g. 50 for cash-rounded installments

        Returns:
            Rounded Money; unchanged when multiple is zero
        """
        multiple = _to_decimal(multiple)
        if multiple == 0:
            return self
        steps = (self.amount / multiple).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
        return Money(steps * multiple, self.currency)

    __add__ = plus
    __sub__ = minus
    __mul__ = multiplied_by
    __truediv__ = divided_by
    __neg__ = negated
    __abs__ = absolute
    __gt__ = is_greater_than
    __lt__ = is_less_than

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self):
        return hash((self.amount, self.currency))

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        else:
            return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
