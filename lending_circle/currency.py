"""
Currency and Money Module

Currency codes with their minor-unit precision, an immutable Money value and
the rounding helpers used by every calculation in the engine. NEVER uses float
for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from typing import Union
from enum import Enum
import re

# High precision for intermediate calculations, rounding happens explicitly
getcontext().prec = 28

ZERO = Decimal('0')


class Currency(Enum):
    """ISO 4217 currency codes used by lending circles, with precision"""
    PEN = ("PEN", 2)  # Peruvian Sol
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    MXN = ("MXN", 2)  # Mexican Peso
    COP = ("COP", 2)  # Colombian Peso
    CLP = ("CLP", 0)  # Chilean Peso, no minor unit

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision


def quantize(value: Decimal, places: int = 2) -> Decimal:
    """Round a Decimal half-up to the given number of decimal places"""
    return value.quantize(Decimal('0.1') ** places, rounding=ROUND_HALF_UP)


def to_decimal(value: Union[str, int, Decimal]) -> Decimal:
    """
    Convert user input to Decimal

    Accepts Decimal, int or a numeric string ("1,200.50" and "1200.50" both
    work). Floats are rejected so binary rounding never leaks into amounts.

    Raises:
        ValueError: If the value cannot be represented as a Decimal
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Monetary values must not be floats: {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())
    # Comma only as thousands separator
    clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        object.__setattr__(self, 'amount', quantize(self.amount, self.currency.precision))

    def to_string(self) -> str:
        """Format for log and error messages"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
