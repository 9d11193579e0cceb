"""Typed values produced by the evaluator.

Every value is a frozen dataclass. Constructors validate the invariants
the rest of the evaluator relies on: currency codes are canonical
three-letter codes, rate time units are normalized, quantity units are
canonical registry names.
"""

import datetime as dt
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Union

from calcmark.units import (
    CURRENCY_CODE_SYMBOLS,
    CURRENCY_SYMBOLS,
    TIME_UNITS,
    canonicalize,
    is_currency_code,
    time_unit_seconds,
)


def digit_count(value: Decimal) -> int:
    """Number of significant digits stored in a finite decimal."""
    return len(value.as_tuple().digits)


def format_decimal(value: Decimal) -> str:
    """Render a decimal without exponent notation or trailing zeros."""
    if value == 0:
        return "0"
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, digit_count(value))
        text = format(value.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


@dataclass(frozen=True)
class Number:
    value: Decimal

    def __str__(self) -> str:
        return format_decimal(self.value)


@dataclass(frozen=True)
class Currency:
    """A monetary amount.

    Attributes:
        value: The amount
        symbol: Display symbol ($) or the code itself when there is none
        code: Canonical ISO-style code (USD)
    """

    value: Decimal
    symbol: str
    code: str

    def __post_init__(self) -> None:
        if not is_currency_code(self.code):
            raise ValueError(f"Invalid currency code: {self.code!r}")

    @classmethod
    def of(cls, value: Decimal, symbol_or_code: str) -> "Currency":
        """Build a currency from either a prefix symbol or a code."""
        if symbol_or_code in CURRENCY_SYMBOLS:
            return cls(value, symbol_or_code, CURRENCY_SYMBOLS[symbol_or_code])
        return cls(value, CURRENCY_CODE_SYMBOLS.get(symbol_or_code, symbol_or_code), symbol_or_code)

    def __str__(self) -> str:
        with localcontext() as ctx:
            # Quantizing to cents keeps every integer digit plus two.
            ctx.prec = max(ctx.prec, self.value.adjusted() + 3)
            amount = format(self.value.quantize(Decimal("0.01"), ROUND_HALF_UP), ",f")
        if self.symbol in CURRENCY_SYMBOLS:
            if amount.startswith("-"):
                return f"-{self.symbol}{amount[1:]}"
            return f"{self.symbol}{amount}"
        return f"{amount} {self.code}"


@dataclass(frozen=True)
class Quantity:
    """A value with a unit. An empty unit marks a unitless rate amount."""

    value: Decimal
    unit: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit", canonicalize(self.unit))

    def __str__(self) -> str:
        if not self.unit:
            return format_decimal(self.value)
        return f"{format_decimal(self.value)} {self.unit}"


@dataclass(frozen=True)
class Rate:
    """An amount per time unit (100 MB/s)."""

    amount: Quantity
    per_unit: str

    def __post_init__(self) -> None:
        if self.per_unit not in TIME_UNITS:
            raise ValueError(f"Rate time unit must be normalized, got {self.per_unit!r}")

    def per_second(self) -> Decimal:
        return self.amount.value / time_unit_seconds(self.per_unit)

    def __str__(self) -> str:
        return f"{self.amount}/{self.per_unit}"


@dataclass(frozen=True)
class Duration:
    value: Decimal
    unit: str

    def __post_init__(self) -> None:
        if self.unit not in TIME_UNITS:
            raise ValueError(f"Duration unit must be normalized, got {self.unit!r}")

    @property
    def seconds(self) -> Decimal:
        return self.value * time_unit_seconds(self.unit)

    def __str__(self) -> str:
        plural = "" if self.value == 1 else "s"
        return f"{format_decimal(self.value)} {self.unit}{plural}"


@dataclass(frozen=True)
class Date:
    value: dt.date

    def __str__(self) -> str:
        return f"{self.value:%B} {self.value.day}, {self.value.year}"


@dataclass(frozen=True)
class Time:
    """A clock time, timezone-aware when the source gave a UTC offset."""

    value: dt.time

    def seconds_since_midnight(self) -> int:
        """Seconds since midnight UTC (or local midnight for naive times)."""
        total = self.value.hour * 3600 + self.value.minute * 60 + self.value.second
        offset = self.value.utcoffset()
        if offset is not None:
            total -= int(offset.total_seconds())
        return total

    def __str__(self) -> str:
        text = self.value.strftime("%H:%M:%S" if self.value.second else "%H:%M")
        offset = self.value.utcoffset()
        if offset is not None:
            minutes = int(offset.total_seconds()) // 60
            sign = "-" if minutes < 0 else "+"
            hours, minutes = divmod(abs(minutes), 60)
            text += f" UTC{sign}{hours}" + (f":{minutes:02d}" if minutes else "")
        return text


@dataclass(frozen=True)
class Boolean:
    value: bool

    def __str__(self) -> str:
        return "true" if self.value else "false"


@dataclass(frozen=True)
class Napkin:
    """A value rounded for napkin math, with its display text (~1.2M)."""

    value: Decimal
    text: str

    def __str__(self) -> str:
        return self.text


Value = Union[Number, Currency, Quantity, Rate, Duration, Date, Time, Boolean, Napkin]


def type_name(value: Value) -> str:
    """Lowercase type name used in error messages."""
    return type(value).__name__.lower()


def numeric_value(value: Value) -> Decimal | None:
    """Return the decimal magnitude of a numeric-bearing value, or None."""
    if isinstance(value, (Number, Currency, Quantity, Duration, Napkin)):
        return value.value
    if isinstance(value, Rate):
        return value.amount.value
    return None


def rate_amount(value: Value) -> Quantity:
    """Convert a rate's numerator into the Quantity stored on a Rate."""
    if isinstance(value, Quantity):
        return value
    if isinstance(value, Currency):
        return Quantity(value.value, value.code)
    if isinstance(value, (Number, Napkin)):
        return Quantity(value.value, "")
    raise TypeError(f"Cannot form a rate from {type_name(value)}")


def from_amount(amount: Quantity) -> Value:
    """Inverse of rate_amount: currency codes become Currency again."""
    if not amount.unit:
        return Number(amount.value)
    if is_currency_code(amount.unit):
        return Currency.of(amount.value, amount.unit)
    return amount


# -----------------------------------------------------------------------------
# Napkin formatting
# -----------------------------------------------------------------------------

_NAPKIN_SCALES = (
    (Decimal("1e12"), "T"),
    (Decimal("1e9"), "B"),
    (Decimal("1e6"), "M"),
    (Decimal("1e3"), "K"),
)


def round_significant(value: Decimal, figures: int) -> Decimal:
    """Round to the given number of significant figures (half up)."""
    if value == 0:
        return Decimal(0)
    exponent = value.adjusted() - figures + 1
    return value.quantize(Decimal(1).scaleb(exponent), rounding=ROUND_HALF_UP)


def napkin(value: Decimal, precision: int = 2) -> Napkin:
    """Round a value for napkin math.

    Examples:
        napkin(1234567) -> ~1.2M
        napkin(47) -> ~47
        napkin(0.0123) -> ~0.012
        napkin(0.001) -> ~0
    """
    magnitude = abs(value)
    if magnitude < Decimal("0.01"):
        return Napkin(Decimal(0), "~0")

    sign = "-" if value < 0 else ""
    for index, (divisor, suffix) in enumerate(_NAPKIN_SCALES):
        if magnitude >= divisor:
            rounded = round_significant(magnitude / divisor, precision)
            # 999.6K rounds to 1000K; promote to the next scale
            if rounded >= 1000 and index > 0:
                divisor, suffix = _NAPKIN_SCALES[index - 1]
                rounded = round_significant(magnitude / divisor, precision)
            text = f"~{sign}{format_decimal(rounded)}{suffix}"
            return Napkin(-rounded * divisor if sign else rounded * divisor, text)

    rounded = round_significant(magnitude, precision)
    if rounded >= 1000:
        return Napkin(-rounded if sign else rounded, f"~{sign}1K")
    return Napkin(-rounded if sign else rounded, f"~{sign}{format_decimal(rounded)}")
