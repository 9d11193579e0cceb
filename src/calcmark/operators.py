"""Unit-aware arithmetic and comparison for CalcMark values.

Decides, for every binary operation, whether units are preserved,
converted or rejected:

- Number op Number: plain decimal arithmetic
- Currency op Number: currency kept
- Currency op Currency: same code only, no automatic exchange
- Quantity op Quantity: right operand converted into the left unit
- Rate, Duration, Date, Time: time-aware arithmetic
- Boolean: never valid in arithmetic, only in logical operations
"""

import datetime as dt
import math
from decimal import (
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
    getcontext,
    localcontext,
)

from dateutil.relativedelta import relativedelta

from calcmark import units
from calcmark.errors import DimensionalError, EvaluationError
from calcmark.values import (
    Boolean,
    Currency,
    Date,
    Duration,
    Napkin,
    Number,
    Quantity,
    Rate,
    Time,
    Value,
    digit_count,
    from_amount,
    type_name,
)

ARITHMETIC_OPERATORS = frozenset({"+", "-", "*", "/", "%", "^"})
COMPARISON_OPERATORS = frozenset({">", "<", ">=", "<=", "==", "!="})
LOGICAL_OPERATORS = frozenset({"and", "or"})

# Ceiling on the working precision of exact operations. Results needing
# more digits than this are rounded.
MAX_EXACT_DIGITS = 1000
# Integer exponents above this go through the approximate float path.
MAX_INTEGER_EXPONENT = 10_000


# -----------------------------------------------------------------------------
# Decimal arithmetic
# -----------------------------------------------------------------------------


def _exact_precision(op: str, left: Decimal, right: Decimal) -> int:
    """Digits needed for `left op right` to come out without rounding."""
    if op == "*":
        digits = digit_count(left) + digit_count(right)
    else:
        high = max(left.adjusted(), right.adjusted())
        low = min(left.as_tuple().exponent, right.as_tuple().exponent)
        digits = high - low + 2
    return min(max(digits, getcontext().prec), MAX_EXACT_DIGITS)


def _integer_power(base: Decimal, n: int) -> Decimal:
    result = Decimal(1)
    factor = base
    remaining = abs(n)
    with localcontext() as ctx:
        ctx.prec = min(max(ctx.prec, digit_count(base) * remaining + 1), MAX_EXACT_DIGITS)
        try:
            while remaining:
                if remaining & 1:
                    result *= factor
                remaining >>= 1
                if remaining:
                    factor *= factor
        except Overflow:
            raise EvaluationError("Exponentiation result is too large") from None
    if n < 0:
        if result == 0:
            raise EvaluationError("Division by zero")
        return Decimal(1) / result
    return result


def power(base: Decimal, exponent: Decimal) -> Decimal:
    """Raise base to exponent.

    Integer exponents up to MAX_INTEGER_EXPONENT use exact repeated
    squaring, with negative exponents computed as 1 / base^|n|. Other
    exponents go through float pow and are approximate.
    """
    if exponent == exponent.to_integral_value():
        n = int(exponent)
        if abs(n) <= MAX_INTEGER_EXPONENT:
            return _integer_power(base, n)

    try:
        approximate = math.pow(float(base), float(exponent))
    except (ValueError, OverflowError) as e:
        raise EvaluationError(f"Cannot compute {base} ^ {exponent}: {e}") from None
    return Decimal(repr(approximate))


def arithmetic(op: str, left: Decimal, right: Decimal) -> Decimal:
    """Apply an arithmetic operator to two decimals.

    Addition, subtraction, multiplication and modulo are exact up to
    MAX_EXACT_DIGITS. Division rounds to the default context precision.
    """
    try:
        if op == "/":
            if right == 0:
                raise EvaluationError("Division by zero")
            return left / right
        if op == "^":
            return power(left, right)
        if op == "%" and right == 0:
            raise EvaluationError("Modulo by zero")
        if op in ("+", "-", "*", "%"):
            with localcontext() as ctx:
                ctx.prec = _exact_precision(op, left, right)
                if op == "+":
                    return left + right
                if op == "-":
                    return left - right
                if op == "*":
                    return left * right
                return left % right
    except (InvalidOperation, DivisionByZero, Overflow) as e:
        raise EvaluationError(f"Arithmetic error in '{op}': {e.__class__.__name__}") from None
    raise EvaluationError(f"Unknown operator: {op}")


# -----------------------------------------------------------------------------
# Binary operations
# -----------------------------------------------------------------------------


def _unwrap(value: Value) -> Value:
    if isinstance(value, Napkin):
        return Number(value.value)
    return value


def binary_op(op: str, left: Value, right: Value) -> Value:
    """Apply an arithmetic operator to two values.

    Raises:
        EvaluationError: For booleans, division by zero and unsupported types
        DimensionalError: When the operand units cannot be combined
    """
    left, right = _unwrap(left), _unwrap(right)

    if isinstance(left, Boolean) or isinstance(right, Boolean):
        raise EvaluationError(f"Cannot use '{op}' with a boolean value")
    if isinstance(left, Date) or isinstance(right, Date):
        return _date_op(op, left, right)
    if isinstance(left, Time) or isinstance(right, Time):
        return _time_op(op, left, right)
    if isinstance(left, Rate) or isinstance(right, Rate):
        return _rate_op(op, left, right)
    if isinstance(left, Duration) or isinstance(right, Duration):
        return _duration_op(op, left, right)
    if isinstance(left, Currency) or isinstance(right, Currency):
        return _currency_op(op, left, right)
    if isinstance(left, Quantity) or isinstance(right, Quantity):
        return _quantity_op(op, left, right)
    if isinstance(left, Number) and isinstance(right, Number):
        return Number(arithmetic(op, left.value, right.value))

    raise EvaluationError(
        f"Cannot apply '{op}' to {type_name(left)} and {type_name(right)}"
    )


def _currency_op(op: str, left: Value, right: Value) -> Value:
    if isinstance(left, Currency) and isinstance(right, Currency):
        if left.code != right.code:
            raise DimensionalError(
                f"Cannot combine {left.code} and {right.code}: "
                "currencies are not converted automatically"
            )
        if op in ("*", "/", "^"):
            raise DimensionalError(f"Cannot apply '{op}' to two {left.code} amounts")
        return Currency(arithmetic(op, left.value, right.value), left.symbol, left.code)

    if isinstance(left, Currency) and isinstance(right, Number):
        if op == "^":
            raise DimensionalError("Cannot raise a currency amount to a power")
        return Currency(arithmetic(op, left.value, right.value), left.symbol, left.code)

    if isinstance(left, Number) and isinstance(right, Currency):
        if op not in ("+", "-", "*"):
            raise DimensionalError(f"Cannot apply '{op}' to a number and {right.code}")
        return Currency(arithmetic(op, left.value, right.value), right.symbol, right.code)

    currency = left if isinstance(left, Currency) else right
    other = right if currency is left else left
    detail = f"unit '{other.unit}'" if isinstance(other, Quantity) else type_name(other)
    raise DimensionalError(f"Cannot combine currency {currency.code} with {detail}")


def _quantity_op(op: str, left: Value, right: Value) -> Value:
    if isinstance(left, Quantity) and isinstance(right, Quantity):
        if not units.are_compatible(left.unit, right.unit):
            raise DimensionalError(f"Incompatible units: {left.unit} and {right.unit}")
        converted = units.convert(right.value, right.unit, left.unit)
        if op in ("+", "-", "%"):
            return Quantity(arithmetic(op, left.value, converted), left.unit)
        if op == "/":
            return Number(arithmetic(op, left.value, converted))
        raise DimensionalError(f"Cannot apply '{op}' to {left.unit} and {right.unit}")

    if isinstance(left, Quantity) and isinstance(right, Number):
        if op == "^":
            raise DimensionalError(f"Cannot raise {left.unit} to a power")
        return Quantity(arithmetic(op, left.value, right.value), left.unit)

    if isinstance(left, Number) and isinstance(right, Quantity):
        if op not in ("+", "-", "*"):
            raise DimensionalError(f"Cannot apply '{op}' to a number and {right.unit}")
        return Quantity(arithmetic(op, left.value, right.value), right.unit)

    raise EvaluationError(
        f"Cannot apply '{op}' to {type_name(left)} and {type_name(right)}"
    )


def _rate_op(op: str, left: Value, right: Value) -> Value:
    if isinstance(left, Rate) and isinstance(right, Number):
        if op in ("*", "/"):
            amount = Quantity(arithmetic(op, left.amount.value, right.value), left.amount.unit)
            return Rate(amount, left.per_unit)
    elif isinstance(left, Number) and isinstance(right, Rate):
        if op == "*":
            amount = Quantity(left.value * right.amount.value, right.amount.unit)
            return Rate(amount, right.per_unit)
    elif isinstance(left, Rate) and isinstance(right, Rate):
        return _rate_rate_op(op, left, right)
    elif op == "*" and isinstance(left, Rate) and isinstance(right, Duration):
        return accumulate_rate(left, right)
    elif op == "*" and isinstance(left, Duration) and isinstance(right, Rate):
        return accumulate_rate(right, left)

    raise DimensionalError(
        f"Cannot apply '{op}' to {type_name(left)} and {type_name(right)}"
    )


def _rate_rate_op(op: str, left: Rate, right: Rate) -> Value:
    if not units.are_compatible(left.amount.unit, right.amount.unit):
        raise DimensionalError(
            f"Incompatible rates: {left.amount.unit}/{left.per_unit} "
            f"and {right.amount.unit}/{right.per_unit}"
        )
    # right rate expressed in the left rate's units
    converted = (
        units.convert(right.per_second(), right.amount.unit, left.amount.unit)
        * units.time_unit_seconds(left.per_unit)
    )
    if op in ("+", "-"):
        amount = Quantity(arithmetic(op, left.amount.value, converted), left.amount.unit)
        return Rate(amount, left.per_unit)
    if op == "/":
        return Number(arithmetic(op, left.amount.value, converted))
    raise DimensionalError(f"Cannot apply '{op}' to two rates")


def accumulate_rate(rate: Rate, duration: Duration) -> Value:
    """Total amount a rate produces over a duration."""
    total = rate.amount.value * duration.seconds / units.time_unit_seconds(rate.per_unit)
    return from_amount(Quantity(total, rate.amount.unit))


def _duration_op(op: str, left: Value, right: Value) -> Value:
    if isinstance(left, Duration) and isinstance(right, Duration):
        if op in ("+", "-", "%"):
            seconds = arithmetic(op, left.seconds, right.seconds)
            return Duration(seconds / units.time_unit_seconds(left.unit), left.unit)
        if op == "/":
            return Number(arithmetic(op, left.seconds, right.seconds))
        raise DimensionalError(f"Cannot apply '{op}' to two durations")

    if isinstance(left, Duration) and isinstance(right, Number):
        if op == "^":
            raise DimensionalError("Cannot raise a duration to a power")
        return Duration(arithmetic(op, left.value, right.value), left.unit)

    if isinstance(left, Number) and isinstance(right, Duration):
        if op not in ("+", "-", "*"):
            raise DimensionalError(f"Cannot apply '{op}' to a number and a duration")
        return Duration(arithmetic(op, left.value, right.value), right.unit)

    raise DimensionalError(
        f"Cannot apply '{op}' to {type_name(left)} and {type_name(right)}"
    )


def shift_date(date: dt.date, duration: Duration, sign: int = 1) -> dt.date:
    """Move a date by a duration; months and years use calendar arithmetic."""
    value = duration.value * sign
    try:
        if duration.unit in ("month", "year") and value == value.to_integral_value():
            months = int(value) * (12 if duration.unit == "year" else 1)
            return date + relativedelta(months=months)
        return date + dt.timedelta(seconds=float(duration.seconds * sign))
    except (OverflowError, ValueError):
        raise EvaluationError("Date out of range") from None


def _date_op(op: str, left: Value, right: Value) -> Value:
    if isinstance(left, Date) and isinstance(right, Duration) and op in ("+", "-"):
        return Date(shift_date(left.value, right, 1 if op == "+" else -1))
    if isinstance(left, Duration) and isinstance(right, Date) and op == "+":
        return Date(shift_date(right.value, left))
    if isinstance(left, Date) and isinstance(right, Date) and op == "-":
        return Duration(Decimal((left.value - right.value).days), "day")
    raise EvaluationError(
        f"Cannot apply '{op}' to {type_name(left)} and {type_name(right)}"
    )


def _time_op(op: str, left: Value, right: Value) -> Value:
    if isinstance(left, Time) and isinstance(right, Duration) and op in ("+", "-"):
        anchor = dt.datetime.combine(dt.date(2000, 1, 1), left.value)
        try:
            delta = dt.timedelta(seconds=float(right.seconds))
            moved = anchor + delta if op == "+" else anchor - delta
        except (OverflowError, ValueError):
            raise EvaluationError("Time out of range") from None
        return Time(moved.timetz())
    raise EvaluationError(
        f"Cannot apply '{op}' to {type_name(left)} and {type_name(right)}"
    )


# -----------------------------------------------------------------------------
# Comparison
# -----------------------------------------------------------------------------


def _comparable(left: Value, right: Value) -> tuple[object, object]:
    """Reduce two values to a pair of directly comparable Python values."""
    if isinstance(left, Number) and isinstance(right, Number):
        return left.value, right.value
    if isinstance(left, Currency) and isinstance(right, Currency):
        if left.code != right.code:
            raise DimensionalError(
                f"Cannot compare {left.code} and {right.code}: "
                "currencies are not converted automatically"
            )
        return left.value, right.value
    if isinstance(left, (Currency, Quantity, Duration)) and isinstance(right, Number):
        return left.value, right.value
    if isinstance(left, Number) and isinstance(right, (Currency, Quantity, Duration)):
        return left.value, right.value
    if isinstance(left, Quantity) and isinstance(right, Quantity):
        if not units.are_compatible(left.unit, right.unit):
            raise DimensionalError(f"Cannot compare {left.unit} and {right.unit}")
        return left.value, units.convert(right.value, right.unit, left.unit)
    if isinstance(left, Duration) and isinstance(right, Duration):
        return left.seconds, right.seconds
    if isinstance(left, Rate) and isinstance(right, Rate):
        if not units.are_compatible(left.amount.unit, right.amount.unit):
            raise DimensionalError("Cannot compare rates with incompatible units")
        return left.per_second(), units.convert(
            right.per_second(), right.amount.unit, left.amount.unit
        )
    if isinstance(left, Date) and isinstance(right, Date):
        return left.value, right.value
    if isinstance(left, Time) and isinstance(right, Time):
        return left.seconds_since_midnight(), right.seconds_since_midnight()
    raise DimensionalError(f"Cannot compare {type_name(left)} and {type_name(right)}")


def compare(op: str, left: Value, right: Value) -> Boolean:
    """Apply a comparison operator, returning a Boolean."""
    left, right = _unwrap(left), _unwrap(right)

    if isinstance(left, Boolean) or isinstance(right, Boolean):
        if not (isinstance(left, Boolean) and isinstance(right, Boolean)):
            raise EvaluationError("Cannot compare a boolean with a non-boolean value")
        if op == "==":
            return Boolean(left.value == right.value)
        if op == "!=":
            return Boolean(left.value != right.value)
        raise EvaluationError(f"Cannot use '{op}' with boolean values")

    a, b = _comparable(left, right)
    if op == "==":
        return Boolean(a == b)
    if op == "!=":
        return Boolean(a != b)
    if op == "<":
        return Boolean(a < b)
    if op == "<=":
        return Boolean(a <= b)
    if op == ">":
        return Boolean(a > b)
    if op == ">=":
        return Boolean(a >= b)
    raise EvaluationError(f"Unknown comparison operator: {op}")


# -----------------------------------------------------------------------------
# Unary operations
# -----------------------------------------------------------------------------


def unary_op(op: str, operand: Value) -> Value:
    """Apply a unary sign or logical negation.

    Signs preserve the operand's unit. `not` takes only booleans.
    """
    operand = _unwrap(operand)
    if op == "not":
        if not isinstance(operand, Boolean):
            raise EvaluationError(f"'not' requires a boolean, got {type_name(operand)}")
        return Boolean(not operand.value)
    if isinstance(operand, Boolean):
        raise EvaluationError(f"Cannot use unary '{op}' with a boolean value")
    if op not in ("+", "-"):
        raise EvaluationError(f"Unknown unary operator: {op}")

    def signed(value: Decimal) -> Decimal:
        return value.copy_negate() if op == "-" else value

    if isinstance(operand, Number):
        return Number(signed(operand.value))
    if isinstance(operand, Currency):
        return Currency(signed(operand.value), operand.symbol, operand.code)
    if isinstance(operand, Quantity):
        return Quantity(signed(operand.value), operand.unit)
    if isinstance(operand, Duration):
        return Duration(signed(operand.value), operand.unit)
    if isinstance(operand, Rate):
        return Rate(Quantity(signed(operand.amount.value), operand.amount.unit), operand.per_unit)
    raise EvaluationError(f"Cannot use unary '{op}' with a {type_name(operand)}")


# -----------------------------------------------------------------------------
# Logical operations
# -----------------------------------------------------------------------------


def logical_op(op: str, left: Value, right: Value) -> Boolean:
    """Combine two booleans with `and` or `or`.

    Both operands must already be booleans; numbers are never truthy.
    """
    left, right = _unwrap(left), _unwrap(right)
    for operand in (left, right):
        if not isinstance(operand, Boolean):
            raise EvaluationError(f"'{op}' requires boolean operands, got {type_name(operand)}")
    if op == "and":
        return Boolean(left.value and right.value)
    if op == "or":
        return Boolean(left.value or right.value)
    raise EvaluationError(f"Unknown logical operator: {op}")
