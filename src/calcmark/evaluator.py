"""Evaluator for CalcMark AST nodes.

Walks the AST produced by the parser and computes typed values against
a VariableContext. Each node type has one `_eval_<type>` method; the
dispatcher looks it up by the node's class name.

Unit handling for binary operations lives in calcmark.operators and the
built-in functions in calcmark.builtins.
"""

import datetime as dt
import logging
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from calcmark import units
from calcmark.context import VariableContext
from calcmark.errors import CalcMarkError, DimensionalError, EvaluationError
from calcmark.frontmatter import parse_exchange_key
from calcmark.functions import FunctionRegistry
from calcmark.nodes import (
    Assignment,
    BinaryOp,
    BooleanLiteral,
    ComparisonOp,
    CurrencyLiteral,
    DateLiteral,
    DurationLiteral,
    FrontmatterAssignment,
    FunctionCall,
    Identifier,
    LogicalOp,
    NapkinConversion,
    Node,
    NumberLiteral,
    PercentageOf,
    QuantityLiteral,
    RateLiteral,
    RelativeDateLiteral,
    TimeLiteral,
    UnaryOp,
    UnitConversion,
)
from calcmark.operators import binary_op, compare, logical_op, unary_op
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
    napkin,
    rate_amount,
    type_name,
)

logger = logging.getLogger(__name__)

_RELATIVE_SHIFTS = {
    "week": relativedelta(weeks=1),
    "month": relativedelta(months=1),
    "year": relativedelta(years=1),
}


class Evaluator:
    """Evaluates AST nodes against a variable context.

    Usage:
        evaluator = Evaluator(VariableContext())
        for node in parse("x = 5\\nx * 2"):
            print(evaluator.evaluate(node))

    Args:
        context: Variables shared by every statement of the session
        today: Date used for relative dates and year-less dates
            (defaults to the current date)
    """

    def __init__(self, context: VariableContext | None = None, today: dt.date | None = None):
        self.context = context if context is not None else VariableContext()
        self._today = today

    def today(self) -> dt.date:
        return self._today or dt.date.today()

    def evaluate(self, node: Node) -> Value:
        """Evaluate a single node.

        Raises:
            EvaluationError: On undefined variables, bad operands or unknown nodes
            DimensionalError: On incompatible units
        """
        handler = getattr(self, f"_eval_{type(node).__name__.lower()}", None)
        if handler is None:
            raise EvaluationError(f"Unknown node type: {type(node).__name__}")
        try:
            return handler(node)
        except CalcMarkError as e:
            span = getattr(node, "span", None)
            if span is not None:
                e.with_location(span.line, span.column)
            raise

    # -------------------------------------------------------------------------
    # Literals
    # -------------------------------------------------------------------------

    def _eval_numberliteral(self, node: NumberLiteral) -> Number:
        return Number(node.value)

    def _eval_currencyliteral(self, node: CurrencyLiteral) -> Currency:
        return Currency(node.value, node.symbol, node.code)

    def _eval_quantityliteral(self, node: QuantityLiteral) -> Quantity:
        return Quantity(node.value, node.unit)

    def _eval_rateliteral(self, node: RateLiteral) -> Rate:
        amount = self.evaluate(node.amount)
        if isinstance(amount, Rate):
            # `r per hour` where r already holds a rate
            return FunctionRegistry.call("convert_rate", amount, node.per_unit)
        try:
            return Rate(rate_amount(amount), node.per_unit)
        except TypeError:
            raise EvaluationError(f"Cannot form a rate from {type_name(amount)}") from None

    def _eval_dateliteral(self, node: DateLiteral) -> Date:
        year = node.year if node.year is not None else self.today().year
        try:
            return Date(dt.date(year, node.month, node.day))
        except ValueError:
            raise EvaluationError(
                f"Invalid date: {year:04d}-{node.month:02d}-{node.day:02d}"
            ) from None

    def _eval_timeliteral(self, node: TimeLiteral) -> Time:
        hour = node.hour
        if node.period == "PM" and hour < 12:
            hour += 12
        elif node.period == "AM" and hour == 12:
            hour = 0

        tzinfo = None
        if node.utc_offset is not None:
            try:
                tzinfo = dt.timezone(dt.timedelta(minutes=node.utc_offset))
            except ValueError:
                raise EvaluationError(f"Invalid UTC offset: {node.utc_offset} minutes") from None

        return Time(dt.time(hour, node.minute, node.second or 0, tzinfo=tzinfo))

    def _eval_durationliteral(self, node: DurationLiteral) -> Duration:
        if len(node.terms) == 1:
            value, unit = node.terms[0]
            return Duration(value, unit)
        # Compound durations are expressed in their smallest unit
        unit = min((u for _, u in node.terms), key=units.time_unit_seconds)
        seconds = sum((v * units.time_unit_seconds(u) for v, u in node.terms), Decimal(0))
        return Duration(seconds / units.time_unit_seconds(unit), unit)

    def _eval_relativedateliteral(self, node: RelativeDateLiteral) -> Date:
        today = self.today()
        keyword = node.keyword
        if keyword in ("today", "now"):
            return Date(today)
        if keyword == "tomorrow":
            return Date(today + dt.timedelta(days=1))
        if keyword == "yesterday":
            return Date(today - dt.timedelta(days=1))

        prefix, _, period = keyword.partition(" ")
        shift = _RELATIVE_SHIFTS.get(period)
        if shift is None:
            raise EvaluationError(f"Unknown date keyword '{keyword}'")
        if prefix == "next":
            return Date(today + shift)
        if prefix == "last":
            return Date(today - shift)
        return Date(today)

    def _eval_booleanliteral(self, node: BooleanLiteral) -> Boolean:
        return Boolean(node.value)

    # -------------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------------

    def _eval_identifier(self, node: Identifier) -> Value:
        return self.context.get(node.name)

    def _eval_unaryop(self, node: UnaryOp) -> Value:
        return unary_op(node.operator, self.evaluate(node.operand))

    def _eval_binaryop(self, node: BinaryOp) -> Value:
        # Left-nested chains (1 + 2 + 3 ...) are folded iteratively so long
        # sums stay within the interpreter's recursion limit
        chain = [node]
        while isinstance(chain[-1].left, BinaryOp):
            chain.append(chain[-1].left)

        result = self.evaluate(chain[-1].left)
        for link in reversed(chain):
            right = self.evaluate(link.right)
            try:
                result = binary_op(link.operator, result, right)
            except CalcMarkError as e:
                if link.span is not None:
                    e.with_location(link.span.line, link.span.column)
                raise
        return result

    def _eval_comparisonop(self, node: ComparisonOp) -> Boolean:
        left = self.evaluate(node.left)
        right = self.evaluate(node.right)
        return compare(node.operator, left, right)

    def _eval_logicalop(self, node: LogicalOp) -> Boolean:
        chain = [node]
        while isinstance(chain[-1].left, LogicalOp):
            chain.append(chain[-1].left)

        result = self.evaluate(chain[-1].left)
        for link in reversed(chain):
            result = logical_op(link.operator, result, self.evaluate(link.right))
        return result

    def _eval_functioncall(self, node: FunctionCall) -> Value:
        try:
            definition = FunctionRegistry.get(node.name)
        except ValueError:
            raise EvaluationError(f"Unknown function '{node.name}'") from None

        unit_positions = definition.unit_positions()
        arguments: list[object] = []
        for index, argument in enumerate(node.arguments):
            if index in unit_positions:
                if not isinstance(argument, Identifier):
                    raise EvaluationError(
                        f"{node.name}() expects a unit name for "
                        f"'{definition.parameters[index].name}'"
                    )
                arguments.append(argument.name)
            else:
                arguments.append(self.evaluate(argument))

        logger.debug("Calling %s with %d argument(s)", node.name, len(arguments))
        return FunctionRegistry.call(node.name, *arguments)

    def _eval_percentageof(self, node: PercentageOf) -> Value:
        percentage = self.evaluate(node.percentage)
        value = self.evaluate(node.value)
        return binary_op("*", value, percentage)

    def _eval_napkinconversion(self, node: NapkinConversion) -> Napkin:
        value = self.evaluate(node.expression)
        if isinstance(value, (Number, Napkin)):
            return napkin(value.value)
        if isinstance(value, Currency):
            rounded = napkin(value.value)
            if value.symbol == value.code:
                return Napkin(rounded.value, f"{rounded.text} {value.code}")
            sign = "-" if rounded.text.startswith("~-") else ""
            return Napkin(rounded.value, f"~{sign}{value.symbol}{rounded.text.lstrip('~-')}")
        if isinstance(value, Quantity):
            rounded = napkin(value.value)
            text = f"{rounded.text} {value.unit}" if value.unit else rounded.text
            return Napkin(rounded.value, text)
        if isinstance(value, Duration):
            rounded = napkin(value.value)
            return Napkin(rounded.value, f"{rounded.text} {value.unit}s")
        if isinstance(value, Rate):
            rounded = napkin(value.amount.value)
            unit = f" {value.amount.unit}" if value.amount.unit else ""
            return Napkin(rounded.value, f"{rounded.text}{unit}/{value.per_unit}")
        raise EvaluationError(f"Cannot express a {type_name(value)} as napkin math")

    # -------------------------------------------------------------------------
    # Unit conversion
    # -------------------------------------------------------------------------

    def _eval_unitconversion(self, node: UnitConversion) -> Value:
        value = self.evaluate(node.expression)
        target = node.target_unit

        if isinstance(value, Napkin):
            value = Number(value.value)
        if isinstance(value, Duration):
            return self._convert_duration(value, target)
        if isinstance(value, Rate):
            return self._convert_rate(value, target, node.target_time_unit)
        if isinstance(value, Currency):
            return self._convert_currency(value, target)
        if isinstance(value, Quantity):
            if not units.are_compatible(value.unit, target):
                raise DimensionalError(f"Cannot convert {value.unit} to {target}")
            return Quantity(units.convert(value.value, value.unit, target), target)

        raise DimensionalError(f"Cannot convert a {type_name(value)} to '{target}'")

    def _convert_duration(self, value: Duration, target: str) -> Duration:
        unit = units.normalize_time_unit(target)
        if unit is None:
            raise DimensionalError(f"Cannot convert a duration to '{target}'")
        return Duration(value.seconds / units.time_unit_seconds(unit), unit)

    def _convert_rate(self, value: Rate, target: str, target_time_unit: str | None) -> Rate:
        amount = value.amount
        if target_time_unit is None and not units.are_compatible(amount.unit, target):
            # `1000 req/s in minute` changes only the time unit
            per_unit = units.normalize_time_unit(target)
            if per_unit is None:
                raise DimensionalError(f"Cannot convert {amount.unit} to {target}")
            return FunctionRegistry.call("convert_rate", value, per_unit)

        if not units.are_compatible(amount.unit, target):
            raise DimensionalError(f"Cannot convert {amount.unit} to {target}")
        converted = Rate(
            Quantity(units.convert(amount.value, amount.unit, target), target),
            value.per_unit,
        )
        if target_time_unit is None:
            return converted
        return FunctionRegistry.call("convert_rate", converted, target_time_unit)

    def _convert_currency(self, value: Currency, target: str) -> Currency:
        code = target.upper()
        if not units.is_currency_code(code):
            raise DimensionalError(f"Cannot convert currency {value.code} to '{target}'")
        rate = self.context.exchange_rate(value.code, code)
        if rate is None:
            raise DimensionalError(
                f"No exchange rate defined for {value.code} to {code} "
                f"(declare @exchange.{value.code}_{code})"
            )
        return Currency.of(value.value * rate, code)

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    def _eval_assignment(self, node: Assignment) -> Value:
        value = self.evaluate(node.value)
        self.context.set(node.name, value)
        return value

    def _eval_frontmatterassignment(self, node: FrontmatterAssignment) -> Value:
        value = self.evaluate(node.value)

        if node.namespace == "global":
            self.context.set(node.property, value)
            return value

        pair = parse_exchange_key(node.property)
        if pair is None:
            raise EvaluationError(
                f"Invalid exchange rate key '{node.property}' (expected FROM_TO, e.g. USD_EUR)"
            )
        if not isinstance(value, (Number, Napkin)):
            raise EvaluationError(
                f"Exchange rate must be a plain number, got {type_name(value)}"
            )
        self.context.set_exchange_rate(*pair, value.value)
        return Number(value.value)


def evaluate(
    nodes: list[Node], context: VariableContext | None = None
) -> list[Value]:
    """Evaluate nodes in order against a shared context.

    Args:
        nodes: Nodes returned by parse()
        context: Variables to read and assign; a fresh context if omitted

    Returns:
        One value per node

    Raises:
        EvaluationError: On the first failing node
    """
    evaluator = Evaluator(context)
    logger.debug("Evaluating %d node(s)", len(nodes))
    return [evaluator.evaluate(node) for node in nodes]
