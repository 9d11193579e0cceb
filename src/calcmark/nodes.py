"""AST node types for the CalcMark calculation language.

Nodes are frozen dataclasses. Children are stored as nodes or tuples of
nodes, and the parser never shares a node between two parents. `Node` is
the closed union of every variant the parser can produce.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Union, get_args


@dataclass(frozen=True)
class SourceSpan:
    """Source range covered by a node (1-indexed, end exclusive)."""

    line: int
    column: int
    end_line: int
    end_column: int


@dataclass(frozen=True)
class ASTNode:
    """Base class for AST nodes."""
    pass


# -----------------------------------------------------------------------------
# Literals
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class NumberLiteral(ASTNode):
    """A plain number (percentages are stored already divided by 100)."""
    value: Decimal
    source_text: str = ""
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class CurrencyLiteral(ASTNode):
    """An amount of money: $100, 50 EUR."""
    value: Decimal
    symbol: str
    code: str
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class QuantityLiteral(ASTNode):
    """A number with a measurement or user-defined unit."""
    value: Decimal
    unit: str
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class RateLiteral(ASTNode):
    """An amount per normalized time unit: 100 MB/s, 5 GB per day."""
    amount: "Node"
    per_unit: str
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class DateLiteral(ASTNode):
    """A calendar date. Year is None when the source omits it."""
    month: int
    day: int
    year: int | None = None
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class TimeLiteral(ASTNode):
    """A clock time such as 10:30 PM or 14:00 UTC+2."""
    hour: int
    minute: int
    second: int | None = None
    period: str | None = None
    utc_offset: int | None = None  # minutes
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class DurationLiteral(ASTNode):
    """One or more (value, time unit) terms: 5 days, 3 weeks and 4 days."""
    terms: tuple[tuple[Decimal, str], ...]
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class RelativeDateLiteral(ASTNode):
    """A date keyword: today, tomorrow, next week."""
    keyword: str
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class BooleanLiteral(ASTNode):
    value: bool
    span: SourceSpan | None = field(default=None, compare=False)


# -----------------------------------------------------------------------------
# Expressions
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Identifier(ASTNode):
    """A variable reference."""
    name: str
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class UnaryOp(ASTNode):
    """A unary operation (-x, +x, not x)."""
    operator: str
    operand: "Node"
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class BinaryOp(ASTNode):
    """An arithmetic operation (a + b, a ^ b)."""
    operator: str
    left: "Node"
    right: "Node"
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class ComparisonOp(ASTNode):
    """A comparison (a > b, a == b)."""
    operator: str
    left: "Node"
    right: "Node"
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class LogicalOp(ASTNode):
    """A boolean connective (a and b, a or b)."""
    operator: str
    left: "Node"
    right: "Node"
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class FunctionCall(ASTNode):
    """A call to a built-in function, traditional or natural-language form."""
    name: str
    arguments: tuple["Node", ...]
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class UnitConversion(ASTNode):
    """Conversion to another unit: 5 km in miles, 100 MB/s in GB/hour."""
    expression: "Node"
    target_unit: str
    target_time_unit: str | None = None
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class NapkinConversion(ASTNode):
    """Rounded, human-friendly rendering: x as napkin."""
    expression: "Node"
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class PercentageOf(ASTNode):
    """X% of Y."""
    percentage: "Node"
    value: "Node"
    span: SourceSpan | None = field(default=None, compare=False)


# -----------------------------------------------------------------------------
# Statements
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Assignment(ASTNode):
    """name = expression."""
    name: str
    value: "Node"
    span: SourceSpan | None = field(default=None, compare=False)


@dataclass(frozen=True)
class FrontmatterAssignment(ASTNode):
    """@exchange.USD_EUR = 0.92 or @global.name = expression."""
    namespace: str
    property: str
    value: "Node"
    span: SourceSpan | None = field(default=None, compare=False)


Node = Union[
    NumberLiteral,
    CurrencyLiteral,
    QuantityLiteral,
    RateLiteral,
    DateLiteral,
    TimeLiteral,
    DurationLiteral,
    RelativeDateLiteral,
    BooleanLiteral,
    Identifier,
    UnaryOp,
    BinaryOp,
    ComparisonOp,
    LogicalOp,
    Assignment,
    FunctionCall,
    UnitConversion,
    NapkinConversion,
    PercentageOf,
    FrontmatterAssignment,
]

NODE_TYPES: tuple[type, ...] = get_args(Node)
