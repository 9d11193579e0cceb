"""Parser for the CalcMark calculation language.

Converts a stream of tokens into AST nodes, one per non-blank line.
Uses recursive descent parsing with operator precedence.

Operator Precedence (lowest to highest):
1. = (assignment, top level only)
2. or
3. and
4. == != < <= > >= (non-associative)
5. + -
6. * / % and natural-language constructs (per, in, over, at, with, as)
7. - + not (unary)
8. ^ (right-associative)
9. () function calls, parentheses

`and` is only a logical operator where nothing tighter claims it: the
lexer folds duration chains (3 weeks and 4 days) into one literal, and
`with <capacity> and <pct>` takes its own `and`.

Natural-language constructs are matched after the multiplicative chain,
in a fixed order; the first one that matches wins:
    downtime per <unit>, in <unit>, <rate> per <unit>, over <duration>,
    at <capacity> per <unit>, with <capacity>, as napkin
"""

import logging
import re
from decimal import Decimal

from calcmark import units
from calcmark.config import DEFAULT_CONFIG, CalcMarkConfig
from calcmark.errors import ParseError, SecurityError
from calcmark.functions import FunctionDefinition, FunctionRegistry
from calcmark.lexer import BOOLEAN_KEYWORDS, KEYWORDS, Lexer, Token, TokenType
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
    SourceSpan,
    TimeLiteral,
    UnaryOp,
    UnitConversion,
)

logger = logging.getLogger(__name__)

COMPARISON_TOKENS = (
    TokenType.EQ,
    TokenType.NEQ,
    TokenType.LT,
    TokenType.LTE,
    TokenType.GT,
    TokenType.GTE,
)

KEYWORD_TOKENS = frozenset(KEYWORDS.values()) | {TokenType.FUNCTION, TokenType.BOOLEAN}

FRONTMATTER_NAMESPACES = frozenset({"exchange", "global"})

_TIME_VALUE = re.compile(
    r"(\d+):(\d+)(?::(\d+))?(?: (AM|PM))?(?: UTC([+-])(\d+):(\d+))?"
)


class Parser:
    """Recursive descent parser for the calculation language.

    Usage:
        parser = Parser("price = $1.5k\\ntotal = price * 12")
        nodes = parser.parse()
    """

    def __init__(self, source: str | bytes, config: CalcMarkConfig | None = None):
        self.config = config or DEFAULT_CONFIG
        self.lexer = Lexer(source, self.config)
        self.source = self.lexer.source
        self.tokens = self.lexer.tokenize()
        self.position = 0
        self.depth = 0

    def parse(self) -> list[Node]:
        """Parse every non-blank line and return one node per line."""
        self._check_token_count()

        nodes: list[Node] = []
        try:
            while not self._is_at_end():
                if self._match(TokenType.NEWLINE):
                    self._advance()
                    continue
                nodes.append(self._parse_statement())
                if not self._match(TokenType.NEWLINE, TokenType.EOF):
                    token = self._current()
                    raise self._error(f"Unexpected token '{token.lexeme}'", token)
        except RecursionError:
            token = self._current()
            raise SecurityError(
                "expression nesting depth exceeds security limit: "
                "interpreter recursion limit reached",
                token.line,
                token.column,
            ) from None
        return nodes

    def _check_token_count(self) -> None:
        count = sum(
            1 for t in self.tokens if t.type not in (TokenType.NEWLINE, TokenType.EOF)
        )
        limit = self.config.max_token_count
        if count > limit:
            raise SecurityError(
                f"token count exceeds security limit: {count} tokens (max {limit})",
                1,
                1,
                limit=limit,
                actual=count,
            )

    # -------------------------------------------------------------------------
    # Helper methods
    # -------------------------------------------------------------------------

    def _current(self) -> Token:
        """Get current token."""
        return self._peek(0)

    def _peek(self, offset: int = 0) -> Token:
        """Peek at a token without consuming it."""
        pos = self.position + offset
        if pos >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[pos]

    def _previous(self) -> Token:
        return self.tokens[max(self.position - 1, 0)]

    def _is_at_end(self) -> bool:
        """Check if we've consumed all tokens."""
        return self._current().type == TokenType.EOF

    def _advance(self) -> Token:
        """Consume and return current token."""
        token = self._current()
        if token.type != TokenType.EOF:
            self.position += 1
        return token

    def _match(self, *types: TokenType) -> bool:
        """Check if current token matches any of the given types."""
        return self._current().type in types

    def _match_word(self, word: str, offset: int = 0) -> bool:
        """Check for a contextual keyword that lexes as an identifier."""
        token = self._peek(offset)
        return token.type == TokenType.IDENTIFIER and token.value.lower() == word

    def _consume(self, token_type: TokenType, message: str) -> Token:
        """Consume a token of the expected type, or raise error."""
        if self._current().type == token_type:
            return self._advance()
        raise self._error(message, self._current())

    def _is_time_unit_at(self, offset: int) -> bool:
        token = self._peek(offset)
        return (
            token.type == TokenType.IDENTIFIER
            and units.normalize_time_unit(token.value) is not None
        )

    def _error(self, message: str, token: Token) -> ParseError:
        if token.type == TokenType.EOF and message.startswith("Unexpected token"):
            message = "Unexpected end of expression"
        return ParseError(message, token.line, token.column)

    def _span(self, start: Token) -> SourceSpan:
        end = self._previous()
        if end.position < start.position:
            end = start
        return SourceSpan(start.line, start.column, end.line, end.column + len(end.lexeme))

    def _enter_nesting(self, token: Token) -> None:
        self.depth += 1
        limit = self.config.max_nesting_depth
        if self.depth > limit:
            raise SecurityError(
                f"expression nesting depth exceeds security limit: "
                f"{self.depth} levels (max {limit})",
                token.line,
                token.column,
                limit=limit,
                actual=self.depth,
            )

    def _exit_nesting(self) -> None:
        self.depth -= 1

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    def _parse_statement(self) -> Node:
        token = self._current()

        if token.type == TokenType.AT_SIGN:
            return self._parse_frontmatter_assignment()

        if self._peek(1).type == TokenType.ASSIGN:
            if token.type == TokenType.IDENTIFIER:
                if token.value.lower() in BOOLEAN_KEYWORDS:
                    raise self._error(
                        f"Cannot assign to boolean keyword '{token.lexeme}'", token
                    )
                self._advance()
                self._advance()
                value = self._parse_expression()
                return Assignment(token.value, value, self._span(token))
            if token.type in KEYWORD_TOKENS:
                kind = "boolean" if token.type == TokenType.BOOLEAN else "reserved"
                raise self._error(f"Cannot assign to {kind} keyword '{token.lexeme}'", token)

        return self._parse_expression()

    def _parse_frontmatter_assignment(self) -> FrontmatterAssignment:
        start = self._advance()
        namespace = self._current()
        if namespace.type != TokenType.IDENTIFIER or namespace.value not in FRONTMATTER_NAMESPACES:
            raise self._error(
                f"Unknown frontmatter namespace '@{namespace.lexeme}' "
                "(expected @exchange or @global)",
                namespace,
            )
        self._advance()
        self._consume(TokenType.DOT, f"Expected '.' after '@{namespace.value}'")
        prop = self._consume(
            TokenType.IDENTIFIER, f"Expected property name after '@{namespace.value}.'"
        )
        self._consume(TokenType.ASSIGN, "Expected '=' in frontmatter assignment")
        value = self._parse_expression()
        return FrontmatterAssignment(namespace.value, prop.value, value, self._span(start))

    # -------------------------------------------------------------------------
    # Parsing methods (in order of precedence, lowest to highest)
    # -------------------------------------------------------------------------

    def _parse_expression(self) -> Node:
        return self._parse_or()

    def _parse_or(self) -> Node:
        start = self._current()
        left = self._parse_and()

        while self._match(TokenType.OR):
            self._advance()
            right = self._parse_and()
            left = LogicalOp("or", left, right, self._span(start))

        return left

    def _parse_and(self) -> Node:
        start = self._current()
        left = self._parse_comparison()

        while self._match(TokenType.AND):
            self._advance()
            right = self._parse_comparison()
            left = LogicalOp("and", left, right, self._span(start))

        return left

    def _parse_comparison(self) -> Node:
        start = self._current()
        left = self._parse_additive()

        if self._match(*COMPARISON_TOKENS):
            operator = self._advance().value
            right = self._parse_additive()
            if self._match(*COMPARISON_TOKENS):
                raise self._error("Comparison operators cannot be chained", self._current())
            return ComparisonOp(operator, left, right, self._span(start))

        return left

    def _parse_additive(self) -> Node:
        start = self._current()
        left = self._parse_multiplicative()

        while self._match(TokenType.PLUS, TokenType.MINUS):
            operator = self._advance().value
            right = self._parse_multiplicative()
            left = BinaryOp(operator, left, right, self._span(start))

        return left

    def _parse_multiplicative(self) -> Node:
        start = self._current()
        left = self._parse_multiplicative_chain()

        if (
            not isinstance(left, RateLiteral)
            and self._match(TokenType.PER)
            and self._is_time_unit_at(1)
        ):
            self._advance()
            unit = self._advance()
            left = RateLiteral(
                left, units.normalize_time_unit(unit.value), self._span(start)
            )

        return self._parse_trailing(left, start)

    def _parse_multiplicative_chain(self) -> Node:
        """* / % chain; `/ <time unit>` forms a rate instead of dividing."""
        start = self._current()
        left = self._parse_unary()

        while self._match(TokenType.MULTIPLY, TokenType.DIVIDE, TokenType.MODULO):
            if self._match(TokenType.DIVIDE) and self._is_time_unit_at(1):
                self._advance()
                unit = self._advance()
                left = RateLiteral(
                    left, units.normalize_time_unit(unit.value), self._span(start)
                )
                continue
            operator = self._advance().value
            right = self._parse_unary()
            left = BinaryOp(operator, left, right, self._span(start))

        return left

    def _parse_trailing(self, left: Node, start: Token) -> Node:
        """Match at most one natural-language construct after an operand."""
        if self._match_word("downtime"):
            return self._parse_downtime(left, start)
        if self._match(TokenType.IN):
            return self._parse_unit_conversion(left, start)
        if self._match(TokenType.PER) and isinstance(left, RateLiteral):
            return self._parse_rate_conversion(left, start)
        if self._match(TokenType.OVER):
            self._advance()
            duration = self._parse_unary()
            return FunctionCall("accumulate", (left, duration), self._span(start))
        if self._match(TokenType.AT):
            return self._parse_capacity(left, start)
        if self._match(TokenType.WITH):
            return self._parse_requires(left, start)
        if self._match(TokenType.AS):
            self._advance()
            if not self._match_word("napkin"):
                raise self._error("Expected 'napkin' after 'as'", self._current())
            self._advance()
            return NapkinConversion(left, self._span(start))
        return left

    def _parse_time_unit_name(self, after: str) -> Identifier:
        token = self._current()
        if not self._is_time_unit_at(0):
            raise self._error(f"Expected a time unit after '{after}'", token)
        self._advance()
        return Identifier(units.normalize_time_unit(token.value), self._span(token))

    def _parse_downtime(self, availability: Node, start: Token) -> FunctionCall:
        self._advance()
        self._consume(TokenType.PER, "Expected 'per' after 'downtime'")
        unit = self._parse_time_unit_name("per")
        return FunctionCall("downtime", (availability, unit), self._span(start))

    def _parse_rate_conversion(self, rate: Node, start: Token) -> FunctionCall:
        self._advance()
        unit = self._parse_time_unit_name("per")
        return FunctionCall("convert_rate", (rate, unit), self._span(start))

    def _parse_unit_conversion(self, expression: Node, start: Token) -> UnitConversion:
        self._advance()
        unit_token = self._current()
        if unit_token.type != TokenType.IDENTIFIER:
            raise self._error("Expected unit name after 'in'", unit_token)
        self._advance()

        unit = unit_token.value
        if self._match(TokenType.IDENTIFIER):
            fused = units.multiword(unit, self._current().value)
            if fused is not None:
                self._advance()
                unit = fused

        target_time_unit = None
        if self._match(TokenType.DIVIDE, TokenType.PER) and self._is_time_unit_at(1):
            self._advance()
            target_time_unit = units.normalize_time_unit(self._advance().value)

        return UnitConversion(
            expression, units.canonicalize(unit), target_time_unit, self._span(start)
        )

    def _parse_capacity(self, demand: Node, start: Token) -> FunctionCall:
        """<demand> at <capacity> per <unit> [with <pct> buffer]"""
        self._advance()
        capacity = self._parse_capacity_value()

        if not self._match(TokenType.PER, TokenType.DIVIDE):
            raise self._error(
                "Expected 'per' after capacity in 'at' expression", self._current()
            )
        self._advance()
        unit_token = self._consume(TokenType.IDENTIFIER, "Expected unit name after 'per'")
        arguments: list[Node] = [
            demand,
            capacity,
            Identifier(unit_token.value, self._span(unit_token)),
        ]

        if self._match(TokenType.WITH):
            self._advance()
            arguments.append(self._parse_unary())
            if not self._match_word("buffer"):
                raise self._error("Expected 'buffer' after percentage", self._current())
            self._advance()

        return FunctionCall("capacity", tuple(arguments), self._span(start))

    def _parse_capacity_value(self) -> Node:
        """Parse the capacity operand of an `at` clause.

        A `/` followed by a time unit makes a rate (450 req/s). A `/`
        followed by any other identifier belongs to the outer clause
        (2 TB/disk), so the cursor is restored and parsing stops. A
        trailing `per` is never consumed here.
        """
        start = self._current()
        value = self._parse_unary()

        while self._match(TokenType.MULTIPLY, TokenType.DIVIDE, TokenType.MODULO):
            if self._match(TokenType.DIVIDE):
                saved = self.position
                self._advance()
                if self._is_time_unit_at(0):
                    unit = self._advance()
                    value = RateLiteral(
                        value, units.normalize_time_unit(unit.value), self._span(start)
                    )
                    continue
                if self._match(TokenType.IDENTIFIER):
                    self.position = saved
                    break
                self.position = saved
            operator = self._advance().value
            right = self._parse_unary()
            value = BinaryOp(operator, value, right, self._span(start))

        return value

    def _parse_requires(self, load: Node, start: Token) -> FunctionCall:
        """<load> with <capacity> [capacity] [and <pct>]"""
        self._advance()
        capacity_start = self._current()
        capacity = self._parse_multiplicative_chain()
        if (
            not isinstance(capacity, RateLiteral)
            and self._match(TokenType.PER)
            and self._is_time_unit_at(1)
        ):
            self._advance()
            unit = self._advance()
            capacity = RateLiteral(
                capacity, units.normalize_time_unit(unit.value), self._span(capacity_start)
            )
        if self._match_word("capacity"):
            self._advance()

        arguments: list[Node] = [load, capacity]
        if self._match(TokenType.AND):
            self._advance()
            arguments.append(self._parse_unary())

        return FunctionCall("requires", tuple(arguments), self._span(start))

    def _parse_unary(self) -> Node:
        if self._match(TokenType.MINUS, TokenType.PLUS, TokenType.NOT):
            start = self._advance()
            self._enter_nesting(start)
            operand = self._parse_unary()
            self._exit_nesting()
            return UnaryOp(start.value, operand, self._span(start))

        return self._parse_exponent()

    def _parse_exponent(self) -> Node:
        start = self._current()
        base = self._parse_primary()

        if self._match(TokenType.EXPONENT):
            self._advance()
            # Right operand may itself be unary or another power: 2^-1, 2^3^2
            exponent = self._parse_unary()
            return BinaryOp("^", base, exponent, self._span(start))

        return base

    def _parse_primary(self) -> Node:
        token = self._current()
        token_type = token.type

        if token_type == TokenType.NUMBER:
            return self._parse_number()

        if token_type == TokenType.PERCENT:
            self._advance()
            percentage = NumberLiteral(Decimal(token.value), token.lexeme, self._span(token))
            if self._match_word("of"):
                self._advance()
                value = self._parse_unary()
                return PercentageOf(percentage, value, self._span(token))
            return percentage

        if token_type == TokenType.CURRENCY:
            self._advance()
            return CurrencyLiteral(
                Decimal(token.value), token.lexeme[0], token.unit, self._span(token)
            )

        if token_type == TokenType.DURATION:
            self._advance()
            duration = DurationLiteral(self._duration_terms(token.value), self._span(token))
            if self._match(TokenType.FROM):
                self._advance()
                target = self._parse_unary()
                return BinaryOp("+", target, duration, self._span(token))
            return duration

        if token_type == TokenType.DATE:
            self._advance()
            return self._date_literal(token)

        if token_type == TokenType.TIME:
            self._advance()
            return self._time_literal(token)

        if token_type == TokenType.DATE_KEYWORD:
            self._advance()
            return RelativeDateLiteral(token.value, self._span(token))

        if token_type == TokenType.BOOLEAN:
            self._advance()
            return BooleanLiteral(token.value == "true", self._span(token))

        if token_type == TokenType.FUNCTION:
            return self._parse_function_call()

        if token_type in (TokenType.FUNC_AVERAGE_OF, TokenType.FUNC_SQUARE_ROOT_OF):
            return self._parse_natural_function()

        if token_type == TokenType.IDENTIFIER:
            if self._peek(1).type == TokenType.LPAREN:
                return self._parse_function_call()
            self._advance()
            return Identifier(token.value, self._span(token))

        if token_type == TokenType.LPAREN:
            self._advance()
            self._enter_nesting(token)
            expr = self._parse_expression()
            self._consume(TokenType.RPAREN, "Expected ')' after expression")
            self._exit_nesting()
            return expr

        if token_type in (TokenType.EOF, TokenType.NEWLINE):
            raise self._error("Unexpected end of expression", token)

        raise self._error(f"Unexpected token '{token.lexeme}'", token)

    # -------------------------------------------------------------------------
    # Literals
    # -------------------------------------------------------------------------

    def _parse_number(self) -> Node:
        """A number, optionally followed by a unit or currency code.

        The unit must be separated by exactly one space, except for known
        measurement units which may be attached (100cm).
        """
        token = self._advance()
        value = Decimal(token.value)
        unit_token = self._current()

        if unit_token.type == TokenType.IDENTIFIER and self._peek(1).type != TokenType.LPAREN:
            gap = self.source[token.end:unit_token.position]
            name = unit_token.value

            if gap == " " and units.is_currency_code(name):
                self._advance()
                return CurrencyLiteral(value, name, name, self._span(token))

            second = self._peek(1)
            if (
                gap == " "
                and second.type == TokenType.IDENTIFIER
                and self.source[unit_token.end:second.position] == " "
            ):
                fused = units.multiword(name, second.value)
                if fused is not None:
                    self._advance()
                    self._advance()
                    return QuantityLiteral(value, fused, self._span(token))

            # Single-letter boolean keywords (y, n) never abbreviate a time unit.
            time_only = not units.is_known_unit(name) and units.is_time_unit(name)
            if time_only and name.lower() in BOOLEAN_KEYWORDS:
                return NumberLiteral(value, token.lexeme, self._span(token))

            if (gap == " " and units.is_valid_unit(name)) or (
                gap == "" and units.is_known_unit(name)
            ):
                self._advance()
                if time_only:
                    terms = ((value, units.normalize_time_unit(name)),)
                    return DurationLiteral(terms, self._span(token))
                return QuantityLiteral(value, units.canonicalize(name), self._span(token))

        return NumberLiteral(value, token.lexeme, self._span(token))

    @staticmethod
    def _duration_terms(value: str) -> tuple[tuple[Decimal, str], ...]:
        parts = value.split()
        return tuple(
            (Decimal(parts[i]), parts[i + 1]) for i in range(0, len(parts), 2)
        )

    def _date_literal(self, token: Token) -> DateLiteral:
        if token.value.startswith("--"):
            month, day = (int(p) for p in token.value[2:].split("-"))
            return DateLiteral(month, day, None, self._span(token))
        year, month, day = (int(p) for p in token.value.split("-"))
        return DateLiteral(month, day, year, self._span(token))

    def _time_literal(self, token: Token) -> TimeLiteral:
        match = _TIME_VALUE.fullmatch(token.value)
        if match is None:
            raise self._error(f"Invalid time '{token.lexeme}'", token)
        hour, minute, second, period, sign, offset_hours, offset_minutes = match.groups()
        utc_offset = None
        if sign:
            utc_offset = int(offset_hours) * 60 + int(offset_minutes)
            if sign == "-":
                utc_offset = -utc_offset
        return TimeLiteral(
            int(hour),
            int(minute),
            int(second) if second is not None else None,
            period,
            utc_offset,
            self._span(token),
        )

    # -------------------------------------------------------------------------
    # Functions
    # -------------------------------------------------------------------------

    def _function_definition(self, name: str, token: Token) -> FunctionDefinition:
        if not FunctionRegistry.is_registered(name):
            raise self._error(f"Unknown function '{name}'", token)
        return FunctionRegistry.get(name)

    def _check_arity(self, definition: FunctionDefinition, count: int, token: Token) -> None:
        message = definition.arity_error(count)
        if message is not None:
            raise self._error(message, token)

    def _parse_function_call(self) -> FunctionCall:
        name_token = self._advance()
        name = name_token.value
        definition = self._function_definition(name, name_token)

        open_paren = self._consume(TokenType.LPAREN, f"Expected '(' after '{name}'")
        self._enter_nesting(open_paren)
        arguments: list[Node] = []
        if not self._match(TokenType.RPAREN):
            arguments.append(self._parse_expression())
            while self._match(TokenType.COMMA):
                self._advance()
                arguments.append(self._parse_expression())
        self._consume(TokenType.RPAREN, "Expected ')' after function arguments")
        self._exit_nesting()

        self._check_arity(definition, len(arguments), name_token)
        return FunctionCall(definition.name, tuple(arguments), self._span(name_token))

    def _parse_natural_function(self) -> FunctionCall:
        """`average of a, b, c` and `square root of x`."""
        phrase = self._advance()
        definition = self._function_definition(phrase.value, phrase)

        arguments: list[Node] = []
        if not self._match(TokenType.NEWLINE, TokenType.EOF):
            arguments.append(self._parse_additive())
            while self._match(TokenType.COMMA):
                self._advance()
                arguments.append(self._parse_additive())

        self._check_arity(definition, len(arguments), phrase)
        return FunctionCall(definition.name, tuple(arguments), self._span(phrase))


def parse(source: str | bytes, config: CalcMarkConfig | None = None) -> list[Node]:
    """Parse source text into AST nodes.

    Args:
        source: Calculation text, one statement per line
        config: Optional security limits

    Returns:
        One node per non-blank line, in source order

    Raises:
        CalcSyntaxError: If the text is malformed
        SecurityError: If a nesting-depth or token-count limit is exceeded
    """
    nodes = Parser(source, config).parse()
    logger.debug("Parsed %d statement(s)", len(nodes))
    return nodes
