"""Lexer/tokenizer for the CalcMark calculation language.

Converts source text into a stream of tokens for the parser. All
context-sensitive literal recognition happens here:

- Numbers: thousands separators, k/K/M/B/T suffixes, scientific notation
- Percentages: 20% (value / 100)
- Currency: $100, € 50, £1.5k, ¥500
- Durations: 5 days, 3 weeks and 4 days
- Dates: Dec 25, December 25 2025, Jan 2026
- Times: 10:30, 10:30 PM, 14:00 UTC+2
- Relative dates: today, tomorrow, next week
- Fused phrases: "average of", "square root of"
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, localcontext
from enum import Enum, auto
from types import MappingProxyType
from typing import Iterator

from calcmark.config import DEFAULT_CONFIG, CalcMarkConfig
from calcmark.errors import LexerError, SecurityError
from calcmark.units import CURRENCY_SYMBOLS
from calcmark.values import digit_count, format_decimal

logger = logging.getLogger(__name__)


class TokenType(Enum):
    """Types of tokens in the calculation language."""

    # Literals
    NUMBER = auto()
    PERCENT = auto()        # 20%
    CURRENCY = auto()       # $100 (unit holds the ISO code)
    DURATION = auto()       # 5 days, 3 weeks and 4 days
    DATE = auto()           # Dec 25 2025
    TIME = auto()           # 10:30 PM
    DATE_KEYWORD = auto()   # today, next week
    BOOLEAN = auto()

    # Identifiers and functions
    IDENTIFIER = auto()
    FUNCTION = auto()               # avg, sqrt
    FUNC_AVERAGE_OF = auto()        # average of
    FUNC_SQUARE_ROOT_OF = auto()    # square root of

    # Natural-language keywords
    IN = auto()
    PER = auto()
    OVER = auto()
    WITH = auto()
    AT = auto()
    AS = auto()
    FROM = auto()
    AND = auto()
    OR = auto()
    NOT = auto()

    # Arithmetic operators
    PLUS = auto()        # +
    MINUS = auto()       # -
    MULTIPLY = auto()    # * × x
    DIVIDE = auto()      # / ÷
    MODULO = auto()      # %
    EXPONENT = auto()    # ^ **

    # Comparison operators
    EQ = auto()          # ==
    NEQ = auto()         # !=
    LT = auto()          # <
    LTE = auto()         # <=
    GT = auto()          # >
    GTE = auto()         # >=

    ASSIGN = auto()      # =

    # Punctuation
    LPAREN = auto()      # (
    RPAREN = auto()      # )
    COMMA = auto()       # ,
    AT_SIGN = auto()     # @ (frontmatter)
    DOT = auto()         # .

    NEWLINE = auto()
    EOF = auto()


@dataclass(frozen=True)
class Token:
    """A single token from the lexer.

    Attributes:
        type: The token type
        value: Normalized value (expanded number, canonical keyword, name)
        position: Character offset in the source
        line: Line number (1-indexed)
        column: Column number (1-indexed)
        lexeme: The exact source text of the token
        unit: ISO currency code for CURRENCY tokens
    """

    type: TokenType
    value: str
    position: int
    line: int = 1
    column: int = 1
    lexeme: str = ""
    unit: str | None = None

    @property
    def end(self) -> int:
        return self.position + len(self.lexeme)

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, pos={self.position})"


# Keywords that map to specific token types (case-insensitive)
KEYWORDS = MappingProxyType({
    "in": TokenType.IN,
    "per": TokenType.PER,
    "over": TokenType.OVER,
    "with": TokenType.WITH,
    "at": TokenType.AT,
    "as": TokenType.AS,
    "from": TokenType.FROM,
    "and": TokenType.AND,
    "or": TokenType.OR,
    "not": TokenType.NOT,
})

FUNCTION_KEYWORDS = frozenset({"avg", "sqrt"})

BOOLEAN_WORDS = MappingProxyType({
    "true": "true",
    "false": "false",
    "yes": "true",
    "no": "false",
})

# Boolean keywords recognised at evaluation time, including single letters
BOOLEAN_KEYWORDS = MappingProxyType({
    "true": True, "yes": True, "t": True, "y": True,
    "false": False, "no": False, "f": False, "n": False,
})

MONTHS = MappingProxyType({
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
})

# Words that turn a preceding number into a duration
DURATION_WORDS = MappingProxyType({
    "second": "second", "seconds": "second", "sec": "second", "secs": "second",
    "minute": "minute", "minutes": "minute", "min": "minute", "mins": "minute",
    "hour": "hour", "hours": "hour", "hr": "hour", "hrs": "hour",
    "day": "day", "days": "day",
    "week": "week", "weeks": "week",
    "month": "month", "months": "month",
    "year": "year", "years": "year", "yr": "year", "yrs": "year",
})

DATE_KEYWORDS = frozenset({"today", "tomorrow", "yesterday", "now"})
RELATIVE_PREFIXES = frozenset({"this", "next", "last"})

MAGNITUDE_SUFFIXES = MappingProxyType({
    "k": Decimal(1_000),
    "K": Decimal(1_000),
    "M": Decimal(1_000_000),
    "B": Decimal(1_000_000_000),
    "T": Decimal(1_000_000_000_000),
})

DIGITS = "0123456789"

TIME_PATTERN = re.compile(
    r"(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?"
    r"(?:[ ]?(?P<period>[AaPp][Mm]))?"
    r"(?:[ ](?:UTC|utc)(?P<sign>[+-])(?P<offset_hours>\d{1,2})(?::(?P<offset_minutes>\d{2}))?)?"
)

_DURATION_UNIT = re.compile(r"[ ]+([A-Za-z]+)")
_DURATION_AND = re.compile(r"[ \t]+and[ \t]+(\d+(?:\.\d+)?)[ ]+([A-Za-z]+)", re.IGNORECASE)
_DATE_DAY_YEAR = re.compile(r"[ ](\d{1,2})(?:,?[ ](\d{4}))?")
_DATE_YEAR = re.compile(r"[ ](\d{4})")
_RELATIVE_UNIT = re.compile(r"[ \t]+(week|month|year)", re.IGNORECASE)
_AVERAGE_OF = re.compile(r"[ \t]+of", re.IGNORECASE)
_SQUARE_ROOT_OF = re.compile(r"[ \t]+root[ \t]+of", re.IGNORECASE)

_ZWJ = "\u200d"
_VARIATION_SELECTORS = ("\ufe0e", "\ufe0f")


def _is_digit(ch: str) -> bool:
    return ch != "" and ch in DIGITS


def _is_emoji(ch: str) -> bool:
    code = ord(ch)
    return (
        0x1F000 <= code <= 0x1FAFF
        or 0x2600 <= code <= 0x27BF
        or 0x2B00 <= code <= 0x2BFF
    )


def is_identifier_start(ch: str) -> bool:
    if not ch:
        return False
    return ch.isalpha() or ch == "_" or _is_emoji(ch)


def is_identifier_continue(ch: str) -> bool:
    if not ch:
        return False
    if is_identifier_start(ch) or ch.isdigit():
        return True
    if ch == _ZWJ or ch in _VARIATION_SELECTORS:
        return True
    return unicodedata.category(ch).startswith("M")


class Lexer:
    """Tokenizer for the calculation language.

    Usage:
        lexer = Lexer("price = $1.5k * 12")
        for token in lexer:
            print(token)
    """

    def __init__(self, source: str | bytes, config: CalcMarkConfig | None = None):
        self.config = config or DEFAULT_CONFIG
        self.source = self._decode(source)
        self.position = 0
        self.line = 1
        self.column = 1
        self._previous: Token | None = None

    @staticmethod
    def _decode(source: str | bytes) -> str:
        """Validate UTF-8 and strip a leading byte order mark."""
        if isinstance(source, bytes):
            try:
                text = source.decode("utf-8")
            except UnicodeDecodeError as e:
                prefix = source[: e.start].decode("utf-8", errors="replace")
                line = prefix.count("\n") + 1
                column = len(prefix) - (prefix.rfind("\n") + 1) + 1
                raise LexerError("Invalid UTF-8 encoding", line, column) from None
        else:
            text = source
            try:
                text.encode("utf-8")
            except UnicodeEncodeError as e:
                prefix = text[: e.start]
                line = prefix.count("\n") + 1
                column = len(prefix) - (prefix.rfind("\n") + 1) + 1
                raise LexerError("Invalid UTF-8 encoding", line, column) from None
        if text.startswith("\ufeff"):
            text = text[1:]
        return text

    def __iter__(self) -> Iterator[Token]:
        """Iterate over all tokens in the source."""
        while True:
            token = self.next_token()
            yield token
            if token.type == TokenType.EOF:
                break

    def next_token(self) -> Token:
        """Get the next token from the source."""
        token = self._scan()
        self._previous = token
        return token

    def tokenize(self) -> list[Token]:
        """Tokenize the entire source and return list of tokens."""
        return list(self)

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def _scan(self) -> Token:
        source = self.source
        while self.position < len(source) and source[self.position] in " \t\r":
            self._advance(1)

        if self.position >= len(source):
            return Token(TokenType.EOF, "", self.position, self.line, self.column)

        ch = source[self.position]

        if ch == "\n":
            return self._emit(TokenType.NEWLINE, "\n", 1)
        if ch in DIGITS:
            return self._scan_numeric()
        if ch in CURRENCY_SYMBOLS:
            return self._scan_currency()
        if is_identifier_start(ch):
            return self._scan_word()
        return self._scan_operator()

    def _emit(
        self,
        token_type: TokenType,
        value: str,
        length: int,
        unit: str | None = None,
    ) -> Token:
        """Build a token covering `length` characters and advance past it."""
        start = self.position
        token = Token(
            token_type,
            value,
            start,
            self.line,
            self.column,
            lexeme=self.source[start:start + length],
            unit=unit,
        )
        self._advance(length)
        return token

    def _advance(self, count: int) -> None:
        """Advance position by count characters, updating line/column."""
        for _ in range(count):
            if self.position < len(self.source):
                if self.source[self.position] == "\n":
                    self.line += 1
                    self.column = 1
                else:
                    self.column += 1
                self.position += 1

    def _error(self, message: str, offset: int = 0) -> LexerError:
        return LexerError(message, self.line, self.column + offset)

    def _char(self, index: int) -> str:
        if index < len(self.source):
            return self.source[index]
        return ""

    def _skip_digits(self, index: int) -> int:
        while _is_digit(self._char(index)):
            index += 1
        return index

    # -------------------------------------------------------------------------
    # Numbers
    # -------------------------------------------------------------------------

    def _read_number(self, start: int) -> tuple[int, Decimal]:
        """Scan a number literal beginning at `start`.

        Returns the end offset and the expanded value. Separators are only
        consumed when they introduce a group of exactly three digits.
        """
        source = self.source
        i = self._skip_digits(start)
        digits = source[start:i]

        if len(digits) <= 3:
            while (
                self._char(i) in (",", "_")
                and self._skip_digits(i + 1) == i + 4
            ):
                digits += source[i + 1:i + 4]
                i += 4

        text = digits
        if self._char(i) == "." and _is_digit(self._char(i + 1)):
            j = self._skip_digits(i + 1)
            text += source[i:j]
            i = j

        if self._char(i) in ("e", "E"):
            j = i + 1
            if self._char(j) in ("+", "-"):
                j += 1
            if _is_digit(self._char(j)):
                j = self._skip_digits(j)
                text += source[i:j]
                i = j

        if i - start > self.config.max_number_length:
            raise SecurityError(
                f"number literal exceeds security limit: {i - start} characters "
                f"(max {self.config.max_number_length})",
                self.line,
                self.column,
                limit=self.config.max_number_length,
                actual=i - start,
            )

        try:
            value = Decimal(text)
        except InvalidOperation:
            raise self._error(f"Invalid number '{source[start:i]}'") from None

        suffix = self._char(i)
        if suffix and suffix in MAGNITUDE_SUFFIXES:
            following = self._char(i + 1)
            if not following or not is_identifier_continue(following):
                multiplier = MAGNITUDE_SUFFIXES[suffix]
                with localcontext() as ctx:
                    ctx.prec = max(ctx.prec, digit_count(value) + digit_count(multiplier))
                    value *= multiplier
                i += 1

        return i, value

    def _scan_numeric(self) -> Token:
        start = self.position
        source = self.source

        time_match = TIME_PATTERN.match(source, start)
        if time_match and not is_identifier_continue(self._char(time_match.end()) or " "):
            return self._scan_time(time_match)

        end, value = self._read_number(start)

        if self._char(end) == "%":
            following = self._char(end + 1)
            if not (_is_digit(following) or following == "("):
                return self._emit(
                    TokenType.PERCENT, format_decimal(value / 100), end + 1 - start
                )

        duration = self._scan_duration(end, value)
        if duration is not None:
            terms, duration_end = duration
            normalized = " ".join(f"{format_decimal(v)} {u}" for v, u in terms)
            return self._emit(TokenType.DURATION, normalized, duration_end - start)

        return self._emit(TokenType.NUMBER, format_decimal(value), end - start)

    def _scan_duration(
        self, end: int, value: Decimal
    ) -> tuple[list[tuple[Decimal, str]], int] | None:
        """Recognize `N unit [and M unit ...]` following a number."""
        match = _DURATION_UNIT.match(self.source, end)
        if not match or not self._word_ends(match.end()):
            return None
        unit = DURATION_WORDS.get(match.group(1).lower())
        if unit is None:
            return None

        terms = [(value, unit)]
        position = match.end()
        while True:
            more = _DURATION_AND.match(self.source, position)
            if not more or not self._word_ends(more.end()):
                break
            next_unit = DURATION_WORDS.get(more.group(2).lower())
            if next_unit is None:
                break
            terms.append((Decimal(more.group(1)), next_unit))
            position = more.end()
        return terms, position

    def _word_ends(self, index: int) -> bool:
        following = self._char(index)
        return not following or not is_identifier_continue(following)

    def _scan_time(self, match: re.Match[str]) -> Token:
        hour = int(match.group("hour"))
        minute = int(match.group("minute"))
        second = match.group("second")
        period = match.group("period")

        max_hour = 12 if period else 23
        if hour > max_hour or minute > 59 or (second is not None and int(second) > 59):
            raise self._error(f"Invalid time '{match.group(0)}'")

        value = f"{hour}:{minute:02d}"
        if second is not None:
            value += f":{int(second):02d}"
        if period:
            value += f" {period.upper()}"
        if match.group("sign"):
            offset_minutes = int(match.group("offset_minutes") or 0)
            value += f" UTC{match.group('sign')}{int(match.group('offset_hours'))}:{offset_minutes:02d}"
        return self._emit(TokenType.TIME, value, match.end() - match.start())

    # -------------------------------------------------------------------------
    # Currency
    # -------------------------------------------------------------------------

    def _scan_currency(self) -> Token:
        start = self.position
        symbol = self.source[start]
        number_start = start + 1
        if self._char(number_start) == " ":
            number_start += 1
        if not _is_digit(self._char(number_start)):
            raise self._error(f"Expected number after currency symbol '{symbol}'")

        end, value = self._read_number(number_start)
        return self._emit(
            TokenType.CURRENCY,
            format_decimal(value),
            end - start,
            unit=CURRENCY_SYMBOLS[symbol],
        )

    # -------------------------------------------------------------------------
    # Words
    # -------------------------------------------------------------------------

    def _scan_word(self) -> Token:
        start = self.position
        source = self.source
        end = start + 1
        while end < len(source) and is_identifier_continue(source[end]):
            end += 1

        if end - start > self.config.max_identifier_length:
            raise SecurityError(
                f"identifier exceeds security limit: {end - start} characters "
                f"(max {self.config.max_identifier_length})",
                self.line,
                self.column,
                limit=self.config.max_identifier_length,
                actual=end - start,
            )

        word = source[start:end]
        lower = word.lower()

        if lower in MONTHS:
            token = self._scan_date(MONTHS[lower], end)
            if token is not None:
                return token

        if lower in DATE_KEYWORDS:
            return self._emit(TokenType.DATE_KEYWORD, lower, end - start)

        if lower in RELATIVE_PREFIXES:
            match = _RELATIVE_UNIT.match(source, end)
            if match and self._word_ends(match.end()):
                keyword = f"{lower} {match.group(1).lower()}"
                return self._emit(TokenType.DATE_KEYWORD, keyword, match.end() - start)

        if lower == "average":
            match = _AVERAGE_OF.match(source, end)
            if match and self._word_ends(match.end()):
                return self._emit(TokenType.FUNC_AVERAGE_OF, "avg", match.end() - start)

        if lower == "square":
            match = _SQUARE_ROOT_OF.match(source, end)
            if match and self._word_ends(match.end()):
                return self._emit(TokenType.FUNC_SQUARE_ROOT_OF, "sqrt", match.end() - start)

        if self._char(end) == "%":
            raise LexerError(
                f"'%' cannot follow identifier '{word}'",
                self.line,
                self.column + (end - start),
            )

        if lower in KEYWORDS:
            return self._emit(KEYWORDS[lower], lower, end - start)
        if lower in FUNCTION_KEYWORDS:
            return self._emit(TokenType.FUNCTION, lower, end - start)
        if lower in BOOLEAN_WORDS:
            return self._emit(TokenType.BOOLEAN, BOOLEAN_WORDS[lower], end - start)
        if lower == "x" and self._is_multiply_x(end):
            return self._emit(TokenType.MULTIPLY, "*", end - start)

        return self._emit(TokenType.IDENTIFIER, word, end - start)

    def _scan_date(self, month: int, end: int) -> Token | None:
        start = self.position
        year_only = _DATE_YEAR.match(self.source, end)
        if year_only and self._digits_end(year_only.end()):
            value = f"{int(year_only.group(1)):04d}-{month:02d}-01"
            return self._emit(TokenType.DATE, value, year_only.end() - start)

        match = _DATE_DAY_YEAR.match(self.source, end)
        if not match or not self._digits_end(match.end()):
            return None

        day = int(match.group(1))
        if match.group(2) is not None:
            value = f"{int(match.group(2)):04d}-{month:02d}-{day:02d}"
        else:
            value = f"--{month:02d}-{day:02d}"
        return self._emit(TokenType.DATE, value, match.end() - start)

    def _digits_end(self, index: int) -> bool:
        following = self._char(index)
        return not following or not (_is_digit(following) or is_identifier_continue(following))

    def _is_multiply_x(self, end: int) -> bool:
        """`x` between two number-like operands means multiplication."""
        previous = self._previous
        if previous is None or previous.type not in (
            TokenType.NUMBER,
            TokenType.CURRENCY,
            TokenType.PERCENT,
            TokenType.RPAREN,
        ):
            return False
        i = end
        while self._char(i) in (" ", "\t") and self._char(i):
            i += 1
        following = self._char(i)
        return bool(following) and (
            _is_digit(following) or following in CURRENCY_SYMBOLS or following == "("
        )

    # -------------------------------------------------------------------------
    # Operators
    # -------------------------------------------------------------------------

    def _scan_operator(self) -> Token:
        ch = self.source[self.position]
        following = self._char(self.position + 1)

        if ch == "*":
            if following == "*":
                return self._emit(TokenType.EXPONENT, "^", 2)
            return self._emit(TokenType.MULTIPLY, "*", 1)
        if ch == "=":
            if following == "=":
                return self._emit(TokenType.EQ, "==", 2)
            return self._emit(TokenType.ASSIGN, "=", 1)
        if ch == "!":
            if following == "=":
                return self._emit(TokenType.NEQ, "!=", 2)
            raise self._error("Unexpected character '!'")
        if ch == "<":
            if following == "=":
                return self._emit(TokenType.LTE, "<=", 2)
            return self._emit(TokenType.LT, "<", 1)
        if ch == ">":
            if following == "=":
                return self._emit(TokenType.GTE, ">=", 2)
            return self._emit(TokenType.GT, ">", 1)

        single = _SINGLE_CHAR_TOKENS.get(ch)
        if single is not None:
            token_type, value = single
            return self._emit(token_type, value, 1)

        raise self._error(f"Unexpected character '{ch}'")


_SINGLE_CHAR_TOKENS = MappingProxyType({
    "+": (TokenType.PLUS, "+"),
    "-": (TokenType.MINUS, "-"),
    "×": (TokenType.MULTIPLY, "*"),
    "/": (TokenType.DIVIDE, "/"),
    "÷": (TokenType.DIVIDE, "/"),
    "%": (TokenType.MODULO, "%"),
    "^": (TokenType.EXPONENT, "^"),
    "(": (TokenType.LPAREN, "("),
    ")": (TokenType.RPAREN, ")"),
    ",": (TokenType.COMMA, ","),
    "@": (TokenType.AT_SIGN, "@"),
    ".": (TokenType.DOT, "."),
})


def lex(source: str | bytes, config: CalcMarkConfig | None = None) -> list[Token]:
    """Tokenize source text.

    Args:
        source: Text (or UTF-8 bytes) to tokenize
        config: Optional security limits

    Returns:
        List of tokens ending with an EOF token

    Raises:
        LexerError: If the input contains invalid characters or encoding
        SecurityError: If an identifier or number exceeds its length limit
    """
    tokens = Lexer(source, config).tokenize()
    logger.debug("Lexed %d tokens", len(tokens))
    return tokens
