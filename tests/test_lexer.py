"""Tests for the CalcMark lexer.

Tests cover:
- Numbers: separators, magnitude suffixes, scientific notation
- Literal tokens: percent, currency, duration, date, time, relative dates
- Keywords, operators and fused phrases
- Identifiers (Unicode and emoji)
- Encoding, positions and security limits
"""

import pytest

from calcmark import CalcMarkConfig, LexerError, SecurityError
from calcmark.lexer import Lexer, TokenType, lex


def types(text):
    return [t.type for t in lex(text)][:-1]


def values(text):
    return [t.value for t in lex(text)][:-1]


# =============================================================================
# Numbers
# =============================================================================


class TestNumbers:
    """Tests for number literals."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("42", "42"),
            ("3.14", "3.14"),
            ("1,000", "1000"),
            ("1_000_000", "1000000"),
            ("12,345,678.5", "12345678.5"),
            ("1.5k", "1500"),
            ("2K", "2000"),
            ("2.5B", "2500000000"),
            ("1.5T", "1500000000000"),
            ("3M", "3000000"),
            ("1.23e10", "12300000000"),
            ("5e-3", "0.005"),
        ],
    )
    def test_number_values(self, text, expected):
        tokens = lex(text)

        assert tokens[0].type == TokenType.NUMBER
        assert tokens[0].value == expected
        assert tokens[0].lexeme == text
        assert tokens[1].type == TokenType.EOF

    def test_separator_requires_three_digits(self):
        tokens = lex("1,00")

        assert tokens[0].value == "1"
        assert tokens[1].type == TokenType.COMMA

    def test_comma_between_arguments(self):
        assert types("1, 2") == [TokenType.NUMBER, TokenType.COMMA, TokenType.NUMBER]

    def test_suffix_not_applied_inside_word(self):
        # "kg" is a unit, not the k magnitude suffix
        tokens = lex("5kg")

        assert tokens[0].value == "5"
        assert tokens[1].type == TokenType.IDENTIFIER
        assert tokens[1].value == "kg"

    def test_number_length_limit(self):
        with pytest.raises(SecurityError) as exc_info:
            lex("1" * 150)

        assert "number literal" in exc_info.value.message
        assert exc_info.value.limit == 100
        assert exc_info.value.actual == 150

    def test_suffix_keeps_every_digit(self):
        tokens = lex("123456789012345678901234567.5T")

        assert tokens[0].value == "123456789012345678901234567500000000000"


# =============================================================================
# Literal tokens
# =============================================================================


class TestLiterals:
    """Tests for context-sensitive literal recognition."""

    def test_percentage(self):
        tokens = lex("20%")

        assert tokens[0].type == TokenType.PERCENT
        assert tokens[0].value == "0.2"

    def test_percent_sign_before_digit_is_modulo(self):
        assert types("10%3") == [TokenType.NUMBER, TokenType.MODULO, TokenType.NUMBER]

    def test_spaced_percent_is_modulo(self):
        assert types("10 % 3") == [TokenType.NUMBER, TokenType.MODULO, TokenType.NUMBER]

    @pytest.mark.parametrize(
        "text,value,code",
        [
            ("$100", "100", "USD"),
            ("€ 50", "50", "EUR"),
            ("£1.5k", "1500", "GBP"),
            ("¥500", "500", "JPY"),
            ("$1,234.56", "1234.56", "USD"),
        ],
    )
    def test_currency(self, text, value, code):
        token = lex(text)[0]

        assert token.type == TokenType.CURRENCY
        assert token.value == value
        assert token.unit == code

    def test_currency_symbol_without_number(self):
        with pytest.raises(LexerError) as exc_info:
            lex("$abc")

        assert "currency symbol" in exc_info.value.message

    def test_duration(self):
        token = lex("5 days")[0]

        assert token.type == TokenType.DURATION
        assert token.value == "5 day"

    def test_compound_duration(self):
        token = lex("3 weeks and 4 days")[0]

        assert token.type == TokenType.DURATION
        assert token.value == "3 week 4 day"

    def test_abbreviated_duration(self):
        assert values("90 min") == ["90 minute"]

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Dec 25 2025", "2025-12-25"),
            ("December 25, 2025", "2025-12-25"),
            ("Dec 25", "--12-25"),
            ("Jan 2026", "2026-01-01"),
        ],
    )
    def test_dates(self, text, expected):
        token = lex(text)[0]

        assert token.type == TokenType.DATE
        assert token.value == expected

    def test_month_name_without_day_is_identifier(self):
        assert types("may") == [TokenType.IDENTIFIER]

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("10:30", "10:30"),
            ("10:30 PM", "10:30 PM"),
            ("9:05:30am", "9:05:30 AM"),
            ("14:00 UTC+2", "14:00 UTC+2:00"),
            ("14:00 UTC-5:30", "14:00 UTC-5:30"),
        ],
    )
    def test_times(self, text, expected):
        token = lex(text)[0]

        assert token.type == TokenType.TIME
        assert token.value == expected

    def test_invalid_time(self):
        with pytest.raises(LexerError) as exc_info:
            lex("25:00")

        assert "Invalid time" in exc_info.value.message

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("today", "today"),
            ("Tomorrow", "tomorrow"),
            ("next week", "next week"),
            ("last  Month", "last month"),
            ("this year", "this year"),
        ],
    )
    def test_relative_dates(self, text, expected):
        token = lex(text)[0]

        assert token.type == TokenType.DATE_KEYWORD
        assert token.value == expected

    @pytest.mark.parametrize(
        "text,expected",
        [("true", "true"), ("Yes", "true"), ("false", "false"), ("no", "false")],
    )
    def test_booleans(self, text, expected):
        token = lex(text)[0]

        assert token.type == TokenType.BOOLEAN
        assert token.value == expected


# =============================================================================
# Keywords and operators
# =============================================================================


class TestKeywordsAndOperators:
    """Tests for keywords, fused phrases and operators."""

    def test_keywords_are_case_insensitive(self):
        assert types("in PER over With at as from and") == [
            TokenType.IN,
            TokenType.PER,
            TokenType.OVER,
            TokenType.WITH,
            TokenType.AT,
            TokenType.AS,
            TokenType.FROM,
            TokenType.AND,
        ]

    def test_logical_keywords(self):
        assert types("true OR not false") == [
            TokenType.BOOLEAN,
            TokenType.OR,
            TokenType.NOT,
            TokenType.BOOLEAN,
        ]

    def test_logical_words_inside_identifiers(self):
        assert types("order notes") == [TokenType.IDENTIFIER, TokenType.IDENTIFIER]

    def test_function_names(self):
        assert types("avg sqrt") == [TokenType.FUNCTION, TokenType.FUNCTION]

    def test_average_of(self):
        tokens = lex("average of 1, 2")

        assert tokens[0].type == TokenType.FUNC_AVERAGE_OF
        assert tokens[0].value == "avg"
        assert tokens[1].type == TokenType.NUMBER

    def test_square_root_of(self):
        tokens = lex("square root of 16")

        assert tokens[0].type == TokenType.FUNC_SQUARE_ROOT_OF
        assert tokens[0].value == "sqrt"

    def test_average_alone_is_identifier(self):
        assert types("average") == [TokenType.IDENTIFIER]

    def test_arithmetic_operators(self):
        assert types("1 + 2 - 3 * 4 / 5 ^ 6 ** 7 × 8 ÷ 9") == [
            TokenType.NUMBER, TokenType.PLUS,
            TokenType.NUMBER, TokenType.MINUS,
            TokenType.NUMBER, TokenType.MULTIPLY,
            TokenType.NUMBER, TokenType.DIVIDE,
            TokenType.NUMBER, TokenType.EXPONENT,
            TokenType.NUMBER, TokenType.EXPONENT,
            TokenType.NUMBER, TokenType.MULTIPLY,
            TokenType.NUMBER, TokenType.DIVIDE,
            TokenType.NUMBER,
        ]

    def test_comparison_operators(self):
        assert types("== != < <= > >= =") == [
            TokenType.EQ,
            TokenType.NEQ,
            TokenType.LT,
            TokenType.LTE,
            TokenType.GT,
            TokenType.GTE,
            TokenType.ASSIGN,
        ]

    def test_x_between_numbers_is_multiply(self):
        assert types("3 x 4") == [TokenType.NUMBER, TokenType.MULTIPLY, TokenType.NUMBER]

    def test_x_as_variable(self):
        assert types("x = 4") == [TokenType.IDENTIFIER, TokenType.ASSIGN, TokenType.NUMBER]

    def test_frontmatter_tokens(self):
        assert types("@exchange.USD_EUR") == [
            TokenType.AT_SIGN,
            TokenType.IDENTIFIER,
            TokenType.DOT,
            TokenType.IDENTIFIER,
        ]

    def test_unexpected_character(self):
        with pytest.raises(LexerError) as exc_info:
            lex("5 # 3")

        assert exc_info.value.message == "Unexpected character '#'"
        assert exc_info.value.line == 1
        assert exc_info.value.column == 3

    def test_percent_after_identifier(self):
        with pytest.raises(LexerError):
            lex("rate%")


# =============================================================================
# Identifiers, encoding and positions
# =============================================================================


class TestIdentifiers:
    """Tests for identifier scanning."""

    def test_unicode_identifier(self):
        tokens = lex("café_total = 5")

        assert tokens[0].type == TokenType.IDENTIFIER
        assert tokens[0].value == "café_total"

    def test_combining_marks_continue_identifier(self):
        tokens = lex("cafe\u0301 = 1")

        assert tokens[0].value == "cafe\u0301"
        assert tokens[1].type == TokenType.ASSIGN

    def test_emoji_identifier(self):
        tokens = lex("\U0001F680 = 5")

        assert tokens[0].type == TokenType.IDENTIFIER
        assert tokens[0].value == "\U0001F680"

    def test_identifier_length_limit(self):
        with pytest.raises(SecurityError) as exc_info:
            lex("a" * 300)

        assert "identifier" in exc_info.value.message

    def test_custom_identifier_limit(self):
        config = CalcMarkConfig(max_identifier_length=4)

        with pytest.raises(SecurityError):
            Lexer("abcde", config).tokenize()


class TestEncodingAndPositions:
    """Tests for UTF-8 handling and token positions."""

    def test_bytes_input(self):
        assert values("1 + 2".encode()) == ["1", "+", "2"]

    def test_invalid_utf8(self):
        with pytest.raises(LexerError) as exc_info:
            lex(b"1 + \xff")

        assert "UTF-8" in exc_info.value.message
        assert exc_info.value.column == 5

    def test_byte_order_mark_is_stripped(self):
        tokens = lex("\ufeff1 + 2")

        assert tokens[0].type == TokenType.NUMBER
        assert tokens[0].position == 0

    def test_line_and_column(self):
        tokens = lex("a = 1\n  b = 2")
        b = tokens[4]

        assert tokens[3].type == TokenType.NEWLINE
        assert b.value == "b"
        assert (b.line, b.column) == (2, 3)

    def test_lexer_is_iterable(self):
        tokens = list(Lexer("1 + 2"))

        assert tokens[-1].type == TokenType.EOF
        assert len(tokens) == 4
