"""CalcMark: a unit-aware calculation language.

This package provides:
- Lexer: Tokenizes calculation text
- Parser: Produces AST nodes from tokens, enforcing security limits
- Evaluator: Computes typed values (numbers, currency, quantities, rates,
  durations, dates) against a VariableContext
- Session: Multi-line evaluation with YAML frontmatter

Usage:
    from calcmark import Session

    session = Session()
    session.eval("rent = $1,500\\nrent * 12")  # [$1,500.00, $18,000.00]

Built-in functions are registered on import.
"""

from calcmark.builtins import register_all_builtins
from calcmark.config import (
    DEFAULT_CONFIG,
    MAX_NESTING_DEPTH,
    MAX_TOKEN_COUNT,
    CalcMarkConfig,
)
from calcmark.context import VariableContext
from calcmark.errors import (
    CalcMarkError,
    CalcSyntaxError,
    DimensionalError,
    EvaluationError,
    LexerError,
    ParseError,
    SecurityError,
)
from calcmark.evaluator import Evaluator, evaluate
from calcmark.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
    FunctionRegistry,
)
from calcmark.lexer import Lexer, Token, TokenType, lex
from calcmark.parser import Parser, parse
from calcmark.session import Session
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
)

register_all_builtins()

__all__ = [
    # Config
    "CalcMarkConfig",
    "DEFAULT_CONFIG",
    "MAX_NESTING_DEPTH",
    "MAX_TOKEN_COUNT",
    # Errors
    "CalcMarkError",
    "CalcSyntaxError",
    "DimensionalError",
    "EvaluationError",
    "LexerError",
    "ParseError",
    "SecurityError",
    # Lexer
    "Lexer",
    "Token",
    "TokenType",
    "lex",
    # Parser
    "Parser",
    "parse",
    # Evaluator
    "Evaluator",
    "VariableContext",
    "evaluate",
    # Functions
    "FunctionCategory",
    "FunctionDefinition",
    "FunctionParameter",
    "FunctionRegistry",
    "register_all_builtins",
    # Session
    "Session",
    # Values
    "Boolean",
    "Currency",
    "Date",
    "Duration",
    "Napkin",
    "Number",
    "Quantity",
    "Rate",
    "Time",
    "Value",
]
