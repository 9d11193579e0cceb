"""Resource limits for lexing and parsing."""

from __future__ import annotations

import os
from dataclasses import dataclass

MAX_NESTING_DEPTH = 100
MAX_TOKEN_COUNT = 10_000
MAX_IDENTIFIER_LENGTH = 256
MAX_NUMBER_LENGTH = 100


def _read_limit(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class CalcMarkConfig:
    """Security limits applied by the lexer and parser.

    Attributes:
        max_nesting_depth: Maximum depth of parentheses and unary operators
        max_token_count: Maximum number of tokens in a single parse
        max_identifier_length: Longest identifier the lexer accepts
        max_number_length: Longest number literal the lexer accepts
    """

    max_nesting_depth: int = MAX_NESTING_DEPTH
    max_token_count: int = MAX_TOKEN_COUNT
    max_identifier_length: int = MAX_IDENTIFIER_LENGTH
    max_number_length: int = MAX_NUMBER_LENGTH

    @classmethod
    def from_env(cls) -> CalcMarkConfig:
        """Create config from environment variables.

        Reads CALCMARK_MAX_NESTING_DEPTH, CALCMARK_MAX_TOKEN_COUNT,
        CALCMARK_MAX_IDENTIFIER_LENGTH and CALCMARK_MAX_NUMBER_LENGTH,
        falling back to the defaults for any that are unset.

        Raises:
            ValueError: If a variable is set to a non-positive or non-integer value.
        """
        return cls(
            max_nesting_depth=_read_limit("CALCMARK_MAX_NESTING_DEPTH", MAX_NESTING_DEPTH),
            max_token_count=_read_limit("CALCMARK_MAX_TOKEN_COUNT", MAX_TOKEN_COUNT),
            max_identifier_length=_read_limit(
                "CALCMARK_MAX_IDENTIFIER_LENGTH", MAX_IDENTIFIER_LENGTH
            ),
            max_number_length=_read_limit("CALCMARK_MAX_NUMBER_LENGTH", MAX_NUMBER_LENGTH),
        )


DEFAULT_CONFIG = CalcMarkConfig()
