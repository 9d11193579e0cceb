"""Error taxonomy for CalcMark.

Every error carries the line and column of the token (or node) that
triggered it so callers can point at the failing location without
re-parsing.

Categories:
- CalcSyntaxError: malformed input (LexerError, ParseError)
- SecurityError: nesting-depth or token-count limit exceeded
- EvaluationError: undefined variable, division by zero, bad operand type
- DimensionalError: incompatible unit combination
"""

from typing import Any


class CalcMarkError(Exception):
    """Base class for all CalcMark errors."""

    def __init__(self, message: str, line: int = 0, column: int = 0):
        self.message = message
        self.line = line
        self.column = column
        super().__init__(self._format())

    def _format(self) -> str:
        if self.line:
            return f"{self.message} at line {self.line}, column {self.column}"
        return self.message

    def with_location(self, line: int, column: int) -> "CalcMarkError":
        """Fill in a location if the error does not carry one yet."""
        if not self.line:
            self.line = line
            self.column = column
            self.args = (self._format(),)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "line": self.line, "column": self.column}


class CalcSyntaxError(CalcMarkError):
    """Malformed token sequence or unrecognized input."""
    pass


class LexerError(CalcSyntaxError):
    """Error during lexical analysis."""
    pass


class ParseError(CalcSyntaxError):
    """Error while building the AST from tokens."""
    pass


class SecurityError(CalcMarkError):
    """A resource limit was exceeded.

    Kept apart from syntax errors so callers can treat it as an abuse
    signal rather than a typo.
    """

    def __init__(
        self,
        message: str,
        line: int = 0,
        column: int = 0,
        limit: int | None = None,
        actual: int | None = None,
    ):
        self.limit = limit
        self.actual = actual
        super().__init__(message, line, column)


class EvaluationError(CalcMarkError):
    """Error during evaluation."""
    pass


class DimensionalError(EvaluationError):
    """Operands have units that cannot be combined."""
    pass
