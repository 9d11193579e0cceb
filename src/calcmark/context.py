"""Variable context shared by the statements of one evaluation session."""

import logging
from decimal import Decimal
from types import MappingProxyType

from calcmark.errors import EvaluationError
from calcmark.lexer import BOOLEAN_KEYWORDS
from calcmark.values import Boolean, Number, Value

logger = logging.getLogger(__name__)

PI = Decimal("3.14159265358979323846264338327950288419716939937510")
E = Decimal("2.71828182845904523536028747135266249775724709369995")

CONSTANTS = MappingProxyType({
    "PI": Number(PI),
    "E": Number(E),
})


class VariableContext:
    """Maps variable names to their last assigned value.

    Names are case-sensitive and compared by exact code points. Boolean
    keywords (true/false/yes/no/t/f/y/n) are resolved as a fallback and
    are never stored. Exchange rates declared in frontmatter are kept
    alongside the variables.

    A context belongs to a single session; it is not safe to share it
    between concurrent evaluations.
    """

    def __init__(self) -> None:
        self._variables: dict[str, Value] = {}
        self._exchange_rates: dict[tuple[str, str], Decimal] = {}

    def get(self, name: str) -> Value:
        """Look up a variable, then constants, then boolean keywords.

        Raises:
            EvaluationError: If the name is not defined
        """
        if name in self._variables:
            return self._variables[name]
        if name in CONSTANTS:
            return CONSTANTS[name]
        keyword = BOOLEAN_KEYWORDS.get(name.lower())
        if keyword is not None:
            return Boolean(keyword)
        raise EvaluationError(f"Undefined variable: {name!r}")

    def set(self, name: str, value: Value) -> None:
        if name.lower() in BOOLEAN_KEYWORDS:
            raise EvaluationError(f"Cannot assign to boolean keyword '{name}'")
        logger.debug("Assigning %s = %s", name, value)
        self._variables[name] = value

    def has(self, name: str) -> bool:
        return name in self._variables

    @property
    def variables(self) -> dict[str, Value]:
        """A copy of the user-assigned variables."""
        return dict(self._variables)

    # -------------------------------------------------------------------------
    # Exchange rates
    # -------------------------------------------------------------------------

    def set_exchange_rate(self, from_code: str, to_code: str, rate: Decimal) -> None:
        if rate <= 0:
            raise EvaluationError(f"Exchange rate {from_code}->{to_code} must be positive")
        self._exchange_rates[(from_code, to_code)] = rate

    def exchange_rate(self, from_code: str, to_code: str) -> Decimal | None:
        """Return the declared rate, deriving the inverse when only it is known."""
        if from_code == to_code:
            return Decimal(1)
        direct = self._exchange_rates.get((from_code, to_code))
        if direct is not None:
            return direct
        inverse = self._exchange_rates.get((to_code, from_code))
        if inverse is not None:
            return Decimal(1) / inverse
        return None

    @property
    def exchange_rates(self) -> dict[tuple[str, str], Decimal]:
        return dict(self._exchange_rates)

    def clear(self) -> None:
        self._variables.clear()
        self._exchange_rates.clear()
