"""Evaluation sessions for multi-line CalcMark text and documents."""

import datetime as dt
import logging

from calcmark.config import DEFAULT_CONFIG, CalcMarkConfig
from calcmark.context import VariableContext
from calcmark.errors import CalcMarkError
from calcmark.evaluator import Evaluator
from calcmark.frontmatter import Frontmatter, split_frontmatter
from calcmark.parser import parse
from calcmark.values import Value

logger = logging.getLogger(__name__)


class Session:
    """Evaluates calculation text line by line in one shared context.

    Variables assigned by one call stay visible to later calls until
    reset() is called.

    Usage:
        session = Session()
        session.eval("price = $20\\nqty = 3")
        session.eval("price * qty")  # [$60.00]
    """

    def __init__(self, config: CalcMarkConfig | None = None, today: dt.date | None = None):
        self.config = config or DEFAULT_CONFIG
        self.context = VariableContext()
        self._evaluator = Evaluator(self.context, today=today)

    def eval(self, text: str | bytes) -> list[Value]:
        """Parse and evaluate every non-blank line, in order.

        Raises:
            CalcMarkError: On the first line that fails to parse or evaluate
        """
        nodes = parse(text, self.config)
        results = []
        for node in nodes:
            try:
                results.append(self._evaluator.evaluate(node))
            except CalcMarkError as e:
                logger.debug("Statement failed: %s", e)
                raise
        return results

    def eval_document(self, text: str) -> list[Value]:
        """Apply a document's frontmatter, then evaluate its body.

        Error locations refer to lines of the whole document, including
        the frontmatter block.
        """
        frontmatter, body, offset = split_frontmatter(text)
        self.apply_frontmatter(frontmatter)
        # Leading newlines keep reported line numbers aligned with the document
        return self.eval("\n" * offset + body)

    def apply_frontmatter(self, frontmatter: Frontmatter) -> None:
        for (from_code, to_code), rate in frontmatter.exchange.items():
            self.context.set_exchange_rate(from_code, to_code, rate)
        for name, expression in frontmatter.globals.items():
            results = self.eval(expression)
            if not results:
                logger.warning("Global '%s' has an empty expression, skipping", name)
                continue
            self.context.set(name, results[-1])

    def get_variable(self, name: str) -> Value:
        """Return a variable's value.

        Raises:
            EvaluationError: If the variable is not defined
        """
        return self.context.get(name)

    @property
    def variables(self) -> dict[str, Value]:
        return self.context.variables

    def reset(self) -> None:
        """Forget all variables and exchange rates."""
        self.context.clear()
