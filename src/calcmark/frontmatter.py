"""YAML frontmatter for CalcMark documents.

A document may open with a `---` delimited YAML block that declares
exchange rates and global variables before the calculations run:

    ---
    exchange:
      USD_EUR: 0.92
    globals:
      tax_rate: 8%
    ---
    price = $100 in EUR

Exchange keys are `FROM_TO` or `FROM/TO`. Global values are expressions
in the calculation language, evaluated in declaration order.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import yaml

from calcmark.errors import CalcSyntaxError
from calcmark.units import is_currency_code

logger = logging.getLogger(__name__)

DELIMITER = "---"


@dataclass
class Frontmatter:
    """Declarations read from a document's YAML header.

    Attributes:
        exchange: (from_code, to_code) -> rate
        globals: variable name -> expression source
    """

    exchange: dict[tuple[str, str], Decimal] = field(default_factory=dict)
    globals: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.exchange and not self.globals


def split_frontmatter(text: str) -> tuple[Frontmatter, str, int]:
    """Separate a leading frontmatter block from the document body.

    Returns:
        Tuple of (frontmatter, body, body_line_offset), where the offset is
        the number of lines consumed before the body starts

    Raises:
        CalcSyntaxError: If the block is unterminated or is not a YAML mapping
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != DELIMITER:
        return Frontmatter(), text, 0

    closing = next(
        (i for i in range(1, len(lines)) if lines[i].strip() == DELIMITER), None
    )
    if closing is None:
        raise CalcSyntaxError("Unterminated frontmatter block", 1, 1)

    try:
        data = yaml.safe_load("".join(lines[1:closing]))
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = mark.line + 2 if mark is not None else 1
        raise CalcSyntaxError(f"Invalid frontmatter YAML: {e}", line, 1) from None

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CalcSyntaxError("Frontmatter must be a YAML mapping", 2, 1)

    frontmatter = Frontmatter(
        exchange=_read_exchange(data.get("exchange")),
        globals=_read_globals(data.get("globals")),
    )
    for key in data:
        if key not in ("exchange", "globals"):
            logger.warning("Ignoring unknown frontmatter key '%s'", key)

    return frontmatter, "".join(lines[closing + 1:]), closing + 1


def _read_exchange(section: Any) -> dict[tuple[str, str], Decimal]:
    rates: dict[tuple[str, str], Decimal] = {}
    if section is None:
        return rates
    if not isinstance(section, dict):
        logger.warning("Frontmatter 'exchange' must be a mapping, ignoring it")
        return rates

    for key, raw in section.items():
        pair = parse_exchange_key(str(key))
        if pair is None:
            logger.warning("Ignoring exchange rate with invalid key '%s'", key)
            continue
        try:
            rate = Decimal(str(raw))
        except InvalidOperation:
            logger.warning("Ignoring non-numeric exchange rate %s = %r", key, raw)
            continue
        if not rate.is_finite() or rate <= 0:
            logger.warning("Ignoring non-positive exchange rate %s = %s", key, raw)
            continue
        rates[pair] = rate
    return rates


def parse_exchange_key(key: str) -> tuple[str, str] | None:
    """Split `USD_EUR` or `USD/EUR` into a pair of currency codes."""
    for separator in ("_", "/"):
        if separator in key:
            from_code, _, to_code = key.partition(separator)
            if is_currency_code(from_code) and is_currency_code(to_code):
                return from_code, to_code
            return None
    return None


def _read_globals(section: Any) -> dict[str, str]:
    if section is None:
        return {}
    if not isinstance(section, dict):
        logger.warning("Frontmatter 'globals' must be a mapping, ignoring it")
        return {}

    result: dict[str, str] = {}
    for name, expression in section.items():
        if isinstance(expression, bool) or expression is None:
            logger.warning("Ignoring global '%s' with non-expression value %r", name, expression)
            continue
        if isinstance(expression, (dict, list)):
            logger.warning("Ignoring global '%s': value must be an expression", name)
            continue
        result[str(name)] = str(expression)
    return result
