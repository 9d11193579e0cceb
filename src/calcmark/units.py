"""Unit registry for CalcMark.

Read-only lookup tables that classify a string as a currency symbol, a
currency code, a known measurement unit (with aliases), a multi-word unit
or an arbitrary user-defined unit. Conversion factors between known
units come from pint's default unit registry.

All tables are built once at import time and wrapped in immutable views.
"""

import logging
import re
from decimal import Decimal
from functools import lru_cache
from types import MappingProxyType

import pint

from calcmark.errors import DimensionalError

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Currency
# -----------------------------------------------------------------------------

CURRENCY_SYMBOLS = MappingProxyType({
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
})

CURRENCY_CODE_SYMBOLS = MappingProxyType(
    {code: symbol for symbol, code in CURRENCY_SYMBOLS.items()}
)

_CURRENCY_CODE = re.compile(r"[A-Z]{3}")


# -----------------------------------------------------------------------------
# Measurement units
# -----------------------------------------------------------------------------

# canonical unit -> (dimension, pint unit name)
_UNITS = MappingProxyType({
    # Length
    "m": ("length", "meter"),
    "km": ("length", "kilometer"),
    "cm": ("length", "centimeter"),
    "mm": ("length", "millimeter"),
    "ft": ("length", "foot"),
    "in": ("length", "inch"),
    "yd": ("length", "yard"),
    "mi": ("length", "mile"),
    "nautical mile": ("length", "nautical_mile"),
    # Mass
    "kg": ("mass", "kilogram"),
    "g": ("mass", "gram"),
    "mg": ("mass", "milligram"),
    "t": ("mass", "metric_ton"),
    "lb": ("mass", "pound"),
    "oz": ("mass", "ounce"),
    # Volume
    "l": ("volume", "liter"),
    "ml": ("volume", "milliliter"),
    "gal": ("volume", "gallon"),
    "pt": ("volume", "pint"),
    "qt": ("volume", "quart"),
    "cup": ("volume", "cup"),
    "tbsp": ("volume", "tablespoon"),
    "tsp": ("volume", "teaspoon"),
    # Data (binary multiples)
    "bit": ("data", "bit"),
    "B": ("data", "byte"),
    "KB": ("data", "kibibyte"),
    "MB": ("data", "mebibyte"),
    "GB": ("data", "gibibyte"),
    "TB": ("data", "tebibyte"),
    "PB": ("data", "pebibyte"),
    "Kb": ("data", "kibibit"),
    "Mb": ("data", "mebibit"),
    "Gb": ("data", "gibibit"),
    # Pressure
    "Pa": ("pressure", "pascal"),
    "kPa": ("pressure", "kilopascal"),
    "bar": ("pressure", "bar"),
    "psi": ("pressure", "psi"),
})

# Case-sensitive symbol aliases
_SYMBOL_ALIASES = MappingProxyType({
    "L": "l",
    "mL": "ml",
    "kB": "KB",
    "KiB": "KB",
    "MiB": "MB",
    "GiB": "GB",
    "TiB": "TB",
    "PiB": "PB",
    "nmi": "nautical mile",
    "NM": "nautical mile",
})

# Long-form names, matched case-insensitively
_WORD_ALIASES = MappingProxyType({
    "meter": "m", "meters": "m", "metre": "m", "metres": "m",
    "kilometer": "km", "kilometers": "km", "kilometre": "km", "kilometres": "km",
    "centimeter": "cm", "centimeters": "cm", "centimetre": "cm", "centimetres": "cm",
    "millimeter": "mm", "millimeters": "mm", "millimetre": "mm", "millimetres": "mm",
    "foot": "ft", "feet": "ft",
    "inch": "in", "inches": "in",
    "yard": "yd", "yards": "yd",
    "mile": "mi", "miles": "mi",
    "nautical mile": "nautical mile", "nautical miles": "nautical mile",
    "kilogram": "kg", "kilograms": "kg",
    "gram": "g", "grams": "g",
    "milligram": "mg", "milligrams": "mg",
    "tonne": "t", "tonnes": "t", "metric ton": "t", "metric tons": "t",
    "pound": "lb", "pounds": "lb", "lbs": "lb",
    "ounce": "oz", "ounces": "oz",
    "liter": "l", "liters": "l", "litre": "l", "litres": "l",
    "milliliter": "ml", "milliliters": "ml", "millilitre": "ml", "millilitres": "ml",
    "gallon": "gal", "gallons": "gal",
    "pint": "pt", "pints": "pt",
    "quart": "qt", "quarts": "qt",
    "cups": "cup",
    "tablespoon": "tbsp", "tablespoons": "tbsp",
    "teaspoon": "tsp", "teaspoons": "tsp",
    "bits": "bit",
    "byte": "B", "bytes": "B",
    "kilobyte": "KB", "kilobytes": "KB",
    "megabyte": "MB", "megabytes": "MB",
    "gigabyte": "GB", "gigabytes": "GB",
    "terabyte": "TB", "terabytes": "TB",
    "petabyte": "PB", "petabytes": "PB",
    "pascal": "Pa", "pascals": "Pa",
    "kilopascal": "kPa", "kilopascals": "kPa",
})

# first word -> second words that complete a multi-word unit
_MULTIWORD = MappingProxyType({
    "nautical": frozenset({"mile", "miles"}),
    "metric": frozenset({"ton", "tons"}),
})

# Words that can follow a number without being a unit
NON_UNIT_WORDS = frozenset({
    "of", "downtime", "napkin", "buffer", "capacity",
    "true", "false", "yes", "no",
})


# -----------------------------------------------------------------------------
# Time units
# -----------------------------------------------------------------------------

TIME_UNITS = ("second", "minute", "hour", "day", "week", "month", "year")

_TIME_UNIT_SYNONYMS = MappingProxyType({
    "s": "second", "sec": "second", "secs": "second", "second": "second", "seconds": "second",
    "m": "minute", "min": "minute", "mins": "minute", "minute": "minute", "minutes": "minute",
    "h": "hour", "hr": "hour", "hrs": "hour", "hour": "hour", "hours": "hour",
    "d": "day", "day": "day", "days": "day",
    "w": "week", "wk": "week", "week": "week", "weeks": "week",
    "mo": "month", "month": "month", "months": "month",
    "y": "year", "yr": "year", "yrs": "year", "year": "year", "years": "year",
})

_TIME_UNIT_SECONDS = MappingProxyType({
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
    "month": 2592000,  # 30 days
    "year": 31536000,  # 365 days
})


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------


def is_prefix(s: str) -> bool:
    """Return True only for the currency symbols $ € £ ¥."""
    return s in CURRENCY_SYMBOLS


def is_currency_code(s: str) -> bool:
    """Return True if s is exactly three uppercase ASCII letters."""
    return _CURRENCY_CODE.fullmatch(s) is not None


def canonicalize(s: str) -> str:
    """Resolve an alias to its canonical unit name.

    Unknown units are returned unchanged so arbitrary user units
    ("apples", "servers") pass through.
    """
    if s in _UNITS:
        return s
    if s in _SYMBOL_ALIASES:
        return _SYMBOL_ALIASES[s]
    return _WORD_ALIASES.get(s.lower(), s)


def is_known_unit(s: str) -> bool:
    """Return True if s (or its alias) is a registered measurement unit."""
    return canonicalize(s) in _UNITS


def is_valid_unit(s: str) -> bool:
    """Return True if s can serve as a unit after a number.

    Known measurement units are valid, as is any identifier-shaped word
    that is not a natural-language keyword.
    """
    if not s:
        return False
    if is_known_unit(s):
        return True
    first = s[0]
    if not (first.isalpha() or first == "_" or ord(first) >= 0x2600):
        return False
    return s.lower() not in NON_UNIT_WORDS


def is_suffix(s: str) -> bool:
    """Return True if s may follow a number as a currency code or unit."""
    return is_currency_code(s) or is_valid_unit(s)


def multiword(first: str, second: str) -> str | None:
    """Return the canonical unit for a registered two-word pair, else None."""
    seconds = _MULTIWORD.get(first.lower())
    if seconds is None or second.lower() not in seconds:
        return None
    return canonicalize(f"{first.lower()} {second.lower()}")


def dimension(unit: str) -> str | None:
    """Return the physical dimension of a unit.

    Currency codes map to "currency"; arbitrary units have no dimension.
    """
    canonical = canonicalize(unit)
    if canonical in _UNITS:
        return _UNITS[canonical][0]
    if is_currency_code(unit):
        return "currency"
    return None


def are_compatible(left: str, right: str) -> bool:
    """Return True if a value in `right` can be converted into `left`."""
    left, right = canonicalize(left), canonicalize(right)
    if left == right:
        return True
    left_dim = dimension(left)
    return left_dim is not None and left_dim != "currency" and left_dim == dimension(right)


# -----------------------------------------------------------------------------
# Time units
# -----------------------------------------------------------------------------


def normalize_time_unit(s: str) -> str | None:
    """Map a time-unit synonym to second/minute/hour/day/week/month/year."""
    return _TIME_UNIT_SYNONYMS.get(s.lower())


def is_time_unit(s: str) -> bool:
    return normalize_time_unit(s) is not None


def time_unit_seconds(unit: str) -> Decimal:
    """Return the length of a time unit in seconds (month = 30 days, year = 365)."""
    normalized = normalize_time_unit(unit)
    if normalized is None:
        raise ValueError(f"Unknown time unit: {unit}")
    return Decimal(_TIME_UNIT_SECONDS[normalized])


# -----------------------------------------------------------------------------
# Conversion
# -----------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _unit_registry() -> pint.UnitRegistry:
    logger.debug("Loading pint unit registry")
    return pint.UnitRegistry()


@lru_cache(maxsize=256)
def conversion_factor(from_unit: str, to_unit: str) -> Decimal:
    """Return the factor that converts a value in from_unit into to_unit.

    Raises:
        DimensionalError: If the units are unknown or of different dimensions.
    """
    source, target = canonicalize(from_unit), canonicalize(to_unit)
    if source == target:
        return Decimal(1)
    if not are_compatible(source, target):
        raise DimensionalError(f"Cannot convert {from_unit} to {to_unit}")

    ureg = _unit_registry()
    magnitude = ureg.Quantity(1, _UNITS[source][1]).to(_UNITS[target][1]).magnitude
    # Trim float noise (0.30479999999999996 -> 0.3048)
    return Decimal(format(magnitude, ".15g"))


def convert(value: Decimal, from_unit: str, to_unit: str) -> Decimal:
    """Convert a decimal value between two compatible units."""
    return value * conversion_factor(from_unit, to_unit)
