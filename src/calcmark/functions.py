"""Function registry for the CalcMark calculation language.

Functions are callable from expressions either traditionally
(`avg(1, 2, 3)`) or through natural-language syntax that the parser
lowers to the same call (`average of 1, 2, 3`, `10 TB at 2 TB per disk`).
The registry holds each function's parameters so the parser can check
arity before evaluation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class FunctionCategory(Enum):
    """Groups used when listing built-in functions."""

    MATH = "math"
    RATE = "rate"
    CAPACITY = "capacity"
    RELIABILITY = "reliability"
    NETWORK = "network"
    STORAGE = "storage"
    COMPRESSION = "compression"


@dataclass
class FunctionParameter:
    """One declared parameter.

    `type` is one of "number", "rate", "duration", "unit" or "any".
    Arguments for "unit" parameters are passed to the implementation as
    the bare identifier text (`month`, `disk`) rather than evaluated.
    """

    name: str
    type: str
    description: str
    required: bool = True
    variadic: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "required": self.required,
            "variadic": self.variadic,
        }


@dataclass
class FunctionDefinition:
    """A built-in function: its signature, docs and implementation."""

    name: str
    description: str
    category: FunctionCategory
    parameters: list[FunctionParameter]
    return_type: str
    examples: list[str] = field(default_factory=list)
    implementation: Callable[..., Any] | None = None

    @property
    def min_args(self) -> int:
        return len([p for p in self.parameters if p.required])

    @property
    def max_args(self) -> int | None:
        """Upper bound on argument count, or None for variadic functions."""
        if any(p.variadic for p in self.parameters):
            return None
        return len(self.parameters)

    def unit_positions(self) -> frozenset[int]:
        """Indexes of parameters that take a bare unit name."""
        return frozenset(i for i, p in enumerate(self.parameters) if p.type == "unit")

    def arity_error(self, count: int) -> str | None:
        """Describe an arity mismatch for `count` arguments, or return None."""
        low, high = self.min_args, self.max_args
        if high is None:
            if count < low:
                plural = "" if low == 1 else "s"
                return f"{self.name}() requires at least {low} argument{plural}, got {count}"
            return None
        if low <= count <= high:
            return None
        if low == high:
            plural = "" if low == 1 else "s"
            return f"{self.name}() requires exactly {low} argument{plural}, got {count}"
        return f"{self.name}() requires {low} to {high} arguments, got {count}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "parameters": [p.to_dict() for p in self.parameters],
            "returnType": self.return_type,
            "examples": list(self.examples),
        }


class FunctionRegistry:
    """Process-wide table of callable functions, keyed by name.

    The built-ins in calcmark.builtins are added on package import.
    Tests that clear the table re-register them afterwards.

    Example:
        definition = FunctionRegistry.get("sqrt")
        FunctionRegistry.call("sqrt", Number(Decimal(16)))  # Number(4)
    """

    _functions: dict[str, FunctionDefinition] = {}

    @classmethod
    def register(cls, func_def: FunctionDefinition) -> None:
        """Add a definition, replacing any function of the same name."""
        cls._functions[func_def.name] = func_def

    @classmethod
    def get(cls, name: str) -> FunctionDefinition:
        """Look up a definition.

        Raises:
            ValueError: If no function has that name
        """
        try:
            return cls._functions[name]
        except KeyError:
            raise ValueError(f"Unknown function: {name}") from None

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._functions

    @classmethod
    def call(cls, name: str, *args: Any) -> Any:
        """Invoke a function's implementation with already-evaluated arguments.

        Raises:
            ValueError: If the function is unknown or has no implementation
        """
        implementation = cls.get(name).implementation
        if implementation is None:
            raise ValueError(f"Function '{name}' has no implementation")
        return implementation(*args)

    @classmethod
    def list_all(cls) -> list[FunctionDefinition]:
        return list(cls._functions.values())

    @classmethod
    def list_by_category(cls, category: FunctionCategory) -> list[FunctionDefinition]:
        return [d for d in cls._functions.values() if d.category is category]

    @classmethod
    def export_documentation(cls) -> dict[str, Any]:
        """Registry contents as JSON-ready dicts, flat and grouped by category."""
        grouped = {
            category.value: [d.to_dict() for d in cls.list_by_category(category)]
            for category in FunctionCategory
        }
        return {
            "functions": {name: d.to_dict() for name, d in cls._functions.items()},
            "byCategory": {key: defs for key, defs in grouped.items() if defs},
        }

    @classmethod
    def clear(cls) -> None:
        """Remove every function (for testing)."""
        cls._functions.clear()
