"""Restricted condition expressions for condition nodes.

Supported forms::

    true
    false
    <name> <op> <number>      op in >, <, >=, <=, ==

A sized variable (list, dict, string) compares by its length.
"""

from __future__ import annotations

import operator
import re
from collections.abc import Sized
from dataclasses import dataclass
from typing import Any, Callable

from autoflow.errors import ConditionError

_COMPARISON_RE = re.compile(r"^\s*([A-Za-z_]\w*)\s*(>=|<=|==|>|<)\s*(-?\d+(?:\.\d+)?)\s*$")

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
}


@dataclass(frozen=True)
class Condition:
    source: str
    constant: bool | None = None
    name: str = ""
    op: str = ""
    threshold: float = 0.0

    def evaluate(self, variables: dict[str, Any]) -> bool:
        if self.constant is not None:
            return self.constant
        if self.name not in variables:
            raise ConditionError(f"Undefined variable {self.name!r} in condition {self.source!r}")
        value = variables[self.name]
        if isinstance(value, Sized) and not isinstance(value, (int, float)):
            value = len(value)
        if not isinstance(value, (int, float)):
            raise ConditionError(
                f"Variable {self.name!r} is {type(value).__name__}, not comparable to a number"
            )
        return _OPERATORS[self.op](value, self.threshold)


def parse_condition(expression: str) -> Condition:
    """Parse an expression. Raises ConditionError for anything unsupported."""
    if not isinstance(expression, str):
        raise ConditionError(f"Condition must be a string, got {type(expression).__name__}")
    text = expression.strip()
    if text.lower() == "true":
        return Condition(source=expression, constant=True)
    if text.lower() == "false":
        return Condition(source=expression, constant=False)

    match = _COMPARISON_RE.match(text)
    if match is None:
        raise ConditionError(f"Unsupported condition expression: {expression!r}")
    name, op, number = match.groups()
    return Condition(source=expression, name=name, op=op, threshold=float(number))


def is_supported(expression: str) -> bool:
    try:
        parse_condition(expression)
    except ConditionError:
        return False
    return True


def evaluate_condition(expression: str, variables: dict[str, Any]) -> bool:
    return parse_condition(expression).evaluate(variables)
