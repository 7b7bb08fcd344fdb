"""
Expression evaluator.

``evaluate`` reduces a node to a primitive given a line item's bindings.
It is pure and never raises on data problems: anything it cannot resolve
comes back as ``None`` and callers decide what a missing value means.

A few variants deliberately stop short of a final number:

- ``Reference`` yields the field name it documents, not the bound value.
- ``Tier`` yields every tier with its rate evaluated; picking a tier by
  quantity belongs to the calculator so trees can be previewed without a
  live quantity.
- ``Lookup`` yields the whole evaluated table; the calculator picks the
  entry for the bound key.
"""

import math
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..coercion import coerce
from .nodes import (
    MAX_ROUND_PRECISION, Add, Condition, ConditionOperator, ExpressionNode, If,
    Literal, Lookup, Max, Min, Multiply, Premium, PremiumMode, Reference, Round,
    RoundMode, Subtract, Tier,
)

Value = Union[float, int, str, bool, List[Dict[str, Any]], Dict[str, Any], None]
ConditionResolver = Callable[[Condition], Optional[bool]]


def evaluate(
    node: Optional[ExpressionNode],
    bindings: Optional[Mapping[str, Any]] = None,
    conditions: Optional[ConditionResolver] = None,
) -> Value:
    """Evaluate ``node`` against ``bindings``.

    Args:
        node: Root of the tree to evaluate. ``None`` evaluates to ``None``.
        bindings: Field name to value for the line item being rated.
        conditions: Resolves ``Condition`` objects on ``If`` nodes. Defaults
            to ``check_condition`` over ``bindings``.

    Returns:
        A number or string for scalar nodes, a list for ``Tier``, a mapping
        for ``Lookup``, or ``None`` if the node could not be resolved.
    """
    bindings = bindings or {}
    if conditions is None:
        def conditions(condition: Condition) -> Optional[bool]:
            return check_condition(condition, bindings)

    return _evaluate(node, bindings, conditions)


def _evaluate(node: Optional[ExpressionNode], bindings: Mapping[str, Any], conditions: ConditionResolver) -> Value:
    if node is None:
        return None

    if isinstance(node, Literal):
        return node.value

    if isinstance(node, Reference):
        return node.field

    if isinstance(node, Multiply):
        numbers = _numeric_operands(node.operands, bindings, conditions)
        return math.prod(numbers) if numbers else None

    if isinstance(node, Add):
        numbers = _numeric_operands(node.operands, bindings, conditions)
        return math.fsum(numbers) if numbers else None

    if isinstance(node, Subtract):
        left = coerce(_evaluate(node.left, bindings, conditions))
        right = coerce(_evaluate(node.right, bindings, conditions))
        if left is None or right is None:
            return None
        return left - right

    if isinstance(node, Premium):
        return _premium(node, bindings, conditions)

    if isinstance(node, Max):
        numbers = _numeric_operands(node.operands, bindings, conditions)
        return max(numbers) if numbers else None

    if isinstance(node, Min):
        numbers = _numeric_operands(node.operands, bindings, conditions)
        return min(numbers) if numbers else None

    if isinstance(node, Round):
        raw = coerce(_evaluate(node.value, bindings, conditions))
        if raw is None:
            return None
        return round_value(raw, node.precision, node.mode)

    if isinstance(node, Tier):
        return [
            {
                "min": tier.min,
                "max": tier.max,
                "rate": _evaluate(tier.rate, bindings, conditions),
                "label": tier.label,
            }
            for tier in node.tiers
        ]

    if isinstance(node, Lookup):
        return {key: _evaluate(value, bindings, conditions) for key, value in node.table}

    if isinstance(node, If):
        return _branch(node, bindings, conditions)

    raise TypeError(f"Unsupported expression node: {type(node).__name__}")


def _numeric_operands(
    operands: Sequence[Optional[ExpressionNode]],
    bindings: Mapping[str, Any],
    conditions: ConditionResolver,
) -> List[float]:
    numbers = []
    for operand in operands:
        number = coerce(_evaluate(operand, bindings, conditions))
        if number is not None:
            numbers.append(number)
    return numbers


def _premium(node: Premium, bindings: Mapping[str, Any], conditions: ConditionResolver) -> Optional[float]:
    base = coerce(_evaluate(node.base, bindings, conditions))
    if base is None:
        return None

    percentage = coerce(_evaluate(node.percentage, bindings, conditions))
    if percentage is None:
        return None

    if node.mode == PremiumMode.MULTIPLICATIVE:
        return base * (1 + percentage / 100)
    return base + percentage


def _branch(node: If, bindings: Mapping[str, Any], conditions: ConditionResolver) -> Value:
    resolved, branch = select_branch(node, conditions)
    if not resolved:
        return None
    return _evaluate(branch, bindings, conditions)


def select_branch(node: If, conditions: ConditionResolver) -> Tuple[bool, Optional[ExpressionNode]]:
    """Pick the branch of an ``If`` node.

    Returns ``(False, None)`` when the condition cannot be resolved to a
    boolean, otherwise ``(True, branch)``.
    """
    if isinstance(node.condition, bool):
        outcome: Optional[bool] = node.condition
    elif isinstance(node.condition, Condition):
        outcome = conditions(node.condition)
    else:
        outcome = None

    if outcome is None:
        return False, None
    return True, node.then if outcome else node.otherwise


def round_value(raw: float, precision: int = 2, mode: RoundMode = RoundMode.NEAREST) -> Optional[float]:
    """Round by scaling, rounding to an integer, and rescaling.

    Nearest rounds halves up. Floor and ceil results never cross ``raw``
    even when the scaled product picks up binary floating-point error.
    Precision outside 0..MAX_ROUND_PRECISION yields ``None``; values too
    large to scale already have no digits at that precision and come back
    unchanged.
    """
    if not 0 <= precision <= MAX_ROUND_PRECISION:
        return None

    scale = 10 ** precision
    if not math.isfinite(raw * scale):
        return raw

    if mode == RoundMode.FLOOR:
        steps = math.floor(raw * scale)
        if steps / scale > raw:
            steps -= 1
        return steps / scale

    if mode == RoundMode.CEIL:
        steps = math.ceil(raw * scale)
        if steps / scale < raw:
            steps += 1
        return steps / scale

    return math.floor(raw * scale + 0.5) / scale


def check_condition(condition: Condition, bindings: Mapping[str, Any]) -> Optional[bool]:
    """Evaluate a condition against bindings; ``None`` when the field is unbound."""
    field_value = bindings.get(condition.field)
    if field_value is None:
        return None

    operator = condition.operator
    expected = condition.value

    try:
        if operator == ConditionOperator.EQUALS:
            return _normalize(field_value) == _normalize(expected)

        if operator == ConditionOperator.NOT_EQUALS:
            return _normalize(field_value) != _normalize(expected)

        if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            if not isinstance(expected, (list, tuple, set, frozenset)):
                return None
            found = _normalize(field_value) in {_normalize(item) for item in expected}
            return found if operator == ConditionOperator.IN else not found

        if operator in (
            ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN,
            ConditionOperator.GREATER_OR_EQUAL, ConditionOperator.LESS_OR_EQUAL,
        ):
            left = coerce(field_value)
            right = coerce(expected)
            if left is None or right is None:
                return None
            if operator == ConditionOperator.GREATER_THAN:
                return left > right
            if operator == ConditionOperator.LESS_THAN:
                return left < right
            if operator == ConditionOperator.GREATER_OR_EQUAL:
                return left >= right
            return left <= right

        text = str(field_value).lower()
        needle = str(expected).lower()
        if operator == ConditionOperator.CONTAINS:
            return needle in text
        if operator == ConditionOperator.STARTS_WITH:
            return text.startswith(needle)
        if operator == ConditionOperator.ENDS_WITH:
            return text.endswith(needle)
    except TypeError:
        return None

    return None


def _normalize(value: Any) -> Any:
    number = coerce(value)
    if number is not None:
        return number
    if isinstance(value, str):
        return value.strip().lower()
    return value
