"""
Human-readable rendering of expression trees for explanations and previews.
"""

from typing import Optional

from .nodes import (
    Add, Condition, ExpressionNode, If, Literal, Lookup, Max, Min, Multiply,
    Premium, PremiumMode, Reference, Round, RoundMode, Subtract, Tier,
)

UNRESOLVED = "?"


def render_expression(node: Optional[ExpressionNode]) -> str:
    """Render ``node`` as a compact formula string, e.g. ``(4 x season)``."""
    if node is None:
        return UNRESOLVED

    if isinstance(node, Literal):
        return f"{_number(node.value)}%" if node.is_percent else _number(node.value)

    if isinstance(node, Reference):
        return node.field

    if isinstance(node, Multiply):
        return _join(" x ", node.operands)

    if isinstance(node, Add):
        return _join(" + ", node.operands)

    if isinstance(node, Subtract):
        return f"({render_expression(node.left)} - {render_expression(node.right)})"

    if isinstance(node, Premium):
        base = render_expression(node.base)
        pct = render_expression(node.percentage)
        if node.mode == PremiumMode.MULTIPLICATIVE:
            return f"{base} x (1 + {pct}%)"
        return f"({base} + {pct})"

    if isinstance(node, Max):
        return f"max({', '.join(render_expression(o) for o in node.operands)})"

    if isinstance(node, Min):
        return f"min({', '.join(render_expression(o) for o in node.operands)})"

    if isinstance(node, Round):
        name = "round" if node.mode == RoundMode.NEAREST else node.mode.value
        return f"{name}({render_expression(node.value)}, {node.precision})"

    if isinstance(node, Tier):
        bands = []
        for tier in node.tiers:
            if tier.max is not None:
                band = f"{_number(tier.min)}-{_number(tier.max)}"
            else:
                band = f"{_number(tier.min)}+"
            bands.append(f"{band}: {render_expression(tier.rate)}")
        return f"tier[{'; '.join(bands)}]"

    if isinstance(node, Lookup):
        entries = ", ".join(f"{key}={render_expression(value)}" for key, value in node.table)
        return f"{node.field}[{entries}]"

    if isinstance(node, If):
        return (
            f"if({_condition(node.condition)}, "
            f"{render_expression(node.then)}, {render_expression(node.otherwise)})"
        )

    raise TypeError(f"Unsupported expression node: {type(node).__name__}")


def _join(separator: str, operands) -> str:
    if not operands:
        return UNRESOLVED
    return "(" + separator.join(render_expression(operand) for operand in operands) + ")"


def _condition(condition) -> str:
    if isinstance(condition, Condition):
        return f"{condition.field} {condition.operator.value} {condition.value!r}"
    if isinstance(condition, bool):
        return str(condition).lower()
    return UNRESOLVED


def _number(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
