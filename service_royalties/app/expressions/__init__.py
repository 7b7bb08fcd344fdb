"""
Calculation expression trees.

Modules of interest:
- nodes: The closed set of immutable node types.
- parser: Builds trees from JSON-shaped formula definitions.
- evaluator: Reduces a tree to a primitive against line-item bindings.
- render: Formats a tree for explanations and previews.
"""

from .evaluator import evaluate, check_condition, round_value, select_branch
from .nodes import ExpressionNode, percent_scale
from .parser import parse_expression
from .render import render_expression

__all__ = [
    "ExpressionNode",
    "check_condition",
    "evaluate",
    "parse_expression",
    "percent_scale",
    "render_expression",
    "round_value",
    "select_branch",
]
