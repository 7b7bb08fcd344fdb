"""
Unit tests for expression parsing, evaluation and rendering.
"""

import pytest

from service_royalties.app.expressions import (
    check_condition, evaluate, parse_expression, percent_scale,
    render_expression, round_value, select_branch,
)
from service_royalties.app.expressions.nodes import (
    Add, Condition, ConditionOperator, If, Literal, Lookup, Max, Min,
    Multiply, Premium, PremiumMode, Reference, Round, RoundMode, Subtract,
    Tier, TierEntry,
)


class TestEvaluate:
    """Test cases for evaluate."""

    def test_literal_returned_verbatim(self):
        """Test literals are not converted, percent or otherwise."""
        assert evaluate(Literal(15, unit="percent")) == 15
        assert evaluate(Literal("Spring")) == "Spring"

    def test_reference_returns_field_name(self):
        """Test references document the binding they draw from."""
        assert evaluate(Reference("quantity"), {"quantity": 10}) == "quantity"

    def test_multiply_and_add_filter_non_numeric(self):
        """Test non-numeric operands are dropped before reducing."""
        node = Multiply((Literal(4), Literal("abc"), Literal("2")))
        assert evaluate(node) == 8.0
        assert evaluate(Add((Literal(1.5), None, Literal(2)))) == 3.5

    def test_empty_reductions_are_unresolved(self):
        """Test reductions with no numeric operands return None."""
        assert evaluate(Multiply(())) is None
        assert evaluate(Add((Literal("x"),))) is None
        assert evaluate(Max(())) is None
        assert evaluate(Min((Reference("quantity"),))) is None

    def test_subtract(self):
        """Test subtract needs two numbers."""
        assert evaluate(Subtract(Literal(10), Literal(4))) == 6.0
        assert evaluate(Subtract(Literal(10), None)) is None

    def test_premium_modes(self):
        """Test multiplicative and additive premiums."""
        assert evaluate(Premium(Literal(100), Literal(10), PremiumMode.MULTIPLICATIVE)) == pytest.approx(110.0)
        assert evaluate(Premium(Literal(100), Literal(10))) == 110.0
        assert evaluate(Premium(Literal(2), Literal(50), PremiumMode.MULTIPLICATIVE)) == pytest.approx(3.0)
        assert evaluate(Premium(Literal("base"), Literal(10))) is None

    def test_max_min(self):
        """Test max and min over numeric operands."""
        operands = (Literal(3), Literal("9"), Literal("none"), Literal(-1))
        assert evaluate(Max(operands)) == 9.0
        assert evaluate(Min(operands)) == -1.0

    def test_tier_returns_all_entries(self):
        """Test tier nodes are not selected by quantity."""
        node = Tier((
            TierEntry(0, 999, Literal(5), "base"),
            TierEntry(1000, None, Multiply((Literal(1.5), Literal(2)))),
        ))
        result = evaluate(node, {"quantity": 1500})
        assert result == [
            {"min": 0, "max": 999, "rate": 5, "label": "base"},
            {"min": 1000, "max": None, "rate": 3.0, "label": None},
        ]

    def test_lookup_returns_mapping(self):
        """Test lookup tables are evaluated entry by entry."""
        node = Lookup("season", (("Spring", Literal(1.1)), ("Holiday", Add((Literal(1), Literal(0.25))))))
        assert evaluate(node) == {"Spring": 1.1, "Holiday": 1.25}

    def test_if_with_boolean(self):
        """Test boolean conditions pick a branch."""
        assert evaluate(If(True, Literal(1), Literal(2))) == 1
        assert evaluate(If(False, Literal(1), Literal(2))) == 2
        assert evaluate(If(None, Literal(1), Literal(2))) is None

    def test_if_with_condition(self):
        """Test conditions resolve against bindings."""
        node = If(Condition("quantity", ConditionOperator.GREATER_OR_EQUAL, 1000), Literal(3), Literal(5))
        assert evaluate(node, {"quantity": 1500}) == 3
        assert evaluate(node, {"quantity": "200"}) == 5
        assert evaluate(node, {}) is None

    def test_if_with_custom_resolver(self):
        """Test a caller-supplied resolver decides conditions."""
        node = If(Condition("anything", ConditionOperator.EQUALS, "x"), Literal("yes"), Literal("no"))
        assert evaluate(node, {}, conditions=lambda condition: True) == "yes"
        assert evaluate(node, {}, conditions=lambda condition: None) is None

    def test_unknown_node_is_programmer_error(self):
        """Test non-node values raise TypeError."""
        with pytest.raises(TypeError):
            evaluate(object())


class TestRound:
    """Test cases for round nodes and round_value."""

    def test_round_node(self):
        """Test round node with default precision."""
        assert evaluate(Round(Literal(2.346))) == 2.35
        assert evaluate(Round(Literal(2.345), 2, RoundMode.FLOOR)) == 2.34
        assert evaluate(Round(Literal(2.341), 2, RoundMode.CEIL)) == 2.35
        assert evaluate(Round(Literal("abc"))) is None

    @pytest.mark.parametrize("raw", [0.1, 1.005, 2.675, 1234.5678, 0.3333333, 19.999])
    @pytest.mark.parametrize("precision", [0, 1, 2, 3])
    def test_rounding_bounds(self, raw, precision):
        """Test floor never exceeds, ceil never undershoots, nearest stays within half a step."""
        assert round_value(raw, precision, RoundMode.FLOOR) <= raw
        assert round_value(raw, precision, RoundMode.CEIL) >= raw
        nearest = round_value(raw, precision, RoundMode.NEAREST)
        assert abs(nearest - raw) <= 0.5 * 10 ** -precision + 1e-12

    def test_nearest_rounds_half_up(self):
        """Test halves round up."""
        assert round_value(2.5, 0) == 3.0
        assert round_value(0.125, 2) == 0.13

    @pytest.mark.parametrize("precision,expected", [
        (400, 1.234),
        (1e20, 1.234),
        (-3, 1.0),
        ("abc", 1.23),
    ])
    def test_parsed_precision_is_bounded(self, precision, expected):
        """Test rule-supplied precision is clamped to a usable range."""
        node = parse_expression({"type": "round", "value": 1.234, "precision": precision})

        assert 0 <= node.precision <= 15
        assert evaluate(node) == pytest.approx(expected)

    def test_precision_out_of_range(self):
        """Test round_value rejects precision it cannot honour."""
        assert round_value(1.234, 400) is None
        assert round_value(1.234, -1) is None
        assert evaluate(Round(Literal(1.234), 10 ** 20)) is None

    def test_huge_values_unchanged(self):
        """Test values too large to scale come back as they are."""
        assert round_value(1e300, 15) == 1e300
        assert round_value(1e300, 15, RoundMode.FLOOR) == 1e300


class TestConditions:
    """Test cases for check_condition and select_branch."""

    @pytest.mark.parametrize("operator,expected,value,result", [
        (ConditionOperator.EQUALS, "spring", "Spring", True),
        (ConditionOperator.EQUALS, 10, "10", True),
        (ConditionOperator.NOT_EQUALS, "Fall", "Spring", True),
        (ConditionOperator.IN, ["Canada", "USA"], "usa", True),
        (ConditionOperator.NOT_IN, ["Canada"], "USA", True),
        (ConditionOperator.GREATER_THAN, 5, 6, True),
        (ConditionOperator.LESS_THAN, 5, 6, False),
        (ConditionOperator.LESS_OR_EQUAL, "5", 5, True),
        (ConditionOperator.CONTAINS, "rose", "Pacific Sunset Rose", True),
        (ConditionOperator.STARTS_WITH, "pac", "Pacific", True),
        (ConditionOperator.ENDS_WITH, "gallon", "5-Gallon", True),
    ])
    def test_operators(self, operator, expected, value, result):
        """Test each operator against a bound value."""
        assert check_condition(Condition("field", operator, expected), {"field": value}) is result

    def test_unresolvable_conditions(self):
        """Test missing bindings and non-numeric comparisons are unresolved."""
        assert check_condition(Condition("field", ConditionOperator.EQUALS, 1), {}) is None
        assert check_condition(Condition("field", ConditionOperator.GREATER_THAN, 1), {"field": "abc"}) is None
        assert check_condition(Condition("field", ConditionOperator.IN, "USA"), {"field": "USA"}) is None

    def test_select_branch(self):
        """Test branch selection without evaluating the branch."""
        node = If(Condition("season", ConditionOperator.EQUALS, "Holiday"), Literal(2), Literal(1))
        assert select_branch(node, lambda c: True) == (True, node.then)
        assert select_branch(node, lambda c: False) == (True, node.otherwise)
        assert select_branch(node, lambda c: None) == (False, None)


class TestParseExpression:
    """Test cases for parse_expression."""

    def test_bare_scalars_become_literals(self):
        """Test bare numbers and strings are literals."""
        assert parse_expression(4.0) == Literal(4.0)
        assert parse_expression("Spring") == Literal("Spring")

    def test_nested_formula(self):
        """Test a nested multiply with a lookup."""
        node = parse_expression({
            "type": "multiply",
            "operands": [
                {"type": "literal", "value": 4.0},
                {"type": "lookup", "reference": {"field": "season"}, "table": {"Spring": 1.1, "Holiday": 1.25}},
            ],
        })
        assert node == Multiply((
            Literal(4.0),
            Lookup("season", (("Spring", Literal(1.1)), ("Holiday", Literal(1.25)))),
        ))

    def test_tier_and_if(self):
        """Test tier entries and conditional branches."""
        node = parse_expression({
            "type": "if",
            "condition": {"field": "territory", "operator": "in", "value": ["USA", "Canada"]},
            "then": {"type": "tier", "tiers": [
                {"min": 0, "max": 999, "rate": 5},
                {"min": "1,000", "max": None, "rate": {"type": "literal", "value": 3, "unit": "percent"}},
                {"max": 10},
            ]},
            "else": 2,
        })
        assert isinstance(node, If)
        assert node.condition == Condition("territory", ConditionOperator.IN, ["USA", "Canada"])
        assert node.then.tiers == (
            TierEntry(0.0, 999.0, Literal(5)),
            TierEntry(1000.0, None, Literal(3, unit="percent")),
        )
        assert node.otherwise == Literal(2)

    def test_round_and_premium_modes(self):
        """Test modes and precision are parsed."""
        node = parse_expression({
            "type": "round", "precision": "3", "mode": "ceil",
            "value": {"type": "premium", "base": 10, "percentage": 5, "mode": "multiplicative"},
        })
        assert node == Round(Premium(Literal(10), Literal(5), PremiumMode.MULTIPLICATIVE), 3, RoundMode.CEIL)

    def test_malformed_nodes(self):
        """Test unknown or malformed nodes become None."""
        assert parse_expression({"type": "exponent", "operands": [1, 2]}) is None
        assert parse_expression({"type": "round", "value": 1, "mode": "sideways"}) is None
        assert parse_expression({"type": "lookup", "table": {"a": 1}}) is None
        assert parse_expression(None) is None
        assert parse_expression([1, 2]) is None

    def test_malformed_children_stay_unresolved(self):
        """Test a bad child does not discard its parent."""
        node = parse_expression({"type": "add", "operands": [1, {"type": "bogus"}, 2]})
        assert node == Add((Literal(1), None, Literal(2)))
        assert evaluate(node) == 3.0


class TestRenderExpression:
    """Test cases for render_expression and percent_scale."""

    def test_render(self):
        """Test formulas render without a live quantity."""
        node = Multiply((
            Tier((TierEntry(0, 999, Literal(5)), TierEntry(1000, None, Literal(3)))),
            Lookup("season", (("Spring", Literal(1.1)),)),
        ))
        assert render_expression(node) == "(tier[0-999: 5; 1000+: 3] x season[Spring=1.1])"

    def test_render_misc(self):
        """Test percent literals, rounding, conditions and unresolved children."""
        assert render_expression(Literal(15, unit="%")) == "15%"
        assert render_expression(Round(Reference("quantity"), 0, RoundMode.FLOOR)) == "floor(quantity, 0)"
        assert render_expression(Subtract(Literal(2), None)) == "(2 - ?)"
        node = If(Condition("season", ConditionOperator.EQUALS, "Holiday"), Literal(2), Literal(1))
        assert render_expression(node) == "if(season equals 'Holiday', 2, 1)"

    def test_percent_scale(self):
        """Test only percent literals scale rates."""
        assert percent_scale(Literal(15, unit="percent")) == 0.01
        assert percent_scale(Literal(15)) == 1.0
        assert percent_scale(Multiply((Literal(15, unit="percent"),))) == 1.0
