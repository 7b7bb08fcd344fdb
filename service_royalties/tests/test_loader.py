"""
Unit tests for rule and line-item record loading.
"""

import pytest

from shared.errors import LineItemDefinitionError, RuleDefinitionError
from service_royalties.app.expressions.nodes import Literal, Lookup, Multiply
from service_royalties.app.rules.loader import load_rules, parse_line_item, parse_rule
from service_royalties.app.rules.models import (
    ContainerSizeRate, FormulaCalculation, LegacyCalculation, LineItem,
    RateBasis, Rule, RuleType, VolumeTier,
)


class TestParseRule:
    """Test cases for parse_rule."""

    @pytest.fixture
    def tiered_record(self):
        """Create a legacy tiered rule record."""
        return {
            "id": 17,
            "contractId": "contract-1",
            "ruleName": "Shrub volume tiers",
            "ruleType": "tiered",
            "productCategories": "Shrubs",
            "territories": ["USA", " "],
            "priority": "3",
            "baseRate": "$2.50",
            "volumeTiers": [
                {"min": 1000, "max": None, "rate": "3"},
                {"min": 0, "max": 999, "rate": 5},
                {"min": "n/a", "rate": 1},
            ],
            "seasonalAdjustments": {"Spring": "1.1", "Fall": "bad"},
            "territoryPremiums": {"Canada": 1.05},
            "sourceText": "Licensee shall pay...",
            "confidence": 0.92,
        }

    def test_legacy_record(self, tiered_record):
        """Test flat fields become a LegacyCalculation."""
        rule = parse_rule(tiered_record)

        assert rule.rule_id == "17"
        assert rule.rule_type == RuleType.TIERED
        assert rule.product_categories == ("Shrubs",)
        assert rule.territories == ("USA",)
        assert rule.priority == 3
        assert isinstance(rule.calculation, LegacyCalculation)
        assert rule.calculation.base_rate == 2.5
        assert rule.calculation.volume_tiers == (
            VolumeTier(min=0.0, max=999.0, rate=5.0),
            VolumeTier(min=1000.0, max=None, rate=3.0),
        )
        assert dict(rule.calculation.seasonal_adjustments) == {"Spring": 1.1}
        assert dict(rule.calculation.territory_premiums) == {"Canada": 1.05}
        assert rule.source_text == "Licensee shall pay..."

    def test_formula_record(self):
        """Test a formula definition becomes a FormulaCalculation with legacy fallback."""
        rule = parse_rule({
            "id": "r-2",
            "ruleName": "Seasonal roses",
            "ruleType": "formula_based",
            "baseRate": 4,
            "formulaDefinition": {
                "description": "Roses at $4 with seasonal uplift",
                "basis": "per_unit",
                "expression": {"type": "multiply", "operands": [4, 1]},
                "seasonalAdjustments": {
                    "type": "lookup", "reference": {"field": "season"}, "table": {"Spring": 1.1},
                },
            },
        })

        calculation = rule.calculation
        assert isinstance(calculation, FormulaCalculation)
        assert calculation.expression == Multiply((Literal(4), Literal(1)))
        assert calculation.seasonal_adjustments == Lookup("season", (("Spring", Literal(1.1)),))
        assert calculation.territory_premiums is None
        assert calculation.basis == RateBasis.PER_UNIT
        assert calculation.description == "Roses at $4 with seasonal uplift"
        assert calculation.fallback.base_rate == 4.0

    def test_unparseable_formula_keeps_legacy(self):
        """Test an unusable formula falls back to the flat fields."""
        rule = parse_rule({
            "id": "r-3",
            "ruleName": "Broken formula",
            "baseRate": 1.5,
            "formulaDefinition": {"expression": {"type": "unknown"}},
        })

        assert isinstance(rule.calculation, LegacyCalculation)
        assert rule.calculation.base_rate == 1.5

    def test_unknown_basis_uses_default(self):
        """Test an unknown formula basis falls back to the record basis."""
        rule = parse_rule({
            "id": "r-4",
            "ruleName": "Gross formula",
            "calculationBasis": "gross_amount",
            "formulaDefinition": {"basis": "per_pallet", "expression": 0.05},
        })

        assert rule.calculation.basis == RateBasis.GROSS_AMOUNT
        assert rule.calculation.fallback is None

    def test_no_calculation(self):
        """Test records without rate fields carry no calculation."""
        rule = parse_rule({"id": "r-5", "ruleName": "Scope only", "ruleType": "license_scope"})

        assert rule.calculation is None
        assert rule.is_global is True

    def test_container_sizes_from_volume_tiers(self):
        """Test sized volume tiers become container rates for container rules."""
        rule = parse_rule({
            "id": "r-6",
            "ruleName": "Container pricing",
            "ruleType": "container_size_tiered",
            "volumeTiers": [
                {"size": "1-gallon", "baseRate": "1.25", "volumeThreshold": 500, "discountedRate": 1.0},
                {"size": "5-gallon", "rate": 3},
                {"size": "15-gallon", "baseRate": 0},
            ],
        })

        assert rule.calculation.container_size_rates == (
            ContainerSizeRate(size="1-gallon", base_rate=1.25, volume_threshold=500.0, discounted_rate=1.0),
            ContainerSizeRate(size="5-gallon", base_rate=3.0),
        )
        assert rule.calculation.volume_tiers == ()

    def test_invalid_record_raises(self):
        """Test records failing validation raise RuleDefinitionError."""
        with pytest.raises(RuleDefinitionError) as exc_info:
            parse_rule({"ruleName": "No id"})

        assert exc_info.value.code == "RULE_DEFINITION_ERROR"
        assert exc_info.value.details["errors"]

        with pytest.raises(RuleDefinitionError):
            parse_rule({"id": "x", "ruleName": "Bad type", "ruleType": "royalty_magic"})

    def test_rule_passthrough(self):
        """Test Rule instances are returned unchanged."""
        rule = Rule(rule_id="r", name="Ready")
        assert parse_rule(rule) is rule


class TestParseLineItem:
    """Test cases for line-item loading."""

    def test_record(self):
        """Test camelCase sales records."""
        item = parse_line_item({
            "id": 42,
            "productName": "Pacific Sunset Rose",
            "category": None,
            "territory": "USA",
            "quantity": "100",
            "grossAmount": "$1,200.00",
            "transactionDate": "2024-04-15",
            "containerSize": "5-gallon",
        })

        assert item == LineItem(
            line_item_id="42",
            product_name="Pacific Sunset Rose",
            category="",
            territory="USA",
            quantity="100",
            gross_amount="$1,200.00",
            transaction_date="2024-04-15",
            container_size="5-gallon",
        )

    def test_invalid_record_raises(self):
        """Test missing ids raise LineItemDefinitionError."""
        with pytest.raises(LineItemDefinitionError):
            parse_line_item({"productName": "Orphan"})


class TestBatchLoading:
    """Test cases for load_rules."""

    def test_invalid_records_skipped(self):
        """Test batches skip invalid records without raising."""
        rules = load_rules([
            {"id": "a", "ruleName": "Good", "baseRate": 1},
            {"ruleName": "Missing id"},
            Rule(rule_id="b", name="Prebuilt"),
        ])
        assert [r.rule_id for r in rules] == ["a", "b"]
