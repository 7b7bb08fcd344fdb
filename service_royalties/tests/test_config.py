"""
Unit tests for Royalty Engine configuration and service wiring.
"""

from unittest.mock import MagicMock

import pytest
from prometheus_client import CollectorRegistry

from shared.errors import ConfigurationError, ErrorResponse, InvalidInputError
from shared.metrics import MetricsCollector
from service_royalties.app.config import EngineConfig, TierOutOfRangePolicy, get_config
from service_royalties.app.service import RoyaltyService


class TestEngineConfig:
    """Test cases for EngineConfig."""

    def test_defaults(self, monkeypatch):
        """Test default settings."""
        monkeypatch.delenv("ROYALTY_TIER_OUT_OF_RANGE", raising=False)
        config = EngineConfig()

        assert config.default_priority == 50
        assert config.tier_out_of_range == TierOutOfRangePolicy.CLAMP
        assert config.gross_amount_tolerance == 1.01
        assert config.max_workers == 1
        assert "primary" in config.abstract_territories
        assert "and" in config.category_stop_words

    def test_environment_overrides(self, monkeypatch):
        """Test ROYALTY_ environment variables are read."""
        monkeypatch.setenv("ROYALTY_TIER_OUT_OF_RANGE", "unmatched")
        monkeypatch.setenv("ROYALTY_DEFAULT_PRIORITY", "10")

        config = get_config()

        assert config.tier_out_of_range == TierOutOfRangePolicy.UNMATCHED
        assert config.default_priority == 10

    def test_explicit_overrides(self):
        """Test keyword overrides and word normalization."""
        config = get_config(max_workers=4, abstract_territories=(" Region A ", "", "ZONE"))

        assert config.max_workers == 4
        assert config.abstract_territories == ("region a", "zone")

    def test_invalid_workers(self):
        """Test max_workers below one is rejected."""
        with pytest.raises(ConfigurationError):
            EngineConfig(max_workers=0)


class TestErrors:
    """Test cases for engine exceptions."""

    def test_to_response(self):
        """Test exceptions convert to ErrorResponse."""
        error = InvalidInputError("rules must be a sequence of records", details={"argument": "rules"})
        response = error.to_response(calculation_id="calc-1")

        assert isinstance(response, ErrorResponse)
        assert response.code == "INVALID_INPUT"
        assert response.calculation_id == "calc-1"
        assert response.details == {"argument": "rules"}


class TestRoyaltyService:
    """Test cases for RoyaltyService wiring and metrics."""

    @pytest.fixture
    def registry(self):
        """Create an isolated Prometheus registry."""
        return CollectorRegistry()

    @pytest.fixture
    def service(self, registry):
        """Create RoyaltyService with metrics on an isolated registry."""
        return RoyaltyService(config=EngineConfig(enable_metrics=True), registry=registry)

    def test_payload_uses_camel_case(self, service):
        """Test the payload carries the reporting field names."""
        payload = service.calculate_payload(
            "contract-1",
            [{"id": "r1", "ruleName": "Roses", "productCategories": ["Roses"], "baseRate": 4}],
            [{"id": "s1", "productName": "Rose", "quantity": 10}],
            calculation_id="calc-1",
        )

        assert payload["calculationId"] == "calc-1"
        assert payload["totalRoyalty"] == 40.0
        assert payload["finalRoyalty"] == 40.0
        assert payload["rulesApplied"] == ["Roses"]
        line = payload["breakdown"][0]
        assert line["saleId"] == "s1"
        assert line["ruleApplied"] == "Roses"
        assert line["calculatedRoyalty"] == 40.0
        assert line["calculationType"] == "flat_rate"
        assert line["matchPhase"] == "specific"
        assert line["conditionsChecked"][0]["condition"] == "Product Category"

    def test_metrics_recorded(self, service, registry):
        """Test line outcomes and diagnostics are counted."""
        service.calculate(
            "contract-1",
            [{"id": "r1", "ruleName": "Roses", "productCategories": ["Roses"], "baseRate": 4}],
            [
                {"id": "s1", "productName": "Rose", "quantity": 10},
                {"id": "s2", "productName": "Tulip", "quantity": 10},
                {"id": "s3", "productName": "Rose", "quantity": "abc"},
            ],
        )

        def sample(name, **labels):
            return registry.get_sample_value(name, labels)

        assert sample("royalty_line_items_total", outcome="matched") == 1.0
        assert sample("royalty_line_items_total", outcome="unmatched") == 1.0
        assert sample("royalty_line_items_total", outcome="excluded") == 1.0
        assert sample("royalty_rule_matches_total", phase="specific") == 1.0
        assert sample("royalty_diagnostics_total", code="no_rule_matched") == 1.0
        assert sample("royalty_diagnostics_total", code="coercion_failure") == 1.0
        assert sample("royalty_calculation_duration_seconds_count") == 1.0
        assert b"royalty_line_items_total" in service.export_metrics()

    def test_invalid_input_recorded(self, service, registry):
        """Test programmer errors propagate and are counted."""
        with pytest.raises(InvalidInputError):
            service.calculate("contract-1", None, [])

        assert registry.get_sample_value(
            "errors_total", {"error_type": "INVALID_INPUT", "service": "royalties"}
        ) == 1.0

    def test_rejection_logged_as_error_response(self, service):
        """Test rejected requests are logged in the standard error response shape."""
        service.logger = MagicMock()

        with pytest.raises(InvalidInputError):
            service.calculate("contract-1", [], "not records", calculation_id="calc-9")

        service.logger.error.assert_called_once()
        logged = service.logger.error.call_args.kwargs["error"]
        assert logged == ErrorResponse(
            calculation_id="calc-9",
            code="INVALID_INPUT",
            message="line_items must be a sequence of records",
            details={"argument": "line_items", "type": "str"},
        ).model_dump()

    def test_metrics_disabled(self):
        """Test metrics can be turned off."""
        service = RoyaltyService(config=EngineConfig(enable_metrics=False))

        assert service.metrics is None
        assert service.export_metrics() == b""

    def test_collector_without_registry(self):
        """Test collectors without a registry can be built repeatedly."""
        first = MetricsCollector("royalties")
        second = MetricsCollector("royalties")

        first.increment_counter("royalty_line_items_total", outcome="matched")
        second.observe_histogram("royalty_calculation_duration_seconds", 0.1)
        assert first.export() == b""
