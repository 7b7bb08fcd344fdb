"""
Royalty service for the LicenseIQ Royalty Engine.

Wires configuration, structured logging and metrics around the
calculator. Collaborators hand over raw rule and sales records and get
back the camelCase payload the reporting layer stores.
"""

from typing import Any, Dict, Iterable, Optional

from prometheus_client import CollectorRegistry

from shared.errors import RoyaltyEngineException
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector

from .calculation.calculator import RoyaltyCalculator
from .calculation.models import BatchResult, BatchResultResponse
from .config import EngineConfig, get_config
from .rules.loader import LineItemInput, RuleInput

SERVICE_NAME = "royalties"


class RoyaltyService:
    """Royalty service implementation."""

    def __init__(self, config: Optional[EngineConfig] = None, registry: Optional[CollectorRegistry] = None):
        self.config = config or get_config()
        configure_logging(SERVICE_NAME, self.config.log_level)
        self.logger = get_logger("royalties.service")

        self.metrics = MetricsCollector(SERVICE_NAME, registry) if self.config.enable_metrics else None
        self.calculator = RoyaltyCalculator(config=self.config, metrics=self.metrics)

        self.logger.info(
            "Royalty service initialized",
            env=self.config.env,
            tier_out_of_range=self.config.tier_out_of_range.value,
            max_workers=self.config.max_workers,
            metrics_enabled=self.metrics is not None
        )

    def calculate(
        self,
        contract_id: str,
        rules: Iterable[RuleInput],
        line_items: Iterable[LineItemInput],
        calculation_id: Optional[str] = None,
    ) -> BatchResult:
        """Calculate royalties, recording an error metric on failure."""
        try:
            return self.calculator.calculate_royalty(contract_id, rules, line_items, calculation_id)
        except RoyaltyEngineException as e:
            response = e.to_response(calculation_id=calculation_id)
            self.logger.error(
                "Royalty calculation rejected",
                contract_id=contract_id,
                error=response.model_dump(exclude_none=True)
            )
            if self.metrics is not None:
                self.metrics.record_error(e.code)
            raise

    def calculate_payload(
        self,
        contract_id: str,
        rules: Iterable[RuleInput],
        line_items: Iterable[LineItemInput],
        calculation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Calculate royalties and return the camelCase result payload."""
        result = self.calculate(contract_id, rules, line_items, calculation_id)
        return BatchResultResponse.from_result(result).to_payload()

    def export_metrics(self) -> bytes:
        """Prometheus text exposition of the service metrics."""
        if self.metrics is None:
            return b""
        return self.metrics.export()
