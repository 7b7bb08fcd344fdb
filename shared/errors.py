"""
Shared error handling for the LicenseIQ Royalty Engine.

Only programmer errors and record-validation failures are raised. Data
quality problems inside a calculation run are reported as diagnostics on
the per-line results instead (see ``DiagnosticCode``).
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    calculation_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class DiagnosticCode(str, Enum):
    """Recoverable conditions recorded against a line item."""
    COERCION_FAILURE = "coercion_failure"
    NO_RULE_MATCHED = "no_rule_matched"
    UNRESOLVABLE_EXPRESSION = "unresolvable_expression"
    MISSING_CALCULATION = "missing_calculation"
    TIER_OUT_OF_RANGE = "tier_out_of_range"
    EXCEEDS_GROSS_AMOUNT = "exceeds_gross_amount"
    INVALID_RECORD = "invalid_record"


class RoyaltyEngineException(Exception):
    """Base exception for the royalty engine."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, calculation_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            calculation_id=calculation_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidInputError(RoyaltyEngineException):
    """Caller passed something that is not a valid batch input."""

    def __init__(self, message: str = "Invalid input", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_INPUT", message, details)


class RuleDefinitionError(RoyaltyEngineException):
    """A rule record could not be turned into a Rule."""

    def __init__(self, message: str = "Invalid rule definition", details: Optional[Dict[str, Any]] = None):
        super().__init__("RULE_DEFINITION_ERROR", message, details)


class LineItemDefinitionError(RoyaltyEngineException):
    """A sales record could not be turned into a LineItem."""

    def __init__(self, message: str = "Invalid line item", details: Optional[Dict[str, Any]] = None):
        super().__init__("LINE_ITEM_DEFINITION_ERROR", message, details)


class ConfigurationError(RoyaltyEngineException):
    """Engine configuration is inconsistent."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)
