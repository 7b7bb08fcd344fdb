"""
Shared logging configuration for the LicenseIQ Royalty Engine.
"""

import sys
import structlog
import logging
import uuid
import time
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for correlation IDs
calculation_id_var: ContextVar[Optional[str]] = ContextVar('calculation_id', default=None)
contract_id_var: ContextVar[Optional[str]] = ContextVar('contract_id', default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            add_timestamp,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    # Logger names look like "royalties.rule_matcher"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add correlation context to log events."""
    calculation_id = calculation_id_var.get()
    if calculation_id:
        event_dict["calculation_id"] = calculation_id

    contract_id = contract_id_var.get()
    if contract_id:
        event_dict["contract_id"] = contract_id

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def set_calculation_context(contract_id: Optional[str] = None, calculation_id: Optional[str] = None) -> str:
    """Set calculation correlation context; returns the calculation ID."""
    if calculation_id is None:
        calculation_id = str(uuid.uuid4())
    calculation_id_var.set(calculation_id)
    if contract_id:
        contract_id_var.set(contract_id)
    return calculation_id


def clear_context():
    """Clear all context variables."""
    calculation_id_var.set(None)
    contract_id_var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
