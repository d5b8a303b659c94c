"""
Sales-manager compensation from KeyCRM orders.

This package computes per-manager rates and bonuses at three tiers:
- classifier: attribute line items to SpecialTag / Upsell / Incoming
- margin: margin, discount proration and tier formulas
- aggregation: per-order and per-manager-month totals
- reconciliation: rate + bonus summary rows
- pipeline: the stages wired together
- keycrm / pagination: order retrieval
- report: .xlsx output
"""

# Import in dependency order
from upsales.exceptions import (
    UpsalesError,
    KeyCRMError,
    KeyCRMConnectionError,
    KeyCRMAPIError,
    KeyCRMDataError,
    ConfigurationError,
    ReportGenerationError,
    ValidationError,
)

from upsales.config import config, validate_config

from upsales.models import (
    Stream,
    Order,
    LineItem,
    ClassifiedItem,
    OrderAggregate,
    ReportRow,
    ManagerSummaryRow,
)

from upsales.pipeline import (
    CompensationPipeline,
    CompensationReport,
    MonthReport,
)

__all__ = [
    # Exceptions
    "UpsalesError",
    "KeyCRMError",
    "KeyCRMConnectionError",
    "KeyCRMAPIError",
    "KeyCRMDataError",
    "ConfigurationError",
    "ReportGenerationError",
    "ValidationError",
    # Config
    "config",
    "validate_config",
    # Models
    "Stream",
    "Order",
    "LineItem",
    "ClassifiedItem",
    "OrderAggregate",
    "ReportRow",
    "ManagerSummaryRow",
    # Pipeline
    "CompensationPipeline",
    "CompensationReport",
    "MonthReport",
]
