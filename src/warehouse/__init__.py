"""
Warehouse Module.

Adapter, parameter validation and error taxonomy for the BigQuery side of
the bridge.
"""

from .client import (
    ClientConfig,
    WarehouseClient,
    epoch_millis_to_iso,
    summarize_table,
)
from .errors import (
    FieldConversionError,
    ParameterValidationError,
    StartupConfigurationError,
    UpstreamQueryError,
    WarehouseError,
)
from .validation import (
    ExecuteQueryParams,
    ListTablesParams,
    ValidationResult,
    validate_params,
)

__all__ = [
    # Adapter
    "ClientConfig",
    "WarehouseClient",
    "epoch_millis_to_iso",
    "summarize_table",
    # Validation
    "ExecuteQueryParams",
    "ListTablesParams",
    "ValidationResult",
    "validate_params",
    # Errors
    "WarehouseError",
    "StartupConfigurationError",
    "ParameterValidationError",
    "UpstreamQueryError",
    "FieldConversionError",
]
