"""
Error taxonomy for the BigQuery bridge.

Only StartupConfigurationError is allowed to stop the process. Everything
else is caught at the nearest handle boundary and turned into an error
payload so the serving loop keeps running.
"""

from typing import Any, Optional


class WarehouseError(Exception):
    """Base class for all errors raised by the warehouse layer."""


class StartupConfigurationError(WarehouseError):
    """
    Raised when the process cannot be configured at startup.
    Typically the credential reference is missing or unreadable.
    """

    def __init__(self, message: str, variable: Optional[str] = None):
        self.message = message
        self.variable = variable
        super().__init__(message)


class ParameterValidationError(WarehouseError):
    """
    Raised when invocation parameters are malformed.
    Carries the human-readable diagnostic produced by the validation layer.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UpstreamQueryError(WarehouseError):
    """
    Raised when a BigQuery API call fails (bad SQL, permissions, quota, network).
    The original exception is kept as __cause__.
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        self.message = message
        self.operation = operation
        super().__init__(message)


class FieldConversionError(WarehouseError):
    """
    Raised when a single field of a table record cannot be converted.
    Never escapes a listing call: the field is dropped instead.
    """

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Cannot convert {field}={value!r}: {reason}")
