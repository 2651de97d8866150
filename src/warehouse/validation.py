"""
Parameter validation for the resource and tool handles.

Inbound parameters arrive as an untyped mapping. They are parsed against
pydantic models and the outcome is returned as a value: callers get either
the typed parameters or a readable diagnostic, never an exception.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
)

from .errors import ParameterValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class ListTablesParams(BaseModel):
    """Parameters of the table listing resource."""

    model_config = ConfigDict(extra="ignore")

    datasetId: StrictStr = Field(min_length=1)
    projectId: Optional[StrictStr] = Field(default=None, min_length=1)


class ExecuteQueryParams(BaseModel):
    """Parameters of the query execution tool."""

    model_config = ConfigDict(extra="ignore")

    query: StrictStr = Field(min_length=1)
    projectId: Optional[StrictStr] = Field(default=None, min_length=1)
    location: Optional[StrictStr] = Field(default=None, min_length=1)
    maxResults: Optional[StrictInt] = Field(default=None, ge=0)
    params: Optional[Dict[str, Any]] = None
    dryRun: Optional[StrictBool] = None

    def options(self) -> Dict[str, Any]:
        """
        Return the query options the caller actually supplied.

        Unset and null options are left out so they are never forwarded
        to BigQuery as explicit defaults.
        """
        return self.model_dump(exclude={"query"}, exclude_unset=True, exclude_none=True)


@dataclass
class ValidationResult:
    """Outcome of validating a parameter bag."""
    ok: bool
    value: Optional[BaseModel] = None
    error: Optional[str] = None

    def raise_for_error(self) -> BaseModel:
        """Return the validated value or raise ParameterValidationError."""
        if not self.ok:
            raise ParameterValidationError(self.error or "Invalid parameters")
        return self.value


def format_validation_error(exc: ValidationError) -> str:
    """Flatten a pydantic ValidationError into one readable line."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        if location:
            messages.append(f"{location}: {error['msg']}")
        else:
            messages.append(error["msg"])
    return "; ".join(messages)


def validate_params(model: Type[ModelT], params: Optional[Mapping[str, Any]]) -> ValidationResult:
    """
    Validate a parameter bag against a model.

    Args:
        model: The pydantic model describing the expected parameters
        params: Untyped parameters (None is treated as an empty bag)

    Returns:
        ValidationResult holding the typed model or the diagnostic text
    """
    try:
        value = model.model_validate(dict(params) if params is not None else {})
    except ValidationError as e:
        return ValidationResult(ok=False, error=format_validation_error(e))
    except (TypeError, ValueError) as e:
        # dict() on something that is not a mapping
        return ValidationResult(ok=False, error=f"Parameters must be an object: {e}")
    return ValidationResult(ok=True, value=value)
