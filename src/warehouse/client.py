"""
BigQuery client adapter.

Wraps the two operations the bridge exposes, listing the tables of a dataset
and running a SQL query, and reshapes the BigQuery responses into plain
JSON-ready dictionaries.

The underlying google.cloud.bigquery.Client is injected, so tests can hand in
a mock instead of relying on real credentials.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

import google.auth
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import bigquery

from .errors import (
    FieldConversionError,
    ParameterValidationError,
    StartupConfigurationError,
    UpstreamQueryError,
)

logger = logging.getLogger(__name__)

BIGQUERY_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]

# Fields copied as-is from the table resource when present
PASSTHROUGH_FIELDS = ("kind", "type")
# Epoch-millisecond fields converted to ISO-8601 when present
TIMESTAMP_FIELDS = ("creationTime", "lastModifiedTime")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_EPOCH_MILLIS = re.compile(r"-?[0-9]+")


@dataclass(frozen=True)
class ClientConfig:
    """Explicit configuration used to build the BigQuery client."""
    credentials_path: str
    project_id: Optional[str] = None
    location: Optional[str] = None


def epoch_millis_to_iso(field: str, value: Any) -> str:
    """
    Convert an epoch-millisecond value to an ISO-8601 UTC string.

    BigQuery reports table timestamps as numeric strings such as
    "1700000000000", which becomes "2023-11-14T22:13:20.000Z".

    Raises:
        FieldConversionError: If the value is not an integer or out of range
    """
    if isinstance(value, bool) or not _EPOCH_MILLIS.fullmatch(str(value)):
        raise FieldConversionError(field, value, "not an integer millisecond value")
    millis = int(value)
    try:
        moment = _EPOCH + timedelta(milliseconds=millis)
    except OverflowError as e:
        raise FieldConversionError(field, value, "timestamp out of range") from e
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def summarize_table(resource: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Build a table summary from a table list resource.

    A timestamp that cannot be converted is logged and left out of the
    summary; it never fails the listing.

    Args:
        resource: REST representation of a table list item

    Returns:
        Dictionary with 'id' plus whichever of kind, type, creationTime and
        lastModifiedTime the resource carries
    """
    reference = resource.get("tableReference") or {}
    summary: Dict[str, Any] = {"id": reference.get("tableId") or resource.get("id")}

    for field in PASSTHROUGH_FIELDS:
        if resource.get(field):
            summary[field] = resource[field]

    for field in TIMESTAMP_FIELDS:
        value = resource.get(field)
        if value is None or value == "":
            continue
        try:
            summary[field] = epoch_millis_to_iso(field, value)
        except FieldConversionError as e:
            logger.warning(f"Omitting {field} of table {summary['id']}: {e}")

    return summary


def _parameter_type(name: str, value: Any) -> str:
    """Infer the BigQuery type of a bind parameter value."""
    if value is None:
        return "STRING"
    # bool before int, datetime before date: both are subclasses
    if isinstance(value, bool):
        return "BOOL"
    if isinstance(value, int):
        return "INT64"
    if isinstance(value, float):
        return "FLOAT64"
    if isinstance(value, Decimal):
        return "NUMERIC"
    if isinstance(value, datetime):
        return "TIMESTAMP"
    if isinstance(value, date):
        return "DATE"
    if isinstance(value, str):
        return "STRING"
    if isinstance(value, bytes):
        return "BYTES"
    raise ParameterValidationError(
        f"Unsupported type for query parameter '{name}': {type(value).__name__}"
    )


def to_query_parameter(name: str, value: Any):
    """
    Convert one named bind parameter into a BigQuery query parameter.

    Lists become array parameters; their elements must share one type.
    """
    if isinstance(value, (list, tuple)):
        element_types = {_parameter_type(name, item) for item in value if item is not None}
        if len(element_types) > 1:
            raise ParameterValidationError(
                f"Array parameter '{name}' mixes types: {', '.join(sorted(element_types))}"
            )
        array_type = element_types.pop() if element_types else "STRING"
        return bigquery.ArrayQueryParameter(name, array_type, list(value))
    return bigquery.ScalarQueryParameter(name, _parameter_type(name, value), value)


def build_job_config(options: Mapping[str, Any]) -> Optional[bigquery.QueryJobConfig]:
    """
    Build a QueryJobConfig from the options that were actually supplied.

    Returns None when no job-level option is present, so nothing is sent.
    """
    config_kwargs: Dict[str, Any] = {}
    if "dryRun" in options:
        config_kwargs["dry_run"] = options["dryRun"]
    if "params" in options:
        config_kwargs["query_parameters"] = [
            to_query_parameter(name, value) for name, value in options["params"].items()
        ]
    if not config_kwargs:
        return None
    return bigquery.QueryJobConfig(**config_kwargs)


def _first_page(row_iterator) -> Sequence[Any]:
    """
    Return the rows of the first result page only.

    Statements without a result set (DDL, DML) come back as an empty
    iterator that cannot fetch pages, so a zero row count short-circuits.
    """
    if row_iterator.total_rows == 0:
        return []
    return next(iter(row_iterator.pages), [])


def _job_metadata(job, row_count: int) -> Dict[str, Any]:
    """Derive result metadata from a finished query job."""
    job_id = getattr(job, "job_id", None)
    metadata: Dict[str, Any] = {
        "totalRows": str(row_count),
        "jobId": job_id or "",
    }
    if job_id:
        metadata["jobReference"] = {
            "projectId": job.project,
            "jobId": job_id,
            "location": job.location,
        }
    bytes_processed = getattr(job, "total_bytes_processed", None)
    if bytes_processed is not None:
        metadata["totalBytesProcessed"] = str(bytes_processed)
    cache_hit = getattr(job, "cache_hit", None)
    if cache_hit is not None:
        metadata["cacheHit"] = bool(cache_hit)
    return metadata


class WarehouseClient:
    """
    Adapter around a google.cloud.bigquery.Client.

    Each method issues a single upstream call per invocation. Nothing is
    cached between calls.
    """

    def __init__(self, client: bigquery.Client):
        """
        Initialize the adapter.

        Args:
            client: A configured BigQuery client (or a test double)
        """
        self.client = client

    @classmethod
    def from_config(cls, config: ClientConfig) -> "WarehouseClient":
        """
        Build an adapter with credentials loaded from the configured file.

        Raises:
            StartupConfigurationError: If credentials or the default project
                cannot be resolved
        """
        try:
            credentials, default_project = google.auth.load_credentials_from_file(
                config.credentials_path, scopes=BIGQUERY_SCOPES
            )
        except DefaultCredentialsError as e:
            raise StartupConfigurationError(
                f"Cannot load credentials from {config.credentials_path}: {e}",
                variable="GOOGLE_APPLICATION_CREDENTIALS",
            ) from e

        try:
            client = bigquery.Client(
                project=config.project_id or default_project,
                credentials=credentials,
                location=config.location,
            )
        except (DefaultCredentialsError, OSError) as e:
            raise StartupConfigurationError(f"Could not create BigQuery client: {e}") from e

        logger.info(f"BigQuery client initialized for project: {client.project}")
        return cls(client)

    @property
    def project(self) -> Optional[str]:
        """Default project of the underlying client."""
        return self.client.project

    def close(self) -> None:
        """Release the HTTP session of the underlying client."""
        self.client.close()

    def list_tables(self, dataset_id: str, project_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List the tables of a dataset.

        Args:
            dataset_id: The dataset to list
            project_id: Project owning the dataset (default: the client's project)

        Returns:
            List of table summaries (see summarize_table)

        Raises:
            UpstreamQueryError: If the listing call fails; no partial results
        """
        project = project_id or self.project
        logger.info(f"Listing tables in '{project}.{dataset_id}'")
        try:
            dataset_ref = bigquery.DatasetReference(project, dataset_id)
            # The iterator fetches every page
            tables = list(self.client.list_tables(dataset_ref))
        except Exception as e:
            logger.error(f"Listing tables in '{project}.{dataset_id}' failed: {e}")
            raise UpstreamQueryError(f"BigQuery API error: {e}", operation="list_tables") from e

        summaries = [summarize_table(table.to_api_repr()) for table in tables]
        logger.info(f"Listed {len(summaries)} tables in '{project}.{dataset_id}'")
        return summaries

    def execute_query(self, query: str, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a SQL query and wait for its first page of results.

        Args:
            query: SQL text
            options: Supplied options among projectId, location, maxResults,
                params and dryRun; absent keys are not forwarded

        Returns:
            Dictionary with 'rows' (list of dicts) and 'metadata'

        Raises:
            ParameterValidationError: If a bind parameter cannot be converted
            Exception: Any BigQuery failure, re-raised unchanged
        """
        options = dict(options or {})

        query_kwargs: Dict[str, Any] = {}
        if "projectId" in options:
            query_kwargs["project"] = options["projectId"]
        if "location" in options:
            query_kwargs["location"] = options["location"]
        job_config = build_job_config(options)
        if job_config is not None:
            query_kwargs["job_config"] = job_config

        result_kwargs: Dict[str, Any] = {}
        if "maxResults" in options:
            result_kwargs["max_results"] = options["maxResults"]

        logger.info(f"Executing query (options: {sorted(options)})")
        logger.debug(query)
        try:
            job = self.client.query(query, **query_kwargs)
            if options.get("dryRun"):
                rows: List[Dict[str, Any]] = []
            else:
                rows = [dict(row.items()) for row in _first_page(job.result(**result_kwargs))]
        except Exception as e:
            logger.error(f"Query execution failed: {e}")
            raise

        metadata = _job_metadata(job, len(rows))
        logger.info(f"Query {metadata['jobId'] or '<no job id>'} returned {len(rows)} rows")
        return {"rows": rows, "metadata": metadata}
