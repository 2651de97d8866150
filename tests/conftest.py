"""
Pytest configuration and shared fixtures.

The BigQuery client is always a MagicMock; no test talks to Google Cloud.
"""

import os
import sys
from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.warehouse.client import WarehouseClient


def make_table(table_id: str, **fields: Any) -> MagicMock:
    """Create a stand-in for a bigquery TableListItem."""
    resource: Dict[str, Any] = {
        "tableReference": {
            "projectId": "test-project",
            "datasetId": "sales",
            "tableId": table_id,
        },
    }
    resource.update(fields)
    table = MagicMock()
    table.table_id = table_id
    table.to_api_repr.return_value = resource
    return table


def make_job(
    rows: Optional[List[Dict[str, Any]]] = None,
    job_id: Optional[str] = "job_123",
    total_bytes_processed: Optional[int] = 2048,
    cache_hit: Optional[bool] = False,
    pages: Optional[Iterable[List[Dict[str, Any]]]] = None,
) -> MagicMock:
    """Create a stand-in for a finished bigquery QueryJob."""
    row_iterator = MagicMock()
    row_iterator.pages = list(pages) if pages is not None else [rows or []]
    row_iterator.total_rows = sum(len(page) for page in row_iterator.pages)

    job = MagicMock()
    job.job_id = job_id
    job.project = "test-project"
    job.location = "US"
    job.total_bytes_processed = total_bytes_processed
    job.cache_hit = cache_hit
    job.result.return_value = row_iterator
    return job


@pytest.fixture
def bq_client():
    """Mock google.cloud.bigquery.Client bound to 'test-project'."""
    client = MagicMock()
    client.project = "test-project"
    return client


@pytest.fixture
def warehouse(bq_client):
    """WarehouseClient wrapping the mock BigQuery client."""
    return WarehouseClient(bq_client)


# Markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests that need a live BigQuery project")
