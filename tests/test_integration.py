"""
Integration tests against a live BigQuery project.

Skipped unless GOOGLE_APPLICATION_CREDENTIALS is set. Listing uses the
public 'bigquery-public-data.samples' dataset; queries are dry runs or
trivial SELECTs, so nothing is billed beyond a minimal scan.
"""

import json
import os

import pytest

from src.bridge.mcp_server import read_dataset_tables, run_query_tool
from src.config import Settings
from src.warehouse.client import WarehouseClient

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.environ.get("GOOGLE_APPLICATION_CREDENTIALS"),
        reason="GOOGLE_APPLICATION_CREDENTIALS not set",
    ),
]


@pytest.fixture(scope="module")
def live_client():
    client = WarehouseClient.from_config(Settings.from_env().client_config())
    yield client
    client.close()


@pytest.mark.asyncio
async def test_list_public_dataset(live_client):
    """Test listing a public dataset returns summaries with ids."""
    payload = await read_dataset_tables(
        live_client, {"datasetId": "samples", "projectId": "bigquery-public-data"}
    )

    assert payload["isError"] is False
    tables = json.loads(payload["contents"][0]["text"])
    assert tables
    assert all(table["id"] for table in tables)


@pytest.mark.asyncio
async def test_select_literal(live_client):
    """Test a trivial query round trip."""
    payload = await run_query_tool(live_client, {"query": "SELECT 1 AS one"})

    assert payload["isError"] is False
    body = json.loads(payload["content"][0]["text"])
    assert body["rows"] == [{"one": 1}]
    assert body["metadata"]["totalRows"] == "1"


@pytest.mark.asyncio
async def test_bad_sql_is_error(live_client):
    """Test BigQuery's syntax error text reaches the caller."""
    payload = await run_query_tool(live_client, {"query": "SELEC 1", "dryRun": True})

    assert payload["isError"] is True
    assert "Syntax error" in payload["content"][0]["text"]
