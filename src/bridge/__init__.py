"""
Bridge Module.

Binds the warehouse adapter to the Model Context Protocol using the
official `mcp` SDK.

### Capabilities
- Resource template: warehouse://datasets/{datasetId}/tables{?projectId}
- Tool: execute_query

### Running
    python -m src.main

or, once installed:

    bigquery-mcp-server --project my-project

### For Claude Desktop / External MCP Clients
Register the command above as a stdio server; BigQuery credentials are read
from GOOGLE_APPLICATION_CREDENTIALS.
"""

from .mcp_server import (
    QUERY_TOOL_NAME,
    TABLES_URI_TEMPLATE,
    StdinLineReader,
    ToolInvocationError,
    WarehouseContext,
    create_server,
    match_tables_uri,
    read_dataset_tables,
    run_query_tool,
    serve_stdio,
)

__all__ = [
    # Server
    "create_server",
    "serve_stdio",
    "StdinLineReader",
    "WarehouseContext",
    # Handles
    "read_dataset_tables",
    "run_query_tool",
    "match_tables_uri",
    "ToolInvocationError",
    # Names
    "QUERY_TOOL_NAME",
    "TABLES_URI_TEMPLATE",
]
