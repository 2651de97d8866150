"""
MCP server exposing BigQuery through the Model Context Protocol.

Two capabilities are registered:
- Resource template warehouse://datasets/{datasetId}/tables{?projectId}
  returning the tables of a dataset as JSON
- Tool 'execute_query' running a SQL query and returning rows plus metadata

Protocol Compliance:
- Built on the official MCP Python SDK low-level Server
- The resource template carries an RFC 6570 query parameter, which needs
  the low-level read_resource hook to resolve
- Tool failures are reported as CallToolResult with isError: true
- stdio transport from the SDK (mcp.server.stdio)

Each handle catches every failure and turns it into an error payload. A bad
request never takes the serving loop down.
"""

import base64
import codecs
import json
import logging
import os
import re
import signal
import sys
import threading
from collections.abc import AsyncIterator
from concurrent.futures import CancelledError
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qs, quote, unquote, urlencode

import anyio
import anyio.abc
import anyio.from_thread
import anyio.lowlevel
from anyio import to_thread
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server

from src.config import SERVER_NAME, SERVER_VERSION
from src.warehouse.client import WarehouseClient
from src.warehouse.validation import ExecuteQueryParams, ListTablesParams, validate_params

logger = logging.getLogger(__name__)

JSON_MIME_TYPE = "application/json"
TEXT_MIME_TYPE = "text/plain"

TABLES_URI_TEMPLATE = "warehouse://datasets/{datasetId}/tables{?projectId}"
TABLES_RESOURCE_NAME = "BigQuery tables"
TABLES_RESOURCE_DESCRIPTION = (
    "Lists the BigQuery tables of a dataset. projectId may be given as a query "
    "parameter (e.g. warehouse://datasets/{datasetId}/tables?projectId=your-project-id); "
    "when omitted the default project is used."
)
_TABLES_URI = re.compile(
    r"^warehouse://datasets/(?P<datasetId>[^/?#]*)/tables(?:\?(?P<query>[^#]*))?$"
)

INVALID_PARAMETERS_URI = "error://invalid-parameters"
QUERY_ERROR_URI = "error://query-error"

QUERY_TOOL_NAME = "execute_query"
QUERY_TOOL_DESCRIPTION = "Runs a SQL query against BigQuery and returns the rows with job metadata."
QUERY_TOOL_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "SQL query text (GoogleSQL)"},
        "projectId": {"type": "string", "description": "Project to run the job in"},
        "location": {"type": "string", "description": "Location of the job, e.g. US or asia-northeast1"},
        "maxResults": {"type": "integer", "minimum": 0, "description": "Maximum number of rows to return"},
        "params": {"type": "object", "description": "Named query parameters (@name in the SQL)"},
        "dryRun": {"type": "boolean", "description": "Validate and estimate the query without running it"},
    },
    "required": ["query"],
}


class ToolInvocationError(Exception):
    """
    Raised inside the call_tool hook to report a tool-level failure.
    The SDK turns it into a CallToolResult with isError: true and the
    message as text.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# URI and JSON helpers
# =============================================================================
def match_tables_uri(uri: str) -> Dict[str, str]:
    """
    Extract the template variables from a tables resource URI.

    Args:
        uri: e.g. warehouse://datasets/sales/tables?projectId=acme

    Returns:
        Variables found in the URI ('datasetId', and 'projectId' if given)

    Raises:
        ValueError: If the URI does not follow the tables template
    """
    match = _TABLES_URI.match(uri)
    if match is None:
        raise ValueError(f"Unknown resource URI: {uri}")

    variables = {"datasetId": unquote(match.group("datasetId"))}
    query = parse_qs(match.group("query") or "")
    if query.get("projectId"):
        variables["projectId"] = query["projectId"][0]
    return variables


def expand_tables_uri(dataset_id: str, project_id: Optional[str] = None) -> str:
    """Build a concrete tables resource URI."""
    uri = f"warehouse://datasets/{quote(dataset_id, safe='')}/tables"
    if project_id:
        uri += "?" + urlencode({"projectId": project_id})
    return uri


def _json_default(value: Any) -> Any:
    """Render BigQuery values that json cannot encode natively."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(value: Any) -> str:
    """Serialize a payload the way both handles return it."""
    return json.dumps(value, indent=2, ensure_ascii=False, default=_json_default)


def _resource_payload(uri: str, text: str, is_error: bool = False) -> Dict[str, Any]:
    return {
        "contents": [
            {
                "uri": uri,
                "mimeType": TEXT_MIME_TYPE if is_error else JSON_MIME_TYPE,
                "text": text,
            }
        ],
        "isError": is_error,
    }


def _tool_payload(text: str, is_error: bool = False) -> Dict[str, Any]:
    return {
        "content": [{"type": "text", "text": text}],
        "isError": is_error,
    }


# =============================================================================
# Capability handles
# =============================================================================
async def read_dataset_tables(
    client: WarehouseClient,
    variables: Optional[Mapping[str, Any]],
    uri: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Resource handle: list the tables of a dataset.

    Args:
        client: Warehouse adapter
        variables: Template variables (datasetId, optional projectId)
        uri: Requested URI, echoed in the result (built from the variables
            when omitted)

    Returns:
        MCP-shaped payload {"contents": [...], "isError": bool}
    """
    validation = validate_params(ListTablesParams, variables)
    if not validation.ok:
        logger.warning(f"Rejected tables request: {validation.error}")
        return _resource_payload(
            INVALID_PARAMETERS_URI,
            f"datasetId is required; projectId is optional. ({validation.error})",
            is_error=True,
        )

    params = validation.value
    try:
        tables = await to_thread.run_sync(client.list_tables, params.datasetId, params.projectId)
        text = to_json(tables)
    except Exception as e:
        logger.error(f"Error reading tables of dataset {params.datasetId}: {e}")
        return _resource_payload(QUERY_ERROR_URI, str(e), is_error=True)

    return _resource_payload(uri or expand_tables_uri(params.datasetId, params.projectId), text)


async def run_query_tool(client: WarehouseClient, arguments: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Tool handle: execute a SQL query.

    Args:
        client: Warehouse adapter
        arguments: Tool arguments (query plus optional projectId, location,
            maxResults, params, dryRun)

    Returns:
        MCP-shaped payload {"content": [...], "isError": bool}. On success the
        text is the JSON of {rows, metadata}; on failure it is the error
        message unchanged.
    """
    validation = validate_params(ExecuteQueryParams, arguments)
    if not validation.ok:
        logger.warning(f"Rejected {QUERY_TOOL_NAME} call: {validation.error}")
        return _tool_payload(f"Invalid parameters: {validation.error}", is_error=True)

    params = validation.value
    try:
        result = await to_thread.run_sync(client.execute_query, params.query, params.options())
        text = to_json({"rows": result["rows"], "metadata": result["metadata"]})
    except Exception as e:
        logger.error(f"Error in {QUERY_TOOL_NAME}: {e}")
        return _tool_payload(str(e), is_error=True)

    return _tool_payload(text)


# =============================================================================
# Protocol binding
# =============================================================================
@dataclass
class WarehouseContext:
    """Application context owned by the server for the length of a session."""
    client: WarehouseClient


def create_server(
    client: WarehouseClient,
    name: str = SERVER_NAME,
    version: str = SERVER_VERSION,
) -> Server:
    """
    Create an MCP server with the tables resource and the query tool.

    Args:
        client: Warehouse adapter shared by every request
        name: Server name announced during initialization
        version: Server version announced during initialization

    Returns:
        A low-level MCP Server, ready for Server.run()
    """

    @asynccontextmanager
    async def lifespan(_server: Server) -> AsyncIterator[WarehouseContext]:
        logger.info(f"{name} {version} serving project {client.project}")
        try:
            yield WarehouseContext(client=client)
        finally:
            logger.info("Closing BigQuery client")
            client.close()

    server = Server(name, version=version, lifespan=lifespan)

    @server.list_resources()
    async def list_resources() -> List[types.Resource]:
        # Only templated resources are offered
        return []

    @server.list_resource_templates()
    async def list_resource_templates() -> List[types.ResourceTemplate]:
        return [
            types.ResourceTemplate(
                uriTemplate=TABLES_URI_TEMPLATE,
                name=TABLES_RESOURCE_NAME,
                description=TABLES_RESOURCE_DESCRIPTION,
                mimeType=JSON_MIME_TYPE,
            )
        ]

    @server.read_resource()
    async def read_resource(uri) -> List[ReadResourceContents]:
        uri_text = str(uri)
        payload = await read_dataset_tables(client, match_tables_uri(uri_text), uri=uri_text)
        content = payload["contents"][0]
        if payload["isError"]:
            text = to_json({"isError": True, "uri": content["uri"], "message": content["text"]})
        else:
            text = content["text"]
        return [ReadResourceContents(content=text, mime_type=JSON_MIME_TYPE)]

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return [
            types.Tool(
                name=QUERY_TOOL_NAME,
                description=QUERY_TOOL_DESCRIPTION,
                inputSchema=QUERY_TOOL_SCHEMA,
            )
        ]

    @server.call_tool()
    async def call_tool(tool_name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
        if tool_name != QUERY_TOOL_NAME:
            raise ToolInvocationError(f"Unknown tool: {tool_name}")
        payload = await run_query_tool(client, arguments)
        text = payload["content"][0]["text"]
        if payload["isError"]:
            raise ToolInvocationError(text)
        return [types.TextContent(type="text", text=text)]

    return server


class StdinLineReader:
    """
    Async line iterator over a file descriptor, fed by a daemon thread.

    A pending read never blocks cancellation or interpreter exit. The raw
    descriptor is read with os.read, so the thread holds no lock of
    sys.stdin's buffer. A read error ends the stream like EOF.
    """

    def __init__(self, fd: Optional[int] = None, chunk_size: int = 65536):
        self.fd = sys.stdin.fileno() if fd is None else fd
        self.chunk_size = chunk_size
        self._send, self._receive = anyio.create_memory_object_stream(1)
        self._thread: Optional[threading.Thread] = None

    def __aiter__(self) -> "StdinLineReader":
        return self

    async def __anext__(self) -> str:
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._pump,
                args=(anyio.lowlevel.current_token(),),
                name="stdin-reader",
                daemon=True,
            )
            self._thread.start()
        try:
            return await self._receive.receive()
        except anyio.EndOfStream:
            raise StopAsyncIteration from None

    def _read_lines(self):
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            try:
                chunk = os.read(self.fd, self.chunk_size)
            except OSError as e:
                logger.error(f"stdin read failed: {e}")
                return
            if not chunk:
                break
            pending += decoder.decode(chunk)
            *lines, pending = pending.split("\n")
            for line in lines:
                yield line + "\n"
        pending += decoder.decode(b"", final=True)
        if pending:
            yield pending

    def _pump(self, token) -> None:
        try:
            for line in self._read_lines():
                anyio.from_thread.run(self._send.send, line, token=token)
            anyio.from_thread.run_sync(self._send.close, token=token)
        except (RuntimeError, CancelledError, anyio.BrokenResourceError, anyio.ClosedResourceError) as e:
            # Event loop finished or stopped listening
            logger.debug(f"stdin reader stopped: {e!r}")


async def _cancel_on_signal(
    scope: anyio.CancelScope,
    *,
    task_status: anyio.abc.TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
) -> None:
    """Cancel the serving scope on the first SIGINT or SIGTERM."""
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        task_status.started()
        async for signum in signals:
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
            scope.cancel()
            return


async def serve_stdio(server: Server, stdin_fd: Optional[int] = None) -> None:
    """
    Run the server over stdio until the client disconnects or a signal arrives.

    On a signal the serving scope is cancelled: in-flight calls are abandoned,
    the server lifespan closes the BigQuery client and the function returns
    without waiting for the client to close stdin.
    """
    async with anyio.create_task_group() as tg:
        # Windows event loops have no signal handlers; Ctrl-C raises KeyboardInterrupt there
        if sys.platform != "win32":
            await tg.start(_cancel_on_signal, tg.cancel_scope)
        async with stdio_server(stdin=StdinLineReader(stdin_fd)) as (read_stream, write_stream):
            logger.info("BigQuery MCP server started (stdio)")
            await server.run(read_stream, write_stream, server.create_initialization_options())
        tg.cancel_scope.cancel()
