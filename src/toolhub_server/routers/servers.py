"""External tool-server API endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from toolhub_server.dependencies import get_spawner
from toolhub_server.errors import ToolExecutionError, TransportError, ValidationError
from toolhub_server.models.servers import (
    DeleteServerResponse,
    ReloadRequest,
    ReloadResponse,
    ServerDiagnosticsResponse,
    ServerListResponse,
    ServerResponse,
    ServerToolsResponse,
    SpawnServerRequest,
    SyncResponse,
)
from toolhub_server.models.tools import InvokeToolRequest, ToolResultResponse
from toolhub_server.servers import ServerSpawner, ServerSpec
from toolhub_server.tools import ToolUsageLogEntry, result_to_text, text_result

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/servers", tags=["servers"])


def _server_list(spawner: ServerSpawner) -> list[ServerResponse]:
    return [ServerResponse(**entry.to_summary()) for entry in spawner.list_entries()]


def _server_not_found(server_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "error": {
                "code": "server_not_found",
                "message": f"Server {server_id} not found",
                "details": {"id": server_id},
            }
        },
    )


@router.get("", response_model=ServerListResponse)
async def list_servers(spawner: ServerSpawner = Depends(get_spawner)) -> ServerListResponse:
    """List every server entry."""
    return ServerListResponse(servers=_server_list(spawner))


@router.post("", response_model=ServerResponse, status_code=201)
async def spawn_server(
    request_body: SpawnServerRequest,
    spawner: ServerSpawner = Depends(get_spawner),
) -> ServerResponse:
    """Spawn one logical server.

    Returns once the launch attempt finished. Tools appear after the
    server reports ready. An existing embedded or running entry with the
    same name is returned unchanged. Otherwise a new launch is attempted
    and the better of the two entries is kept.
    """
    spec = ServerSpec(**request_body.model_dump(exclude={"name"}))
    entry = await spawner.spawn_server(request_body.name, spec)
    spawner.reconcile()
    return ServerResponse(**entry.to_summary())


@router.post("/reload", response_model=ReloadResponse)
async def reload_servers(
    request_body: ReloadRequest | None = None,
    spawner: ServerSpawner = Depends(get_spawner),
) -> ReloadResponse:
    """Reread the server specification file and apply it.

    Raises:
        HTTPException: 400 if the specification file is invalid
    """
    prune = request_body.prune if request_body is not None else True
    try:
        result = await spawner.reload(prune=prune)
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": {
                    "code": "invalid_specification",
                    "message": str(e),
                    "details": {},
                }
            },
        )
    return ReloadResponse(
        spawned=result.spawned, removed=result.removed, servers=_server_list(spawner)
    )


@router.post("/sync", response_model=SyncResponse)
async def sync_servers(spawner: ServerSpawner = Depends(get_spawner)) -> SyncResponse:
    """Re-list tools on live servers and bridge new ones."""
    synced = await spawner.sync()
    return SyncResponse(synced=synced, servers=_server_list(spawner))


@router.get("/{server_id}/diagnostics", response_model=ServerDiagnosticsResponse)
async def get_server_diagnostics(
    server_id: str, spawner: ServerSpawner = Depends(get_spawner)
) -> ServerDiagnosticsResponse:
    """Return launch attempts, warning, command and stderr tail of a server.

    Raises:
        HTTPException: 404 if the server does not exist
    """
    diagnostics = spawner.diagnostics(server_id)
    if diagnostics is None:
        raise _server_not_found(server_id)
    return ServerDiagnosticsResponse(**diagnostics)


@router.delete("/{server_id}", response_model=DeleteServerResponse)
async def delete_server(
    server_id: str, spawner: ServerSpawner = Depends(get_spawner)
) -> DeleteServerResponse:
    """Tear down a server and remove its tools.

    Raises:
        HTTPException: 404 if the server does not exist
    """
    if not await spawner.remove_server(server_id):
        raise _server_not_found(server_id)
    return DeleteServerResponse(id=server_id, removed=True)


@router.get("/{server_id}/tools", response_model=ServerToolsResponse)
async def list_server_tools(
    server_id: str, spawner: ServerSpawner = Depends(get_spawner)
) -> ServerToolsResponse:
    """List the tools of one server.

    A running process is asked directly, so tools it has not yet bridged
    are included.

    Raises:
        HTTPException: 404 if the server does not exist, 502 if its process
            does not answer
    """
    entry = spawner.get_entry(server_id)
    if entry is None:
        raise _server_not_found(server_id)

    try:
        tools = await spawner.list_server_tools(entry)
    except TransportError as e:
        logger.warning(f"Listing tools of server {entry.name} failed: {e}")
        raise HTTPException(
            status_code=502,
            detail={
                "error": {
                    "code": "server_unreachable",
                    "message": str(e),
                    "details": {"id": server_id},
                }
            },
        )
    return ServerToolsResponse(
        id=entry.id, name=entry.name, tools=tools, warning=entry.warning
    )


@router.post("/{server_id}/tools/{tool_name}/call", response_model=ToolResultResponse)
async def call_server_tool(
    server_id: str,
    tool_name: str,
    request_body: InvokeToolRequest,
    spawner: ServerSpawner = Depends(get_spawner),
) -> ToolResultResponse:
    """Call a tool on one server, bypassing registry name resolution.

    Tool failures are returned as an error result, not an HTTP error.

    Raises:
        HTTPException: 404 if the server or the tool does not exist
    """
    entry = spawner.get_entry(server_id)
    if entry is None:
        raise _server_not_found(server_id)

    started_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    error = None
    try:
        result = await spawner.call_server_tool(entry, tool_name, request_body.arguments)
    except ToolExecutionError as e:
        raise HTTPException(
            status_code=404,
            detail={
                "error": {
                    "code": "tool_not_found",
                    "message": str(e),
                    "details": {"id": server_id, "name": tool_name},
                }
            },
        )
    except Exception as e:
        logger.warning(f"Direct call of {tool_name} on server {entry.name} failed: {e}")
        error = str(e) or type(e).__name__
        result = text_result(f"Invocation error: {error}", is_error=True)

    spawner.registry.record_usage(
        ToolUsageLogEntry(
            name=tool_name,
            args=request_body.arguments,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            error=error,
            summary=result_to_text(result)[:200],
        )
    )
    return ToolResultResponse(
        content=result["content"], isError=bool(result.get("isError"))
    )
