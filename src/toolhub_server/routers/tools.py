"""Tool administration API endpoints.

This module provides endpoints for listing, registering, invoking and
removing tools, reading the usage log, and previewing provider schemas.
"""

import logging
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from toolhub_server.dependencies import get_http_client, get_registry
from toolhub_server.errors import ValidationError
from toolhub_server.models.tools import (
    DeleteToolResponse,
    InvokeToolRequest,
    ProviderToolsResponse,
    RegisterToolRequest,
    ToolFieldResponse,
    ToolListResponse,
    ToolResponse,
    ToolResultResponse,
    UsageLogEntryResponse,
    UsageLogResponse,
)
from toolhub_server.tools import (
    ToolDefinition,
    ToolField,
    ToolRegistry,
    ToolUsageLogEntry,
    build_forwarding_handler,
    normalize_tool_result,
    result_to_text,
    text_result,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/tools", tags=["tools"])


def _tool_response(tool: ToolDefinition) -> ToolResponse:
    return ToolResponse(
        name=tool.name,
        description=tool.description,
        input_schema={
            key: ToolFieldResponse(
                type=field.type, required=field.required, description=field.description
            )
            for key, field in tool.input_schema.items()
        },
        origin=tool.origin,
    )


def _tool_not_found(name: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "error": {
                "code": "tool_not_found",
                "message": f"Tool {name} not found",
                "details": {"name": name},
            }
        },
    )


@router.get("", response_model=ToolListResponse)
async def list_tools(registry: ToolRegistry = Depends(get_registry)) -> ToolListResponse:
    """List every registered tool."""
    return ToolListResponse(tools=[_tool_response(t) for t in registry.list_tool_defs()])


@router.post("", response_model=ToolResponse, status_code=201)
async def register_tool(
    request_body: RegisterToolRequest,
    registry: ToolRegistry = Depends(get_registry),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> ToolResponse:
    """Register a tool that forwards its arguments to an HTTP endpoint.

    Registering an existing name replaces the previous definition.

    Raises:
        HTTPException: 400 if the definition is invalid
    """
    if not request_body.invoke_url.startswith(("http://", "https://")):
        raise HTTPException(
            status_code=400,
            detail={
                "error": {
                    "code": "invalid_tool",
                    "message": "invoke_url must be an http(s) URL",
                    "details": {"invoke_url": request_body.invoke_url},
                }
            },
        )

    try:
        tool = registry.add_tool(
            ToolDefinition(
                name=request_body.name,
                description=request_body.description,
                input_schema={
                    key: ToolField(type=field_type)
                    for key, field_type in request_body.inputs.items()
                },
                handler=build_forwarding_handler(request_body.invoke_url, http_client),
            )
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": {
                    "code": "invalid_tool",
                    "message": str(e),
                    "details": {"name": request_body.name},
                }
            },
        )

    logger.info(f"Registered forwarding tool {tool.name} -> {request_body.invoke_url}")
    return _tool_response(tool)


@router.get("/usage", response_model=UsageLogResponse)
async def get_usage_log(
    limit: int | None = Query(default=None, ge=1, le=10000),
    registry: ToolRegistry = Depends(get_registry),
) -> UsageLogResponse:
    """Return the most recent tool invocations, oldest first."""
    entries = registry.get_usage_log(limit)
    return UsageLogResponse(
        entries=[
            UsageLogEntryResponse(
                name=entry.name,
                args=entry.args,
                started_at=entry.started_at,
                finished_at=entry.finished_at,
                error=entry.error,
                summary=entry.summary,
            )
            for entry in entries
        ]
    )


@router.get("/provider/{kind}", response_model=ProviderToolsResponse)
async def get_provider_tools(
    kind: str, registry: ToolRegistry = Depends(get_registry)
) -> ProviderToolsResponse:
    """Preview the tool descriptors sent to a provider (openai or anthropic)."""
    try:
        tools = registry.build_provider_tools(kind)
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": {
                    "code": "invalid_provider_kind",
                    "message": str(e),
                    "details": {"kind": kind},
                }
            },
        )
    return ProviderToolsResponse(kind=kind, tools=tools)


@router.post("/{name}/invoke", response_model=ToolResultResponse)
async def invoke_tool(
    name: str,
    request_body: InvokeToolRequest,
    registry: ToolRegistry = Depends(get_registry),
) -> ToolResultResponse:
    """Run a tool directly and return its content-block result.

    Handler failures are returned as an error result, not an HTTP error.

    Raises:
        HTTPException: 404 if the tool does not exist
    """
    tool = registry.get_tool(name)
    if tool is None or tool.handler is None:
        raise _tool_not_found(name)

    started_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    error = None
    try:
        raw = await tool.handler(request_body.arguments)
    except Exception as e:
        logger.warning(f"Direct invocation of {name} failed: {e}")
        error = str(e) or type(e).__name__
        raw = text_result(f"Invocation error: {error}", is_error=True)

    result = normalize_tool_result(raw)
    registry.record_usage(
        ToolUsageLogEntry(
            name=name,
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


@router.delete("/{name}", response_model=DeleteToolResponse)
async def delete_tool(
    name: str, registry: ToolRegistry = Depends(get_registry)
) -> DeleteToolResponse:
    """Remove a tool by name.

    Raises:
        HTTPException: 404 if the tool does not exist
    """
    if not registry.remove_tool(name):
        raise _tool_not_found(name)
    return DeleteToolResponse(name=name, removed=True)
