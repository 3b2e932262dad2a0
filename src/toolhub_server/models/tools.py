"""Pydantic models for the tool administration API."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ToolFieldResponse(BaseModel):
    type: str
    required: bool = True
    description: str = ""


class ToolResponse(BaseModel):
    """A registered tool."""

    name: str = Field(description="Unique tool name")
    description: str = Field(default="", description="Description shown to the model")
    input_schema: dict[str, ToolFieldResponse] = Field(default_factory=dict)
    origin: str | None = Field(
        default=None, description="Id of the server entry that owns this tool"
    )


class ToolListResponse(BaseModel):
    tools: list[ToolResponse]


class RegisterToolRequest(BaseModel):
    """Request body for registering a forwarding tool.

    The tool's arguments are POSTed as JSON to ``invoke_url`` when it runs.
    """

    name: str = Field(min_length=1, description="Unique tool name")
    description: str = Field(default="", description="Description shown to the model")
    inputs: dict[str, str] = Field(
        default_factory=dict, description="Field name to primitive type"
    )
    invoke_url: str = Field(min_length=1, description="URL receiving the arguments")

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "name": "lookup_order",
                    "description": "Look up an order by id",
                    "inputs": {"order_id": "string"},
                    "invoke_url": "http://localhost:9000/orders/lookup",
                }
            ]
        }
    )


class InvokeToolRequest(BaseModel):
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResultResponse(BaseModel):
    """A tool result in content-block form."""

    content: list[dict[str, Any]] = Field(default_factory=list)
    isError: bool = False


class UsageLogEntryResponse(BaseModel):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    started_at: str
    finished_at: str
    error: str | None = None
    summary: str = ""


class UsageLogResponse(BaseModel):
    entries: list[UsageLogEntryResponse]


class ProviderToolsResponse(BaseModel):
    kind: str
    tools: list[dict[str, Any]]


class DeleteToolResponse(BaseModel):
    name: str
    removed: bool
