"""Pydantic models for the external server API."""

from typing import Any

from pydantic import BaseModel, Field

from toolhub_server.servers import ServerType


class ServerResponse(BaseModel):
    """Summary of one server entry."""

    id: str
    name: str
    type: str
    tool_count: int = 0
    warning: str | None = None
    pid: int | None = None
    running: bool = False
    ready: bool = False
    created_at: str = ""
    started_at: str | None = None


class ServerListResponse(BaseModel):
    servers: list[ServerResponse]


class SpawnAttemptResponse(BaseModel):
    label: str
    command: str
    args: list[str] = Field(default_factory=list)
    ok: bool = False
    error: str | None = None


class ServerDiagnosticsResponse(ServerResponse):
    attempts: list[SpawnAttemptResponse] = Field(default_factory=list)
    external: dict[str, Any] | None = None
    stderr: str | None = None


class SpawnServerRequest(BaseModel):
    """Request body for spawning one logical server."""

    name: str = Field(min_length=1, description="Logical server name")
    type: ServerType = Field(default=ServerType.EXTERNAL)
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    package: str | None = None
    module: str | None = None


class ReloadRequest(BaseModel):
    prune: bool = Field(
        default=True, description="Tear down servers missing from the specification"
    )


class ReloadResponse(BaseModel):
    spawned: list[str]
    removed: list[str]
    servers: list[ServerResponse]


class SyncResponse(BaseModel):
    synced: dict[str, int] = Field(description="Entry id to bridged tool count")
    servers: list[ServerResponse]


class DeleteServerResponse(BaseModel):
    id: str
    removed: bool


class ServerToolsResponse(BaseModel):
    """Tools one server offers, in MCP ``tools/list`` shape."""

    id: str
    name: str
    tools: list[dict[str, Any]]
    warning: str | None = None
