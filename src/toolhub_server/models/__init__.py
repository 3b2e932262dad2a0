"""Pydantic models for API request and response schemas.

This package contains all Pydantic models used for validating and
serializing API requests and responses across all endpoints.
"""

from toolhub_server.models.chat import ChatRequest, ChatResponse
from toolhub_server.models.health import HealthResponse
from toolhub_server.models.models import ModelDetail, ModelListResponse
from toolhub_server.models.memory import (
    AppendMemoryRequest,
    AppendMemoryResponse,
    ClearMemoryRequest,
    ClearMemoryResponse,
    SessionMemoryResponse,
)
from toolhub_server.models.servers import (
    ReloadRequest,
    ReloadResponse,
    ServerDiagnosticsResponse,
    ServerListResponse,
    ServerResponse,
    ServerToolsResponse,
    SpawnServerRequest,
    SyncResponse,
)
from toolhub_server.models.tools import (
    InvokeToolRequest,
    ProviderToolsResponse,
    RegisterToolRequest,
    ToolListResponse,
    ToolResponse,
    ToolResultResponse,
    UsageLogResponse,
)

__all__ = [
    "AppendMemoryRequest",
    "AppendMemoryResponse",
    "ChatRequest",
    "ChatResponse",
    "ClearMemoryRequest",
    "ClearMemoryResponse",
    "HealthResponse",
    "InvokeToolRequest",
    "ModelDetail",
    "ModelListResponse",
    "ProviderToolsResponse",
    "RegisterToolRequest",
    "ReloadRequest",
    "ReloadResponse",
    "ServerDiagnosticsResponse",
    "ServerListResponse",
    "ServerResponse",
    "ServerToolsResponse",
    "SessionMemoryResponse",
    "SpawnServerRequest",
    "SyncResponse",
    "ToolListResponse",
    "ToolResponse",
    "ToolResultResponse",
    "UsageLogResponse",
]
