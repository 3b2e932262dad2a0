"""Data types for external tool-server entries."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from toolhub_server.mcp import StdioMcpClient


class ServerType(str, Enum):
    """Kind of a server entry. Fallback transitions change it in place."""

    EMBEDDED = "embedded"
    EXTERNAL = "external"
    FILESYSTEM = "filesystem"
    FILESYSTEM_INPROC = "filesystem-inproc"
    FILESYSTEM_DEGRADED = "filesystem-degraded"

    @property
    def provides_filesystem(self) -> bool:
        return self in (
            ServerType.FILESYSTEM,
            ServerType.FILESYSTEM_INPROC,
            ServerType.FILESYSTEM_DEGRADED,
        )


class ServerSpec(BaseModel):
    """Declarative description of one logical tool server."""

    command: str | None = None
    args: list[str] = Field(default_factory=list)
    type: ServerType = ServerType.EXTERNAL
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    package: str | None = None
    module: str | None = None


@dataclass
class SpawnAttempt:
    """One launch attempt in a server's launch plan."""

    label: str
    command: str
    args: list[str] = field(default_factory=list)
    ok: bool = False
    error: str | None = None


@dataclass
class ExternalServerEntry:
    """One logical server, mutated in place through its lifecycle.

    The id is assigned once and never changes, so callers holding it can keep
    using it across fallback transitions.
    """

    id: str
    name: str
    type: ServerType
    spec: ServerSpec
    process: asyncio.subprocess.Process | None = None
    client: StdioMcpClient | None = None
    tool_count: int = 0
    spawn_attempts: list[SpawnAttempt] = field(default_factory=list)
    warning: str | None = None
    created_at: str = ""
    started_at: str | None = None
    ready: bool = False

    @property
    def is_live_process(self) -> bool:
        return self.process is not None and self.process.returncode is None

    @property
    def external_command(self) -> str | None:
        for attempt in self.spawn_attempts:
            if attempt.ok:
                return " ".join([attempt.command, *attempt.args])
        return None

    @property
    def stderr_tail(self) -> list[str]:
        return self.client.stderr_tail if self.client is not None else []

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "tool_count": self.tool_count,
            "warning": self.warning,
            "pid": self.process.pid if self.process is not None else None,
            "running": self.is_live_process,
            "ready": self.ready,
            "created_at": self.created_at,
            "started_at": self.started_at,
        }


@dataclass
class SpecificationPass:
    """Outcome of applying a server specification."""

    spawned: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
