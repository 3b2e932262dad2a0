"""External tool-server specification, launching and supervision."""

from toolhub_server.servers.launch import (
    LaunchCandidate,
    build_launch_plan,
    infer_package,
    launch_first,
    resolve_package_script,
    terminate_process,
)
from toolhub_server.servers.spawner import ServerSpawner
from toolhub_server.servers.specification import (
    load_server_specification,
    parse_server_specification,
)
from toolhub_server.servers.types import (
    ExternalServerEntry,
    ServerSpec,
    ServerType,
    SpawnAttempt,
    SpecificationPass,
)

__all__ = [
    "ExternalServerEntry",
    "LaunchCandidate",
    "ServerSpawner",
    "ServerSpec",
    "ServerType",
    "SpawnAttempt",
    "SpecificationPass",
    "build_launch_plan",
    "infer_package",
    "launch_first",
    "load_server_specification",
    "parse_server_specification",
    "resolve_package_script",
    "terminate_process",
]
