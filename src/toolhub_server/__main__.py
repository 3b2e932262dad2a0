"""CLI entry point for toolhub-server.

This module provides the command-line interface for starting the toolhub-server.
It can be invoked as `toolhub-server` (via the script entry point) or
`python -m toolhub_server`.
"""

import argparse
import sys

import uvicorn

from toolhub_server import __version__, create_app
from toolhub_server.config import ToolhubSettings


def main() -> None:
    """Main entry point for the toolhub-server CLI.

    Parses command-line arguments and starts the uvicorn server with the
    FastAPI application.
    """
    parser = argparse.ArgumentParser(
        prog="toolhub-server",
        description="Headless tool-orchestration gateway for LLM conversations",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"toolhub-server {__version__}",
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind the server to (default: 127.0.0.1, can be set via TOOLHUB_HOST)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind the server to (default: 8000, can be set via TOOLHUB_PORT)",
    )

    parser.add_argument(
        "--provider",
        type=str,
        default=None,
        choices=["anthropic", "ollama"],
        help="LLM provider (default: anthropic, can be set via TOOLHUB_PROVIDER)",
    )

    parser.add_argument(
        "--ollama-host",
        type=str,
        default=None,
        help="Ollama server URL (default: http://localhost:11434, can be set via TOOLHUB_OLLAMA_HOST)",
    )

    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Default model identifier (can be set via TOOLHUB_DEFAULT_MODEL)",
    )

    parser.add_argument(
        "--fs-root",
        type=str,
        default=None,
        help="Root directory for filesystem tools (default: ., can be set via TOOLHUB_FS_ROOT)",
    )

    parser.add_argument(
        "--servers-config",
        type=str,
        default=None,
        help="Server specification file (default: mcp_servers.json, can be set via TOOLHUB_SERVERS_CONFIG_PATH)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO, can be set via TOOLHUB_LOG_LEVEL)",
    )

    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development (uvicorn --reload)",
    )

    args = parser.parse_args()

    # Build settings, CLI args override environment variables
    settings_kwargs = {}
    if args.host is not None:
        settings_kwargs["host"] = args.host
    if args.port is not None:
        settings_kwargs["port"] = args.port
    if args.provider is not None:
        settings_kwargs["provider"] = args.provider
    if args.ollama_host is not None:
        settings_kwargs["ollama_host"] = args.ollama_host
    if args.model is not None:
        settings_kwargs["default_model"] = args.model
    if args.fs_root is not None:
        settings_kwargs["fs_root"] = args.fs_root
    if args.servers_config is not None:
        settings_kwargs["servers_config_path"] = args.servers_config
    if args.log_level is not None:
        settings_kwargs["log_level"] = args.log_level

    settings = ToolhubSettings(**settings_kwargs)

    # Create the FastAPI app
    app = create_app(settings=settings)

    # Start uvicorn
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=args.reload,
    )


if __name__ == "__main__":
    sys.exit(main())
