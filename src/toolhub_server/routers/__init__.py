"""FastAPI routers for API endpoints.

This package contains all route handlers organized by resource type.
Each router module defines endpoints for a specific domain (health, tools,
servers, chat, memory, models).
"""

from toolhub_server.routers import chat, health, memory, models, servers, tools

__all__ = ["chat", "health", "memory", "models", "servers", "tools"]
