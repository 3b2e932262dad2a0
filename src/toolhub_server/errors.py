"""Exception hierarchy for toolhub-server.

Every error raised by the core services derives from ToolhubError so that the
HTTP layer can translate them into structured error responses in one place.
"""


class ToolhubError(Exception):
    """Base class for all toolhub-server errors."""


class ValidationError(ToolhubError):
    """Raised for a bad tool definition or a malformed request. Never retried."""


class TransportError(ToolhubError):
    """Raised when communication with an external tool process fails."""


class ProcessExitError(TransportError):
    """Raised for requests still pending when the external process exits."""

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class JsonRpcError(TransportError):
    """Raised when the external process answers with a JSON-RPC error member."""

    def __init__(self, message: str, code: int | None = None, data: object = None):
        super().__init__(message)
        self.code = code
        self.data = data


class RequestTimeoutError(TransportError, TimeoutError):
    """Raised when a single JSON-RPC request does not get a response in time."""


class UpstreamModelError(ToolhubError):
    """Raised when the LLM provider rejects the requested model identifier."""

    def __init__(self, message: str, model: str | None = None) -> None:
        super().__init__(message)
        self.model = model


class ToolExecutionError(ToolhubError):
    """Raised when a tool handler fails during a conversation turn."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class SpawnError(ToolhubError):
    """Raised when a server or its in-process filesystem module cannot be started."""
