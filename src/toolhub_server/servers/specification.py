"""Loading of the declarative server specification file."""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from toolhub_server.errors import ValidationError
from toolhub_server.servers.types import ServerSpec

logger = logging.getLogger(__name__)


def parse_server_specification(data: Any) -> dict[str, ServerSpec]:
    """Validate a specification mapping.

    Accepts either ``{"mcpServers": {name: spec}}`` or a plain
    ``{name: spec}`` mapping.

    Raises:
        ValidationError: If the data is not a mapping or an entry is invalid
    """
    if not isinstance(data, dict):
        raise ValidationError("Server specification must be a JSON object")

    servers = data.get("mcpServers", data)
    if not isinstance(servers, dict):
        raise ValidationError("`mcpServers` must be a JSON object")

    specs: dict[str, ServerSpec] = {}
    for name, raw in servers.items():
        try:
            specs[name] = ServerSpec.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid server specification for '{name}': {e}")
    return specs


def load_server_specification(path: Path | str | None) -> dict[str, ServerSpec]:
    """Read and validate the specification file.

    Args:
        path: Location of the JSON file, or None when no file is configured

    Returns:
        Mapping of logical server name to ServerSpec. Empty if the file
        does not exist.

    Raises:
        ValidationError: If the file is not valid JSON or has an invalid entry
    """
    if path is None:
        return {}

    path = Path(path)
    if not path.exists():
        logger.info(f"No server specification at {path}")
        return {}

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Server specification {path} is not valid JSON: {e}")

    specs = parse_server_specification(data)
    logger.info(f"Loaded {len(specs)} server specifications from {path}")
    return specs
