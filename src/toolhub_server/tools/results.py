"""Helpers for the uniform tool result shape.

Every tool result exposed to callers has the MCP content-block shape
``{"content": [{"type": "text", "text": "..."}], "isError": bool}``.
"""

import json
from typing import Any


def text_block(text: str) -> dict[str, str]:
    return {"type": "text", "text": text}


def text_result(text: str, is_error: bool = False) -> dict[str, Any]:
    """Build a single-text-block result."""
    result: dict[str, Any] = {"content": [text_block(text)]}
    if is_error:
        result["isError"] = True
    return result


def normalize_tool_result(raw: Any) -> dict[str, Any]:
    """Coerce whatever a handler or external server returned into content blocks.

    Args:
        raw: A content-block result, a plain string, or any JSON-serializable value

    Returns:
        A dict with a ``content`` list of blocks and an optional ``isError`` flag
    """
    if isinstance(raw, dict) and isinstance(raw.get("content"), list):
        blocks = []
        for block in raw["content"]:
            if isinstance(block, dict) and "type" in block:
                blocks.append(block)
            else:
                blocks.append(text_block(_stringify(block)))
        result: dict[str, Any] = {"content": blocks}
        if raw.get("isError"):
            result["isError"] = True
        return result

    if raw is None:
        return {"content": []}

    return {"content": [text_block(_stringify(raw))]}


def result_to_text(raw: Any) -> str:
    """Flatten a tool result into plain text.

    Text blocks are joined with newlines. Non-text blocks are rendered as JSON.
    """
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict) and isinstance(raw.get("content"), list):
        parts = []
        for block in raw["content"]:
            if isinstance(block, dict) and "text" in block:
                parts.append(str(block.get("text") or ""))
            else:
                parts.append(_stringify(block))
        return "\n".join(parts)
    return _stringify(raw)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)
