"""Local filesystem tool set.

These tools are registered when an external filesystem server cannot be
started. Every path is resolved against a root directory and requests that
escape the root are denied.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any

from toolhub_server.tools.results import text_result
from toolhub_server.tools.types import ToolDefinition, ToolField

logger = logging.getLogger(__name__)

REQUIRED_FILESYSTEM_TOOLS = ("read_file", "list_directory")

DEFAULT_MAX_BYTES = 20000
DEFAULT_TAIL_LINES = 50

OUTSIDE_ROOT = "Path outside root denied"


def _within_root(root: Path, relative: str) -> Path | None:
    target = (root / relative).resolve()
    if target == root or target.is_relative_to(root):
        return target
    return None


def get_tool_definitions(root: Path | str) -> list[ToolDefinition]:
    """Entry point used when this module is loaded as an in-process tool server."""
    logger.info(f"Serving in-process filesystem tools rooted at {root}")
    return build_filesystem_tools(root)


def build_filesystem_tools(root: Path | str) -> list[ToolDefinition]:
    """Create the local filesystem tools confined to a root directory.

    Args:
        root: Directory that all tool paths are resolved against

    Returns:
        List of ToolDefinitions, including at least read_file and list_directory
    """
    root = Path(root).resolve()

    async def read_file(args: dict[str, Any]) -> dict[str, Any]:
        target = _within_root(root, args.get("path", ""))
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        max_bytes = int(args.get("maxBytes") or DEFAULT_MAX_BYTES)
        try:
            data = target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return text_result(f"read_file error: {e}", is_error=True)
        if len(data) > max_bytes:
            data = data[:max_bytes] + f"\n...TRUNCATED ({len(data)} bytes total)"
        return text_result(data)

    async def write_file(args: dict[str, Any]) -> dict[str, Any]:
        rel = args.get("path", "")
        target = _within_root(root, rel)
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            target.write_text(args.get("content", ""), encoding="utf-8")
        except OSError as e:
            return text_result(f"write_file error: {e}", is_error=True)
        return text_result(f"OK wrote {rel}")

    async def append_file(args: dict[str, Any]) -> dict[str, Any]:
        rel = args.get("path", "")
        target = _within_root(root, rel)
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            with open(target, "a", encoding="utf-8") as f:
                f.write(args.get("content", ""))
        except OSError as e:
            return text_result(f"append_file error: {e}", is_error=True)
        return text_result(f"OK appended {rel}")

    async def list_directory(args: dict[str, Any]) -> dict[str, Any]:
        target = _within_root(root, args.get("path") or ".")
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            items = sorted(entry.name for entry in target.iterdir())
        except OSError as e:
            return text_result(f"list_directory error: {e}", is_error=True)
        return text_result("\n".join(items) or "(empty)")

    async def create_directory(args: dict[str, Any]) -> dict[str, Any]:
        rel = args.get("path", "")
        target = _within_root(root, rel)
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return text_result(f"create_directory error: {e}", is_error=True)
        return text_result(f"OK created {rel}")

    async def delete_file(args: dict[str, Any]) -> dict[str, Any]:
        rel = args.get("path", "")
        target = _within_root(root, rel)
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            target.unlink()
        except OSError as e:
            return text_result(f"delete_file error: {e}", is_error=True)
        return text_result(f"OK deleted {rel}")

    async def move(args: dict[str, Any]) -> dict[str, Any]:
        source = _within_root(root, args.get("from", ""))
        destination = _within_root(root, args.get("to", ""))
        if source is None or destination is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            source.rename(destination)
        except OSError as e:
            return text_result(f"move error: {e}", is_error=True)
        return text_result(f"OK moved {args.get('from')} -> {args.get('to')}")

    async def copy(args: dict[str, Any]) -> dict[str, Any]:
        source = _within_root(root, args.get("from", ""))
        destination = _within_root(root, args.get("to", ""))
        if source is None or destination is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            shutil.copyfile(source, destination)
        except OSError as e:
            return text_result(f"copy error: {e}", is_error=True)
        return text_result(f"OK copied {args.get('from')} -> {args.get('to')}")

    async def search(args: dict[str, Any]) -> dict[str, Any]:
        target = _within_root(root, args.get("path") or ".")
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        pattern = args.get("pattern", "")
        hits = []
        try:
            for entry in sorted(target.iterdir()):
                if not entry.is_file():
                    continue
                try:
                    if pattern in entry.read_text(encoding="utf-8"):
                        hits.append(entry.name)
                except (OSError, UnicodeDecodeError):
                    continue
        except OSError as e:
            return text_result(f"search error: {e}", is_error=True)
        return text_result("\n".join(hits) if hits else "(no matches)")

    async def stat(args: dict[str, Any]) -> dict[str, Any]:
        target = _within_root(root, args.get("path", ""))
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            st = target.stat()
        except OSError as e:
            return text_result(f"stat error: {e}", is_error=True)
        info = {
            "size": st.st_size,
            "mtime": st.st_mtime,
            "isFile": target.is_file(),
            "isDir": target.is_dir(),
        }
        return text_result(json.dumps(info, indent=2))

    async def read_json(args: dict[str, Any]) -> dict[str, Any]:
        target = _within_root(root, args.get("path", ""))
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            parsed = json.loads(target.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            return text_result(f"read_json error: {e}", is_error=True)
        return text_result(json.dumps(parsed, indent=2, ensure_ascii=False))

    async def write_json(args: dict[str, Any]) -> dict[str, Any]:
        rel = args.get("path", "")
        target = _within_root(root, rel)
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        try:
            parsed = json.loads(args.get("json", ""))
            target.write_text(
                json.dumps(parsed, indent=2, ensure_ascii=False), encoding="utf-8"
            )
        except (OSError, ValueError) as e:
            return text_result(f"write_json error: {e}", is_error=True)
        return text_result(f"OK wrote JSON {rel}")

    async def tail_file(args: dict[str, Any]) -> dict[str, Any]:
        target = _within_root(root, args.get("path", ""))
        if target is None:
            return text_result(OUTSIDE_ROOT, is_error=True)
        lines = int(args.get("lines") or DEFAULT_TAIL_LINES)
        try:
            parts = target.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as e:
            return text_result(f"tail_file error: {e}", is_error=True)
        return text_result("\n".join(parts[-lines:]))

    path_field = ToolField(type="string", description="Path relative to the root")
    from_to = {
        "from": ToolField(type="string", description="Source path"),
        "to": ToolField(type="string", description="Destination path"),
    }

    return [
        ToolDefinition(
            name="read_file",
            description="Read text file contents (UTF-8)",
            input_schema={
                "path": path_field,
                "maxBytes": ToolField(
                    type="number",
                    required=False,
                    description="Truncate after this many bytes",
                ),
            },
            handler=read_file,
        ),
        ToolDefinition(
            name="write_file",
            description="Write (overwrite) text content to a file",
            input_schema={"path": path_field, "content": ToolField(type="string")},
            handler=write_file,
        ),
        ToolDefinition(
            name="append_file",
            description="Append text to a file (creates if missing)",
            input_schema={"path": path_field, "content": ToolField(type="string")},
            handler=append_file,
        ),
        ToolDefinition(
            name="list_directory",
            description="List files in a directory",
            input_schema={
                "path": ToolField(
                    type="string", required=False, description="Directory path"
                )
            },
            handler=list_directory,
        ),
        ToolDefinition(
            name="create_directory",
            description="Create a directory (recursive)",
            input_schema={"path": path_field},
            handler=create_directory,
        ),
        ToolDefinition(
            name="delete_file",
            description="Delete a file",
            input_schema={"path": path_field},
            handler=delete_file,
        ),
        ToolDefinition(
            name="move",
            description="Move or rename a file or directory",
            input_schema=dict(from_to),
            handler=move,
        ),
        ToolDefinition(
            name="copy",
            description="Copy a file",
            input_schema=dict(from_to),
            handler=copy,
        ),
        ToolDefinition(
            name="search",
            description="Search for a literal substring in files under a path (non-recursive)",
            input_schema={
                "path": ToolField(type="string", required=False),
                "pattern": ToolField(type="string"),
            },
            handler=search,
        ),
        ToolDefinition(
            name="stat",
            description="File stats (size, mtime, type)",
            input_schema={"path": path_field},
            handler=stat,
        ),
        ToolDefinition(
            name="read_json",
            description="Read and pretty-print a JSON file",
            input_schema={"path": path_field},
            handler=read_json,
        ),
        ToolDefinition(
            name="write_json",
            description="Write JSON (pretty) to a file",
            input_schema={
                "path": path_field,
                "json": ToolField(type="string", description="JSON string"),
            },
            handler=write_json,
        ),
        ToolDefinition(
            name="tail_file",
            description="Return last N lines of a file",
            input_schema={
                "path": path_field,
                "lines": ToolField(type="number", required=False),
            },
            handler=tail_file,
        ),
    ]
