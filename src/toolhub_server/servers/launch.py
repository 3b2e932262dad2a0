"""Launch planning and process management for external tool servers.

A launch plan is the ordered list of ways to start one server command:

1. ``primary``: the command as given, using ``.cmd`` shims on Windows
2. ``alternate``: the other shim form on Windows, or the PATH-resolved
   absolute path on POSIX
3. ``package-exec``: ``npm exec -- <package> <rest>``
4. ``direct-script``: ``node <script>``, where the script comes from the
   package's own package.json ``bin`` entry

Candidates are tried in order and the first one that starts a process wins.
"""

import asyncio
import json
import logging
import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path

from toolhub_server.errors import SpawnError
from toolhub_server.servers.types import SpawnAttempt

logger = logging.getLogger(__name__)

SHIMMED_COMMANDS = ("npx", "npm")
SCRIPT_FALLBACKS = ("index.js", "dist/index.js")
TERMINATE_TIMEOUT = 5.0


@dataclass
class LaunchCandidate:
    """One way to start a server. A candidate with an error is never spawned."""

    label: str
    command: str
    args: list[str] = field(default_factory=list)
    error: str | None = None


def is_windows() -> bool:
    return sys.platform == "win32"


def _base_command(command: str) -> str:
    name = Path(command).name.lower()
    return name[:-4] if name.endswith(".cmd") else name


def infer_package(command: str, args: list[str]) -> str | None:
    """Return the package an ``npx`` command runs: its first non-flag argument."""
    if _base_command(command) != "npx":
        return None
    for arg in args:
        if not arg.startswith("-"):
            return arg
    return None


def resolve_package_script(package: str, start_dir: Path | str | None = None) -> Path:
    """Find the executable script a node package declares.

    Searches ``node_modules/<package>/package.json`` from ``start_dir`` upward,
    takes its ``bin`` entry (string or mapping), and falls back to
    ``index.js`` and ``dist/index.js``.

    Raises:
        SpawnError: If no manifest or no existing script is found
    """
    start = Path(start_dir or os.getcwd()).resolve()
    manifest = None
    for directory in (start, *start.parents):
        candidate = directory / "node_modules" / package / "package.json"
        if candidate.is_file():
            manifest = candidate
            break

    if manifest is None:
        raise SpawnError(f"Resolution failed: {package}/package.json not found")

    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise SpawnError(f"Resolution failed: {e}")

    package_dir = manifest.parent
    candidates: list[Path] = []
    declared = data.get("bin") if isinstance(data, dict) else None
    if isinstance(declared, str):
        candidates.append(package_dir / declared)
    elif isinstance(declared, dict):
        candidates.extend(package_dir / str(path) for path in declared.values())
    candidates.extend(package_dir / fallback for fallback in SCRIPT_FALLBACKS)

    for script in candidates:
        if script.is_file():
            return script

    raise SpawnError("No viable bin script found")


def build_launch_plan(
    command: str,
    args: list[str],
    package: str | None = None,
    cwd: Path | str | None = None,
    windows: bool | None = None,
) -> list[LaunchCandidate]:
    """Build the ordered launch candidates for a server command.

    Args:
        command: Command from the server specification
        args: Arguments from the server specification
        package: Node package name for the package-exec and direct-script
                 forms. Inferred from ``npx`` commands when omitted.
        cwd: Directory to search for node_modules
        windows: Override platform detection

    Returns:
        Candidates in the order they should be tried
    """
    windows = is_windows() if windows is None else windows
    base = _base_command(command)
    plan: list[LaunchCandidate] = []

    primary = command
    if windows and command.lower() in SHIMMED_COMMANDS:
        primary = f"{command}.cmd"
    plan.append(LaunchCandidate("primary", primary, list(args)))

    if windows:
        if base in SHIMMED_COMMANDS:
            if primary.lower().endswith(".cmd"):
                alternate = primary[:-4]
            else:
                alternate = f"{primary}.cmd"
            plan.append(LaunchCandidate("alternate", alternate, list(args)))
    else:
        resolved = shutil.which(command)
        if resolved is None:
            plan.append(
                LaunchCandidate(
                    "alternate", command, list(args), error=f"{command} not found on PATH"
                )
            )
        elif resolved != command:
            plan.append(LaunchCandidate("alternate", resolved, list(args)))

    package = package or infer_package(command, args)
    if package:
        rest = list(args)
        if package in rest:
            rest = rest[rest.index(package) + 1 :]
        npm = "npm.cmd" if windows else "npm"
        plan.append(LaunchCandidate("package-exec", npm, ["exec", "--", package, *rest]))

        try:
            script = resolve_package_script(package, cwd)
        except SpawnError as e:
            plan.append(LaunchCandidate("direct-script", "node", [], error=str(e)))
        else:
            node = shutil.which("node") or "node"
            plan.append(LaunchCandidate("direct-script", node, [str(script), *rest]))

    return plan


async def launch_first(
    plan: list[LaunchCandidate],
    cwd: Path | str | None = None,
    env: dict[str, str] | None = None,
) -> tuple[asyncio.subprocess.Process | None, list[SpawnAttempt]]:
    """Try each candidate in order until one starts a process.

    Returns:
        The started process (or None) and a record of every attempt made
    """
    attempts: list[SpawnAttempt] = []
    merged_env = {**os.environ, **(env or {})}

    for candidate in plan:
        attempt = SpawnAttempt(
            label=candidate.label, command=candidate.command, args=list(candidate.args)
        )
        attempts.append(attempt)

        if candidate.error is not None:
            attempt.error = candidate.error
            continue

        try:
            process = await asyncio.create_subprocess_exec(
                candidate.command,
                *candidate.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=merged_env,
            )
        except OSError as e:
            attempt.error = str(e)
            logger.info(f"Launch attempt {candidate.label} ({candidate.command}) failed: {e}")
            continue

        attempt.ok = True
        logger.info(
            f"Launched {candidate.command} via {candidate.label} (pid {process.pid})"
        )
        return process, attempts

    return None, attempts


async def terminate_process(
    process: asyncio.subprocess.Process, timeout: float = TERMINATE_TIMEOUT
) -> int | None:
    """Terminate a process, escalating to kill if it does not exit in time."""
    if process.returncode is not None:
        return process.returncode

    try:
        process.terminate()
    except ProcessLookupError:
        return await process.wait()

    try:
        return await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} did not exit after terminate; killing")
        try:
            process.kill()
        except ProcessLookupError:
            pass
        return await process.wait()
