"""External command hooks."""

import asyncio
import json
from typing import Any


class HookError(Exception):
    """Raised when a hook command fails."""


async def execute_hook(command: str, data: dict[str, Any]) -> None:
    """Run *command* through the shell with *data* as JSON on stdin.

    Raises:
        HookError: If the command exits non-zero or cannot be started.
    """
    payload = json.dumps(data, ensure_ascii=False).encode("utf-8")
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.PIPE,
        )
        await process.communicate(payload)
    except OSError as e:
        raise HookError(f"Hook command could not be started: {e}") from e

    if process.returncode != 0:
        raise HookError(f"Hook command failed with exit code {process.returncode}")
