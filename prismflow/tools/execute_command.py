"""Built-in shell command tool used by skills."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import Field

from prismflow.tools.base import BaseTool, ToolParams

logger = logging.getLogger(__name__)

AUTO_APPROVED_COMMANDS = ("npx", "npm", "node", "git", "ls", "echo", "tsx")
BLOCKED_PATTERNS = ("rm -rf", "format", "mkfs")


class ExecuteCommandParams(ToolParams):
    command: str = Field(description="The full command line to execute")
    cwd: str | None = Field(default=None, description="Working directory for the command (optional)")


class CommandBlockedError(Exception):
    pass


class ExecuteCommandTool(BaseTool):
    """Runs a shell command and reports its output.

    Commands containing a blocked pattern are refused outright. A non-zero
    exit is reported in the result, not raised.
    """

    id = "execute_command"
    name = "execute_command"
    description = (
        "Execute a system command line. Use this tool to run the scripts or "
        "commands defined in a skill."
    )
    params_model = ExecuteCommandParams

    def __init__(self, timeout: float | None = 300.0) -> None:
        self._timeout = timeout

    async def execute(self, command: str, cwd: str | None = None, **kwargs: Any) -> dict[str, Any]:
        if is_blocked(command):
            msg = f"Command blocked for safety: {command}"
            raise CommandBlockedError(msg)

        base_cmd = command.split(" ", 1)[0]
        if base_cmd in AUTO_APPROVED_COMMANDS:
            logger.info("Running command: %s", command)
        else:
            logger.warning("Running command outside the approved list: %s", command)

        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error("Command timed out after %ss: %s", self._timeout, command)
            return {"stdout": "", "stderr": f"Command timed out after {self._timeout}s", "code": -1}

        code = proc.returncode or 0
        if code != 0:
            logger.error("Command failed (exit %d): %s", code, command)
        return {
            "stdout": stdout.decode(errors="replace"),
            "stderr": stderr.decode(errors="replace"),
            "code": code,
        }


def is_blocked(command: str) -> bool:
    lowered = command.lower()
    return any(pattern in lowered for pattern in BLOCKED_PATTERNS)
