# src/pipeline/tools/command_tool.py — v2
"""Tool that runs an external stage as a subprocess.

The argv template is formatted with request fields, e.g.::

    ["trim-stage", "--project", "{project_name}", "--seconds", "{target_seconds}",
     "--dir", "{render_directory}"]

A non-zero exit status (or a timeout) raises ToolExecutionError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from frameagent.pipeline.tools.base_tool import BaseTool, ToolExecutionError

if TYPE_CHECKING:
    from frameagent.core.models import RunRequest

logger = logging.getLogger(__name__)

_STDERR_TAIL_CHARS = 2000


def request_fields(request: RunRequest) -> dict[str, Any]:
    """Values available to argv templates."""
    brief = request.brief
    return {
        "project_name": request.project_name,
        "project_root": str(request.project_root),
        "render_directory": str(request.render_directory),
        "output_video_path": str(request.output_video_path),
        "target_minutes": request.target_minutes,
        "target_seconds": request.target_seconds,
        "temporal_expansion": brief.temporal_expansion,
        "relevance": brief.relevance,
        "sentiment": brief.sentiment,
        "novelty": brief.novelty,
        "energy": brief.energy,
        "prompt": brief.prompt,
    }


class CommandTool(BaseTool):
    """Run a command line for one pipeline stage.

    Args:
        name: Tool name the command implements.
        argv: Command template; each item is passed through str.format().
        timeout_s: Optional wall-clock limit for the process.
        cwd: Working directory; defaults to the request's project root.
    """

    def __init__(
        self,
        name: str,
        argv: list[str],
        timeout_s: float | None = None,
        cwd: str | None = None,
    ) -> None:
        if not argv:
            raise ValueError(f"Command for tool '{name}' is empty")
        self._name = name
        self._argv = list(argv)
        self._timeout_s = timeout_s
        self._cwd = cwd

    @property
    def name(self) -> str:
        return self._name

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    def build_command(self, request: RunRequest) -> list[str]:
        fields = request_fields(request)
        try:
            return [part.format(**fields) for part in self._argv]
        except (KeyError, IndexError, ValueError) as exc:
            raise ToolExecutionError(
                f"Tool '{self._name}': bad placeholder in command template: {exc}"
            ) from exc

    async def execute(self, request: RunRequest) -> None:
        cmd = self.build_command(request)
        cwd = self._cwd or str(request.project_root)
        logger.debug("Tool '%s' running: %s", self._name, cmd)

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            try:
                proc.kill()
            except ProcessLookupError:
                logger.debug("Tool '%s' exited before it could be killed", self._name)
            await proc.wait()
            raise ToolExecutionError(
                f"Tool '{self._name}' timed out after {self._timeout_s}s"
            ) from exc

        if proc.returncode != 0:
            tail = stderr.decode(errors="replace")[-_STDERR_TAIL_CHARS:].strip()
            raise ToolExecutionError(
                f"Tool '{self._name}' exited with status {proc.returncode}: {tail}"
            )
