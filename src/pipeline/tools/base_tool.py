# src/pipeline/tools/base_tool.py — v1
"""Standard tool interface for pipeline stages."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from frameagent.core.models import RunRequest


class ToolExecutionError(Exception):
    """Raised by a tool when its stage fails."""


class BaseTool(ABC):
    """Standard interface for all processing stages.

    A tool reads what it needs from the RunRequest and leaves its output on
    disk in the render directory. It returns nothing; failure is a raised
    exception.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool identifier as used in plans (e.g. 'TrimToLength')."""

    @abstractmethod
    async def execute(self, request: RunRequest) -> None:
        """Run the stage for this request."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
