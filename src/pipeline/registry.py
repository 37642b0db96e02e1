# src/pipeline/registry.py — v2
"""Tool registry: name-keyed lookup of pipeline stage implementations.

Tools are registered directly or built from a configuration mapping
(tool name -> dotted class path or command template). Lookup is
case-insensitive.
"""

from __future__ import annotations

import importlib
import json
import logging
from pathlib import Path
from typing import Any, Iterable

from frameagent.pipeline.tools.base_tool import BaseTool
from frameagent.pipeline.tools.command_tool import CommandTool

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Raised when tool loading or lookup fails."""


class ToolNotFoundError(RegistryError, KeyError):
    """Raised when no tool is registered under a name."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Tool not found"


class ToolRegistry:
    """Registry of all available pipeline tools."""

    def __init__(self, tools: Iterable[BaseTool] | None = None) -> None:
        self._tools: dict[str, BaseTool] = {}
        for tool in tools or ():
            self.register(tool)

    @property
    def tools(self) -> dict[str, BaseTool]:
        """Return mapping of tool name -> tool instance."""
        return {tool.name: tool for tool in self._tools.values()}

    @property
    def names(self) -> list[str]:
        """Return sorted list of registered tool names."""
        return sorted(tool.name for tool in self._tools.values())

    def register(self, tool: BaseTool) -> None:
        """Register a tool instance, replacing any tool with the same name."""
        key = tool.name.lower()
        if key in self._tools:
            logger.warning("Overwriting existing tool: %s", tool.name)
        self._tools[key] = tool

    def get(self, name: str) -> BaseTool | None:
        """Get tool by name, or None if not registered."""
        return self._tools.get(name.lower())

    def get_or_raise(self, name: str) -> BaseTool:
        """Get tool by name, raise if not found."""
        tool = self._tools.get(name.lower())
        if tool is None:
            raise ToolNotFoundError(f"Tool not found: {name}")
        return tool

    def missing(self, required: Iterable[str]) -> list[str]:
        """Names from `required` that have no registered tool."""
        return [name for name in required if name.lower() not in self._tools]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def load_from_config(
        self,
        config: dict[str, dict[str, Any]],
        default_timeout_s: float | None = None,
    ) -> None:
        """Register tools described by a configuration mapping.

        Each entry is either ``{"class": "pkg.module.ToolClass"}`` or
        ``{"command": [...argv template...], "timeout": seconds}``.

        Raises:
            RegistryError: If an entry is malformed or cannot be imported.
        """
        for name, entry in config.items():
            if not isinstance(entry, dict):
                raise RegistryError(f"Tool '{name}': entry must be an object")
            if "class" in entry:
                tool = _import_tool(entry["class"])
                if tool.name.lower() != name.lower():
                    raise RegistryError(
                        f"Tool '{name}': class {entry['class']} reports name '{tool.name}'"
                    )
            elif "command" in entry:
                argv = entry["command"]
                if not isinstance(argv, list) or not all(isinstance(a, str) for a in argv):
                    raise RegistryError(f"Tool '{name}': command must be a list of strings")
                tool = CommandTool(
                    name=name,
                    argv=argv,
                    timeout_s=entry.get("timeout", default_timeout_s),
                    cwd=entry.get("cwd"),
                )
            else:
                raise RegistryError(f"Tool '{name}': expected 'class' or 'command'")
            self.register(tool)
            logger.debug("Loaded tool: %s (%s)", name, type(tool).__name__)

        logger.info("Registry loaded %d tools", len(self._tools))

    @classmethod
    def from_file(cls, path: Path, default_timeout_s: float | None = None) -> ToolRegistry:
        """Build a registry from a JSON tool configuration file."""
        try:
            config = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RegistryError(f"Cannot read tool config {path}: {exc}") from exc
        if not isinstance(config, dict):
            raise RegistryError(f"Tool config {path} must be a JSON object")
        registry = cls()
        registry.load_from_config(config, default_timeout_s=default_timeout_s)
        return registry


def _import_tool(class_path: str) -> BaseTool:
    """Import and instantiate a tool from a dotted class path.

    Args:
        class_path: e.g. 'mystages.trim.TrimTool'

    Returns:
        Instantiated BaseTool subclass.
    """
    parts = class_path.rsplit(".", 1)
    if len(parts) != 2:
        raise RegistryError(f"Invalid class path: {class_path}")
    module_path, class_name = parts

    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise RegistryError(f"Cannot import module {module_path}: {exc}") from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise RegistryError(f"Class {class_name} not found in {module_path}")

    if not isinstance(cls, type) or not issubclass(cls, BaseTool):
        raise RegistryError(f"{class_path} is not a BaseTool subclass")

    return cls()
