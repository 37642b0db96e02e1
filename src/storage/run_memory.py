# src/storage/run_memory.py — v1
"""Run memory: append-only event log plus keyed text artifacts.

Every event of a run goes to run.jsonl in the render directory, one JSON
object per line, in the order it was appended. The file is opened in append
mode for each write and never truncated. Appends are serialised by a lock so
that several callers can share one RunMemory.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from frameagent.core.models import RunEvent
from frameagent.storage import layout

logger = logging.getLogger(__name__)


class RunMemory:
    """Durable store for one render directory.

    Args:
        render_directory: Directory holding the log and all run documents.
            Created if missing.
    """

    def __init__(self, render_directory: Path | str) -> None:
        self._root = Path(render_directory)
        self._root.mkdir(parents=True, exist_ok=True)
        self._log_path = layout.run_log_path(self._root)
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def log_path(self) -> Path:
        return self._log_path

    def append(self, event: RunEvent) -> None:
        """Append one event to the run log."""
        line = event.model_dump_json(exclude_none=True)
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        logger.debug("Run event: %s (step=%s)", event.event, event.step)

    def emit(
        self,
        event: str,
        step: int | None = None,
        message: str | None = None,
        data: dict[str, Any] | None = None,
        level: str = "info",
    ) -> RunEvent:
        """Build a RunEvent and append it. Returns the appended event."""
        evt = RunEvent(
            event=event, step=step, message=message, data=data, level=level,  # type: ignore[arg-type]
        )
        self.append(evt)
        return evt

    def read_events(self) -> list[RunEvent]:
        """Read back every event in the log, oldest first."""
        if not self._log_path.exists():
            return []
        events: list[RunEvent] = []
        with self._log_path.open(encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    events.append(RunEvent.model_validate_json(line))
        return events

    def save_text(self, relative_path: str, content: str) -> Path:
        """Write a text document relative to the render directory."""
        full = self._root / relative_path
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(content, encoding="utf-8")
        return full

    def save_json(self, relative_path: str, payload: BaseModel | list[BaseModel]) -> Path:
        """Serialise a model (or list of models) as indented JSON."""
        if isinstance(payload, list):
            content = json.dumps(
                [item.model_dump(mode="json") for item in payload], indent=2,
            )
        else:
            content = payload.model_dump_json(indent=2)
        return self.save_text(relative_path, content)

    def load_json(self, relative_path: str) -> Any | None:
        """Load a JSON document, or None when it is missing or unreadable."""
        full = self._root / relative_path
        if not full.exists():
            return None
        try:
            return json.loads(full.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Cannot read %s: %s", full, exc)
            return None
