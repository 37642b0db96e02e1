# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides stage tools that write the files a real stage would leave behind,
a registry of them, a sample run request on a temp render directory, and
mock generative model clients. No external processes or servers.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from frameagent.config.settings import Settings
from frameagent.config.tools import (
    CANONICAL_ORDER,
    NOVELTY_RERANK,
    PROCESS_TAKES,
    RANK_ORDER,
    RANK_TRANSCRIPTS,
    RENDER_VIDEO,
    SEQUENCE_DIALOGUE,
    SPEAKER_ANALYSIS,
    TEMPORAL_EXPANSION,
    TRIM_TO_LENGTH,
)
from frameagent.core.models import CreativeBrief, RunRequest
from frameagent.llm.base_client import BaseLLMClient
from frameagent.llm.models import LLMResponse
from frameagent.pipeline.registry import ToolRegistry
from frameagent.pipeline.tools.base_tool import BaseTool
from frameagent.storage import layout

TRIMMED_SCRIPT = """1
00:00:01,000 --> 00:00:04,000
The rocket launch sequence begins at dawn.

2
00:00:04,000 --> 00:00:08,500
[Source: take_003.mp4]
take_003.mp4
Relevance: 87
Engineers walk through each stage of the countdown.
"""


def stage_output_path(tool: str, request: RunRequest) -> Path:
    """File a stage is expected to produce."""
    rd, project = request.render_directory, request.project_name
    return {
        PROCESS_TAKES: rd / "take_001.srt",
        SPEAKER_ANALYSIS: layout.speaker_meta_path(rd, project),
        RANK_TRANSCRIPTS: layout.ranked_srt_path(rd, project),
        RANK_ORDER: layout.ordered_srt_path(rd, project),
        NOVELTY_RERANK: layout.novelty_srt_path(rd, project),
        SEQUENCE_DIALOGUE: layout.novelty_srt_path(rd, project),
        TEMPORAL_EXPANSION: layout.expanded_srt_path(rd, project),
        TRIM_TO_LENGTH: layout.trim_srt_path(rd, project),
        RENDER_VIDEO: request.output_video_path,
    }[tool]


class StageTool(BaseTool):
    """Fake stage: records each call and writes its expected output.

    Calls before ``succeed_on`` leave an empty output file; ``fail`` makes
    every call raise.
    """

    def __init__(self, name: str, succeed_on: int = 1, fail: Exception | None = None) -> None:
        self._name = name
        self._succeed_on = succeed_on
        self._fail = fail
        # (temporal_expansion, target_minutes) seen on each call
        self.calls: list[tuple[int, int]] = []

    @property
    def name(self) -> str:
        return self._name

    async def execute(self, request: RunRequest) -> None:
        self.calls.append((request.brief.temporal_expansion, request.target_minutes))
        if self._fail is not None:
            raise self._fail
        path = stage_output_path(self._name, request)
        path.parent.mkdir(parents=True, exist_ok=True)
        if len(self.calls) < self._succeed_on:
            path.write_text("", encoding="utf-8")
        elif self._name == TRIM_TO_LENGTH:
            path.write_text(TRIMMED_SCRIPT, encoding="utf-8")
        elif self._name == RENDER_VIDEO:
            path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
        else:
            path.write_text(f"{self._name} output\n", encoding="utf-8")


# === FIXTURES: Run input ===


@pytest.fixture
def render_dir(tmp_path: Path) -> Path:
    d = tmp_path / "render"
    d.mkdir()
    return d


@pytest.fixture
def run_request(tmp_path: Path, render_dir: Path) -> RunRequest:
    """Ten-minute run for project 'demo' on a temp render directory."""
    return RunRequest(
        project_name="demo",
        project_root=tmp_path,
        render_directory=render_dir,
        brief=CreativeBrief(prompt="explain the rocket launch sequence", temporal_expansion=2),
        target_minutes=10,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


# === FIXTURES: Tools ===


@pytest.fixture
def make_stage_tool() -> Callable[..., StageTool]:
    """Factory for fake stage tools."""
    return StageTool


@pytest.fixture
def stage_tools() -> dict[str, StageTool]:
    """One well-behaved fake tool per canonical stage."""
    return {name: StageTool(name) for name in CANONICAL_ORDER}


@pytest.fixture
def stage_registry(stage_tools: dict[str, StageTool]) -> ToolRegistry:
    return ToolRegistry(stage_tools.values())


# === FIXTURES: Mock LLM ===


@pytest.fixture
def make_llm() -> Callable[..., MagicMock]:
    """Factory for a mock BaseLLMClient.

    ``content`` is returned from complete(); ``error`` is raised instead.
    """

    def _make(content: str = "", error: Exception | None = None, loaded: bool = True) -> MagicMock:
        client = MagicMock(spec=BaseLLMClient)
        client.is_loaded = loaded
        client.provider_name = "mock"
        if error is not None:
            client.complete = AsyncMock(side_effect=error)
        else:
            client.complete = AsyncMock(
                return_value=LLMResponse(content=content, model="mock-model", provider="mock")
            )
        return client

    return _make
