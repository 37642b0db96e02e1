# tests/unit/pipeline/test_unit_repair.py — v1
"""Tests for pipeline/repair.py — bounded self-repair and field restoration."""

from __future__ import annotations

import pytest

from frameagent.pipeline.evaluator import Evaluator
from frameagent.pipeline.registry import ToolRegistry
from frameagent.pipeline.repair import SelfRepair, execute_recorded, overridden
from frameagent.storage.run_memory import RunMemory


def _events(memory: RunMemory, kind: str):
    return [e for e in memory.read_events() if e.event == kind]


class TestOverridden:
    def test_restores_on_exit(self, run_request):
        with overridden(run_request, temporal_expansion=9, target_minutes=3):
            assert run_request.brief.temporal_expansion == 9
            assert run_request.target_minutes == 3
        assert run_request.brief.temporal_expansion == 2
        assert run_request.target_minutes == 10

    def test_restores_on_exception(self, run_request):
        with pytest.raises(RuntimeError):
            with overridden(run_request, target_minutes=1):
                raise RuntimeError("boom")
        assert run_request.target_minutes == 10


class TestExecuteRecorded:
    @pytest.mark.asyncio
    async def test_success_record(self, run_request, stage_registry):
        rec = await execute_recorded(stage_registry, "TrimToLength", "trim", run_request)
        assert rec.success
        assert rec.error is None
        assert rec.duration_ms >= 0
        assert rec.completed_at >= rec.started_at

    @pytest.mark.asyncio
    async def test_fault_captured(self, run_request, make_stage_tool):
        reg = ToolRegistry([make_stage_tool("TrimToLength", fail=RuntimeError("disk full"))])
        rec = await execute_recorded(reg, "TrimToLength", "trim_retry_1", run_request, attempt=1)
        assert not rec.success
        assert rec.error == "disk full"
        assert rec.attempt == 1

    @pytest.mark.asyncio
    async def test_missing_tool_captured(self, run_request):
        rec = await execute_recorded(ToolRegistry(), "TrimToLength", "trim", run_request)
        assert not rec.success
        assert "Tool not found" in rec.error


class TestSelfRepair:
    def _repair(self, registry, render_dir, progress=None):
        memory = RunMemory(render_dir)
        repair = SelfRepair(registry, Evaluator(), memory, on_progress=progress)
        return repair, memory

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, run_request, render_dir, stage_registry):
        repair, memory = self._repair(stage_registry, render_dir)
        result = await repair.run(run_request, step_index=8, total_steps=9)
        assert result.success
        assert result.attempts == 1
        assert [r.id for r in result.records] == ["trim_retry_1"]
        assert len(_events(memory, "replan_start")) == 1
        assert len(_events(memory, "replan_success")) == 1

    @pytest.mark.asyncio
    async def test_third_attempt_succeeds_and_restores(
        self, run_request, render_dir, stage_tools, make_stage_tool,
    ):
        # calls 1 and 2 (attempts 1, 2) leave an empty file; call 3 writes it
        trim = make_stage_tool("TrimToLength", succeed_on=3)
        stage_tools["TrimToLength"] = trim
        registry = ToolRegistry(stage_tools.values())
        progress = []
        repair, memory = self._repair(registry, render_dir, progress.append)

        result = await repair.run(run_request, step_index=8, total_steps=9)

        assert result.success
        assert result.attempts == 3
        assert [r.id for r in result.records] == [
            "trim_retry_1", "expand_retry_2", "trim_retry_2", "trim_retry_3",
        ]
        starts = _events(memory, "replan_start")
        assert [e.data["attempt"] for e in starts] == [1, 2, 3]
        # expansion raised by 2 for attempt 2, minutes floored to 9 for attempt 3
        assert stage_tools["TemporalExpansion"].calls == [(4, 10)]
        assert trim.calls == [(2, 10), (4, 10), (2, 9)]
        assert run_request.brief.temporal_expansion == 2
        assert run_request.target_minutes == 10
        # start and end notification per attempt
        assert len(progress) == 6
        assert progress[-1].ui_text.endswith("✓")

    @pytest.mark.asyncio
    async def test_exhaustion(self, run_request, render_dir, stage_tools, make_stage_tool):
        stage_tools["TrimToLength"] = make_stage_tool("TrimToLength", succeed_on=99)
        repair, memory = self._repair(ToolRegistry(stage_tools.values()), render_dir)
        result = await repair.run(run_request, step_index=8, total_steps=9)
        assert not result.success
        assert result.attempts == 3
        assert len(result.reasons) == 3
        assert len(_events(memory, "replan_fail")) == 1
        assert run_request.brief.temporal_expansion == 2
        assert run_request.target_minutes == 10

    @pytest.mark.asyncio
    async def test_expansion_capped(self, run_request, render_dir, stage_tools, make_stage_tool):
        run_request.brief.temporal_expansion = 29
        stage_tools["TrimToLength"] = make_stage_tool("TrimToLength", succeed_on=2)
        repair, _ = self._repair(ToolRegistry(stage_tools.values()), render_dir)
        result = await repair.run(run_request, step_index=8, total_steps=9)
        assert result.success
        assert stage_tools["TemporalExpansion"].calls == [(30, 10)]
        assert run_request.brief.temporal_expansion == 29

    @pytest.mark.asyncio
    async def test_reduction_skipped_at_one_minute(
        self, run_request, render_dir, stage_tools, make_stage_tool,
    ):
        run_request.target_minutes = 1
        trim = make_stage_tool("TrimToLength", succeed_on=99)
        stage_tools["TrimToLength"] = trim
        repair, memory = self._repair(ToolRegistry(stage_tools.values()), render_dir)
        result = await repair.run(run_request, step_index=8, total_steps=9)
        assert not result.success
        assert result.attempts == 2
        assert len(trim.calls) == 2
        assert len(_events(memory, "replan_start")) == 2
        skipped = [e for e in _events(memory, "replan_adjust") if e.data.get("skipped")]
        assert len(skipped) == 1

    @pytest.mark.asyncio
    async def test_tool_fault_restores_fields(
        self, run_request, render_dir, stage_tools, make_stage_tool,
    ):
        stage_tools["TemporalExpansion"] = make_stage_tool(
            "TemporalExpansion", fail=RuntimeError("expand crashed"),
        )
        stage_tools["TrimToLength"] = make_stage_tool("TrimToLength", fail=RuntimeError("trim crashed"))
        repair, _ = self._repair(ToolRegistry(stage_tools.values()), render_dir)
        result = await repair.run(run_request, step_index=8, total_steps=9)
        assert not result.success
        assert all(not r.success for r in result.records)
        assert run_request.brief.temporal_expansion == 2
        assert run_request.target_minutes == 10

    @pytest.mark.asyncio
    async def test_trim_fault_with_stale_file_is_not_success(
        self, run_request, render_dir, stage_tools, make_stage_tool,
    ):
        (render_dir / "demo.trim.srt").write_text("stale", encoding="utf-8")
        stage_tools["TrimToLength"] = make_stage_tool("TrimToLength", fail=RuntimeError("crash"))
        repair, _ = self._repair(ToolRegistry(stage_tools.values()), render_dir)
        result = await repair.run(run_request, step_index=8, total_steps=9)
        assert not result.success
