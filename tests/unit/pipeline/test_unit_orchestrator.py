# tests/unit/pipeline/test_unit_orchestrator.py — v3
"""Tests for pipeline/orchestrator.py — step loop, start index, persistence."""

from __future__ import annotations

import json
import re

import pytest

from frameagent.config.settings import Settings
from frameagent.core.models import RunMode
from frameagent.pipeline.orchestrator import PipelineOrchestrator, generate_run_id
from frameagent.pipeline.planner import PlanProposer
from frameagent.pipeline.registry import ToolRegistry
from frameagent.storage import layout
from frameagent.storage.run_memory import RunMemory


def _kinds(memory: RunMemory) -> list[str]:
    return [e.event for e in memory.read_events()]


def _report(render_dir) -> dict:
    return json.loads(layout.run_report_path(render_dir).read_text(encoding="utf-8"))


class TestGenerateRunId:
    def test_format(self):
        assert re.fullmatch(r"\d{8}_\d{6}_[0-9a-f]{5}", generate_run_id())

    def test_unique(self):
        assert generate_run_id() != generate_run_id()


class TestRunFlow:
    @pytest.mark.asyncio
    async def test_success_writes_documents(self, run_request, render_dir, stage_registry, settings):
        result = await PipelineOrchestrator(stage_registry, settings=settings).run(run_request)
        assert result.success
        assert result.output_path == render_dir / "demo.mp4"
        for name in ("plan.json", "run.jsonl", "run_report.json", "artifacts.json", "story_settings.json"):
            assert (render_dir / name).is_file()
        assert result.report_path == layout.run_report_path(render_dir)

    @pytest.mark.asyncio
    async def test_event_sequence(self, run_request, render_dir, stage_registry, settings):
        memory = RunMemory(render_dir)
        await PipelineOrchestrator(stage_registry, settings=settings).run(run_request, memory=memory)
        kinds = _kinds(memory)
        assert kinds[:3] == ["run_start", "plan_start", "plan_ready"]
        assert kinds.count("step_start") == 9
        assert kinds.count("step_complete") == 9
        assert kinds[-1] == "run_complete"

    @pytest.mark.asyncio
    async def test_progress_twice_per_step(self, run_request, stage_registry, settings):
        progress = []
        await PipelineOrchestrator(stage_registry, settings=settings).run(
            run_request, on_progress=progress.append,
        )
        assert len(progress) == 18
        assert progress[0].ui_text == "Analyzing (1/9)"
        assert progress[0].log_message == "Step 1/9: Analyzing takes..."
        assert progress[1].ui_text == "Analyzing (1/9) ✓"
        assert progress[-1].log_message.startswith("✓ Step 9/9: Rendering final video...")

    @pytest.mark.asyncio
    async def test_tools_run_in_canonical_order(self, run_request, stage_tools, settings):
        order: list[str] = []
        for tool in stage_tools.values():
            original = tool.execute

            async def _traced(request, _tool=tool, _orig=original):
                order.append(_tool.name)
                await _orig(request)

            tool.execute = _traced  # type: ignore[method-assign]
        await PipelineOrchestrator(ToolRegistry(stage_tools.values()), settings=settings).run(run_request)
        assert order == list(stage_tools)

    @pytest.mark.asyncio
    async def test_tool_fault_aborts(self, run_request, render_dir, stage_tools, make_stage_tool, settings):
        stage_tools["RankOrder"] = make_stage_tool("RankOrder", fail=RuntimeError("ranker died"))
        progress = []
        memory = RunMemory(render_dir)
        result = await PipelineOrchestrator(ToolRegistry(stage_tools.values()), settings=settings).run(
            run_request, on_progress=progress.append, memory=memory,
        )
        assert not result.success
        assert result.output_path is None
        assert result.errors == ["Step 'order' failed: ranker died"]
        assert "step_error" in _kinds(memory)
        assert _kinds(memory)[-1] == "run_failed"
        assert progress[-1].ui_text.endswith("✗")
        # later stages never ran
        assert stage_tools["RenderVideo"].calls == []
        report = _report(render_dir)
        assert report["success"] is False
        assert report["steps"][-1]["success"] is False
        assert report["steps"][-1]["error"] == "ranker died"
        assert (render_dir / "artifacts.json").is_file()

    @pytest.mark.asyncio
    async def test_missing_tool_is_step_failure(self, run_request, stage_tools, settings):
        del stage_tools["RenderVideo"]
        result = await PipelineOrchestrator(ToolRegistry(stage_tools.values()), settings=settings).run(run_request)
        assert not result.success
        assert "Tool not found" in result.errors[0]

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_abort(self, run_request, render_dir, stage_registry, settings):
        def _broken(progress):
            raise RuntimeError("ui gone")

        memory = RunMemory(render_dir)
        result = await PipelineOrchestrator(stage_registry, settings=settings).run(
            run_request, on_progress=_broken, memory=memory,
        )
        assert result.success
        assert _kinds(memory)[-1] == "run_complete"
        assert layout.run_report_path(render_dir).is_file()

    @pytest.mark.asyncio
    async def test_memory_created_when_omitted(self, run_request, render_dir, stage_registry, settings):
        await PipelineOrchestrator(stage_registry, settings=settings).run(run_request)
        assert layout.run_log_path(render_dir).stat().st_size > 0


class TestStartIndex:
    @pytest.mark.asyncio
    async def test_resume_from_step(self, run_request, render_dir, stage_tools, settings):
        run_request.run_mode = RunMode.RESUME_FROM_STEP
        run_request.from_step_id = "TRIM"
        memory = RunMemory(render_dir)
        result = await PipelineOrchestrator(ToolRegistry(stage_tools.values()), settings=settings).run(
            run_request, memory=memory,
        )
        assert result.success
        assert stage_tools["ProcessTakeLayer"].calls == []
        assert len(stage_tools["TrimToLength"].calls) == 1
        assert _kinds(memory).count("step_skipped") == 7
        assert _report(render_dir)["start_step_id"] == "trim"

    @pytest.mark.asyncio
    async def test_unknown_step_id_starts_at_zero(self, run_request, stage_tools, settings):
        run_request.run_mode = RunMode.RESUME_FROM_STEP
        run_request.from_step_id = "nope"
        await PipelineOrchestrator(ToolRegistry(stage_tools.values()), settings=settings).run(run_request)
        assert len(stage_tools["ProcessTakeLayer"].calls) == 1

    @pytest.mark.asyncio
    async def test_resume_after_failure(
        self, run_request, render_dir, stage_tools, make_stage_tool, settings,
    ):
        stage_tools["RenderVideo"] = make_stage_tool("RenderVideo", fail=RuntimeError("encoder"))
        first = await PipelineOrchestrator(ToolRegistry(stage_tools.values()), settings=settings).run(run_request)
        assert not first.success

        fixed = dict(stage_tools)
        fixed["RenderVideo"] = make_stage_tool("RenderVideo")
        run_request.run_mode = RunMode.RESUME
        second = await PipelineOrchestrator(ToolRegistry(fixed.values()), settings=settings).run(run_request)
        assert second.success
        assert len(stage_tools["ProcessTakeLayer"].calls) == 1
        assert len(fixed["RenderVideo"].calls) == 1
        report = _report(render_dir)
        assert report["start_step_id"] == "render"
        # earlier successes carried into the resumed report
        assert len([s for s in report["steps"] if s["success"]]) == 9

    @pytest.mark.asyncio
    async def test_failed_resume_keeps_manifest_to_skipped_outputs(
        self, run_request, render_dir, stage_tools, make_stage_tool, settings,
    ):
        first = await PipelineOrchestrator(ToolRegistry(stage_tools.values()), settings=settings).run(run_request)
        assert first.success

        broken = dict(stage_tools)
        broken["TrimToLength"] = make_stage_tool("TrimToLength", fail=RuntimeError("trimmer died"))
        run_request.run_mode = RunMode.RESUME_FROM_STEP
        run_request.from_step_id = "trim"
        second = await PipelineOrchestrator(ToolRegistry(broken.values()), settings=settings).run(run_request)

        assert not second.success
        kinds = {a["kind"] for a in json.loads(layout.artifacts_path(render_dir).read_text(encoding="utf-8"))}
        assert {"story_settings", "plan", "speaker_meta", "expanded_srt"} <= kinds
        assert "trim_srt" not in kinds
        assert "render_output" not in kinds

    @pytest.mark.asyncio
    async def test_resume_from_step_with_clashing_model_ids(
        self, run_request, render_dir, stage_tools, make_llm, settings,
    ):
        llm = make_llm('{"steps": [{"id": "trim", "tool": "TemporalExpansion"}]}')
        run_request.run_mode = RunMode.RESUME_FROM_STEP
        run_request.from_step_id = "trim"
        result = await PipelineOrchestrator(
            ToolRegistry(stage_tools.values()), planner=PlanProposer(llm=llm), settings=settings,
        ).run(run_request)

        assert result.success
        assert stage_tools["TemporalExpansion"].calls == []
        assert len(stage_tools["TrimToLength"].calls) == 1
        assert _report(render_dir)["start_step_id"] == "trim"

    @pytest.mark.asyncio
    async def test_resume_without_report_runs_everything(self, run_request, stage_tools, settings):
        run_request.run_mode = RunMode.RESUME
        await PipelineOrchestrator(ToolRegistry(stage_tools.values()), settings=settings).run(run_request)
        assert len(stage_tools["ProcessTakeLayer"].calls) == 1


class TestOptionalChecks:
    @pytest.mark.asyncio
    async def test_alignment_attached_to_report(self, run_request, render_dir, stage_registry):
        settings = Settings(_env_file=None, alignment_check_enabled=True)
        memory = RunMemory(render_dir)
        result = await PipelineOrchestrator(stage_registry, settings=settings).run(run_request, memory=memory)
        assert result.success
        assert "alignment_check" in _kinds(memory)
        assert _report(render_dir)["alignment"]["passed"] is True

    @pytest.mark.asyncio
    async def test_failed_alignment_is_advisory(self, run_request, stage_registry):
        run_request.brief.prompt = "underwater basket weaving championship"
        settings = Settings(_env_file=None, alignment_check_enabled=True)
        result = await PipelineOrchestrator(stage_registry, settings=settings).run(run_request)
        assert result.success

    @pytest.mark.asyncio
    async def test_evaluate_all_steps_warns_only(
        self, run_request, render_dir, stage_tools, make_stage_tool,
    ):
        # writes an empty ranked file every time
        stage_tools["RankTranscripts"] = make_stage_tool("RankTranscripts", succeed_on=99)
        settings = Settings(_env_file=None, evaluate_all_steps=True)
        memory = RunMemory(render_dir)
        result = await PipelineOrchestrator(ToolRegistry(stage_tools.values()), settings=settings).run(
            run_request, memory=memory,
        )
        assert result.success
        warnings = [e for e in memory.read_events() if e.event == "evaluation_warning"]
        assert len(warnings) == 1
        assert warnings[0].step == 3
