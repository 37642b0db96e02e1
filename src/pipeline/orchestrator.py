# src/pipeline/orchestrator.py — v3
"""Pipeline orchestrator — plan, execute, gate, repair, report.

Drives one agent run over a render directory:
  Planning:   propose a plan (model or canonical fallback), validate it.
  Executing:  run each tool in validated order, one at a time.
  Evaluating: after trim, check the gate; on failure run bounded self-repair.
  Completing: optional alignment check, then report and manifest.

Every exit path (success, tool fault, repair exhaustion) appends to the run
log and writes run_report.json and artifacts.json before returning.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pydantic import ValidationError

from frameagent.config.settings import load_settings
from frameagent.config.tools import (
    NOVELTY_RERANK,
    RANK_ORDER,
    RANK_TRANSCRIPTS,
    SPEAKER_ANALYSIS,
    STEP_LABELS,
    TEMPORAL_EXPANSION,
    TRIM_TO_LENGTH,
)
from frameagent.core.models import (
    AgentProgress,
    AgentResult,
    EvalOutcome,
    RunMode,
    RunRequest,
    ValidatedPlan,
)
from frameagent.logging.context import clear_context, set_run_context, set_step_context
from frameagent.pipeline.evaluator import Evaluator
from frameagent.pipeline.plan_validator import PlanValidator
from frameagent.pipeline.planner import PlanProposer
from frameagent.pipeline.repair import (
    ProgressCallback,
    SelfRepair,
    execute_recorded,
    notify_progress,
)
from frameagent.storage import layout
from frameagent.storage.models import ArtifactRecord, Objectives, RunReport, StepRecord
from frameagent.storage.run_memory import RunMemory

if TYPE_CHECKING:
    from pathlib import Path

    from frameagent.config.settings import Settings
    from frameagent.pipeline.registry import ToolRegistry

logger = logging.getLogger(__name__)

# tool -> (artifact kind, path resolver) for stages with a fixed output file
_STAGE_ARTIFACTS = {
    SPEAKER_ANALYSIS: ("speaker_meta", layout.speaker_meta_path),
    RANK_TRANSCRIPTS: ("ranked_srt", layout.ranked_srt_path),
    RANK_ORDER: ("ordered_srt", layout.ordered_srt_path),
    NOVELTY_RERANK: ("novelty_srt", layout.novelty_srt_path),
    TEMPORAL_EXPANSION: ("expanded_srt", layout.expanded_srt_path),
}


def generate_run_id(timestamp: datetime | None = None) -> str:
    """Generate a run_id: yyyymmdd_hhmmss_{uuid4_short}."""
    ts = timestamp or datetime.now(timezone.utc)
    short_uuid = uuid.uuid4().hex[:5]
    return f"{ts.strftime('%Y%m%d_%H%M%S')}_{short_uuid}"


@dataclass
class _RunState:
    """Mutable bookkeeping for one run; frozen into a RunReport at the end."""

    run_id: str
    started_at: datetime
    t0: float
    plan: ValidatedPlan | None = None
    start_step_id: str | None = None
    steps: list[StepRecord] = field(default_factory=list)
    artifacts: list[ArtifactRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    alignment: EvalOutcome | None = None

    def add_artifact(self, kind: str, path: Path) -> None:
        record = ArtifactRecord(kind=kind, path=str(path))
        if record not in self.artifacts:
            self.artifacts.append(record)


class PipelineOrchestrator:
    """Run the agent loop for one request at a time.

    Args:
        registry: Tools keyed by name; must cover every planned tool.
        planner: Plan proposer (defaults to the canonical-plan-only proposer).
        validator: Plan validator.
        evaluator: Artifact, gate and alignment checks.
        settings: Application settings (repair tuning, evaluation extensions).
    """

    def __init__(
        self,
        registry: ToolRegistry,
        planner: PlanProposer | None = None,
        validator: PlanValidator | None = None,
        evaluator: Evaluator | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._registry = registry
        self._planner = planner or PlanProposer(max_tokens=self._settings.llm_max_tokens)
        self._validator = validator or PlanValidator()
        self._evaluator = evaluator or Evaluator(
            min_coverage=self._settings.alignment_min_coverage,
            min_model_score=self._settings.alignment_min_model_score,
        )

    async def run(
        self,
        request: RunRequest,
        on_progress: ProgressCallback | None = None,
        memory: RunMemory | None = None,
    ) -> AgentResult:
        """Execute a full agent run.

        Args:
            request: Run input; its tunable fields are restored after repair.
            on_progress: Optional synchronous progress callback.
            memory: Run memory; one is opened on the render directory if omitted.

        Returns:
            AgentResult with the output path on success, errors otherwise.
        """
        memory = memory or RunMemory(request.render_directory)
        state = _RunState(
            run_id=generate_run_id(),
            started_at=datetime.now(timezone.utc),
            t0=time.monotonic(),
        )
        set_run_context(request.project_name, state.run_id)
        try:
            return await self._run(request, state, memory, on_progress)
        finally:
            clear_context()

    async def plan(self, request: RunRequest) -> ValidatedPlan:
        """Propose and validate a plan without executing it."""
        proposed = await self._planner.propose(request)
        return self._validator.validate(proposed)

    # --- run phases ---

    async def _run(
        self,
        request: RunRequest,
        state: _RunState,
        memory: RunMemory,
        on_progress: ProgressCallback | None,
    ) -> AgentResult:
        logger.info(
            "Agent run %s started: project=%s mode=%s",
            state.run_id, request.project_name, request.run_mode.value,
        )
        settings_file = memory.save_json(layout.STORY_SETTINGS_FILE, request.brief)
        state.add_artifact("story_settings", settings_file)
        memory.emit(
            "run_start", message="Starting agent run",
            data={"run_id": state.run_id, "project": request.project_name,
                  "mode": request.run_mode.value},
        )

        # Planning
        memory.emit("plan_start", message="Planning steps")
        plan = await self.plan(request)
        state.plan = plan
        plan_file = memory.save_json(layout.PLAN_FILE, plan)
        state.add_artifact("plan", plan_file)
        if plan.was_repaired:
            memory.emit(
                "plan_repaired", level="warning",
                message=f"Plan repaired ({len(plan.messages)} changes)",
                data={"messages": plan.messages},
            )
        if plan.errors:
            memory.emit(
                "plan_fallback", level="warning",
                message="Plan fell back to canonical order",
                data={"errors": plan.errors},
            )
        memory.emit(
            "plan_ready", message="Plan prepared",
            data={"steps": [s.id for s in plan.steps]},
        )

        start = self._start_index(request, plan, memory)
        state.start_step_id = plan.steps[start].id if plan.steps else None
        total = len(plan.steps)
        if start > 0:
            self._carry_forward(request, plan, start, state, memory)

        # Executing
        for i in range(start, total):
            step = plan.steps[i]
            step_index = i + 1
            label, description = STEP_LABELS.get(step.tool, (step.tool, f"{step.tool}..."))
            ui_text = f"{label} ({step_index}/{total})"
            log_text = f"Step {step_index}/{total}: {description}"

            _notify(on_progress, step_index, total, ui_text, log_text)
            memory.emit("step_start", step=step_index, message=log_text,
                        data={"id": step.id, "tool": step.tool})

            record = await execute_recorded(self._registry, step.tool, step.id, request)
            state.steps.append(record)
            secs = record.duration_ms / 1000.0

            if not record.success:
                msg = f"Step '{step.id}' failed: {record.error}"
                memory.emit(
                    "step_error", step=step_index, level="error", message=msg,
                    data={"tool": step.tool, "duration_ms": record.duration_ms},
                )
                _notify(on_progress, step_index, total, f"{ui_text} ✗",
                        f"✗ {log_text} failed ({secs:.1f}s): {record.error}")
                state.errors.append(msg)
                return self._finish(request, state, memory, success=False)

            memory.emit(
                "step_complete", step=step_index, message=step.id,
                data={"tool": step.tool, "duration_ms": record.duration_ms},
            )
            _notify(on_progress, step_index, total, f"{ui_text} ✓",
                    f"✓ {log_text} ({secs:.1f}s)")

            if step.tool in _STAGE_ARTIFACTS:
                kind, resolver = _STAGE_ARTIFACTS[step.tool]
                state.add_artifact(kind, resolver(request.render_directory, request.project_name))

            if step.tool == TRIM_TO_LENGTH:
                if not await self._gate(request, state, memory, step_index, total, on_progress):
                    return self._finish(request, state, memory, success=False)
            elif self._settings.evaluate_all_steps:
                self._advisory_check(step.tool, request, memory, step_index)

        set_step_context(None)

        # Completing
        if self._settings.alignment_check_enabled:
            outcome = await self._evaluator.evaluate_alignment(request)
            state.alignment = outcome
            memory.emit(
                "alignment_check", level="info" if outcome.passed else "warning",
                message="Brief alignment passed" if outcome.passed else outcome.reason,
                data=outcome.model_dump(mode="json"),
            )

        state.add_artifact("render_output", request.output_video_path)
        memory.emit("run_complete", step=total, message=str(request.output_video_path))
        return self._finish(request, state, memory, success=True)

    async def _gate(
        self,
        request: RunRequest,
        state: _RunState,
        memory: RunMemory,
        step_index: int,
        total: int,
        on_progress: ProgressCallback | None,
    ) -> bool:
        """Check the trim gate, repairing if needed. Returns True to continue."""
        trim_file = layout.trim_srt_path(request.render_directory, request.project_name)
        outcome = self._evaluator.evaluate_gate(request)
        if outcome.passed:
            state.add_artifact("trim_srt", trim_file)
            return True

        reason = outcome.reason or "evaluation failed"
        emsg = f"Evaluation did not pass before render: {reason}"
        logger.warning("%s", emsg)
        memory.emit("evaluation_fail", step=step_index, level="warning", message=emsg,
                    data=outcome.metrics)

        repair = SelfRepair(
            registry=self._registry,
            evaluator=self._evaluator,
            memory=memory,
            expansion_step=self._settings.repair_expansion_step,
            expansion_cap=self._settings.repair_expansion_cap,
            minutes_factor=self._settings.repair_minutes_factor,
            on_progress=on_progress,
        )
        result = await repair.run(request, step_index, total)
        state.steps.extend(result.records)
        if result.success:
            state.add_artifact("trim_srt", trim_file)
            return True

        state.errors.append(emsg)
        state.errors.extend(result.reasons)
        return False

    def _advisory_check(
        self, tool: str, request: RunRequest, memory: RunMemory, step_index: int,
    ) -> None:
        outcome = self._evaluator.evaluate_step(tool, request)
        if not outcome.passed:
            logger.warning("Advisory check failed for %s: %s", tool, outcome.reason)
            memory.emit(
                "evaluation_warning", step=step_index, level="warning",
                message=outcome.reason, data=outcome.metrics,
            )

    def _start_index(self, request: RunRequest, plan: ValidatedPlan, memory: RunMemory) -> int:
        """Where execution begins in the validated plan."""
        if request.run_mode == RunMode.FULL:
            return 0

        if request.from_step_id:
            idx = plan.index_of(request.from_step_id)
            if idx < 0:
                logger.warning("Unknown step id %r, starting from the beginning",
                               request.from_step_id)
                return 0
            return idx

        if request.run_mode == RunMode.RESUME_FROM_STEP:
            logger.warning("resume_from_step without a step id, starting from the beginning")
            return 0

        return self._resume_point(request, plan, memory)

    def _resume_point(self, request: RunRequest, plan: ValidatedPlan, memory: RunMemory) -> int:
        """First step the previous run did not finish, judged by report and disk."""
        previous = _load_previous_report(memory)
        if previous is None:
            return 0
        done = previous.succeeded_step_ids()
        for i, step in enumerate(plan.steps):
            if step.id.lower() not in done:
                return i
            if not self._evaluator.evaluate_step(step.tool, request).passed:
                return i
        return 0

    def _carry_forward(
        self,
        request: RunRequest,
        plan: ValidatedPlan,
        start: int,
        state: _RunState,
        memory: RunMemory,
    ) -> None:
        """Log skipped steps and keep their earlier successful records.

        Only outputs of skipped steps with a successful earlier record enter
        the manifest; render_output is left to a successful finish.
        """
        previous = _load_previous_report(memory)
        earlier: dict[str, StepRecord] = {}
        if previous is not None:
            earlier = {s.id.lower(): s for s in previous.steps if s.success}
        rd, project = request.render_directory, request.project_name

        for i in range(start):
            step = plan.steps[i]
            memory.emit(
                "step_skipped", step=i + 1, message=step.id,
                data={"tool": step.tool},
            )
            record = earlier.get(step.id.lower())
            if record is None:
                continue
            state.steps.append(record)
            if step.tool in _STAGE_ARTIFACTS:
                kind, resolver = _STAGE_ARTIFACTS[step.tool]
                state.add_artifact(kind, resolver(rd, project))
            elif step.tool == TRIM_TO_LENGTH and self._evaluator.evaluate_gate(request).passed:
                state.add_artifact("trim_srt", layout.trim_srt_path(rd, project))

    def _finish(
        self, request: RunRequest, state: _RunState, memory: RunMemory, success: bool,
    ) -> AgentResult:
        """Persist report and manifest, then build the result."""
        if not success:
            memory.emit(
                "run_failed", level="error",
                message=state.errors[-1] if state.errors else "Run failed",
                data={"errors": state.errors},
            )

        report = RunReport(
            run_id=state.run_id,
            project=request.project_name,
            render_directory=str(request.render_directory),
            output_path=str(request.output_video_path),
            success=success,
            run_mode=request.run_mode.value,
            start_step_id=state.start_step_id,
            started_at=state.started_at,
            completed_at=datetime.now(timezone.utc),
            total_duration_ms=int((time.monotonic() - state.t0) * 1000),
            objectives=Objectives.from_request(request),
            plan_repaired=state.plan.was_repaired if state.plan else False,
            steps=state.steps,
            artifacts=state.artifacts,
            errors=state.errors,
            alignment=state.alignment,
        )
        report_file = memory.save_json(layout.RUN_REPORT_FILE, report)
        memory.save_json(layout.ARTIFACTS_FILE, state.artifacts)

        logger.info("Agent run %s finished: %s", state.run_id, report.summary())
        return AgentResult(
            success=success,
            output_path=request.output_video_path if success else None,
            errors=list(state.errors),
            report_path=report_file,
        )


def _load_previous_report(memory: RunMemory) -> RunReport | None:
    raw = memory.load_json(layout.RUN_REPORT_FILE)
    if raw is None:
        return None
    try:
        return RunReport.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Previous run report unusable: %s", exc)
        return None


def _notify(
    on_progress: ProgressCallback | None,
    step_index: int,
    total: int,
    ui_text: str,
    log_message: str,
) -> None:
    notify_progress(on_progress, AgentProgress(
        step_index=step_index, total_steps=total,
        ui_text=ui_text, log_message=log_message,
    ))
