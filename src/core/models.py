# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

Run inputs (RunRequest and its creative brief), plans, evaluation outcomes,
run events and progress notifications. Persisted report documents live in
storage.models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# === RUN INPUT ===


class GenerationTuning(BaseModel):
    """Sampling parameters forwarded to the generative text model."""

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, gt=0.0, le=1.0)
    repetition_penalty: float = Field(default=1.1, gt=0.0)
    seed: int | None = None


class CreativeBrief(BaseModel):
    """Creative direction plus the weights the ranking stages consume."""

    prompt: str = ""
    relevance: float = Field(default=100.0, ge=0.0, le=100.0)
    sentiment: float = Field(default=25.0, ge=0.0, le=100.0)
    novelty: float = Field(default=25.0, ge=0.0, le=100.0)
    energy: float = Field(default=25.0, ge=0.0, le=100.0)
    temporal_expansion: int = Field(default=2, ge=0)
    generation: GenerationTuning = Field(default_factory=GenerationTuning)


class RunMode(str, Enum):
    """Where a run starts in the validated plan."""

    FULL = "full"
    RESUME = "resume"
    RESUME_FROM_STEP = "resume_from_step"


class RunRequest(BaseModel):
    """Per-run input handed to every tool.

    ``brief.temporal_expansion`` and ``target_minutes`` are the only fields
    touched after construction, and only by self-repair, which restores them.
    """

    project_name: str = Field(min_length=1)
    project_root: Path
    render_directory: Path
    brief: CreativeBrief = Field(default_factory=CreativeBrief)
    target_minutes: int = Field(default=1, ge=1)
    run_mode: RunMode = RunMode.FULL
    from_step_id: str | None = None

    @property
    def output_video_path(self) -> Path:
        """Final rendered video location."""
        return self.render_directory / f"{self.project_name}.mp4"

    @property
    def target_seconds(self) -> int:
        return self.target_minutes * 60


# === PLAN ===


class PlanStep(BaseModel):
    """One named step of a plan."""

    id: str = ""
    tool: str = ""
    inputs: dict[str, Any] | None = None


class StepPlan(BaseModel):
    """Ordered list of steps, as proposed."""

    steps: list[PlanStep] = Field(default_factory=list)


class ValidatedPlan(BaseModel):
    """Plan that is safe to execute, with repair diagnostics."""

    steps: list[PlanStep] = Field(default_factory=list)
    messages: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    was_repaired: bool = False

    def index_of(self, step_id: str) -> int:
        """Position of the step with this id (case-insensitive), or -1."""
        wanted = step_id.strip().lower()
        for i, step in enumerate(self.steps):
            if step.id.lower() == wanted:
                return i
        return -1


# === EVALUATION ===


class EvalOutcome(BaseModel):
    """Result of an artifact or alignment check."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    reason: str | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)


# === RUN EVENTS ===


class RunEvent(BaseModel):
    """One immutable entry of the append-only run log."""

    model_config = ConfigDict(frozen=True)

    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    level: Literal["info", "warning", "error"] = "info"
    event: str
    step: int | None = None
    message: str | None = None
    data: dict[str, Any] | None = None


class AgentProgress(BaseModel):
    """Progress notification delivered to the synchronous callback."""

    step_index: int
    total_steps: int
    ui_text: str
    log_message: str


class AgentResult(BaseModel):
    """Outcome of one orchestrated run."""

    success: bool = False
    output_path: Path | None = None
    errors: list[str] = Field(default_factory=list)
    report_path: Path | None = None
