# src/storage/models.py — v2
"""Storage domain models: StepRecord, ArtifactRecord, Objectives, RunReport.

Written once at the end of a run (success or terminal failure) to
run_report.json; the artifact list is also written alone to artifacts.json.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from frameagent.core.models import EvalOutcome, GenerationTuning, RunRequest


class StepRecord(BaseModel):
    """Execution record for a single tool invocation."""

    id: str
    tool: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    success: bool
    error: str | None = None
    attempt: int | None = None


class ArtifactRecord(BaseModel):
    """A file the run is known to have produced."""

    kind: str
    path: str


class Objectives(BaseModel):
    """Snapshot of the creative objectives a run was asked to meet."""

    prompt: str
    target_minutes: int
    relevance: float
    sentiment: float
    novelty: float
    energy: float
    temporal_expansion: int
    genai: GenerationTuning

    @classmethod
    def from_request(cls, request: RunRequest) -> Objectives:
        brief = request.brief
        return cls(
            prompt=brief.prompt,
            target_minutes=request.target_minutes,
            relevance=brief.relevance,
            sentiment=brief.sentiment,
            novelty=brief.novelty,
            energy=brief.energy,
            temporal_expansion=brief.temporal_expansion,
            genai=brief.generation.model_copy(),
        )


class RunReport(BaseModel):
    """Full report for an agent run, written to run_report.json."""

    version: int = 1
    run_id: str
    project: str
    render_directory: str
    output_path: str
    success: bool
    run_mode: str
    start_step_id: str | None = None
    started_at: datetime
    completed_at: datetime
    total_duration_ms: int
    objectives: Objectives
    plan_repaired: bool = False
    steps: list[StepRecord] = Field(default_factory=list)
    artifacts: list[ArtifactRecord] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    alignment: EvalOutcome | None = None

    def succeeded_step_ids(self) -> set[str]:
        """Lower-cased ids of steps that completed successfully."""
        return {s.id.lower() for s in self.steps if s.success}

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "success": self.success,
            "steps": len(self.steps),
            "failed_steps": sum(1 for s in self.steps if not s.success),
            "artifacts": len(self.artifacts),
        }
