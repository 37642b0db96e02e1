# src/pipeline/repair.py — v2
"""Bounded self-repair after the trim gate fails.

Three attempts, strictly in order, stopping at the first that passes the gate:
  1. Re-run trim.
  2. Raise temporal expansion, re-run expansion then trim.
  3. Shorten the target duration, re-run trim.

The tunable request fields are only changed inside ``overridden()``, which
puts them back on exit whatever happened in between.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from frameagent.config.tools import TEMPORAL_EXPANSION, TRIM_TO_LENGTH
from frameagent.core.models import AgentProgress, RunRequest
from frameagent.logging.context import set_step_context
from frameagent.storage.models import StepRecord

if TYPE_CHECKING:
    from frameagent.pipeline.evaluator import Evaluator
    from frameagent.pipeline.registry import ToolRegistry
    from frameagent.storage.run_memory import RunMemory

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AgentProgress], None]

MAX_ATTEMPTS = 3


def notify_progress(on_progress: ProgressCallback | None, progress: AgentProgress) -> None:
    """Deliver a progress notification. A failing callback is logged, not raised."""
    if on_progress is None:
        return
    try:
        on_progress(progress)
    except Exception as exc:
        logger.warning("Progress callback failed: %s", exc, exc_info=True)


@contextmanager
def overridden(
    request: RunRequest,
    *,
    temporal_expansion: int | None = None,
    target_minutes: int | None = None,
) -> Iterator[RunRequest]:
    """Temporarily change the tunable fields of a request."""
    saved_expansion = request.brief.temporal_expansion
    saved_minutes = request.target_minutes
    try:
        if temporal_expansion is not None:
            request.brief.temporal_expansion = temporal_expansion
        if target_minutes is not None:
            request.target_minutes = target_minutes
        yield request
    finally:
        request.brief.temporal_expansion = saved_expansion
        request.target_minutes = saved_minutes


async def execute_recorded(
    registry: ToolRegistry,
    tool_name: str,
    step_id: str,
    request: RunRequest,
    attempt: int | None = None,
) -> StepRecord:
    """Resolve and execute one tool, returning its timing record.

    Any fault raised by lookup or execution is captured on the record
    (``success=False``) rather than propagated.
    """
    set_step_context(tool_name, step_id)
    started_at = datetime.now(timezone.utc)
    t0 = time.monotonic()
    error: str | None = None
    try:
        tool = registry.get_or_raise(tool_name)
        await tool.execute(request)
    except Exception as exc:
        error = str(exc) or type(exc).__name__
        logger.error("Tool %s failed (step=%s): %s", tool_name, step_id, error)
    duration_ms = int((time.monotonic() - t0) * 1000)
    return StepRecord(
        id=step_id,
        tool=tool_name,
        started_at=started_at,
        completed_at=datetime.now(timezone.utc),
        duration_ms=duration_ms,
        success=error is None,
        error=error,
        attempt=attempt,
    )


@dataclass
class RepairResult:
    """What self-repair did and whether the gate finally passed."""

    success: bool = False
    attempts: int = 0
    records: list[StepRecord] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)


class SelfRepair:
    """Run the bounded repair strategies against the trim gate.

    Args:
        registry: Tools to re-invoke.
        evaluator: Provides the trim gate.
        memory: Run log receiving replan_* events.
        expansion_step: Temporal expansion increase for attempt 2.
        expansion_cap: Upper bound for the increased expansion.
        minutes_factor: Target duration multiplier for attempt 3.
        on_progress: Optional progress callback.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        evaluator: Evaluator,
        memory: RunMemory,
        expansion_step: int = 2,
        expansion_cap: int = 30,
        minutes_factor: float = 0.9,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._registry = registry
        self._evaluator = evaluator
        self._memory = memory
        self._expansion_step = expansion_step
        self._expansion_cap = expansion_cap
        self._minutes_factor = minutes_factor
        self._on_progress = on_progress

    async def run(self, request: RunRequest, step_index: int, total_steps: int) -> RepairResult:
        """Try each strategy in turn; stop at the first gate pass."""
        result = RepairResult()
        strategies = (
            (1, "retry_trim", self._retry_trim),
            (2, "increase_expansion", self._increase_expansion),
            (3, "reduce_length", self._reduce_length),
        )

        for attempt, strategy, handler in strategies:
            ran = await handler(request, step_index, total_steps, attempt, strategy, result)
            if not ran:
                continue
            result.attempts += 1
            outcome = self._evaluator.evaluate_gate(request)
            # The attempt's last invocation is always trim.
            passed = outcome.passed and result.records[-1].success
            self._notify(step_index, total_steps, attempt, strategy, passed)
            if passed:
                self._memory.emit(
                    "replan_success", step=step_index,
                    message=f"Repair attempt {attempt} ({strategy}) succeeded",
                    data={"attempt": attempt, "strategy": strategy},
                )
                logger.info("Self-repair succeeded on attempt %d (%s)", attempt, strategy)
                result.success = True
                return result
            reason = outcome.reason if not outcome.passed else "tool failure during repair"
            result.reasons.append(f"attempt {attempt} ({strategy}): {reason}")

        self._memory.emit(
            "replan_fail", step=step_index, level="error",
            message="All repair attempts failed",
            data={"attempts": result.attempts, "reasons": result.reasons},
        )
        logger.error("Self-repair exhausted after %d attempts", result.attempts)
        return result

    # --- strategies; each returns False when it did not run ---

    async def _retry_trim(
        self,
        request: RunRequest,
        step_index: int,
        total_steps: int,
        attempt: int,
        strategy: str,
        result: RepairResult,
    ) -> bool:
        self._start(step_index, total_steps, attempt, strategy, "Retry trim")
        result.records.append(
            await execute_recorded(self._registry, TRIM_TO_LENGTH, "trim_retry_1", request, attempt)
        )
        return True

    async def _increase_expansion(
        self,
        request: RunRequest,
        step_index: int,
        total_steps: int,
        attempt: int,
        strategy: str,
        result: RepairResult,
    ) -> bool:
        original = request.brief.temporal_expansion
        increased = min(original + self._expansion_step, self._expansion_cap)
        self._start(
            step_index, total_steps, attempt, strategy,
            f"Increase temporal expansion {original}->{increased}",
        )
        self._memory.emit(
            "replan_adjust", step=step_index,
            message=f"Increase temporal_expansion {original}->{increased}",
            data={"attempt": attempt, "field": "temporal_expansion", "from": original, "to": increased},
        )
        with overridden(request, temporal_expansion=increased):
            result.records.append(
                await execute_recorded(
                    self._registry, TEMPORAL_EXPANSION, "expand_retry_2", request, attempt
                )
            )
            # Trim runs even when expansion failed; the gate decides.
            result.records.append(
                await execute_recorded(self._registry, TRIM_TO_LENGTH, "trim_retry_2", request, attempt)
            )
        return True

    async def _reduce_length(
        self,
        request: RunRequest,
        step_index: int,
        total_steps: int,
        attempt: int,
        strategy: str,
        result: RepairResult,
    ) -> bool:
        original = request.target_minutes
        reduced = max(1, math.floor(original * self._minutes_factor))
        if reduced == original:
            logger.info("Skipping repair attempt %d: target of %d min cannot be reduced", attempt, original)
            self._memory.emit(
                "replan_adjust", step=step_index, level="warning",
                message=f"Skipped length reduction: target_minutes already {original}",
                data={"attempt": attempt, "skipped": True},
            )
            return False

        self._start(
            step_index, total_steps, attempt, strategy,
            f"Reduce target minutes {original}->{reduced}",
        )
        self._memory.emit(
            "replan_adjust", step=step_index,
            message=f"Reduce target_minutes {original}->{reduced}",
            data={"attempt": attempt, "field": "target_minutes", "from": original, "to": reduced},
        )
        with overridden(request, target_minutes=reduced):
            result.records.append(
                await execute_recorded(self._registry, TRIM_TO_LENGTH, "trim_retry_3", request, attempt)
            )
        return True

    # --- notifications ---

    def _start(self, step_index: int, total_steps: int, attempt: int, strategy: str, message: str) -> None:
        self._memory.emit(
            "replan_start", step=step_index, message=message,
            data={"attempt": attempt, "strategy": strategy},
        )
        logger.info("Self-repair attempt %d/%d: %s", attempt, MAX_ATTEMPTS, message)
        notify_progress(self._on_progress, AgentProgress(
            step_index=step_index,
            total_steps=total_steps,
            ui_text=f"Repairing ({attempt}/{MAX_ATTEMPTS})",
            log_message=f"Repair attempt {attempt}/{MAX_ATTEMPTS}: {message}",
        ))

    def _notify(self, step_index: int, total_steps: int, attempt: int, strategy: str, passed: bool) -> None:
        mark = "✓" if passed else "✗"
        notify_progress(self._on_progress, AgentProgress(
            step_index=step_index,
            total_steps=total_steps,
            ui_text=f"Repairing ({attempt}/{MAX_ATTEMPTS}) {mark}",
            log_message=f"{mark} Repair attempt {attempt}/{MAX_ATTEMPTS} ({strategy})",
        ))
