# src/pipeline/planner.py — v2
"""Plan proposer: ask the generative model for a step plan, or fall back.

The model is optional. Whenever it is missing, not loaded, fails, or returns
something that does not decode into a non-empty plan, the canonical
nine-step plan is returned instead. propose() never raises.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from frameagent.config.tools import (
    CANONICAL_ORDER,
    DEFAULT_STEP_IDS,
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
from frameagent.core.models import PlanStep, RunRequest, StepPlan
from frameagent.llm.models import Message
from frameagent.llm.retry import with_retry
from frameagent.pipeline import prompts

if TYPE_CHECKING:
    from frameagent.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

_EMPTY_PLAN = '{"steps":[]}'


class PlanProposer:
    """Produce an ordered list of named steps for a run.

    Args:
        llm: Optional generative model client.
        max_tokens: Completion budget for the plan request.
    """

    def __init__(self, llm: BaseLLMClient | None = None, max_tokens: int = 512) -> None:
        self._llm = llm
        self._max_tokens = max_tokens

    async def propose(self, request: RunRequest) -> StepPlan:
        """Propose a plan for the request; falls back to the canonical plan."""
        llm = self._llm
        if llm is None or not llm.is_loaded:
            logger.info("No generative model loaded, using canonical plan")
            return default_plan()

        tuning = request.brief.generation
        try:
            response = await with_retry(
                llm.complete,
                caller="planner",
                messages=[
                    Message(
                        role="user",
                        content=prompts.plan_request(request.target_minutes, CANONICAL_ORDER),
                    )
                ],
                system=prompts.PLANNER_SYSTEM,
                max_tokens=self._max_tokens,
                temperature=tuning.temperature,
                top_p=tuning.top_p,
                seed=tuning.seed,
                repetition_penalty=tuning.repetition_penalty,
            )
            plan = parse_plan(response.content)
        except Exception as exc:
            logger.warning("Plan proposal failed, using canonical plan: %s", exc)
            return default_plan()

        if not plan.steps:
            logger.info("Model returned an empty plan, using canonical plan")
            return default_plan()

        for step in plan.steps:
            if step.tool not in CANONICAL_ORDER:
                mapped = map_closest_tool(step.tool)
                logger.debug("Remapped tool %r -> %s", step.tool, mapped)
                step.tool = mapped

        logger.info("Model proposed %d steps", len(plan.steps))
        return plan


def default_plan() -> StepPlan:
    """The canonical nine-step plan (a fresh copy on every call)."""
    return StepPlan(
        steps=[PlanStep(id=DEFAULT_STEP_IDS[tool], tool=tool) for tool in CANONICAL_ORDER]
    )


def parse_plan(text: str) -> StepPlan:
    """Decode model output into a StepPlan.

    Raises:
        ValueError: If no JSON object can be decoded into a plan.
    """
    fragment = extract_first_json(text)
    try:
        data = json.loads(fragment)
        return StepPlan.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValueError(f"Unparseable plan: {exc}") from exc


def extract_first_json(text: str) -> str:
    """Return the first balanced {...} fragment of text.

    Braces inside JSON string literals are ignored. Returns an empty plan
    document when no balanced fragment exists.
    """
    start = text.find("{")
    while start >= 0:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next one.
        start = text.find("{", start + 1)
    return _EMPTY_PLAN


def map_closest_tool(tool: str) -> str:
    """Map an unknown tool name onto the whitelist by keyword."""
    t = tool.lower()
    if "take" in t:
        return PROCESS_TAKES
    if "speak" in t:
        return SPEAKER_ANALYSIS
    if "rank" in t and "trans" in t:
        return RANK_TRANSCRIPTS
    if "order" in t:
        return RANK_ORDER
    if "novel" in t:
        return NOVELTY_RERANK
    if "dialog" in t:
        return SEQUENCE_DIALOGUE
    if "expand" in t or "temporal" in t:
        return TEMPORAL_EXPANSION
    if "trim" in t:
        return TRIM_TO_LENGTH
    return RENDER_VIDEO
