# src/pipeline/prompts.py — v1
"""Prompt text for the generative model: plan proposal and alignment scoring."""

from __future__ import annotations

PLANNER_SYSTEM = (
    "You are a planning agent. Output pure JSON only. "
    'Schema: {"steps":[{"id":string,"tool":string,"inputs":object}]}'
)

SCORE_ONLY_SYSTEM = (
    "You are a scoring assistant. You MUST respond with ONLY a number between "
    "0 and 100. No other text, no explanations, just the number."
)


def plan_request(target_minutes: int, tools: list[str]) -> str:
    return (
        f"Create a plan to generate a {target_minutes} minute video. "
        f"Use tools from this whitelist: {','.join(tools)}. "
        f"Include the {len(tools)} canonical steps in order. "
        "Keep inputs minimal; reference UI-provided values implicitly."
    )


def alignment_request(brief: str, script: str) -> str:
    return (
        "Score from 0 to 100 how well this edited video script delivers the "
        f"creative brief. Brief: '{brief}'. Script: '{script}'"
    )
