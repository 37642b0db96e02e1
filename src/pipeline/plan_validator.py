# src/pipeline/plan_validator.py — v2
"""Plan validator: turn any proposed plan into one that is safe to execute.

Repairs, in order: whitelist filter, de-duplication by tool, insertion of
missing tools, unique step ids, stable topological sort over the precedence
graph, and the hard constraints on trim and render. Problems are recorded on
the result, never raised.
"""

from __future__ import annotations

import logging

import networkx as nx

from frameagent.config.tools import (
    CANONICAL_INDEX,
    CANONICAL_ORDER,
    DEFAULT_STEP_IDS,
    RENDER_VIDEO,
    TEMPORAL_EXPANSION,
    TRIM_TO_LENGTH,
    canonical_name,
)
from frameagent.core.models import PlanStep, StepPlan, ValidatedPlan

logger = logging.getLogger(__name__)


class PlanValidator:
    """Validate and repair step plans against the tool whitelist.

    Args:
        extra_precedence: Additional (before, after) tool pairs layered on
            top of the canonical chain.
    """

    def __init__(self, extra_precedence: list[tuple[str, str]] | None = None) -> None:
        self._extra_precedence = list(extra_precedence or [])

    def validate(self, plan: StepPlan) -> ValidatedPlan:
        messages: list[str] = []
        errors: list[str] = []

        steps = self._filter_whitelisted(plan.steps, messages)
        steps = self._dedupe(steps, messages)
        steps = self._insert_missing(steps, messages)
        steps = self._unique_ids(steps, messages)

        ordered = self._sort(steps, messages, errors)
        ordered = self._enforce_after(ordered, TRIM_TO_LENGTH, RENDER_VIDEO, messages)
        ordered = self._enforce_after(ordered, TEMPORAL_EXPANSION, TRIM_TO_LENGTH, messages)

        result = ValidatedPlan(
            steps=ordered,
            messages=messages,
            errors=errors,
            was_repaired=bool(messages or errors),
        )
        logger.info(
            "Plan validated: %d steps, repaired=%s, errors=%d",
            len(result.steps), result.was_repaired, len(result.errors),
        )
        return result

    # --- repair passes ---

    def _filter_whitelisted(self, steps: list[PlanStep], messages: list[str]) -> list[PlanStep]:
        kept: list[PlanStep] = []
        for step in steps:
            name = canonical_name(step.tool)
            if name is None:
                messages.append(f"Removed unknown tool '{step.tool}' (id={step.id or '?'})")
                continue
            kept.append(
                PlanStep(
                    id=step.id or DEFAULT_STEP_IDS[name],
                    tool=name,
                    inputs=step.inputs,
                )
            )
        return kept

    def _dedupe(self, steps: list[PlanStep], messages: list[str]) -> list[PlanStep]:
        seen: set[str] = set()
        unique: list[PlanStep] = []
        for step in steps:
            if step.tool in seen:
                messages.append(f"Removed duplicate step for tool '{step.tool}' (id={step.id})")
                continue
            seen.add(step.tool)
            unique.append(step)
        return unique

    def _insert_missing(self, steps: list[PlanStep], messages: list[str]) -> list[PlanStep]:
        present = {s.tool for s in steps}
        result = list(steps)
        for tool in CANONICAL_ORDER:
            if tool not in present:
                result.append(PlanStep(id=DEFAULT_STEP_IDS[tool], tool=tool))
                messages.append(f"Inserted missing tool '{tool}'")
        return result

    def _unique_ids(self, steps: list[PlanStep], messages: list[str]) -> list[PlanStep]:
        """Give a step its default id when its id is taken or names another tool.

        Default ids are reserved for their own tool, so the result is unique.
        """
        reserved = {DEFAULT_STEP_IDS[s.tool]: s.tool for s in steps}
        seen: set[str] = set()
        result: list[PlanStep] = []
        for step in steps:
            key = step.id.strip().lower()
            own = DEFAULT_STEP_IDS[step.tool]
            if key in seen or reserved.get(key, step.tool) != step.tool:
                messages.append(
                    f"Renamed step id '{step.id}' to '{own}' for tool '{step.tool}'"
                )
                step = step.model_copy(update={"id": own})
                key = own
            seen.add(key)
            result.append(step)
        return result

    def _precedence_graph(self, steps: list[PlanStep], messages: list[str]) -> nx.DiGraph:
        graph = nx.DiGraph()
        graph.add_nodes_from(s.tool for s in steps)
        graph.add_edges_from(zip(CANONICAL_ORDER, CANONICAL_ORDER[1:]))
        for before, after in self._extra_precedence:
            a, b = canonical_name(before), canonical_name(after)
            if a is None or b is None:
                messages.append(f"Ignored precedence pair with unknown tool: {before} -> {after}")
                continue
            graph.add_edge(a, b)
        return graph

    def _sort(
        self,
        steps: list[PlanStep],
        messages: list[str],
        errors: list[str],
    ) -> list[PlanStep]:
        by_tool = {s.tool: s for s in steps}
        position = {s.tool: i for i, s in enumerate(steps)}
        graph = self._precedence_graph(steps, messages)

        try:
            order = list(
                nx.lexicographical_topological_sort(
                    graph, key=lambda tool: (CANONICAL_INDEX[tool], position[tool])
                )
            )
        except nx.NetworkXUnfeasible:
            errors.append("Cycle detected in precedence graph; using canonical order")
            logger.warning("Precedence cycle, falling back to canonical order")
            order = list(CANONICAL_ORDER)

        if order != [s.tool for s in steps]:
            messages.append("Reordered steps to satisfy tool precedence")
        return [by_tool[tool] for tool in order]

    def _enforce_after(
        self,
        steps: list[PlanStep],
        anchor: str,
        tool: str,
        messages: list[str],
    ) -> list[PlanStep]:
        """Move ``tool`` immediately after ``anchor`` if it precedes it."""
        tools = [s.tool for s in steps]
        if anchor not in tools or tool not in tools:
            return steps
        if tools.index(tool) > tools.index(anchor):
            return steps

        moving = steps[tools.index(tool)]
        rest = [s for s in steps if s.tool != tool]
        insert_at = [s.tool for s in rest].index(anchor) + 1
        rest.insert(insert_at, moving)
        messages.append(f"Moved '{tool}' after '{anchor}'")
        return rest
