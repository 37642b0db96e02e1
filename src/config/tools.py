# src/config/tools.py — v1
"""Declarative tool catalogue.

The nine processing stages the agent knows how to drive, in the one order
that is safe to execute them. Tool names are the wire names used in plan
JSON and tool configuration files.
"""

from __future__ import annotations

PROCESS_TAKES = "ProcessTakeLayer"
SPEAKER_ANALYSIS = "ProcessSpeakerAnalysis"
RANK_TRANSCRIPTS = "RankTranscripts"
RANK_ORDER = "RankOrder"
NOVELTY_RERANK = "NoveltyReRank"
SEQUENCE_DIALOGUE = "SequenceDialogue"
TEMPORAL_EXPANSION = "TemporalExpansion"
TRIM_TO_LENGTH = "TrimToLength"
RENDER_VIDEO = "RenderVideo"

# Strict total precedence order; also the whitelist.
CANONICAL_ORDER: list[str] = [
    PROCESS_TAKES,
    SPEAKER_ANALYSIS,
    RANK_TRANSCRIPTS,
    RANK_ORDER,
    NOVELTY_RERANK,
    SEQUENCE_DIALOGUE,
    TEMPORAL_EXPANSION,
    TRIM_TO_LENGTH,
    RENDER_VIDEO,
]

CANONICAL_INDEX: dict[str, int] = {tool: i for i, tool in enumerate(CANONICAL_ORDER)}

# Step id used when a tool is inserted into (or planned by) the fallback plan.
DEFAULT_STEP_IDS: dict[str, str] = {
    PROCESS_TAKES: "takes",
    SPEAKER_ANALYSIS: "speakers",
    RANK_TRANSCRIPTS: "rank",
    RANK_ORDER: "order",
    NOVELTY_RERANK: "novelty",
    SEQUENCE_DIALOGUE: "dialogue",
    TEMPORAL_EXPANSION: "expand",
    TRIM_TO_LENGTH: "trim",
    RENDER_VIDEO: "render",
}

# tool -> (short UI label, longer log description)
STEP_LABELS: dict[str, tuple[str, str]] = {
    PROCESS_TAKES: ("Analyzing", "Analyzing takes..."),
    SPEAKER_ANALYSIS: ("Speaker Analysis", "Analyzing speakers and shots..."),
    RANK_TRANSCRIPTS: ("Analyzing", "Analyzing transcripts..."),
    RANK_ORDER: ("Ranking", "Ranking segments..."),
    NOVELTY_RERANK: ("Reranking", "Novelty rerank..."),
    SEQUENCE_DIALOGUE: ("Dialogue", "Sequencing dialogue..."),
    TEMPORAL_EXPANSION: ("Expanding", "Temporal expansion..."),
    TRIM_TO_LENGTH: ("Trimming", "Trimming to length..."),
    RENDER_VIDEO: ("Rendering", "Rendering final video..."),
}


def canonical_name(tool: str) -> str | None:
    """Return the whitelisted spelling of a tool name, or None if unknown.

    Matching is case-insensitive.
    """
    lowered = tool.strip().lower()
    for name in CANONICAL_ORDER:
        if name.lower() == lowered:
            return name
    return None
