# src/pipeline/evaluator.py — v1
"""Evaluator — on-disk evidence checks and brief alignment scoring.

Artifact checks only look at files the tools are expected to have written.
They never raise: a filesystem error becomes a failed EvalOutcome.
Evaluating an unchanged directory twice gives identical results.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from frameagent.config.tools import (
    NOVELTY_RERANK,
    PROCESS_TAKES,
    RANK_ORDER,
    RANK_TRANSCRIPTS,
    RENDER_VIDEO,
    SEQUENCE_DIALOGUE,
    SPEAKER_ANALYSIS,
    TEMPORAL_EXPANSION,
    TRIM_TO_LENGTH,
    canonical_name,
)
from frameagent.core.models import EvalOutcome, RunRequest
from frameagent.llm.models import Message
from frameagent.pipeline import prompts
from frameagent.storage import layout

if TYPE_CHECKING:
    from frameagent.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

MIN_KEYWORD_LENGTH = 4
MAX_SCRIPT_CHARS = 4000

STOP_WORDS = frozenset({
    "about", "above", "after", "again", "against", "also", "because", "been",
    "before", "being", "below", "between", "both", "could", "does", "doing",
    "down", "during", "each", "every", "from", "further", "have", "having",
    "here", "into", "just", "make", "more", "most", "much", "only", "other",
    "over", "same", "should", "some", "such", "than", "that", "their",
    "them", "then", "there", "these", "they", "this", "those", "through",
    "under", "until", "very", "video", "want", "were", "what", "when",
    "where", "which", "while", "will", "with", "would", "your", "yours",
})

_INDEX_LINE = re.compile(r"^\d+$")
_SOURCE_LINE = re.compile(r"^\[source:.*\]$", re.IGNORECASE)
_MEDIA_LINE = re.compile(r"^\S+\.(mp4|mov|mkv|avi|m4v|webm|wav|mp3|m4a)$", re.IGNORECASE)
_METRIC_LINE = re.compile(r"^[A-Za-z][\w ]*:\s*-?\d+(\.\d+)?%?$")
_TOKEN = re.compile(r"[a-z0-9']+")
_FIRST_INT = re.compile(r"-?\d+")

# tool -> (path resolver, short artifact name for reasons)
_STAGE_FILES = {
    SPEAKER_ANALYSIS: (layout.speaker_meta_path, "speaker.meta.json"),
    RANK_TRANSCRIPTS: (layout.ranked_srt_path, "ranked.srt"),
    RANK_ORDER: (layout.ordered_srt_path, "ordered.srt"),
    NOVELTY_RERANK: (layout.novelty_srt_path, "novelty.srt"),
    SEQUENCE_DIALOGUE: (layout.novelty_srt_path, "novelty.srt"),
    TEMPORAL_EXPANSION: (layout.expanded_srt_path, "expanded.srt"),
    TRIM_TO_LENGTH: (layout.trim_srt_path, "trim.srt"),
}


class Evaluator:
    """Check step evidence, gate the trimmed script, score brief alignment.

    Args:
        llm: Optional generative model used for the alignment score.
        min_coverage: Keyword coverage that passes alignment on its own.
        min_model_score: Model score that passes alignment on its own.
    """

    def __init__(
        self,
        llm: BaseLLMClient | None = None,
        min_coverage: float = 0.5,
        min_model_score: int = 70,
    ) -> None:
        self._llm = llm
        self._min_coverage = min_coverage
        self._min_model_score = min_model_score

    # --- artifact checks ---

    def evaluate_step(self, tool: str, request: RunRequest) -> EvalOutcome:
        """Verify the minimal on-disk evidence a tool should leave behind.

        Unknown tools pass.
        """
        name = canonical_name(tool)
        try:
            if name == PROCESS_TAKES:
                srts = layout.transcript_files(request.render_directory)
                passed = len(srts) > 0
                return EvalOutcome(
                    passed=passed,
                    reason=None if passed else "No transcript files produced",
                    metrics={"srt_count": len(srts)},
                )
            if name == RENDER_VIDEO:
                return _check_file(request.output_video_path, "rendered video")
            if name in _STAGE_FILES:
                resolver, label = _STAGE_FILES[name]
                return _check_file(
                    resolver(request.render_directory, request.project_name), label
                )
        except OSError as exc:
            return EvalOutcome(passed=False, reason=str(exc))

        return EvalOutcome(passed=True)

    def evaluate_gate(self, request: RunRequest) -> EvalOutcome:
        """Terminal gate: the trimmed script must exist and be non-empty."""
        try:
            path = layout.trim_srt_path(request.render_directory, request.project_name)
            return _check_file(path, "trimmed script")
        except OSError as exc:
            return EvalOutcome(passed=False, reason=str(exc))

    # --- alignment ---

    async def evaluate_alignment(self, request: RunRequest) -> EvalOutcome:
        """Score how well the trimmed script covers the creative brief.

        Passes when keyword coverage or the model score reaches its
        threshold. Model failure degrades to coverage only.
        """
        path = layout.trim_srt_path(request.render_directory, request.project_name)
        try:
            raw = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            return EvalOutcome(passed=False, reason=f"Cannot read trimmed script: {exc}")

        script = strip_script(raw)
        brief = request.brief.prompt
        keywords = extract_keywords(brief)
        haystack = script.lower()
        matched = [k for k in keywords if k in haystack]
        coverage = len(matched) / len(keywords) if keywords else 1.0

        model_score = await self._model_score(request, script)

        passed = coverage >= self._min_coverage or (
            model_score is not None and model_score >= self._min_model_score
        )
        metrics: dict[str, Any] = {
            "coverage": round(coverage, 4),
            "keywords": keywords,
            "matched": matched,
            "model_score": model_score,
        }
        logger.info(
            "Alignment: coverage=%.2f (%d/%d), model_score=%s, passed=%s",
            coverage, len(matched), len(keywords), model_score, passed,
        )
        return EvalOutcome(
            passed=passed,
            reason=None if passed else "Trimmed script does not reflect the brief",
            metrics=metrics,
        )

    async def _model_score(self, request: RunRequest, script: str) -> int | None:
        if self._llm is None or not self._llm.is_loaded:
            return None
        if not request.brief.prompt.strip():
            return None
        try:
            response = await self._llm.complete(
                messages=[
                    Message(
                        role="user",
                        content=prompts.alignment_request(
                            request.brief.prompt, script[:MAX_SCRIPT_CHARS]
                        ),
                    )
                ],
                system=prompts.SCORE_ONLY_SYSTEM,
                max_tokens=8,
                temperature=0.0,
            )
        except Exception as exc:
            logger.warning("Alignment scoring failed, using coverage only: %s", exc)
            return None
        return parse_score(response.content)


def _check_file(path: Path, label: str) -> EvalOutcome:
    exists = path.is_file()
    size = path.stat().st_size if exists else 0
    passed = exists and size > 0
    return EvalOutcome(
        passed=passed,
        reason=None if passed else f"Missing or empty {label}",
        metrics={"path": str(path), "exists": exists, "size_bytes": size},
    )


def strip_script(text: str) -> str:
    """Drop transcript scaffolding and keep the spoken lines."""
    kept: list[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if _INDEX_LINE.match(line) or "-->" in line:
            continue
        if _SOURCE_LINE.match(line) or _MEDIA_LINE.match(line) or _METRIC_LINE.match(line):
            continue
        kept.append(line)
    return "\n".join(kept)


def extract_keywords(brief: str) -> list[str]:
    """Lower-case brief tokens worth matching, deduplicated, in order."""
    seen: set[str] = set()
    keywords: list[str] = []
    for token in _TOKEN.findall(brief.lower()):
        token = token.strip("'")
        if len(token) < MIN_KEYWORD_LENGTH or token in STOP_WORDS or token in seen:
            continue
        seen.add(token)
        keywords.append(token)
    return keywords


def parse_score(text: str) -> int | None:
    """First integer in the model reply, clamped to 0-100."""
    match = _FIRST_INT.search(text)
    if match is None:
        return None
    return max(0, min(100, int(match.group())))
