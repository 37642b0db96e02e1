# src/storage/layout.py — v2
"""Render directory structure definition.

Path conventions for the agent's own documents (plan, event log, report,
manifest) and for the per-stage files the external tools produce.
"""

from __future__ import annotations

from pathlib import Path

# Agent documents, relative to the render directory.
PLAN_FILE = "plan.json"
RUN_LOG_FILE = "run.jsonl"
RUN_REPORT_FILE = "run_report.json"
ARTIFACTS_FILE = "artifacts.json"
STORY_SETTINGS_FILE = "story_settings.json"

TRANSCRIPT_GLOB = "*.srt"


# --- Agent documents ---

def plan_path(render_dir: Path) -> Path:
    return render_dir / PLAN_FILE


def run_log_path(render_dir: Path) -> Path:
    return render_dir / RUN_LOG_FILE


def run_report_path(render_dir: Path) -> Path:
    return render_dir / RUN_REPORT_FILE


def artifacts_path(render_dir: Path) -> Path:
    return render_dir / ARTIFACTS_FILE


def story_settings_path(render_dir: Path) -> Path:
    return render_dir / STORY_SETTINGS_FILE


# --- Stage outputs ---

def speaker_meta_path(render_dir: Path, project: str) -> Path:
    return render_dir / f"{project}.speaker.meta.json"


def ranked_srt_path(render_dir: Path, project: str) -> Path:
    return render_dir / f"{project}.ranked.srt"


def ordered_srt_path(render_dir: Path, project: str) -> Path:
    return render_dir / f"{project}.ordered.srt"


def novelty_srt_path(render_dir: Path, project: str) -> Path:
    return render_dir / f"{project}.novelty.srt"


def expanded_srt_path(render_dir: Path, project: str) -> Path:
    return render_dir / f"{project}.expanded.srt"


def trim_srt_path(render_dir: Path, project: str) -> Path:
    return render_dir / f"{project}.trim.srt"


def output_video_path(render_dir: Path, project: str) -> Path:
    return render_dir / f"{project}.mp4"


def transcript_files(render_dir: Path) -> list[Path]:
    """All transcript files currently in the render directory, sorted."""
    if not render_dir.is_dir():
        return []
    return sorted(render_dir.glob(TRANSCRIPT_GLOB))
