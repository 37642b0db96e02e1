# tests/unit/config/test_unit_tools.py — v1
"""Tests for config/tools.py — tool catalogue."""

from __future__ import annotations

from frameagent.config.tools import (
    CANONICAL_INDEX,
    CANONICAL_ORDER,
    DEFAULT_STEP_IDS,
    STEP_LABELS,
    canonical_name,
)


class TestCatalogue:
    def test_nine_unique_tools(self):
        assert len(CANONICAL_ORDER) == 9
        assert len(set(CANONICAL_ORDER)) == 9

    def test_index_matches_order(self):
        assert [CANONICAL_INDEX[t] for t in CANONICAL_ORDER] == list(range(9))

    def test_every_tool_has_id_and_label(self):
        assert set(DEFAULT_STEP_IDS) == set(CANONICAL_ORDER)
        assert set(STEP_LABELS) == set(CANONICAL_ORDER)

    def test_trim_before_render(self):
        assert CANONICAL_INDEX["TemporalExpansion"] < CANONICAL_INDEX["TrimToLength"]
        assert CANONICAL_INDEX["TrimToLength"] < CANONICAL_INDEX["RenderVideo"]


class TestCanonicalName:
    def test_case_insensitive(self):
        assert canonical_name("noveltyrerank") == "NoveltyReRank"
        assert canonical_name("  RenderVideo ") == "RenderVideo"

    def test_unknown(self):
        assert canonical_name("Upscale") is None
