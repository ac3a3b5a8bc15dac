"""
Relevance filter tests.

Stage 1 must be deterministic and offline; stage 2 must admit only confident
positives and fail open when the engine breaks.
"""
import pytest
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

from conftest import make_mock_llm
from muni_core.analysis.relevance import (
    MUNICIPAL_KEYWORDS,
    KeywordFilter,
    SemanticFilter,
    TriggerFilter,
    matches_municipal_keywords,
    matches_trigger_phrases,
)
from muni_core.exceptions import AnalysisError, TransientError
from muni_core.models import ActionRecord


class TestKeywordStage:
    """Stage 1: case-insensitive substring match over title + status."""

    def test_title_match_passes(self, sample_snapshot):
        assert KeywordFilter().passes(sample_snapshot) is True

    def test_match_is_case_insensitive(self):
        assert matches_municipal_keywords("AN ACT RELATIVE TO THE TOWN CLERK") is True

    def test_substring_match(self):
        """'municipal' matches inside 'Municipalities'."""
        assert matches_municipal_keywords("Committee on Municipalities") is True

    def test_status_text_counts(self, sample_snapshot):
        snapshot = replace(sample_snapshot, title="An Act relative to cats", current_status="Zoning hearing")
        assert KeywordFilter().passes(snapshot) is True

    def test_no_keyword_rejected(self, sample_snapshot):
        snapshot = replace(sample_snapshot, title="An Act designating the state dessert", current_status="Filed")
        assert KeywordFilter().passes(snapshot) is False

    def test_matched_keyword_reported(self, sample_snapshot):
        assert KeywordFilter().matched_keyword(sample_snapshot) == "municipal"

    def test_list_covers_topic_areas(self):
        for term in ("town meeting", "property tax", "zoning", "dpw", "chapter 30b", "open meeting law"):
            assert term in MUNICIPAL_KEYWORDS

    def test_config_extra_keywords(self, sample_snapshot):
        snapshot = replace(sample_snapshot, title="An Act relative to lighthouses", current_status="Filed")
        config = {"keywords": {"extra": ["lighthouse"], "replace": False}}
        assert KeywordFilter.from_config(config).passes(snapshot) is True

    def test_config_replace_keywords(self, sample_snapshot):
        config = {"keywords": {"extra": ["lighthouse"], "replace": True}}
        assert KeywordFilter.from_config(config).passes(sample_snapshot) is False


class TestTriggerPhrases:
    """Trigger-word admission over action text."""

    @pytest.mark.parametrize("text", [
        "Reported favorably by committee and referred to Ways and Means",
        "Signed by the Governor, Chapter 12 of the Acts of 2025",
        "Hearing scheduled - public hearing 03/18/2025",
        "Passed to be engrossed",
    ])
    def test_trigger_matches(self, text):
        assert matches_trigger_phrases(text) is True

    def test_plain_referral_not_a_trigger(self):
        assert matches_trigger_phrases("Referred to the committee on Municipalities") is False

    def test_select_filters_actions(self):
        actions = [
            ActionRecord("1/1/2025", "House", "Referred to committee"),
            ActionRecord("2/1/2025", "House", "Reported favorably by committee"),
        ]
        assert TriggerFilter().select(actions) == [actions[1]]

    def test_config_phrases_extend(self):
        trigger = TriggerFilter.from_config({"triggers": {"phrases": ["accompanied a study order"]}})
        assert trigger.matches("Accompanied a study order, see H.4000") is True
        assert trigger.matches("Reported favorably") is True


@pytest.mark.llm
class TestSemanticStage:
    """Stage 2: engine-backed relevance."""

    @pytest.mark.asyncio
    async def test_confident_positive_admits(self, sample_snapshot):
        llm = make_mock_llm({"relevant": True, "confidence": "high", "reason": "x"}, None)
        assert await SemanticFilter(llm).passes(sample_snapshot) is True

    @pytest.mark.asyncio
    async def test_low_confidence_positive_rejects(self, sample_snapshot):
        llm = make_mock_llm({"relevant": True, "confidence": "low", "reason": "maybe"}, None)
        assert await SemanticFilter(llm).passes(sample_snapshot) is False

    @pytest.mark.asyncio
    async def test_negative_rejects(self, sample_snapshot):
        llm = make_mock_llm({"relevant": False, "confidence": "high", "reason": "state only"}, None)
        assert await SemanticFilter(llm).passes(sample_snapshot) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        TransientError("timed out"),
        AnalysisError("malformed response"),
        RuntimeError("quota exceeded"),
    ])
    async def test_engine_failure_fails_open(self, sample_snapshot, error):
        """A broken engine call admits the bill rather than dropping it."""
        llm = make_mock_llm(error, None)
        assert await SemanticFilter(llm).passes(sample_snapshot) is True

    @pytest.mark.asyncio
    async def test_malformed_judgment_fails_open(self, sample_snapshot):
        llm = make_mock_llm({"relevant": "perhaps", "confidence": "sort of"}, None)
        assert await SemanticFilter(llm).passes(sample_snapshot) is True

    @pytest.mark.asyncio
    async def test_uses_relevance_token_budget(self, sample_snapshot):
        llm = MagicMock()
        llm.complete_json = AsyncMock(return_value={"relevant": True, "confidence": "medium", "reason": ""})
        await SemanticFilter(llm, max_tokens=300).passes(sample_snapshot)
        prompt, max_tokens = llm.complete_json.call_args.args
        assert max_tokens == 300
        assert sample_snapshot.title in prompt
