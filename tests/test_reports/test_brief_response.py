"""
Brief document tests.

Tests build briefs through a real store and check the JSON document handed to
downstream consumers.
"""
import pytest

from muni_core.analysis.briefs import BriefGenerator
from muni_core.reports.briefs import SCHEMA_VERSION, build_brief_response
from muni_core.utils import compute_text_hash


async def _stored_brief(store, llm, snapshot, action=None):
    bill_id = store.record_bill(snapshot)
    brief = await BriefGenerator(llm).generate(snapshot, action)
    store.save_brief(brief, bill_id)
    return store.get_brief(brief.brief_id), store.get_history(bill_id)


class TestBuildBriefResponse:
    """Document shape over a persisted brief."""

    @pytest.mark.asyncio
    async def test_bill_document(self, store, mock_llm, sample_snapshot):
        snapshot = sample_snapshot.with_full_text("SECTION 1. Clerks shall post notice")
        row, history = await _stored_brief(store, mock_llm, snapshot)
        doc = build_brief_response(row, history)

        assert doc["schema_version"] == SCHEMA_VERSION
        assert doc["brief_id"] == row["brief_id"]
        item = doc["item"]
        assert item["source"] == {"name": "Massachusetts Legislature", "jurisdiction": "MA", "source_weight": "binding"}
        assert item["bill"]["bill_number"] == "H.1"
        assert item["bill"]["session"] == "2025-2026"
        assert item["published_at"] == "1/1/2025"
        assert item["raw_text"] == "SECTION 1. Clerks shall post notice"
        assert item["raw_text_sha256"] == compute_text_hash("SECTION 1. Clerks shall post notice")
        assert [h["action"] for h in item["history"]] == [a.text for a in snapshot.action_history]
        assert "trigger_action" not in item

    @pytest.mark.asyncio
    async def test_analysis_block_decoded(self, store, mock_llm, sample_snapshot, valid_analysis_response):
        row, history = await _stored_brief(store, mock_llm, sample_snapshot)
        analysis = build_brief_response(row, history)["analysis"]
        assert analysis["who_should_care"] == valid_analysis_response["who_should_care"]
        assert analysis["action_types"] == valid_analysis_response["action_types"]
        assert analysis["citations"][0]["label"] == "Most recent legislative action"

    @pytest.mark.asyncio
    async def test_action_brief_carries_trigger(self, store, mock_llm, sample_snapshot):
        action = sample_snapshot.action_history[1]
        row, history = await _stored_brief(store, mock_llm, sample_snapshot, action)
        trigger = build_brief_response(row, history)["item"]["trigger_action"]
        assert trigger == {"date": action.date, "branch": action.branch, "action": action.text}

    def test_source_config_overrides_name(self):
        brief = {"brief_id": "b-1", "title": "An Act", "bill_text": ""}
        doc = build_brief_response(brief, [], {"name": "Town Watch", "jurisdiction": "MA"})
        assert doc["item"]["source"]["name"] == "Town Watch"
        assert doc["item"]["history"] == []
        assert doc["item"]["raw_text_sha256"] == compute_text_hash("")
