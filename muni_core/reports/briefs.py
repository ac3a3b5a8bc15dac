from typing import Any, Optional

from muni_core.config import DEFAULT_CONFIG
from muni_core.utils import compute_text_hash, utc_now_iso

SCHEMA_VERSION = "v1"


def build_brief_response(
    brief: dict[str, Any],
    history: list[dict[str, Any]],
    source_config: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """
    Build the JSON brief document handed to downstream consumers.

    Args:
        brief: Brief row joined with its bill (Store.get_brief)
        history: The bill's history rows in published order (Store.get_history)
        source_config: config["source"]; name/jurisdiction default to the Legislature

    Returns:
        Document with schema_version, an item block describing the bill and an
        analysis block copied from the brief
    """
    source_config = source_config or DEFAULT_CONFIG["source"]
    raw_text = brief.get("bill_text") or ""

    item: dict[str, Any] = {
        "source": {
            "name": source_config.get("name", DEFAULT_CONFIG["source"]["name"]),
            "jurisdiction": source_config.get("jurisdiction", DEFAULT_CONFIG["source"]["jurisdiction"]),
            "source_weight": "binding",
        },
        "item_type": "bill",
        "title": brief.get("title"),
        "url": brief.get("url"),
        # First published action date stands in for publication
        "published_at": history[0]["action_date"] if history else utc_now_iso(),
        "bill": {
            "bill_number": brief.get("bill_number"),
            "session": brief.get("session"),
            "current_status": brief.get("current_status"),
        },
        "raw_text": raw_text,
        "raw_text_sha256": compute_text_hash(raw_text),
        "history": [
            {"date": h["action_date"], "branch": h.get("branch"), "action": h["action_text"]}
            for h in history
        ],
    }
    if brief.get("action_text"):
        item["trigger_action"] = {
            "date": brief.get("action_date"),
            "branch": brief.get("action_branch"),
            "action": brief.get("action_text"),
        }

    return {
        "schema_version": SCHEMA_VERSION,
        "brief_id": brief["brief_id"],
        "created_at": brief.get("created_at"),
        "item": item,
        "analysis": {
            "summary": brief.get("summary"),
            "why_it_matters": brief.get("why_it_matters"),
            "who_should_care": brief.get("who_should_care", []),
            "what_to_do": brief.get("what_to_do"),
            "recommended_next_steps": brief.get("recommended_next_steps", []),
            "urgency": brief.get("urgency"),
            "action_types": brief.get("action_types", []),
            "confidence": brief.get("confidence"),
            "model_notes": brief.get("model_notes"),
            "citations": brief.get("citations", []),
        },
    }
