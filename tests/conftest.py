"""
Pytest fixtures and configuration.

- Fixtures provide bill pages shaped like malegislature.gov
- Mocks used only when unavoidable (engine and network)
- Each test gets its own SQLite database under tmp_path
"""
import copy
import pytest
from unittest.mock import AsyncMock, MagicMock
from typing import Any, Optional

from muni_core.config import DEFAULT_CONFIG
from muni_core.db.store import Store
from muni_core.exceptions import NotFoundError
from muni_core.models import ActionRecord, BillSnapshot, FetchedPage


# =============================================================================
# BILL PAGE FIXTURES
# =============================================================================

def make_bill_page(
    number: str = "H.1",
    title: str = "An Act relative to municipal election procedures",
    status: str = "Referred to the committee on Municipalities and Regional Government",
    rows: Optional[list[tuple[str, str, str]]] = None,
) -> str:
    """HTML with the same structure as a Legislature bill page."""
    if rows is None:
        rows = [("1/1/2025", "House", "Referred to committee on Municipalities")]
    body = "\n".join(
        f"<tr><td>{d}</td><td>{b}</td><td>{a}</td></tr>" for d, b, a in rows
    )
    heading = f"<h1>Bill {number}</h1>" if number else "<h1>Bill</h1>"
    return f"""<html><body>
    {heading}
    <h2>{title}</h2>
    <div class="pinslip">{status}</div>
    <table class="table table-dark">
      <thead><tr><th>Date</th><th>Branch</th><th>Action</th></tr></thead>
      <tbody>{body}</tbody>
    </table>
    </body></html>"""


class FakeFetcher:
    """In-memory fetch collaborator. Unknown identifiers are NotFound."""

    def __init__(self, pages: Optional[dict[str, Any]] = None, texts: Optional[dict[str, Any]] = None):
        self.pages = pages or {}
        self.texts = texts or {}
        self.page_calls: list[str] = []
        self.text_calls: list[str] = []

    async def fetch_bill_page(self, bill_number: str) -> FetchedPage:
        self.page_calls.append(bill_number)
        if bill_number not in self.pages:
            raise NotFoundError(bill_number)
        page = self.pages[bill_number]
        if isinstance(page, Exception):
            raise page
        return FetchedPage(html=page, url=f"https://malegislature.gov/Bills/194/{bill_number}")

    async def fetch_full_text(self, bill_number: str) -> Optional[str]:
        self.text_calls.append(bill_number)
        text = self.texts.get(bill_number)
        if isinstance(text, Exception):
            raise text
        return text


@pytest.fixture
def bill_page_html() -> str:
    return make_bill_page()


@pytest.fixture
def sample_snapshot() -> BillSnapshot:
    return BillSnapshot(
        identifier="H.1",
        title="An Act relative to municipal election procedures",
        current_status="Referred to the committee on Municipalities and Regional Government",
        source_url="https://malegislature.gov/Bills/194/H1",
        action_history=(
            ActionRecord(date="1/1/2025", branch="House", text="Referred to committee on Municipalities"),
            ActionRecord(date="3/4/2025", branch="Joint", text="Hearing scheduled for 03/18/2025"),
        ),
    )


# =============================================================================
# ENGINE RESPONSE FIXTURES
# =============================================================================

@pytest.fixture
def valid_analysis_response() -> dict[str, Any]:
    """Valid engine analysis response."""
    return {
        "summary": "Requires town clerks to offer early in-person voting for municipal elections.",
        "why_it_matters": "Clerks would need to staff early voting sites and budget for extra poll workers.",
        "who_should_care": ["Municipal Clerk", "Election Administrator"],
        "what_to_do": "monitor",
        "recommended_next_steps": ["Track committee hearing", "Estimate staffing cost"],
        "urgency": "low",
        "action_types": ["staffing", "budget"],
        "confidence": "medium",
        "model_notes": "Effective date not specified.",
        "citations": [
            {"label": "Most recent legislative action", "supporting_text": "Referred to committee", "location": "Bill history, 1/1/2025"}
        ],
    }


@pytest.fixture
def relevant_judgment() -> dict[str, Any]:
    return {"relevant": True, "confidence": "high", "reason": "Changes municipal election administration."}


def make_mock_llm(relevance: Any, analysis: Any) -> MagicMock:
    """
    Engine mock routing by prompt: the screening prompt gets `relevance`,
    everything else gets `analysis`. Exceptions are raised instead of returned.
    """
    llm = MagicMock()

    async def complete_json(prompt: str, max_tokens: int):
        reply = relevance if prompt.startswith("You are screening") else analysis
        if isinstance(reply, Exception):
            raise reply
        return copy.deepcopy(reply)

    llm.complete_json = AsyncMock(side_effect=complete_json)
    return llm


@pytest.fixture
def mock_llm(relevant_judgment, valid_analysis_response) -> MagicMock:
    return make_mock_llm(relevant_judgment, valid_analysis_response)


# =============================================================================
# CONFIGURATION FIXTURES
# =============================================================================

@pytest.fixture
def sample_config() -> dict[str, Any]:
    """Default configuration without inter-batch pauses."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["pipeline"]["batch_pause"] = 0
    return config


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def store(tmp_path):
    """Temporary SQLite store."""
    s = Store.open(str(tmp_path / "test.db"))
    yield s
    s.close()
