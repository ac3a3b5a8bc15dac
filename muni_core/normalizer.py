"""
Bill page normalization.

Turns a fetched Massachusetts Legislature bill page into a BillSnapshot and
cleans extracted bill text. Only the bill identifier is mandatory: a page
without one raises ParseError, everything else degrades to a placeholder.
"""
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from bs4 import BeautifulSoup

from muni_core.exceptions import ParseError
from muni_core.models import ActionRecord, BillSnapshot
from muni_core.utils import collapse_whitespace

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_STATUS = "Status unknown"
MAX_TEXT_CHARS = 30000

_BILL_NUMBER = re.compile(r"Bill\s+(H|S)\.(\d+)")


@dataclass(frozen=True)
class TextRule:
    """One ordered substitution applied to extracted bill text."""
    pattern: str
    replacement: str = ""
    flags: int = re.IGNORECASE

    def apply(self, text: str) -> str:
        return re.sub(self.pattern, self.replacement, text, flags=self.flags)


# Letterhead and pagination noise in Legislature PDFs
DEFAULT_TEXT_RULES: tuple[TextRule, ...] = (
    TextRule(r"\s+", " ", flags=0),
    TextRule(r"The Commonwealth of Massachusetts"),
    TextRule(r"HOUSE OF REPRESENTATIVES|SENATE"),
    TextRule(r"Page \d+ of \d+"),
    TextRule(r"\s{2,}", " ", flags=0),
)


def normalize_text(
    text: Optional[str],
    rules: Iterable[TextRule] = DEFAULT_TEXT_RULES,
    max_chars: int = MAX_TEXT_CHARS,
) -> Optional[str]:
    """
    Apply boilerplate rules in order, then truncate.

    Returns None when nothing usable remains, so callers can fall back to the
    status text.
    """
    if not text:
        return None
    for rule in rules:
        text = rule.apply(text)
    text = text.strip()
    if not text:
        return None
    return text[:max_chars]


def _cell_text(node) -> str:
    return collapse_whitespace(node.get_text(" ")) if node is not None else ""


def parse_bill_page(html: str, url: str) -> BillSnapshot:
    """
    Extract identifier, title, status and action history from a bill page.

    Args:
        html: Raw page HTML
        url: Page URL (kept as the snapshot's source_url)

    Returns:
        BillSnapshot without full text

    Raises:
        ParseError: If the page carries no "Bill H.n"/"Bill S.n" heading
    """
    soup = BeautifulSoup(html, "lxml")

    identifier = None
    h1 = soup.find("h1")
    if h1 is not None:
        match = _BILL_NUMBER.search(h1.get_text(" "))
        if match:
            identifier = f"{match.group(1)}.{match.group(2)}"
    if not identifier:
        logger.error("Could not extract bill number from %s", url)
        raise ParseError(f"missing identifier: no bill number heading on {url}")

    title = _cell_text(soup.find("h2")) or UNKNOWN_TITLE
    status = _cell_text(soup.select_one(".pinslip")) or UNKNOWN_STATUS

    history: list[ActionRecord] = []
    rows = soup.select("table.table-dark tbody tr")
    for row in rows:
        cells = row.find_all("td")
        if len(cells) < 3:
            continue
        date, branch, action = (_cell_text(c) for c in cells[:3])
        # Half-empty rows are source noise
        if date and action:
            history.append(ActionRecord(date=date, branch=branch, text=action))

    if len(history) < len(rows):
        logger.debug("%s: dropped %d malformed history rows", identifier, len(rows) - len(history))
    logger.info("Parsed bill page %s (%d actions)", identifier, len(history))

    return BillSnapshot(
        identifier=identifier,
        title=title,
        current_status=status,
        source_url=url,
        action_history=tuple(history),
    )
