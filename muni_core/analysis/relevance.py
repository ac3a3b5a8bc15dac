"""
Two-stage admission control.

Stage 1 is a deterministic substring match against a curated municipal
keyword list; it runs offline and gates every engine call. Stage 2 asks the
engine a narrow relevance question and fails open when that call breaks.
The trigger-phrase gate replaces both stages when a deployment watches for
procedural milestones instead of topical relevance.
"""
import logging
from typing import Iterable, Optional

from muni_core.analysis.llm import LLMClient
from muni_core.analysis.prompts import build_relevance_prompt
from muni_core.models import BillSnapshot
from muni_core.schemas import RelevanceJudgment

logger = logging.getLogger(__name__)

ADMISSION_TOPICAL: str = "topical"
ADMISSION_TRIGGER: str = "trigger"
ADMISSION_MODES: tuple[str, ...] = (ADMISSION_TOPICAL, ADMISSION_TRIGGER)

MUNICIPAL_KEYWORDS: tuple[str, ...] = (
    # Direct municipal references
    'municipality', 'municipal', 'municipalities',
    'city of', 'town of', 'village',
    'local government', 'local aid', 'unrestricted general government aid', 'ugga',
    'home rule', 'home rule petition',
    'chapter 90',
    'special act',

    # Elections & governance
    'election', 'elections', 'voter', 'voters', 'voting',
    'ballot', 'polling', 'poll worker',
    'town meeting', 'city council', 'board of selectmen', 'select board',
    'clerk', 'town clerk', 'city clerk', 'election officer',

    # Financial/tax
    'property tax', 'real estate tax', 'personal property tax',
    'tax levy', 'levy limit', 'proposition 2½', 'proposition two and one half',
    'local option tax', 'meals tax', 'room occupancy',
    'treasurer', 'collector', 'assessor',
    'municipal finance', 'municipal budget', 'cherry sheet',

    # Land use & development
    'zoning', 'zoning board', 'zoning bylaw',
    'planning board', 'conservation commission',
    'building inspector', 'building code', 'building permit',
    'affordable housing', 'housing production', '40b',
    'wetlands', 'open space',

    # Public services
    'police department', 'fire department', 'emergency services',
    'department of public works', 'dpw', 'highway department',
    'school district', 'regional school', 'education',
    'library', 'public library',
    'water', 'sewer', 'wastewater',
    'solid waste', 'recycling', 'trash',

    # Procurement & construction
    'procurement', 'public procurement', 'chapter 30b',
    'prevailing wage', 'public construction',
    'design-build', 'construction manager at risk',
    'mcppo',

    # Administrative
    'public records', 'open meeting law',
    'ethics', 'conflict of interest',
    'collective bargaining', 'labor relations', 'arbitration',
    'workers compensation', 'unemployment',
    'opeb', 'pension', 'retirement',
)

# Procedural milestones worth a brief in trigger mode
TRIGGER_PHRASES: tuple[str, ...] = (
    'reported favorably',
    'signed by the governor',
    'governor signed',
    'public hearing',
    'enacted',
    'passed to be engrossed',
    'laid before the governor',
    'chapter',
)


def _first_match(text: str, terms: Iterable[str]) -> Optional[str]:
    lowered = (text or "").lower()
    for term in terms:
        if term.lower() in lowered:
            return term
    return None


def matches_municipal_keywords(text: str, keywords: Iterable[str] = MUNICIPAL_KEYWORDS) -> bool:
    return _first_match(text, keywords) is not None


def matches_trigger_phrases(text: str, phrases: Iterable[str] = TRIGGER_PHRASES) -> bool:
    return _first_match(text, phrases) is not None


def _resolve_terms(defaults: tuple[str, ...], extra: Iterable[str], replace: bool) -> tuple[str, ...]:
    extra = tuple(t for t in (extra or ()) if t)
    if replace and extra:
        return extra
    return defaults + tuple(t for t in extra if t not in defaults)


class KeywordFilter:
    """Stage 1: case-insensitive substring match over title + status."""

    def __init__(self, keywords: Iterable[str] = MUNICIPAL_KEYWORDS):
        self.keywords = tuple(keywords)

    @classmethod
    def from_config(cls, config: dict) -> "KeywordFilter":
        kw_config = config.get("keywords", {})
        return cls(_resolve_terms(MUNICIPAL_KEYWORDS, kw_config.get("extra", []), kw_config.get("replace", False)))

    def matched_keyword(self, snapshot: BillSnapshot) -> Optional[str]:
        return _first_match(snapshot.screening_text, self.keywords)

    def passes(self, snapshot: BillSnapshot) -> bool:
        keyword = self.matched_keyword(snapshot)
        if keyword:
            logger.debug("%s matched keyword %r", snapshot.identifier, keyword)
        return keyword is not None


class TriggerFilter:
    """Trigger-phrase gate over individual action texts."""

    def __init__(self, phrases: Iterable[str] = TRIGGER_PHRASES):
        self.phrases = tuple(phrases)

    @classmethod
    def from_config(cls, config: dict) -> "TriggerFilter":
        return cls(_resolve_terms(TRIGGER_PHRASES, config.get("triggers", {}).get("phrases", []), False))

    def matches(self, action_text: str) -> bool:
        return matches_trigger_phrases(action_text, self.phrases)

    def select(self, actions: Iterable) -> list:
        """Actions (ActionRecord) whose text carries a trigger phrase."""
        return [a for a in actions if self.matches(a.text)]


class SemanticFilter:
    """
    Stage 2: engine-backed relevance check.

    Admits only relevant=true with medium/high confidence. Any failure of the
    engine call (timeout, transport, malformed reply) admits the bill instead:
    dropping a relevant bill costs more than one wasted analysis.
    """

    def __init__(self, llm: LLMClient, max_tokens: int = 300):
        self.llm = llm
        self.max_tokens = max_tokens

    async def judge(self, snapshot: BillSnapshot) -> RelevanceJudgment:
        data = await self.llm.complete_json(build_relevance_prompt(snapshot), self.max_tokens)
        return RelevanceJudgment.model_validate(data)

    async def passes(self, snapshot: BillSnapshot) -> bool:
        try:
            judgment = await self.judge(snapshot)
        except Exception as e:
            logger.warning("Relevance check failed for %s, admitting: %s", snapshot.identifier, e)
            return True

        logger.info(
            "%s relevance: relevant=%s confidence=%s (%s)",
            snapshot.identifier, judgment.relevant, judgment.confidence, judgment.reason,
        )
        return judgment.admits
