import logging
import uuid
from typing import Any, Optional

from pydantic import ValidationError

from muni_core.analysis.llm import LLMClient
from muni_core.analysis.prompts import build_action_analysis_prompt, build_bill_analysis_prompt
from muni_core.exceptions import AnalysisError
from muni_core.models import ActionRecord, BillSnapshot, Brief
from muni_core.schemas import REQUIRED_ANALYSIS_FIELDS, Analysis, clamp_analysis_payload
from muni_core.utils import compute_text_hash, utc_now_iso

logger = logging.getLogger(__name__)

VOCABULARY_REJECT: str = "reject"
VOCABULARY_CLAMP: str = "clamp"
VOCABULARY_POLICIES: tuple[str, ...] = (VOCABULARY_REJECT, VOCABULARY_CLAMP)


def validate_analysis(data: dict[str, Any], vocabulary_policy: str = VOCABULARY_REJECT) -> Analysis:
    """
    Turn decoded engine output into a validated Analysis.

    Args:
        data: Decoded JSON object from the engine
        vocabulary_policy: "reject" fails on any out-of-vocabulary value;
            "clamp" maps near-misses first and fails only on what it cannot map

    Returns:
        Validated Analysis

    Raises:
        AnalysisError: Missing required fields or values that fail validation
    """
    missing = [f for f in REQUIRED_ANALYSIS_FIELDS if f not in data]
    if missing:
        raise AnalysisError(f"malformed response: missing fields {missing}")

    if vocabulary_policy == VOCABULARY_CLAMP:
        data = clamp_analysis_payload(data)

    try:
        return Analysis.model_validate(data)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise AnalysisError(f"invalid analysis: {', '.join(fields)}: {e.errors()[0]['msg']}") from e


class BriefGenerator:
    """
    Brief Generator.

    Assembles the engine request (holistic over the full history, or scoped to
    one action), validates the reply and packages it as an immutable Brief
    carrying a hash of the exact text analyzed.
    """

    def __init__(self, llm: LLMClient, max_tokens: int = 4000, vocabulary_policy: str = VOCABULARY_REJECT):
        if vocabulary_policy not in VOCABULARY_POLICIES:
            raise ValueError(
                f"Unknown vocabulary_policy {vocabulary_policy!r}. Expected one of {VOCABULARY_POLICIES}"
            )
        self.llm = llm
        self.max_tokens = max_tokens
        self.vocabulary_policy = vocabulary_policy

    async def analyze(self, snapshot: BillSnapshot, action: Optional[ActionRecord] = None) -> Analysis:
        if action is None:
            prompt = build_bill_analysis_prompt(snapshot)
        else:
            prompt = build_action_analysis_prompt(snapshot, action)
        data = await self.llm.complete_json(prompt, self.max_tokens)
        return validate_analysis(data, self.vocabulary_policy)

    async def generate(self, snapshot: BillSnapshot, action: Optional[ActionRecord] = None) -> Brief:
        analysis = await self.analyze(snapshot, action)
        source_text = snapshot.analysis_text
        brief = Brief(
            brief_id=str(uuid.uuid4()),
            created_at=utc_now_iso(),
            bill_identifier=snapshot.identifier,
            analysis=analysis,
            source_text=source_text,
            source_text_sha256=compute_text_hash(source_text),
            action=action,
            mode="bill" if action is None else "action",
        )
        logger.info(
            "Brief %s for %s: %s / urgency %s",
            brief.brief_id, snapshot.identifier, analysis.what_to_do, analysis.urgency,
        )
        return brief
