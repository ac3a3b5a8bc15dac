# muni_core/schemas.py
"""
Validation models for analysis-engine output.

Design Decisions:
- Pydantic BaseModel so every engine response is validated before it can
  become a Brief; a malformed analysis is never persisted
- Enumerated fields are checked against closed vocabularies at this boundary
  instead of trusting free-form model output
- clamp_analysis_payload() is the opt-in lenient path: it maps near-misses
  ("Monitor (track progress)", "municipal clerk") onto the vocabulary and drops
  unknown set members, leaving anything it cannot map for validation to reject
"""
import re
from typing import Any, List, Literal

from pydantic import BaseModel, Field, field_validator


# ── Closed vocabularies ──

MUNICIPAL_ROLES: tuple[str, ...] = (
    "Town Administrator/Manager",
    "Municipal Clerk",
    "Election Administrator",
    "Treasurer/Collector",
    "Finance Director",
    "Town Counsel",
    "DPW Director",
    "Chief Procurement Officer",
    "School Business Manager",
    "Board of Health Director",
    "Police Chief",
    "Planning Director",
)

WHAT_TO_DO: tuple[str, ...] = ("monitor", "prepare", "act")

URGENCY_LEVELS: tuple[str, ...] = ("low", "medium", "high")

CONFIDENCE_LEVELS: tuple[str, ...] = ("low", "medium", "high")

ACTION_TYPES: tuple[str, ...] = (
    "training",
    "forms",
    "procedure",
    "budget",
    "staffing",
    "policy_update",
    "legal_review",
    "technology",
    "communications",
)

REQUIRED_ANALYSIS_FIELDS: tuple[str, ...] = (
    "summary",
    "why_it_matters",
    "who_should_care",
    "what_to_do",
    "recommended_next_steps",
    "urgency",
    "action_types",
    "confidence",
)


class Citation(BaseModel):
    label: str = ""
    supporting_text: str = ""
    location: str = ""


class Analysis(BaseModel):
    """
    Structured judgment about one bill (or one action) for municipal officials.

    what_to_do tracks legislative stage: monitor (early), prepare (advancing),
    act (enacted or imminent).
    """
    summary: str = Field(..., min_length=1)
    why_it_matters: str = Field(..., min_length=1)
    who_should_care: List[str] = Field(..., min_length=1, description="Roles from MUNICIPAL_ROLES")
    what_to_do: Literal["monitor", "prepare", "act"]
    recommended_next_steps: List[str] = Field(default_factory=list)
    urgency: Literal["low", "medium", "high"]
    action_types: List[str] = Field(default_factory=list, description="Subset of ACTION_TYPES")
    confidence: Literal["low", "medium", "high"]
    model_notes: str = ""
    citations: List[Citation] = Field(default_factory=list)

    @field_validator("who_should_care")
    @classmethod
    def validate_roles(cls, v: List[str]) -> List[str]:
        unknown = [r for r in v if r not in MUNICIPAL_ROLES]
        if unknown:
            raise ValueError(f"Unknown municipal role(s) {unknown}. Must be drawn from: {list(MUNICIPAL_ROLES)}")
        return list(dict.fromkeys(v))

    @field_validator("action_types")
    @classmethod
    def validate_action_types(cls, v: List[str]) -> List[str]:
        unknown = [t for t in v if t not in ACTION_TYPES]
        if unknown:
            raise ValueError(f"Unknown action type(s) {unknown}. Must be drawn from: {list(ACTION_TYPES)}")
        return list(dict.fromkeys(v))


class RelevanceJudgment(BaseModel):
    """Narrow yes/no answer to "does this operationally affect municipal government?"."""
    relevant: bool
    confidence: Literal["low", "medium", "high"]
    reason: str = ""

    @property
    def admits(self) -> bool:
        # A low-confidence yes is still a no
        return self.relevant and self.confidence in ("medium", "high")


# ── Lenient mapping onto the vocabularies ──

_LEADING_TOKEN = re.compile(r"[a-z_]+")


def _clamp_choice(value: Any, vocabulary: tuple[str, ...]) -> Any:
    if not isinstance(value, str):
        return value
    lowered = value.strip().lower()
    if lowered in vocabulary:
        return lowered
    match = _LEADING_TOKEN.match(lowered)
    if match and match.group(0) in vocabulary:
        return match.group(0)
    return value


def _clamp_members(values: Any, vocabulary: tuple[str, ...], fold=str.lower) -> Any:
    if not isinstance(values, list):
        return values
    lookup = {fold(term): term for term in vocabulary}
    kept = []
    for v in values:
        if isinstance(v, str):
            key = fold(v.strip())
            if key in lookup:
                kept.append(lookup[key])
    return kept


def clamp_analysis_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Map near-miss enum values onto their vocabularies; drop unknown set members."""
    clamped = dict(data)
    for name, vocabulary in (("what_to_do", WHAT_TO_DO), ("urgency", URGENCY_LEVELS), ("confidence", CONFIDENCE_LEVELS)):
        if name in clamped:
            clamped[name] = _clamp_choice(clamped[name], vocabulary)
    if "who_should_care" in clamped:
        clamped["who_should_care"] = _clamp_members(clamped["who_should_care"], MUNICIPAL_ROLES)
    if "action_types" in clamped:
        clamped["action_types"] = _clamp_members(
            clamped["action_types"], ACTION_TYPES,
            fold=lambda s: s.lower().replace(" ", "_").replace("-", "_"),
        )
    return clamped
