from .changes import ChangeDetector, fingerprint_action, normalize_identity_text
from .relevance import (
    KeywordFilter,
    SemanticFilter,
    TriggerFilter,
    MUNICIPAL_KEYWORDS,
    TRIGGER_PHRASES,
    matches_municipal_keywords,
    matches_trigger_phrases,
)
from .llm import LLMClient, create_llm_client, parse_json_object, strip_json_fences
from .briefs import BriefGenerator, validate_analysis

__all__ = [
    "ChangeDetector",
    "fingerprint_action",
    "normalize_identity_text",
    "KeywordFilter",
    "SemanticFilter",
    "TriggerFilter",
    "MUNICIPAL_KEYWORDS",
    "TRIGGER_PHRASES",
    "matches_municipal_keywords",
    "matches_trigger_phrases",
    "LLMClient",
    "create_llm_client",
    "parse_json_object",
    "strip_json_fences",
    "BriefGenerator",
    "validate_analysis",
]
