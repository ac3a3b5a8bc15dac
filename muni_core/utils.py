import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone


# =============================================================================
# TEXT HELPERS
# =============================================================================

_WHITESPACE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def compute_text_hash(text: str) -> str:
    """SHA-256 hex digest of text. Empty/None text hashes as the empty string."""
    return hashlib.sha256((text or "").encode('utf-8')).hexdigest()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

# =============================================================================
# ENGINE COST ESTIMATE
# =============================================================================
# Token counts are estimated from prompt and response length.

# USD per 1K tokens (input, output)
LLM_COSTS: dict[str, tuple[float, float]] = {
    "claude-sonnet-4-20250514": (0.003, 0.015),
    "gpt-4o": (0.0025, 0.01),
    "gemini-2.5-flash": (0.0003, 0.0025),
}
DEFAULT_LLM_COST: tuple[float, float] = LLM_COSTS["claude-sonnet-4-20250514"]


@dataclass(frozen=True)
class LLMUsage:
    """Estimated usage of one engine call."""
    model: str
    input_tokens: int
    output_tokens: int

    @property
    def estimated_cost(self) -> float:
        input_rate, output_rate = LLM_COSTS.get(self.model, DEFAULT_LLM_COST)
        return (self.input_tokens * input_rate + self.output_tokens * output_rate) / 1000


@dataclass
class CostTracker:
    """Engine usage for the current run."""
    usages: list = field(default_factory=list)   # list[LLMUsage]

    def add(self, model: str, input_tokens: int, output_tokens: int) -> LLMUsage:
        usage = LLMUsage(model=model, input_tokens=input_tokens, output_tokens=output_tokens)
        self.usages.append(usage)
        return usage

    def summary(self) -> dict:
        return {
            "total_calls": len(self.usages),
            "models": sorted({u.model for u in self.usages}),
            "total_input_tokens": sum(u.input_tokens for u in self.usages),
            "total_output_tokens": sum(u.output_tokens for u in self.usages),
            "estimated_cost_usd": round(sum(u.estimated_cost for u in self.usages), 4),
        }


def estimate_tokens(text: str) -> int:
    """Roughly four characters per token for English prose."""
    return len(text or "") // 4


cost_tracker = CostTracker()


def log_llm_cost(model: str, prompt: str, response_text: str) -> LLMUsage:
    return cost_tracker.add(model, estimate_tokens(prompt), estimate_tokens(response_text))


def get_cost_summary() -> dict:
    return cost_tracker.summary()


def reset_cost_tracker() -> None:
    """Start a fresh estimate, once per run."""
    global cost_tracker
    cost_tracker = CostTracker()
