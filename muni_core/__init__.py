# Municipal Bill Tracker Core Library
# Main entry point: from muni_core.orchestrator import run_collection

from .config import load_config, get_api_keys
from .orchestrator import RunCoordinator, run_collection, generate_bill_numbers

from .models import (
    ActionRecord,
    BillSnapshot,
    Brief,
    ErrorRecord,
    RunStats,
    RunResult,
)
from .schemas import Analysis, RelevanceJudgment

from .utils import (
    CostTracker,
    LLMUsage,
    log_llm_cost,
    get_cost_summary,
    reset_cost_tracker,
    estimate_tokens,
)

__all__ = [
    # Main entry point
    "run_collection",
    "RunCoordinator",
    "generate_bill_numbers",
    "load_config",
    "get_api_keys",
    # Models
    "ActionRecord",
    "BillSnapshot",
    "Brief",
    "ErrorRecord",
    "RunStats",
    "RunResult",
    "Analysis",
    "RelevanceJudgment",
    # Utils
    "CostTracker",
    "LLMUsage",
    "log_llm_cost",
    "get_cost_summary",
    "reset_cost_tracker",
    "estimate_tokens",
]
