from .display import display_brief, display_briefs_table, display_progress, display_run_summary
from .briefs import build_brief_response, SCHEMA_VERSION

__all__ = [
    "display_brief",
    "display_briefs_table",
    "display_progress",
    "display_run_summary",
    "build_brief_response",
    "SCHEMA_VERSION",
]
