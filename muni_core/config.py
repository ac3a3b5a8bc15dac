import copy
import os
from typing import Any

import yaml
from rich.console import Console

console = Console()

DEFAULT_CONFIG: dict[str, Any] = {
    "source": {
        "name": "Massachusetts Legislature",
        "jurisdiction": "MA",
        "base_url": "https://malegislature.gov",
        "session": "194",
        "session_label": "2025-2026",
        "timeout": 30.0,
        "user_agent": "Municipal-Brief-Tracker/1.0",
    },
    "pipeline": {
        "batch_size": 10,
        "batch_pause": 1.0,
        "progress_every": 100,
        "analysis_mode": "bill",       # bill | action
        "admission": "topical",        # topical | trigger
        "seen_policy": "on_accept",    # on_accept | on_success
        "max_text_chars": 30000,
    },
    "llm": {
        "provider": "anthropic",
        "anthropic": {"model": "claude-sonnet-4-20250514"},
        "openai": {"model": "gpt-4o"},
        "gemini": {"model": "gemini-2.5-flash"},
        "timeout": 120.0,
        "relevance_max_tokens": 300,
        "analysis_max_tokens": 4000,
        "vocabulary_policy": "reject",  # reject | clamp
    },
    "keywords": {"extra": [], "replace": False},
    "triggers": {"phrases": []},
    "database": {"path": "muni_briefs.db"},
    "debug": {"llm_responses": False},
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = "config.yaml") -> dict[str, Any]:
    """
    From config.yaml, layered over DEFAULT_CONFIG so partial files work.

    Args:
        config_path: Path to config file (default: config.yaml)

    Returns:
        Configuration dictionary
    """
    try:
        with open(config_path, "r") as f:
            return _deep_merge(DEFAULT_CONFIG, yaml.safe_load(f) or {})
    except FileNotFoundError:
        console.print(f"[yellow]Warning: {config_path} not found. Using default config.[/yellow]")
        return copy.deepcopy(DEFAULT_CONFIG)


def get_api_keys() -> dict[str, str]:
    return {
        "anthropic": os.getenv("ANTHROPIC_API_KEY", ""),
        "openai": os.getenv("OPENAI_API_KEY", ""),
        "google": os.getenv("GOOGLE_API_KEY", ""),
    }
