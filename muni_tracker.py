"""
Municipal Bill Tracker

Watches the Massachusetts Legislature for new or changed bill actions, screens
them for municipal relevance and writes impact briefs for municipal officials.

Usage:
    python muni_tracker.py [BILL ...] [options]

Options:
    --sweep             Check every bill number (H1-H5000, S1-S3000)
    --config FILE       Path to config file (default: config.yaml)
    --list-briefs       List stored briefs, newest first
    --show-brief ID     Show one stored brief
    --json              With --show-brief, print the v1 brief document as JSON
    --verbose           Debug logging

Examples:
    python muni_tracker.py H1 H2 S10          # Check three bills
    python muni_tracker.py --sweep            # Full daily sweep
    python muni_tracker.py --list-briefs      # Review what has been written
"""
import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv
from rich.console import Console

from muni_core.config import load_config
from muni_core.db.store import Store
from muni_core.exceptions import APIKeyMissingError
from muni_core.orchestrator import generate_bill_numbers, run_collection
from muni_core.reports.briefs import build_brief_response
from muni_core.reports.display import display_brief, display_briefs_table

load_dotenv()
console = Console()


def _open_store(config: dict) -> Store:
    return Store.open(config["database"]["path"], session_label=config["source"]["session_label"])


def _show_brief(config: dict, brief_id: str, as_json: bool) -> int:
    store = _open_store(config)
    try:
        brief = store.get_brief(brief_id)
        if brief is None:
            console.print(f"[red]Brief not found: {brief_id}[/red]")
            return 1
        if as_json:
            history = store.get_history(brief["bill_id"])
            print(json.dumps(build_brief_response(brief, history, config["source"]), indent=2))
        else:
            display_brief(brief)
    finally:
        store.close()
    return 0


def _list_briefs(config: dict, limit: int) -> int:
    store = _open_store(config)
    try:
        display_briefs_table(store.list_briefs(limit=limit))
        console.print(f"[dim]{store.count_bills()} bills on file[/dim]")
    finally:
        store.close()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Municipal Bill Tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("bills", nargs="*", help="Bill numbers to check (e.g. H1 S42)")
    parser.add_argument("--sweep", action="store_true", help="Check every bill number in the session")
    parser.add_argument("--config", default="config.yaml", help="Config file path")
    parser.add_argument("--list-briefs", action="store_true", help="List stored briefs")
    parser.add_argument("--limit", type=int, default=20, help="Rows for --list-briefs")
    parser.add_argument("--show-brief", metavar="ID", help="Show one stored brief")
    parser.add_argument("--json", action="store_true", help="Print --show-brief as a JSON document")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config(args.config)

    if args.show_brief:
        return _show_brief(config, args.show_brief, args.json)
    if args.list_briefs:
        return _list_briefs(config, args.limit)

    candidates = generate_bill_numbers() if args.sweep else args.bills
    if not candidates:
        parser.error("give bill numbers or --sweep")

    try:
        result = asyncio.run(run_collection(candidates, config))
    except APIKeyMissingError as e:
        console.print(f"[red]{e}[/red]")
        return 2

    if not result.success:
        console.print(f"[yellow]{len(result.errors)} candidate(s) unresolved; they will be retried on a later run where policy allows[/yellow]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
