from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from muni_core.models import RunResult, RunStats
from muni_core.utils import get_cost_summary

console = Console()

URGENCY_COLORS = {"high": "red", "medium": "yellow", "low": "green"}


def _text(value: Any) -> str:
    """Page and engine text rendered literally inside markup."""
    return escape(str(value))


def display_brief(brief: dict[str, Any]) -> None:
    """
    Display one stored brief in the console with color-coded formatting.

    Args:
        brief: Brief row as returned by Store.get_brief / Store.list_briefs

    Color Coding:
        - urgency high: RED panel border
        - urgency medium: YELLOW panel border
        - urgency low: GREEN panel border
    """
    urgency = brief.get("urgency", "low")
    color = URGENCY_COLORS.get(urgency, "white")

    metadata_lines = [
        f"[cyan]Bill:[/cyan] {_text(brief.get('bill_number', 'Unknown'))}",
        f"[cyan]Status:[/cyan] {_text(brief.get('current_status', 'Unknown'))}",
    ]
    if brief.get("action_text"):
        metadata_lines.append(f"[cyan]Action:[/cyan] {_text(brief['action_date'])} - {_text(brief['action_text'])}")
    metadata_lines.append(f"[cyan]Link:[/cyan] {_text(brief.get('url', ''))}")
    metadata_lines.append(f"[dim]Brief {_text(brief.get('brief_id'))} · {_text(brief.get('created_at'))}[/dim]")

    steps = brief.get("recommended_next_steps") or []
    steps_text = "\n".join(f"  • {_text(s)}" for s in steps) or "  • None"

    content = f"""
[bold]{_text(brief.get('title', 'Unknown Title'))}[/bold]

{chr(10).join(metadata_lines)}

[bold]Summary:[/bold]
{_text(brief.get('summary', ''))}

[bold]Why It Matters:[/bold]
{_text(brief.get('why_it_matters', ''))}

[cyan]Who Should Care:[/cyan] {_text(', '.join(brief.get('who_should_care') or ['None']))}
[cyan]Action Types:[/cyan] {_text(', '.join(brief.get('action_types') or ['None']))}
[cyan]Confidence:[/cyan] {_text(brief.get('confidence', 'N/A'))}

[bold]What To Do:[/bold] {_text(brief.get('what_to_do', 'N/A')).upper()}
{steps_text}"""

    if brief.get("model_notes"):
        content += f"\n\n[dim]Notes: {_text(brief['model_notes'])}[/dim]"

    console.print(Panel(content, title=f"[{color}]{urgency.upper()} URGENCY[/{color}]", border_style=color))


def display_briefs_table(briefs: list[dict[str, Any]]) -> None:
    if not briefs:
        console.print("[yellow]No briefs stored yet.[/yellow]")
        return

    table = Table(title=f"Briefs ({len(briefs)})")
    table.add_column("Brief ID", style="dim", no_wrap=True)
    table.add_column("Bill", style="cyan")
    table.add_column("Title")
    table.add_column("What To Do")
    table.add_column("Urgency")
    table.add_column("Created", style="dim")

    for b in briefs:
        color = URGENCY_COLORS.get(b.get("urgency"), "white")
        table.add_row(
            b["brief_id"],
            b.get("bill_number", ""),
            _text((b.get("title") or "")[:60]),
            _text(b.get("what_to_do", "")),
            f"[{color}]{_text(b.get('urgency', ''))}[/{color}]",
            b.get("created_at", ""),
        )
    console.print(table)


def display_progress(stats: RunStats, total: int) -> None:
    console.print(
        f"[dim]  Progress {stats.checked}/{total}: found {stats.found}, "
        f"keyword {stats.passed_keyword_filter}, semantic {stats.passed_semantic_filter}, "
        f"updated {stats.updated}, briefs {stats.briefs_created}, errors {len(stats.errors)}[/dim]"
    )


def display_run_summary(result: RunResult) -> None:
    stats = result.stats
    console.print("\n[bold]Run Summary:[/bold]")
    console.print(f"  Status:            {result.status} ({'success' if result.success else 'with errors'})")
    console.print(f"  Bills Checked:     {stats.checked}")
    console.print(f"  Bills Found:       {stats.found}")
    console.print(f"  Bills Updated:     {stats.updated}")
    console.print(f"  Keyword Filter:    {stats.passed_keyword_filter}")
    console.print(f"  Semantic Filter:   {stats.passed_semantic_filter}")
    console.print(f"  Briefs Created:    {stats.briefs_created}")
    console.print(f"  Errors:            {len(stats.errors)}")

    for err in stats.errors[:10]:
        console.print(f"[red]    {_text(err.identifier)} \\[{_text(err.stage)}] {_text(err.message)}[/red]")
    if len(stats.errors) > 10:
        console.print(f"[red]    ... and {len(stats.errors) - 10} more[/red]")

    cost_summary = get_cost_summary()
    if cost_summary['total_calls'] > 0:
        console.print(f"\n[bold]LLM Cost Estimate:[/bold]")
        console.print(f"  Total Calls:      {cost_summary['total_calls']}")
        console.print(f"  Input Tokens:     {cost_summary['total_input_tokens']:,}")
        console.print(f"  Output Tokens:    {cost_summary['total_output_tokens']:,}")
        console.print(f"  Estimated Cost:   ${cost_summary['estimated_cost_usd']:.4f}")
