import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol

from rich.console import Console
from rich.markup import escape

from muni_core.analysis.briefs import BriefGenerator
from muni_core.analysis.changes import ChangeDetector
from muni_core.analysis.llm import LLMClient, create_llm_client
from muni_core.analysis.relevance import (
    ADMISSION_MODES,
    ADMISSION_TOPICAL,
    KeywordFilter,
    SemanticFilter,
    TriggerFilter,
)
from muni_core.api.malegislature import LegislatureClient
from muni_core.config import DEFAULT_CONFIG, get_api_keys
from muni_core.db.store import Store
from muni_core.exceptions import NotFoundError
from muni_core.models import ActionChange, BillSnapshot, Brief, FetchedPage, RunResult, RunStats
from muni_core.normalizer import normalize_text, parse_bill_page
from muni_core.reports.display import display_progress, display_run_summary
from muni_core.utils import reset_cost_tracker

logger = logging.getLogger(__name__)
console = Console()

# Per-candidate stages, as recorded on ErrorRecord
STAGE_FETCH = "fetch"
STAGE_NORMALIZE = "normalize"
STAGE_DETECT = "detect"
STAGE_FILTER = "filter"
STAGE_FETCH_TEXT = "fetch_text"
STAGE_ANALYZE = "analyze"
STAGE_PERSIST = "persist"

MODE_BILL = "bill"
MODE_ACTION = "action"
ANALYSIS_MODES = (MODE_BILL, MODE_ACTION)


class Fetcher(Protocol):
    async def fetch_bill_page(self, bill_number: str) -> FetchedPage: ...

    async def fetch_full_text(self, bill_number: str) -> Optional[str]: ...


def generate_bill_numbers(house: int = 5000, senate: int = 3000) -> list[str]:
    """Every candidate for a full sweep: H1..H{house}, then S1..S{senate}."""
    bills = [f"H{i}" for i in range(1, house + 1)]
    bills.extend(f"S{i}" for i in range(1, senate + 1))
    logger.info("Generated %d bill numbers", len(bills))
    return bills


def dedupe_candidates(candidates: Iterable[str]) -> list[str]:
    """Strip blanks and duplicates, keeping first-seen order."""
    return list(dict.fromkeys(c.strip() for c in candidates if c and c.strip()))


class RunCoordinator:
    """
    Drives one pipeline pass over a candidate set.

    Each candidate runs fetch -> normalize -> detect -> filter -> analyze ->
    persist strictly in order. Candidates run concurrently within a batch of
    batch_size, batches run one after another with a short pause between them.
    Any error inside one candidate is recorded against its current stage and
    never reaches siblings.
    """

    def __init__(self, fetcher: Fetcher, store: Store, llm: LLMClient, config: Optional[dict[str, Any]] = None):
        config = config or DEFAULT_CONFIG
        pipeline = {**DEFAULT_CONFIG["pipeline"], **config.get("pipeline", {})}
        llm_config = {**DEFAULT_CONFIG["llm"], **config.get("llm", {})}

        self.analysis_mode = pipeline["analysis_mode"]
        self.admission = pipeline["admission"]
        if self.analysis_mode not in ANALYSIS_MODES:
            raise ValueError(f"Unknown analysis_mode {self.analysis_mode!r}. Expected one of {ANALYSIS_MODES}")
        if self.admission not in ADMISSION_MODES:
            raise ValueError(f"Unknown admission {self.admission!r}. Expected one of {ADMISSION_MODES}")

        self.batch_size = max(1, int(pipeline["batch_size"]))
        self.batch_pause = float(pipeline["batch_pause"])
        self.progress_every = max(1, int(pipeline["progress_every"]))
        self.max_text_chars = int(pipeline["max_text_chars"])

        self.fetcher = fetcher
        self.store = store
        self.detector = ChangeDetector(store, pipeline["seen_policy"])
        self.keyword_filter = KeywordFilter.from_config(config)
        self.trigger_filter = TriggerFilter.from_config(config)
        self.semantic_filter = SemanticFilter(llm, llm_config["relevance_max_tokens"])
        self.generator = BriefGenerator(llm, llm_config["analysis_max_tokens"], llm_config["vocabulary_policy"])

    @property
    def settles_on_accept(self) -> bool:
        return self.detector.settles_on_accept

    async def run(self, candidates: Iterable[str]) -> RunResult:
        """
        Process every candidate and persist the run record.

        Raises:
            ValueError: If no candidates remain after de-duplication
        """
        candidates = dedupe_candidates(candidates)
        if not candidates:
            raise ValueError("candidate list is empty")

        started_at = datetime.now(timezone.utc)
        run_id = self.store.start_run(started_at)
        stats = RunStats()
        briefs: list[Brief] = []
        logger.info("Run %s started with %d candidates", run_id, len(candidates))

        next_progress = self.progress_every
        for start in range(0, len(candidates), self.batch_size):
            batch = candidates[start:start + self.batch_size]
            results = await asyncio.gather(*(self.process_candidate(c, stats) for c in batch))
            for created in results:
                briefs.extend(created)

            if stats.checked >= next_progress:
                display_progress(stats, len(candidates))
                next_progress = (stats.checked // self.progress_every + 1) * self.progress_every

            if start + self.batch_size < len(candidates) and self.batch_pause > 0:
                await asyncio.sleep(self.batch_pause)

        completed_at = datetime.now(timezone.utc)
        self.store.finish_run(run_id, stats, completed_at, status="completed")
        logger.info("Run %s completed: %s", run_id, stats.snapshot())
        return RunResult(
            run_id=run_id,
            started_at=started_at,
            completed_at=completed_at,
            status="completed",
            stats=stats,
            briefs=briefs,
        )

    async def process_candidate(self, identifier: str, stats: RunStats) -> list[Brief]:
        """
        Run one candidate through the pipeline.

        Returns:
            Briefs created for this candidate (possibly partial when a later
            action failed in per-action mode)
        """
        stage = STAGE_FETCH
        created: list[Brief] = []
        stats.checked += 1
        try:
            try:
                page = await self.fetcher.fetch_bill_page(identifier)
            except NotFoundError:
                logger.debug("%s not found", identifier)
                return created
            stats.found += 1

            stage = STAGE_NORMALIZE
            snapshot = parse_bill_page(page.html, page.url)

            stage = STAGE_DETECT
            changes: list[ActionChange] = []
            new_rows = []
            if self.analysis_mode == MODE_BILL:
                changed = self.detector.bill_has_changes(snapshot)
                new_rows = self.detector.new_history_rows(snapshot) if changed else []
            else:
                changes = self.detector.detect(snapshot)
                changed = bool(changes)

            stage = STAGE_PERSIST
            # Whole-bill mode settles through BillHistory, so under on_success
            # the history insert waits for a terminal outcome
            include_history = self.analysis_mode == MODE_ACTION or self.settles_on_accept
            bill_id = self.store.record_bill(snapshot, include_history=include_history)

            if not changed:
                console.print(f"[dim]  ✓ No changes: {escape(snapshot.identifier)}[/dim]")
                return created
            stats.updated += 1

            stage = STAGE_FILTER
            if self.admission == ADMISSION_TOPICAL:
                if not self.keyword_filter.passes(snapshot):
                    self._settle(snapshot, bill_id, changes)
                    return created
                stats.passed_keyword_filter += 1

                if not await self.semantic_filter.passes(snapshot):
                    console.print(f"[dim]  ✗ Not municipally relevant: {escape(snapshot.identifier)}[/dim]")
                    self._settle(snapshot, bill_id, changes)
                    return created
                stats.passed_semantic_filter += 1
                targets = changes if self.analysis_mode == MODE_ACTION else [None]
            else:
                if self.analysis_mode == MODE_ACTION:
                    targets = [c for c in changes if self.trigger_filter.matches(c.action.text)]
                    self._settle(snapshot, bill_id, [c for c in changes if c not in targets])
                else:
                    targets = [None] if self.trigger_filter.select(new_rows) else []
                    if not targets:
                        self._settle(snapshot, bill_id, [])
                if not targets:
                    return created
                stats.passed_keyword_filter += 1

            console.print(f"[yellow]  ⚠️  CHANGED: {escape(snapshot.identifier)} - analyzing[/yellow]")

            stage = STAGE_FETCH_TEXT
            raw_text = await self.fetcher.fetch_full_text(identifier)
            snapshot = snapshot.with_full_text(normalize_text(raw_text, max_chars=self.max_text_chars))

            for target in targets:
                stage = STAGE_ANALYZE
                brief = await self.generator.generate(snapshot, target.action if target else None)

                stage = STAGE_PERSIST
                self.store.save_brief(brief, bill_id)
                created.append(replace(brief, bill_id=bill_id))
                stats.briefs_created += 1
                if target is not None:
                    self._settle(snapshot, bill_id, [target])

            if self.analysis_mode == MODE_BILL:
                self._settle(snapshot, bill_id, [])
            console.print(f"[green]  ✨ {len(created)} brief(s) for {escape(snapshot.identifier)}[/green]")
            return created

        except Exception as e:
            stats.record_error(identifier, stage, str(e))
            logger.error("%s failed at %s: %s", identifier, stage, e)
            console.print(f"[red]  ✗ {escape(identifier)} failed at {stage}: {escape(str(e))}[/red]")
            return created

    def _settle(self, snapshot: BillSnapshot, bill_id: int, changes: list[ActionChange]) -> None:
        """Mark a terminal outcome. A no-op under on_accept, which settled at detection."""
        if self.settles_on_accept:
            return
        if self.analysis_mode == MODE_BILL:
            self.store.insert_history(bill_id, snapshot.action_history)
        elif changes:
            self.detector.settle(snapshot.identifier, changes)


async def run_collection(
    candidates: Iterable[str],
    config: dict[str, Any],
    store: Optional[Store] = None,
    llm: Optional[LLMClient] = None,
    fetcher: Optional[Fetcher] = None,
) -> RunResult:
    """
    1. Configuration - open the store and the engine client
    2. Collection - fetch, detect, filter and analyze every candidate
    3. Summary - print run counts and the LLM cost estimate
    """
    console.print("\n[bold magenta]═══════════════════════════════════════════════[/bold magenta]")
    console.print("[bold magenta]  Municipal Bill Tracker  [/bold magenta]")
    console.print("[bold magenta]═══════════════════════════════════════════════[/bold magenta]\n")

    pipeline = config.get("pipeline", {})
    provider = config.get("llm", {}).get("provider", "anthropic")
    console.print("[bold cyan]🔧 Configuration:[/bold cyan]")
    console.print(f"  LLM Provider: {provider.upper()} ({config['llm'][provider]['model']})")
    console.print(f"  Analysis Mode: {pipeline.get('analysis_mode')}  Admission: {pipeline.get('admission')}")
    console.print(f"  Seen Policy: {pipeline.get('seen_policy')}")
    console.print()

    reset_cost_tracker()
    owns_store = store is None
    if store is None:
        db_path = config.get("database", {}).get("path", DEFAULT_CONFIG["database"]["path"])
        store = Store.open(db_path, session_label=config["source"]["session_label"])
        console.print(f"[green]✓ Database ready: {db_path}[/green]")
    if llm is None:
        llm = create_llm_client(config, get_api_keys())

    owned_fetcher: Optional[LegislatureClient] = None
    if fetcher is None:
        owned_fetcher = fetcher = LegislatureClient(config.get("source"))

    try:
        coordinator = RunCoordinator(fetcher, store, llm, config)
        result = await coordinator.run(candidates)
    finally:
        if owned_fetcher is not None:
            await owned_fetcher.aclose()
        if owns_store:
            store.close()

    display_run_summary(result)
    return result
