import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional

from muni_core.exceptions import PersistenceError
from muni_core.models import ActionRecord, BillSnapshot, Brief, RunStats, SeenState
from muni_core.utils import utc_now_iso

logger = logging.getLogger(__name__)


def init_database(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS bills (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            bill_number TEXT UNIQUE NOT NULL,
            session TEXT NOT NULL,
            title TEXT,
            url TEXT,
            current_status TEXT,
            last_checked TIMESTAMP,
            last_updated TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS bill_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            bill_id INTEGER NOT NULL,
            action_date TEXT NOT NULL,
            branch TEXT,
            action_text TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(bill_id, action_date, action_text),
            FOREIGN KEY (bill_id) REFERENCES bills(id) ON DELETE CASCADE
        )
    ''')

    # Keyed by item_id alone so it outlives rewrites of the bill row
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS seen_state (
            item_id TEXT PRIMARY KEY,
            content_hash TEXT NOT NULL,
            bill_number TEXT,
            first_seen_at TIMESTAMP,
            last_seen_at TIMESTAMP
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS briefs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            brief_id TEXT UNIQUE NOT NULL,
            bill_id INTEGER NOT NULL,
            mode TEXT,
            action_date TEXT,
            action_branch TEXT,
            action_text TEXT,
            summary TEXT,
            why_it_matters TEXT,
            who_should_care TEXT,
            what_to_do TEXT,
            recommended_next_steps TEXT,
            urgency TEXT,
            action_types TEXT,
            confidence TEXT,
            model_notes TEXT,
            citations TEXT,
            bill_text TEXT,
            bill_text_sha256 TEXT,
            created_at TIMESTAMP,
            FOREIGN KEY (bill_id) REFERENCES bills(id) ON DELETE CASCADE
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS scraper_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            started_at TIMESTAMP,
            completed_at TIMESTAMP,
            bills_checked INTEGER DEFAULT 0,
            bills_found INTEGER DEFAULT 0,
            passed_keyword_filter INTEGER DEFAULT 0,
            passed_semantic_filter INTEGER DEFAULT 0,
            bills_updated INTEGER DEFAULT 0,
            briefs_created INTEGER DEFAULT 0,
            errors TEXT,
            status TEXT
        )
    ''')

    # Indexes
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_bills_last_checked ON bills(last_checked)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_bill_history_bill_id ON bill_history(bill_id)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_briefs_bill_id ON briefs(bill_id)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_briefs_created ON briefs(created_at)')

    conn.commit()
    return conn


class Store:
    """
    Storage collaborator for the pipeline.

    Correctness relies on keyed upserts and the UNIQUE constraints above, not on
    in-process state, so a restarted process sees exactly what earlier runs
    settled. Bill upsert + history inserts share one transaction; a brief is
    written in its own.
    """

    def __init__(self, conn: sqlite3.Connection, session_label: str = "2025-2026"):
        self.conn = conn
        self.session_label = session_label

    @classmethod
    def open(cls, db_path: str, session_label: str = "2025-2026") -> "Store":
        return cls(init_database(db_path), session_label=session_label)

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        try:
            with self.conn:
                yield self.conn.cursor()
        except sqlite3.Error as e:
            logger.error("Transaction rolled back: %s", e)
            raise PersistenceError(str(e)) from e

    # ── Bills & history ──

    def get_bill(self, bill_number: str) -> Optional[dict[str, Any]]:
        row = self.conn.execute('SELECT * FROM bills WHERE bill_number = ?', (bill_number,)).fetchone()
        return dict(row) if row else None

    def record_bill(self, snapshot: BillSnapshot, include_history: bool = True) -> int:
        """
        Upsert the bill row and (optionally) its history in one transaction.

        last_checked always advances; last_updated only moves when title, url
        or status changed. History inserts are idempotent.

        Returns:
            The bill's row id
        """
        now = utc_now_iso()
        with self.transaction() as cursor:
            cursor.execute(
                'SELECT id, title, url, current_status FROM bills WHERE bill_number = ?',
                (snapshot.identifier,),
            )
            existing = cursor.fetchone()
            if existing is None:
                cursor.execute(
                    '''INSERT INTO bills (bill_number, session, title, url, current_status, last_checked, last_updated)
                       VALUES (?, ?, ?, ?, ?, ?, ?)''',
                    (snapshot.identifier, self.session_label, snapshot.title,
                     snapshot.source_url, snapshot.current_status, now, now),
                )
                bill_id = cursor.lastrowid
            else:
                bill_id = existing['id']
                changed = (existing['title'], existing['url'], existing['current_status']) != (
                    snapshot.title, snapshot.source_url, snapshot.current_status)
                if changed:
                    cursor.execute(
                        '''UPDATE bills SET title = ?, url = ?, current_status = ?, last_checked = ?, last_updated = ?
                           WHERE id = ?''',
                        (snapshot.title, snapshot.source_url, snapshot.current_status, now, now, bill_id),
                    )
                else:
                    cursor.execute('UPDATE bills SET last_checked = ? WHERE id = ?', (now, bill_id))

            if include_history:
                self._insert_history(cursor, bill_id, snapshot.action_history)
        return bill_id

    @staticmethod
    def _insert_history(cursor: sqlite3.Cursor, bill_id: int, actions: Iterable[ActionRecord]) -> None:
        cursor.executemany(
            '''INSERT OR IGNORE INTO bill_history (bill_id, action_date, branch, action_text)
               VALUES (?, ?, ?, ?)''',
            [(bill_id, a.date, a.branch, a.text) for a in actions],
        )

    def insert_history(self, bill_id: int, actions: Iterable[ActionRecord]) -> None:
        """Idempotent history insert for a bill already on file."""
        with self.transaction() as cursor:
            self._insert_history(cursor, bill_id, actions)

    def get_history(self, bill_id: int) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            'SELECT action_date, branch, action_text FROM bill_history WHERE bill_id = ? ORDER BY id',
            (bill_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def missing_actions(self, bill_number: str, actions: Iterable[ActionRecord]) -> list[ActionRecord]:
        """Actions with no verbatim (date, text) row in persisted history."""
        actions = list(actions)
        bill = self.get_bill(bill_number)
        if bill is None:
            return actions
        missing = []
        for action in actions:
            row = self.conn.execute(
                'SELECT 1 FROM bill_history WHERE bill_id = ? AND action_date = ? AND action_text = ?',
                (bill['id'], action.date, action.text),
            ).fetchone()
            if row is None:
                missing.append(action)
        return missing

    def count_bills(self) -> int:
        return self.conn.execute('SELECT COUNT(*) FROM bills').fetchone()[0]

    # ── Seen state ──

    def get_seen_state(self, item_id: str) -> Optional[SeenState]:
        row = self.conn.execute(
            'SELECT item_id, content_hash, last_seen_at, bill_number FROM seen_state WHERE item_id = ?',
            (item_id,),
        ).fetchone()
        if row is None:
            return None
        return SeenState(
            item_id=row['item_id'],
            content_hash=row['content_hash'],
            last_seen_at=row['last_seen_at'],
            bill_identifier=row['bill_number'],
        )

    def upsert_seen_states(self, states: Iterable[SeenState]) -> None:
        with self.transaction() as cursor:
            cursor.executemany(
                '''INSERT INTO seen_state (item_id, content_hash, bill_number, first_seen_at, last_seen_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(item_id) DO UPDATE SET
                       content_hash = excluded.content_hash,
                       last_seen_at = excluded.last_seen_at''',
                [(s.item_id, s.content_hash, s.bill_identifier, s.last_seen_at, s.last_seen_at) for s in states],
            )

    # ── Briefs ──

    def save_brief(self, brief: Brief, bill_id: int) -> None:
        analysis = brief.analysis
        action = brief.action
        with self.transaction() as cursor:
            cursor.execute(
                '''INSERT INTO briefs (
                       brief_id, bill_id, mode, action_date, action_branch, action_text,
                       summary, why_it_matters, who_should_care, what_to_do, recommended_next_steps,
                       urgency, action_types, confidence, model_notes, citations,
                       bill_text, bill_text_sha256, created_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                (
                    brief.brief_id, bill_id, brief.mode,
                    action.date if action else None,
                    action.branch if action else None,
                    action.text if action else None,
                    analysis.summary,
                    analysis.why_it_matters,
                    json.dumps(analysis.who_should_care),
                    analysis.what_to_do,
                    json.dumps(analysis.recommended_next_steps),
                    analysis.urgency,
                    json.dumps(analysis.action_types),
                    analysis.confidence,
                    analysis.model_notes,
                    json.dumps([c.model_dump() for c in analysis.citations]),
                    brief.source_text,
                    brief.source_text_sha256,
                    brief.created_at,
                ),
            )
        logger.info("Brief stored: %s (%s)", brief.brief_id, brief.bill_identifier)

    def _brief_row(self, row: sqlite3.Row) -> dict[str, Any]:
        brief = dict(row)
        for key in ('who_should_care', 'recommended_next_steps', 'action_types', 'citations'):
            brief[key] = json.loads(brief[key]) if brief.get(key) else []
        return brief

    _BRIEF_SELECT = '''
        SELECT b.*, bills.bill_number, bills.title, bills.url, bills.current_status, bills.session
        FROM briefs b
        JOIN bills ON b.bill_id = bills.id
    '''

    def get_brief(self, brief_id: str) -> Optional[dict[str, Any]]:
        row = self.conn.execute(self._BRIEF_SELECT + ' WHERE b.brief_id = ?', (brief_id,)).fetchone()
        return self._brief_row(row) if row else None

    def list_briefs(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        sql = self._BRIEF_SELECT + ' ORDER BY b.created_at DESC, b.id DESC'
        params: tuple = ()
        if limit is not None:
            sql += ' LIMIT ?'
            params = (limit,)
        return [self._brief_row(r) for r in self.conn.execute(sql, params).fetchall()]

    # ── Runs ──

    def start_run(self, started_at: datetime) -> int:
        with self.transaction() as cursor:
            cursor.execute(
                'INSERT INTO scraper_runs (started_at, status) VALUES (?, ?)',
                (started_at.isoformat(), 'running'),
            )
            return cursor.lastrowid

    def finish_run(self, run_id: int, stats: RunStats, completed_at: datetime, status: str = 'completed') -> None:
        with self.transaction() as cursor:
            cursor.execute(
                '''UPDATE scraper_runs
                   SET completed_at = ?, bills_checked = ?, bills_found = ?, passed_keyword_filter = ?,
                       passed_semantic_filter = ?, bills_updated = ?, briefs_created = ?, errors = ?, status = ?
                   WHERE id = ?''',
                (
                    completed_at.isoformat(),
                    stats.checked,
                    stats.found,
                    stats.passed_keyword_filter,
                    stats.passed_semantic_filter,
                    stats.updated,
                    stats.briefs_created,
                    json.dumps([e.to_dict() for e in stats.errors]),
                    status,
                    run_id,
                ),
            )

    def get_run(self, run_id: int) -> Optional[dict[str, Any]]:
        row = self.conn.execute('SELECT * FROM scraper_runs WHERE id = ?', (run_id,)).fetchone()
        if row is None:
            return None
        run = dict(row)
        run['errors'] = json.loads(run['errors']) if run.get('errors') else []
        return run
