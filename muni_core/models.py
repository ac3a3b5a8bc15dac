from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from muni_core.schemas import Analysis


# =============================================================================
# SNAPSHOT MODELS
# =============================================================================

@dataclass(frozen=True)
class ActionRecord:
    """One row of a bill's published action history."""
    date: str                      # As published: "1/1/2025"
    branch: str                    # "House", "Senate", "Joint", "Executive"
    text: str

    def to_dict(self) -> dict:
        return {'date': self.date, 'branch': self.branch, 'action': self.text}


@dataclass(frozen=True)
class BillSnapshot:
    """One bill at one observation time.

    action_history keeps the order the source publishes it in. That order is
    chronological within a bill and means nothing across bills."""
    identifier: str                # "H.1", "S.42" - never reassigned
    title: str
    current_status: str
    source_url: str
    action_history: tuple = ()     # tuple[ActionRecord, ...]
    full_text: Optional[str] = None

    @property
    def analysis_text(self) -> str:
        """Full text when we have it, otherwise the status text as a surrogate."""
        return self.full_text or self.current_status

    @property
    def screening_text(self) -> str:
        return f"{self.title} {self.current_status}"

    def with_full_text(self, full_text: Optional[str]) -> "BillSnapshot":
        return replace(self, full_text=full_text)

    def to_dict(self) -> dict:
        return {
            'identifier': self.identifier,
            'title': self.title,
            'current_status': self.current_status,
            'url': self.source_url,
            'history': [a.to_dict() for a in self.action_history],
            'has_full_text': self.full_text is not None,
        }


@dataclass(frozen=True)
class FetchedPage:
    html: str
    url: str


# =============================================================================
# IDENTITY / CHANGE MODELS
# =============================================================================

class ChangeStatus(Enum):
    NEW = "new"
    UNCHANGED = "unchanged"
    UPDATED = "updated"


@dataclass(frozen=True)
class ActionFingerprint:
    item_id: str                   # stable identity of (bill, date, action)
    content_hash: str              # detects corrections to the action text


@dataclass
class SeenState:
    item_id: str
    content_hash: str
    last_seen_at: str
    bill_identifier: Optional[str] = None


@dataclass(frozen=True)
class ActionChange:
    """An action that survived change detection."""
    action: ActionRecord
    fingerprint: ActionFingerprint
    status: ChangeStatus


# =============================================================================
# OUTPUT MODELS
# =============================================================================

@dataclass(frozen=True)
class Brief:
    """Immutable impact brief. brief_id is generated per creation, never reused."""
    brief_id: str
    created_at: str
    bill_identifier: str
    analysis: "Analysis"
    source_text: str
    source_text_sha256: str
    action: Optional[ActionRecord] = None
    mode: str = "bill"             # "bill" (holistic) or "action" (per-action)
    bill_id: Optional[int] = None  # storage row id, set once persisted

    def to_dict(self) -> dict:
        return {
            'brief_id': self.brief_id,
            'created_at': self.created_at,
            'bill_identifier': self.bill_identifier,
            'bill_id': self.bill_id,
            'mode': self.mode,
            'action': self.action.to_dict() if self.action else None,
            'source_text_sha256': self.source_text_sha256,
            'analysis': self.analysis.model_dump(),
        }


@dataclass(frozen=True)
class ErrorRecord:
    identifier: str
    stage: str
    message: str

    def to_dict(self) -> dict:
        return {'identifier': self.identifier, 'stage': self.stage, 'message': self.message}


@dataclass
class RunStats:
    """Counters for one run. Only ever incremented."""
    checked: int = 0
    found: int = 0
    passed_keyword_filter: int = 0
    passed_semantic_filter: int = 0
    updated: int = 0
    briefs_created: int = 0
    errors: list = field(default_factory=list)   # list[ErrorRecord]

    def record_error(self, identifier: str, stage: str, message: str) -> ErrorRecord:
        record = ErrorRecord(identifier=identifier, stage=stage, message=message)
        self.errors.append(record)
        return record

    def snapshot(self) -> dict[str, int]:
        return {
            'checked': self.checked,
            'found': self.found,
            'passed_keyword_filter': self.passed_keyword_filter,
            'passed_semantic_filter': self.passed_semantic_filter,
            'updated': self.updated,
            'briefs_created': self.briefs_created,
            'errors': len(self.errors),
        }


@dataclass
class RunResult:
    """Aggregate outcome of one pipeline run.

    status describes whether the run executed; success only means that no
    candidate recorded an error. Callers should read errors for specifics."""
    run_id: Optional[int]
    started_at: datetime
    completed_at: Optional[datetime]
    status: str
    stats: RunStats
    briefs: list = field(default_factory=list)   # list[Brief]

    @property
    def success(self) -> bool:
        return len(self.stats.errors) == 0

    @property
    def errors(self) -> list:
        return self.stats.errors

    def to_dict(self) -> dict[str, Any]:
        counts = self.stats.snapshot()
        counts['error_count'] = counts.pop('errors')
        return {
            'run_id': self.run_id,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'status': self.status,
            'success': self.success,
            **counts,
            'errors': [e.to_dict() for e in self.stats.errors],
            'briefs': [b.to_dict() for b in self.briefs],
        }
