import hashlib
import logging
import re
from typing import Iterable

from muni_core.db.store import Store
from muni_core.models import (
    ActionChange,
    ActionFingerprint,
    ActionRecord,
    BillSnapshot,
    ChangeStatus,
    SeenState,
)
from muni_core.utils import collapse_whitespace, compute_text_hash, utc_now_iso

logger = logging.getLogger(__name__)

# Settlement policies
SEEN_ON_ACCEPT: str = "on_accept"
SEEN_ON_SUCCESS: str = "on_success"
SEEN_POLICIES: tuple[str, ...] = (SEEN_ON_ACCEPT, SEEN_ON_SUCCESS)

_IDENTITY_TOKEN = re.compile(r"[^\W_]+")
_FIELD_SEPARATOR = "\x1f"


def normalize_identity_text(text: str) -> str:
    """
    Case-fold and reduce to alphanumeric tokens.

    Strong enough that republishing an action with different case, spacing or
    punctuation yields the same item_id.
    """
    return " ".join(_IDENTITY_TOKEN.findall((text or "").casefold()))


def normalize_content_text(text: str) -> str:
    """Case-fold and collapse whitespace, keeping punctuation."""
    return collapse_whitespace((text or "").casefold())


def fingerprint_action(identifier: str, action_date: str, action_text: str) -> ActionFingerprint:
    """
    Derive the identity and content fingerprint of one action.

    item_id is sha256 over the three identity-normalized fields, so it is
    stable across runs. content_hash only covers the action text and uses a
    weaker normalization, so a correction the identity ignores (e.g.
    punctuation) still reads as an update.
    """
    identity = _FIELD_SEPARATOR.join(
        normalize_identity_text(part) for part in (identifier, action_date, action_text)
    )
    return ActionFingerprint(
        item_id=hashlib.sha256(identity.encode("utf-8")).hexdigest(),
        content_hash=compute_text_hash(normalize_content_text(action_text)),
    )


class ChangeDetector:
    """
    Classify a snapshot's actions against persisted state.

    Per-action mode compares fingerprints with SeenState; whole-bill mode asks
    whether every history row already exists verbatim in BillHistory. Nothing
    here keeps in-process state; all memory lives in the store.
    """

    def __init__(self, store: Store, seen_policy: str = SEEN_ON_ACCEPT):
        if seen_policy not in SEEN_POLICIES:
            raise ValueError(f"Unknown seen_policy {seen_policy!r}. Expected one of {SEEN_POLICIES}")
        self.store = store
        self.seen_policy = seen_policy

    @property
    def settles_on_accept(self) -> bool:
        return self.seen_policy == SEEN_ON_ACCEPT

    def classify(self, snapshot: BillSnapshot) -> list[ActionChange]:
        """
        Classify every distinct action in the snapshot.

        An action the source republishes within one page is classified once.
        """
        seen_ids: set[str] = set()
        results: list[ActionChange] = []
        for action in snapshot.action_history:
            fingerprint = fingerprint_action(snapshot.identifier, action.date, action.text)
            if fingerprint.item_id in seen_ids:
                continue
            seen_ids.add(fingerprint.item_id)

            state = self.store.get_seen_state(fingerprint.item_id)
            if state is None:
                status = ChangeStatus.NEW
            elif state.content_hash != fingerprint.content_hash:
                status = ChangeStatus.UPDATED
            else:
                status = ChangeStatus.UNCHANGED
            results.append(ActionChange(action=action, fingerprint=fingerprint, status=status))
        return results

    def detect(self, snapshot: BillSnapshot) -> list[ActionChange]:
        """
        Return the new and updated actions of a snapshot.

        Under the on_accept policy the returned actions are settled right away,
        so a later failure downstream will not bring them back.
        """
        candidates = [c for c in self.classify(snapshot) if c.status is not ChangeStatus.UNCHANGED]
        if candidates:
            logger.info(
                "%s: %d new, %d updated action(s)",
                snapshot.identifier,
                sum(1 for c in candidates if c.status is ChangeStatus.NEW),
                sum(1 for c in candidates if c.status is ChangeStatus.UPDATED),
            )
            if self.settles_on_accept:
                self.settle(snapshot.identifier, candidates)
        return candidates

    def settle(self, identifier: str, changes: Iterable[ActionChange]) -> None:
        """Record the changes' fingerprints as seen."""
        now = utc_now_iso()
        states = [
            SeenState(
                item_id=c.fingerprint.item_id,
                content_hash=c.fingerprint.content_hash,
                last_seen_at=now,
                bill_identifier=identifier,
            )
            for c in changes
        ]
        if states:
            self.store.upsert_seen_states(states)

    def new_history_rows(self, snapshot: BillSnapshot) -> list[ActionRecord]:
        return self.store.missing_actions(snapshot.identifier, snapshot.action_history)

    def bill_has_changes(self, snapshot: BillSnapshot) -> bool:
        """
        Whole-bill change check.

        A bill never stored before counts as changed. Otherwise it changed if
        any history row is missing verbatim from persisted history.
        """
        if self.store.get_bill(snapshot.identifier) is None:
            return True
        return bool(self.new_history_rows(snapshot))
