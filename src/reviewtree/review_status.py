"""Per-user review marks: "pending my review" and "reviewed by me"."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from reviewtree.protocols import KeyValueStore
from reviewtree.storage import PersistenceError

logger = logging.getLogger(__name__)

PENDING_KEY = "pendingMyReviewPRs"
REVIEWED_KEY = "reviewedByMePRs"


class ReviewStatusStore:
    """Two persisted sets of pull request ids."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._pending = self._load(PENDING_KEY)
        self._reviewed = self._load(REVIEWED_KEY)

    def _load(self, key: str) -> set[int]:
        """Stored ids under ``key``; unreadable state starts empty and is left on disk."""
        try:
            return {int(leaf_id) for leaf_id in self._store.load(key) or []}
        except (PersistenceError, TypeError, ValueError) as exc:
            logger.error("Stored review marks %s are unreadable, starting empty: %s", key, exc)
            return set()

    def is_pending(self, leaf_id: int) -> bool:
        return leaf_id in self._pending

    def is_reviewed(self, leaf_id: int) -> bool:
        return leaf_id in self._reviewed

    def toggle_pending(self, leaf_id: int) -> bool:
        """Flip the pending mark; returns the new state."""
        return self._toggle(self._pending, PENDING_KEY, leaf_id)

    def toggle_reviewed(self, leaf_id: int) -> bool:
        """Flip the reviewed mark; returns the new state."""
        return self._toggle(self._reviewed, REVIEWED_KEY, leaf_id)

    def _toggle(self, marks: set[int], key: str, leaf_id: int) -> bool:
        updated = marks ^ {leaf_id}
        self._store.persist(key, sorted(updated))
        marks.symmetric_difference_update({leaf_id})
        return leaf_id in marks

    def counts(self, leaf_ids: Iterable[int]) -> tuple[int, int]:
        """Return ``(pending, reviewed)`` counts among ``leaf_ids``."""
        ids = set(leaf_ids)
        return len(ids & self._pending), len(ids & self._reviewed)

    def clear_all(self) -> int:
        """Drop every mark; returns how many were cleared."""
        total = len(self._pending) + len(self._reviewed)
        # Each set follows its own write so memory never runs ahead of disk.
        self._store.persist(PENDING_KEY, [])
        self._pending.clear()
        self._store.persist(REVIEWED_KEY, [])
        self._reviewed.clear()
        logger.info("Cleared %d review marks", total)
        return total
