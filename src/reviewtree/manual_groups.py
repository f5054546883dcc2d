"""Manual grouping store — user-curated named buckets of pull requests.

Every mutation persists the full state. If the write fails, the in-memory
state is rolled back to the last persisted copy and the PersistenceError is
re-raised. A leaf id belongs to at most one group; ``move_leaf`` is the only
mutation that touches several groups in one call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from pydantic import ValidationError

from reviewtree.models import UNASSIGNED, Leaf, ManualGroup, ManualGroupingState
from reviewtree.protocols import KeyValueStore
from reviewtree.storage import PersistenceError

logger = logging.getLogger(__name__)

STATE_KEY = "manualGroupingState"


def _is_unassigned(group_id: str | None) -> bool:
    return group_id is None or group_id == UNASSIGNED


class ManualGroupStore:
    """Owns :class:`ManualGroupingState` and its durable copy."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._persisted = self._load()
        self._state = self._persisted.model_copy(deep=True)

    def _load(self) -> ManualGroupingState:
        """Load the stored state; unreadable state starts empty and stays on disk until the next write."""
        try:
            raw = self._store.load(STATE_KEY)
            if raw is None:
                return ManualGroupingState()
            state = ManualGroupingState.model_validate(raw)
        except (PersistenceError, ValidationError) as exc:
            logger.error("Stored manual grouping state is unreadable, starting with no groups: %s", exc)
            return ManualGroupingState()
        logger.info("Loaded %d manual groups", len(state.groups))
        return state

    @contextmanager
    def _mutation(self) -> Iterator[ManualGroupingState]:
        try:
            yield self._state
            self._store.persist(STATE_KEY, self._state.to_json())
        except Exception as exc:
            if isinstance(exc, PersistenceError):
                logger.error("Persisting manual groups failed; rolling back to last saved state")
            self._state = self._persisted.model_copy(deep=True)
            raise
        self._persisted = self._state.model_copy(deep=True)

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def state(self) -> ManualGroupingState:
        """A copy of the current state."""
        return self._state.model_copy(deep=True)

    @property
    def groups(self) -> list[ManualGroup]:
        return [g.model_copy(deep=True) for g in self._state.groups]

    def get_group(self, group_id: str) -> ManualGroup | None:
        group = self._state.find(group_id)
        return group.model_copy(deep=True) if group else None

    def group_of(self, leaf_id: int) -> str | None:
        """Id of the (lowest-order) group holding ``leaf_id``, or None if unassigned."""
        holders = sorted(self._state.groups_containing(leaf_id), key=lambda g: g.order)
        return holders[0].id if holders else None

    # ── Group lifecycle ───────────────────────────────────────────────

    def create_group(self, name: str) -> str:
        with self._mutation() as state:
            group_id = f"manual-{state.next_id}"
            state.next_id += 1
            state.groups.append(ManualGroup(id=group_id, name=name, order=len(state.groups)))
        logger.info("Created manual group %s (%s)", group_id, name)
        return group_id

    def rename_group(self, group_id: str, new_name: str) -> bool:
        if self._state.find(group_id) is None:
            return False
        with self._mutation() as state:
            state.find(group_id).name = new_name
        return True

    def delete_group(self, group_id: str) -> bool:
        if self._state.find(group_id) is None:
            return False
        with self._mutation() as state:
            state.groups = [g for g in state.groups if g.id != group_id]
        logger.info("Deleted manual group %s", group_id)
        return True

    def delete_all_groups(self) -> int:
        count = len(self._state.groups)
        with self._mutation() as state:
            state.groups = []
        logger.info("Deleted all %d manual groups", count)
        return count

    # ── Membership ────────────────────────────────────────────────────

    def add_leaf(self, leaf_id: int, group_id: str) -> bool:
        """Append ``leaf_id``; does not touch other groups. False if nothing changed."""
        group = self._state.find(group_id)
        if group is None or leaf_id in group.member_leaf_ids:
            if group is not None:
                logger.debug("PR #%d already in group %s, skipping add", leaf_id, group_id)
            return False
        with self._mutation() as state:
            state.find(group_id).member_leaf_ids.append(leaf_id)
        return True

    def remove_leaf(self, leaf_id: int, group_id: str) -> bool:
        group = self._state.find(group_id)
        if group is None or leaf_id not in group.member_leaf_ids:
            return False
        with self._mutation() as state:
            state.find(group_id).member_leaf_ids.remove(leaf_id)
        logger.debug("Removed PR #%d from group %s", leaf_id, group_id)
        return True

    def move_leaf(self, leaf_id: int, from_group: str | None, to_group: str | None) -> bool:
        """Remove ``leaf_id`` from every group, then add it to ``to_group``.

        ``from_group`` is informational; membership everywhere is cleared to
        repair any duplicate. Returns False when the target group does not
        exist. Idempotent.
        """
        return self._apply_move(leaf_id, from_group, to_group) is not None

    def _apply_move(self, leaf_id: int, from_group: str | None, to_group: str | None) -> bool | None:
        """None when the target is missing, False when membership was already right."""
        if not _is_unassigned(to_group) and self._state.find(to_group) is None:
            logger.warning("Cannot move PR #%d: group %s does not exist", leaf_id, to_group)
            return None

        def target_membership(group: ManualGroup) -> list[int]:
            members = [m for m in group.member_leaf_ids if m != leaf_id]
            if group.id == to_group:
                if leaf_id in group.member_leaf_ids:
                    return list(group.member_leaf_ids)
                members.append(leaf_id)
            return members

        if all(target_membership(g) == g.member_leaf_ids for g in self._state.groups):
            return False

        with self._mutation() as state:
            for group in state.groups:
                group.member_leaf_ids = target_membership(group)
        logger.debug(
            "Moved PR #%d from %s to %s",
            leaf_id, from_group or UNASSIGNED, to_group or UNASSIGNED,
        )
        return True

    def move_author_leaves(
        self,
        author_name: str,
        from_group: str | None,
        to_group: str | None,
        leaves: Iterable[Leaf],
    ) -> int:
        """Move every leaf by ``author_name`` in the source bucket; best effort.

        Returns the number of leaves moved. One failed move does not stop the rest.
        """
        by_author = [leaf for leaf in leaves if leaf.author_name == author_name]
        if _is_unassigned(from_group):
            assigned = self._state.assigned_leaf_ids()
            candidates = [leaf.id for leaf in by_author if leaf.id not in assigned]
        else:
            source = self._state.find(from_group)
            if source is None:
                return 0
            author_ids = {leaf.id for leaf in by_author}
            candidates = [leaf_id for leaf_id in source.member_leaf_ids if leaf_id in author_ids]

        moved = 0
        for leaf_id in candidates:
            try:
                if self._apply_move(leaf_id, from_group, to_group):
                    moved += 1
            except PersistenceError as exc:
                logger.warning("Moving PR #%d failed: %s", leaf_id, exc)
        logger.info(
            "Moved %d PR(s) by %s from %s to %s",
            moved, author_name, from_group or UNASSIGNED, to_group or UNASSIGNED,
        )
        return moved

    # ── Reconciliation ────────────────────────────────────────────────

    def reconcile(self, valid_leaf_ids: set[int]) -> int:
        """Drop member ids not in ``valid_leaf_ids`` and repair duplicate membership.

        Empty groups are kept. Persists only when something changed. Returns
        the number of memberships removed.
        """
        claimed: set[int] = set()
        plan: dict[str, list[int]] = {}
        removed = 0
        for group in sorted(self._state.groups, key=lambda g: g.order):
            kept: list[int] = []
            stale = 0
            for leaf_id in group.member_leaf_ids:
                if leaf_id not in valid_leaf_ids:
                    stale += 1
                elif leaf_id in claimed or leaf_id in kept:
                    logger.warning(
                        "PR #%d found in more than one manual group; removing it from %s",
                        leaf_id, group.name,
                    )
                    removed += 1
                else:
                    kept.append(leaf_id)
            if stale:
                logger.info("Cleaned up group %s: removed %d stale PR ids", group.name, stale)
            removed += stale
            claimed.update(kept)
            plan[group.id] = kept

        if not removed:
            return 0
        with self._mutation() as state:
            for group in state.groups:
                group.member_leaf_ids = plan[group.id]
        return removed
