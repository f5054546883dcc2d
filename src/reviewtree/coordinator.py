"""Grouping coordinator — owns leaves, caches and manual groups; publishes trees.

Every ``refresh``/``set_depth`` bumps a generation counter. A background
hierarchy pass remembers the generation it started under and drops its
result if a newer one exists by the time it finishes, so the last request
always wins the publish.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from reviewtree.cache import HierarchyChainCache, LeafEntityCache
from reviewtree.grouping import GroupingEngine, group_by_author, group_manual, unique_leaves
from reviewtree.manual_groups import ManualGroupStore
from reviewtree.models import GroupingMode, GroupingTree, Leaf
from reviewtree.protocols import LeafSource
from reviewtree.review_status import ReviewStatusStore
from reviewtree.storage import PersistenceError

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class RefreshError(Exception):
    """Raised when the leaf set could not be fetched; published state is unchanged."""


@dataclass
class MutationResult:
    ok: bool
    affected: int = 0
    detail: str | None = None


class GroupingCoordinator:
    """Single-owner facade the presentation layer queries and mutates."""

    def __init__(
        self,
        source: LeafSource,
        manual_store: ManualGroupStore,
        review_status: ReviewStatusStore | None = None,
        engine: GroupingEngine | None = None,
        depth: int = 1,
        max_depth: int = 4,
        concurrency: int = 4,
    ) -> None:
        if engine is None:
            engine = GroupingEngine(
                source,
                LeafEntityCache(),
                HierarchyChainCache(source),
                concurrency=concurrency,
            )
        self.source = source
        self.engine = engine
        self.manual_store = manual_store
        self.review_status = review_status

        self._mode = GroupingMode.BY_AUTHOR
        self._depth = depth
        self._max_depth = max_depth
        self._leaves: list[Leaf] = []
        self._generation = 0
        # Highest depth at which every current leaf has been placed.
        self._resolved_depth = -1
        self._hierarchy_ready = False
        self._restore_ancestor_mode = False
        self._refreshing = False

        self._author_tree = GroupingTree(mode=GroupingMode.BY_AUTHOR)
        self._ancestor_tree = GroupingTree(mode=GroupingMode.BY_ANCESTOR, depth=depth)
        self._hierarchy_task: asyncio.Task | None = None
        self._listeners: list[Listener] = []

    # ── Query surface ─────────────────────────────────────────────────

    @property
    def mode(self) -> GroupingMode:
        return self._mode

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def max_depth(self) -> int:
        return self._max_depth

    @property
    def hierarchy_ready(self) -> bool:
        return self._hierarchy_ready

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def resolved_depth(self) -> int:
        return self._resolved_depth

    @property
    def leaves(self) -> list[Leaf]:
        return list(self._leaves)

    def get_grouping_tree(self) -> GroupingTree:
        """Snapshot for the current mode."""
        if self._mode is GroupingMode.MANUAL:
            return group_manual(self._leaves, self.manual_store.state, self._generation)
        if self._mode is GroupingMode.BY_ANCESTOR:
            return self._ancestor_tree
        return self._author_tree

    def get_tree(self, mode: GroupingMode) -> GroupingTree:
        """Snapshot for an explicit mode, regardless of the active one."""
        if mode is GroupingMode.MANUAL:
            return group_manual(self._leaves, self.manual_store.state, self._generation)
        if mode is GroupingMode.BY_ANCESTOR:
            return self._ancestor_tree
        return self._author_tree

    def on_grouping_changed(self, listener: Listener) -> Callable[[], None]:
        """Register a no-argument listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        logger.debug("Publishing grouping (mode=%s)", self._mode.value, extra={"generation": self._generation})
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Grouping listener failed")

    # ── Refresh / depth / mode ────────────────────────────────────────

    async def refresh(self) -> MutationResult:
        """Fetch leaves, republish the author tree, start the hierarchy pass.

        Raises RefreshError when the leaf fetch fails.
        """
        if self._refreshing:
            logger.info("Refresh already in progress; coalescing")
            return MutationResult(ok=True, affected=0, detail="coalesced")

        self._refreshing = True
        try:
            try:
                fetched = await self.source.fetch_leaves()
            except Exception as exc:
                logger.error("Failed to refresh pull requests: %s", exc)
                raise RefreshError(f"Failed to refresh pull requests: {exc}") from exc
        finally:
            self._refreshing = False

        leaves = unique_leaves(fetched)
        valid_ids = {leaf.id for leaf in leaves}
        self._generation += 1
        generation = self._generation
        self._leaves = leaves

        try:
            self.manual_store.reconcile(valid_ids)
        except PersistenceError as exc:
            logger.warning("Manual group cleanup could not be saved: %s", exc)
        self.engine.leaf_cache.evict(valid_ids)

        self._author_tree = group_by_author(leaves, generation)
        self._resolved_depth = -1
        self._start_hierarchy_pass(generation)
        logger.info("Refreshed %d pull requests", len(leaves), extra={"generation": generation})
        self._publish()
        return MutationResult(ok=True, affected=len(leaves))

    async def set_depth(self, depth: int) -> MutationResult:
        """Regroup at ``depth``; synchronous from cache when already resolved."""
        if not 0 <= depth <= self._max_depth:
            return MutationResult(ok=False, detail=f"depth must be between 0 and {self._max_depth}")

        self._generation += 1
        generation = self._generation
        self._depth = depth

        if self._hierarchy_ready and depth <= self._resolved_depth:
            logger.info("Switched to level %d (using cached data)", depth, extra={"generation": generation})
            self._ancestor_tree = self.engine.regroup_from_cache(self._leaves, depth, generation)
            self._publish()
            return MutationResult(ok=True, affected=len(self._leaves), detail="cached")

        logger.info(
            "Fetching work item level %d (resolved so far: %d)",
            depth, self._resolved_depth, extra={"generation": generation},
        )
        self._start_hierarchy_pass(generation)
        self._publish()
        return MutationResult(ok=True, affected=len(self._leaves), detail="loading")

    def set_mode(self, mode: GroupingMode) -> bool:
        """Switch the active mode. Rejected while the hierarchy is still loading."""
        mode = GroupingMode(mode)
        if mode is GroupingMode.BY_ANCESTOR and not self._hierarchy_ready:
            logger.info("Work items are still loading; staying in %s", self._mode.value)
            return False
        self._restore_ancestor_mode = False
        if mode is self._mode:
            return True
        self._mode = mode
        self._publish()
        return True

    def _start_hierarchy_pass(self, generation: int) -> None:
        if self._mode is GroupingMode.BY_ANCESTOR:
            self._mode = GroupingMode.BY_AUTHOR
            self._restore_ancestor_mode = True
        self._hierarchy_ready = False
        self._hierarchy_task = asyncio.ensure_future(
            self._run_hierarchy_pass(generation, list(self._leaves), self._depth)
        )

    async def _run_hierarchy_pass(self, generation: int, leaves: list[Leaf], depth: int) -> None:
        try:
            tree = await self.engine.group_by_ancestor(leaves, depth, generation)
        except Exception:
            logger.exception("Hierarchy pass at depth %d failed; falling back to cached data", depth)
            tree = self.engine.regroup_from_cache(leaves, depth, generation)

        if generation != self._generation:
            logger.info(
                "Dropping stale hierarchy pass (generation %d, current %d)",
                generation, self._generation, extra={"generation": generation},
            )
            return

        self._ancestor_tree = tree
        self._resolved_depth = max(self._resolved_depth, depth)
        self._hierarchy_ready = True
        if self._restore_ancestor_mode:
            self._restore_ancestor_mode = False
            self._mode = GroupingMode.BY_ANCESTOR
        if tree.unresolved_count:
            logger.info("%d PRs unresolved at depth %d", tree.unresolved_count, depth)
        self._publish()

    async def wait_for_hierarchy(self) -> None:
        """Wait until the most recent hierarchy pass (and any it superseded) is done."""
        while self._hierarchy_task is not None and not self._hierarchy_task.done():
            await self._hierarchy_task

    # ── Manual groups ─────────────────────────────────────────────────

    def _manual(self, action: Callable[[], object], describe: str) -> MutationResult:
        try:
            outcome = action()
        except PersistenceError as exc:
            logger.error("%s failed: %s", describe, exc)
            return MutationResult(ok=False, detail=str(exc))
        if outcome is False:
            return MutationResult(ok=False, detail=f"{describe}: nothing to change")
        self._publish()
        if isinstance(outcome, bool):
            return MutationResult(ok=True, affected=1)
        if isinstance(outcome, int):
            return MutationResult(ok=True, affected=outcome)
        # create_group hands back the new group id
        return MutationResult(ok=True, affected=1, detail=str(outcome))

    def create_group(self, name: str) -> MutationResult:
        return self._manual(lambda: self.manual_store.create_group(name), f"Create group {name!r}")

    def rename_group(self, group_id: str, new_name: str) -> MutationResult:
        return self._manual(lambda: self.manual_store.rename_group(group_id, new_name), f"Rename group {group_id}")

    def delete_group(self, group_id: str) -> MutationResult:
        return self._manual(lambda: self.manual_store.delete_group(group_id), f"Delete group {group_id}")

    def delete_all_groups(self) -> MutationResult:
        return self._manual(self.manual_store.delete_all_groups, "Delete all groups")

    def move_leaf(self, leaf_id: int, from_group: str | None, to_group: str | None) -> MutationResult:
        return self._manual(
            lambda: self.manual_store.move_leaf(leaf_id, from_group, to_group),
            f"Move PR #{leaf_id}",
        )

    def move_author_leaves(self, author_name: str, from_group: str | None, to_group: str | None) -> MutationResult:
        return self._manual(
            lambda: self.manual_store.move_author_leaves(author_name, from_group, to_group, self._leaves),
            f"Move PRs by {author_name}",
        )

    # ── Review marks ──────────────────────────────────────────────────

    def toggle_pending(self, leaf_id: int) -> MutationResult:
        return self._review(lambda status: status.toggle_pending(leaf_id))

    def toggle_reviewed(self, leaf_id: int) -> MutationResult:
        return self._review(lambda status: status.toggle_reviewed(leaf_id))

    def clear_review_marks(self) -> MutationResult:
        return self._review(lambda status: status.clear_all())

    def _review(self, action: Callable[[ReviewStatusStore], object]) -> MutationResult:
        if self.review_status is None:
            return MutationResult(ok=False, detail="review status tracking is not configured")
        try:
            outcome = action(self.review_status)
        except PersistenceError as exc:
            logger.error("Saving review marks failed: %s", exc)
            return MutationResult(ok=False, detail=str(exc))
        self._publish()
        if isinstance(outcome, bool):
            return MutationResult(ok=True, affected=1, detail="on" if outcome else "off")
        return MutationResult(ok=True, affected=int(outcome))


def build_coordinator(settings=None) -> GroupingCoordinator:
    """Wire a coordinator from settings: DevOps client, configured store, caches."""
    from reviewtree.config import get_settings
    from reviewtree.devops_client import DevOpsClient
    from reviewtree.storage import open_store

    s = settings or get_settings()
    store = open_store(s)
    return GroupingCoordinator(
        source=DevOpsClient(s),
        manual_store=ManualGroupStore(store),
        review_status=ReviewStatusStore(store),
        depth=s.grouping_level,
        max_depth=s.grouping_max_level,
        concurrency=s.resolver_concurrency,
    )
