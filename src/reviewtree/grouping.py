"""Grouping engine — partitions leaves by author, manual group or work item ancestor."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from reviewtree.cache import HierarchyChainCache, LeafEntityCache
from reviewtree.models import (
    UNASSIGNED,
    UNRESOLVED_KEY,
    Entity,
    GroupingMode,
    GroupingTree,
    Leaf,
    LeafGroup,
    ManualGroupingState,
    entity_key,
)
from reviewtree.protocols import LeafSource

logger = logging.getLogger(__name__)

UNRESOLVED_TITLE = "Unknown Work Item"
UNASSIGNED_TITLE = "Unassigned"


def unique_leaves(leaves: Iterable[Leaf]) -> list[Leaf]:
    """Deduplicate by id, keeping the later snapshot in the first position seen."""
    by_id: dict[int, Leaf] = {}
    for leaf in leaves:
        if leaf.id in by_id:
            logger.warning("Duplicate pull request id detected: %d, keeping latest", leaf.id)
        by_id[leaf.id] = leaf
    return list(by_id.values())


def split_by_author(leaves: Iterable[Leaf]) -> dict[str, list[Leaf]]:
    """Partition leaves by author, authors ordered case-insensitively."""
    authors: dict[str, list[Leaf]] = {}
    for leaf in leaves:
        authors.setdefault(leaf.author_name, []).append(leaf)
    return {name: authors[name] for name in sorted(authors, key=lambda n: (n.casefold(), n))}


def group_by_author(leaves: Iterable[Leaf], generation: int = 0) -> GroupingTree:
    """One group per author."""
    authors = split_by_author(leaves)
    groups = [
        LeafGroup(key=name, title=name, authors={name: author_leaves})
        for name, author_leaves in authors.items()
    ]
    logger.debug("Grouped into %d author groups", len(groups))
    return GroupingTree(mode=GroupingMode.BY_AUTHOR, groups=groups, generation=generation)


def group_manual(
    leaves: Iterable[Leaf],
    state: ManualGroupingState,
    generation: int = 0,
) -> GroupingTree:
    """One group per manual group (kept even when empty) plus an unassigned bucket.

    Member ids that are not in ``leaves`` are skipped. The unassigned bucket is
    only emitted when it has members.
    """
    leaves = list(leaves)
    by_id = {leaf.id: leaf for leaf in leaves}
    ordered = sorted(state.groups, key=lambda g: (g.name.casefold(), g.order))

    groups: list[LeafGroup] = []
    for manual in ordered:
        members = [by_id[leaf_id] for leaf_id in manual.member_leaf_ids if leaf_id in by_id]
        groups.append(LeafGroup(key=manual.id, title=manual.name, authors=split_by_author(members)))

    assigned = state.assigned_leaf_ids()
    unassigned = [leaf for leaf in leaves if leaf.id not in assigned]
    if unassigned:
        groups.append(LeafGroup(key=UNASSIGNED, title=UNASSIGNED_TITLE, authors=split_by_author(unassigned)))
    return GroupingTree(mode=GroupingMode.MANUAL, groups=groups, generation=generation)


def assemble_ancestor_tree(
    leaves: list[Leaf],
    placements: dict[int, Entity | None],
    depth: int,
    failed: int = 0,
    generation: int = 0,
) -> GroupingTree:
    """Build the ancestor tree from resolved placements (leaf id → ancestor)."""
    buckets: dict[str, LeafGroup] = {}
    members: dict[str, list[Leaf]] = {}
    for leaf in leaves:
        ancestor = placements.get(leaf.id)
        if ancestor is None:
            key, title, ancestor_id = UNRESOLVED_KEY, UNRESOLVED_TITLE, None
        else:
            key, title, ancestor_id = entity_key(ancestor.id), f"#{ancestor.id}: {ancestor.title}", ancestor.id
        if key not in buckets:
            buckets[key] = LeafGroup(key=key, title=title, entity_id=ancestor_id)
            members[key] = []
        members[key].append(leaf)

    for key, group in buckets.items():
        group.authors = split_by_author(members[key])

    # Descending work item id; the unresolved bucket always last.
    groups = sorted(
        buckets.values(),
        key=lambda g: (g.key == UNRESOLVED_KEY, -(g.entity_id or 0)),
    )
    unresolved = buckets.get(UNRESOLVED_KEY)
    return GroupingTree(
        mode=GroupingMode.BY_ANCESTOR,
        groups=groups,
        depth=depth,
        generation=generation,
        unresolved_count=unresolved.leaf_count if unresolved else 0,
        failed_count=failed,
    )


class GroupingEngine:
    """Computes grouping trees; the ancestor path goes through the two caches."""

    def __init__(
        self,
        source: LeafSource,
        leaf_cache: LeafEntityCache | None = None,
        chain_cache: HierarchyChainCache | None = None,
        concurrency: int = 4,
    ) -> None:
        self.source = source
        self.leaf_cache = leaf_cache if leaf_cache is not None else LeafEntityCache()
        self.chain_cache = chain_cache if chain_cache is not None else HierarchyChainCache(source)
        self.concurrency = max(1, concurrency)
        # Leaves whose resolution raised during the most recent ancestor pass.
        self.failed_leaf_ids: set[int] = set()

    async def compute_grouping(
        self,
        leaves: Iterable[Leaf],
        mode: GroupingMode,
        depth: int,
        manual_state: ManualGroupingState | None = None,
        generation: int = 0,
    ) -> GroupingTree:
        leaves = unique_leaves(leaves)
        if mode is GroupingMode.BY_AUTHOR:
            return group_by_author(leaves, generation)
        if mode is GroupingMode.MANUAL:
            return group_manual(leaves, manual_state or ManualGroupingState(), generation)
        return await self.group_by_ancestor(leaves, depth, generation)

    async def group_by_ancestor(
        self,
        leaves: Iterable[Leaf],
        depth: int,
        generation: int = 0,
    ) -> GroupingTree:
        """Resolve each leaf's ancestor at ``depth``, fetching what the caches lack.

        A failure for one leaf only sends that leaf to the unresolved bucket.
        """
        leaves = unique_leaves(leaves)
        semaphore = asyncio.Semaphore(self.concurrency)
        failures: list[int] = []

        async def place(leaf: Leaf) -> tuple[int, Entity | None]:
            async with semaphore:
                try:
                    entity_id = await self._entity_for(leaf)
                    if entity_id is None:
                        logger.debug("PR #%d has no work item, using unresolved", leaf.id)
                        return leaf.id, None
                    ancestor = await self.chain_cache.resolve(entity_id, depth)
                    if ancestor is None:
                        logger.debug("PR #%d: WI #%d has no ancestor at depth %d", leaf.id, entity_id, depth)
                    return leaf.id, ancestor
                except Exception as exc:
                    logger.debug("PR #%d: hierarchy resolution failed: %s", leaf.id, exc)
                    failures.append(leaf.id)
                    return leaf.id, None

        results = await asyncio.gather(*(place(leaf) for leaf in leaves))
        self.failed_leaf_ids = set(failures)
        if failures:
            logger.info("Hierarchy pass at depth %d: %d of %d PRs failed to resolve", depth, len(failures), len(leaves))
        tree = assemble_ancestor_tree(leaves, dict(results), depth, failed=len(failures), generation=generation)
        logger.debug("Created %d work item groups at depth %d", len(tree.groups), depth)
        return tree

    def regroup_from_cache(
        self,
        leaves: Iterable[Leaf],
        depth: int,
        generation: int = 0,
    ) -> GroupingTree:
        """Same result as :meth:`group_by_ancestor` for covered depths, with zero resolver calls."""
        leaves = unique_leaves(leaves)
        placements: dict[int, Entity | None] = {}
        for leaf in leaves:
            entity_id = self.leaf_cache.get(leaf.id)
            placements[leaf.id] = self.chain_cache.lookup(entity_id, depth) if entity_id is not None else None
        logger.debug("Regrouped %d PRs at depth %d from cache", len(leaves), depth)
        failed = sum(
            1 for leaf in leaves
            if leaf.id in self.failed_leaf_ids and placements[leaf.id] is None
        )
        return assemble_ancestor_tree(leaves, placements, depth, failed=failed, generation=generation)

    def covers(self, leaves: Iterable[Leaf], depth: int) -> bool:
        """True when every leaf can be placed at ``depth`` from cache alone."""
        for leaf in leaves:
            if leaf.id not in self.leaf_cache:
                return False
            entity_id = self.leaf_cache.get(leaf.id)
            if entity_id is not None and not self.chain_cache.covers(entity_id, depth):
                return False
        return True

    async def _entity_for(self, leaf: Leaf) -> int | None:
        if leaf.id in self.leaf_cache:
            return self.leaf_cache.get(leaf.id)
        entity_id = await self.source.fetch_entity_link(leaf.id)
        self.leaf_cache.set(leaf.id, entity_id)
        return entity_id
