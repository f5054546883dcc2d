"""Hierarchy caches — leaf→work item links and work item ancestor chains.

The chain cache keeps, per work item, the deepest ancestor chain fetched so
far. A request for depth D is answered from memory whenever the cached chain
already reaches D, or the chain is known to end before D (root reached or a
cycle found). Only the missing levels are fetched otherwise, starting from the
deepest known ancestor.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from reviewtree.models import Entity
from reviewtree.protocols import AncestorResolver

logger = logging.getLogger(__name__)


class LeafEntityCache:
    """Maps leaf id → linked work item id (``None`` = known to have no link)."""

    def __init__(self) -> None:
        self._links: dict[int, int | None] = {}

    def __contains__(self, leaf_id: int) -> bool:
        return leaf_id in self._links

    def __len__(self) -> int:
        return len(self._links)

    def get(self, leaf_id: int) -> int | None:
        return self._links.get(leaf_id)

    def set(self, leaf_id: int, entity_id: int | None) -> None:
        self._links[leaf_id] = entity_id

    def evict(self, keep: set[int]) -> int:
        """Drop entries for leaves not in ``keep``; returns the number dropped."""
        stale = [leaf_id for leaf_id in self._links if leaf_id not in keep]
        for leaf_id in stale:
            del self._links[leaf_id]
        if stale:
            logger.debug("Evicted %d stale leaf links", len(stale))
        return len(stale)


@dataclass
class ChainEntry:
    chain: list[Entity]
    # True when the walk ended on its own: no parent, or a repeated id.
    complete: bool = False


class HierarchyChainCache:
    """Per-entity memo of the deepest ancestor chain fetched so far."""

    def __init__(self, resolver: AncestorResolver) -> None:
        self._resolver = resolver
        self._entries: dict[int, ChainEntry] = {}
        self._inflight: dict[int, asyncio.Task] = {}

    def __contains__(self, entity_id: int) -> bool:
        return entity_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, entity_id: int) -> list[Entity] | None:
        entry = self._entries.get(entity_id)
        return list(entry.chain) if entry is not None else None

    def is_complete(self, entity_id: int) -> bool:
        entry = self._entries.get(entity_id)
        return entry is not None and entry.complete

    def set(self, entity_id: int, chain: list[Entity], complete: bool = False) -> None:
        """Store ``chain`` unless a longer one is already cached."""
        existing = self._entries.get(entity_id)
        if existing is not None and len(existing.chain) > len(chain):
            return
        if existing is not None and len(existing.chain) == len(chain):
            complete = complete or existing.complete
        self._entries[entity_id] = ChainEntry(chain=list(chain), complete=complete)

    def max_cached_depth(self, entity_id: int) -> int:
        entry = self._entries.get(entity_id)
        return len(entry.chain) - 1 if entry is not None else -1

    def covers(self, entity_id: int, depth: int) -> bool:
        """True when ``depth`` can be answered without a resolver call."""
        return self._answer(entity_id, depth)[0]

    def lookup(self, entity_id: int, depth: int) -> Entity | None:
        """Cache-only answer; never calls the resolver."""
        return self._answer(entity_id, depth)[1]

    def _answer(self, entity_id: int, depth: int) -> tuple[bool, Entity | None]:
        entry = self._entries.get(entity_id)
        if entry is None:
            return False, None
        if depth < len(entry.chain):
            return True, entry.chain[depth]
        if entry.complete:
            return True, None
        return False, None

    async def resolve(self, entity_id: int, depth: int) -> Entity | None:
        """Return the ancestor ``depth`` hops above ``entity_id`` (0 = itself).

        Concurrent callers for the same uncached entity share one resolver
        call; resolver errors propagate to every waiter.
        """
        while True:
            found, entity = self._answer(entity_id, depth)
            if found:
                logger.debug("Chain cache hit: WI #%d at depth %d", entity_id, depth)
                return entity
            pending = self._inflight.get(entity_id)
            if pending is None:
                break
            await pending

        task = asyncio.ensure_future(self._fetch(entity_id, depth))
        self._inflight[entity_id] = task
        try:
            await task
        finally:
            if self._inflight.get(entity_id) is task:
                del self._inflight[entity_id]
        return self._answer(entity_id, depth)[1]

    async def _fetch(self, entity_id: int, depth: int) -> None:
        entry = self._entries.get(entity_id)
        if entry is None or not entry.chain:
            logger.debug("Fetching chain for WI #%d up to depth %d", entity_id, depth)
            chain = list(await self._resolver.fetch_ancestor_chain(entity_id, depth))
        else:
            known = entry.chain
            missing = depth - (len(known) - 1)
            tail = known[-1]
            logger.debug(
                "Extending chain for WI #%d from WI #%d by %d level(s)",
                entity_id, tail.id, missing,
            )
            extension = await self._resolver.fetch_ancestor_chain(tail.id, missing)
            chain = known + list(extension[1:])
        self._store(entity_id, chain, depth)

    def _store(self, entity_id: int, chain: list[Entity], requested_depth: int) -> None:
        seen: set[int] = set()
        kept: list[Entity] = []
        cycle = False
        for entity in chain:
            if entity.id in seen:
                cycle = True
                logger.warning(
                    "Cycle in work item hierarchy of WI #%d at WI #%d; treating chain as ended",
                    entity_id, entity.id,
                )
                break
            seen.add(entity.id)
            kept.append(entity)

        complete = cycle or len(kept) - 1 < requested_depth
        self.set(entity_id, kept, complete=complete)
        logger.debug(
            "Cached chain for WI #%d: %d level(s)%s",
            entity_id, len(kept), " (complete)" if complete else "",
        )
