"""In-memory fakes for the data source and the key-value store."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from reviewtree.models import Entity, Leaf
from reviewtree.storage import PersistenceError


class ResolverFailure(Exception):
    pass


class FakeSource:
    """Satisfies ``LeafSource`` from plain dicts; records every call."""

    def __init__(
        self,
        leaves: list[Leaf] | None = None,
        links: dict[int, int | None] | None = None,
        entities: dict[int, Entity] | None = None,
    ) -> None:
        self.leaves = list(leaves or [])
        self.links = dict(links or {})
        self.entities = dict(entities or {})
        self.failing_entities: set[int] = set()
        self.failing_links: set[int] = set()
        self.fail_fetch = False
        # When set, chain fetches block until the event is set.
        self.gate: asyncio.Event | None = None

        self.chain_calls: list[tuple[int, int]] = []
        self.link_calls: list[int] = []
        self.fetch_calls = 0

    async def fetch_leaves(self) -> list[Leaf]:
        self.fetch_calls += 1
        await asyncio.sleep(0)
        if self.fail_fetch:
            raise ResolverFailure("leaf fetch failed")
        return list(self.leaves)

    async def fetch_entity_link(self, leaf_id: int) -> int | None:
        self.link_calls.append(leaf_id)
        if leaf_id in self.failing_links:
            raise ResolverFailure(f"link lookup failed for {leaf_id}")
        return self.links.get(leaf_id)

    async def fetch_ancestor_chain(self, entity_id: int, max_depth: int) -> list[Entity]:
        # No cycle guard here: the chain cache must cope with repeated ids.
        self.chain_calls.append((entity_id, max_depth))
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if entity_id in self.failing_entities:
            raise ResolverFailure(f"chain lookup failed for {entity_id}")
        current = self.entities.get(entity_id)
        if current is None:
            return []
        chain = [current]
        while len(chain) - 1 < max_depth and current.parent_id is not None:
            parent = self.entities.get(current.parent_id)
            if parent is None:
                break
            chain.append(parent)
            current = parent
        return chain

    async def close(self) -> None:
        pass


class MemoryStore:
    """Dict-backed ``KeyValueStore`` that stores deep copies."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = copy.deepcopy(initial or {})
        self.writes: list[str] = []

    def load(self, key: str) -> Any | None:
        return copy.deepcopy(self.data.get(key))

    def persist(self, key: str, value: Any) -> None:
        self.writes.append(key)
        self.data[key] = copy.deepcopy(value)


class FailingStore(MemoryStore):
    """A store whose writes fail while ``failing`` is true."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__(initial)
        self.failing = False

    def persist(self, key: str, value: Any) -> None:
        if self.failing:
            raise PersistenceError(f"disk full while writing {key}")
        super().persist(key, value)


def make_entity(entity_id: int, parent_id: int | None = None, title: str | None = None) -> Entity:
    return Entity(id=entity_id, title=title or f"Item {entity_id}", type="Task", parent_id=parent_id)


def make_leaf(leaf_id: int, author: str = "Alice", title: str | None = None) -> Leaf:
    return Leaf(id=leaf_id, author_name=author, title=title or f"PR {leaf_id}")


def scenario_source() -> FakeSource:
    """Three PRs: 1 and 2 on WI 100 (parent 900), 3 on parentless WI 200."""
    return FakeSource(
        leaves=[make_leaf(1, "Alice"), make_leaf(2, "Bob"), make_leaf(3, "Alice")],
        links={1: 100, 2: 100, 3: 200},
        entities={
            100: make_entity(100, parent_id=900),
            900: make_entity(900, title="Epic"),
            200: make_entity(200),
        },
    )
