"""Protocols for the collaborators the grouping core depends on."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from reviewtree.models import Entity, Leaf


@runtime_checkable
class AncestorResolver(Protocol):
    """Resolves the ancestor chain of a work item."""

    async def fetch_ancestor_chain(self, entity_id: int, max_depth: int) -> list[Entity]:
        """Return ``[entity, parent, grandparent, ...]`` up to ``max_depth`` hops.

        The chain may be shorter when the hierarchy ends early. An empty list
        means the entity itself does not exist.
        """
        ...


@runtime_checkable
class LeafSource(AncestorResolver, Protocol):
    """The external system that owns pull requests and their work item links."""

    async def fetch_leaves(self) -> list[Leaf]:
        """Return the current leaf set."""
        ...

    async def fetch_entity_link(self, leaf_id: int) -> int | None:
        """Return the id of the work item a leaf is linked to, if any."""
        ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Durable, single-key crash-consistent storage for JSON-compatible values."""

    def load(self, key: str) -> Any | None:
        """Return the stored value, or None if the key was never written."""
        ...

    def persist(self, key: str, value: Any) -> None:
        """Durably replace the value under ``key``."""
        ...
