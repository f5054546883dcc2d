"""Core data model — leaves, entities, grouping trees and manual grouping state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

UNRESOLVED_KEY = "unresolved"
UNASSIGNED = "unassigned"
UNKNOWN_AUTHOR = "Unknown Author"


class GroupingMode(str, Enum):
    BY_AUTHOR = "byAuthor"
    BY_ANCESTOR = "byAncestorAtDepth"
    MANUAL = "manual"


@dataclass(frozen=True)
class Leaf:
    """A review request snapshot. Identity is by ``id``."""

    id: int
    author_name: str = UNKNOWN_AUTHOR
    title: str = ""
    status: str = "active"
    is_draft: bool = False
    source_ref: str | None = None
    target_ref: str | None = None
    created: str | None = None


@dataclass(frozen=True)
class Entity:
    """A work item; zero-or-one parent."""

    id: int
    title: str = ""
    type: str = ""
    parent_id: int | None = None
    state: str | None = None


def entity_key(entity_id: int) -> str:
    return f"entity:{entity_id}"


@dataclass
class LeafGroup:
    """One top-level bucket of a grouping tree, sub-partitioned by author."""

    key: str
    title: str
    entity_id: int | None = None
    authors: dict[str, list[Leaf]] = field(default_factory=dict)

    @property
    def leaves(self) -> list[Leaf]:
        return [leaf for leaves in self.authors.values() for leaf in leaves]

    @property
    def leaf_count(self) -> int:
        return sum(len(leaves) for leaves in self.authors.values())


@dataclass
class GroupingTree:
    """Immutable-by-convention snapshot handed to consumers."""

    mode: GroupingMode
    groups: list[LeafGroup] = field(default_factory=list)
    depth: int | None = None
    generation: int = 0
    unresolved_count: int = 0
    failed_count: int = 0

    def get(self, key: str) -> LeafGroup | None:
        for group in self.groups:
            if group.key == key:
                return group
        return None

    @property
    def keys(self) -> list[str]:
        return [group.key for group in self.groups]

    def as_mapping(self) -> dict[str, dict[str, list[int]]]:
        """Return ``{group_key: {author: [leaf ids]}}`` in display order."""
        return {
            group.key: {author: [leaf.id for leaf in leaves] for author, leaves in group.authors.items()}
            for group in self.groups
        }


# ── Manual grouping (persisted) ───────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ManualGroup(BaseModel):
    id: str
    name: str
    member_leaf_ids: list[int] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    order: int = 0


class ManualGroupingState(BaseModel):
    groups: list[ManualGroup] = Field(default_factory=list)
    next_id: int = 1

    def find(self, group_id: str) -> ManualGroup | None:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None

    def groups_containing(self, leaf_id: int) -> list[ManualGroup]:
        return [g for g in self.groups if leaf_id in g.member_leaf_ids]

    def assigned_leaf_ids(self) -> set[int]:
        return {leaf_id for g in self.groups for leaf_id in g.member_leaf_ids}

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
