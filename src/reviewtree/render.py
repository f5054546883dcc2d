"""Renderers — JSON-ready dicts for the API and rich trees for the CLI."""

from __future__ import annotations

from typing import Any

from rich.tree import Tree

from reviewtree.models import GroupingTree, Leaf, LeafGroup
from reviewtree.review_status import ReviewStatusStore


def _leaf_dict(leaf: Leaf, status: ReviewStatusStore | None) -> dict[str, Any]:
    return {
        "id": leaf.id,
        "title": leaf.title,
        "author": leaf.author_name,
        "status": leaf.status,
        "isDraft": leaf.is_draft,
        "pending": status.is_pending(leaf.id) if status else False,
        "reviewed": status.is_reviewed(leaf.id) if status else False,
    }


def _counts(group_leaves: list[Leaf], status: ReviewStatusStore | None) -> tuple[int, int]:
    if status is None:
        return 0, 0
    return status.counts(leaf.id for leaf in group_leaves)


def group_to_dict(group: LeafGroup, status: ReviewStatusStore | None = None) -> dict[str, Any]:
    pending, reviewed = _counts(group.leaves, status)
    return {
        "key": group.key,
        "title": group.title,
        "entityId": group.entity_id,
        "count": group.leaf_count,
        "pending": pending,
        "reviewed": reviewed,
        "authors": [
            {
                "name": name,
                "count": len(leaves),
                "leaves": [_leaf_dict(leaf, status) for leaf in leaves],
            }
            for name, leaves in group.authors.items()
        ],
    }


def tree_to_dict(tree: GroupingTree, status: ReviewStatusStore | None = None) -> dict[str, Any]:
    return {
        "mode": tree.mode.value,
        "depth": tree.depth,
        "generation": tree.generation,
        "unresolvedCount": tree.unresolved_count,
        "failedCount": tree.failed_count,
        "groups": [group_to_dict(g, status) for g in tree.groups],
    }


def _label(title: str, count: int, pending: int, reviewed: int) -> str:
    label = f"{title} ({count})"
    marks = []
    if pending:
        marks.append(f"⏳{pending}")
    if reviewed:
        marks.append(f"✓{reviewed}")
    if marks:
        label += f" [{' '.join(marks)}]"
    return label


def render_rich_tree(tree: GroupingTree, status: ReviewStatusStore | None = None) -> Tree:
    """Build a rich Tree: group → author → pull request."""
    heading = f"[bold cyan]{tree.mode.value}[/bold cyan]"
    if tree.depth is not None:
        heading += f" (level {tree.depth})"
    root = Tree(heading)
    for group in tree.groups:
        pending, reviewed = _counts(group.leaves, status)
        branch = root.add(f"[bold]{_label(group.title, group.leaf_count, pending, reviewed)}[/bold]")
        for name, leaves in group.authors.items():
            pending, reviewed = _counts(leaves, status)
            person = branch.add(_label(name, len(leaves), pending, reviewed))
            for leaf in leaves:
                person.add(f"#{leaf.id}: {leaf.title}" + (" [dim](draft)[/dim]" if leaf.is_draft else ""))
    return root
