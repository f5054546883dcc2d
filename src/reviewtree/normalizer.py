"""Normalizer — converts raw Azure DevOps JSON into leaves and entities."""

from __future__ import annotations

import re
from typing import Any

from reviewtree.models import UNKNOWN_AUTHOR, Entity, Leaf

PARENT_RELATION = "System.LinkTypes.Hierarchy-Reverse"

_WORK_ITEM_URL = re.compile(r"workItems/(\d+)$", re.IGNORECASE)


def _safe_int(val: Any) -> int | None:
    if val is None or isinstance(val, bool):
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def _safe_str(val: Any) -> str | None:
    """Extract a string value or return None."""
    if val is None:
        return None
    if isinstance(val, str):
        return val
    if isinstance(val, dict):
        return val.get("displayName") or val.get("name") or val.get("uniqueName") or str(val)
    return str(val)


def parent_id_from_relations(relations: list[dict[str, Any]] | None) -> int | None:
    """Return the parent work item id from a relations list, if present.

    Parent links look like ``{"rel": "System.LinkTypes.Hierarchy-Reverse",
    "url": ".../_apis/wit/workItems/12345"}``.
    """
    for relation in relations or []:
        if relation.get("rel") != PARENT_RELATION:
            continue
        match = _WORK_ITEM_URL.search(relation.get("url") or "")
        if match:
            return int(match.group(1))
    return None


def normalize_work_item(raw: dict[str, Any]) -> Entity:
    """Normalize a work item returned with ``$expand=relations``."""
    fields = raw.get("fields") or {}
    parent_id = parent_id_from_relations(raw.get("relations"))
    if parent_id is None:
        parent_id = _safe_int(fields.get("System.Parent"))
    return Entity(
        id=int(raw["id"]),
        title=fields.get("System.Title") or "",
        type=fields.get("System.WorkItemType") or "",
        parent_id=parent_id,
        state=_safe_str(fields.get("System.State")),
    )


def normalize_pull_request(raw: dict[str, Any]) -> Leaf:
    """Normalize a pull request into a :class:`Leaf`."""
    created_by = raw.get("createdBy") or {}
    author = created_by.get("displayName") if isinstance(created_by, dict) else _safe_str(created_by)
    return Leaf(
        id=int(raw["pullRequestId"]),
        author_name=author or UNKNOWN_AUTHOR,
        title=raw.get("title") or "",
        status=_safe_str(raw.get("status")) or "active",
        is_draft=bool(raw.get("isDraft", False)),
        source_ref=raw.get("sourceRefName"),
        target_ref=raw.get("targetRefName"),
        created=raw.get("creationDate"),
    )


def normalize_pull_requests(raw_prs: list[dict[str, Any]]) -> list[Leaf]:
    """Normalize a list of raw pull requests."""
    return [normalize_pull_request(pr) for pr in raw_prs]


def first_work_item_id(raw_refs: list[dict[str, Any]] | dict[str, Any] | None) -> int | None:
    """First work item id from a PR work item refs response (list or ``{"value": [...]}``)."""
    if isinstance(raw_refs, dict):
        raw_refs = raw_refs.get("value")
    for ref in raw_refs or []:
        work_item_id = _safe_int(ref.get("id"))
        if work_item_id is not None:
            return work_item_id
    return None
