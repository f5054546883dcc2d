"""Manual group API routes."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from reviewtree.api.deps import get_coordinator
from reviewtree.coordinator import GroupingCoordinator, MutationResult
from reviewtree.models import UNASSIGNED

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateGroupRequest(BaseModel):
    name: str = Field(..., min_length=1)


class RenameGroupRequest(BaseModel):
    name: str = Field(..., min_length=1)


class MoveLeafRequest(BaseModel):
    leaf_id: int
    from_group: Optional[str] = None
    to_group: Optional[str] = None


class MoveAuthorRequest(BaseModel):
    author: str
    from_group: Optional[str] = None
    to_group: Optional[str] = None


def _bucket(group_id: Optional[str]) -> Optional[str]:
    return None if group_id in (None, "", UNASSIGNED) else group_id


def _check(result: MutationResult, missing_status: int = 404) -> MutationResult:
    if result.ok:
        return result
    if result.detail and result.detail.endswith("nothing to change"):
        raise HTTPException(status_code=missing_status, detail=result.detail)
    raise HTTPException(status_code=500, detail=result.detail or "Could not save manual groups")


@router.get("/groups")
async def list_groups(coordinator: GroupingCoordinator = Depends(get_coordinator)):
    """Return manual groups in display order."""
    groups = sorted(coordinator.manual_store.groups, key=lambda g: (g.name.casefold(), g.order))
    return {"groups": [g.model_dump(mode="json") for g in groups]}


@router.post("/groups", status_code=201)
async def create_group(
    req: CreateGroupRequest,
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    result = _check(coordinator.create_group(req.name))
    return {"id": result.detail, "name": req.name}


@router.delete("/groups")
async def delete_all_groups(coordinator: GroupingCoordinator = Depends(get_coordinator)):
    result = _check(coordinator.delete_all_groups())
    return {"deleted": result.affected}


@router.patch("/groups/{group_id}")
async def rename_group(
    group_id: str,
    req: RenameGroupRequest,
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    _check(coordinator.rename_group(group_id, req.name))
    return {"id": group_id, "name": req.name}


@router.delete("/groups/{group_id}")
async def delete_group(
    group_id: str,
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    _check(coordinator.delete_group(group_id))
    return {"id": group_id, "deleted": True}


@router.post("/groups/move")
async def move_leaf(
    req: MoveLeafRequest,
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    """Move one pull request between buckets (``unassigned`` or null means no group)."""
    _check(coordinator.move_leaf(req.leaf_id, _bucket(req.from_group), _bucket(req.to_group)))
    return {"leafId": req.leaf_id, "group": _bucket(req.to_group) or UNASSIGNED}


@router.post("/groups/move-author")
async def move_author_leaves(
    req: MoveAuthorRequest,
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    """Move every pull request by one author from one bucket to another."""
    result = _check(
        coordinator.move_author_leaves(req.author, _bucket(req.from_group), _bucket(req.to_group))
    )
    return {"moved": result.affected}
