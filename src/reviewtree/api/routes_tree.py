"""Grouping tree API routes — tree snapshot, refresh, depth, mode, review marks."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from reviewtree.api.deps import get_coordinator
from reviewtree.coordinator import GroupingCoordinator, RefreshError
from reviewtree.models import GroupingMode
from reviewtree.render import tree_to_dict

router = APIRouter()
logger = logging.getLogger(__name__)


class DepthRequest(BaseModel):
    depth: int


class ModeRequest(BaseModel):
    mode: GroupingMode


def _state(coordinator: GroupingCoordinator) -> dict:
    return {
        "mode": coordinator.mode.value,
        "depth": coordinator.depth,
        "maxDepth": coordinator.max_depth,
        "hierarchyReady": coordinator.hierarchy_ready,
        "generation": coordinator.generation,
    }


@router.get("/tree")
async def get_tree(
    mode: GroupingMode | None = Query(None, description="Override the active mode"),
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    """Return the current grouping tree snapshot."""
    tree = coordinator.get_tree(mode) if mode is not None else coordinator.get_grouping_tree()
    return {**_state(coordinator), "tree": tree_to_dict(tree, coordinator.review_status)}


@router.post("/refresh")
async def refresh(
    wait: bool = Query(False, description="Wait for the work item hierarchy pass"),
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    """Re-fetch pull requests and regroup."""
    try:
        result = await coordinator.refresh()
    except RefreshError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    if wait:
        await coordinator.wait_for_hierarchy()
    return {**_state(coordinator), "affected": result.affected, "detail": result.detail}


@router.post("/depth")
async def set_depth(
    req: DepthRequest,
    wait: bool = Query(False, description="Wait for the work item hierarchy pass"),
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    """Change the work item level used for ancestor grouping."""
    result = await coordinator.set_depth(req.depth)
    if not result.ok:
        raise HTTPException(status_code=422, detail=result.detail)
    if wait:
        await coordinator.wait_for_hierarchy()
    return {**_state(coordinator), "detail": result.detail}


@router.post("/mode")
async def set_mode(
    req: ModeRequest,
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    """Switch grouping mode; 409 while work items are still loading."""
    if not coordinator.set_mode(req.mode):
        raise HTTPException(status_code=409, detail="Work items are still loading")
    return _state(coordinator)


@router.post("/review/{leaf_id}/pending")
async def toggle_pending(
    leaf_id: int,
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    result = coordinator.toggle_pending(leaf_id)
    if not result.ok:
        raise HTTPException(status_code=500, detail=result.detail)
    return {"id": leaf_id, "pending": result.detail == "on"}


@router.post("/review/{leaf_id}/reviewed")
async def toggle_reviewed(
    leaf_id: int,
    coordinator: GroupingCoordinator = Depends(get_coordinator),
):
    result = coordinator.toggle_reviewed(leaf_id)
    if not result.ok:
        raise HTTPException(status_code=500, detail=result.detail)
    return {"id": leaf_id, "reviewed": result.detail == "on"}


@router.delete("/review")
async def clear_review_marks(coordinator: GroupingCoordinator = Depends(get_coordinator)):
    result = coordinator.clear_review_marks()
    if not result.ok:
        raise HTTPException(status_code=500, detail=result.detail)
    return {"cleared": result.affected}
