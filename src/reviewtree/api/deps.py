"""Request dependencies shared by the API routers."""

from __future__ import annotations

from fastapi import Request

from reviewtree.coordinator import GroupingCoordinator


def get_coordinator(request: Request) -> GroupingCoordinator:
    return request.app.state.coordinator
