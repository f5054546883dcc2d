"""reviewtree Web API — FastAPI application wrapping the grouping coordinator."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reviewtree.api.routes_groups import router as groups_router
from reviewtree.api.routes_tree import router as tree_router
from reviewtree.coordinator import GroupingCoordinator

logger = logging.getLogger(__name__)


def create_app(coordinator: GroupingCoordinator | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Without an explicit coordinator one is wired from settings.
    """
    from reviewtree.config import get_settings
    from reviewtree.logging_config import configure_logging

    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        json_format=settings.log_json,
        debug_hierarchy=settings.debug_hierarchy,
    )
    if coordinator is None:
        from reviewtree.coordinator import build_coordinator

        coordinator = build_coordinator(settings)

    app = FastAPI(
        title="reviewtree",
        description="Pull request grouping by author, work item hierarchy or manual folders",
        version="0.1.0",
    )
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tree_router, prefix="/api", tags=["tree"])
    app.include_router(groups_router, prefix="/api", tags=["groups"])

    @app.get("/")
    async def root():
        return {"message": "reviewtree API is running.", "docs": "/docs"}

    return app
