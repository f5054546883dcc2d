"""Azure DevOps API client — async fetcher with retry/backoff.

API Assumptions:
- Git and work item tracking REST endpoints live under /{project}/_apis/...
- Every request carries an ``api-version`` query parameter
- Pull request pagination uses $top/$skip; a short page ends the listing
- Auth: Basic with an empty user name and a personal access token
- A work item's parent is the System.LinkTypes.Hierarchy-Reverse relation
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from reviewtree.config import Settings, get_settings
from reviewtree.models import Entity, Leaf
from reviewtree.normalizer import first_work_item_id, normalize_pull_requests, normalize_work_item

logger = logging.getLogger(__name__)


class DevOpsClientError(Exception):
    """Raised on unrecoverable Azure DevOps API errors."""


class DevOpsClient:
    """Pull requests and work items from Azure DevOps; satisfies ``LeafSource``."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        errors = self.settings.validate_devops_config()
        if errors:
            raise DevOpsClientError(
                "Azure DevOps configuration errors:\n  • " + "\n  • ".join(errors)
            )

    # ── HTTP plumbing ─────────────────────────────────────────────────

    def _build_client(self) -> httpx.AsyncClient:
        base_url = self.settings.organization_url
        if not base_url:
            raise DevOpsClientError("DEVOPS_ORGANIZATION is empty — cannot create HTTP client")

        return httpx.AsyncClient(
            base_url=base_url,
            headers={"Accept": "application/json"},
            auth=httpx.BasicAuth(username="", password=self.settings.devops_token),
            params={"api-version": self.settings.devops_api_version},
            timeout=httpx.Timeout(self.settings.devops_timeout),
            transport=self._transport,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _parse_retry_after(self, value: str | None, default: int) -> int:
        """Parse Retry-After header — can be seconds (int) or HTTP-date string."""
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.debug("Non-integer Retry-After header: %s, using default %ds", value, default)
            return default

    async def _request_with_retry(
        self, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        """Execute an HTTP request with retries on 429, 5xx and transport errors."""
        max_retries = self.settings.devops_max_retries
        for attempt in range(max_retries + 1):
            try:
                resp = await self.client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                if attempt >= max_retries:
                    raise DevOpsClientError(f"Transport error after {max_retries} retries: {exc}") from exc
                wait = 2 ** attempt
                logger.warning("Transport error (attempt %d/%d), retrying in %ds: %s", attempt + 1, max_retries, wait, exc)
                await asyncio.sleep(wait)
                continue

            if resp.status_code == 429 or resp.status_code >= 500:
                if attempt >= max_retries:
                    raise DevOpsClientError(
                        f"HTTP {resp.status_code} after {max_retries} retries: {resp.text[:300]}"
                    )
                retry_after = self._parse_retry_after(
                    resp.headers.get("Retry-After"), 2 ** attempt
                )
                logger.warning(
                    "HTTP %d (attempt %d/%d), retrying in %ds",
                    resp.status_code, attempt + 1, max_retries, retry_after,
                )
                await asyncio.sleep(retry_after)
                continue

            return resp

        raise DevOpsClientError("Unexpected retry loop exit")  # pragma: no cover

    async def _get_json(self, url: str, **kwargs: Any) -> Any:
        resp = await self._request_with_retry("GET", url, **kwargs)
        if resp.is_error:
            raise DevOpsClientError(f"GET {url} failed with HTTP {resp.status_code}: {resp.text[:300]}")
        return resp.json()

    @property
    def _repo_path(self) -> str:
        s = self.settings
        return f"/{s.devops_project}/_apis/git/repositories/{s.devops_repository}"

    # ── Pull requests ─────────────────────────────────────────────────

    async def fetch_leaves(self) -> list[Leaf]:
        """Fetch ALL pull requests with the configured status."""
        page_size = self.settings.devops_page_size
        raw_prs: list[dict[str, Any]] = []
        skip = 0
        while True:
            data = await self._get_json(
                f"{self._repo_path}/pullrequests",
                params={
                    "searchCriteria.status": self.settings.devops_pr_status,
                    "$top": page_size,
                    "$skip": skip,
                },
            )
            page = data.get("value", [])
            raw_prs.extend(page)
            logger.info("Fetched %d pull requests (total so far: %d)", len(page), len(raw_prs))
            if len(page) < page_size:
                break
            skip += len(page)
        return normalize_pull_requests(raw_prs)

    async def fetch_entity_link(self, leaf_id: int) -> int | None:
        """Id of the first work item linked to pull request ``leaf_id``."""
        data = await self._get_json(f"{self._repo_path}/pullRequests/{leaf_id}/workitems")
        work_item_id = first_work_item_id(data)
        if work_item_id is None:
            logger.debug("PR #%d has no work item refs", leaf_id)
        return work_item_id

    # ── Work items ────────────────────────────────────────────────────

    async def fetch_entity(self, entity_id: int) -> Entity | None:
        """Fetch one work item with its relations; None when it does not exist."""
        resp = await self._request_with_retry(
            "GET",
            f"/{self.settings.devops_project}/_apis/wit/workitems/{entity_id}",
            params={"$expand": "relations"},
        )
        if resp.status_code == 404:
            logger.info("Work item %d not found", entity_id)
            return None
        if resp.is_error:
            raise DevOpsClientError(f"Work item {entity_id} failed with HTTP {resp.status_code}: {resp.text[:300]}")
        return normalize_work_item(resp.json())

    async def fetch_ancestor_chain(self, entity_id: int, max_depth: int) -> list[Entity]:
        """Walk parents from ``entity_id`` up to ``max_depth`` hops.

        Level 0 is the work item itself. Stops early at a root, a missing
        parent, or an id already seen on this walk.
        """
        current = await self.fetch_entity(entity_id)
        if current is None:
            return []

        chain = [current]
        visited = {current.id}
        for _level in range(1, max_depth + 1):
            parent_id = current.parent_id
            if parent_id is None:
                break
            if parent_id in visited:
                logger.warning("Cycle in work item hierarchy at WI #%d (from WI #%d)", parent_id, entity_id)
                break
            parent = await self.fetch_entity(parent_id)
            if parent is None:
                break
            chain.append(parent)
            visited.add(parent.id)
            current = parent

        logger.debug("Built chain for WI #%d: %d levels", entity_id, len(chain))
        return chain

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()
