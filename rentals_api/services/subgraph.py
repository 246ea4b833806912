"""
GraphQL client for The Graph subgraphs (marketplace and rentals indexers).
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from rentals_api.core.config import settings
from rentals_api.rate_limiting import get_rate_limiter, retry_with_backoff

logger = logging.getLogger(__name__)


class SubgraphError(Exception):
    def __init__(self, url: str, message: str):
        super().__init__(f"Subgraph query to {url} failed: {message}")
        self.url = url


class SubgraphClient:
    """Runs queries against a single subgraph URL."""

    def __init__(self, url: str, timeout_sec: Optional[int] = None):
        self.url = url
        self._timeout = aiohttp.ClientTimeout(
            total=timeout_sec or settings.SUBGRAPH_TIMEOUT_SEC
        )
        self._limiter = get_rate_limiter(url, settings.SUBGRAPH_RATE_LIMIT)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None

    @retry_with_backoff(max_retries=3, retry_on=(aiohttp.ClientError, asyncio.TimeoutError))
    async def _post(self, payload: dict) -> dict:
        session = await self._get_session()
        async with self._limiter.acquire("subgraph"):
            async with session.post(self.url, json=payload) as resp:
                resp.raise_for_status()
                return await resp.json()

    async def query(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict:
        """Run ``query`` and return its ``data`` object."""
        try:
            body = await self._post({"query": query, "variables": variables or {}})
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SubgraphError(self.url, str(exc)) from exc

        errors = body.get("errors")
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            logger.warning("Subgraph %s answered with errors: %s", self.url, messages)
            raise SubgraphError(self.url, messages)

        data = body.get("data")
        if data is None:
            raise SubgraphError(self.url, "response without data")
        return data
