from __future__ import annotations

import asyncio
import itertools
from typing import Awaitable, Callable, List, Optional

import httpx

from .config import Settings
from .favicons import PageMetadata, fetch_page_metadata
from .log import get_logger
from .url_norm import is_valid

log = get_logger(__name__)

Fetcher = Callable[[str], Awaitable[Optional[PageMetadata]]]
Commit = Callable[[str, PageMetadata], None]


class LatestRequestGate:
    """Debounced metadata lookup where only the newest trigger may commit.

    Each ``trigger()`` cancels the pending lookup and takes a new token. A
    lookup that finishes after being superseded sees a stale token and drops
    its result instead of calling ``on_result``.
    """

    def __init__(self, fetch: Fetcher, on_result: Commit, *, delay_s: float = 0.5):
        self._fetch = fetch
        self._on_result = on_result
        self.delay_s = delay_s
        self._tokens = itertools.count(1)
        self._current = 0
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def for_client(cls, client: httpx.AsyncClient, on_result: Commit, *, delay_s: float = 0.5) -> "LatestRequestGate":
        async def _fetch(url: str) -> Optional[PageMetadata]:
            return await fetch_page_metadata(client, url)

        return cls(_fetch, on_result, delay_s=delay_s)

    @property
    def pending(self) -> Optional[asyncio.Task]:
        return self._task if self._task is not None and not self._task.done() else None

    def trigger(self, url: str) -> Optional[asyncio.Task]:
        """Schedule a lookup for ``url``; must be called with a running loop."""
        self.cancel()
        if not is_valid(url.strip()):
            return None
        token = next(self._tokens)
        self._current = token
        self._task = asyncio.get_running_loop().create_task(self._run(token, url.strip()))
        return self._task

    def cancel(self) -> None:
        self._current = 0
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, token: int, url: str) -> None:
        await asyncio.sleep(self.delay_s)
        if token != self._current:
            return
        meta = await self._fetch(url)
        if meta is None or token != self._current:
            log.debug("Dropping metadata for %s (superseded or empty)", url)
            return
        self._on_result(url, meta)


async def lookup_metadata(url: str, settings: Settings) -> Optional[PageMetadata]:
    """One debounced lookup on a fresh client; None for invalid URLs or empty pages."""
    found: List[PageMetadata] = []
    async with httpx.AsyncClient(
        timeout=settings.favicon_timeout_s,
        follow_redirects=True,
        max_redirects=settings.max_redirects,
        headers={"User-Agent": settings.user_agent},
    ) as client:
        gate = LatestRequestGate.for_client(
            client, lambda _url, meta: found.append(meta), delay_s=settings.metadata_debounce_s
        )
        task = gate.trigger(url)
        if task is not None:
            await task
    return found[0] if found else None
