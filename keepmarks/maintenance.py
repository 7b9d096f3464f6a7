from __future__ import annotations

import asyncio
import time
from contextlib import aclosing, asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar
from urllib.parse import urljoin, urlsplit

import httpx

from .config import Settings
from .favicons import fetch_favicon
from .limiter import ConcurrencyLimiter
from .log import get_logger
from .model import Bookmark, LinkCheckSummary, LinkStatus, utc_now
from .store import BookmarkStore
from .url_norm import ALLOWED_SCHEMES, is_valid

log = get_logger(__name__)

R = TypeVar("R")


async def probe_link(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_s: float = 10.0,
    max_redirects: int = 10,
) -> LinkStatus:
    """HEAD ``url`` and classify it; never raises.

    Redirects are followed by hand so that one pointing at a non-http(s)
    scheme is refused; the refused redirect response is then what gets
    judged.
    """
    if not is_valid(url):
        return LinkStatus.DEAD
    try:
        request = client.build_request("HEAD", url, timeout=timeout_s)
        for _ in range(max_redirects + 1):
            response = await client.send(request, follow_redirects=False)
            await response.aclose()
            target = _safe_redirect_target(response)
            if target is None:
                return _status_for(response.status_code)
            request = client.build_request("HEAD", target, timeout=timeout_s)
        log.debug("Too many redirects: %s", url)
        return LinkStatus.DEAD
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        log.debug("Link check failed for %s: %s", url, e)
        return LinkStatus.DEAD


def _safe_redirect_target(response: httpx.Response) -> Optional[str]:
    if not response.is_redirect:
        return None
    location = response.headers.get("location", "").strip()
    if not location:
        return None
    target = urljoin(str(response.url), location)
    if urlsplit(target).scheme.lower() not in ALLOWED_SCHEMES:
        log.debug("Refusing redirect from %s to %r", response.url, location)
        return None
    return target


def _status_for(status_code: int) -> LinkStatus:
    return LinkStatus.VALID if 200 <= status_code < 400 else LinkStatus.DEAD


async def check_links(
    store: BookmarkStore,
    bookmarks: Sequence[Bookmark],
    settings: Optional[Settings] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> LinkCheckSummary:
    """Mark every bookmark valid or dead and stamp ``last_checked_date``."""
    settings = settings or Settings()
    summary = LinkCheckSummary()
    t0 = time.time()

    async with _session(client, settings, timeout_s=settings.link_check_timeout_s, follow_redirects=False) as c:

        async def _check(b: Bookmark) -> LinkStatus:
            return await probe_link(
                c, b.url, timeout_s=settings.link_check_timeout_s, max_redirects=settings.max_redirects
            )

        async with aclosing(_fan_out(bookmarks, _check, jobs=settings.network_jobs)) as results:
            async for b, status in results:
                # Applied only after this bookmark's own request returned.
                b.link_status = status or LinkStatus.DEAD
                b.last_checked_date = utc_now()
                store.update(b)
                store.save()
                if b.link_status is LinkStatus.VALID:
                    summary.valid += 1
                else:
                    summary.dead += 1

    log.info(
        "Checked %d links in %d ms: %d valid, %d dead.",
        len(bookmarks),
        int((time.time() - t0) * 1000),
        summary.valid,
        summary.dead,
    )
    return summary


async def refresh_favicons(
    store: BookmarkStore,
    bookmarks: Sequence[Bookmark],
    settings: Optional[Settings] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    """Fetch icons for bookmarks that have none; returns how many were filled."""
    settings = settings or Settings()
    targets = [b for b in bookmarks if b.favicon_data is None]
    fetched = 0

    async with _session(client, settings, timeout_s=settings.favicon_timeout_s, follow_redirects=True) as c:

        async def _fetch(b: Bookmark) -> Optional[bytes]:
            return await fetch_favicon(c, b.url, settings)

        async with aclosing(_fan_out(targets, _fetch, jobs=settings.network_jobs)) as results:
            async for b, data in results:
                if data is None:
                    continue
                b.favicon_data = data
                store.update(b)
                store.save()
                fetched += 1

    log.info("Fetched %d/%d missing favicons.", fetched, len(targets))
    return fetched


def check_links_sync(store: BookmarkStore, bookmarks: Sequence[Bookmark], settings: Optional[Settings] = None) -> LinkCheckSummary:
    return asyncio.run(check_links(store, bookmarks, settings))


def refresh_favicons_sync(store: BookmarkStore, bookmarks: Sequence[Bookmark], settings: Optional[Settings] = None) -> int:
    return asyncio.run(refresh_favicons(store, bookmarks, settings))


async def _fan_out(
    bookmarks: Sequence[Bookmark],
    work: Callable[[Bookmark], Awaitable[R]],
    *,
    jobs: int,
) -> AsyncIterator[Tuple[Bookmark, Optional[R]]]:
    """Run ``work`` per bookmark, at most ``jobs`` at a time, yielding as they finish.

    Only the consumer of this generator mutates bookmarks; if it stops early
    or is cancelled, unfinished tasks are cancelled and nothing more is
    applied.
    """
    limiter = ConcurrencyLimiter(max(1, jobs))

    async def _one(b: Bookmark) -> Tuple[Bookmark, Optional[R]]:
        async with limiter:
            try:
                return b, await work(b)
            except Exception as e:
                # Absorbed per bookmark; the batch keeps going.
                log.warning("Maintenance task failed for %s: %s", b.url, e)
                return b, None

    tasks: List[asyncio.Task] = [asyncio.ensure_future(_one(b)) for b in bookmarks]
    try:
        for fut in asyncio.as_completed(tasks):
            yield await fut
    finally:
        pending = [t for t in tasks if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


@asynccontextmanager
async def _session(
    client: Optional[httpx.AsyncClient],
    settings: Settings,
    *,
    timeout_s: float,
    follow_redirects: bool,
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    # Fresh client per run: no cookies or pooled connections carry over.
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_s, connect=timeout_s),
        follow_redirects=follow_redirects,
        max_redirects=settings.max_redirects,
        headers={"User-Agent": settings.user_agent},
    ) as c:
        yield c
