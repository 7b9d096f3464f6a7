from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup  # type: ignore
from PIL import Image, UnidentifiedImageError

from .config import Settings
from .log import get_logger
from .url_norm import host_of, is_valid

log = get_logger(__name__)

# Only the <head> matters for metadata; don't pull whole pages.
MAX_PAGE_BYTES = 350_000


@dataclass
class PageMetadata:
    title: Optional[str]
    description: Optional[str]
    favicon_url: Optional[str]


async def fetch_page_metadata(client: httpx.AsyncClient, url: str) -> Optional[PageMetadata]:
    """GET ``url`` and pull title, description and favicon link from it."""
    try:
        r = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        log.debug("Metadata fetch failed for %s: %s", url, e)
        return None
    if not r.is_success:
        return None
    return extract_metadata(r.content[:MAX_PAGE_BYTES], base_url=str(r.url))


def extract_metadata(content: bytes, *, base_url: str) -> PageMetadata:
    if not content:
        return PageMetadata(title=None, description=None, favicon_url=_default_favicon_url(base_url))
    soup = BeautifulSoup(content, "lxml")
    title = soup.title.get_text(strip=True) if soup.title else None
    desc = None
    m = soup.find("meta", attrs={"name": "description"}) or soup.find("meta", attrs={"property": "og:description"})
    if m and m.get("content"):
        desc = m.get("content").strip()
    return PageMetadata(title=title or None, description=desc or None, favicon_url=_extract_favicon_url(soup, base_url))


def _extract_favicon_url(soup, base_url: str) -> Optional[str]:
    # Prefer explicit icon declarations.
    for link in soup.find_all("link"):
        rel = " ".join(x.lower() for x in (link.get("rel") or []))
        href = (link.get("href") or "").strip()
        if not href:
            continue
        if "icon" in rel:
            return urljoin(base_url, href)
    return _default_favicon_url(base_url)


def _default_favicon_url(base_url: str) -> Optional[str]:
    p = urlsplit(base_url)
    if p.scheme and p.netloc:
        return f"{p.scheme}://{p.netloc}/favicon.ico"
    return None


async def fetch_favicon(client: httpx.AsyncClient, url: str, settings: Settings) -> Optional[bytes]:
    """PNG bytes for the site's icon, or None when nothing usable was found.

    The page's own icon declaration wins; the favicon-by-domain service is the
    fallback.
    """
    host = host_of(url)
    if not host or not is_valid(url):
        return None

    meta = await fetch_page_metadata(client, url)
    if meta is not None and meta.favicon_url:
        data = await _fetch_image(client, meta.favicon_url)
        if data is not None:
            return data

    fallback = settings.favicon_fallback_url.format(host=host, size=settings.favicon_size)
    return await _fetch_image(client, fallback)


async def _fetch_image(client: httpx.AsyncClient, url: str) -> Optional[bytes]:
    try:
        r = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        log.debug("Icon fetch failed for %s: %s", url, e)
        return None
    if not r.is_success or not r.content:
        return None
    return to_png(r.content)


def to_png(data: bytes) -> Optional[bytes]:
    """Re-encode any image Pillow can read as PNG; None if it can't."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                img = img.convert("RGBA")
            out = io.BytesIO()
            img.save(out, format="PNG")
            return out.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        log.debug("Discarding undecodable icon payload (%d bytes): %s", len(data), e)
        return None
