from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit

ALLOWED_SCHEMES = ("http", "https")


def is_valid(url: str) -> bool:
    """True for absolute http(s) URLs with a non-empty host."""
    if not url or any(ch.isspace() for ch in url):
        return False
    try:
        p = urlsplit(url)
        host = p.hostname
        p.port  # raises on a malformed port
    except ValueError:
        return False
    return p.scheme.lower() in ALLOWED_SCHEMES and bool(host)


def canonicalize(url: str) -> str:
    """Dedup key: trimmed, scheme/host lowercased, bare root slash dropped.

    Path, query and fragment are kept byte-for-byte. Never raises; anything
    that does not split as a URL comes back trimmed.
    """
    trimmed = url.strip()
    try:
        p = urlsplit(trimmed)
    except ValueError:
        return trimmed
    if not p.scheme or not trimmed[: len(p.scheme)].lower() == p.scheme:
        return trimmed

    rest = trimmed[len(p.scheme):]
    if p.netloc and rest.startswith("://") and rest[3: 3 + len(p.netloc)] == p.netloc:
        rest = "://" + _lower_netloc(p.netloc) + rest[3 + len(p.netloc):]
    out = p.scheme + rest

    if p.path == "/" and out.endswith("/"):
        out = out[:-1]
    return out


def host_of(url: str) -> Optional[str]:
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    return host or None


def _lower_netloc(netloc: str) -> str:
    # Only the host is case-folded; userinfo keeps its case.
    userinfo, sep, hostport = netloc.rpartition("@")
    if hostport.startswith("["):
        end = hostport.find("]")
        if end != -1:
            return userinfo + sep + hostport[: end + 1].lower() + hostport[end + 1:]
    host, colon, port = hostport.partition(":")
    return userinfo + sep + host.lower() + colon + port
