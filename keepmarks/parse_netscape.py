from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Set

from .errors import FileTooLargeError
from .log import get_logger
from .model import Bookmark, Folder, HTMLImportStats, utc_now
from .store import BookmarkStore
from .url_norm import canonicalize, is_valid

log = get_logger(__name__)

MAX_HTML_BYTES = 10 * 1024 * 1024

_WS_RE = re.compile(r"\s+")
_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&apos;", "'"),
    # Last, so "&amp;lt;" stays "&lt;".
    ("&amp;", "&"),
)


class TokenKind(enum.Enum):
    OPEN_LIST = "open_list"
    CLOSE_LIST = "close_list"
    FOLDER = "folder"
    BOOKMARK = "bookmark"
    DESCRIPTION = "description"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str = ""
    url: str = ""
    add_date: Optional[datetime] = None


# -- scanner ----------------------------------------------------------------


def scan(html: str) -> Iterator[Token]:
    """Single forward pass over ``<...>`` boundaries; no DOM is built.

    Unknown tags (DT, P, META, TITLE, H1...) are stepped over, which is what
    makes the malformed nesting real exports contain harmless.
    """
    idx = 0
    end = len(html)
    while idx < end:
        lt = html.find("<", idx)
        if lt == -1:
            break
        if html.startswith("<!--", lt):
            close = html.find("-->", lt + 4)
            if close == -1:
                break
            idx = close + 3
            continue
        gt = html.find(">", lt + 1)
        if gt == -1:
            break

        tag = html[lt + 1:gt]
        name = _tag_name(tag)
        after = gt + 1

        if name == "dl":
            yield Token(TokenKind.OPEN_LIST)
            idx = after
        elif name == "/dl":
            yield Token(TokenKind.CLOSE_LIST)
            idx = after
        elif name == "h3":
            close = _find_ci(html, "</h3>", after)
            if close == -1:
                idx = after
                continue
            text = _label(html[after:close])
            if text:
                yield Token(TokenKind.FOLDER, text=text)
            idx = close + len("</h3>")
        elif name == "a":
            close = _find_ci(html, "</a>", after)
            if close == -1:
                idx = after
                continue
            yield Token(
                TokenKind.BOOKMARK,
                text=_label(html[after:close]),
                url=attribute("href", tag) or "",
                add_date=_epoch_attribute("add_date", tag),
            )
            idx = close + len("</a>")
        elif name == "dd":
            text_end = html.find("<", after)
            if text_end == -1:
                text_end = end
            raw = html[after:text_end].strip()
            if raw:
                yield Token(TokenKind.DESCRIPTION, text=unescape(raw))
            idx = after
        else:
            idx = after


def attribute(name: str, tag: str) -> Optional[str]:
    """Value of ``name`` in a raw tag body; double-, single- or un-quoted."""
    m = re.search(
        r"(?<![\w-])" + re.escape(name) + r"""\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""",
        tag,
        re.IGNORECASE,
    )
    if not m:
        return None
    for group in m.groups():
        if group is not None:
            return unescape(group)
    return None


def unescape(s: str) -> str:
    for entity, ch in _ENTITIES:
        s = s.replace(entity, ch)
    return s.strip()


def _label(s: str) -> str:
    return _WS_RE.sub(" ", unescape(s))


def _tag_name(tag: str) -> str:
    parts = tag.split(None, 1)
    return parts[0].lower() if parts else ""


def _find_ci(html: str, needle: str, start: int) -> int:
    m = re.compile(re.escape(needle), re.IGNORECASE).search(html, start)
    return m.start() if m else -1


def _epoch_attribute(name: str, tag: str) -> Optional[datetime]:
    raw = attribute(name, tag)
    if raw is None:
        return None
    try:
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


# -- import -----------------------------------------------------------------


def import_html_file(path: Path, store: BookmarkStore, *, max_bytes: int = MAX_HTML_BYTES) -> HTMLImportStats:
    size = path.stat().st_size
    if size > max_bytes:
        raise FileTooLargeError(size, max_bytes)
    return import_html(path.read_text(encoding="utf-8", errors="replace"), store, max_bytes=max_bytes)


def import_html(html: str, store: BookmarkStore, *, max_bytes: int = MAX_HTML_BYTES) -> HTMLImportStats:
    """Merge a Netscape bookmark file into ``store`` without deleting anything.

    Bookmarks whose canonical URL is already stored (or appeared earlier in
    the file) are skipped, as are invalid URLs. Folders are matched by
    case-insensitive name under the same parent and created when missing.
    """
    size = len(html.encode("utf-8"))
    if size > max_bytes:
        raise FileTooLargeError(size, max_bytes)

    with store.transaction():
        stats = _merge_tokens(scan(html), store)

    log.info(
        "HTML import: %d folders created, %d bookmarks added, %d skipped.",
        stats.folders_created,
        stats.bookmarks_added,
        stats.skipped,
    )
    return stats


def _merge_tokens(tokens: Iterator[Token], store: BookmarkStore) -> HTMLImportStats:
    seen: Set[str] = {canonicalize(b.url) for b in store.fetch(Bookmark)}
    known_folders: List[Folder] = store.fetch(Folder)

    folders_created = 0
    bookmarks_added = 0
    skipped = 0

    # Undated bookmarks get base + n ms so sorting by date keeps file order.
    batch_base = utc_now()

    # None entries stand for the root (uncategorized) level.
    stack: List[Optional[Folder]] = []
    pending_folder: Optional[str] = None
    last_bookmark: Optional[Bookmark] = None

    for token in tokens:
        if token.kind is TokenKind.OPEN_LIST:
            if pending_folder is not None:
                parent = stack[-1] if stack else None
                folder, created = _find_or_create_folder(pending_folder, parent, known_folders, store)
                folders_created += created
                stack.append(folder)
                pending_folder = None
            else:
                # An unnamed list stays in the enclosing folder; pushing keeps
                # its </DL> from popping that folder.
                stack.append(stack[-1] if stack else None)
            last_bookmark = None

        elif token.kind is TokenKind.CLOSE_LIST:
            if stack:
                stack.pop()
            last_bookmark = None

        elif token.kind is TokenKind.FOLDER:
            pending_folder = token.text
            last_bookmark = None

        elif token.kind is TokenKind.BOOKMARK:
            last_bookmark = None
            if not is_valid(token.url):
                log.debug("Skipping bookmark with invalid URL: %r", token.url)
                skipped += 1
                continue
            key = canonicalize(token.url)
            if key in seen:
                log.debug("Skipping duplicate bookmark: %s", key)
                skipped += 1
                continue
            seen.add(key)

            folder = stack[-1] if stack else None
            bookmark = Bookmark(
                url=key,
                name=token.text or key,
                created_date=token.add_date or batch_base + timedelta(milliseconds=bookmarks_added),
                folder_id=folder.id if folder is not None else None,
            )
            store.insert(bookmark)
            last_bookmark = bookmark
            bookmarks_added += 1

        elif token.kind is TokenKind.DESCRIPTION:
            if last_bookmark is not None:
                last_bookmark.description = token.text
                store.update(last_bookmark)
            last_bookmark = None

    return HTMLImportStats(folders_created=folders_created, bookmarks_added=bookmarks_added, skipped=skipped)


def _find_or_create_folder(
    name: str, parent: Optional[Folder], known: List[Folder], store: BookmarkStore
) -> tuple[Folder, int]:
    parent_id = parent.id if parent is not None else None
    wanted = name.casefold()
    for f in known:
        if f.parent_id == parent_id and f.name.casefold() == wanted:
            return f, 0
    folder = Folder(name=name, parent_id=parent_id)
    store.insert(folder)
    known.append(folder)
    return folder, 1
