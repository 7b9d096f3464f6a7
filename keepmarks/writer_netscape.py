from __future__ import annotations

from datetime import timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .log import get_logger
from .model import Bookmark, Folder

log = get_logger(__name__)

INDENT = "    "


def export_html(folders: Sequence[Folder], bookmarks: Sequence[Bookmark], *, title: str = "Bookmarks") -> str:
    """Render a Netscape Bookmark File that Safari, Chrome, Firefox and Edge import.

    Un-foldered bookmarks come first (caller order), then root folders
    alphabetically. Inside a folder, subfolders precede bookmarks, which are
    ordered oldest first.
    """
    children: Dict[Optional[int], List[Folder]] = {}
    ids = {f.id for f in folders}
    for f in folders:
        key = f.parent_id if f.parent_id in ids else None
        children.setdefault(key, []).append(f)

    contents: Dict[Optional[int], List[Bookmark]] = {}
    for b in bookmarks:
        key = b.folder_id if b.folder_id in ids else None
        contents.setdefault(key, []).append(b)

    lines: List[str] = []
    lines.append("<!DOCTYPE NETSCAPE-Bookmark-file-1>")
    lines.append("<!-- This is an automatically generated file.")
    lines.append("     It will be read and overwritten.")
    lines.append("     DO NOT EDIT! -->")
    lines.append('<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">')
    lines.append(f"<TITLE>{escape_html(title)}</TITLE>")
    lines.append(f"<H1>{escape_html(title)}</H1>")
    lines.append("<DL><p>")

    for b in contents.get(None, []):
        _write_bookmark(lines, b, INDENT)

    visited: set = set()
    for folder in sorted(children.get(None, []), key=lambda f: f.name):
        _write_folder(lines, folder, children, contents, INDENT, visited)

    lines.append("</DL><p>")
    return "\n".join(lines)


def write_html_file(
    out_path: Path, folders: Sequence[Folder], bookmarks: Sequence[Bookmark], *, title: str = "Bookmarks"
) -> None:
    out_path.write_text(export_html(folders, bookmarks, title=title) + "\n", encoding="utf-8")
    log.info("Wrote Netscape bookmarks HTML: %s (%d folders, %d bookmarks)", out_path, len(folders), len(bookmarks))


def _write_folder(
    lines: List[str],
    folder: Folder,
    children: Dict[Optional[int], List[Folder]],
    contents: Dict[Optional[int], List[Bookmark]],
    indent: str,
    visited: set,
) -> None:
    if folder.id in visited:
        return
    visited.add(folder.id)

    lines.append(f"{indent}<DT><H3>{escape_html(folder.name)}</H3>")
    lines.append(f"{indent}<DL><p>")
    for child in sorted(children.get(folder.id, []), key=lambda f: f.name):
        _write_folder(lines, child, children, contents, indent + INDENT, visited)
    for b in sorted(contents.get(folder.id, []), key=lambda b: b.created_date):
        _write_bookmark(lines, b, indent + INDENT)
    lines.append(f"{indent}</DL><p>")


def _write_bookmark(lines: List[str], b: Bookmark, indent: str) -> None:
    created = b.created_date
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    add_date = int(created.timestamp())
    lines.append(f'{indent}<DT><A HREF="{escape_html(b.url)}" ADD_DATE="{add_date}">{escape_html(b.name)}</A>')
    if b.description:
        lines.append(f"{indent}<DD>{escape_html(b.description)}")


def escape_html(s: str) -> str:
    # Apostrophes are left alone; attributes are always double-quoted.
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")
