from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import FileTooLargeError, InvalidRowError, MissingSectionError, NotUTF8Error
from .log import get_logger
from .model import DEFAULT_COLOR, DEFAULT_ICON, Bookmark, CSVImportStats, Folder, utc_now
from .store import BookmarkStore, folder_path
from .url_norm import is_valid

log = get_logger(__name__)

MAX_CSV_BYTES = 5 * 1024 * 1024

FOLDERS_MARKER = "#FOLDERS"
BOOKMARKS_MARKER = "#BOOKMARKS"
FOLDERS_HEADER = "name,sortOrder,parentPath,colorName,iconName"
BOOKMARKS_HEADER = "url,name,descriptionText,createdDate,isFavorite,sortOrder,folderPath"

# Leading characters spreadsheet apps treat as the start of a formula.
INJECTION_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


@dataclass(frozen=True)
class _FolderRow:
    name: str
    sort_order: int
    parent_path: str
    color_name: str
    icon_name: str

    @property
    def depth(self) -> int:
        return 0 if not self.parent_path else len(self.parent_path.split("/"))

    @property
    def path(self) -> str:
        return f"{self.parent_path}/{self.name}" if self.parent_path else self.name


@dataclass(frozen=True)
class _BookmarkRow:
    url: str
    name: str
    description: str
    created_date: datetime
    is_favorite: bool
    sort_order: int
    folder_path: str


# -- export -----------------------------------------------------------------


def export_csv(folders: Sequence[Folder], bookmarks: Sequence[Bookmark]) -> str:
    """Render a full snapshot: every folder (pre-order) then every bookmark."""
    by_id: Dict[Optional[int], Folder] = {f.id: f for f in folders}

    lines: List[str] = [FOLDERS_MARKER, FOLDERS_HEADER]
    for folder in _folders_preorder(folders):
        parent = by_id.get(folder.parent_id) if folder.parent_id is not None else None
        parent_path = folder_path(parent, by_id) if parent is not None else ""
        lines.append(
            _render_row([folder.name, str(folder.sort_order), parent_path, folder.color_name, folder.icon_name])
        )

    lines.append("")
    lines.append(BOOKMARKS_MARKER)
    lines.append(BOOKMARKS_HEADER)
    for b in bookmarks:
        folder = by_id.get(b.folder_id) if b.folder_id is not None else None
        lines.append(
            _render_row(
                [
                    b.url,
                    b.name,
                    b.description,
                    _format_date(b.created_date),
                    "true" if b.is_favorite else "false",
                    str(b.sort_order),
                    folder_path(folder, by_id) if folder is not None else "",
                ]
            )
        )
    return "\n".join(lines)


def _folders_preorder(folders: Sequence[Folder]) -> List[Folder]:
    children: Dict[Optional[int], List[Folder]] = {}
    ids = {f.id for f in folders}
    for f in folders:
        # A parent outside the exported set makes the folder a root.
        key = f.parent_id if f.parent_id in ids else None
        children.setdefault(key, []).append(f)

    out: List[Folder] = []
    visited = set()

    def _collect(folder: Folder) -> None:
        if folder.id in visited:
            return
        visited.add(folder.id)
        out.append(folder)
        for child in sorted(children.get(folder.id, []), key=lambda c: c.sort_order):
            _collect(child)

    for root in sorted(children.get(None, []), key=lambda c: c.sort_order):
        _collect(root)
    return out


def escape_field(value: str) -> str:
    """Neutralize formula prefixes, then quote per RFC 4180."""
    guarded = value.startswith(INJECTION_PREFIXES)
    if guarded:
        value = "'" + value
    if guarded or any(ch in value for ch in ',"\n\r'):
        return '"' + value.replace('"', '""') + '"'
    return value


def _render_row(fields: Iterable[str]) -> str:
    return ",".join(escape_field(f) for f in fields)


def _format_date(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# -- parsing ----------------------------------------------------------------


def parse_csv_row(row: str) -> List[str]:
    """Split one record into fields.

    Quoted spans may contain commas and newlines; ``""`` inside a quoted
    span is a literal quote.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    n = len(row)
    while i < n:
        ch = row[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < n and row[i + 1] == '"':
                    current.append('"')
                    i += 2
                    continue
                in_quotes = False
            else:
                current.append(ch)
        elif ch == '"':
            in_quotes = True
        elif ch == ",":
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return fields


def strip_injection_prefix(value: str) -> str:
    """Undo the export guard without eating legitimate leading apostrophes."""
    if len(value) >= 2 and value[0] == "'" and value[1] in INJECTION_PREFIXES:
        return value[1:]
    return value


def split_records(text: str) -> List[str]:
    """Split on line breaks that are not inside a quoted field."""
    records: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            in_quotes = not in_quotes
            current.append(ch)
        elif ch in "\r\n" and not in_quotes:
            records.append("".join(current))
            current = []
            if ch == "\r" and i + 1 < n and text[i + 1] == "\n":
                i += 1
        else:
            current.append(ch)
        i += 1
    records.append("".join(current))
    return records


# -- import -----------------------------------------------------------------


def import_csv_file(path: Path, store: BookmarkStore, *, max_bytes: int = MAX_CSV_BYTES) -> CSVImportStats:
    size = path.stat().st_size
    if size > max_bytes:
        raise FileTooLargeError(size, max_bytes)
    try:
        text = path.read_bytes().decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise NotUTF8Error(path.name) from e
    return import_csv(text, store, max_bytes=max_bytes)


def import_csv(text: str, store: BookmarkStore, *, max_bytes: int = MAX_CSV_BYTES) -> CSVImportStats:
    """Replace every folder and bookmark in ``store`` with the CSV contents.

    All rows are parsed and validated before the store is touched; a
    malformed row raises ``InvalidRowError`` and leaves the store unchanged.
    Bookmark rows with an invalid URL are skipped and counted.
    """
    size = len(text.encode("utf-8"))
    if size > max_bytes:
        raise FileTooLargeError(size, max_bytes)

    records = split_records(text)
    folders_idx = _find_marker(records, FOLDERS_MARKER)
    bookmarks_idx = _find_marker(records, BOOKMARKS_MARKER)
    if folders_idx is None:
        raise MissingSectionError(FOLDERS_MARKER)
    if bookmarks_idx is None:
        raise MissingSectionError(BOOKMARKS_MARKER)

    folder_records = _section_rows(records, folders_idx, bookmarks_idx if bookmarks_idx > folders_idx else len(records))
    bookmark_records = _section_rows(records, bookmarks_idx, folders_idx if folders_idx > bookmarks_idx else len(records))

    folder_rows = [_parse_folder_row(r) for r in folder_records]

    bookmark_rows: List[_BookmarkRow] = []
    skipped = 0
    for r in bookmark_records:
        parsed = _parse_bookmark_row(r)
        if not is_valid(parsed.url):
            log.debug("Skipping CSV bookmark with invalid URL: %r", parsed.url)
            skipped += 1
            continue
        bookmark_rows.append(parsed)

    with store.transaction():
        store.delete_all(Bookmark)
        store.delete_all(Folder)

        lookup: Dict[str, Folder] = {}
        # Stable sort keeps file order within one depth.
        for row in sorted(folder_rows, key=lambda r: r.depth):
            parent = lookup.get(row.parent_path) if row.parent_path else None
            folder = Folder(
                name=row.name,
                sort_order=row.sort_order,
                color_name=row.color_name,
                icon_name=row.icon_name,
                parent_id=parent.id if parent is not None else None,
            )
            store.insert(folder)
            lookup[row.path] = folder

        for row in bookmark_rows:
            folder = lookup.get(row.folder_path) if row.folder_path else None
            store.insert(
                Bookmark(
                    url=row.url,
                    name=row.name,
                    description=row.description,
                    created_date=row.created_date,
                    is_favorite=row.is_favorite,
                    sort_order=row.sort_order,
                    folder_id=folder.id if folder is not None else None,
                )
            )

    stats = CSVImportStats(folders=len(folder_rows), bookmarks=len(bookmark_rows), skipped=skipped)
    log.info(
        "CSV import replaced store contents: %d folders, %d bookmarks, %d skipped.",
        stats.folders,
        stats.bookmarks,
        stats.skipped,
    )
    return stats


def _find_marker(records: List[str], marker: str) -> Optional[int]:
    for i, r in enumerate(records):
        if r.strip() == marker:
            return i
    return None


def _section_rows(records: List[str], marker_idx: int, end_idx: int) -> List[str]:
    # marker_idx + 1 is the column header.
    return [r for r in records[marker_idx + 2:end_idx] if r.strip()]


def _parse_folder_row(row: str) -> _FolderRow:
    fields = [strip_injection_prefix(f) for f in parse_csv_row(row)]
    if len(fields) < 3:
        raise InvalidRowError(row)
    color = fields[3] if len(fields) > 3 else ""
    icon = fields[4] if len(fields) > 4 else ""
    return _FolderRow(
        name=fields[0],
        sort_order=_parse_int(fields[1]),
        parent_path=fields[2],
        color_name=color or DEFAULT_COLOR,
        icon_name=icon or DEFAULT_ICON,
    )


def _parse_bookmark_row(row: str) -> _BookmarkRow:
    fields = [strip_injection_prefix(f) for f in parse_csv_row(row)]
    if len(fields) < 7:
        raise InvalidRowError(row)
    return _BookmarkRow(
        url=fields[0],
        name=fields[1],
        description=fields[2],
        created_date=_parse_date(fields[3]),
        is_favorite=fields[4].strip().lower() == "true",
        sort_order=_parse_int(fields[5]),
        folder_path=fields[6],
    )


def _parse_int(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0


def _parse_date(value: str) -> datetime:
    v = value.strip()
    if not v:
        return utc_now()
    try:
        dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        return utc_now()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
