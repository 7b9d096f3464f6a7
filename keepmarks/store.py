from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Type, TypeVar, Union

from .errors import FolderCycleError, ReadingListFullError, StoreIntegrityError
from .log import get_logger
from .model import Bookmark, Folder, LinkStatus, ReadingListItem
from .url_norm import canonicalize

log = get_logger(__name__)

Entity = Union[Bookmark, Folder, ReadingListItem]
E = TypeVar("E", Bookmark, Folder, ReadingListItem)

_TABLES: Dict[type, str] = {
    Folder: "folders",
    Bookmark: "bookmarks",
    ReadingListItem: "reading_list",
}

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS folders (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        sort_order INTEGER NOT NULL DEFAULT 0,
        color_name TEXT NOT NULL DEFAULT 'blue',
        icon_name TEXT NOT NULL DEFAULT 'folder.fill',
        parent_id INTEGER REFERENCES folders(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bookmarks (
        id INTEGER PRIMARY KEY,
        url TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created_date TEXT NOT NULL,
        is_favorite INTEGER NOT NULL DEFAULT 0,
        sort_order INTEGER NOT NULL DEFAULT 0,
        favicon_data BLOB,
        link_status TEXT NOT NULL DEFAULT 'unknown'
            CHECK (link_status IN ('unknown', 'valid', 'dead')),
        last_checked_date TEXT,
        folder_id INTEGER REFERENCES folders(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reading_list (
        id INTEGER PRIMARY KEY,
        url TEXT NOT NULL,
        name TEXT NOT NULL,
        favicon_data BLOB,
        added_date TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_folder ON bookmarks(folder_id)",
    "CREATE INDEX IF NOT EXISTS idx_folders_parent ON folders(parent_id)",
)


class BookmarkStore:
    """SQLite-backed CRUD store for folders, bookmarks and the reading list.

    Writes accumulate in one open transaction until ``save()``; ``rollback()``
    discards them. Foreign keys are enforced so a dangling ``folder_id`` or
    ``parent_id`` surfaces as ``StoreIntegrityError``.
    """

    def __init__(self, db_path: Union[Path, str] = ":memory:"):
        self.db_path = str(db_path)
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self) -> "BookmarkStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        for stmt in _SCHEMA:
            self.conn.execute(stmt)
        self.conn.commit()

    def close(self) -> None:
        if self.conn is not None:
            self.conn.rollback()
            self.conn.close()
            self.conn = None

    # -- persistence collaborator -------------------------------------------

    def insert(self, entity: Entity) -> Entity:
        table = _table_for(type(entity))
        if isinstance(entity, Folder):
            self._check_parent(entity)
        row = _to_row(entity)
        row.pop("id", None)
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        cur = self._execute(f"INSERT INTO {table} ({cols}) VALUES ({marks})", tuple(row.values()))
        entity.id = int(cur.lastrowid)
        return entity

    def update(self, entity: Entity) -> None:
        if entity.id is None:
            raise StoreIntegrityError(f"cannot update unsaved {type(entity).__name__}")
        table = _table_for(type(entity))
        if isinstance(entity, Folder):
            self._check_parent(entity)
        row = _to_row(entity)
        entity_id = row.pop("id")
        assignments = ", ".join(f"{c} = ?" for c in row)
        self._execute(f"UPDATE {table} SET {assignments} WHERE id = ?", (*row.values(), entity_id))

    def delete(self, entity: Entity) -> None:
        if entity.id is None:
            return
        table = _table_for(type(entity))
        # ON DELETE SET NULL detaches child folders and contained bookmarks.
        self._execute(f"DELETE FROM {table} WHERE id = ?", (entity.id,))
        entity.id = None

    def delete_all(self, entity_type: Type[Entity]) -> int:
        cur = self._execute(f"DELETE FROM {_table_for(entity_type)}")
        return cur.rowcount

    def fetch(self, entity_type: Type[E], sort_by: Optional[str] = None, *, descending: bool = False) -> List[E]:
        table = _table_for(entity_type)
        query = f"SELECT * FROM {table}"
        if sort_by is not None:
            if sort_by not in {f.name for f in fields(entity_type)}:
                raise ValueError(f"unknown sort key for {entity_type.__name__}: {sort_by}")
            query += f" ORDER BY {sort_by} {'DESC' if descending else 'ASC'}, id ASC"
        else:
            query += " ORDER BY id ASC"
        return [_from_row(entity_type, r) for r in self._cursor().execute(query)]

    def get(self, entity_type: Type[E], entity_id: int) -> Optional[E]:
        row = self._cursor().execute(
            f"SELECT * FROM {_table_for(entity_type)} WHERE id = ?", (entity_id,)
        ).fetchone()
        return _from_row(entity_type, row) if row is not None else None

    def count(self, entity_type: Type[Entity]) -> int:
        return int(self._cursor().execute(f"SELECT COUNT(*) FROM {_table_for(entity_type)}").fetchone()[0])

    def save(self) -> None:
        try:
            self._conn().commit()
        except sqlite3.IntegrityError as e:
            self._conn().rollback()
            raise StoreIntegrityError(str(e)) from e

    def rollback(self) -> None:
        self._conn().rollback()

    @contextmanager
    def transaction(self) -> Iterator["BookmarkStore"]:
        """Commit everything done in the block, or nothing at all."""
        try:
            yield self
            self.save()
        except BaseException:
            self.rollback()
            raise

    # -- tree helpers --------------------------------------------------------

    def children_of(self, folder: Optional[Folder]) -> List[Folder]:
        if folder is None:
            rows = self._cursor().execute("SELECT * FROM folders WHERE parent_id IS NULL ORDER BY sort_order, id")
        else:
            rows = self._cursor().execute(
                "SELECT * FROM folders WHERE parent_id = ? ORDER BY sort_order, id", (folder.id,)
            )
        return [_from_row(Folder, r) for r in rows]

    def bookmarks_in(self, folder: Optional[Folder]) -> List[Bookmark]:
        if folder is None:
            rows = self._cursor().execute("SELECT * FROM bookmarks WHERE folder_id IS NULL ORDER BY sort_order, id")
        else:
            rows = self._cursor().execute(
                "SELECT * FROM bookmarks WHERE folder_id = ? ORDER BY sort_order, id", (folder.id,)
            )
        return [_from_row(Bookmark, r) for r in rows]

    def folder_path(self, folder: Folder) -> str:
        by_id = {f.id: f for f in self.fetch(Folder)}
        return folder_path(folder, by_id)

    # -- reading list --------------------------------------------------------

    def add_to_reading_list(
        self,
        url: str,
        name: str,
        *,
        limit: int,
        favicon_data: Optional[bytes] = None,
        evict_oldest: bool = False,
    ) -> ReadingListItem:
        items = self.fetch(ReadingListItem, "added_date")
        key = canonicalize(url)
        for item in items:
            if canonicalize(item.url) == key:
                return item
        if len(items) >= limit:
            if not evict_oldest:
                raise ReadingListFullError(limit)
            for oldest in items[: len(items) - limit + 1]:
                log.debug("Reading list full; dropping oldest item %s", oldest.url)
                self.delete(oldest)
        item = ReadingListItem(url=key, name=name or key, favicon_data=favicon_data)
        self.insert(item)
        return item

    # -- internals -----------------------------------------------------------

    def _check_parent(self, folder: Folder) -> None:
        if folder.parent_id is None:
            return
        if folder.id is not None and folder.parent_id == folder.id:
            raise FolderCycleError(f"folder {folder.name!r} cannot be its own parent")
        parents = {
            int(r["id"]): r["parent_id"] for r in self._cursor().execute("SELECT id, parent_id FROM folders")
        }
        if folder.parent_id not in parents:
            raise StoreIntegrityError(f"parent folder {folder.parent_id} does not exist")
        # Bounded walk: a well-formed chain is never longer than the folder count.
        current: Optional[int] = folder.parent_id
        for _ in range(len(parents) + 1):
            if current is None:
                return
            if folder.id is not None and current == folder.id:
                raise FolderCycleError(f"folder {folder.name!r} would become its own ancestor")
            current = parents.get(current)
        raise FolderCycleError(f"ancestor chain of folder {folder.name!r} does not terminate")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._cursor().execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise StoreIntegrityError(str(e)) from e

    def _conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise RuntimeError("store is not open")
        return self.conn

    def _cursor(self) -> sqlite3.Cursor:
        return self._conn().cursor()


def folder_path(folder: Folder, by_id: Dict[Optional[int], Folder]) -> str:
    """Slash-joined names from the root down to ``folder``."""
    parts = [folder.name]
    current = by_id.get(folder.parent_id) if folder.parent_id is not None else None
    for _ in range(len(by_id)):
        if current is None:
            break
        parts.append(current.name)
        current = by_id.get(current.parent_id) if current.parent_id is not None else None
    return "/".join(reversed(parts))


def _table_for(entity_type: type) -> str:
    try:
        return _TABLES[entity_type]
    except KeyError:
        raise TypeError(f"not a stored entity type: {entity_type!r}") from None


def _to_row(entity: Entity) -> Dict[str, object]:
    row: Dict[str, object] = {}
    for f in fields(entity):
        v = getattr(entity, f.name)
        if isinstance(v, datetime):
            v = _dt_to_text(v)
        elif isinstance(v, LinkStatus):
            v = v.value
        elif isinstance(v, bool):
            v = int(v)
        row[f.name] = v
    return row


def _from_row(entity_type: Type[E], row: sqlite3.Row) -> E:
    kwargs = {}
    for f in fields(entity_type):
        v = row[f.name]
        if f.name in ("created_date", "last_checked_date", "added_date"):
            v = _dt_from_text(v)
        elif f.name == "link_status":
            v = LinkStatus(v)
        elif f.name == "is_favorite":
            v = bool(v)
        elif f.name == "favicon_data" and v is not None:
            v = bytes(v)
        kwargs[f.name] = v
    return entity_type(**kwargs)


def _dt_to_text(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt_from_text(v: Optional[str]) -> Optional[datetime]:
    if v is None:
        return None
    dt = datetime.fromisoformat(v)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
