from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Optional

DEFAULT_COLOR = "blue"
DEFAULT_ICON = "folder.fill"

FOLDER_COLORS = ("blue", "red", "green", "orange", "purple", "pink", "teal", "brown")
FOLDER_ICONS = (
    "folder.fill",
    "book.fill",
    "briefcase.fill",
    "star.fill",
    "heart.fill",
    "globe",
    "wrench.fill",
    "gamecontroller.fill",
    "music.note",
    "graduationcap.fill",
    "cart.fill",
    "house.fill",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def color_for(name: str) -> str:
    return name if name in FOLDER_COLORS else DEFAULT_COLOR


class LinkStatus(str, enum.Enum):
    UNKNOWN = "unknown"
    VALID = "valid"
    DEAD = "dead"


@dataclass
class Folder:
    name: str
    sort_order: int = 0
    color_name: str = DEFAULT_COLOR
    icon_name: str = DEFAULT_ICON
    parent_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class Bookmark:
    url: str
    name: str
    description: str = ""
    created_date: datetime = field(default_factory=utc_now)
    is_favorite: bool = False
    sort_order: int = 0
    favicon_data: Optional[bytes] = None
    link_status: LinkStatus = LinkStatus.UNKNOWN
    last_checked_date: Optional[datetime] = None
    folder_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class ReadingListItem:
    url: str
    name: str
    favicon_data: Optional[bytes] = None
    added_date: datetime = field(default_factory=utc_now)
    id: Optional[int] = None


@dataclass(frozen=True)
class CSVImportStats:
    folders: int
    bookmarks: int
    skipped: int


@dataclass(frozen=True)
class HTMLImportStats:
    folders_created: int
    bookmarks_added: int
    skipped: int


@dataclass
class LinkCheckSummary:
    valid: int = 0
    dead: int = 0

    def __iter__(self) -> Iterator[int]:
        # Allows `valid, dead = summary`.
        return iter((self.valid, self.dead))
