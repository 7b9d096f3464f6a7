from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List

from . import __version__
from .config import Settings, load_settings
from .csv_codec import export_csv, import_csv_file
from .debounce import lookup_metadata
from .errors import KeepmarksError
from .log import LogConfig, get_logger, setup_logging, timed
from .maintenance import check_links_sync, refresh_favicons_sync
from .model import Bookmark, Folder, ReadingListItem
from .parse_netscape import import_html_file
from .store import BookmarkStore
from .url_norm import is_valid
from .writer_netscape import write_html_file

log = get_logger(__name__)


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="keepmarks",
        description="Bookmark store maintenance: CSV/HTML import-export, favicon refresh, dead-link check.",
    )
    p.add_argument("-V", "--version", action="version", version=f"keepmarks {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    p.add_argument("--db", default=None, help="SQLite store path (overrides env/config).")
    p.add_argument("--log-level", default=None, help="DEBUG/INFO/WARN/ERROR (overrides env/config).")
    p.add_argument("--no-color", action="store_true", help="Disable colored logging.")
    sub = p.add_subparsers(dest="cmd", required=True)

    ec = sub.add_parser("export-csv", help="Write a full CSV snapshot of folders and bookmarks.")
    ec.add_argument("out", help="Output CSV path.")

    ic = sub.add_parser("import-csv", help="Replace ALL folders and bookmarks with a CSV snapshot.")
    ic.add_argument("src", help="Input CSV path.")

    eh = sub.add_parser("export-html", help="Write a Netscape bookmark HTML file for browser import.")
    eh.add_argument("out", help="Output HTML path.")

    ih = sub.add_parser("import-html", help="Merge a browser bookmark HTML export (never deletes).")
    ih.add_argument("src", help="Input HTML path.")

    sub.add_parser("refresh-favicons", help="Fetch icons for bookmarks that have none.")
    sub.add_parser("check-links", help="Mark every bookmark as valid or dead.")

    rl = sub.add_parser("read-later", help="Queue a URL on the bounded reading list.")
    rl.add_argument("url", help="http(s) URL to queue.")
    rl.add_argument("name", nargs="?", default="", help="Display name (defaults to the URL).")
    rl.add_argument("--evict-oldest", action="store_true", help="Drop the oldest item instead of failing when full.")

    lk = sub.add_parser("lookup", help="Fetch title, description and icon link for a URL.")
    lk.add_argument("url", help="http(s) URL to look up.")

    args = p.parse_args(argv)
    cfg = load_settings(args.config)
    if args.db:
        cfg.db_path = args.db
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    setup_logging(LogConfig(level=cfg.log_level, no_color=cfg.no_color))

    try:
        with timed(log, args.cmd), BookmarkStore(cfg.db_path) as store:
            rc = _dispatch(args, cfg, store)
    except KeepmarksError as e:
        log.error("%s", e)
        return 2
    except OSError as e:
        log.error("I/O error: %s", e)
        return 2
    return rc


def _dispatch(args, cfg: Settings, store: BookmarkStore) -> int:
    if args.cmd == "export-csv":
        out = Path(args.out)
        text = export_csv(store.fetch(Folder), store.fetch(Bookmark, "sort_order"))
        out.write_text(text + "\n", encoding="utf-8")
        log.info("Wrote CSV snapshot: %s", out)
        return 0

    if args.cmd == "import-csv":
        stats = import_csv_file(Path(args.src), store, max_bytes=cfg.csv_max_bytes)
        print(f"folders={stats.folders} bookmarks={stats.bookmarks} skipped={stats.skipped}")
        return 0

    if args.cmd == "export-html":
        write_html_file(Path(args.out), store.fetch(Folder), store.fetch(Bookmark, "created_date"))
        return 0

    if args.cmd == "import-html":
        stats = import_html_file(Path(args.src), store, max_bytes=cfg.html_max_bytes)
        print(
            f"folders_created={stats.folders_created} bookmarks_added={stats.bookmarks_added} skipped={stats.skipped}"
        )
        return 0

    if args.cmd == "refresh-favicons":
        fetched = refresh_favicons_sync(store, store.fetch(Bookmark), cfg)
        print(f"favicons_fetched={fetched}")
        return 0

    if args.cmd == "check-links":
        valid, dead = check_links_sync(store, store.fetch(Bookmark), cfg)
        print(f"valid={valid} dead={dead}")
        return 0

    if args.cmd == "read-later":
        if not is_valid(args.url):
            log.error("Not an http(s) URL: %s", args.url)
            return 2
        item = store.add_to_reading_list(
            args.url, args.name, limit=cfg.reading_list_limit, evict_oldest=args.evict_oldest
        )
        store.save()
        print(f"queued={item.url} items={store.count(ReadingListItem)}")
        return 0

    if args.cmd == "lookup":
        meta = asyncio.run(lookup_metadata(args.url, cfg))
        if meta is None:
            log.warning("No metadata for %s", args.url)
            return 1
        print(f"title={meta.title or ''}")
        print(f"description={meta.description or ''}")
        print(f"favicon_url={meta.favicon_url or ''}")
        return 0

    raise ValueError(f"unknown command: {args.cmd}")
