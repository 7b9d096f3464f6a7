from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from keepmarks.errors import FileTooLargeError
from keepmarks.model import Bookmark, Folder
from keepmarks.parse_netscape import TokenKind, attribute, import_html, import_html_file, scan
from keepmarks.writer_netscape import export_html, write_html_file

BROWSER_EXPORT = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<!-- This is an automatically generated file.
     It will be read and overwritten.
     DO NOT EDIT! -->
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
<DL><p>
    <DT><A HREF="https://loose.example/" ADD_DATE="1700000000">Loose &amp; Free</A>
    <DD>A root-level bookmark
    <DT><H3 ADD_DATE="1700000000">Dev</H3>
    <DL><p>
        <DT><H3>Python</H3>
        <DL><p>
            <DT><A HREF="https://docs.python.org/3/">Python docs</A>
            <DT><A HREF="https://pypi.org/">PyPI</A>
        </DL><p>
        <DT><a href='https://github.com' add_date=1600000000>GitHub</a>
    </DL><p>
    <DT><H3>Python</H3>
    <DL><p>
        <DT><A HREF="https://www.python.org/">Top-level Python</A>
    </DL><p>
    <DT><A HREF="ftp://files.example/">FTP</A>
    <DT><A HREF="HTTPS://LOOSE.example">Duplicate of loose</A>
</DL><p>
"""


def test_scanner_emits_tokens_in_order():
    kinds = [t.kind for t in scan(BROWSER_EXPORT)]
    assert kinds[:4] == [TokenKind.OPEN_LIST, TokenKind.BOOKMARK, TokenKind.DESCRIPTION, TokenKind.FOLDER]
    assert kinds.count(TokenKind.OPEN_LIST) == kinds.count(TokenKind.CLOSE_LIST) == 4
    assert kinds.count(TokenKind.BOOKMARK) == 7


def test_scanner_extracts_attributes_and_unescapes():
    tokens = [t for t in scan(BROWSER_EXPORT) if t.kind is TokenKind.BOOKMARK]
    first = tokens[0]
    assert first.url == "https://loose.example/"
    assert first.text == "Loose & Free"
    assert first.add_date == datetime.fromtimestamp(1700000000, tz=timezone.utc)

    github = next(t for t in tokens if t.text == "GitHub")
    assert github.url == "https://github.com"
    assert github.add_date == datetime.fromtimestamp(1600000000, tz=timezone.utc)

    docs = next(t for t in tokens if t.text == "Python docs")
    assert docs.add_date is None


def test_scanner_skips_comments_with_markup_inside():
    html = '<!-- <A HREF="https://hidden.example/">x</A> --><DL><p><DT><A HREF="https://shown.example/">y</A></DL>'
    urls = [t.url for t in scan(html) if t.kind is TokenKind.BOOKMARK]
    assert urls == ["https://shown.example/"]


@pytest.mark.parametrize(
    "tag,expected",
    [
        ('A HREF="https://x.example/?a=1&amp;b=2"', "https://x.example/?a=1&b=2"),
        ("A href='https://x.example/'", "https://x.example/"),
        ("A HREF=https://x.example/ ADD_DATE=1", "https://x.example/"),
        ('A DATA-HREF="nope"', None),
    ],
)
def test_attribute_quoting_styles(tag, expected):
    assert attribute("href", tag) == expected


def test_import_builds_tree_and_counts(store):
    stats = import_html(BROWSER_EXPORT, store)
    assert stats.folders_created == 3
    assert stats.bookmarks_added == 5
    assert stats.skipped == 2

    folders = store.fetch(Folder)
    paths = sorted(store.folder_path(f) for f in folders)
    assert paths == ["Dev", "Dev/Python", "Python"]

    by_url = {b.url: b for b in store.fetch(Bookmark)}
    assert set(by_url) == {
        "https://loose.example",
        "https://docs.python.org/3/",
        "https://pypi.org",
        "https://github.com",
        "https://www.python.org",
    }
    loose = by_url["https://loose.example"]
    assert loose.folder_id is None
    assert loose.name == "Loose & Free"
    assert loose.description == "A root-level bookmark"

    by_id = {f.id: f for f in folders}
    assert store.folder_path(by_id[by_url["https://pypi.org"].folder_id]) == "Dev/Python"
    assert store.folder_path(by_id[by_url["https://github.com"].folder_id]) == "Dev"
    assert store.folder_path(by_id[by_url["https://www.python.org"].folder_id]) == "Python"


def test_import_twice_adds_nothing_the_second_time(store):
    store.insert(Bookmark(url="https://existing.example/page", name="Mine"))
    store.save()

    first = import_html(BROWSER_EXPORT, store)
    second = import_html(BROWSER_EXPORT, store)

    assert first.bookmarks_added == 5
    assert second.bookmarks_added == 0
    assert second.folders_created == 0
    assert store.count(Bookmark) == 6
    assert "https://existing.example/page" in {b.url for b in store.fetch(Bookmark)}


def test_existing_bookmarks_are_deduped_by_canonical_url(store):
    store.insert(Bookmark(url="https://PyPI.org/", name="Already here"))
    store.save()
    stats = import_html(BROWSER_EXPORT, store)
    assert stats.bookmarks_added == 4
    assert stats.skipped == 3


def test_folder_names_merge_case_insensitively_under_same_parent(store):
    existing = store.insert(Folder(name="dev"))
    store.save()
    html = '<DL><p><DT><H3>DEV</H3><DL><p><DT><A HREF="https://a.example/">A</A></DL><p></DL><p>'
    stats = import_html(html, store)
    assert stats.folders_created == 0
    assert store.fetch(Bookmark)[0].folder_id == existing.id


def test_description_only_attaches_to_immediately_preceding_bookmark(store):
    html = """<DL><p>
    <DT><A HREF="https://a.example/">A</A>
    <DD>about A
    <DD>stray second description
    <DT><H3>F</H3>
    <DD>folder description
    <DL><p>
        <DT><A HREF="https://b.example/">B</A>
    </DL><p>
</DL><p>"""
    import_html(html, store)
    by_url = {b.url: b for b in store.fetch(Bookmark)}
    assert by_url["https://a.example"].description == "about A"
    assert by_url["https://b.example"].description == ""


def test_undated_bookmarks_get_increasing_timestamps_in_file_order(store):
    html = "<DL><p>" + "".join(f'<DT><A HREF="https://{n}.example/">{n}</A>' for n in "abcd") + "</DL><p>"
    before = datetime.now(timezone.utc)
    import_html(html, store)
    dates = [b.created_date for b in store.fetch(Bookmark, "created_date")]
    names = [b.name for b in store.fetch(Bookmark, "created_date")]
    assert names == ["a", "b", "c", "d"]
    assert all(later - earlier == timedelta(milliseconds=1) for earlier, later in zip(dates, dates[1:]))
    assert dates[0] >= before - timedelta(seconds=1)


def test_nameless_anchor_falls_back_to_url(store):
    import_html('<DL><p><DT><A HREF="https://Nameless.example/"></A></DL><p>', store)
    assert store.fetch(Bookmark)[0].name == "https://nameless.example"


def test_oversized_html_rejected(store, tmp_path: Path):
    with pytest.raises(FileTooLargeError):
        import_html("<DL>" + " " * 200, store, max_bytes=100)
    src = tmp_path / "big.html"
    src.write_text(BROWSER_EXPORT, encoding="utf-8")
    with pytest.raises(FileTooLargeError):
        import_html_file(src, store, max_bytes=100)
    assert store.count(Bookmark) == 0


def _tree(store):
    work = store.insert(Folder(name="Work"))
    store.insert(Folder(name="Archive"))
    zeta = store.insert(Folder(name="Zeta", parent_id=work.id))
    alpha = store.insert(Folder(name="Alpha", parent_id=work.id))
    t = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store.insert(Bookmark(url="https://new.example", name="Newer", created_date=t + timedelta(days=1), folder_id=work.id))
    store.insert(Bookmark(url="https://old.example", name="Older", created_date=t, folder_id=work.id))
    store.insert(Bookmark(url="https://x.example/?a=1&b=<2>", name='Tom & "Jerry"', created_date=t, description="d & e"))
    store.insert(Bookmark(url="https://z.example", name="In Zeta", created_date=t, folder_id=zeta.id))
    store.insert(Bookmark(url="https://a.example", name="In Alpha", created_date=t, folder_id=alpha.id))
    store.save()


def test_export_structure_and_ordering(store):
    _tree(store)
    html = export_html(store.fetch(Folder), store.fetch(Bookmark))
    lines = html.split("\n")
    assert lines[0] == "<!DOCTYPE NETSCAPE-Bookmark-file-1>"
    assert lines[7] == "<DL><p>"
    assert lines[-1] == "</DL><p>"

    # Root bookmark first, escaped, with its description.
    assert lines[8] == (
        '    <DT><A HREF="https://x.example/?a=1&amp;b=&lt;2&gt;" ADD_DATE="1704067200">'
        "Tom &amp; &quot;Jerry&quot;</A>"
    )
    assert lines[9] == "    <DD>d &amp; e"

    order = [html.find(s) for s in ("<H3>Archive</H3>", "<H3>Work</H3>", "<H3>Alpha</H3>", "<H3>Zeta</H3>", ">Older<", ">Newer<")]
    assert all(i != -1 for i in order)
    assert order == sorted(order)


def test_export_then_import_into_empty_store(store, tmp_path: Path):
    _tree(store)
    out = tmp_path / "bookmarks.html"
    write_html_file(out, store.fetch(Folder), store.fetch(Bookmark))

    from keepmarks.store import BookmarkStore

    with BookmarkStore(":memory:") as fresh:
        stats = import_html_file(out, fresh)
        assert stats.bookmarks_added == 5
        assert stats.folders_created == 4
        paths = sorted(fresh.folder_path(f) for f in fresh.fetch(Folder))
        assert paths == ["Archive", "Work", "Work/Alpha", "Work/Zeta"]
        tom = next(b for b in fresh.fetch(Bookmark) if b.name == 'Tom & "Jerry"')
        assert tom.url == "https://x.example/?a=1&b=<2>"
        assert tom.description == "d & e"
        assert tom.created_date == datetime(2024, 1, 1, tzinfo=timezone.utc)
