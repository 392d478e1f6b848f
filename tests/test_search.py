import asyncio
import sqlite3

import pytest

pytest.importorskip("aiosqlite")

from novasearch import db as dbmod
from novasearch.errors import InvalidArgument, NotConnected
from novasearch.search import (
    DEFAULT_MAX_RESULTS,
    MAX_SQLITE_INT,
    TIER_EXACT,
    TIER_PREFIX,
    TIER_SUBSTRING,
    build_search_query,
    effective_limit,
    escape_like,
    search,
)


DOCUMENT_FILES = [
    ("document.txt", "/home/user/document.txt", 1024, 1234567890, "Regular"),
    ("Document.pdf", "/home/user/Document.pdf", 2048, 1234567891, "Regular"),
    ("my_document.doc", "/home/user/my_document.doc", 4096, 1234567892, "Regular"),
    ("image.png", "/home/user/image.png", 8192, 1234567893, "Regular"),
    ("test.txt", "/home/user/test.txt", 512, 1234567894, "Regular"),
]


def _make_index(path, files, usage=None) -> str:
    db_path = str(path)
    con = sqlite3.connect(db_path)
    try:
        con.executescript(dbmod.INDEX_SCHEMA_SQL)
        con.executemany(
            "INSERT INTO files (filename, path, size, modified_time, file_type, indexed_time) "
            "VALUES (?, ?, ?, ?, ?, 0)",
            files,
        )
        for file_path, count in (usage or {}).items():
            con.execute(
                "INSERT INTO usage_stats (file_id, launch_count, last_launched) "
                "SELECT id, ?, 1700000000 FROM files WHERE path = ?",
                (count, file_path),
            )
        con.commit()
    finally:
        con.close()
    return db_path


def _run_search(db_path, query, max_results=DEFAULT_MAX_RESULTS):
    async def _run():
        async with dbmod.IndexConnection(db_path) as conn:
            return await search(conn, query, max_results)

    return asyncio.run(_run())


def _names(results):
    return [r.filename for r in results]


def test_document_scenario(tmp_path):
    db_path = _make_index(tmp_path / "index.db", DOCUMENT_FILES)

    results = _run_search(db_path, "document", 50)
    assert _names(results) == ["Document.pdf", "document.txt", "my_document.doc"]
    assert [r.tier for r in results] == [TIER_PREFIX, TIER_PREFIX, TIER_SUBSTRING]

    limited = _run_search(db_path, "document", 2)
    assert _names(limited) == _names(results)[:2]


def test_case_variations_match_same_files(tmp_path):
    db_path = _make_index(tmp_path / "index.db", DOCUMENT_FILES)

    expected = set(_names(_run_search(db_path, "document")))
    assert set(_names(_run_search(db_path, "DOCUMENT"))) == expected
    assert set(_names(_run_search(db_path, "DoC"))) == expected
    assert len(expected) == 3


def test_exact_match_is_case_sensitive(tmp_path):
    files = [
        ("notes", "/home/user/notes", 1, 1, "Regular"),
        ("notes.txt", "/home/user/notes.txt", 1, 1, "Regular"),
        ("my notes", "/home/user/my notes", 1, 1, "Regular"),
    ]
    db_path = _make_index(tmp_path / "index.db", files)

    results = _run_search(db_path, "notes")
    assert _names(results) == ["notes", "notes.txt", "my notes"]
    assert [r.tier for r in results] == [TIER_EXACT, TIER_PREFIX, TIER_SUBSTRING]

    results = _run_search(db_path, "Notes")
    assert [r.tier for r in results] == [TIER_PREFIX, TIER_PREFIX, TIER_SUBSTRING]


def test_usage_orders_within_tier_but_not_across(tmp_path):
    files = [
        ("report_a.txt", "/r/report_a.txt", 1, 1, "Regular"),
        ("report_b.txt", "/r/report_b.txt", 1, 1, "Regular"),
        ("report_c.txt", "/r/report_c.txt", 1, 1, "Regular"),
        ("old_report.txt", "/r/old_report.txt", 1, 1, "Regular"),
    ]
    usage = {"/r/report_b.txt": 5, "/r/report_c.txt": 2, "/r/old_report.txt": 100}
    db_path = _make_index(tmp_path / "index.db", files, usage)

    results = _run_search(db_path, "report")
    assert _names(results) == ["report_b.txt", "report_c.txt", "report_a.txt", "old_report.txt"]
    assert [r.launch_count for r in results] == [5, 2, 0, 100]


def test_filename_tiebreak_ignores_case(tmp_path):
    files = [
        ("beta.txt", "/x/beta.txt", 1, 1, "Regular"),
        ("Alpha.txt", "/x/Alpha.txt", 1, 1, "Regular"),
        ("alphabet.txt", "/x/alphabet.txt", 1, 1, "Regular"),
        ("Gamma.txt", "/x/Gamma.txt", 1, 1, "Regular"),
    ]
    db_path = _make_index(tmp_path / "index.db", files)

    results = _run_search(db_path, ".txt")
    assert _names(results) == ["Alpha.txt", "alphabet.txt", "beta.txt", "Gamma.txt"]


def test_non_positive_limit_uses_default(tmp_path):
    files = [(f"file_{i:02d}.txt", f"/f/file_{i:02d}.txt", i, i, "Regular") for i in range(60)]
    db_path = _make_index(tmp_path / "index.db", files)

    assert len(_run_search(db_path, "file", 0)) == DEFAULT_MAX_RESULTS
    assert len(_run_search(db_path, "file", -3)) == DEFAULT_MAX_RESULTS
    assert len(_run_search(db_path, "file", None)) == DEFAULT_MAX_RESULTS
    assert len(_run_search(db_path, "file", 55)) == 55
    assert len(_run_search(db_path, "file", 7)) == 7


def test_empty_query_skips_database(tmp_path):
    db_path = _make_index(tmp_path / "index.db", DOCUMENT_FILES)

    async def _run():
        async with dbmod.IndexConnection(db_path) as conn:

            def _fail():
                raise AssertionError("database should not be touched")

            conn.acquire = _fail
            assert await search(conn, "") == []
            assert await search(conn, None) == []

    asyncio.run(_run())


def test_no_matches_returns_empty(tmp_path):
    db_path = _make_index(tmp_path / "index.db", DOCUMENT_FILES)
    assert _run_search(db_path, "zzz") == []


def test_requires_open_connection(tmp_path):
    db_path = _make_index(tmp_path / "index.db", DOCUMENT_FILES)

    async def _run():
        conn = dbmod.create(db_path)
        with pytest.raises(NotConnected):
            await search(conn, "document")
        with pytest.raises(InvalidArgument):
            await search(None, "document")

    asyncio.run(_run())


def test_execution_failure_returns_empty(tmp_path):
    db_path = str(tmp_path / "index.db")
    con = sqlite3.connect(db_path)
    con.execute("CREATE TABLE files (id INTEGER PRIMARY KEY, filename TEXT, path TEXT)")
    con.execute("INSERT INTO files (filename, path) VALUES ('document.txt', '/d/document.txt')")
    con.commit()
    con.close()

    assert _run_search(db_path, "document") == []


def test_missing_columns_stay_missing(tmp_path):
    db_path = _make_index(
        tmp_path / "index.db",
        [("orphan.bin", "/o/orphan.bin", None, None, None)],
    )

    (result,) = _run_search(db_path, "orphan")
    assert result.filename == "orphan.bin"
    assert result.path == "/o/orphan.bin"
    assert result.size is None
    assert result.modified_time is None
    assert result.file_type is None
    assert result.as_dict()["size"] is None


def test_result_fields_are_populated(tmp_path):
    db_path = _make_index(tmp_path / "index.db", DOCUMENT_FILES)

    (result,) = _run_search(db_path, "test")
    assert result.as_dict() == {
        "filename": "test.txt",
        "path": "/home/user/test.txt",
        "file_type": "Regular",
        "size": 512,
        "modified_time": 1234567894,
        "launch_count": 0,
        "tier": TIER_PREFIX,
    }


def test_like_wildcards_match_literally(tmp_path):
    files = [
        ("100%_done.txt", "/w/100%_done.txt", 1, 1, "Regular"),
        ("100 done.txt", "/w/100 done.txt", 1, 1, "Regular"),
        ("plain.txt", "/w/plain.txt", 1, 1, "Regular"),
    ]
    db_path = _make_index(tmp_path / "index.db", files)

    assert _names(_run_search(db_path, "100%")) == ["100%_done.txt"]
    assert _names(_run_search(db_path, "_")) == ["100%_done.txt"]


def test_build_search_query_params():
    sql = build_search_query("a_b", 10)
    assert sql.params == ("a_b", "a\\_b%", "%a\\_b%", 10)
    assert escape_like("50%\\") == "50\\%\\\\"


def test_unencodable_query_returns_empty(tmp_path):
    db_path = _make_index(tmp_path / "index.db", DOCUMENT_FILES)
    assert _run_search(db_path, "doc\ud800") == []


def test_huge_limit_is_clamped(tmp_path):
    db_path = _make_index(tmp_path / "index.db", DOCUMENT_FILES)

    assert effective_limit(10**20) == MAX_SQLITE_INT
    assert _names(_run_search(db_path, "document", 10**20)) == [
        "Document.pdf",
        "document.txt",
        "my_document.doc",
    ]
