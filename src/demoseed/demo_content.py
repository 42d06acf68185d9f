"""Demo audiences and experience pages that replayed events are pointed at.

The event log references placeholder audience and post ids. Before an import
these objects are created once (re-running is a no-op) and the rewriter looks
them up to substitute real ids and URLs.
"""
import json
import logging
from typing import List, Optional

from .db import get_conn, init_db
from . import timeutil

LOG = logging.getLogger("demoseed.demo_content")

DEMO_MARKER = "demo_data"
AB_TEST_MARKER = "demo_data_abtest"

# client ids embedded in the shipped experience blocks
PERSONALIZATION_CLIENT_ID = "2a7d3480-e525-4fc0-b27d-66d677dd3008"
AB_TEST_CLIENT_ID = "f7s8fgs9-e525-4fc0-b27d-66d677dd3008"

DEMO_AUDIENCES = [
    {"title": "France", "country": "FR"},
    {"title": "Japan", "country": "JP"},
]


def _audience_config(country: str) -> dict:
    return {
        "include": "all",
        "groups": [
            {
                "include": "any",
                "rules": [{"field": "endpoint.Location.Country", "operator": "=", "value": country}],
            }
        ],
    }


def _row_to_dict(r) -> dict:
    config = {}
    try:
        config = json.loads(r[6] or "{}")
    except Exception:
        config = {}
    return {
        "id": r[0],
        "kind": r[1],
        "marker": r[2],
        "title": r[3],
        "slug": r[4],
        "url": r[5],
        "config": config,
    }


def _select(conn, kind: str, marker: str, limit: int) -> List[dict]:
    rows = conn.execute(
        "SELECT object_id, kind, marker, title, slug, url, config_json FROM demo_objects "
        "WHERE kind = ? AND marker = ? ORDER BY slug ASC, object_id ASC LIMIT ?",
        (kind, marker, limit),
    ).fetchall()
    return [_row_to_dict(r) for r in rows]


def _insert(conn, kind: str, marker: str, title: str, slug: str, url: Optional[str], config: dict) -> int:
    rows = conn.execute("SELECT COALESCE(MAX(object_id), 0) FROM demo_objects").fetchall()
    object_id = int(rows[0][0]) + 1
    conn.execute(
        "INSERT INTO demo_objects VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (object_id, kind, marker, title, slug, url, json.dumps(config), timeutil.to_utc_iso()),
    )
    conn.commit()
    return object_id


def _with_conn(fn, conn=None, *args):
    if conn is not None:
        return fn(conn, *args)
    init_db()
    conn = get_conn()
    try:
        return fn(conn, *args)
    finally:
        conn.close()


def get_demo_audiences(conn=None) -> List[dict]:
    """Return the (at most two) demo audiences ordered by slug: france, japan."""
    return _with_conn(lambda c: _select(c, "audience", DEMO_MARKER, 2), conn)


def get_demo_personalization_page(conn=None) -> Optional[dict]:
    found = _with_conn(lambda c: _select(c, "page", DEMO_MARKER, 1), conn)
    return found[0] if found else None


def get_demo_ab_test_page(conn=None) -> Optional[dict]:
    found = _with_conn(lambda c: _select(c, "page", AB_TEST_MARKER, 1), conn)
    return found[0] if found else None


def _maybe_create_audiences(conn) -> List[dict]:
    existing = _select(conn, "audience", DEMO_MARKER, 2)
    if len(existing) == len(DEMO_AUDIENCES):
        return existing

    # a half-created pair is dropped and rebuilt; the personalization page
    # targets the old ids, so it goes too and is recreated by the caller
    for audience in existing:
        conn.execute("DELETE FROM demo_objects WHERE object_id = ?", (audience["id"],))
    conn.execute("DELETE FROM demo_objects WHERE kind = ? AND marker = ?", ("page", DEMO_MARKER))
    conn.commit()

    for audience in DEMO_AUDIENCES:
        _insert(
            conn,
            "audience",
            DEMO_MARKER,
            audience["title"],
            audience["title"].lower(),
            None,
            _audience_config(audience["country"]),
        )
    LOG.info("created %s demo audiences", len(DEMO_AUDIENCES))
    return _select(conn, "audience", DEMO_MARKER, 2)


def maybe_create_audiences(conn=None) -> List[dict]:
    return _with_conn(_maybe_create_audiences, conn)


def _page_url(home_url: str, slug: str) -> str:
    return f"{home_url.rstrip('/')}/{slug}/"


def _maybe_create_personalization_page(conn, home_url: str) -> int:
    existing = _select(conn, "page", DEMO_MARKER, 1)
    if existing:
        return existing[0]["id"]

    audiences = _select(conn, "audience", DEMO_MARKER, 2)
    if not audiences:
        LOG.warning("no demo audiences found; personalization page not created")
        return 0

    config = {
        "block": "personalization",
        "client_id": PERSONALIZATION_CLIENT_ID,
        "variants": [
            {"audience": audiences[0]["id"], "fallback": False, "goal": "click_any_link"},
            {"audience": audiences[-1]["id"], "fallback": False, "goal": "click_any_link"},
            {"fallback": True, "goal": "click_any_link"},
        ],
    }
    slug = "insights-demo"
    page_id = _insert(conn, "page", DEMO_MARKER, "Insights Demo", slug, _page_url(home_url, slug), config)
    LOG.info("created personalization demo page id=%s", page_id)
    return page_id


def maybe_create_personalization_page(home_url: str, conn=None) -> int:
    return _with_conn(_maybe_create_personalization_page, conn, home_url)


def _maybe_create_ab_test_page(conn, home_url: str) -> int:
    existing = _select(conn, "page", AB_TEST_MARKER, 1)
    if existing:
        return existing[0]["id"]

    config = {
        "block": "ab-test",
        "client_id": AB_TEST_CLIENT_ID,
        "variants": [
            {"fallback": True, "goal": "click_any_link"},
            {"fallback": False, "goal": "click_any_link"},
            {"fallback": False, "goal": "click_any_link"},
        ],
        # backdate the test so replayed conversions fall inside it
        "test_start_ms": int(timeutil.now_utc().timestamp() * 1000) - 14 * timeutil.MS_PER_DAY,
    }
    slug = "a-b-test-block-demo"
    page_id = _insert(conn, "page", AB_TEST_MARKER, "A/B Test Block Demo", slug, _page_url(home_url, slug), config)
    LOG.info("created A/B test demo page id=%s", page_id)
    return page_id


def maybe_create_ab_test_page(home_url: str, conn=None) -> int:
    return _with_conn(_maybe_create_ab_test_page, conn, home_url)


def setup_demo_content(home_url: str, conn=None) -> dict:
    """Create every demo object that is missing and return what exists."""

    def _setup(c):
        audiences = _maybe_create_audiences(c)
        personalization_id = _maybe_create_personalization_page(c, home_url)
        ab_test_id = _maybe_create_ab_test_page(c, home_url)
        return {
            "audiences": [a["id"] for a in audiences],
            "personalization_page": personalization_id,
            "ab_test_page": ab_test_id,
        }

    return _with_conn(_setup, conn)
