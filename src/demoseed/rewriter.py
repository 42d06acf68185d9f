"""Targeted text substitutions that make a recorded event look like a new one.

Lines are never fully parsed here. Each field is located by its JSON marker and
replaced in place, so records the rewriter does not understand pass through
unchanged apart from the fields it knows about.
"""
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .sessions import SessionIdentity
from .timeutil import ms_to_iso8601
from . import demo_content

PLACEHOLDER_ORIGIN = "https://altis-dev.altis.dev"

SESSION_RE = re.compile(r'"session":"([a-z0-9-]+)"')
VISITOR_RE = re.compile(r'"Id":"([a-z0-9-]+)"')
TIMESTAMP_RE = re.compile(r'"event_timestamp":\d+')
DATE_RE = re.compile(r'"date":"[^"]+"')
ATTRIBUTES_RE = re.compile(r'"attributes":\{(\s*\})?')
ENDPOINT_ATTRIBUTES_RE = re.compile(r'"Attributes":\{(\s*\})?')
AUDIENCE_RE = re.compile(r'"audience":"(\d+)"')
POST_ID_RE = re.compile(r'"postId":"(\d+)"')
URL_RE = re.compile(r'"url":"([^"]+)"')

EXPERIENCE_EVENT_MARKERS = ('"event_type":"experience', '"event_type":"conversion')

# country marker -> position in the demo audience list
AUDIENCE_COUNTRIES = (('"Country":"FR"', 0), ('"Country":"JP"', 1))


@dataclass(frozen=True)
class DemoPage:
    id: int
    url: str


@dataclass(frozen=True)
class RewriteContext:
    home_url: str
    blog_id: str = "1"
    network_id: str = "1"
    audience_ids: Sequence[int] = field(default_factory=tuple)
    personalization_page: Optional[DemoPage] = None
    ab_test_page: Optional[DemoPage] = None


def build_context(home_url: str, blog_id: str = "1", network_id: str = "1", conn=None) -> RewriteContext:
    """Build a RewriteContext from the demo objects stored in the database."""
    audiences = demo_content.get_demo_audiences(conn)
    personalization = demo_content.get_demo_personalization_page(conn)
    ab_test = demo_content.get_demo_ab_test_page(conn)
    return RewriteContext(
        home_url=home_url.rstrip("/"),
        blog_id=str(blog_id),
        network_id=str(network_id),
        audience_ids=tuple(a["id"] for a in audiences),
        personalization_page=DemoPage(personalization["id"], personalization["url"]) if personalization else None,
        ab_test_page=DemoPage(ab_test["id"], ab_test["url"]) if ab_test else None,
    )


def extract_session_key(line: str) -> Optional[str]:
    if not line:
        return None
    m = SESSION_RE.search(line)
    return m.group(1) if m else None


def _insert_into_object(pattern: re.Pattern, marker: str, entries: str, line: str) -> str:
    def _sub(m):
        if m.group(1) is not None:
            # empty object: no trailing comma
            return marker + entries + "}"
        return marker + entries + ","

    return pattern.sub(_sub, line)


def _replace_value(pattern: re.Pattern, key: str, value, line: str) -> str:
    return pattern.sub(lambda m: f'"{key}":"{value}"', line)


def _utm_entries(identity: SessionIdentity) -> str:
    original = identity.utm.original
    extra = identity.utm.extra
    parts = [f'"initial_{k}":["{v}"]' for k, v in original.items()]
    for k, v in original.items():
        if extra.get(k):
            parts.append(f'"{k}":["{v}","{extra[k]}"]')
        else:
            parts.append(f'"{k}":["{v}"]')
    return ",".join(parts)


def rewrite_line(line: str, identity: SessionIdentity, context: RewriteContext) -> str:
    if identity.visitor_id:
        line = _replace_value(VISITOR_RE, "Id", identity.visitor_id, line)

    line = _replace_value(SESSION_RE, "session", identity.session_id, line)

    line = TIMESTAMP_RE.sub(f'"event_timestamp":{identity.timestamp}', line)

    iso_date = ms_to_iso8601(identity.timestamp)
    if DATE_RE.search(line):
        line = DATE_RE.sub(f'"date":"{iso_date}"', line)
    else:
        line = _insert_into_object(ATTRIBUTES_RE, '"attributes":{', f'"date":"{iso_date}"', line)

    line = line.replace(PLACEHOLDER_ORIGIN, context.home_url)

    line = line.replace('"blogId":"1"', f'"blogId":"{context.blog_id}"')
    line = line.replace('"networkId":"1"', f'"networkId":"{context.network_id}"')

    if any(marker in line for marker in EXPERIENCE_EVENT_MARKERS):
        line = _rewrite_experience_event(line, context)

    if identity.utm.original:
        line = _insert_into_object(ENDPOINT_ATTRIBUTES_RE, '"Attributes":{', _utm_entries(identity), line)

    return line


def _rewrite_experience_event(line: str, context: RewriteContext) -> str:
    for country_marker, position in AUDIENCE_COUNTRIES:
        if country_marker in line and len(context.audience_ids) > position:
            line = _replace_value(AUDIENCE_RE, "audience", context.audience_ids[position], line)

    pages = (
        (demo_content.PERSONALIZATION_CLIENT_ID, context.personalization_page),
        (demo_content.AB_TEST_CLIENT_ID, context.ab_test_page),
    )
    for client_id, page in pages:
        if page is None or f'"clientId":"{client_id}"' not in line:
            continue
        line = _replace_value(POST_ID_RE, "postId", page.id, line)
        if page.url:
            line = _replace_value(URL_RE, "url", page.url, line)
    return line
