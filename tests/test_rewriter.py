import json

from demoseed.demo_content import AB_TEST_CLIENT_ID, PERSONALIZATION_CLIENT_ID
from demoseed.rewriter import DemoPage, RewriteContext, extract_session_key, rewrite_line
from demoseed.sessions import SessionIdentity, UtmAttribution

TS = 1_700_000_000_000
PLACEHOLDER_VISITOR = "0a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d"

CONTEXT = RewriteContext(
    home_url="https://demo.example.com",
    blog_id="7",
    network_id="3",
    audience_ids=(101, 102),
    personalization_page=DemoPage(201, "https://demo.example.com/insights-demo/"),
    ab_test_page=DemoPage(202, "https://demo.example.com/a-b-test-block-demo/"),
)


def make_line(event_type="pageView", country="FR", extra_attrs=None, endpoint_attrs=None, session="abc-123"):
    attrs = {"session": session, "blogId": "1", "networkId": "1", "url": "https://altis-dev.altis.dev/page/"}
    attrs.update(extra_attrs or {})
    record = {
        "event_type": event_type,
        "event_timestamp": 1588000000000,
        "attributes": attrs,
        "endpoint": {
            "Id": PLACEHOLDER_VISITOR,
            "Attributes": endpoint_attrs if endpoint_attrs is not None else {"DeviceType": ["Desktop"]},
            "Location": {"Country": country},
        },
        "metrics": {},
    }
    return json.dumps(record, separators=(",", ":"))


def identity(**kw):
    base = dict(timestamp=TS, session_id="11111111-2222-4333-8444-555555555555")
    base.update(kw)
    return SessionIdentity(**base)


def test_extract_session_key():
    assert extract_session_key(make_line(session="f00-ba7")) == "f00-ba7"
    assert extract_session_key("") is None
    assert extract_session_key('{"event_type":"pageView"}') is None
    # uppercase keys are not valid session markers
    assert extract_session_key('{"session":"ABC"}') is None


def test_core_substitutions():
    out = json.loads(rewrite_line(make_line(), identity(visitor_id="99999999-aaaa-4bbb-8ccc-dddddddddddd"), CONTEXT))
    assert out["event_timestamp"] == TS
    assert out["attributes"]["session"] == "11111111-2222-4333-8444-555555555555"
    assert out["endpoint"]["Id"] == "99999999-aaaa-4bbb-8ccc-dddddddddddd"
    assert out["attributes"]["blogId"] == "7"
    assert out["attributes"]["networkId"] == "3"
    assert out["attributes"]["url"] == "https://demo.example.com/page/"
    assert out["attributes"]["date"] == "2023-11-14T22:13:20+0000"


def test_visitor_kept_when_unset():
    out = json.loads(rewrite_line(make_line(), identity(), CONTEXT))
    assert out["endpoint"]["Id"] == PLACEHOLDER_VISITOR


def test_date_inserted_first_then_overwritten():
    line = rewrite_line(make_line(), identity(), CONTEXT)
    assert '"attributes":{"date":"2023-11-14T22:13:20+0000",' in line

    existing = make_line(extra_attrs={"date": "2020-01-01T00:00:00+0000"})
    out = json.loads(rewrite_line(existing, identity(), CONTEXT))
    assert out["attributes"]["date"] == "2023-11-14T22:13:20+0000"
    assert rewrite_line(existing, identity(), CONTEXT).count('"date":') == 1


def test_date_inserted_into_empty_attributes():
    line = '{"event_type":"pageView","event_timestamp":1,"attributes":{},"session":"abc"}'
    out = json.loads(rewrite_line(line, identity(), CONTEXT))
    assert out["attributes"] == {"date": "2023-11-14T22:13:20+0000"}


def test_experience_event_audience_and_page():
    line = make_line(
        event_type="experienceView",
        country="FR",
        extra_attrs={"clientId": PERSONALIZATION_CLIENT_ID, "postId": "12", "audience": "4"},
    )
    out = json.loads(rewrite_line(line, identity(), CONTEXT))
    assert out["attributes"]["audience"] == "101"
    assert out["attributes"]["postId"] == "201"
    assert out["attributes"]["url"] == "https://demo.example.com/insights-demo/"

    line = make_line(
        event_type="conversion",
        country="JP",
        extra_attrs={"clientId": AB_TEST_CLIENT_ID, "postId": "15", "audience": "5"},
    )
    out = json.loads(rewrite_line(line, identity(), CONTEXT))
    assert out["attributes"]["audience"] == "102"
    assert out["attributes"]["postId"] == "202"
    assert out["attributes"]["url"] == "https://demo.example.com/a-b-test-block-demo/"


def test_non_experience_event_keeps_ids():
    line = make_line(event_type="pageView", extra_attrs={"clientId": PERSONALIZATION_CLIENT_ID, "postId": "12", "audience": "4"})
    out = json.loads(rewrite_line(line, identity(), CONTEXT))
    assert out["attributes"]["audience"] == "4"
    assert out["attributes"]["postId"] == "12"


def test_missing_demo_objects_leave_values():
    bare = RewriteContext(home_url="https://demo.example.com")
    line = make_line(event_type="experienceView", extra_attrs={"clientId": PERSONALIZATION_CLIENT_ID, "postId": "12", "audience": "4"})
    out = json.loads(rewrite_line(line, identity(), bare))
    assert out["attributes"]["audience"] == "4"
    assert out["attributes"]["postId"] == "12"


def test_utm_injection():
    utm = UtmAttribution(
        original={"utm_campaign": "q2promo", "utm_source": "google"},
        extra={"utm_campaign": "Krr"},
    )
    out = json.loads(rewrite_line(make_line(), identity(utm=utm), CONTEXT))
    attrs = out["endpoint"]["Attributes"]
    assert attrs["initial_utm_campaign"] == ["q2promo"]
    assert attrs["initial_utm_source"] == ["google"]
    assert attrs["utm_campaign"] == ["q2promo", "Krr"]
    assert attrs["utm_source"] == ["google"]
    assert attrs["DeviceType"] == ["Desktop"]


def test_utm_injection_into_empty_endpoint_attributes():
    utm = UtmAttribution(original={"utm_term": "[UK]"})
    out = json.loads(rewrite_line(make_line(endpoint_attrs={}), identity(utm=utm), CONTEXT))
    assert out["endpoint"]["Attributes"] == {"initial_utm_term": ["[UK]"], "utm_term": ["[UK]"]}


def test_rewrite_is_deterministic():
    line = make_line(event_type="conversion", extra_attrs={"clientId": AB_TEST_CLIENT_ID, "postId": "1"})
    ident = identity(visitor_id="99999999-aaaa-4bbb-8ccc-dddddddddddd", utm=UtmAttribution(original={"utm_medium": "social"}))
    assert rewrite_line(line, ident, CONTEXT) == rewrite_line(line, ident, CONTEXT)
    other = identity(timestamp=TS + 3_600_000)
    assert rewrite_line(line, other, CONTEXT) != rewrite_line(line, ident, CONTEXT)
