import asyncio
import json

import httpx
import pytest

from demoseed.destinations.base import Destination, available_destinations, get_destination, register_destination
from demoseed.destinations.elastic import ElasticBulkSink, index_name_for
from demoseed.errors import DeliveryError, UnknownDestination

DAY = 86_400_000
# 2023-11-14T22:13:20Z
TS = 1_700_000_000_000


def line(ts=TS, session="abc"):
    return json.dumps({"event_type": "pageView", "event_timestamp": ts, "attributes": {"session": session}}, separators=(",", ":"))


def test_registry_has_builtins():
    names = available_destinations()
    assert "elasticsearch" in names
    assert "clickhouse" in names
    sink = get_destination("elasticsearch", base_url="http://es.test:9200")
    assert isinstance(sink, ElasticBulkSink)
    assert sink.base_url == "http://es.test:9200"


def test_unknown_destination():
    with pytest.raises(UnknownDestination):
        get_destination("nope")


def test_register_custom_destination():
    @register_destination("test-null")
    class NullSink(Destination):
        async def send(self, batch):
            return None

    assert "test-null" in available_destinations()
    assert isinstance(get_destination("test-null"), NullSink)


def test_bulk_payload_routes_documents_by_day():
    sink = ElasticBulkSink(base_url="http://es.test", major_version=7)
    payload = sink.build_payload([line(TS), line(TS - DAY)])
    rows = payload.split("\n")
    assert payload.endswith("\n")
    assert json.loads(rows[0]) == {"index": {"_index": "analytics-2023-11-14"}}
    assert json.loads(rows[1])["event_timestamp"] == TS
    assert json.loads(rows[2]) == {"index": {"_index": "analytics-2023-11-13"}}
    assert len(rows) == 5 and rows[4] == ""


def test_bulk_payload_es6_has_type():
    sink = ElasticBulkSink(base_url="http://es.test", major_version=6)
    first = sink.build_payload([line()]).split("\n")[0]
    assert json.loads(first) == {"index": {"_index": index_name_for(TS), "_type": "record"}}


def test_send_posts_ndjson(monkeypatch):
    calls = []

    async def fake_request(self, method, url, **kwargs):
        calls.append((method, url, kwargs))
        return httpx.Response(200, json={"errors": False, "items": []})

    monkeypatch.setattr("httpx.AsyncClient.request", fake_request)

    async def inner():
        sink = ElasticBulkSink(base_url="http://es.test", major_version=7)
        await sink.send([line(), line()])
        await sink.aclose()

    asyncio.run(inner())
    assert len(calls) == 1
    method, url, kwargs = calls[0]
    assert method == "POST"
    assert url == "http://es.test/_bulk"
    assert kwargs["headers"]["Content-Type"] == "application/x-ndjson"
    assert kwargs["content"].count("\n") == 4


def test_error_status_raises_with_body(monkeypatch):
    async def fake_request(self, method, url, **kwargs):
        return httpx.Response(500, text='{"error":"cluster_block_exception"}')

    monkeypatch.setattr("httpx.AsyncClient.request", fake_request)

    async def inner():
        sink = ElasticBulkSink(base_url="http://es.test", major_version=7)
        with pytest.raises(DeliveryError) as exc:
            await sink.send([line()])
        assert exc.value.status_code == 500
        assert "cluster_block_exception" in str(exc.value)

    asyncio.run(inner())


def test_transport_error_raises(monkeypatch):
    async def fake_request(self, method, url, **kwargs):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr("httpx.AsyncClient.request", fake_request)

    async def inner():
        sink = ElasticBulkSink(base_url="http://es.test", major_version=7)
        with pytest.raises(DeliveryError) as exc:
            await sink.send([line()])
        assert "connection refused" in str(exc.value)
        assert exc.value.status_code is None

    asyncio.run(inner())


def test_timeout_raises(monkeypatch):
    async def fake_request(self, method, url, **kwargs):
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr("httpx.AsyncClient.request", fake_request)

    async def inner():
        sink = ElasticBulkSink(base_url="http://es.test", major_version=7, timeout=1.5)
        with pytest.raises(DeliveryError) as exc:
            await sink.send([line()])
        assert "timed out" in str(exc.value)

    asyncio.run(inner())


def test_prepare_detects_version_and_creates_indexes(monkeypatch):
    calls = []

    async def fake_request(self, method, url, **kwargs):
        calls.append((method, url, kwargs))
        if method == "GET":
            return httpx.Response(200, json={"version": {"number": "6.8.23"}})
        if url.endswith("analytics-2023-11-13"):
            return httpx.Response(400, json={"error": {"type": "resource_already_exists_exception"}})
        return httpx.Response(200, json={"acknowledged": True})

    monkeypatch.setattr("httpx.AsyncClient.request", fake_request)

    async def inner():
        sink = ElasticBulkSink(base_url="http://es.test")
        # 2023-11-14 midnight UTC, two days back
        boundary = 1_699_920_000_000
        await sink.prepare((boundary - 2 * DAY, boundary))
        return sink

    sink = asyncio.run(inner())
    assert sink.major_version == 6
    puts = [url for method, url, _ in calls if method == "PUT"]
    assert puts == [
        "http://es.test/analytics-2023-11-14",
        "http://es.test/analytics-2023-11-13",
        "http://es.test/analytics-2023-11-12",
    ]
    body = json.loads(calls[1][2]["content"])
    assert "record" in body["mappings"]


def test_version_detection_falls_back(monkeypatch):
    async def fake_request(self, method, url, **kwargs):
        raise httpx.ConnectError("down")

    monkeypatch.setattr("httpx.AsyncClient.request", fake_request)

    sink = ElasticBulkSink(base_url="http://es.test")
    assert asyncio.run(sink.detect_version()) == 7
