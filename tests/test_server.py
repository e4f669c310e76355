"""
Tests for the demo server and the CLI helpers.
"""

import pytest
import typer
from fastapi.testclient import TestClient

from streamprobe.client.parser import STREAM_CLOSED, parse_bytes
from streamprobe.runner import parse_pairs, print_event_setup
from streamprobe.server.frames import encode, fixture_frames, junk_frames, pong_frames, ticker_frames
from streamprobe.server.main import app
from streamprobe.server.routes.sse import _tracked
from streamprobe.server.stream_registry import StreamRegistry, registry
from streamprobe.shared.errors import ProtocolViolation
from streamprobe.shared.models import Event, MetricName

from tests.conftest import BASE_URL


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


class TestOpsEndpoints:
    def test_healthz(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert "x-process-time-ms" in resp.headers

    def test_stats_shape(self, client):
        body = client.get("/stats").json()
        assert set(body) == {"active_streams", "total_streams", "total_frames_sent", "uptime_s", "server_time"}

    def test_status_endpoint(self, client):
        resp = client.get("/status/404")
        assert resp.status_code == 404
        assert resp.text == "status 404\n"

    def test_post_sse_rejects_wrong_body(self, client):
        resp = client.post("/sse", json={"ping": False})
        assert resp.status_code == 400


class TestFrames:
    def test_fixture_frames_decode(self):
        payload = b"".join(encode(frame) for frame in fixture_frames())
        assert parse_bytes(payload) == [
            Event(id="ABCD", comment="hello", data='{"ping": "pong"}\n{"hello": "sse"}'),
            Event(name="EFGH", data='{"hello": "sse"}'),
            STREAM_CLOSED,
        ]

    def test_pong_frames_decode(self):
        payload = b"".join(encode(frame) for frame in pong_frames())
        assert parse_bytes(payload)[0] == Event(id="pong", data='{"ping": "pong"}')

    def test_junk_frames_are_violations(self):
        payload = b"".join(encode(frame) for frame in junk_frames())
        items = parse_bytes(payload)
        assert isinstance(items[0], ProtocolViolation)

    @pytest.mark.asyncio
    async def test_ticker_frames(self):
        frames = [frame async for frame in ticker_frames(3, interval_s=0)]
        events = parse_bytes(b"".join(encode(frame) for frame in frames))[:-1]
        assert [e.id for e in events] == ["1", "2", "3"]
        assert {e.name for e in events} == {"tick"}


class TestStreamRegistry:
    def test_open_count_close(self):
        streams = StreamRegistry()
        stream_id = streams.open_stream("/sse")
        streams.count_frame()
        assert streams.get_stats().active_streams == 1

        streams.close_stream(stream_id)
        streams.close_stream(stream_id)
        stats = streams.get_stats()
        assert stats.active_streams == 0
        assert stats.total_streams == 1
        assert stats.total_frames_sent == 1

    @pytest.mark.asyncio
    async def test_tracked_generator_books_every_frame(self):
        before = registry.get_stats()
        sent = [frame async for frame in _tracked("/sse", [b"a\n", b"b\n"])]
        after = registry.get_stats()

        assert sent == [b"a\n", b"b\n"]
        assert after.total_streams == before.total_streams + 1
        assert after.total_frames_sent == before.total_frames_sent + 2
        assert after.active_streams == before.active_streams


class TestCliHelpers:
    def test_parse_pairs(self):
        assert parse_pairs(["a=1", " b = 2 "], "=") == {"a": "1", "b": "2"}
        assert parse_pairs(["Authorization: Bearer x:y"], ":") == {"Authorization": "Bearer x:y"}

    def test_parse_pairs_rejects_malformed(self):
        with pytest.raises(typer.BadParameter):
            parse_pairs(["novalue"], "=")

    @pytest.mark.asyncio
    async def test_print_event_setup_closes_after_n(self, engine, reporter):
        summary = await engine.open(f"{BASE_URL}/sse", print_event_setup(close_after=1))
        assert summary.status == 200
        assert reporter.count(MetricName.SSE_EVENT) == 1
