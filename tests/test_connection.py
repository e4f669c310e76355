"""
Tests for the outbound request side of a session.
"""

import ssl

import pytest

from streamprobe.client.connection import Connection, build_ssl_context
from streamprobe.shared.errors import ConnectError, ReleaseError
from streamprobe.shared.models import TLSConfig

from tests.conftest import BASE_URL


class FakeNetworkStream:
    def __init__(self, server_addr):
        self.server_addr = server_addr

    def get_extra_info(self, name):
        if name == "server_addr":
            return self.server_addr
        return None


class TestHeaders:
    def test_defaults(self, settings):
        conn = Connection(f"{BASE_URL}/sse", settings=settings)
        assert conn.headers["user-agent"] == "TestUserAgent"
        assert conn.headers["accept"] == "text/event-stream"
        assert conn.method == "GET"

    def test_caller_headers_override_defaults(self, settings):
        conn = Connection(
            f"{BASE_URL}/sse",
            headers={"User-Agent": "custom", "Accept": "application/json", "X-Extra": "1"},
            settings=settings,
        )
        assert conn.headers["user-agent"] == "custom"
        assert conn.headers["accept"] == "application/json"
        assert conn.headers["x-extra"] == "1"


def test_ssl_context_without_verification():
    context = build_ssl_context(TLSConfig(verify=False))
    assert context.check_hostname is False
    assert context.verify_mode == ssl.CERT_NONE


def test_ssl_context_verifies_by_default():
    context = build_ssl_context(TLSConfig())
    assert context.verify_mode == ssl.CERT_REQUIRED


class TestTrace:
    @pytest.mark.asyncio
    async def test_records_remote_ip_on_tcp_connect(self, settings):
        conn = Connection(f"{BASE_URL}/sse", settings=settings)
        await conn._trace("connection.connect_tcp.complete", {"return_value": FakeNetworkStream(("10.0.0.7", 443))})
        assert conn.remote_ip == "10.0.0.7"

    @pytest.mark.asyncio
    async def test_ignores_other_trace_events(self, settings):
        conn = Connection(f"{BASE_URL}/sse", settings=settings)
        await conn._trace("http11.send_request_headers.started", {"request": None})
        await conn._trace("connection.connect_tcp.complete", {"return_value": None})
        assert conn.remote_ip is None


class TestConnect:
    @pytest.mark.asyncio
    async def test_success_records_timings(self, settings, transport):
        conn = Connection(f"{BASE_URL}/sse", transport=transport, settings=settings)
        assert conn.attempted is False
        assert conn.connecting_ms == 0.0

        response = await conn.connect()
        try:
            assert response.status_code == 200
            assert conn.attempted is True
            assert conn.started_at is not None
            assert conn.connecting_ms >= 0.0
            assert conn.elapsed_ms() >= conn.connecting_ms
        finally:
            await conn.aclose()

    @pytest.mark.asyncio
    async def test_multi_valued_headers_are_joined(self, settings, transport):
        conn = Connection(f"{BASE_URL}/sse-multi-header", transport=transport, settings=settings)
        await conn.connect()
        try:
            assert conn.response_headers()["X-Multi"] == "a, b"
        finally:
            await conn.aclose()

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_connect_error(self, settings, transport):
        conn = Connection("http://unreachable.invalid/sse", transport=transport, settings=settings)
        with pytest.raises(ConnectError) as excinfo:
            await conn.connect()
        assert excinfo.value.url == "http://unreachable.invalid/sse"
        assert conn.attempted is True
        assert conn.response is None
        assert conn.response_headers() == {}
        await conn.aclose()

    @pytest.mark.asyncio
    async def test_unsupported_scheme_becomes_connect_error(self, settings):
        conn = Connection("ftp://example.invalid/sse", settings=settings)
        with pytest.raises(ConnectError):
            await conn.connect()
        await conn.aclose()


@pytest.mark.asyncio
async def test_aclose_failure_becomes_release_error(settings, transport, monkeypatch):
    conn = Connection(f"{BASE_URL}/sse", transport=transport, settings=settings)

    async def broken_close():
        raise RuntimeError("pool already gone")

    monkeypatch.setattr(conn.client, "aclose", broken_close)
    with pytest.raises(ReleaseError, match="pool already gone"):
        await conn.aclose()
