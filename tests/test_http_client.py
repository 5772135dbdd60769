"""Meter HTTP client tests (httpx.MockTransport).

Run:
    pytest tests/test_http_client.py -v
"""

import threading
import time

import httpx
import pytest

from p1_ingest_services.common.config import ConfigError
from p1_ingest_services.ingest.errors import FetchError, OperationCancelled
from p1_ingest_services.ingest.transports.http import MeterHttpClient

ENDPOINT = "http://meter.local/api/v1/data"


def _client(handler) -> MeterHttpClient:
    return MeterHttpClient(ENDPOINT, timeout=1.0, transport=httpx.MockTransport(handler))


class TestMeterHttpClient:
    """One GET per fetch; only 200 counts as success."""

    def test_returns_body(self, meter_body):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=meter_body)

        assert _client(handler).fetch() == meter_body
        assert len(seen) == 1
        assert seen[0].method == "GET"
        assert str(seen[0].url) == ENDPOINT

    @pytest.mark.parametrize("status", [204, 404, 500, 503])
    def test_non_200_is_fetch_error(self, status):
        client = _client(lambda request: httpx.Response(status))

        with pytest.raises(FetchError, match=f"meter endpoint status: {status}") as exc_info:
            client.fetch()
        assert exc_info.value.status_code == status

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FetchError, match="connection refused") as exc_info:
            _client(handler).fetch()
        assert exc_info.value.status_code is None

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(FetchError):
            _client(handler).fetch()

    def test_empty_endpoint(self):
        with pytest.raises(ConfigError):
            MeterHttpClient("")


class TestFetchCancellation:
    """A stop event abandons the wait for an in-flight GET."""

    def test_completes_when_not_stopped(self, meter_body):
        client = _client(lambda request: httpx.Response(200, content=meter_body))

        assert client.fetch(stop_event=threading.Event()) == meter_body

    def test_errors_surface_through_worker(self):
        client = _client(lambda request: httpx.Response(503))

        with pytest.raises(FetchError) as exc_info:
            client.fetch(stop_event=threading.Event())
        assert exc_info.value.status_code == 503

    def test_already_stopped_sends_nothing(self):
        seen = []
        stop = threading.Event()
        stop.set()

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"{}")

        with pytest.raises(OperationCancelled):
            _client(handler).fetch(stop_event=stop)
        assert seen == []

    def test_stop_during_hung_request(self):
        release = threading.Event()
        started = threading.Event()

        def handler(request):
            started.set()
            release.wait(5.0)
            return httpx.Response(200, content=b"{}")

        client = MeterHttpClient(ENDPOINT, timeout=30.0, transport=httpx.MockTransport(handler))
        stop = threading.Event()
        timer = threading.Timer(0.1, stop.set)
        timer.start()
        begin = time.monotonic()

        try:
            with pytest.raises(OperationCancelled):
                client.fetch(stop_event=stop)
            elapsed = time.monotonic() - begin
        finally:
            timer.cancel()
            release.set()

        assert started.is_set()
        assert elapsed < 2.0
