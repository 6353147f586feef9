from __future__ import annotations

import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest

from conftest import make_monitor
from uptimex.services.checker import (
    DNS_MESSAGE,
    REFUSED_MESSAGE,
    TIMEOUT_MESSAGE,
    CheckerService,
)
from uptimex.services.store import MonitorSnapshot


class _Handler(BaseHTTPRequestHandler):
    methods_seen: list[str] = []

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def _respond(self, status: int, body: bytes = b"ok") -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _route(self) -> None:
        type(self).methods_seen.append(self.command)
        if self.path == "/ok":
            self._respond(200)
        elif self.path == "/created":
            self._respond(201)
        elif self.path == "/server_error":
            self._respond(500, b"boom")
        elif self.path == "/not_found":
            self._respond(404, b"missing")
        elif self.path == "/redirect":
            self.send_response(302)
            self.send_header("Location", "/ok")
            self.send_header("Content-Length", "0")
            self.end_headers()
        elif self.path == "/slow":
            time.sleep(1.5)
            self._respond(200)
        else:
            self._respond(404, b"missing")

    def do_GET(self) -> None:  # noqa: N802
        self._route()

    def do_HEAD(self) -> None:  # noqa: N802
        self._route()


@pytest.fixture(scope="module")
def base_url() -> str:
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.daemon_threads = True
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


def target(url: str, method: str = "GET") -> MonitorSnapshot:
    return MonitorSnapshot(id=1, user_id=1, user_email="o@example.com", name="t", url=url, method=method)


@pytest.mark.asyncio
async def test_2xx_is_up(base_url: str) -> None:
    checker = CheckerService(timeout_ms=5000)

    result = await checker.check(target(f"{base_url}/ok"))
    assert result.is_up is True
    assert result.status_code == 200
    assert result.error_message is None
    assert result.response_time_ms >= 0

    created = await checker.check(target(f"{base_url}/created"))
    assert created.is_up is True
    assert created.status_code == 201


@pytest.mark.asyncio
@pytest.mark.parametrize(("path", "status"), [("/server_error", 500), ("/not_found", 404)])
async def test_non_2xx_is_down_but_not_an_error(base_url: str, path: str, status: int) -> None:
    result = await CheckerService(timeout_ms=5000).check(target(f"{base_url}{path}"))
    assert result.is_up is False
    assert result.status_code == status
    assert result.error_message is None
    assert result.response_time_ms >= 0


@pytest.mark.asyncio
async def test_redirects_are_followed(base_url: str) -> None:
    result = await CheckerService(timeout_ms=5000).check(target(f"{base_url}/redirect"))
    assert result.is_up is True
    assert result.status_code == 200


@pytest.mark.asyncio
async def test_monitor_method_is_used(base_url: str) -> None:
    _Handler.methods_seen.clear()
    result = await CheckerService(timeout_ms=5000).check(target(f"{base_url}/ok", method="head"))
    assert result.is_up is True
    assert _Handler.methods_seen == ["HEAD"]


@pytest.mark.asyncio
async def test_timeout_is_classified_and_timed(base_url: str) -> None:
    result = await CheckerService(timeout_ms=300).check(target(f"{base_url}/slow"))
    assert result.is_up is False
    assert result.status_code is None
    assert result.error_message == TIMEOUT_MESSAGE
    assert 200 <= result.response_time_ms < 1500


@pytest.mark.asyncio
async def test_connection_refused() -> None:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()

    result = await CheckerService(timeout_ms=2000).check(target(f"http://127.0.0.1:{port}/"))
    assert result.is_up is False
    assert result.status_code is None
    assert result.error_message == REFUSED_MESSAGE
    assert result.response_time_ms >= 0


def _client_raising(exc_factory):
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc_factory(request)

    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_dns_failure() -> None:
    def dns_error(request: httpx.Request) -> Exception:
        try:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        except socket.gaierror as exc:
            try:
                raise httpx.ConnectError("[Errno -2] Name or service not known", request=request) from exc
            except httpx.ConnectError as wrapped:
                return wrapped

    checker = CheckerService(timeout_ms=2000, client_factory=_client_raising(dns_error))
    result = await checker.check(make_monitor(1))
    assert result.is_up is False
    assert result.status_code is None
    assert result.error_message == DNS_MESSAGE


@pytest.mark.asyncio
async def test_other_transport_error_keeps_its_text() -> None:
    checker = CheckerService(
        timeout_ms=2000,
        client_factory=_client_raising(lambda request: httpx.ReadError("Connection reset by peer", request=request)),
    )
    result = await checker.check(make_monitor(1))
    assert result.is_up is False
    assert result.error_message == "Connection reset by peer"


@pytest.mark.asyncio
async def test_transport_error_without_text_uses_class_name() -> None:
    checker = CheckerService(
        timeout_ms=2000,
        client_factory=_client_raising(lambda request: httpx.RemoteProtocolError("", request=request)),
    )
    result = await checker.check(make_monitor(1))
    assert result.is_up is False
    assert result.error_message == "RemoteProtocolError"


@pytest.mark.asyncio
async def test_mocked_timeout_exception() -> None:
    checker = CheckerService(
        timeout_ms=2000,
        client_factory=_client_raising(lambda request: httpx.ConnectTimeout("timed out", request=request)),
    )
    result = await checker.check(make_monitor(1))
    assert result.error_message == TIMEOUT_MESSAGE


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["https://exämple..com", "https://exa\tmple.com/"])
async def test_unencodable_url_is_a_down_result(url: str) -> None:
    result = await CheckerService(timeout_ms=2000).check(target(url))
    assert result.is_up is False
    assert result.status_code is None
    assert result.error_message
    assert result.response_time_ms >= 0
