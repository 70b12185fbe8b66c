"""Shared fixtures: a local metrics endpoint and sample payloads."""
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
import gzip
import threading
import time

import pytest
import requests

FIXTURES = Path(__file__).parent / "fixtures"

TEXT_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
OPENMETRICS_CONTENT_TYPE = "application/openmetrics-text; version=1.0.0; charset=utf-8"
PROTOBUF_CONTENT_TYPE = (
    "application/vnd.google.protobuf; proto=io.prometheus.client.MetricFamily; encoding=delimited"
)


class MetricsHandler(BaseHTTPRequestHandler):
    """Answers every GET with whatever the server's respond() returns."""

    def do_GET(self):
        self.server.requests.append(dict(self.headers))
        if self.server.delay:
            time.sleep(self.server.delay)
        status, headers, body = self.server.respond(self.headers)
        self.send_response(status)
        for name, value in headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


class MetricsServer:
    """Handle on a running local endpoint."""

    def __init__(self, server: ThreadingHTTPServer):
        self._server = server

    @property
    def url(self) -> str:
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}/metrics"

    @property
    def requests(self):
        return self._server.requests

    def serve(self, body: bytes, content_type: str = TEXT_CONTENT_TYPE, status: int = 200, gzipped: bool = False):
        """Serve the same payload to every request."""
        headers = {"Content-Type": content_type}
        if gzipped:
            body = gzip.compress(body)
            headers["Content-Encoding"] = "gzip"
        self._server.respond = lambda request_headers: (status, headers, body)

    def serve_raw(self, body: bytes, headers: dict, status: int = 200):
        """Serve a body exactly as given, headers included."""
        self._server.respond = lambda request_headers: (status, headers, body)

    def serve_by_accept(self, proto_body: bytes, text_body: bytes):
        """Serve protobuf to clients that accept it and classic text to the rest."""
        def respond(request_headers):
            if "application/vnd.google.protobuf" in request_headers.get("Accept", ""):
                return 200, {"Content-Type": PROTOBUF_CONTENT_TYPE}, proto_body
            return 200, {"Content-Type": TEXT_CONTENT_TYPE}, text_body
        self._server.respond = respond

    def slow_down(self, seconds: float):
        self._server.delay = seconds


@pytest.fixture
def metrics_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), MetricsHandler)
    server.requests = []
    server.delay = 0.0
    server.respond = lambda request_headers: (200, {"Content-Type": TEXT_CONTENT_TYPE}, b"")
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield MetricsServer(server)
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def local_session():
    """Session factory that ignores proxy settings from the environment."""
    def factory():
        session = requests.Session()
        session.trust_env = False
        return session
    return factory


@pytest.fixture
def sample_text() -> bytes:
    return (FIXTURES / "sample.prom").read_bytes()
