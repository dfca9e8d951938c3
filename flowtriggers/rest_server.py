"""A small threaded HTTP(S) server with explicit start and stop."""

from __future__ import annotations

import logging
import socket
import ssl
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

HTTP_DEFAULT_ADDR = ":http"
HTTP_DEFAULT_TLS_ADDR = ":https"
HTTP_DEFAULT_READ_TIMEOUT = 15.0
HTTP_DEFAULT_WRITE_TIMEOUT = 15.0
SHUTDOWN_TIMEOUT = 5.0

_KNOWN_SERVICES = {"http": 80, "https": 443}


@dataclass
class Request:
    """An incoming HTTP request."""

    method: str
    path: str
    query: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class Response:
    """The response to send back for a request."""

    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


RequestHandler = Callable[[Request], Response]


def _canonical_header_key(key: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


def _service_port(name: str) -> int:
    try:
        return socket.getservbyname(name, "tcp")
    except OSError:
        if name in _KNOWN_SERVICES:
            return _KNOWN_SERVICES[name]
        raise ValueError(f"unknown port {name!r}") from None


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    port = int(port_text) if port_text.isdigit() else _service_port(port_text)
    return host, port


def _handler_class(
    handler: RequestHandler, read_timeout: float, write_timeout: float
) -> type[BaseHTTPRequestHandler]:
    class _Handler(BaseHTTPRequestHandler):
        timeout = read_timeout

        def _serve(self) -> None:
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                self.send_error(400, "invalid Content-Length")
                return
            body = self.rfile.read(length) if length > 0 else b""

            headers: dict[str, str] = {}
            for key, value in self.headers.items():
                name = _canonical_header_key(key)
                headers[name] = f"{headers[name]},{value}" if name in headers else value

            target = urlsplit(self.path)
            request = Request(self.command, target.path, target.query, headers, body)
            try:
                response = handler(request)
            except Exception:
                logger.exception("request handler failed")
                response = Response(
                    500,
                    {"Content-Type": "text/plain; charset=utf-8"},
                    b"Internal Server Error\n",
                )

            self.connection.settimeout(write_timeout)
            self.send_response(response.status)
            for key, value in response.headers.items():
                self.send_header(key, value)
            if not any(k.lower() == "content-length" for k in response.headers):
                self.send_header("Content-Length", str(len(response.body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(response.body)

        do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = _serve
        do_OPTIONS = do_HEAD = _serve

        def log_message(self, format: str, *args: object) -> None:  # noqa: A002
            logger.debug(format, *args)

    return _Handler


class Server:
    """HTTP server that serves ``handler`` on a background thread.

    TLS is enabled when a certificate or key file is given; both must then be
    present and loadable.
    """

    def __init__(
        self,
        addr: str,
        handler: RequestHandler,
        cert_file: str | None = None,
        key_file: str | None = None,
        read_timeout: float = HTTP_DEFAULT_READ_TIMEOUT,
        write_timeout: float = HTTP_DEFAULT_WRITE_TIMEOUT,
    ) -> None:
        self.tls_enabled = cert_file is not None or key_file is not None
        if not addr:
            addr = HTTP_DEFAULT_TLS_ADDR if self.tls_enabled else HTTP_DEFAULT_ADDR
        self.addr = addr
        self.handler = handler
        self.cert_file = cert_file or ""
        self.key_file = key_file or ""
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self._running = False
        self._httpd: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._tls_context: ssl.SSLContext | None = None

        if self.tls_enabled:
            if not self.cert_file or not self.key_file:
                raise ValueError(
                    "when TLS is enabled, both cert file and key file must be specified"
                )
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            context.load_cert_chain(self.cert_file, self.key_file)
            self._tls_context = context

    @property
    def running(self) -> bool:
        """Whether the server is currently serving."""
        return self._running

    def start(self) -> None:
        """Bind the address and begin serving; a no-op when already running."""
        if self._running:
            return

        host, port = _split_addr(self.addr)
        httpd = ThreadingHTTPServer(
            (host, port),
            _handler_class(self.handler, self.read_timeout, self.write_timeout),
        )
        if self._tls_context is not None:
            httpd.socket = self._tls_context.wrap_socket(httpd.socket, server_side=True)

        full_addr = "0.0.0.0" + self.addr if self.addr.startswith(":") else self.addr
        scheme = "https" if self.tls_enabled else "http"
        logger.info("Listening on %s://%s", scheme, full_addr)

        self._httpd = httpd
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._running = True
        self._thread.start()

    def stop(self) -> None:
        """Shut the server down; a no-op when not running."""
        if not self._running or self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(SHUTDOWN_TIMEOUT)
        self._httpd = None
        self._thread = None
        self._running = False