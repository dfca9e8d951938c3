"""Socket trigger: passes data received on TCP connections to handlers and writes back replies."""

from __future__ import annotations

import json
import logging
import socket
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_STREAM_NETWORKS = ("tcp", "tcp4", "tcp6")
_ACCEPT_POLL_INTERVAL = 0.2
_READ_SIZE = 4096


class _Handler(Protocol):
    settings: Mapping[str, Any]

    def handle(self, data: Any) -> Any: ...


def _to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _to_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"unable to coerce {value!r} to int") from None


@dataclass
class Settings:
    """Listener settings: network, address, record delimiter and read timeout (ms)."""

    port: str
    network: str = ""
    host: str = ""
    delimiter: str = ""
    timeout: int = 0

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> Settings:
        port = values.get("port")
        if port is None or port == "":
            raise ValueError("required setting 'port' is missing")
        return cls(
            port=_to_string(port),
            network=_to_string(values.get("network")),
            host=_to_string(values.get("host")),
            delimiter=_to_string(values.get("delimiter")),
            timeout=_to_int(values.get("timeout")),
        )


@dataclass
class Output:
    """The data received from a connection."""

    data: str = ""

    def to_map(self) -> dict[str, Any]:
        return {"data": self.data}

    @classmethod
    def from_map(cls, values: Mapping[str, Any]) -> Output:
        return cls(data=_to_string(values.get("data")))


@dataclass
class Reply:
    """The reply a handler sends back to the client."""

    reply: str = ""

    def to_map(self) -> dict[str, Any]:
        return {"reply": self.reply}

    @classmethod
    def from_map(cls, values: Mapping[str, Any]) -> Reply:
        return cls(reply=_to_string(values.get("reply")))


def _parse_port(port: str) -> int:
    if port.isdigit():
        return int(port)
    try:
        return socket.getservbyname(port, "tcp")
    except OSError:
        raise ValueError(f"unknown port {port!r}") from None


def _listen(network: str, host: str, port: str) -> socket.socket:
    if network not in _STREAM_NETWORKS:
        raise ValueError(f"listen {network}: unknown network {network}")
    port_number = _parse_port(port)
    if network == "tcp4":
        family = socket.AF_INET
    elif network == "tcp6":
        family = socket.AF_INET6
    elif not host:
        if socket.has_dualstack_ipv6():
            return socket.create_server(
                ("", port_number), family=socket.AF_INET6, dualstack_ipv6=True
            )
        family = socket.AF_INET
    else:
        family = socket.getaddrinfo(host, port_number, type=socket.SOCK_STREAM)[0][0]
    return socket.create_server((host, port_number), family=family)


class Trigger:
    """Listens for connections and hands every record read to all handlers."""

    def __init__(self, config: Mapping[str, Any]) -> None:
        self.config = config
        self.settings = Settings.from_dict(config.get("settings") or {})
        self.handlers: list[_Handler] = []
        self._delimiter: int | None = None
        self._listener: socket.socket | None = None
        self._connections: list[socket.socket] = []
        self._lock = threading.Lock()
        self._stopping = threading.Event()
        self._accept_thread: threading.Thread | None = None

    def initialize(self, handlers: Iterable[_Handler]) -> None:
        self.handlers = list(handlers)
        if self.settings.delimiter:
            self._delimiter = ord(self.settings.delimiter[0]) & 0xFF
        if not self.settings.port:
            raise ValueError("Valid port must be set")
        self._listener = _listen(self.settings.network, self.settings.host, self.settings.port)

    def address(self) -> tuple[str, int]:
        """The host and port the listener is bound to."""
        if self._listener is None:
            raise RuntimeError("trigger has not been initialized")
        host, port = self._listener.getsockname()[:2]
        return host, port

    def start(self) -> None:
        if self._listener is None:
            raise RuntimeError("trigger has not been initialized")
        self._stopping.clear()
        self._listener.settimeout(_ACCEPT_POLL_INTERVAL)
        self._accept_thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._accept_thread.start()
        logger.info(
            "Started listener on Port - %s, Network - %s",
            self.settings.port,
            self.settings.network,
        )

    def stop(self) -> None:
        self._stopping.set()
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            conn.close()
        if self._accept_thread is not None:
            self._accept_thread.join(2 * _ACCEPT_POLL_INTERVAL + 1)
            self._accept_thread = None
        if self._listener is not None:
            self._listener.close()
        logger.info("Stopped listener")

    def _accept_loop(self) -> None:
        listener = self._listener
        while listener is not None and not self._stopping.is_set():
            try:
                conn, remote = listener.accept()
            except TimeoutError:
                continue
            except OSError as err:
                if not self._stopping.is_set():
                    logger.error("Error accepting connection: %s", err)
                return
            logger.debug("Handling new connection from client - %s", remote)
            threading.Thread(target=self._serve, args=(conn,), daemon=True).start()

    def _serve(self, conn: socket.socket) -> None:
        with self._lock:
            self._connections.append(conn)
        try:
            if self.settings.timeout > 0:
                logger.info("Setting timeout: %d", self.settings.timeout)
                conn.settimeout(self.settings.timeout / 1000)
            if self._delimiter is None:
                self._serve_stream(conn)
            else:
                self._serve_delimited(conn, self._delimiter)
        finally:
            with self._lock:
                if conn in self._connections:
                    self._connections.remove(conn)
            conn.close()

    def _serve_delimited(self, conn: socket.socket, delimiter: int) -> None:
        buffer = bytearray()
        while True:
            try:
                record = self._read_record(conn, buffer, delimiter)
            except TimeoutError as err:
                logger.error("Error reading data from connection: %s", err)
                continue
            except OSError as err:
                self._log_read_error(err)
                return
            if record is None:
                return
            self._dispatch(conn, record.decode("utf-8", errors="replace"))

    @staticmethod
    def _read_record(conn: socket.socket, buffer: bytearray, delimiter: int) -> bytes | None:
        while True:
            index = buffer.find(bytes([delimiter]))
            if index >= 0:
                record = bytes(buffer[:index])
                del buffer[: index + 1]
                return record
            chunk = conn.recv(_READ_SIZE)
            if not chunk:
                return None
            buffer.extend(chunk)

    def _serve_stream(self, conn: socket.socket) -> None:
        # Without a delimiter the whole stream up to end-of-file is one record.
        chunks: list[bytes] = []
        while True:
            try:
                chunk = conn.recv(_READ_SIZE)
            except TimeoutError as err:
                logger.error("Error reading data from connection: %s", err)
                chunks.clear()
                continue
            except OSError as err:
                self._log_read_error(err)
                return
            if not chunk:
                break
            chunks.append(chunk)
        self._dispatch(conn, b"".join(chunks).decode("utf-8", errors="replace"))

    def _log_read_error(self, err: OSError) -> None:
        if self._stopping.is_set():
            logger.info("Connection is closed.")
        else:
            logger.error("Error reading data from connection: %s", err)

    def _dispatch(self, conn: socket.socket, data: str) -> None:
        if not data:
            return
        output = Output(data=data)
        replies: list[str] = []
        for handler in self.handlers:
            try:
                results = handler.handle(output.to_map())
            except Exception as err:
                logger.error("Error invoking action : %s", err)
                continue
            try:
                reply = Reply.from_map(results or {})
            except (TypeError, ValueError) as err:
                logger.error("Failed to convert flow output : %s", err)
                continue
            if reply.reply:
                replies.append(reply.reply)

        if replies:
            separator = chr(self._delimiter if self._delimiter is not None else 0)
            try:
                conn.sendall((separator.join(replies) + "\n").encode("utf-8"))
            except OSError as err:
                logger.error("Failed to write to connection : %s", err)