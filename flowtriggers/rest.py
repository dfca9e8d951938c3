"""REST trigger: routes HTTP requests to handlers and writes their replies."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from email import policy
from email.parser import BytesParser
from http import HTTPStatus
from typing import Any, NamedTuple, Protocol
from urllib.parse import parse_qs, parse_qsl

from flowtriggers.cors import Cors
from flowtriggers.rest_server import Request, Response, Server

logger = logging.getLogger(__name__)

CORS_PREFIX = "REST_TRIGGER"
ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

RouteHandler = Callable[[Request, dict[str, str]], Response]


class _Handler(Protocol):
    settings: Mapping[str, Any]
    name: str

    def handle(self, data: Any) -> Any: ...


def _require(values: Mapping[str, Any], key: str) -> Any:
    value = values.get(key)
    if value is None or value == "":
        raise ValueError(f"required setting '{key}' is missing")
    return value


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"unable to coerce {value!r} to int") from None


def _to_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "t"):
            return True
        if lowered in ("false", "0", "f", ""):
            return False
        raise ValueError(f"unable to coerce {value!r} to bool")
    return bool(value)


def _to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _to_params(value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, str):
        value = json.loads(value) if value else {}
    if not isinstance(value, Mapping):
        raise TypeError(f"unable to coerce {value!r} to params")
    return {str(k): _to_string(v) for k, v in value.items()}


def _get_header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    return next((v for k, v in headers.items() if k.lower() == wanted), "")


@dataclass
class Settings:
    """Trigger settings: the port and optional TLS files."""

    port: int
    enable_tls: bool = False
    cert_file: str = ""
    key_file: str = ""

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> Settings:
        return cls(
            port=_to_int(_require(values, "port")),
            enable_tls=_to_bool(values.get("enableTLS")),
            cert_file=_to_string(values.get("certFile")),
            key_file=_to_string(values.get("keyFile")),
        )


@dataclass
class HandlerSettings:
    """Per-handler settings: the HTTP method and resource path."""

    method: str
    path: str

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> HandlerSettings:
        method = _to_string(_require(values, "method"))
        if method not in ALLOWED_METHODS:
            raise ValueError(
                f"value '{method}' for setting 'method' is not one of {', '.join(ALLOWED_METHODS)}"
            )
        return cls(method=method, path=_to_string(_require(values, "path")))


@dataclass
class Output:
    """Data passed from a request to the handler."""

    path_params: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    content: Any = None
    method: str = ""

    def to_map(self) -> dict[str, Any]:
        return {
            "pathParams": self.path_params,
            "queryParams": self.query_params,
            "headers": self.headers,
            "method": self.method,
            "content": self.content,
        }

    @classmethod
    def from_map(cls, values: Mapping[str, Any]) -> Output:
        return cls(
            path_params=_to_params(values.get("pathParams")),
            query_params=_to_params(values.get("queryParams")),
            headers=_to_params(values.get("headers")),
            content=values.get("content"),
            method=_to_string(values.get("method")),
        )


@dataclass
class Reply:
    """The handler's reply: an HTTP code and optional data."""

    code: int = 0
    data: Any = None

    def to_map(self) -> dict[str, Any]:
        return {"code": self.code, "data": self.data}

    @classmethod
    def from_map(cls, values: Mapping[str, Any]) -> Reply:
        return cls(code=_to_int(values.get("code")), data=values.get("data"))


class _Route(NamedTuple):
    pattern: str
    segments: tuple[str, ...]
    handler: RouteHandler


def _match_segments(pattern: tuple[str, ...], path: list[str]) -> dict[str, str] | None:
    params: dict[str, str] = {}
    for position, segment in enumerate(pattern):
        if segment.startswith("*"):
            params[segment[1:]] = "/" + "/".join(path[position:])
            return params
        if position >= len(path):
            return None
        part = path[position]
        if segment.startswith(":"):
            if part == "":
                return None
            params[segment[1:]] = part
        elif segment != part:
            return None
    return params if len(pattern) == len(path) else None


class Router:
    """Method and path router supporting ``:name`` and trailing ``*name`` segments."""

    def __init__(self) -> None:
        self._routes: dict[str, list[_Route]] = {}

    def add(self, method: str, path: str, handler: RouteHandler) -> None:
        if not path.startswith("/"):
            raise ValueError(f"path must begin with '/' in path '{path}'")
        segments = tuple(path.split("/")[1:])
        if any(s.startswith("*") for s in segments[:-1]):
            raise ValueError(f"catch-all routes are only allowed at the end of the path '{path}'")
        routes = self._routes.setdefault(method.upper(), [])
        if any(route.pattern == path for route in routes):
            raise ValueError(f"a handle is already registered for path '{path}'")
        routes.append(_Route(path, segments, handler))

    def match(self, method: str, path: str) -> tuple[RouteHandler, dict[str, str]] | None:
        """Return the handler and path parameters for a request, or None."""
        parts = path.split("/")[1:]
        for route in self._routes.get(method.upper(), []):
            params = _match_segments(route.segments, parts)
            if params is not None:
                return route.handler, params
        return None

    def _allowed_methods(self, path: str) -> list[str]:
        parts = path.split("/")[1:]
        return sorted(
            method
            for method, routes in self._routes.items()
            if any(_match_segments(r.segments, parts) is not None for r in routes)
        )


def _error_response(headers: dict[str, str], message: str, status: int) -> Response:
    headers["Content-Type"] = "text/plain; charset=utf-8"
    headers["X-Content-Type-Options"] = "nosniff"
    return Response(status, headers, (message + "\n").encode("utf-8"))


def _parse_form(body: bytes) -> dict[str, str]:
    content: dict[str, str] = {}
    for key, value in parse_qsl(body.decode("utf-8"), keep_blank_values=True, errors="strict"):
        content.setdefault(key, value)
    return content


def _parse_json(body: bytes) -> Any:
    text = body.decode("utf-8").lstrip()
    if not text:
        return None
    value, _ = json.JSONDecoder().raw_decode(text)
    return value


def _parse_multipart(content_type: str, body: bytes) -> list[dict[str, Any]] | None:
    raw = b"Content-Type: " + content_type.encode("latin-1") + b"\r\n\r\n" + body
    message = BytesParser(policy=policy.HTTP).parsebytes(raw)
    if not message.is_multipart():
        raise ValueError("no multipart boundary param in Content-Type")
    files = []
    for part in message.iter_parts():
        filename = part.get_filename()
        if filename is None:
            continue
        data = part.get_payload(decode=True) or b""
        files.append(
            {
                "key": part.get_param("name", header="content-disposition"),
                "fileName": filename,
                "fileType": str(part.get("Content-Type", "")),
                "size": len(data),
                "file": data,
            }
        )
    return files or None


def _reply_response(headers: dict[str, str], reply: Reply) -> Response:
    if reply.data is None:
        return Response(reply.code if reply.code > 0 else int(HTTPStatus.OK), headers)

    code = reply.code or int(HTTPStatus.OK)
    if isinstance(reply.data, str):
        try:
            json.loads(reply.data)
        except ValueError:
            headers["Content-Type"] = "text/plain; charset=UTF-8"
        else:
            headers["Content-Type"] = "application/json; charset=UTF-8"
        return Response(code, headers, reply.data.encode("utf-8"))

    headers["Content-Type"] = "application/json; charset=UTF-8"
    try:
        body = (json.dumps(reply.data, separators=(",", ":")) + "\n").encode("utf-8")
    except (TypeError, ValueError) as err:
        logger.debug("Error encoding json reply: %s", err)
        body = b""
    return Response(code, headers, body)


class Trigger:
    """Serves configured handlers over HTTP, with CORS preflight support."""

    def __init__(self, config: Mapping[str, Any]) -> None:
        self.id = config.get("id", "")
        self.settings = Settings.from_dict(config.get("settings") or {})
        self.router = Router()
        self.server: Server | None = None

    def initialize(self, handlers: Iterable[_Handler]) -> None:
        preflight_paths: set[str] = set()
        for handler in handlers:
            settings = HandlerSettings.from_dict(handler.settings)
            logger.debug("Registering handler [%s: %s]", settings.method, settings.path)
            if settings.path not in preflight_paths:
                preflight_paths.add(settings.path)
                self.router.add("OPTIONS", settings.path, self._handle_preflight)
            self.router.add(
                settings.method,
                settings.path,
                self._action_handler(settings.method.upper(), handler),
            )

        logger.debug("Configured on port %d", self.settings.port)
        tls = (
            {"cert_file": self.settings.cert_file, "key_file": self.settings.key_file}
            if self.settings.enable_tls
            else {}
        )
        self.server = Server(f":{self.settings.port}", self.dispatch, **tls)

    def dispatch(self, request: Request) -> Response:
        """Route a request to its handler and build the response."""
        found = self.router.match(request.method, request.path)
        if found is None:
            allowed = self.router._allowed_methods(request.path)
            if allowed:
                response = _error_response({}, "Method Not Allowed", 405)
                response.headers["Allow"] = ", ".join(allowed)
                return response
            return _error_response({}, "404 page not found", 404)
        route_handler, params = found
        return route_handler(request, params)

    def start(self) -> None:
        if self.server is None:
            raise RuntimeError("trigger has not been initialized")
        self.server.start()

    def stop(self) -> None:
        if self.server is not None:
            self.server.stop()

    @staticmethod
    def _handle_preflight(request: Request, params: dict[str, str]) -> Response:
        logger.debug("Received [OPTIONS] request to CorsPreFlight: %s", request)
        status, headers = Cors(CORS_PREFIX).handle_preflight(request.headers)
        return Response(status, headers)

    def _action_handler(self, method: str, handler: _Handler) -> RouteHandler:
        def handle(request: Request, params: dict[str, str]) -> Response:
            logger.debug("Received request for id '%s'", self.id)
            headers = Cors(CORS_PREFIX).actual_request_headers()

            out = Output(
                path_params=dict(params),
                query_params={
                    k: ",".join(v)
                    for k, v in parse_qs(request.query, keep_blank_values=True).items()
                },
                headers=dict(request.headers),
                method=method,
            )

            content_type = _get_header(request.headers, "Content-Type")
            try:
                if content_type == "application/x-www-form-urlencoded":
                    out.content = _parse_form(request.body)
                elif content_type == "application/json":
                    out.content = _parse_json(request.body)
                elif "multipart/form-data" in content_type:
                    out.content = {
                        "body": None,
                        "files": _parse_multipart(content_type, request.body),
                    }
                else:
                    out.content = request.body.decode("utf-8", errors="replace")
            except ValueError as err:
                logger.debug("Error parsing request body: %s", err)
                return _error_response(headers, str(err), 400)

            try:
                results = handler.handle(out.to_map())
                reply = Reply.from_map(results or {})
            except Exception as err:
                logger.debug("Error handling request: %s", err)
                return _error_response(headers, str(err), 400)

            return _reply_response(headers, reply)

        return handle