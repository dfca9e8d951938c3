"""CORS preflight validation and response headers driven by environment variables."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from http import HTTPStatus

logger = logging.getLogger(__name__)

HEADER_ORIGIN = "Origin"
HEADER_ACCESS_CONTROL_REQUEST_METHOD = "Access-Control-Request-Method"
HEADER_ACCESS_CONTROL_REQUEST_HEADERS = "Access-Control-Request-Headers"
HEADER_ACCESS_CONTROL_ALLOW_ORIGIN = "Access-Control-Allow-Origin"
HEADER_ACCESS_CONTROL_ALLOW_METHODS = "Access-Control-Allow-Methods"
HEADER_ACCESS_CONTROL_ALLOW_HEADERS = "Access-Control-Allow-Headers"
HEADER_ACCESS_CONTROL_EXPOSE_HEADERS = "Access-Control-Expose-Headers"
HEADER_ACCESS_CONTROL_ALLOW_CREDENTIALS = "Access-Control-Allow-Credentials"
HEADER_ACCESS_CONTROL_MAX_AGE = "Access-Control-Max-Age"

CORS_ALLOW_ORIGIN_KEY = "CORS_ALLOW_ORIGIN"
CORS_ALLOW_ORIGIN_DEFAULT = "*"
CORS_ALLOW_METHODS_KEY = "CORS_ALLOW_METHODS"
CORS_ALLOW_METHODS_DEFAULT = "POST, GET, OPTIONS, PUT, DELETE, PATCH"
CORS_ALLOW_HEADERS_KEY = "CORS_ALLOW_HEADERS"
CORS_ALLOW_HEADERS_DEFAULT = (
    "Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, "
    "X-Requested-With, Accept, Accept-Language"
)
CORS_EXPOSE_HEADERS_KEY = "CORS_EXPOSE_HEADERS"
CORS_EXPOSE_HEADERS_DEFAULT = ""
CORS_ALLOW_CREDENTIALS_KEY = "CORS_ALLOW_CREDENTIALS"
CORS_ALLOW_CREDENTIALS_DEFAULT = "false"
CORS_MAX_AGE_KEY = "CORS_MAX_AGE"
CORS_MAX_AGE_DEFAULT = ""


def _env_or_default(prefix: str, key: str, default: str) -> str:
    return os.environ.get(prefix + key, "") or default


def get_cors_allow_origin(prefix: str) -> str:
    """Allowed origin, from the environment or the default."""
    return _env_or_default(prefix, CORS_ALLOW_ORIGIN_KEY, CORS_ALLOW_ORIGIN_DEFAULT)


def get_cors_allow_methods(prefix: str) -> str:
    """Allowed methods, from the environment or the default."""
    return _env_or_default(prefix, CORS_ALLOW_METHODS_KEY, CORS_ALLOW_METHODS_DEFAULT)


def get_cors_allow_headers(prefix: str) -> str:
    """Allowed request headers, from the environment or the default."""
    return _env_or_default(prefix, CORS_ALLOW_HEADERS_KEY, CORS_ALLOW_HEADERS_DEFAULT)


def get_cors_expose_headers(prefix: str) -> str:
    """Exposed response headers, from the environment or the default."""
    return _env_or_default(prefix, CORS_EXPOSE_HEADERS_KEY, CORS_EXPOSE_HEADERS_DEFAULT)


def get_cors_allow_credentials(prefix: str) -> str:
    """Allow-credentials flag, from the environment or the default."""
    return _env_or_default(
        prefix, CORS_ALLOW_CREDENTIALS_KEY, CORS_ALLOW_CREDENTIALS_DEFAULT
    )


def get_cors_max_age(prefix: str) -> str:
    """Preflight max age, from the environment or the default."""
    return _env_or_default(prefix, CORS_MAX_AGE_KEY, CORS_MAX_AGE_DEFAULT)


def _header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    return next(
        (value for key, value in headers.items() if key.lower() == wanted), ""
    )


def has_origin_header(headers: Mapping[str, str]) -> bool:
    """True when the request headers carry a non-empty Origin header."""
    return _header(headers, HEADER_ORIGIN) != ""


def is_valid_access_control_method(method_name: str, prefix: str) -> bool:
    """Check that a requested method is among the allowed methods."""
    if method_name == "":
        logger.info("Invalid Access Control Method for preflight request: '%s'", method_name)
        return False
    allowed = get_cors_allow_methods(prefix).split(",")
    logger.debug("Allowed Methods '%s'", allowed)
    wanted = method_name.strip().lower()
    if any(method.strip().lower() == wanted for method in allowed):
        return True
    logger.info("Invalid Access Control Method for preflight request: '%s'", method_name)
    return False


def is_valid_access_control_headers(headers_str: str, prefix: str) -> bool:
    """Check that every requested header is among the allowed headers."""
    if headers_str == "":
        return True
    allowed = {h.strip().lower() for h in get_cors_allow_headers(prefix).split(",")}
    for header in headers_str.split(","):
        if header.strip().lower() not in allowed:
            logger.info(
                "Invalid Access Control Header for pre-flight request: '%s'",
                header.strip(),
            )
            return False
    return True


class Cors:
    """CORS support configured by environment variables sharing a prefix."""

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix

    def handle_preflight(self, request_headers: Mapping[str, str]) -> tuple[int, dict[str, str]]:
        """Answer a preflight request; returns the status code and response headers."""
        invalid = (int(HTTPStatus.OK), {"Content-Type": "application/json"})

        if not has_origin_header(request_headers):
            logger.info("Invalid CORS preflight request, no Origin header found")
            return invalid

        method = _header(request_headers, HEADER_ACCESS_CONTROL_REQUEST_METHOD)
        if not is_valid_access_control_method(method, self.prefix):
            return invalid

        requested = _header(request_headers, HEADER_ACCESS_CONTROL_REQUEST_HEADERS)
        if not is_valid_access_control_headers(requested, self.prefix):
            return invalid

        headers = self.actual_request_headers()
        headers[HEADER_ACCESS_CONTROL_ALLOW_METHODS] = get_cors_allow_methods(self.prefix)
        headers[HEADER_ACCESS_CONTROL_ALLOW_HEADERS] = get_cors_allow_headers(self.prefix)
        headers[HEADER_ACCESS_CONTROL_EXPOSE_HEADERS] = get_cors_expose_headers(self.prefix)
        max_age = get_cors_max_age(self.prefix)
        if max_age:
            headers[HEADER_ACCESS_CONTROL_MAX_AGE] = max_age
        headers["Content-Type"] = "application/json"
        return int(HTTPStatus.OK), headers

    def actual_request_headers(self) -> dict[str, str]:
        """Headers to add to the response of an actual (non-preflight) request."""
        headers = {HEADER_ACCESS_CONTROL_ALLOW_ORIGIN: get_cors_allow_origin(self.prefix)}
        credentials = get_cors_allow_credentials(self.prefix).strip()
        if credentials == "true":
            headers[HEADER_ACCESS_CONTROL_ALLOW_CREDENTIALS] = credentials
        return headers